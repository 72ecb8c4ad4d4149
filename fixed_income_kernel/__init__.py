"""
Fixed Income Kernel

Deterministic Decimal numerics for curve construction:
- config: KernelConfig, the single home of every iteration cap and tolerance
- errors: InvalidInput / InsufficientData / DivisionByZero / ConvergenceFailure / ...
- primitives: exp, ln, sqrt, nth_root, power without binary floating point
- solver: Newton-Raphson returning Converged | Diverged
- linalg: 3x3 Cramer and 4x4 Gaussian elimination for normal equations
- bonds: yield-to-maturity, bond-equivalent and effective annual yield
- curves: par-curve spot bootstrap, price bootstrap, forwards, QC report
- fitting: Nelson-Siegel / Svensson fits with diagnostics
"""
from .config import DEFAULT_CONFIG, KernelConfig, ZeroPivotPolicy
from .errors import (
    ConvergenceFailure,
    DivisionByZero,
    FinancialImpossibility,
    InsufficientData,
    InvalidInput,
    KernelError,
    SingularSystem,
)
from .primitives import exp, ln, nth_root, power, sqrt
from .solver import Converged, Diverged, SolverOutcome, newton_solve, require_converged
from .linalg import LinearSolution, normal_equations, solve_3x3, solve_4x4
from .bonds import BondYieldInput, BondYieldResult, BondYieldSolver, price_from_yield, solve_bond_yield
from .curves import (
    BootstrapInstrument,
    DiscountFactor,
    ForwardRate,
    InstrumentType,
    ParInstrument,
    SpotCurve,
    TenorRate,
    ZeroCurve,
    bootstrap_spot_curve,
    bootstrap_zero_curve,
    curve_qc_report,
    discount_factor_at,
    forward_rate,
    interpolate_spot_rate,
)
from .fitting import (
    CurveFit,
    CurveModelParameters,
    FitDiagnostics,
    NelsonSiegelParams,
    SvenssonParams,
    diagnose,
    fit_nelson_siegel,
    fit_report,
    fit_svensson,
    fitted_curve,
    model_discount_factor,
    model_rate,
)

__version__ = "0.1.0"
