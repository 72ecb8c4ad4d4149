"""
Parametric yield-curve fitting: Nelson-Siegel and Svensson.

With the decay parameter(s) held fixed both models are linear in their
betas, so each candidate is an OLS normal-equations solve (3x3 by Cramer's
rule for Nelson-Siegel, 4x4 by Gaussian elimination for Svensson). The decay
parameters come from a coarse grid plus a local refinement around the best
grid point; the candidate with the lowest sum of squared errors wins.

Fits are best-effort: they return the parameters together with diagnostics
(RMSE, R^2, residuals) and warnings instead of failing on a poor fit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, localcontext
from typing import Callable, ClassVar, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

import numpy as np
import pandas as pd

from .config import DEFAULT_CONFIG, KernelConfig
from .curves import TenorRate
from .errors import InsufficientData, InvalidInput, SingularSystem
from .linalg import normal_equations, solve_3x3, solve_4x4
from .primitives import exp, sqrt
from .utils import ONE, ZERO, Scalar, require_positive, to_decimal

logger = logging.getLogger(__name__)

NS_MIN_POINTS = 3
SVENSSON_MIN_POINTS = 4


@dataclass(frozen=True)
class NelsonSiegelParams:
    model: ClassVar[str] = "nelson_siegel"

    beta0: Decimal  # long-run level
    beta1: Decimal  # short-end slope
    beta2: Decimal  # medium-term hump
    lambda_: Decimal


@dataclass(frozen=True)
class SvenssonParams:
    model: ClassVar[str] = "svensson"

    beta0: Decimal
    beta1: Decimal
    beta2: Decimal
    beta3: Decimal  # second hump
    lambda1: Decimal
    lambda2: Decimal


CurveModelParameters = Union[NelsonSiegelParams, SvenssonParams]
P = TypeVar("P", NelsonSiegelParams, SvenssonParams)


@dataclass(frozen=True)
class FitDiagnostics:
    fitted_rates: Tuple[TenorRate, ...]
    residuals: Tuple[Decimal, ...]  # observed - fitted
    sse: Decimal
    rmse: Decimal
    r_squared: Decimal


@dataclass(frozen=True)
class CurveFit:
    params: CurveModelParameters
    diagnostics: FitDiagnostics
    warnings: Tuple[str, ...] = field(default_factory=tuple)


# ---------- model evaluation ----------

def _hump_loadings(tau: Decimal, lam: Decimal, config: KernelConfig) -> Tuple[Decimal, Decimal]:
    """(1 - e^-x)/x and (1 - e^-x)/x - e^-x with x = tau / lambda."""
    x = tau / lam
    e = exp(-x, config)
    slope = (ONE - e) / x
    return slope, slope - e


def _ns_row(tau: Decimal, lam: Decimal, config: KernelConfig) -> Tuple[Decimal, Decimal, Decimal]:
    if tau <= 0 or lam <= 0:
        return ONE, ONE, ZERO
    f1, f2 = _hump_loadings(tau, lam, config)
    return ONE, f1, f2


def _svensson_row(tau: Decimal, lam1: Decimal, lam2: Decimal,
                  config: KernelConfig) -> Tuple[Decimal, Decimal, Decimal, Decimal]:
    _, f1, f2 = _ns_row(tau, lam1, config)
    if tau <= 0 or lam2 <= 0:
        f3 = ZERO
    else:
        _, f3 = _hump_loadings(tau, lam2, config)
    return ONE, f1, f2, f3


def nelson_siegel_rate(params: NelsonSiegelParams, maturity: Scalar,
                       config: KernelConfig = DEFAULT_CONFIG) -> Decimal:
    """
    y(t) = b0 + b1 * (1 - e^-x)/x + b2 * ((1 - e^-x)/x - e^-x),  x = t / lambda

    t <= 0 returns the instantaneous limit b0 + b1; lambda <= 0 returns b0.
    """
    tau = to_decimal(maturity, "maturity")
    with localcontext(config.working_context()):
        if tau <= 0:
            rate = params.beta0 + params.beta1
        elif params.lambda_ <= 0:
            rate = params.beta0
        else:
            f1, f2 = _hump_loadings(tau, params.lambda_, config)
            rate = params.beta0 + params.beta1 * f1 + params.beta2 * f2
    with localcontext(config.output_context()):
        return +rate


def svensson_rate(params: SvenssonParams, maturity: Scalar,
                  config: KernelConfig = DEFAULT_CONFIG) -> Decimal:
    """Nelson-Siegel plus a second hump b3 * ((1 - e^-x2)/x2 - e^-x2), x2 = t / lambda2."""
    tau = to_decimal(maturity, "maturity")
    with localcontext(config.working_context()):
        if tau <= 0:
            rate = params.beta0 + params.beta1
        else:
            lam1 = params.lambda1 if params.lambda1 > 0 else ONE
            lam2 = params.lambda2 if params.lambda2 > 0 else ONE
            _, f1, f2, f3 = _svensson_row(tau, lam1, lam2, config)
            rate = params.beta0 + params.beta1 * f1 + params.beta2 * f2 + params.beta3 * f3
    with localcontext(config.output_context()):
        return +rate


def model_rate(params: CurveModelParameters, maturity: Scalar,
               config: KernelConfig = DEFAULT_CONFIG) -> Decimal:
    if isinstance(params, NelsonSiegelParams):
        return nelson_siegel_rate(params, maturity, config)
    if isinstance(params, SvenssonParams):
        return svensson_rate(params, maturity, config)
    raise InvalidInput("params", f"unknown curve model {type(params).__name__}")


def model_discount_factor(params: CurveModelParameters, maturity: Scalar,
                          config: KernelConfig = DEFAULT_CONFIG) -> Decimal:
    """exp(-y(t) * t): fitted rates are read as continuously compounded."""
    tau = to_decimal(maturity, "maturity")
    if tau < 0:
        raise InvalidInput("maturity", "must be non-negative")
    rate = model_rate(params, tau, config)
    with localcontext(config.working_context()):
        return exp(-rate * tau, config)


def fitted_curve(params: CurveModelParameters, maturities: Iterable[Scalar],
                 config: KernelConfig = DEFAULT_CONFIG) -> Tuple[TenorRate, ...]:
    return tuple(TenorRate(maturity=t, rate=model_rate(params, t, config)) for t in maturities)


# ---------- diagnostics ----------

def _as_observations(observed: Iterable[Union[TenorRate, Tuple[Scalar, Scalar]]]) -> Tuple[TenorRate, ...]:
    out: List[TenorRate] = []
    for obs in observed:
        if isinstance(obs, TenorRate):
            out.append(obs)
        else:
            maturity, rate = obs
            out.append(TenorRate(maturity=maturity, rate=rate))
    return tuple(out)


def validate_observed(observed: Sequence[TenorRate], minimum: int, model: str) -> None:
    if len(observed) < minimum:
        raise InsufficientData(f"{model} requires at least {minimum} observed rates, got {len(observed)}")
    for i, obs in enumerate(observed):
        require_positive(obs.maturity, f"observed[{i}].maturity")


def _sse(params: CurveModelParameters, observed: Sequence[TenorRate], config: KernelConfig) -> Decimal:
    total = ZERO
    with localcontext(config.working_context()):
        for obs in observed:
            resid = obs.rate - model_rate(params, obs.maturity, config)
            total += resid * resid
    return total


def diagnose(params: CurveModelParameters,
             observed: Iterable[Union[TenorRate, Tuple[Scalar, Scalar]]],
             config: KernelConfig = DEFAULT_CONFIG) -> FitDiagnostics:
    """Fitted rates, residuals, SSE, RMSE and R^2 of `params` against `observed`."""
    observed = _as_observations(observed)
    if not observed:
        raise InsufficientData("no observed rates to diagnose against")

    with localcontext(config.working_context()):
        n = Decimal(len(observed))
        mean_rate = sum((obs.rate for obs in observed), ZERO) / n

        fitted: List[TenorRate] = []
        residuals: List[Decimal] = []
        ss_res = ZERO
        ss_tot = ZERO
        for obs in observed:
            y_hat = model_rate(params, obs.maturity, config)
            resid = obs.rate - y_hat
            fitted.append(TenorRate(maturity=obs.maturity, rate=y_hat))
            residuals.append(resid)
            ss_res += resid * resid
            ss_tot += (obs.rate - mean_rate) * (obs.rate - mean_rate)

        rmse = sqrt(ss_res / n, config)
        r_squared = ONE - ss_res / ss_tot if ss_tot > 0 else ONE

    with localcontext(config.output_context()):
        return FitDiagnostics(
            fitted_rates=tuple(fitted),
            residuals=tuple(+r for r in residuals),
            sse=+ss_res,
            rmse=+rmse,
            r_squared=+r_squared,
        )


# ---------- fixed-lambda OLS ----------

def fit_nelson_siegel_given_lambda(observed: Sequence[TenorRate], lambda_: Decimal,
                                   config: KernelConfig = DEFAULT_CONFIG) -> NelsonSiegelParams:
    """OLS betas for a fixed lambda. Raises SingularSystem on degenerate normal equations."""
    with localcontext(config.working_context()):
        rows = [_ns_row(obs.maturity, lambda_, config) for obs in observed]
        xtx, xty = normal_equations(rows, [obs.rate for obs in observed])
    b0, b1, b2 = solve_3x3(xtx, xty, config)
    return NelsonSiegelParams(beta0=b0, beta1=b1, beta2=b2, lambda_=lambda_)


def fit_svensson_given_lambdas(observed: Sequence[TenorRate], lambda1: Decimal, lambda2: Decimal,
                               config: KernelConfig = DEFAULT_CONFIG) -> Tuple[SvenssonParams, Tuple[str, ...]]:
    """OLS betas for fixed (lambda1, lambda2); also returns the linear solver's warnings."""
    with localcontext(config.working_context()):
        rows = [_svensson_row(obs.maturity, lambda1, lambda2, config) for obs in observed]
        xtx, xty = normal_equations(rows, [obs.rate for obs in observed])
    solution = solve_4x4(xtx, xty, config=config)
    b0, b1, b2, b3 = solution.values
    params = SvenssonParams(beta0=b0, beta1=b1, beta2=b2, beta3=b3, lambda1=lambda1, lambda2=lambda2)
    return params, solution.warnings


# ---------- grid search ----------

class _GridSearch:
    """Keeps the lowest-SSE candidate; singular candidates are recorded and skipped."""

    def __init__(self, observed: Sequence[TenorRate], config: KernelConfig):
        self.observed = observed
        self.config = config
        self.best = None
        self.best_sse: Optional[Decimal] = None
        self.best_warnings: Tuple[str, ...] = ()
        self.skipped: List[str] = []

    def consider(self, label: str, fit: Callable[[], Tuple[P, Tuple[str, ...]]]) -> None:
        try:
            params, warnings = fit()
        except SingularSystem as exc:
            logger.debug("candidate %s skipped: %s", label, exc)
            self.skipped.append(label)
            return

        sse = _sse(params, self.observed, self.config)
        if self.best_sse is None or sse < self.best_sse:
            self.best, self.best_sse, self.best_warnings = params, sse, warnings


def _finish(search: _GridSearch, model: str, observed: Sequence[TenorRate], config: KernelConfig) -> CurveFit:
    if search.best is None:
        raise SingularSystem(f"{model}: every lambda candidate produced singular normal equations")

    warnings: List[str] = list(search.best_warnings)
    if search.skipped:
        warnings.append(f"{model}: skipped singular lambda candidates {', '.join(search.skipped)}")

    diagnostics = diagnose(search.best, observed, config)
    if diagnostics.rmse > config.fit_rmse_warning:
        warnings.append(f"{model}: poor fit, rmse {diagnostics.rmse} exceeds {config.fit_rmse_warning}")

    for msg in warnings:
        logger.warning(msg)

    return CurveFit(params=search.best, diagnostics=diagnostics, warnings=tuple(warnings))


def fit_nelson_siegel(observed: Iterable[Union[TenorRate, Tuple[Scalar, Scalar]]],
                      initial_lambda: Optional[Scalar] = None,
                      config: KernelConfig = DEFAULT_CONFIG) -> CurveFit:
    """
    Fit Nelson-Siegel to at least 3 observed rates.

    Lambda candidates: `initial_lambda` (if given) and config.ns_lambda_grid,
    then lambda * (1 + d) for d in config.ns_refinement_deltas around the
    best grid point.
    """
    observed = _as_observations(observed)
    validate_observed(observed, NS_MIN_POINTS, "Nelson-Siegel")

    grid: List[Decimal] = []
    if initial_lambda is not None:
        lam0 = to_decimal(initial_lambda, "initial_lambda")
        require_positive(lam0, "initial_lambda")
        grid.append(lam0)
    grid.extend(lam for lam in config.ns_lambda_grid if lam not in grid)

    search = _GridSearch(observed, config)

    def candidate(lam: Decimal):
        return lambda: (fit_nelson_siegel_given_lambda(observed, lam, config), ())

    for lam in grid:
        search.consider(f"lambda={lam}", candidate(lam))

    if search.best is not None:
        base = search.best.lambda_
        with localcontext(config.working_context()):
            refined = [base * (ONE + d) for d in config.ns_refinement_deltas]
        for lam in refined:
            if lam > 0:
                search.consider(f"lambda={lam}", candidate(lam))

    if search.best is not None:
        logger.debug("Nelson-Siegel best lambda %s (sse %s)", search.best.lambda_, search.best_sse)
    return _finish(search, "Nelson-Siegel", observed, config)


def fit_svensson(observed: Iterable[Union[TenorRate, Tuple[Scalar, Scalar]]],
                 initial_params: Optional[SvenssonParams] = None,
                 config: KernelConfig = DEFAULT_CONFIG) -> CurveFit:
    """
    Fit Svensson to at least 4 observed rates.

    Lambda pairs: the lambdas of `initial_params` (if given) and every
    distinct pair from config.svensson_lambda_grid, then an additive
    refinement over config.svensson_refinement_steps that moves with the
    best pair as better candidates are found.
    Zero-pivot columns in the 4x4 solve follow config.zero_pivot_policy.
    """
    observed = _as_observations(observed)
    validate_observed(observed, SVENSSON_MIN_POINTS, "Svensson")

    pairs: List[Tuple[Decimal, Decimal]] = []
    if initial_params is not None:
        l1, l2 = initial_params.lambda1, initial_params.lambda2
        if l1 > 0 and l2 > 0 and l1 != l2:
            pairs.append((l1, l2))
    for l1 in config.svensson_lambda_grid:
        for l2 in config.svensson_lambda_grid:
            if l1 != l2 and (l1, l2) not in pairs:
                pairs.append((l1, l2))

    search = _GridSearch(observed, config)

    def candidate(l1: Decimal, l2: Decimal):
        return lambda: fit_svensson_given_lambdas(observed, l1, l2, config)

    for l1, l2 in pairs:
        search.consider(f"lambdas=({l1}, {l2})", candidate(l1, l2))

    if search.best is not None:
        tried = set(pairs)
        for d1 in config.svensson_refinement_steps:
            for d2 in config.svensson_refinement_steps:
                # each step is taken from the best pair found so far
                with localcontext(config.working_context()):
                    l1, l2 = search.best.lambda1 + d1, search.best.lambda2 + d2
                if l1 <= 0 or l2 <= 0 or l1 == l2 or (l1, l2) in tried:
                    continue
                tried.add((l1, l2))
                search.consider(f"lambdas=({l1}, {l2})", candidate(l1, l2))

    return _finish(search, "Svensson", observed, config)


# ---------- reporting ----------

def params_as_dict(params: CurveModelParameters) -> Dict[str, Decimal]:
    if isinstance(params, NelsonSiegelParams):
        keys = ("beta0", "beta1", "beta2", "lambda_")
    else:
        keys = ("beta0", "beta1", "beta2", "beta3", "lambda1", "lambda2")
    return {k: getattr(params, k) for k in keys}


def fit_report(fit: CurveFit, observed: Iterable[Union[TenorRate, Tuple[Scalar, Scalar]]]) -> pd.DataFrame:
    """Observed vs fitted table for a finished fit."""
    observed = _as_observations(observed)
    diag = fit.diagnostics
    if len(observed) != len(diag.fitted_rates):
        raise InvalidInput("observed", "must be the observations the fit was diagnosed against")

    observed_rates = np.array([float(o.rate) for o in observed], dtype=float)
    fitted_rates = np.array([float(p.rate) for p in diag.fitted_rates], dtype=float)

    out = pd.DataFrame(
        {
            "maturity": [float(o.maturity) for o in observed],
            "observed": observed_rates,
            "fitted": fitted_rates,
            "residual": observed_rates - fitted_rates,
        }
    )
    out["abs_residual_bp"] = np.abs(out["residual"]) * 10000.0
    out.attrs["model"] = fit.params.model
    out.attrs["rmse"] = float(diag.rmse)
    out.attrs["r_squared"] = float(diag.r_squared)
    return out
