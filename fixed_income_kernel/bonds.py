from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, localcontext
from typing import List, Tuple

from .config import DEFAULT_CONFIG, KernelConfig
from .errors import InvalidInput
from .primitives import power
from .solver import newton_solve, require_converged
from .utils import ONE, TWO, Scalar, count_periods, require_frequency, require_positive, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BondYieldInput:
    face_value: Decimal
    coupon_rate: Decimal       # annual, decimal (0.05 = 5%)
    coupon_frequency: int      # 1, 2, 4 or 12
    market_price: Decimal      # dirty price, same units as face_value
    years_to_maturity: Decimal
    current_yield_only: bool = False

    def __post_init__(self):
        for name in ("face_value", "coupon_rate", "market_price", "years_to_maturity"):
            object.__setattr__(self, name, to_decimal(getattr(self, name), name))


@dataclass(frozen=True)
class BondYieldResult:
    ytm: Decimal
    current_yield: Decimal
    bey: Decimal
    effective_annual_yield: Decimal
    discount_or_premium: str
    iterations: int = 0
    warnings: Tuple[str, ...] = field(default_factory=tuple)


def validate_bond_yield_input(bond: BondYieldInput, config: KernelConfig = DEFAULT_CONFIG) -> int:
    """Validate the bond terms and return the whole number of coupon periods."""
    require_positive(bond.face_value, "face_value")
    require_positive(bond.market_price, "market_price")
    require_positive(bond.years_to_maturity, "years_to_maturity")
    require_frequency(bond.coupon_frequency)

    with localcontext(config.working_context()):
        n = count_periods(bond.years_to_maturity, bond.coupon_frequency, config.max_coupon_periods)
    if n == 0:
        raise InvalidInput("years_to_maturity", "computed number of coupon periods is zero")
    return n


def _pv_and_slope(periodic_coupon: Decimal, face: Decimal, n: int, r: Decimal) -> Tuple[Decimal, Decimal]:
    """
    PV at periodic rate r and -dPV/dr.

    The discount is compounded one period at a time rather than raised to
    the n-th power in one step.
    """
    one_plus_r = ONE + r
    discount = ONE
    pv = Decimal(0)
    slope = Decimal(0)
    for i in range(1, n + 1):
        discount *= one_plus_r
        pv += periodic_coupon / discount
        slope += i * periodic_coupon / (discount * one_plus_r)

    pv += face / discount
    slope += n * face / (discount * one_plus_r)
    return pv, slope


def price_from_yield(
    face_value: Scalar,
    coupon_rate: Scalar,
    coupon_frequency: int,
    years_to_maturity: Scalar,
    ytm: Scalar,
    config: KernelConfig = DEFAULT_CONFIG,
) -> Decimal:
    """Dirty price of a level-coupon bond at an annualized yield (compounded at coupon frequency)."""
    face = to_decimal(face_value, "face_value")
    coupon = to_decimal(coupon_rate, "coupon_rate")
    years = to_decimal(years_to_maturity, "years_to_maturity")
    y = to_decimal(ytm, "ytm")

    require_positive(face, "face_value")
    require_positive(years, "years_to_maturity")
    require_frequency(coupon_frequency)

    with localcontext(config.working_context()):
        n = count_periods(years, coupon_frequency, config.max_coupon_periods)
        if n == 0:
            raise InvalidInput("years_to_maturity", "computed number of coupon periods is zero")
        r = y / coupon_frequency
        if ONE + r <= 0:
            raise InvalidInput("ytm", "periodic yield must be above -100%")
        pv, _ = _pv_and_slope(face * coupon / coupon_frequency, face, n, r)

    with localcontext(config.output_context()):
        return +pv


def solve_bond_yield(bond: BondYieldInput, config: KernelConfig = DEFAULT_CONFIG) -> BondYieldResult:
    """
    Yield to maturity by Newton-Raphson on f(r) = price - PV(r).

    Numeric contract (from config):
    - at most ytm_max_iterations (50) Newton steps
    - converged when |f(r)| < ytm_tolerance (1e-7, price units)
    - periodic rate clamped into rate_bounds ([-0.5, 2.0])
    - after the cap, a residual under relaxed_tolerance (1e-2) is accepted
      with a warning; otherwise ConvergenceFailure

    Returns annualized YTM, bond-equivalent yield, effective annual yield
    and current yield.
    """
    n = validate_bond_yield_input(bond, config)
    warnings: List[str] = []

    face = bond.face_value
    price = bond.market_price

    with localcontext(config.working_context()):
        freq = Decimal(bond.coupon_frequency)
        annual_coupon = face * bond.coupon_rate
        periodic_coupon = annual_coupon / freq
        current_yield = annual_coupon / price

        if price > face:
            label = "premium"
        elif price < face:
            label = "discount"
        else:
            label = "par"

        iterations = 0
        if bond.current_yield_only:
            periodic = current_yield / freq
        else:
            def f(r: Decimal) -> Decimal:
                pv, _ = _pv_and_slope(periodic_coupon, face, n, r)
                return price - pv

            def f_prime(r: Decimal) -> Decimal:
                _, slope = _pv_and_slope(periodic_coupon, face, n, r)
                return slope

            outcome = newton_solve(
                f,
                f_prime,
                initial_guess=periodic_coupon / price,
                tolerance=config.ytm_tolerance,
                max_iterations=config.ytm_max_iterations,
                bounds=config.rate_bounds,
                relaxed_tolerance=config.relaxed_tolerance,
            )
            converged = require_converged(outcome, "YTM Newton-Raphson")
            periodic = converged.value
            iterations = converged.iterations
            if converged.relaxed:
                msg = f"YTM converged with relaxed tolerance (residual: {converged.residual})"
                logger.warning(msg)
                warnings.append(msg)

        ytm = periodic * freq
        if bond.coupon_frequency == 2:
            bey = ytm
        else:
            bey = TWO * (power(ONE + periodic, freq / TWO, config) - ONE)
        eay = power(ONE + periodic, freq, config) - ONE

    with localcontext(config.output_context()):
        return BondYieldResult(
            ytm=+ytm,
            current_yield=+current_yield,
            bey=+bey,
            effective_annual_yield=+eay,
            discount_or_premium=label,
            iterations=iterations,
            warnings=tuple(warnings),
        )


class BondYieldSolver:
    """Binds a KernelConfig so repeated solves share one numeric contract."""

    def __init__(self, config: KernelConfig = DEFAULT_CONFIG):
        self.config = config

    def validate(self, bond: BondYieldInput) -> None:
        validate_bond_yield_input(bond, self.config)

    def solve(self, bond: BondYieldInput) -> BondYieldResult:
        self.validate(bond)
        return solve_bond_yield(bond, self.config)

    def price(self, bond: BondYieldInput, ytm: Scalar) -> Decimal:
        self.validate(bond)
        return price_from_yield(
            bond.face_value,
            bond.coupon_rate,
            bond.coupon_frequency,
            bond.years_to_maturity,
            ytm,
            self.config,
        )
