from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, localcontext
from enum import Enum
from typing import Iterable, List, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .config import DEFAULT_CONFIG, KernelConfig
from .errors import DivisionByZero, FinancialImpossibility, InsufficientData, InvalidInput
from .primitives import exp, ln, nth_root, power
from .solver import newton_solve, require_converged
from .utils import (
    ONE,
    ZERO,
    Scalar,
    count_periods,
    is_integral,
    linear_interpolate,
    require_ascending,
    require_frequency,
    require_positive,
    round_periods,
    to_decimal,
)

logger = logging.getLogger(__name__)

# largest period count for which the spot solve starts from an exact nth root
_NTH_ROOT_GUESS_MAX_PERIODS = 12


@dataclass(frozen=True)
class TenorRate:
    maturity: Decimal
    rate: Decimal

    def __post_init__(self):
        object.__setattr__(self, "maturity", to_decimal(self.maturity, "maturity"))
        object.__setattr__(self, "rate", to_decimal(self.rate, "rate"))


@dataclass(frozen=True)
class DiscountFactor:
    maturity: Decimal
    factor: Decimal


@dataclass(frozen=True)
class ForwardRate:
    start: Decimal
    end: Decimal
    rate: Decimal


@dataclass(frozen=True)
class ParInstrument:
    maturity_years: Decimal
    par_rate: Decimal
    coupon_frequency: int = 2

    def __post_init__(self):
        object.__setattr__(self, "maturity_years", to_decimal(self.maturity_years, "maturity_years"))
        object.__setattr__(self, "par_rate", to_decimal(self.par_rate, "par_rate"))


@dataclass(frozen=True)
class SpotCurve:
    """
    Bootstrapped spot curve.

    Spot rates are annualized and compounded at each instrument's coupon
    frequency. Forward rates between consecutive tenors use annual
    compounding.
    """
    spot_rates: Tuple[TenorRate, ...]
    discount_factors: Tuple[DiscountFactor, ...]
    forward_rates: Tuple[ForwardRate, ...]
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    def maturities(self) -> Tuple[Decimal, ...]:
        return tuple(p.maturity for p in self.spot_rates)


class InstrumentType(str, Enum):
    ZERO_COUPON = "zero_coupon"
    PAR_BOND = "par_bond"
    SWAP = "swap"


@dataclass(frozen=True)
class BootstrapInstrument:
    maturity: Decimal
    coupon_rate: Decimal      # annual; 0 for zero-coupon instruments
    price: Decimal            # per 100 face
    instrument_type: InstrumentType = InstrumentType.PAR_BOND

    def __post_init__(self):
        object.__setattr__(self, "maturity", to_decimal(self.maturity, "maturity"))
        object.__setattr__(self, "coupon_rate", to_decimal(self.coupon_rate, "coupon_rate"))
        object.__setattr__(self, "price", to_decimal(self.price, "price"))
        object.__setattr__(self, "instrument_type", InstrumentType(self.instrument_type))


@dataclass(frozen=True)
class ZeroCurve:
    """
    Continuously compounded zero curve bootstrapped from instrument prices.

    Discount factors between knots are interpolated linearly in log space;
    before the first knot the first knot's flat zero rate is used.
    """
    zero_rates: Tuple[TenorRate, ...]
    discount_factors: Tuple[DiscountFactor, ...]
    forward_rates: Tuple[ForwardRate, ...]
    warnings: Tuple[str, ...] = field(default_factory=tuple)


# ---------- interpolation / forwards ----------

def _interpolate_spot(points: Sequence[TenorRate], t: Decimal) -> Decimal:
    if not points:
        raise InsufficientData("no spot rates available for interpolation")
    xs = [p.maturity for p in points]
    require_ascending(xs, "points")
    return linear_interpolate(xs, [p.rate for p in points], t)


def interpolate_spot_rate(points: Sequence[TenorRate], maturity: Scalar,
                          config: KernelConfig = DEFAULT_CONFIG) -> Decimal:
    """Linear interpolation on spot rates; flat beyond the first/last tenor."""
    t = to_decimal(maturity, "maturity")
    with localcontext(config.working_context()):
        rate = _interpolate_spot(points, t)
    with localcontext(config.output_context()):
        return +rate


def _interpolated_df(points: Sequence[TenorRate], t: Decimal, freq: Decimal, config: KernelConfig) -> Decimal:
    spot = _interpolate_spot(points, t)
    compound = power(ONE + spot / freq, t * freq, config)
    if compound == 0:
        raise DivisionByZero(f"interpolated discount factor at t={t}")
    return ONE / compound


def discount_factor_at(curve: SpotCurve, maturity: Scalar, coupon_frequency: int = 2,
                       config: KernelConfig = DEFAULT_CONFIG) -> Decimal:
    """Discount factor at any maturity from a bootstrapped spot curve."""
    t = to_decimal(maturity, "maturity")
    if t < 0:
        raise InvalidInput("maturity", "must be non-negative")
    require_frequency(coupon_frequency)
    if t == 0:
        return ONE
    with localcontext(config.working_context()):
        df = _interpolated_df(curve.spot_rates, t, Decimal(coupon_frequency), config)
    with localcontext(config.output_context()):
        return +df


def forward_rate(s1: Scalar, t1: Scalar, s2: Scalar, t2: Scalar,
                 config: KernelConfig = DEFAULT_CONFIG) -> Decimal:
    """
    No-arbitrage forward rate between t1 and t2:

        (1 + f)^(t2 - t1) = (1 + s2)^t2 / (1 + s1)^t1
    """
    s1, t1 = to_decimal(s1, "s1"), to_decimal(t1, "t1")
    s2, t2 = to_decimal(s2, "s2"), to_decimal(t2, "t2")

    with localcontext(config.working_context()):
        dt = t2 - t1
        if dt <= 0:
            raise InvalidInput("t2", "must be after t1")

        compound2 = power(ONE + s2, t2, config)
        compound1 = power(ONE + s1, t1, config)
        if compound1 == 0:
            raise DivisionByZero(f"forward rate compound factor at t={t1}")

        fwd = power(compound2 / compound1, ONE / dt, config) - ONE

    with localcontext(config.output_context()):
        return +fwd


def _forward_curve(points: Sequence[TenorRate], config: KernelConfig) -> Tuple[ForwardRate, ...]:
    out: List[ForwardRate] = []
    for prev, cur in zip(points, points[1:]):
        rate = forward_rate(prev.rate, prev.maturity, cur.rate, cur.maturity, config)
        out.append(ForwardRate(start=prev.maturity, end=cur.maturity, rate=rate))
    return tuple(out)


# ---------- par-curve bootstrap ----------

def validate_par_instruments(instruments: Sequence[ParInstrument], config: KernelConfig = DEFAULT_CONFIG) -> None:
    if len(instruments) < 2:
        raise InsufficientData("bootstrap requires at least 2 par instruments")

    for i, inst in enumerate(instruments):
        require_positive(inst.maturity_years, f"par_instruments[{i}].maturity_years")
        require_frequency(inst.coupon_frequency, f"par_instruments[{i}].coupon_frequency")
        with localcontext(config.working_context()):
            count_periods(inst.maturity_years, inst.coupon_frequency, config.max_coupon_periods,
                          f"par_instruments[{i}].maturity_years")
            if ONE + inst.par_rate / inst.coupon_frequency <= 0:
                raise InvalidInput(f"par_instruments[{i}].par_rate", "periodic rate must be above -100%")

    require_ascending([inst.maturity_years for inst in instruments], "par_instruments")


def _solve_spot_from_df(df: Decimal, n_periods: Decimal, freq: Decimal, maturity: Decimal,
                        config: KernelConfig):
    """Solve (1 + s)^n = 1 / DF for the periodic spot s; returns the Converged outcome."""
    inv_df = ONE / df
    n_int = round_periods(n_periods)

    if is_integral(n_periods) and 1 <= n_int <= _NTH_ROOT_GUESS_MAX_PERIODS:
        guess = nth_root(inv_df, n_int, config) - ONE
    else:
        guess = (inv_df - ONE) / max(n_int, 1)

    def f(s: Decimal) -> Decimal:
        return power(ONE + s, n_periods, config) - inv_df

    def f_prime(s: Decimal) -> Decimal:
        return n_periods * power(ONE + s, n_periods - ONE, config)

    outcome = newton_solve(
        f,
        f_prime,
        initial_guess=guess,
        tolerance=config.spot_tolerance,
        max_iterations=config.spot_max_iterations,
        bounds=config.rate_bounds,
        relaxed_tolerance=config.relaxed_tolerance,
    )
    return require_converged(outcome, f"spot solve at {maturity}y")


def bootstrap_spot_curve(instruments: Iterable[ParInstrument],
                         config: KernelConfig = DEFAULT_CONFIG) -> SpotCurve:
    """
    Bootstrap spot rates from par instruments sorted by ascending maturity.

    - first instrument: spot = par rate
    - later instruments: coupon-date discount factors come from linear
      interpolation over the spots bootstrapped so far, the terminal factor
      from par = c * sum(DF_i) + (1 + c) * DF_n, and the spot from
      (1 + s)^n = 1 / DF_n by Newton-Raphson
    - fails fast on the first instrument that cannot be bootstrapped

    Unsorted or duplicate maturities raise InvalidInput; the input is never
    re-ordered.
    """
    instruments = tuple(instruments)
    validate_par_instruments(instruments, config)

    spots: List[TenorRate] = []
    dfs: List[DiscountFactor] = []
    warnings: List[str] = []

    with localcontext(config.working_context()):
        for idx, inst in enumerate(instruments):
            freq = Decimal(inst.coupon_frequency)
            periodic = inst.par_rate / freq
            n_periods = inst.maturity_years * freq

            if idx == 0:
                spot = inst.par_rate
                df = ONE / power(ONE + periodic, n_periods, config)
            else:
                pv_known = ZERO
                for p in range(1, round_periods(n_periods)):
                    t = Decimal(p) / freq
                    pv_known += periodic * _interpolated_df(spots, t, freq, config)

                final_payment = ONE + periodic
                if final_payment == 0:
                    raise DivisionByZero(f"bootstrap final payment at {inst.maturity_years}y")

                df = (ONE - pv_known) / final_payment
                if df <= 0:
                    raise FinancialImpossibility(
                        f"negative discount factor at maturity {inst.maturity_years} years"
                    )

                solved = _solve_spot_from_df(df, n_periods, freq, inst.maturity_years, config)
                if solved.relaxed:
                    msg = (
                        f"spot at {inst.maturity_years}y converged with relaxed tolerance "
                        f"(residual: {solved.residual})"
                    )
                    logger.warning(msg)
                    warnings.append(msg)
                spot = solved.value * freq

            with localcontext(config.output_context()):
                spots.append(TenorRate(maturity=inst.maturity_years, rate=+spot))
                dfs.append(DiscountFactor(maturity=inst.maturity_years, factor=+df))

    forwards = _forward_curve(spots, config)
    logger.debug("bootstrapped %d spot rates", len(spots))

    return SpotCurve(
        spot_rates=tuple(spots),
        discount_factors=tuple(dfs),
        forward_rates=forwards,
        warnings=tuple(warnings),
    )


# ---------- price bootstrap (continuous compounding) ----------

_FACE = Decimal(100)


def validate_bootstrap_instruments(instruments: Sequence[BootstrapInstrument],
                                   config: KernelConfig = DEFAULT_CONFIG) -> None:
    if not instruments:
        raise InsufficientData("bootstrapping requires at least 1 instrument")

    for i, inst in enumerate(instruments):
        require_positive(inst.maturity, f"instruments[{i}].maturity")
        require_positive(inst.price, f"instruments[{i}].price")
        with localcontext(config.working_context()):
            count_periods(inst.maturity, 1, config.max_coupon_periods, f"instruments[{i}].maturity")

    require_ascending([inst.maturity for inst in instruments], "instruments")


def _log_linear_df(knots: Sequence[DiscountFactor], t: Decimal, config: KernelConfig) -> Decimal:
    if not knots:
        raise InsufficientData(f"no discount factors known before coupon date t={t}")

    first, last = knots[0], knots[-1]
    if t <= first.maturity:
        rate = -ln(first.factor, config) / first.maturity
        return exp(-rate * t, config)
    if t >= last.maturity:
        return last.factor

    for lo, hi in zip(knots, knots[1:]):
        if lo.maturity <= t <= hi.maturity:
            w = (t - lo.maturity) / (hi.maturity - lo.maturity)
            ln_lo = ln(lo.factor, config)
            ln_hi = ln(hi.factor, config)
            return exp(ln_lo + w * (ln_hi - ln_lo), config)

    return last.factor


def bootstrap_zero_curve(instruments: Iterable[BootstrapInstrument],
                         config: KernelConfig = DEFAULT_CONFIG) -> ZeroCurve:
    """
    Piecewise bootstrap of continuously compounded zero rates from prices.

    Zero-coupon instruments: DF = price / 100. Par bonds and swaps pay
    annual coupons; earlier coupon discount factors are interpolated
    log-linearly from the knots already built and the terminal factor is
    solved from price = sum(coupon * DF_i) + (coupon + 100) * DF_n.
    """
    instruments = tuple(instruments)
    validate_bootstrap_instruments(instruments, config)

    zeros: List[TenorRate] = []
    dfs: List[DiscountFactor] = []

    with localcontext(config.working_context()):
        for inst in instruments:
            if inst.instrument_type is InstrumentType.ZERO_COUPON:
                df = inst.price / _FACE
            else:
                annual_coupon = _FACE * inst.coupon_rate
                pv_coupons = ZERO
                for t in range(1, round_periods(inst.maturity)):
                    pv_coupons += annual_coupon * _log_linear_df(dfs, Decimal(t), config)

                cf_final = annual_coupon + _FACE
                if cf_final == 0:
                    raise DivisionByZero(
                        f"bootstrap: final cashflow is zero for instrument at maturity {inst.maturity}"
                    )
                df = (inst.price - pv_coupons) / cf_final

            if df <= 0:
                raise FinancialImpossibility(f"non-positive discount factor at maturity {inst.maturity}")

            rate = -ln(df, config) / inst.maturity

            with localcontext(config.output_context()):
                zeros.append(TenorRate(maturity=inst.maturity, rate=+rate))
                dfs.append(DiscountFactor(maturity=inst.maturity, factor=+df))

        forwards: List[ForwardRate] = []
        for prev, cur in zip(zeros, zeros[1:]):
            dt = cur.maturity - prev.maturity
            fwd = (cur.rate * cur.maturity - prev.rate * prev.maturity) / dt
            with localcontext(config.output_context()):
                forwards.append(ForwardRate(start=prev.maturity, end=cur.maturity, rate=+fwd))

    return ZeroCurve(zero_rates=tuple(zeros), discount_factors=tuple(dfs), forward_rates=tuple(forwards))


# ---------- QC ----------

def curve_qc_report(curve: Union[SpotCurve, ZeroCurve]) -> pd.DataFrame:
    """Per-tenor table with positivity and monotonicity flags on the discount factors."""
    points = curve.spot_rates if isinstance(curve, SpotCurve) else curve.zero_rates
    maturities = np.array([float(p.maturity) for p in points], dtype=float)
    rates = np.array([float(p.rate) for p in points], dtype=float)
    dfs = np.array([float(d.factor) for d in curve.discount_factors], dtype=float)
    fwds = np.r_[np.nan, [float(f.rate) for f in curve.forward_rates]]

    return pd.DataFrame(
        {
            "maturity": maturities,
            "rate": rates,
            "df": dfs,
            "forward_into": fwds,
            "df_positive": dfs > 0,
            "df_monotone": np.r_[True, np.diff(dfs) <= 1e-10],
        }
    )
