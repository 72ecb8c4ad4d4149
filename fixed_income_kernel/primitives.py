"""
Deterministic transcendental functions on Decimal.

No float and no math module: every value comes from a series expansion or a
fixed-iteration Newton scheme whose term counts, caps and tolerances are read
from KernelConfig. Intermediate arithmetic runs at config.precision plus
guard digits; results are rounded back to config.precision.

exp      : Taylor series with half-angle reduction
ln       : binary range reduction + atanh series
sqrt     : power-of-100 scaling + Newton
nth_root : Newton from an initial guess of 1
power    : square-and-multiply for integer exponents, exp/ln otherwise
"""
from __future__ import annotations

import logging
from decimal import Decimal, Overflow, ROUND_FLOOR, localcontext

from .config import DEFAULT_CONFIG, KernelConfig
from .errors import ConvergenceFailure, DivisionByZero, InvalidInput
from .utils import ONE, TWO, ZERO, Scalar, is_integral, to_decimal

logger = logging.getLogger(__name__)

# ln(2) to 40 significant digits
LN2 = Decimal("0.6931471805599453094172321214581765680755")

_HALF = Decimal("0.5")

__all__ = ["LN2", "exp", "ln", "sqrt", "nth_root", "power"]


def _round_out(value: Decimal, config: KernelConfig) -> Decimal:
    with localcontext(config.output_context()):
        return +value


# ---------- exp ----------

def _exp(x: Decimal, config: KernelConfig) -> Decimal:
    if x == 0:
        return ONE
    if x < config.exp_floor:
        return ZERO
    if x > config.exp_ceiling:
        logger.debug("exp(%s) saturated at ceiling %s", x, config.exp_ceiling)
        x = config.exp_ceiling

    if abs(x) > config.exp_reduction_threshold:
        half = _exp(x / TWO, config)
        return half * half

    total = ONE
    term = ONE
    for k in range(1, config.exp_taylor_terms):
        term = term * x / k
        total += term
    return total


def exp(x: Scalar, config: KernelConfig = DEFAULT_CONFIG) -> Decimal:
    """
    e^x from a fixed-length Taylor series.

    - exp(0) == 1 exactly
    - x < config.exp_floor returns exactly 0
    - x > config.exp_ceiling saturates at exp(exp_ceiling)
    - |x| > exp_reduction_threshold uses exp(x) = exp(x/2)^2
    """
    x = to_decimal(x, "x")
    with localcontext(config.working_context()):
        result = _exp(x, config)
    return _round_out(result, config)


# ---------- ln ----------

def _ln(x: Decimal, config: KernelConfig) -> Decimal:
    if x <= 0:
        raise InvalidInput("x", f"ln requires x > 0, got {x}")
    if x == 1:
        return ZERO

    val = x
    k = 0
    while val > TWO:
        val = val / TWO
        k += 1
    while val < _HALF:
        val = val * TWO
        k -= 1

    # ln(v) = 2 * atanh(u), |u| <= 1/3 on [0.5, 2]
    u = (val - ONE) / (val + ONE)
    u_sq = u * u
    term = u
    total = u
    for n in range(1, config.ln_series_terms):
        term = term * u_sq
        total += term / (2 * n + 1)

    return TWO * total + k * LN2


def ln(x: Scalar, config: KernelConfig = DEFAULT_CONFIG) -> Decimal:
    """
    Natural logarithm for x > 0.

    Raises InvalidInput for x <= 0. ln(1) == 0 exactly.
    """
    x = to_decimal(x, "x")
    with localcontext(config.working_context()):
        result = _ln(x, config)
    return _round_out(result, config)


# ---------- sqrt ----------

def _sqrt(x: Decimal, config: KernelConfig) -> Decimal:
    if x <= 0:
        return ZERO
    if x == 1:
        return ONE

    # x = reduced * 100^k with reduced in [1, 100); the shift is exact
    k = x.adjusted() // 2
    reduced = x.scaleb(-2 * k)

    guess = (reduced + ONE) / TWO
    for _ in range(config.sqrt_max_iterations):
        nxt = (guess + reduced / guess) / TWO
        if abs(nxt - guess) < config.sqrt_tolerance:
            guess = nxt
            break
        guess = nxt

    return guess.scaleb(k)


def sqrt(x: Scalar, config: KernelConfig = DEFAULT_CONFIG) -> Decimal:
    """
    Square root by Newton iteration.

    Non-positive input returns 0 rather than raising.
    """
    x = to_decimal(x, "x")
    with localcontext(config.working_context()):
        result = _sqrt(x, config)
    return _round_out(result, config)


# ---------- integer powers / nth root ----------

def _int_power(base: Decimal, n: int) -> Decimal:
    """base**n for n >= 0 by square-and-multiply."""
    result = ONE
    b = base
    while n > 0:
        if n & 1:
            result = result * b
        n >>= 1
        if n:
            b = b * b
    return result


def _nth_root(x: Decimal, n: int, config: KernelConfig) -> Decimal:
    if x < 0:
        raise InvalidInput("x", f"nth_root requires x >= 0, got {x}")
    if x == 0 or x == 1 or n == 1:
        return x

    guess = ONE
    for iteration in range(config.nth_root_max_iterations):
        g_prev = _int_power(guess, n - 1)
        if g_prev == 0:
            raise DivisionByZero(f"nth_root: derivative vanished at iteration {iteration}")

        delta = (g_prev * guess - x) / (n * g_prev)
        guess -= delta
        if abs(delta) < config.nth_root_tolerance:
            return guess

    residual = abs(_int_power(guess, n) - x)
    raise ConvergenceFailure("nth_root", config.nth_root_max_iterations, residual)


def nth_root(x: Scalar, n: int, config: KernelConfig = DEFAULT_CONFIG) -> Decimal:
    """
    Real n-th root by Newton's method on g^n - x = 0 starting from g = 1.

    The starting point assumes x is close to 1 (the usual 1 - small rate
    argument). Converges for n <= 12 and x in (0, 1) well inside
    config.nth_root_max_iterations; exhausting the cap raises
    ConvergenceFailure.
    """
    if isinstance(n, bool) or not isinstance(n, int) or n < 1:
        raise InvalidInput("n", f"root degree must be a positive integer, got {n!r}")
    x = to_decimal(x, "x")
    with localcontext(config.working_context()):
        result = _nth_root(x, n, config)
    return _round_out(result, config)


# ---------- power ----------

def _power(base: Decimal, exponent: Decimal, config: KernelConfig) -> Decimal:
    if exponent == 0:
        return ONE
    if base == 1:
        return ONE

    if is_integral(exponent):
        n = int(exponent)
        if base == 0:
            if n < 0:
                raise DivisionByZero("power: zero base with negative exponent")
            return ZERO
        result = _int_power(base, abs(n))
        return ONE / result if n < 0 else result

    if base <= 0:
        raise InvalidInput("base", f"non-integer exponent requires a positive base, got {base}")

    whole = exponent.to_integral_value(rounding=ROUND_FLOOR)
    frac = exponent - whole
    n = int(whole)

    int_part = _int_power(base, abs(n))
    if n < 0:
        int_part = ONE / int_part

    return int_part * _exp(frac * _ln(base, config), config)


def power(base: Scalar, exponent: Scalar, config: KernelConfig = DEFAULT_CONFIG) -> Decimal:
    """
    base ** exponent.

    - exponent == 0 returns 1 for any base (zero and negative included)
    - base == 1 returns 1 for any exponent
    - integer exponents: repeated squaring, exact to working precision
    - real exponents: base^floor(e) * exp(frac(e) * ln(base)); base <= 0
      raises InvalidInput
    - a result beyond the decimal exponent range raises InvalidInput
    """
    base = to_decimal(base, "base")
    exponent = to_decimal(exponent, "exponent")
    try:
        with localcontext(config.working_context()):
            result = _power(base, exponent, config)
    except Overflow:
        raise InvalidInput("exponent", f"{base} ** {exponent} overflows the decimal range") from None
    return _round_out(result, config)
