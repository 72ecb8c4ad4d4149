from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from typing import Sequence, Union

from .errors import InvalidInput

Scalar = Union[Decimal, int, str, float]

ZERO = Decimal(0)
ONE = Decimal(1)
TWO = Decimal(2)

SUPPORTED_FREQUENCIES = (1, 2, 4, 12)


def to_decimal(value: Scalar, field: str = "value") -> Decimal:
    """
    Coerce an input into the kernel's fixed-scale type.

    Floats go through their shortest repr, so 0.05 becomes Decimal("0.05")
    rather than the binary expansion 0.05000000000000000277...
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise InvalidInput(field, "booleans are not numeric inputs")
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidInput(field, f"not a decimal number: {value!r}") from None
    else:
        raise InvalidInput(field, f"unsupported numeric type {type(value).__name__}")

    if not result.is_finite():
        raise InvalidInput(field, "must be finite")
    return result


def round_periods(value: Decimal) -> int:
    """Nearest whole period count (ties to even), never negative."""
    rounded = int(value.to_integral_value(rounding=ROUND_HALF_EVEN))
    return max(rounded, 0)


def is_integral(value: Decimal) -> bool:
    return value == value.to_integral_value()


def require_positive(value: Decimal, field: str) -> None:
    if value <= 0:
        raise InvalidInput(field, "must be positive")


def require_frequency(freq: int, field: str = "coupon_frequency") -> None:
    if freq not in SUPPORTED_FREQUENCIES:
        raise InvalidInput(field, f"must be one of {SUPPORTED_FREQUENCIES}, got {freq}")


def require_ascending(maturities: Sequence[Decimal], field: str) -> None:
    """Strictly ascending; equal neighbours count as a violation."""
    for i in range(1, len(maturities)):
        if maturities[i] <= maturities[i - 1]:
            raise InvalidInput(
                field,
                f"maturities must be strictly ascending (index {i}: {maturities[i]} after {maturities[i - 1]})",
            )


def clamp(value: Decimal, lower: Decimal, upper: Decimal) -> Decimal:
    if value < lower:
        return lower
    if value > upper:
        return upper
    return value


def linear_interpolate(xs: Sequence[Decimal], ys: Sequence[Decimal], x: Decimal) -> Decimal:
    """
    Piecewise-linear interpolation over ascending knots.

    Flat extrapolation on both ends (the first/last knot value is held).
    """
    if not xs:
        raise InvalidInput("xs", "no knots to interpolate over")
    if x <= xs[0]:
        return ys[0]
    if x >= xs[-1]:
        return ys[-1]

    for i in range(len(xs) - 1):
        x0, x1 = xs[i], xs[i + 1]
        if x0 <= x <= x1:
            span = x1 - x0
            if span == 0:
                return ys[i]
            w = (x - x0) / span
            return ys[i] + w * (ys[i + 1] - ys[i])

    return ys[-1]


def count_periods(years: Decimal, freq: int, max_periods: int, field: str = "years_to_maturity") -> int:
    """Rounded coupon period count, bounded by `max_periods`. Runs in the caller's context."""
    n = round_periods(years * freq)
    if n > max_periods:
        raise InvalidInput(field, f"{n} coupon periods exceeds the cap of {max_periods}")
    return n
