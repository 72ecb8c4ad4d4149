from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from decimal import Context, Decimal, ROUND_HALF_EVEN
from enum import Enum
from typing import Tuple

from .errors import InvalidInput


class ZeroPivotPolicy(str, Enum):
    """What the 4x4 eliminator does when a whole pivot column is exactly zero."""

    SKIP = "skip"    # coefficient reported as zero, warning recorded
    RAISE = "raise"  # SingularSystem


def _d(value: str) -> Decimal:
    return Decimal(value)


@dataclass(frozen=True)
class KernelConfig:
    """
    Every numeric constant the kernel depends on, in one place.

    Iteration caps and tolerances are part of each public function's
    contract: downstream results are only reproducible if these values do
    not change between runs. Build variants with `replace(...)`.
    """

    # Decimal arithmetic
    precision: int = 28
    guard_digits: int = 10
    rounding: str = ROUND_HALF_EVEN

    # exp / ln / sqrt / nth root
    exp_taylor_terms: int = 25
    exp_reduction_threshold: Decimal = _d("2")
    exp_floor: Decimal = _d("-60")
    exp_ceiling: Decimal = _d("40")
    ln_series_terms: int = 30
    sqrt_max_iterations: int = 25
    sqrt_tolerance: Decimal = _d("1E-10")
    nth_root_max_iterations: int = 40
    nth_root_tolerance: Decimal = _d("1E-13")

    # Newton-Raphson consumers
    rate_bounds: Tuple[Decimal, Decimal] = (_d("-0.5"), _d("2.0"))
    relaxed_tolerance: Decimal = _d("0.01")
    ytm_max_iterations: int = 50
    ytm_tolerance: Decimal = _d("1E-7")
    spot_max_iterations: int = 50
    spot_tolerance: Decimal = _d("1E-7")
    max_coupon_periods: int = 1200  # 100 years of monthly coupons

    # linear systems
    singular_tolerance: Decimal = _d("1E-24")
    zero_pivot_policy: ZeroPivotPolicy = ZeroPivotPolicy.SKIP

    # parametric curve fitting
    ns_lambda_grid: Tuple[Decimal, ...] = tuple(
        _d(v) for v in ("0.3", "0.5", "0.8", "1.0", "1.5", "2.0", "3.0", "5.0")
    )
    ns_refinement_deltas: Tuple[Decimal, ...] = tuple(_d(v) for v in ("-0.3", "-0.1", "0.1", "0.3"))
    svensson_lambda_grid: Tuple[Decimal, ...] = tuple(
        _d(v) for v in ("0.5", "1.0", "1.5", "2.0", "3.0", "5.0")
    )
    svensson_refinement_steps: Tuple[Decimal, ...] = tuple(_d(v) for v in ("-0.2", "0.0", "0.2"))
    fit_rmse_warning: Decimal = _d("0.01")

    def __post_init__(self):
        if self.precision < 10:
            raise InvalidInput("precision", "must be at least 10 significant digits")
        if self.guard_digits < 0:
            raise InvalidInput("guard_digits", "must be non-negative")

        for name in (
            "exp_taylor_terms",
            "ln_series_terms",
            "sqrt_max_iterations",
            "nth_root_max_iterations",
            "ytm_max_iterations",
            "spot_max_iterations",
            "max_coupon_periods",
        ):
            if getattr(self, name) < 1:
                raise InvalidInput(name, "iteration/term count must be at least 1")

        for name in (
            "sqrt_tolerance",
            "nth_root_tolerance",
            "ytm_tolerance",
            "spot_tolerance",
            "relaxed_tolerance",
            "singular_tolerance",
            "exp_reduction_threshold",
        ):
            if Decimal(getattr(self, name)) <= 0:
                raise InvalidInput(name, "must be positive")

        if self.exp_floor >= self.exp_ceiling:
            raise InvalidInput("exp_floor", "must be below exp_ceiling")

        lo, hi = self.rate_bounds
        if lo >= hi:
            raise InvalidInput("rate_bounds", "lower bound must be below upper bound")
        if lo <= -1:
            raise InvalidInput("rate_bounds", "lower bound must keep 1 + rate positive")

        if not self.ns_lambda_grid or any(v <= 0 for v in self.ns_lambda_grid):
            raise InvalidInput("ns_lambda_grid", "needs at least one positive lambda")
        if len(self.svensson_lambda_grid) < 2 or any(v <= 0 for v in self.svensson_lambda_grid):
            raise InvalidInput("svensson_lambda_grid", "needs at least two positive lambdas")

        # enums arrive as plain strings when built from a mapping
        object.__setattr__(self, "zero_pivot_policy", ZeroPivotPolicy(self.zero_pivot_policy))

    def working_context(self) -> Context:
        """Context for intermediate arithmetic: precision plus guard digits."""
        return Context(prec=self.precision + self.guard_digits, rounding=self.rounding)

    def output_context(self) -> Context:
        return Context(prec=self.precision, rounding=self.rounding)

    def replace(self, **changes) -> "KernelConfig":
        return dataclasses.replace(self, **changes)


DEFAULT_CONFIG = KernelConfig()
