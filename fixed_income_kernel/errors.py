from __future__ import annotations

from decimal import Decimal
from typing import Optional


class KernelError(ValueError):
    """Base class for every failure raised by the kernel."""


class InvalidInput(KernelError):
    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")


class InsufficientData(KernelError):
    pass


class DivisionByZero(KernelError):
    pass


class SingularSystem(DivisionByZero):
    pass


class ConvergenceFailure(KernelError):
    """
    Iteration cap exhausted without meeting the tolerance.

    Carries the iteration count and the last residual so callers can
    report how far off the solve ended.
    """

    def __init__(self, function: str, iterations: int, last_residual: Optional[Decimal] = None):
        self.function = function
        self.iterations = iterations
        self.last_residual = last_residual
        super().__init__(
            f"{function} did not converge after {iterations} iterations "
            f"(last residual: {last_residual})"
        )


class FinancialImpossibility(KernelError):
    pass
