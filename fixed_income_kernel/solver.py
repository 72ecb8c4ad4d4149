from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Tuple, Union

from .errors import ConvergenceFailure
from .utils import clamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Converged:
    value: Decimal
    iterations: int
    residual: Decimal
    relaxed: bool = False  # only met the relaxed tolerance after the cap


@dataclass(frozen=True)
class Diverged:
    last_residual: Decimal
    iterations_used: int
    reason: str = "iteration cap exhausted"


SolverOutcome = Union[Converged, Diverged]


def newton_solve(
    f: Callable[[Decimal], Decimal],
    f_prime: Callable[[Decimal], Decimal],
    initial_guess: Decimal,
    tolerance: Decimal,
    max_iterations: int,
    bounds: Optional[Tuple[Decimal, Decimal]] = None,
    relaxed_tolerance: Optional[Decimal] = None,
) -> SolverOutcome:
    """
    Newton-Raphson: x_{n+1} = x_n - f(x_n) / f'(x_n).

    - |f(x)| < tolerance at the top of an iteration -> Converged
    - f'(x) == 0 -> Diverged immediately (no perturbation retry)
    - each iterate is clamped into `bounds` when given
    - after max_iterations the final iterate is checked once more, first
      against `tolerance`, then against `relaxed_tolerance`; a relaxed hit
      returns Converged(relaxed=True)

    Arithmetic runs in the caller's decimal context.
    """
    x = initial_guess
    for iteration in range(max_iterations):
        fx = f(x)
        if abs(fx) < tolerance:
            logger.debug("newton_solve converged at %s after %d iterations", x, iteration)
            return Converged(value=x, iterations=iteration, residual=abs(fx))

        dfx = f_prime(x)
        if dfx == 0:
            return Diverged(last_residual=abs(fx), iterations_used=iteration, reason="zero derivative")

        x = x - fx / dfx
        if bounds is not None:
            x = clamp(x, bounds[0], bounds[1])

    residual = abs(f(x))
    if residual < tolerance:
        return Converged(value=x, iterations=max_iterations, residual=residual)
    if relaxed_tolerance is not None and residual < relaxed_tolerance:
        logger.debug("newton_solve met relaxed tolerance only (residual %s)", residual)
        return Converged(value=x, iterations=max_iterations, residual=residual, relaxed=True)

    return Diverged(last_residual=residual, iterations_used=max_iterations)


def require_converged(outcome: SolverOutcome, function: str) -> Converged:
    """Unwrap a Converged outcome or raise ConvergenceFailure."""
    if isinstance(outcome, Converged):
        return outcome
    logger.debug("%s diverged: %s", function, outcome.reason)
    raise ConvergenceFailure(function, outcome.iterations_used, outcome.last_residual)
