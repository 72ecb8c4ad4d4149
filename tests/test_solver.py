from decimal import Decimal, localcontext

import pytest

from fixed_income_kernel.config import DEFAULT_CONFIG
from fixed_income_kernel.errors import ConvergenceFailure
from fixed_income_kernel.solver import Converged, Diverged, newton_solve, require_converged


@pytest.fixture(autouse=True)
def working_precision():
    with localcontext(DEFAULT_CONFIG.working_context()):
        yield


def test_converges_on_square_root_of_two():
    outcome = newton_solve(
        lambda x: x * x - 2,
        lambda x: 2 * x,
        initial_guess=Decimal(1),
        tolerance=Decimal("1e-20"),
        max_iterations=50,
    )
    assert isinstance(outcome, Converged)
    assert abs(outcome.value - Decimal("1.414213562373095048801688724")) < Decimal("1e-20")
    assert not outcome.relaxed
    assert outcome.iterations < 10


def test_zero_derivative_diverges_immediately():
    outcome = newton_solve(
        lambda x: x * x + 1,
        lambda x: 2 * x,
        initial_guess=Decimal(0),
        tolerance=Decimal("1e-10"),
        max_iterations=50,
    )
    assert isinstance(outcome, Diverged)
    assert outcome.iterations_used == 0
    assert outcome.reason == "zero derivative"
    assert outcome.last_residual == 1


def test_iterates_are_clamped_into_bounds():
    outcome = newton_solve(
        lambda x: x - 10,
        lambda x: Decimal(1),
        initial_guess=Decimal(0),
        tolerance=Decimal("1e-10"),
        max_iterations=5,
        bounds=(Decimal("-0.5"), Decimal("2.0")),
    )
    assert isinstance(outcome, Diverged)
    assert outcome.iterations_used == 5
    assert outcome.last_residual == 8


def test_relaxed_tolerance_after_cap():
    # a deliberately wrong slope halves the residual each step
    kwargs = dict(
        f=lambda x: x - 1,
        f_prime=lambda x: Decimal(2),
        initial_guess=Decimal(0),
        tolerance=Decimal("1e-9"),
        max_iterations=10,
    )
    relaxed = newton_solve(relaxed_tolerance=Decimal("0.01"), **kwargs)
    assert isinstance(relaxed, Converged)
    assert relaxed.relaxed
    assert relaxed.iterations == 10
    assert relaxed.residual == Decimal("0.0009765625")

    strict = newton_solve(**kwargs)
    assert isinstance(strict, Diverged)


def test_require_converged_raises_with_context():
    outcome = Diverged(last_residual=Decimal("0.5"), iterations_used=50)
    with pytest.raises(ConvergenceFailure) as err:
        require_converged(outcome, "YTM Newton-Raphson")
    assert err.value.iterations == 50
    assert err.value.last_residual == Decimal("0.5")
    assert "YTM Newton-Raphson" in str(err.value)

    ok = Converged(value=Decimal("0.03"), iterations=3, residual=Decimal(0))
    assert require_converged(ok, "anything") is ok
