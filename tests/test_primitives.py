from decimal import Decimal, ROUND_DOWN, localcontext

import pytest

from fixed_income_kernel.config import DEFAULT_CONFIG
from fixed_income_kernel.errors import ConvergenceFailure, DivisionByZero, InvalidInput
from fixed_income_kernel.primitives import LN2, exp, ln, nth_root, power, sqrt

E = Decimal("2.718281828459045235360287471")
SQRT2 = Decimal("1.414213562373095048801688724")


def close(a, b, tol="1e-15"):
    return abs(Decimal(a) - Decimal(b)) < Decimal(tol)


def test_exact_edge_values():
    assert exp(0) == 1
    assert ln(1) == 0
    assert sqrt(0) == 0
    assert sqrt(-4) == 0, "non-positive sqrt is 0 by convention, not an error"


@pytest.mark.parametrize("base", [Decimal("-3"), Decimal(0), Decimal("2.5"), "0.5"])
def test_power_zero_exponent_is_one_for_any_base(base):
    assert power(base, 0) == 1


@pytest.mark.parametrize("exponent", ["3.7", "-2.25", "0.5", 12])
def test_power_of_one_is_one(exponent):
    assert power(1, exponent) == 1


def test_exp_known_value():
    assert close(exp(1), E, "1e-20")


def test_ln2_matches_constant():
    assert close(ln(2), LN2, "1e-25")


def test_exp_floor_and_ceiling():
    assert exp(-61) == 0
    assert exp(-60) > 0
    assert exp(100) == exp(DEFAULT_CONFIG.exp_ceiling), "above the ceiling exp saturates"


@pytest.mark.parametrize("x", ["-5", "-1", "-0.1", "0.5", "1", "2", "3", "10", "25"])
def test_ln_of_exp_roundtrip(x):
    assert close(ln(exp(x)), x, "1e-15")


@pytest.mark.parametrize("x", ["0.001", "0.5", "1.5", "7", "1234.5"])
def test_exp_of_ln_roundtrip(x):
    x = Decimal(x)
    assert abs(exp(ln(x)) - x) / x < Decimal("1e-15")


@pytest.mark.parametrize("x", [0, -1, "-0.5"])
def test_ln_rejects_non_positive(x):
    with pytest.raises(InvalidInput):
        ln(x)


def test_sqrt_values():
    assert close(sqrt(2), SQRT2, "1e-18")
    assert close(sqrt(144), 12, "1e-18")
    assert sqrt(Decimal("1e-8")) == Decimal("0.0001")
    assert close(sqrt("0.0004"), "0.02", "1e-20")


@pytest.mark.parametrize("n", range(2, 13))
@pytest.mark.parametrize("x", ["0.05", "0.5", "0.9", "0.999"])
def test_nth_root_power_identity(x, n):
    root = nth_root(x, n)
    assert close(power(root, n), x, "1e-6")


def test_nth_root_trivial_cases():
    assert nth_root("0.73", 1) == Decimal("0.73")
    assert nth_root(0, 5) == 0
    assert nth_root(1, 7) == 1


def test_nth_root_rejects_bad_inputs():
    with pytest.raises(InvalidInput):
        nth_root(-1, 3)
    with pytest.raises(InvalidInput):
        nth_root(2, 0)
    with pytest.raises(InvalidInput):
        nth_root(2, 2.5)


def test_nth_root_reports_iteration_cap():
    config = DEFAULT_CONFIG.replace(nth_root_max_iterations=1)
    with pytest.raises(ConvergenceFailure) as err:
        nth_root("0.5", 3, config)
    assert err.value.iterations == 1


def test_power_integer_exponents_are_exact():
    assert power(2, 10) == 1024
    assert power(2, -2) == Decimal("0.25")
    assert power(-2, 3) == -8
    assert power(0, 3) == 0


def test_power_real_exponents():
    assert close(power(4, "0.5"), 2, "1e-18")
    assert close(power("1.05", "2.5"), Decimal("1.1025") * sqrt("1.05"), "1e-18")


def test_power_guards():
    with pytest.raises(DivisionByZero):
        power(0, -1)
    with pytest.raises(InvalidInput):
        power(-2, "0.5")
    with pytest.raises(InvalidInput):
        power(10, 10**7)


def test_results_ignore_ambient_decimal_context():
    reference = (exp("0.7"), ln("3.3"), sqrt("5"), power("1.04", "7.5"))
    with localcontext() as ctx:
        ctx.prec = 6
        ctx.rounding = ROUND_DOWN
        again = (exp("0.7"), ln("3.3"), sqrt("5"), power("1.04", "7.5"))
    assert again == reference


def test_float_inputs_use_shortest_repr():
    assert exp(0.0) == 1
    assert power(0.5, 2) == Decimal("0.25")
