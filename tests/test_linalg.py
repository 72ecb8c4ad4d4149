from decimal import Decimal

import pytest

from fixed_income_kernel.config import DEFAULT_CONFIG, ZeroPivotPolicy
from fixed_income_kernel.errors import DivisionByZero, InvalidInput, SingularSystem
from fixed_income_kernel.linalg import normal_equations, solve_3x3, solve_4x4


def test_cramer_exact_solution():
    a = [[2, 1, 1], [1, 3, 2], [1, 0, 0]]
    b = [7, 13, 1]
    assert solve_3x3(a, b) == (Decimal(1), Decimal(2), Decimal(3))


def test_cramer_singular_system():
    a = [[1, 2, 3], [2, 4, 6], [1, 1, 1]]
    with pytest.raises(SingularSystem):
        solve_3x3(a, [1, 2, 3])
    # singular systems are a DivisionByZero in the error taxonomy
    with pytest.raises(DivisionByZero):
        solve_3x3(a, [1, 2, 3])


def test_gauss_tridiagonal():
    a = [[4, 1, 0, 0], [1, 4, 1, 0], [0, 1, 4, 1], [0, 0, 1, 4]]
    sol = solve_4x4(a, [6, 12, 18, 19])
    for got, want in zip(sol.values, (1, 2, 3, 4)):
        assert abs(got - want) < Decimal("1e-20")
    assert sol.skipped_columns == ()
    assert sol.warnings == ()


def test_gauss_requires_pivoting():
    a = [[0, 1, 0, 0], [1, 0, 0, 0], [0, 0, 0, 1], [0, 0, 1, 0]]
    sol = solve_4x4(a, [1, 2, 3, 4])
    assert sol.values == (Decimal(2), Decimal(1), Decimal(4), Decimal(3))


def test_zero_pivot_column_is_skipped_with_warning():
    a = [[1, 0, 0, 0], [0, 0, 0, 0], [0, 0, 1, 0], [0, 0, 0, 1]]
    sol = solve_4x4(a, [1, 0, 3, 4])
    assert sol.values == (Decimal(1), Decimal(0), Decimal(3), Decimal(4))
    assert sol.skipped_columns == (1,)
    assert len(sol.warnings) == 1 and "zero pivot" in sol.warnings[0]


def test_zero_pivot_raise_policy():
    a = [[1, 0, 0, 0], [0, 0, 0, 0], [0, 0, 1, 0], [0, 0, 0, 1]]
    with pytest.raises(SingularSystem):
        solve_4x4(a, [1, 0, 3, 4], zero_pivot_policy=ZeroPivotPolicy.RAISE)

    strict = DEFAULT_CONFIG.replace(zero_pivot_policy="raise")
    with pytest.raises(SingularSystem):
        solve_4x4(a, [1, 0, 3, 4], config=strict)


def test_near_zero_pivot_is_treated_as_zero():
    a = [[1, 0, 0, 0], [0, Decimal("1e-30"), 0, 0], [0, 0, 1, 0], [0, 0, 0, 1]]
    sol = solve_4x4(a, [1, 1, 3, 4])
    assert sol.values == (Decimal(1), Decimal(0), Decimal(3), Decimal(4))
    assert sol.skipped_columns == (1,)
    with pytest.raises(SingularSystem):
        solve_4x4(a, [1, 1, 3, 4], zero_pivot_policy=ZeroPivotPolicy.RAISE)


def test_normal_equations():
    xtx, xty = normal_equations([[1, 1], [1, 2], [1, 3]], [1, 2, 3])
    assert xtx == ((3, 6), (6, 14))
    assert xty == (6, 14)


def test_shape_validation():
    with pytest.raises(InvalidInput):
        solve_3x3([[1, 0], [0, 1]], [1, 1])
    with pytest.raises(InvalidInput):
        solve_4x4([[1, 0, 0, 0]] * 4, [1, 1, 1])
    with pytest.raises(InvalidInput):
        normal_equations([[1, 2]], [1, 2])
