from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import List, Optional, Sequence, Tuple

from .config import DEFAULT_CONFIG, KernelConfig, ZeroPivotPolicy
from .errors import InvalidInput, SingularSystem
from .utils import ZERO, to_decimal

logger = logging.getLogger(__name__)

Matrix = Sequence[Sequence[Decimal]]
Vector = Sequence[Decimal]

__all__ = [
    "LinearSolution",
    "ZeroPivotPolicy",
    "determinant_3x3",
    "normal_equations",
    "solve_3x3",
    "solve_4x4",
]


@dataclass(frozen=True)
class LinearSolution:
    values: Tuple[Decimal, ...]
    skipped_columns: Tuple[int, ...] = ()
    warnings: Tuple[str, ...] = ()


def _coerce_system(a: Matrix, b: Vector, n: int):
    if len(a) != n or any(len(row) != n for row in a):
        raise InvalidInput("a", f"expected a {n}x{n} matrix")
    if len(b) != n:
        raise InvalidInput("b", f"expected a vector of length {n}")
    matrix = [[to_decimal(v, "a") for v in row] for row in a]
    vector = [to_decimal(v, "b") for v in b]
    return matrix, vector


def normal_equations(rows: Sequence[Vector], targets: Vector) -> Tuple[Tuple[Tuple[Decimal, ...], ...], Tuple[Decimal, ...]]:
    """
    Accumulate (X^T X, X^T y) for design rows X and observations y.

    Runs in the caller's decimal context.
    """
    if len(rows) != len(targets):
        raise InvalidInput("targets", "one target per design row is required")
    if not rows:
        raise InvalidInput("rows", "design matrix is empty")

    k = len(rows[0])
    xtx = [[ZERO] * k for _ in range(k)]
    xty = [ZERO] * k

    for row, y in zip(rows, targets):
        if len(row) != k:
            raise InvalidInput("rows", "design rows must all have the same length")
        for i in range(k):
            xty[i] += row[i] * y
            for j in range(k):
                xtx[i][j] += row[i] * row[j]

    return tuple(tuple(r) for r in xtx), tuple(xty)


def determinant_3x3(a: Matrix) -> Decimal:
    """Cofactor expansion along the first row."""
    return (
        a[0][0] * (a[1][1] * a[2][2] - a[1][2] * a[2][1])
        - a[0][1] * (a[1][0] * a[2][2] - a[1][2] * a[2][0])
        + a[0][2] * (a[1][0] * a[2][1] - a[1][1] * a[2][0])
    )


def solve_3x3(a: Matrix, b: Vector, config: KernelConfig = DEFAULT_CONFIG) -> Tuple[Decimal, Decimal, Decimal]:
    """
    Solve A x = b by Cramer's rule.

    |det(A)| <= config.singular_tolerance raises SingularSystem; the solver
    never divides by a near-zero determinant.
    """
    a, b = _coerce_system(a, b, 3)

    with localcontext(config.working_context()):
        det = determinant_3x3(a)
        if abs(det) <= config.singular_tolerance:
            raise SingularSystem(f"singular 3x3 system (det={det})")

        out: List[Decimal] = []
        for col in range(3):
            replaced = [[b[r] if c == col else a[r][c] for c in range(3)] for r in range(3)]
            out.append(determinant_3x3(replaced) / det)

    with localcontext(config.output_context()):
        return (+out[0], +out[1], +out[2])


def solve_4x4(
    a: Matrix,
    b: Vector,
    zero_pivot_policy: Optional[ZeroPivotPolicy] = None,
    config: KernelConfig = DEFAULT_CONFIG,
) -> LinearSolution:
    """
    Solve A x = b by Gaussian elimination with partial pivoting.

    For each column the row with the largest-magnitude entry is swapped into
    the pivot position. A column whose best pivot is zero (magnitude at most
    config.singular_tolerance, the threshold solve_3x3 applies to its
    determinant) is handled by `zero_pivot_policy` (config.zero_pivot_policy
    when None):
      - SKIP: the column is left out, its coefficient is reported as zero
        and a warning is attached to the solution
      - RAISE: SingularSystem
    """
    a, b = _coerce_system(a, b, 4)
    policy = ZeroPivotPolicy(zero_pivot_policy or config.zero_pivot_policy)

    skipped: List[int] = []

    with localcontext(config.working_context()):
        aug = [list(a[i]) + [b[i]] for i in range(4)]

        for col in range(4):
            max_row = col
            max_val = abs(aug[col][col])
            for row in range(col + 1, 4):
                val = abs(aug[row][col])
                if val > max_val:
                    max_val = val
                    max_row = row

            if max_val <= config.singular_tolerance:
                if policy is ZeroPivotPolicy.RAISE:
                    raise SingularSystem(f"zero pivot in column {col} of 4x4 system")
                skipped.append(col)
                continue

            if max_row != col:
                aug[col], aug[max_row] = aug[max_row], aug[col]

            pivot = aug[col][col]
            for row in range(col + 1, 4):
                factor = aug[row][col] / pivot
                if factor == 0:
                    continue
                for j in range(col, 5):
                    aug[row][j] -= factor * aug[col][j]

        x = [ZERO] * 4
        for i in range(3, -1, -1):
            if i in skipped or abs(aug[i][i]) <= config.singular_tolerance:
                if i not in skipped:
                    skipped.append(i)
                continue
            total = aug[i][4]
            for j in range(i + 1, 4):
                total -= aug[i][j] * x[j]
            x[i] = total / aug[i][i]

    warnings: Tuple[str, ...] = ()
    if skipped:
        if policy is ZeroPivotPolicy.RAISE:
            raise SingularSystem(f"zero pivot in column(s) {sorted(skipped)} of 4x4 system")
        msg = f"zero pivot in column(s) {sorted(skipped)}; coefficient(s) reported as zero"
        logger.warning(msg)
        warnings = (msg,)

    with localcontext(config.output_context()):
        values = tuple(+v for v in x)

    return LinearSolution(values=values, skipped_columns=tuple(sorted(skipped)), warnings=warnings)
