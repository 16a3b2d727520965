"""
Reciprocal Allocation - Simultaneous solution of mutually dependent pools.

For a cyclic component with direct (plus upstream) cost vector c and
inter-pool fraction matrix A, where A[i][j] is the fraction of pool j's
cost consumed by pool i, the fully loaded costs x satisfy

    x = c + A x        i.e.        (I - A) x = c

Small components are solved exactly by Gauss elimination with partial
pivoting; large ones by fixed-point relaxation x(k+1) = c + A x(k). All
arithmetic is Decimal at WORKING_PRECISION; numpy is only used for the
spectral radius reported when a solve fails.
"""
from decimal import Decimal, localcontext
from threading import Event
from typing import List, Optional, Sequence, Tuple
import logging
import time

import numpy as np

from ...modules.money import WORKING_PRECISION
from ..exceptions import CostingRunCancelled, NonConvergentError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")

# Pivots smaller than this mean I - A is singular
SINGULAR_PIVOT = Decimal("1E-30")

Matrix = List[List[Decimal]]


def spectral_radius(matrix: Matrix) -> Optional[float]:
    """Largest absolute eigenvalue of A; relaxation converges only below 1."""
    if not matrix:
        return None
    values = np.linalg.eigvals(np.array([[float(v) for v in row] for row in matrix], dtype=float))
    return float(np.max(np.abs(values)))


def solve_by_elimination(
    matrix: Matrix,
    constants: Sequence[Decimal],
    pool_ids: Sequence[str],
) -> List[Decimal]:
    """
    Solve (I - A) x = c exactly by Gauss elimination with partial pivoting.

    Args:
        matrix: A, square, rows and columns in pool_ids order
        constants: c
        pool_ids: Pool ids of the component, for error reporting

    Raises:
        NonConvergentError: when I - A is singular
    """
    n = len(constants)
    with localcontext() as ctx:
        ctx.prec = WORKING_PRECISION

        # Augmented matrix [I - A | c]
        rows = [
            [(ONE if r == s else ZERO) - matrix[r][s] for s in range(n)] + [constants[r]]
            for r in range(n)
        ]

        for col in range(n):
            pivot_row = max(range(col, n), key=lambda r: (abs(rows[r][col]), -r))
            if abs(rows[pivot_row][col]) < SINGULAR_PIVOT:
                raise NonConvergentError(
                    pool_ids,
                    "the pools pass all of their cost around the cycle (I - A is singular)",
                    spectral_radius=spectral_radius(matrix),
                )
            if pivot_row != col:
                rows[col], rows[pivot_row] = rows[pivot_row], rows[col]

            pivot = rows[col][col]
            for r in range(col + 1, n):
                factor = rows[r][col] / pivot
                if factor == 0:
                    continue
                for s in range(col, n + 1):
                    rows[r][s] -= factor * rows[col][s]

        solution = [ZERO] * n
        for r in range(n - 1, -1, -1):
            acc = rows[r][n]
            for s in range(r + 1, n):
                acc -= rows[r][s] * solution[s]
            solution[r] = acc / rows[r][r]

    return solution


def solve_by_relaxation(
    matrix: Matrix,
    constants: Sequence[Decimal],
    pool_ids: Sequence[str],
    max_iterations: int,
    tolerance: Decimal,
    deadline: Optional[float] = None,
    cancel_event: Optional[Event] = None,
) -> Tuple[List[Decimal], int]:
    """
    Solve x = c + A x by fixed-point iteration.

    Each iteration depends on the previous one, so a component is always
    iterated sequentially.

    Args:
        matrix: A
        constants: c
        pool_ids: Pool ids of the component, for error reporting
        max_iterations: Iteration budget
        tolerance: Converged when no pool moves more than this
        deadline: time.monotonic() value after which the solve gives up
        cancel_event: Aborts the solve when set

    Returns:
        (solution, iterations used)

    Raises:
        NonConvergentError: when the budget is exhausted
        CostingRunCancelled: when cancel_event is set
    """
    n = len(constants)
    delta = ZERO
    with localcontext() as ctx:
        ctx.prec = WORKING_PRECISION
        current = list(constants)

        for iteration in range(1, max_iterations + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise CostingRunCancelled("reciprocal relaxation")
            if deadline is not None and time.monotonic() > deadline:
                raise NonConvergentError(
                    pool_ids,
                    f"time budget exhausted after {iteration - 1} iterations",
                    iterations=iteration - 1,
                    last_delta=str(delta),
                    spectral_radius=spectral_radius(matrix),
                )

            following = [
                constants[r] + sum((matrix[r][s] * current[s] for s in range(n)), ZERO)
                for r in range(n)
            ]
            delta = max(abs(following[r] - current[r]) for r in range(n))
            current = following

            if delta <= tolerance:
                logger.debug(
                    f"Relaxation of [{', '.join(pool_ids)}] converged after "
                    f"{iteration} iterations (delta {delta:.3E})"
                )
                return current, iteration

    raise NonConvergentError(
        pool_ids,
        f"no fixed point within {max_iterations} iterations (last change {delta:.3E})",
        iterations=max_iterations,
        last_delta=str(delta),
        spectral_radius=spectral_radius(matrix),
    )
