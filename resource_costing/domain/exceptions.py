"""
Domain Exceptions for the Resource Costing Engine.

Custom exceptions enforcing costing rules:
- Structural validity of the allocation graph
- Non-zero capacity bases
- Convergence of reciprocal allocation
- Conservation of cost
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "DOMAIN_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)


# =============================================================================
# Validation Exceptions
# =============================================================================

@dataclass(frozen=True)
class Violation:
    """A single structural problem found in the input graph."""
    code: str
    subject_id: str
    message: str

    def __str__(self) -> str:
        return f"[{self.code}] {self.subject_id}: {self.message}"


class ValidationError(DomainError):
    """Raised when the input graph is malformed or inconsistent.

    Carries every violation found, not just the first one.
    """

    def __init__(self, violations: Sequence[Violation]):
        self.violations: List[Violation] = list(violations)
        lines = "\n".join(f"  - {v}" for v in self.violations)
        message = f"Input graph has {len(self.violations)} violation(s):\n{lines}"
        super().__init__(message, code="VALIDATION_ERROR")

    def codes(self) -> List[str]:
        """Violation codes in report order."""
        return [v.code for v in self.violations]


# =============================================================================
# Capacity Exceptions
# =============================================================================

class ZeroCapacityError(DomainError):
    """Raised when a pool's configured capacity basis quantity is zero."""

    def __init__(self, pool_ids: Sequence[str], capacity_types: Optional[dict] = None):
        self.pool_ids = tuple(pool_ids)
        self.capacity_types = dict(capacity_types or {})
        details = ", ".join(
            f"'{pool_id}' ({self.capacity_types[pool_id]})"
            if pool_id in self.capacity_types else f"'{pool_id}'"
            for pool_id in self.pool_ids
        )
        message = (
            f"Capacity basis is zero for pool(s) {details}; "
            f"cannot compute a driver rate"
        )
        super().__init__(message, code="ZERO_CAPACITY")

    @property
    def pool_id(self) -> str:
        """First offending pool."""
        return self.pool_ids[0]


# =============================================================================
# Solver Exceptions
# =============================================================================

class NonConvergentError(DomainError):
    """Raised when the reciprocal solve of a cyclic component fails."""

    def __init__(
        self,
        pool_ids: Sequence[str],
        reason: str,
        iterations: int = 0,
        last_delta: Optional[str] = None,
        spectral_radius: Optional[float] = None,
    ):
        self.pool_ids = tuple(pool_ids)
        self.reason = reason
        self.iterations = iterations
        self.last_delta = last_delta
        self.spectral_radius = spectral_radius
        message = (
            f"Reciprocal allocation did not converge for component "
            f"[{', '.join(self.pool_ids)}]: {reason}"
        )
        if spectral_radius is not None:
            message += f" (spectral radius {spectral_radius:.6f})"
        super().__init__(message, code="NON_CONVERGENT")


class CostingRunCancelled(DomainError):
    """Raised when a run is aborted through its cancel event."""

    def __init__(self, stage: str):
        super().__init__(f"Costing run cancelled during {stage}", code="RUN_CANCELLED")
        self.stage = stage


# =============================================================================
# Reconciliation Exceptions
# =============================================================================

class ReconciliationMismatchError(DomainError):
    """Raised when a result whose totals do not balance is consumed."""

    def __init__(self, discrepancy, tolerance, details: dict = None):
        message = (
            f"Allocated cost does not reconcile with input cost: "
            f"discrepancy {discrepancy} exceeds tolerance {tolerance}"
        )
        super().__init__(message, code="RECONCILIATION_MISMATCH")
        self.discrepancy = discrepancy
        self.tolerance = tolerance
        self.details = details or {}


# =============================================================================
# Configuration Exceptions
# =============================================================================

class ConfigurationError(DomainError):
    """Raised when configuration loading or validation fails."""

    def __init__(self, message: str):
        super().__init__(message, code="CONFIGURATION_ERROR")
