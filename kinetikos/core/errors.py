"""
Error taxonomy for the numerical core.

"Unavailable" is not an exception: estimators return None for it.
Only conditions a caller can act on are raised.
"""


class KinetikosError(Exception):
    """Base class for all kinetikos errors."""


class SingularMatrixError(KinetikosError):
    """Least-squares or regression design matrix is not invertible."""


class NonPositiveDefiniteError(KinetikosError):
    """Cholesky precondition violated (matrix not symmetric positive-definite)."""

    def __init__(self, message: str, index: int = -1):
        self.index = index
        super().__init__(message)


class ComputationCancelled(KinetikosError):
    """Raised when a cancellation token fires during a computation."""


class ModelSelectionError(KinetikosError):
    """No candidate regime model could be fitted."""
