"""
Statistical primitives for the particle filter.

    cholesky      Cholesky-Banachiewicz factorization with a distinct
                  NonPositiveDefiniteError for covariance misconfiguration
    MvNormal      multivariate normal sampler built on the factor
    normal_pdf    univariate Gaussian density (scalar or array)
    normal_logpdf log of the above, used for weight updates
"""

import numpy as np
from typing import Optional, Union

from kinetikos.core.errors import NonPositiveDefiniteError

ArrayLike = Union[float, np.ndarray]

_LOG_2PI = float(np.log(2.0 * np.pi))


def cholesky(a, symmetry_tol: float = 1e-10) -> np.ndarray:
    """
    Lower-triangular L with A = L @ L.T (Cholesky-Banachiewicz, row by row).

    Args:
        a: Square symmetric matrix
        symmetry_tol: Maximum tolerated |A - A.T| entry

    Returns:
        L as a float64 array

    Raises:
        NonPositiveDefiniteError: if A is not square, not symmetric, or not
            positive-definite. index is the failing diagonal (-1 for shape errors).
    """
    a = np.asarray(a, dtype=np.float64)
    if a.ndim != 2 or a.shape[0] != a.shape[1] or a.shape[0] == 0:
        raise NonPositiveDefiniteError(f"Matrix must be square and non-empty, got shape {a.shape}")
    if not np.all(np.isfinite(a)):
        raise NonPositiveDefiniteError("Matrix contains non-finite entries")
    if np.max(np.abs(a - a.T)) > symmetry_tol * max(1.0, float(np.max(np.abs(a)))):
        raise NonPositiveDefiniteError("Matrix is not symmetric")

    n = a.shape[0]
    L = np.zeros_like(a)
    for i in range(n):
        for j in range(i + 1):
            s = float(np.dot(L[i, :j], L[j, :j]))
            if i == j:
                diag = a[i, i] - s
                if diag <= 0.0:
                    raise NonPositiveDefiniteError(
                        f"Matrix is not positive-definite (failed at diagonal [{i}][{i}])",
                        index=i,
                    )
                L[i, j] = np.sqrt(diag)
            else:
                L[i, j] = (a[i, j] - s) / L[j, j]
    return L


class MvNormal:
    """Samples from N(mean, cov) as mean + L z with z ~ N(0, I)."""

    def __init__(self, mean, cov, rng: Optional[np.random.Generator] = None):
        self.mean = np.asarray(mean, dtype=np.float64).ravel()
        self.cov = np.asarray(cov, dtype=np.float64)
        if self.cov.shape != (len(self.mean), len(self.mean)):
            raise ValueError(
                f"Dimension mismatch: mean has {len(self.mean)} entries, cov is {self.cov.shape}"
            )
        self.L = cholesky(self.cov)
        self.dim = len(self.mean)
        self.rng = rng if rng is not None else np.random.default_rng()

    def sample(self, size: Optional[int] = None) -> np.ndarray:
        """One draw of shape (dim,), or `size` draws of shape (size, dim)."""
        if size is None:
            z = self.rng.standard_normal(self.dim)
            return self.mean + self.L @ z
        z = self.rng.standard_normal((size, self.dim))
        return self.mean + z @ self.L.T


def normal_logpdf(x: ArrayLike, mean: ArrayLike, std: float) -> ArrayLike:
    """Log density of N(mean, std^2). -inf everywhere when std <= 0."""
    if std <= 0:
        return np.full(np.shape(np.asarray(x) - np.asarray(mean)), -np.inf)
    z = (np.asarray(x, dtype=np.float64) - np.asarray(mean, dtype=np.float64)) / std
    return -0.5 * z * z - np.log(std) - 0.5 * _LOG_2PI


def normal_pdf(x: ArrayLike, mean: ArrayLike, std: float) -> ArrayLike:
    """Density of N(mean, std^2); 0 when std <= 0."""
    return np.exp(normal_logpdf(x, mean, std))
