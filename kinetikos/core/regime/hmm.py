"""
Gaussian-Mixture Hidden Markov Model
====================================

Regime model over the 4-D state vector. Each hidden state j emits from a
mixture of M full-covariance Gaussians:

    b_j(x) = sum_m c_jm N(x; mu_jm, Sigma_jm)

Fitted by Baum-Welch:

    E-step   scaled forward/backward (emissions shifted per time step in log
             space), gamma, xi summed straight into a (k, k) accumulator,
             component responsibilities gamma_jm
    M-step   pi, A, c, mu, Sigma with every denominator guarded;
             covariances symmetrized and ridge-regularized

The (T, k) and (T, k, M) work buffers are allocated once per fit and reused
across iterations and restarts. Initialization is k-means (scikit-learn);
n_init restarts keep the best log-likelihood. Fitted states are ordered by
the mean of the first feature, so "Regime 0" is always the lowest-potential
regime.

Non-convergence within max_iter is reported in FitResult and logged; it is
never raised.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.linalg import solve_triangular
from scipy.special import logsumexp
from sklearn.cluster import KMeans

from kinetikos.core.cancellation import CancellationToken, check
from kinetikos.core.normalization import apply_zscore, compute_zscore

logger = logging.getLogger(__name__)

DEFAULT_FEATURES = ('potential', 'momentum', 'entropy', 'temperature')

_LOG_2PI = float(np.log(2.0 * np.pi))
_TINY = 1e-300
_MIN_MASS = 1e-10


@dataclass
class RegimeModelParameters:
    """Fitted GM-HMM parameters plus the feature scaling used at fit time."""
    initial_dist: np.ndarray          # (k,)
    transition_matrix: np.ndarray     # (k, k)
    mixture_weights: np.ndarray       # (k, M)
    means: np.ndarray                 # (k, M, D)
    covariances: np.ndarray           # (k, M, D, D)
    feature_mean: np.ndarray = None   # (D,)
    feature_std: np.ndarray = None    # (D,)
    feature_names: List[str] = field(default_factory=lambda: list(DEFAULT_FEATURES))

    def __post_init__(self):
        d = self.means.shape[-1]
        if self.feature_mean is None:
            self.feature_mean = np.zeros(d)
        if self.feature_std is None:
            self.feature_std = np.ones(d)

    @property
    def n_states(self) -> int:
        return self.transition_matrix.shape[0]

    @property
    def n_mix(self) -> int:
        return self.mixture_weights.shape[1]

    @property
    def n_features(self) -> int:
        return self.means.shape[-1]

    def copy(self) -> 'RegimeModelParameters':
        return RegimeModelParameters(
            initial_dist=self.initial_dist.copy(),
            transition_matrix=self.transition_matrix.copy(),
            mixture_weights=self.mixture_weights.copy(),
            means=self.means.copy(),
            covariances=self.covariances.copy(),
            feature_mean=np.array(self.feature_mean, copy=True),
            feature_std=np.array(self.feature_std, copy=True),
            feature_names=list(self.feature_names),
        )


@dataclass(frozen=True)
class FitResult:
    log_likelihood: float
    n_iter: int
    converged: bool
    history: Tuple[float, ...] = ()  # log-likelihood per EM iteration


class _Workspace:
    """EM work buffers for one sequence length."""

    def __init__(self, T: int, k: int, M: int):
        self.alpha = np.empty((T, k))
        self.beta = np.empty((T, k))
        self.scale = np.empty(T)
        self.gamma = np.empty((T, k))
        self.log_comp = np.empty((T, k, M))
        self.gamma_jm = np.empty((T, k, M))
        self.xi_sum = np.empty((k, k))


def guard_covariance(cov: np.ndarray, reg_covar: float, max_tries: int = 8) -> np.ndarray:
    """
    Symmetrize and add reg_covar * I; escalate the ridge until Cholesky succeeds.

    Raises:
        np.linalg.LinAlgError: if no tried ridge makes the matrix positive-definite
    """
    d = cov.shape[0]
    eye = np.eye(d)
    cov = 0.5 * (cov + cov.T) + reg_covar * eye
    ridge = max(reg_covar, 1e-12)
    for _ in range(max_tries):
        try:
            np.linalg.cholesky(cov)
            return cov
        except np.linalg.LinAlgError:
            ridge *= 10.0
            cov = cov + ridge * eye
    raise np.linalg.LinAlgError("Covariance could not be regularized to positive-definite")


def log_gaussian(X: np.ndarray, mean: np.ndarray, cov: np.ndarray) -> np.ndarray:
    """Log N(x_t; mean, cov) for every row of X."""
    L = np.linalg.cholesky(cov)
    sol = solve_triangular(L, (X - mean).T, lower=True)
    maha = np.sum(sol * sol, axis=0)
    logdet = 2.0 * np.sum(np.log(np.diag(L)))
    return -0.5 * (X.shape[1] * _LOG_2PI + logdet + maha)


def _normalize_rows(a: np.ndarray, fallback: Optional[np.ndarray] = None) -> np.ndarray:
    sums = a.sum(axis=-1, keepdims=True)
    ok = sums > _MIN_MASS
    out = np.where(ok, a / np.where(ok, sums, 1.0), 0.0)
    if fallback is not None:
        out = np.where(ok, out, fallback)
    return out


def _order_states(params: RegimeModelParameters) -> RegimeModelParameters:
    """Relabel states by ascending mixture-weighted mean of the first feature."""
    key = np.einsum('jm,jm->j', params.mixture_weights, params.means[:, :, 0])
    order = np.argsort(key, kind='stable')
    params.initial_dist = params.initial_dist[order]
    params.transition_matrix = params.transition_matrix[np.ix_(order, order)]
    params.mixture_weights = params.mixture_weights[order]
    params.means = params.means[order]
    params.covariances = params.covariances[order]
    return params


class GaussianMixtureHMM:
    """
    GM-HMM regime model.

    Args:
        n_states: Number of hidden regimes k
        n_mix: Gaussian components per regime M
        max_iter: EM iteration cap
        tol: Convergence threshold on |delta log-likelihood|
        n_init: Number of k-means restarts; the best log-likelihood is kept
        random_state: Seed for k-means and restarts
        reg_covar: Ridge added to every covariance diagonal
        standardize: Z-score features before fitting (stored with the model)
    """

    def __init__(
        self,
        n_states: int,
        n_mix: int = 1,
        max_iter: int = 100,
        tol: float = 1e-5,
        n_init: int = 1,
        random_state: Optional[int] = None,
        reg_covar: float = 1e-6,
        standardize: bool = True,
    ):
        if n_states < 1 or n_mix < 1:
            raise ValueError(f"n_states and n_mix must be >= 1, got {n_states}, {n_mix}")
        self.n_states = n_states
        self.n_mix = n_mix
        self.max_iter = max_iter
        self.tol = tol
        self.n_init = max(1, n_init)
        self.random_state = random_state
        self.reg_covar = reg_covar
        self.standardize = standardize

        self.params: Optional[RegimeModelParameters] = None
        self.fit_result: Optional[FitResult] = None
        self.n_samples_: int = 0

    @classmethod
    def from_parameters(cls, params: RegimeModelParameters, **kwargs) -> 'GaussianMixtureHMM':
        """Wrap already-fitted parameters (e.g. loaded from JSON)."""
        model = cls(params.n_states, params.n_mix, **kwargs)
        model.params = params
        return model

    # ------------------------------------------------------------------
    # Fitting
    # ------------------------------------------------------------------

    def _check_input(self, X) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        if X.ndim != 2 or X.shape[0] == 0:
            raise ValueError(f"Expected a non-empty (T, D) array, got shape {X.shape}")
        if not np.all(np.isfinite(X)):
            raise ValueError("Observations contain NaN or infinite values")
        return X

    def _scale(self, X: np.ndarray) -> np.ndarray:
        return apply_zscore(X, self.params.feature_mean, self.params.feature_std)

    def fit(self, X, token: Optional[CancellationToken] = None,
            feature_names: Optional[Sequence[str]] = None) -> FitResult:
        """
        Baum-Welch with k-means initialization and n_init restarts.

        Raises:
            ValueError: if X is not finite or has fewer rows than k * M
            ComputationCancelled: if the token fires between iterations
        """
        X = self._check_input(X)
        T, D = X.shape
        k, M = self.n_states, self.n_mix
        if T < max(2, k * M):
            raise ValueError(f"Need at least {max(2, k * M)} observations for k={k}, M={M}; got {T}")

        if self.standardize:
            Z, scaling = compute_zscore(X, axis=0)
            feature_mean, feature_std = np.atleast_1d(scaling['mean']), np.atleast_1d(scaling['std'])
        else:
            Z, feature_mean, feature_std = X, np.zeros(D), np.ones(D)

        names = list(feature_names) if feature_names is not None else (
            list(DEFAULT_FEATURES) if D == len(DEFAULT_FEATURES) else [f'x{i}' for i in range(D)]
        )

        rng = np.random.default_rng(self.random_state)
        seeds = rng.integers(0, 2 ** 31 - 1, size=self.n_init)
        ws = _Workspace(T, k, M)

        best_params, best_result = None, None
        last_error: Optional[Exception] = None
        for seed in seeds:
            check(token)
            try:
                params = self._init_params(Z, int(seed))
                result = self._em(Z, params, ws, token)
            except (np.linalg.LinAlgError, FloatingPointError) as e:
                logger.debug("EM start (seed=%d) failed for k=%d: %s", seed, k, e)
                last_error = e
                continue
            if best_result is None or result.log_likelihood > best_result.log_likelihood:
                best_params, best_result = params, result

        if best_result is None:
            raise last_error

        best_params = _order_states(best_params)
        best_params.feature_mean = feature_mean
        best_params.feature_std = feature_std
        best_params.feature_names = names
        self.params = best_params
        self.fit_result = best_result
        self.n_samples_ = T

        if not best_result.converged:
            logger.warning(
                "GM-HMM (k=%d, M=%d) did not converge in %d iterations (log-likelihood %.4f)",
                k, M, self.max_iter, best_result.log_likelihood,
            )
        else:
            logger.debug("GM-HMM k=%d converged after %d iterations, LL=%.4f",
                         k, best_result.n_iter, best_result.log_likelihood)
        return best_result

    def _init_params(self, Z: np.ndarray, seed: int) -> RegimeModelParameters:
        k, M = self.n_states, self.n_mix
        T, D = Z.shape
        rng = np.random.default_rng(seed)

        labels = KMeans(n_clusters=k, n_init=10, random_state=seed).fit(Z).labels_ if k > 1 \
            else np.zeros(T, dtype=np.int64)

        global_cov = guard_covariance(np.atleast_2d(np.cov(Z, rowvar=False)), self.reg_covar)
        global_std = np.sqrt(np.diag(global_cov))

        weights = np.full((k, M), 1.0 / M)
        means = np.empty((k, M, D))
        covs = np.empty((k, M, D, D))
        for j in range(k):
            members = Z[labels == j]
            if len(members) == 0:
                members = Z
            state_cov = guard_covariance(np.atleast_2d(np.cov(members, rowvar=False)), self.reg_covar) \
                if len(members) > D else global_cov

            if M == 1:
                means[j, 0] = members.mean(axis=0)
                covs[j, 0] = state_cov
                continue

            if len(members) >= M:
                sub = KMeans(n_clusters=M, n_init=10, random_state=seed).fit(members).labels_
            else:
                sub = np.arange(len(members)) % M
            for m in range(M):
                part = members[sub == m]
                if len(part) == 0:
                    means[j, m] = members.mean(axis=0) + 0.1 * global_std * rng.standard_normal(D)
                    covs[j, m] = state_cov
                    continue
                means[j, m] = part.mean(axis=0)
                covs[j, m] = guard_covariance(np.atleast_2d(np.cov(part, rowvar=False)), self.reg_covar) \
                    if len(part) > D else state_cov
                weights[j, m] = len(part)
            weights[j] /= weights[j].sum()

        if k == 1:
            A = np.ones((1, 1))
        else:
            A = np.full((k, k), 0.1 / (k - 1))
            np.fill_diagonal(A, 0.9)

        return RegimeModelParameters(
            initial_dist=np.full(k, 1.0 / k),
            transition_matrix=A,
            mixture_weights=weights,
            means=means,
            covariances=covs,
        )

    def _em(self, Z: np.ndarray, params: RegimeModelParameters, ws: _Workspace,
            token: Optional[CancellationToken]) -> FitResult:
        prev_ll = -np.inf
        ll = -np.inf
        history = []
        for it in range(1, self.max_iter + 1):
            check(token)
            ll = self._e_step(Z, params, ws, with_xi=True)
            history.append(float(ll))
            self._m_step(Z, params, ws)
            if abs(ll - prev_ll) < self.tol:
                return FitResult(log_likelihood=float(ll), n_iter=it, converged=True, history=tuple(history))
            prev_ll = ll
        return FitResult(log_likelihood=float(ll), n_iter=self.max_iter, converged=False,
                         history=tuple(history))

    # ------------------------------------------------------------------
    # E-step
    # ------------------------------------------------------------------

    def _emissions(self, Z: np.ndarray, params: RegimeModelParameters, log_comp: np.ndarray) -> np.ndarray:
        """Fill log_comp (T, k, M) with log c_jm + log N and return log b (T, k)."""
        log_w = np.log(np.maximum(params.mixture_weights, _TINY))
        for j in range(params.n_states):
            for m in range(params.n_mix):
                log_comp[:, j, m] = log_w[j, m] + log_gaussian(Z, params.means[j, m], params.covariances[j, m])
        return logsumexp(log_comp, axis=2)

    def _forward(self, b: np.ndarray, params: RegimeModelParameters, alpha: np.ndarray, scale: np.ndarray):
        A = params.transition_matrix
        T = b.shape[0]
        alpha[0] = params.initial_dist * b[0]
        for t in range(T):
            if t > 0:
                np.multiply(alpha[t - 1] @ A, b[t], out=alpha[t])
            s = alpha[t].sum()
            if not (s > 0 and np.isfinite(s)):
                raise FloatingPointError(f"Forward pass underflow at t={t}")
            scale[t] = s
            alpha[t] /= s

    def _backward(self, b: np.ndarray, params: RegimeModelParameters, beta: np.ndarray, scale: np.ndarray):
        A = params.transition_matrix
        T = b.shape[0]
        beta[T - 1] = 1.0
        for t in range(T - 2, -1, -1):
            beta[t] = A @ (b[t + 1] * beta[t + 1]) / scale[t + 1]

    def _e_step(self, Z: np.ndarray, params: RegimeModelParameters, ws: _Workspace,
                with_xi: bool = True) -> float:
        log_b = self._emissions(Z, params, ws.log_comp)
        shift = log_b.max(axis=1)
        b = np.exp(log_b - shift[:, None])

        self._forward(b, params, ws.alpha, ws.scale)
        ll = float(np.sum(np.log(ws.scale)) + np.sum(shift))
        self._backward(b, params, ws.beta, ws.scale)

        np.multiply(ws.alpha, ws.beta, out=ws.gamma)
        ws.gamma /= np.maximum(ws.gamma.sum(axis=1, keepdims=True), _TINY)

        if with_xi:
            # sum_t xi_t(i, j) = A_ij * sum_t alpha_t(i) b_{t+1}(j) beta_{t+1}(j) / c_{t+1}
            weighted = b[1:] * ws.beta[1:] / ws.scale[1:, None]
            np.matmul(ws.alpha[:-1].T, weighted, out=ws.xi_sum)
            ws.xi_sum *= params.transition_matrix

            np.subtract(ws.log_comp, log_b[:, :, None], out=ws.gamma_jm)
            np.exp(ws.gamma_jm, out=ws.gamma_jm)
            ws.gamma_jm *= ws.gamma[:, :, None]
        return ll

    # ------------------------------------------------------------------
    # M-step
    # ------------------------------------------------------------------

    def _m_step(self, Z: np.ndarray, params: RegimeModelParameters, ws: _Workspace):
        k, M = params.n_states, params.n_mix

        params.initial_dist = _normalize_rows(ws.gamma[0] + _MIN_MASS)
        params.transition_matrix = _normalize_rows(ws.xi_sum, fallback=params.transition_matrix)

        mass = ws.gamma_jm.sum(axis=0)  # (k, M)
        params.mixture_weights = _normalize_rows(mass, fallback=params.mixture_weights)

        sums = np.einsum('tjm,td->jmd', ws.gamma_jm, Z)
        for j in range(k):
            for m in range(M):
                n_jm = mass[j, m]
                if n_jm < _MIN_MASS:
                    continue
                mu = sums[j, m] / n_jm
                diff = Z - mu
                cov = (ws.gamma_jm[:, j, m, None] * diff).T @ diff / n_jm
                params.means[j, m] = mu
                params.covariances[j, m] = guard_covariance(cov, self.reg_covar)

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def _require_fit(self):
        if self.params is None:
            raise RuntimeError("GaussianMixtureHMM is not fitted")

    def _posterior(self, X, filtered: bool):
        self._require_fit()
        Z = self._scale(self._check_input(X))
        p = self.params
        ws = _Workspace(Z.shape[0], p.n_states, p.n_mix)
        if filtered:
            log_b = self._emissions(Z, p, ws.log_comp)
            shift = log_b.max(axis=1)
            self._forward(np.exp(log_b - shift[:, None]), p, ws.alpha, ws.scale)
            return ws.alpha, float(np.sum(np.log(ws.scale)) + np.sum(shift))
        ll = self._e_step(Z, p, ws, with_xi=False)
        return ws.gamma, ll

    def predict_proba(self, X) -> np.ndarray:
        """Smoothed posteriors P(state_t | x_1..x_T), shape (T, k). Offline."""
        gamma, _ = self._posterior(X, filtered=False)
        return gamma

    def filter_proba(self, X) -> np.ndarray:
        """Filtered posteriors P(state_t | x_1..x_t), shape (T, k). Causal in every row."""
        alpha, _ = self._posterior(X, filtered=True)
        return alpha

    def predict(self, X) -> np.ndarray:
        """Most probable regime per row (smoothed)."""
        return np.argmax(self.predict_proba(X), axis=1)

    def score(self, X) -> float:
        """Log-likelihood of X under the fitted model."""
        _, ll = self._posterior(X, filtered=True)
        return ll

    def n_parameters(self, n_features: Optional[int] = None) -> int:
        """Free parameter count K."""
        k, M = self.n_states, self.n_mix
        D = n_features if n_features is not None else (
            self.params.n_features if self.params is not None else len(DEFAULT_FEATURES)
        )
        return (k - 1) + k * (k - 1) + k * (M - 1) + k * M * D + k * M * D * (D + 1) // 2

    def bic(self, X) -> float:
        """BIC = K ln(T) - 2 ln L."""
        X = self._check_input(X)
        return float(self.n_parameters(X.shape[1]) * np.log(X.shape[0]) - 2.0 * self.score(X))
