"""
Regime Count Selection
======================

Fits one GM-HMM per candidate state count and keeps the lowest BIC.
Candidate fits are independent and run through joblib on threads (numpy
releases the GIL in the heavy kernels). A candidate whose fit fails
numerically is skipped; if every candidate fails, ModelSelectionError.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
from joblib import Parallel, delayed

from kinetikos.core.cancellation import CancellationToken, check
from kinetikos.core.errors import ComputationCancelled, ModelSelectionError
from kinetikos.core.regime.hmm import GaussianMixtureHMM

logger = logging.getLogger(__name__)


@dataclass
class SelectionResult:
    best_model: GaussianMixtureHMM
    best_k: int
    best_bic: float
    scores: Dict[int, float]  # k -> BIC for every candidate that fitted


def _fit_candidate(X: np.ndarray, k: int, model_kwargs: dict,
                   token: Optional[CancellationToken]) -> Tuple[int, Optional[GaussianMixtureHMM], Optional[float]]:
    check(token)
    model = GaussianMixtureHMM(n_states=k, **model_kwargs)
    try:
        model.fit(X, token=token)
        bic = model.bic(X)
    except ComputationCancelled:
        raise
    except (np.linalg.LinAlgError, FloatingPointError, ValueError) as e:
        logger.warning("Skipping k=%d: fit failed (%s)", k, e)
        return k, None, None
    if not np.isfinite(bic):
        logger.warning("Skipping k=%d: non-finite BIC", k)
        return k, None, None
    logger.debug("k=%d  LL=%.3f  BIC=%.3f  converged=%s",
                 k, model.fit_result.log_likelihood, bic, model.fit_result.converged)
    return k, model, bic


def select_model(
    X,
    candidate_state_counts: Sequence[int] = (2, 3, 4, 5),
    n_mix: int = 1,
    max_iter: int = 100,
    tol: float = 1e-5,
    n_init: int = 1,
    random_state: Optional[int] = 42,
    reg_covar: float = 1e-6,
    standardize: bool = True,
    n_jobs: int = 1,
    token: Optional[CancellationToken] = None,
) -> SelectionResult:
    """
    BIC model selection over candidate state counts.

    Args:
        X: (T, D) observations (complete state vectors)
        candidate_state_counts: k values to try
        n_jobs: joblib workers (threads)
        token: Optional cancellation token checked before and during each fit

    Returns:
        SelectionResult with the minimal-BIC model

    Raises:
        ModelSelectionError: if no candidate could be fitted
        ComputationCancelled: if the token fires
    """
    X = np.asarray(X, dtype=np.float64)
    candidates = sorted(set(int(k) for k in candidate_state_counts))
    if not candidates:
        raise ModelSelectionError("No candidate state counts given")

    model_kwargs = dict(
        n_mix=n_mix, max_iter=max_iter, tol=tol, n_init=n_init,
        random_state=random_state, reg_covar=reg_covar, standardize=standardize,
    )

    logger.info("Selecting regime count over k in %s (T=%d, n_jobs=%d)",
                candidates, X.shape[0] if X.ndim else 0, n_jobs)

    results = Parallel(n_jobs=n_jobs, prefer='threads')(
        delayed(_fit_candidate)(X, k, model_kwargs, token)
        for k in candidates
    )
    check(token)

    scores = {k: bic for k, model, bic in results if model is not None}
    if not scores:
        raise ModelSelectionError(f"No candidate in {candidates} could be fitted")

    best_k = min(scores, key=scores.get)
    best_model = next(model for k, model, _ in results if k == best_k)
    logger.info("Selected k=%d (BIC=%.3f)", best_k, scores[best_k])

    return SelectionResult(best_model=best_model, best_k=best_k, best_bic=scores[best_k], scores=scores)


def select_from_config(X, config, token: Optional[CancellationToken] = None) -> SelectionResult:
    """select_model driven by a RegimeModelConfig."""
    return select_model(
        X,
        candidate_state_counts=config.candidate_state_counts,
        n_mix=config.mixture_components,
        max_iter=config.max_iterations,
        tol=config.tolerance,
        n_init=config.n_init,
        random_state=config.random_state,
        reg_covar=config.reg_covar,
        standardize=config.standardize,
        n_jobs=config.effective_n_jobs,
        token=token,
    )
