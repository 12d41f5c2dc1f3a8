"""
Regime Classifiers
==================

Two interchangeable ways of scoring the latest state vector, selected
explicitly by the caller:

    RuleBasedClassifier   percentile-rank archetypes (score = % of met conditions)
    HMMClassifier         posterior regime probabilities from a GM-HMM

Percentile ranks are computed against a reference set. The causal default
("rolling") uses the trailing percentile_window vectors ending at the scored
index; "hindsight" ranks against the whole series and is only meaningful for
after-the-fact review.

The HMM classifier follows the same split: rolling scores come from models
fitted on the prefix only, hindsight scores from one whole-series fit.

Scores are on a 0-100 scale in both classifiers.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from kinetikos.core.cancellation import CancellationToken, check
from kinetikos.core.config import CLASSIFIER_MODES, ClassifierConfig, RegimeModelConfig
from kinetikos.core.errors import ModelSelectionError
from kinetikos.core.pipeline import STATE_DIMENSIONS, StateVector, state_matrix
from kinetikos.core.regime.hmm import GaussianMixtureHMM
from kinetikos.core.regime.selection import SelectionResult, select_from_config

logger = logging.getLogger(__name__)

Condition = Tuple[str, str, float]  # (dimension, '<' or '>', percentile threshold)

REGIME_RULES: Dict[str, List[Condition]] = {
    'Fragile topping/reversal risk': [
        ('temperature', '>', 75), ('entropy', '>', 75), ('momentum', '<', 25),
    ],
    'Chaotic indecision': [
        ('temperature', '>', 75), ('entropy', '>', 75),
    ],
    'Stable bull/bear trend': [
        ('entropy', '<', 25), ('temperature', '<', 25), ('momentum', '>', 75),
    ],
    'Coiling Spring (High Tension)': [
        ('potential', '>', 75), ('momentum', '<', 25), ('temperature', '<', 50),
    ],
    'Low volatility/Orderly': [
        ('entropy', '<', 25), ('temperature', '<', 25),
    ],
}


def percentile_rank(value: Optional[float], reference: Sequence[float]) -> Optional[float]:
    """
    Percentage of reference values strictly below `value` (binary search).

    Returns:
        Rank in [0, 100), or None if value is missing or the reference is empty
    """
    if value is None or not np.isfinite(value):
        return None
    ref = np.sort(np.asarray([v for v in reference if v is not None and np.isfinite(v)], dtype=np.float64))
    if len(ref) == 0:
        return None
    below = int(np.searchsorted(ref, value, side='left'))
    return 100.0 * below / len(ref)


def _resolve_index(vectors: Sequence[StateVector], index: int) -> int:
    n = len(vectors)
    if n == 0:
        raise ValueError("No state vectors to classify")
    idx = index if index >= 0 else n + index
    if not 0 <= idx < n:
        raise IndexError(f"index {index} out of range for {n} vectors")
    return idx


class RegimeClassifier(ABC):
    """Scores the state vector at `index` using vectors[:index + 1] (or all, in hindsight)."""

    name: str = 'classifier'

    @abstractmethod
    def classify(self, vectors: Sequence[StateVector], index: int = -1) -> Dict[str, float]:
        """Regime name -> score (0-100)."""

    def classify_series(self, vectors: Sequence[StateVector]) -> List[Dict[str, float]]:
        """Scores for every index."""
        return [self.classify(vectors, i) for i in range(len(vectors))]


class RuleBasedClassifier(RegimeClassifier):
    """
    Archetype scoring from percentile ranks of the four state dimensions.

    A missing dimension fails every condition that uses it.
    """

    name = 'rules'

    def __init__(self, mode: str = 'rolling', percentile_window: int = 200,
                 rules: Optional[Dict[str, List[Condition]]] = None):
        if mode not in CLASSIFIER_MODES:
            raise ValueError(f"mode must be one of {CLASSIFIER_MODES}, got '{mode}'")
        self.mode = mode
        self.percentile_window = percentile_window
        self.rules = rules if rules is not None else REGIME_RULES

    @classmethod
    def from_config(cls, config: ClassifierConfig) -> 'RuleBasedClassifier':
        return cls(mode=config.mode, percentile_window=config.percentile_window)

    def reference(self, vectors: Sequence[StateVector], index: int) -> Sequence[StateVector]:
        if self.mode == 'hindsight':
            return vectors
        return vectors[max(0, index - self.percentile_window + 1):index + 1]

    def percentile_ranks(self, vectors: Sequence[StateVector], index: int = -1) -> Dict[str, Optional[float]]:
        idx = _resolve_index(vectors, index)
        ref = self.reference(vectors, idx)
        current = vectors[idx]
        return {
            dim: percentile_rank(getattr(current, dim), [getattr(sv, dim) for sv in ref])
            for dim in STATE_DIMENSIONS
        }

    def classify(self, vectors: Sequence[StateVector], index: int = -1) -> Dict[str, float]:
        ranks = self.percentile_ranks(vectors, index)
        scores = {}
        for regime, conditions in self.rules.items():
            met = 0
            for dim, op, threshold in conditions:
                rank = ranks.get(dim)
                if rank is None:
                    continue
                if (op == '>' and rank > threshold) or (op == '<' and rank < threshold):
                    met += 1
            scores[regime] = 100.0 * met / len(conditions)
        return scores


class HMMClassifier(RegimeClassifier):
    """
    Posterior regime probabilities (x100) from a GM-HMM.

    Hindsight mode fits one model on the whole series and scores every index
    with the smoothed posterior.

    Rolling mode never lets a later vector touch an earlier score. Without a
    supplied model it refits on the prefix vectors[:r + 1] at every
    r = refit_interval - 1, 2 * refit_interval - 1, ...; the score at t is the
    filtered posterior P(regime_t | x_1..x_t) under the latest model with
    r <= t, and {} before the first successful refit. A model passed in or
    set by fit() is treated as fixed and only filtered.
    """

    name = 'hmm'

    def __init__(self, model: Optional[GaussianMixtureHMM] = None, mode: str = 'rolling',
                 regime_config: Optional[RegimeModelConfig] = None,
                 refit_interval: int = 50,
                 token: Optional[CancellationToken] = None):
        if mode not in CLASSIFIER_MODES:
            raise ValueError(f"mode must be one of {CLASSIFIER_MODES}, got '{mode}'")
        if refit_interval < 1:
            raise ValueError(f"refit_interval must be >= 1, got {refit_interval}")
        self.model = model
        self.mode = mode
        self.regime_config = regime_config if regime_config is not None else RegimeModelConfig()
        self.refit_interval = refit_interval
        self.token = token
        self.selection: Optional[SelectionResult] = None
        self._fixed = model is not None

    def fit(self, vectors: Sequence[StateVector]) -> 'HMMClassifier':
        """Select and fit a model on the complete state vectors and keep it fixed."""
        X, _ = state_matrix(vectors)
        self.selection = select_from_config(X, self.regime_config, token=self.token)
        self.model = self.selection.best_model
        self._fixed = True
        return self

    def regime_names(self, model: Optional[GaussianMixtureHMM] = None) -> List[str]:
        model = model if model is not None else self.model
        return [f'Regime {j}' for j in range(model.n_states)]

    def _scores(self, model: GaussianMixtureHMM, proba: np.ndarray, rows: np.ndarray,
                indices: Sequence[int]) -> List[Dict[str, float]]:
        names = self.regime_names(model)
        out: List[Dict[str, float]] = []
        for i in indices:
            pos = np.searchsorted(rows, i, side='right') - 1
            out.append({} if pos < 0 else {n: float(100.0 * p) for n, p in zip(names, proba[pos])})
        return out

    def _scheduled_series(self, vectors: Sequence[StateVector]) -> List[Dict[str, float]]:
        X, rows = state_matrix(vectors)
        n = len(vectors)
        out: List[Dict[str, float]] = [{} for _ in range(n)]
        model = None
        self.selection = None
        refit_points = list(range(self.refit_interval - 1, n, self.refit_interval))

        for seg, r in enumerate(refit_points):
            check(self.token)
            end = refit_points[seg + 1] if seg + 1 < len(refit_points) else n
            prefix = X[rows <= r]
            if len(prefix) < 2:
                continue
            try:
                selection = select_from_config(prefix, self.regime_config, token=self.token)
            except ModelSelectionError as e:
                logger.debug("Refit at index %d skipped: %s", r, e)
            else:
                model, self.selection = selection.best_model, selection
            if model is None:
                continue
            visible = int(np.searchsorted(rows, end, side='left'))
            if visible == 0:
                continue
            proba = model.filter_proba(X[:visible])
            out[r:end] = self._scores(model, proba, rows, range(r, end))

        self.model = model
        return out

    def _posteriors(self, vectors: Sequence[StateVector]) -> Tuple[np.ndarray, np.ndarray]:
        if self.model is None:
            self.fit(vectors)
        X, idx = state_matrix(vectors)
        if len(idx) == 0:
            return np.empty((0, self.model.n_states)), idx
        if self.mode == 'hindsight':
            return self.model.predict_proba(X), idx
        return self.model.filter_proba(X), idx

    def classify(self, vectors: Sequence[StateVector], index: int = -1) -> Dict[str, float]:
        idx = _resolve_index(vectors, index)
        if self.mode == 'rolling' and not self._fixed:
            return self._scheduled_series(vectors[:idx + 1])[idx]
        visible = vectors if self.mode == 'hindsight' else vectors[:idx + 1]
        proba, rows = self._posteriors(visible)
        return self._scores(self.model, proba, rows, [idx])[0]

    def classify_series(self, vectors: Sequence[StateVector]) -> List[Dict[str, float]]:
        if self.mode == 'rolling' and not self._fixed:
            return self._scheduled_series(vectors)
        # Filtered rows under fixed parameters only see their own prefix.
        proba, rows = self._posteriors(vectors)
        return self._scores(self.model, proba, rows, range(len(vectors)))


def build_classifier(kind: str, classifier_config: Optional[ClassifierConfig] = None,
                     regime_config: Optional[RegimeModelConfig] = None,
                     token: Optional[CancellationToken] = None) -> RegimeClassifier:
    """'rules' or 'hmm'."""
    classifier_config = classifier_config if classifier_config is not None else ClassifierConfig()
    if kind == 'rules':
        return RuleBasedClassifier.from_config(classifier_config)
    if kind == 'hmm':
        return HMMClassifier(mode=classifier_config.mode, regime_config=regime_config,
                             refit_interval=classifier_config.refit_interval, token=token)
    raise ValueError(f"Unknown classifier '{kind}' (expected 'rules' or 'hmm')")


@dataclass
class MarketSummary:
    """Compact payload for narrative generation and dashboards."""
    timestamp: Optional[float]
    price: Optional[float]
    percentiles: Dict[str, Optional[float]]
    regime_scores: Dict[str, float]
    classifier: str
    mode: str
    trajectory: List[Dict[str, Optional[float]]] = field(default_factory=list)

    @property
    def dominant_regime(self) -> Optional[str]:
        """Highest-scoring regime; None when nothing scores above 0."""
        if not self.regime_scores or max(self.regime_scores.values()) <= 0:
            return None
        return max(self.regime_scores, key=self.regime_scores.get)

    def to_dict(self) -> Dict:
        return {
            'timestamp': self.timestamp,
            'price': self.price,
            'percentiles': dict(self.percentiles),
            'regime_scores': dict(self.regime_scores),
            'dominant_regime': self.dominant_regime,
            'classifier': self.classifier,
            'mode': self.mode,
            'trajectory': list(self.trajectory),
        }


def summarize(vectors: Sequence[StateVector], classifier: RegimeClassifier,
              percentile_window: int = 200, mode: str = 'rolling',
              trajectory_length: Optional[int] = None,
              regime_scores: Optional[Dict[str, float]] = None) -> MarketSummary:
    """
    Summary of the latest state vector: percentile ranks, regime scores and
    the 4-D trajectory of complete states.

    regime_scores may pass the latest row of an already computed
    classify_series to avoid scoring twice.
    """
    ranker = classifier if isinstance(classifier, RuleBasedClassifier) \
        else RuleBasedClassifier(mode=mode, percentile_window=percentile_window)
    latest = vectors[-1]

    trajectory = [
        {'timestamp': sv.timestamp, **{dim: getattr(sv, dim) for dim in STATE_DIMENSIONS}}
        for sv in vectors if sv.complete
    ]
    if trajectory_length is not None:
        trajectory = trajectory[-trajectory_length:]

    return MarketSummary(
        timestamp=latest.timestamp,
        price=latest.price,
        percentiles=ranker.percentile_ranks(vectors, -1),
        regime_scores=regime_scores if regime_scores is not None else classifier.classify(vectors, -1),
        classifier=classifier.name,
        mode=getattr(classifier, 'mode', mode),
        trajectory=trajectory,
    )
