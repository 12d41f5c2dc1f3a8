"""
Tests for the regime classifiers and the market summary.
"""

import json

import numpy as np
import pytest

from kinetikos.core.config import RegimeModelConfig
from kinetikos.core.pipeline import StateVector
from kinetikos.core.regime.classifier import (
    REGIME_RULES,
    HMMClassifier,
    RuleBasedClassifier,
    build_classifier,
    percentile_rank,
    summarize,
)


def _vectors(potential, momentum, entropy, temperature):
    return [
        StateVector(timestamp=float(i), price=100.0, volume=1.0,
                    potential=p, momentum=m, entropy=e, temperature=t)
        for i, (p, m, e, t) in enumerate(zip(potential, momentum, entropy, temperature))
    ]


class TestPercentileRank:

    def test_strictly_below(self):
        assert percentile_rank(5.0, [1, 2, 3, 4, 5, 6]) == pytest.approx(400 / 6)
        assert percentile_rank(0.0, [1, 2, 3]) == 0.0

    def test_unavailable(self):
        assert percentile_rank(None, [1.0, 2.0]) is None
        assert percentile_rank(1.0, []) is None
        assert percentile_rank(1.0, [None]) is None


class TestRuleBasedClassifier:

    def test_fragile_topping(self):
        n = 100
        rising = list(np.arange(n, dtype=float))
        falling = list(-np.arange(n, dtype=float))
        vectors = _vectors(rising, falling, rising, rising)
        scores = RuleBasedClassifier().classify(vectors)
        assert set(scores) == set(REGIME_RULES)
        assert scores['Fragile topping/reversal risk'] == 100.0
        assert scores['Chaotic indecision'] == 100.0
        assert scores['Low volatility/Orderly'] == 0.0
        assert scores['Coiling Spring (High Tension)'] == pytest.approx(200.0 / 3)

    def test_missing_dimension_fails_conditions(self):
        n = 50
        rising = list(np.arange(n, dtype=float))
        temperature = rising[:-1] + [None]
        scores = RuleBasedClassifier().classify(_vectors(rising, rising, rising, temperature))
        assert scores['Chaotic indecision'] == 50.0

    def test_rolling_versus_hindsight(self):
        values = list(np.arange(100, dtype=float))
        vectors = _vectors(values, values, values, values)
        rolling = RuleBasedClassifier(mode='rolling', percentile_window=5)
        hindsight = RuleBasedClassifier(mode='hindsight')
        assert rolling.percentile_ranks(vectors, 10)['entropy'] == pytest.approx(80.0)
        assert hindsight.percentile_ranks(vectors, 10)['entropy'] == pytest.approx(10.0)

    def test_rolling_is_causal(self):
        rng = np.random.default_rng(0)
        cols = [list(rng.normal(size=60)) for _ in range(4)]
        vectors = _vectors(*cols)
        clf = RuleBasedClassifier(percentile_window=20)
        assert clf.classify_series(vectors)[:40] == clf.classify_series(vectors[:40])

    def test_invalid_mode(self):
        with pytest.raises(ValueError):
            RuleBasedClassifier(mode='future')


class TestHMMClassifier:

    def _regime_vectors(self, two_regime_data):
        X, _ = two_regime_data
        return _vectors(*[list(X[:, d]) for d in range(4)])

    def test_scores_are_probabilities(self, two_regime_data):
        vectors = self._regime_vectors(two_regime_data)
        clf = HMMClassifier(regime_config=RegimeModelConfig(candidate_state_counts=[2], random_state=0))
        clf.fit(vectors)
        scores = clf.classify(vectors)
        assert list(scores) == ['Regime 0', 'Regime 1']
        assert sum(scores.values()) == pytest.approx(100.0)

    def test_series_matches_single(self, two_regime_data):
        vectors = self._regime_vectors(two_regime_data)
        clf = HMMClassifier(regime_config=RegimeModelConfig(candidate_state_counts=[2], random_state=0))
        clf.fit(vectors)
        series = clf.classify_series(vectors)
        single = clf.classify(vectors, 120)
        for name in single:
            assert series[120][name] == pytest.approx(single[name])

    def test_rolling_scores_ignore_later_vectors(self, two_regime_data):
        """Scores up to t are identical whether or not vectors after t exist."""
        vectors = self._regime_vectors(two_regime_data)
        config = RegimeModelConfig(candidate_state_counts=[2], random_state=0)
        full = HMMClassifier(regime_config=config, refit_interval=50).classify_series(vectors)
        prefix = HMMClassifier(regime_config=config, refit_interval=50).classify_series(vectors[:150])

        assert all(scores == {} for scores in full[:49])
        assert full[49]
        for a, b in zip(full[:150], prefix):
            assert a.keys() == b.keys()
            for name in a:
                assert a[name] == pytest.approx(b[name], abs=1e-6)

    def test_rolling_single_matches_series(self, two_regime_data):
        vectors = self._regime_vectors(two_regime_data)[:200]
        config = RegimeModelConfig(candidate_state_counts=[2], random_state=0)
        clf = HMMClassifier(regime_config=config, refit_interval=50)
        series = clf.classify_series(vectors)
        single = clf.classify(vectors, 120)
        assert single.keys() == series[120].keys()
        for name in single:
            assert series[120][name] == pytest.approx(single[name], abs=1e-6)

    def test_regime_zero_is_low_regime(self, two_regime_data):
        vectors = self._regime_vectors(two_regime_data)
        clf = HMMClassifier(regime_config=RegimeModelConfig(candidate_state_counts=[2], random_state=0),
                            mode='hindsight')
        series = clf.classify_series(vectors)
        assert series[10]['Regime 0'] > 90.0
        assert series[150]['Regime 1'] > 90.0

    def test_incomplete_prefix_unscored(self, two_regime_data):
        vectors = self._regime_vectors(two_regime_data)
        vectors[0] = StateVector(timestamp=0.0, price=1.0, volume=1.0)
        clf = HMMClassifier(regime_config=RegimeModelConfig(candidate_state_counts=[2], random_state=0))
        assert clf.classify_series(vectors)[0] == {}


class TestSummary:

    def test_summary_payload(self):
        values = list(np.arange(30, dtype=float))
        vectors = _vectors(values, values, values, values)
        summary = summarize(vectors, RuleBasedClassifier(), trajectory_length=10)
        payload = summary.to_dict()
        assert set(payload['percentiles']) == {'potential', 'momentum', 'entropy', 'temperature'}
        assert payload['percentiles']['entropy'] == pytest.approx(100.0 * 29 / 30)
        assert len(payload['trajectory']) == 10
        assert payload['dominant_regime'] in REGIME_RULES
        json.dumps(payload)

    def test_no_dominant_regime_without_data(self):
        vectors = [StateVector(timestamp=float(i), price=100.0, volume=1.0) for i in range(5)]
        summary = summarize(vectors, RuleBasedClassifier())
        assert all(score == 0.0 for score in summary.regime_scores.values())
        assert summary.dominant_regime is None
        assert summary.to_dict()['dominant_regime'] is None

    def test_precomputed_scores(self):
        values = list(np.arange(30, dtype=float))
        vectors = _vectors(values, values, values, values)
        summary = summarize(vectors, RuleBasedClassifier(), regime_scores={'Chaotic indecision': 50.0})
        assert summary.dominant_regime == 'Chaotic indecision'

    def test_build_classifier(self):
        assert isinstance(build_classifier('rules'), RuleBasedClassifier)
        assert isinstance(build_classifier('hmm'), HMMClassifier)
        with pytest.raises(ValueError):
            build_classifier('oracle')
