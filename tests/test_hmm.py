"""
Tests for the GM-HMM regime model and BIC selection.
"""

import logging

import numpy as np
import pytest

from kinetikos.core.cancellation import CancellationToken
from kinetikos.core.errors import ComputationCancelled, ModelSelectionError
from kinetikos.core.regime.hmm import GaussianMixtureHMM, guard_covariance
from kinetikos.core.regime.selection import select_model


class TestFit:

    def test_parameters_are_distributions(self, two_regime_data):
        X, _ = two_regime_data
        model = GaussianMixtureHMM(n_states=2, random_state=0)
        result = model.fit(X)
        p = model.params
        assert np.isfinite(result.log_likelihood)
        np.testing.assert_allclose(p.transition_matrix.sum(axis=1), 1.0)
        np.testing.assert_allclose(p.mixture_weights.sum(axis=1), 1.0)
        assert p.initial_dist.sum() == pytest.approx(1.0)
        for cov in p.covariances.reshape(-1, 4, 4):
            np.testing.assert_allclose(cov, cov.T)
            assert np.all(np.linalg.eigvalsh(cov) > 0)

    def test_recovers_regimes(self, two_regime_data):
        X, labels = two_regime_data
        model = GaussianMixtureHMM(n_states=2, random_state=0)
        model.fit(X)
        pred = model.predict(X)
        agreement = max(np.mean(pred == labels), np.mean(pred != labels))
        assert agreement > 0.95

    def test_log_likelihood_never_decreases(self, two_regime_data):
        X, _ = two_regime_data
        model = GaussianMixtureHMM(n_states=2, random_state=0, tol=1e-10, max_iter=40)
        result = model.fit(X)
        history = np.asarray(result.history)
        assert len(history) == result.n_iter
        assert history[-1] == pytest.approx(result.log_likelihood)
        assert np.all(np.diff(history) >= -1e-6 * np.abs(history[1:]))

    def test_states_ordered_by_first_feature(self, two_regime_data):
        X, labels = two_regime_data
        model = GaussianMixtureHMM(n_states=2, random_state=0)
        model.fit(X)
        assert model.params.means[0, 0, 0] < model.params.means[1, 0, 0]
        assert np.mean(model.predict(X) == labels) > 0.95

    def test_posteriors(self, two_regime_data):
        X, _ = two_regime_data
        model = GaussianMixtureHMM(n_states=3, random_state=0)
        model.fit(X)
        gamma = model.predict_proba(X)
        assert gamma.shape == (400, 3)
        np.testing.assert_allclose(gamma.sum(axis=1), 1.0)

    def test_filtered_posteriors_are_causal(self, two_regime_data):
        X, _ = two_regime_data
        model = GaussianMixtureHMM(n_states=2, random_state=0)
        model.fit(X)
        np.testing.assert_allclose(model.filter_proba(X[:150]), model.filter_proba(X)[:150])

    def test_mixture_components(self, two_regime_data):
        X, _ = two_regime_data
        model = GaussianMixtureHMM(n_states=2, n_mix=2, random_state=0, n_init=2)
        model.fit(X)
        assert model.params.means.shape == (2, 2, 4)
        assert model.params.covariances.shape == (2, 2, 4, 4)

    def test_non_convergence_reported(self, two_regime_data, caplog):
        X, _ = two_regime_data
        model = GaussianMixtureHMM(n_states=3, max_iter=1, random_state=0)
        with caplog.at_level(logging.WARNING):
            result = model.fit(X)
        assert result.converged is False
        assert result.n_iter == 1
        assert any('did not converge' in r.message for r in caplog.records)

    def test_unfitted(self):
        with pytest.raises(RuntimeError):
            GaussianMixtureHMM(n_states=2).predict_proba(np.zeros((5, 4)))

    def test_rejects_non_finite(self):
        X = np.zeros((10, 4))
        X[3, 1] = np.nan
        with pytest.raises(ValueError):
            GaussianMixtureHMM(n_states=2).fit(X)

    def test_cancelled(self, two_regime_data):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(ComputationCancelled):
            GaussianMixtureHMM(n_states=2).fit(two_regime_data[0], token=token)


class TestCriteria:

    def test_parameter_count(self):
        # (k-1) + k(k-1) + k(M-1) + kMD + kMD(D+1)/2 with k=3, M=2, D=4
        assert GaussianMixtureHMM(n_states=3, n_mix=2).n_parameters() == 2 + 6 + 3 + 24 + 60

    def test_bic_formula(self, two_regime_data):
        X, _ = two_regime_data
        model = GaussianMixtureHMM(n_states=2, random_state=0)
        model.fit(X)
        expected = model.n_parameters() * np.log(len(X)) - 2 * model.score(X)
        assert model.bic(X) == pytest.approx(expected)

    def test_guard_covariance(self):
        cov = guard_covariance(np.zeros((3, 3)), 1e-6)
        np.linalg.cholesky(cov)


class TestSelection:

    def test_selects_two_regimes(self, two_regime_data):
        X, _ = two_regime_data
        result = select_model(X, candidate_state_counts=[1, 2, 3, 4], random_state=0)
        assert result.best_k == 2
        assert result.best_bic == min(result.scores.values())
        assert result.best_model.n_states == 2

    def test_threaded_matches_sequential(self, two_regime_data):
        X, _ = two_regime_data
        seq = select_model(X, candidate_state_counts=[1, 2, 3], random_state=0, n_jobs=1)
        par = select_model(X, candidate_state_counts=[1, 2, 3], random_state=0, n_jobs=3)
        assert seq.best_k == par.best_k
        for k in seq.scores:
            assert seq.scores[k] == pytest.approx(par.scores[k])

    def test_failing_candidates_skipped(self, two_regime_data):
        X, _ = two_regime_data
        result = select_model(X[:5], candidate_state_counts=[1, 10])
        assert list(result.scores) == [1]

    def test_all_candidates_fail(self):
        with pytest.raises(ModelSelectionError):
            select_model(np.zeros((3, 4)), candidate_state_counts=[5, 6])

    def test_cancelled(self, two_regime_data):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(ComputationCancelled):
            select_model(two_regime_data[0], candidate_state_counts=[1, 2], token=token)
