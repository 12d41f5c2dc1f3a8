"""
Regime models.

    hmm.py         GaussianMixtureHMM (Baum-Welch, k-means init)
    selection.py   BIC selection over candidate state counts
    classifier.py  RuleBasedClassifier / HMMClassifier, percentile ranks, MarketSummary
"""

from kinetikos.core.regime.hmm import FitResult, GaussianMixtureHMM, RegimeModelParameters
from kinetikos.core.regime.selection import SelectionResult, select_from_config, select_model
from kinetikos.core.regime.classifier import (
    REGIME_RULES,
    HMMClassifier,
    MarketSummary,
    RegimeClassifier,
    RuleBasedClassifier,
    build_classifier,
    percentile_rank,
    summarize,
)

__all__ = [
    'FitResult',
    'GaussianMixtureHMM',
    'RegimeModelParameters',
    'SelectionResult',
    'select_model',
    'select_from_config',
    'REGIME_RULES',
    'RegimeClassifier',
    'RuleBasedClassifier',
    'HMMClassifier',
    'build_classifier',
    'percentile_rank',
    'MarketSummary',
    'summarize',
]
