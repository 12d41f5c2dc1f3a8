"""
Regime Entry Point.

Reads state_vectors.parquet, scores every vector with the chosen classifier
and writes:

    rules   regime_scores.parquet     archetype scores (0-100) per timestamp
    hmm     regime_posteriors.parquet regime probabilities per timestamp
            regime_model.json         fitted GM-HMM parameters (latest refit when rolling)
    both    summary.json              latest percentiles, scores, trajectory
"""

import logging
from typing import Any, Dict, Optional

import polars as pl

from kinetikos.core.cancellation import CancellationToken
from kinetikos.core.config import PipelineConfig
from kinetikos.core.pipeline import from_frame
from kinetikos.core.regime.classifier import HMMClassifier, build_classifier, summarize
from kinetikos.io.model import save_model
from kinetikos.io.reader import output_path
from kinetikos.io.writer import write_json, write_output

logger = logging.getLogger(__name__)


def scores_frame(timestamps, scores) -> pl.DataFrame:
    """One row per timestamp, one Float64 column per regime (null when unscored)."""
    names = []
    for row in scores:
        for name in row:
            if name not in names:
                names.append(name)
    columns = {'timestamp': list(timestamps)}
    for name in names:
        columns[name] = [row.get(name) for row in scores]
    schema = {name: pl.Float64 for name in columns}
    return pl.DataFrame(columns, schema=schema)


def run(
    state_vectors_path: str,
    output_dir: str,
    config: Optional[PipelineConfig] = None,
    classifier: str = 'rules',
    verbose: bool = True,
    token: Optional[CancellationToken] = None,
) -> Dict[str, Any]:
    """
    Score regimes and write the summary.

    Args:
        state_vectors_path: Path to state_vectors.parquet
        output_dir: Output directory
        config: PipelineConfig (classifier / regime_model sections are used)
        classifier: 'rules' or 'hmm'
        verbose: Print progress
        token: Optional cancellation token

    Returns:
        Summary dict (as written to summary.json)

    Raises:
        ModelSelectionError: hmm classifier with no fittable candidate
    """
    config = config if config is not None else PipelineConfig()

    if verbose:
        print("=" * 70)
        print(f"STAGE: REGIME ({classifier}, {config.classifier.mode})")
        print("=" * 70)

    vectors = from_frame(pl.read_parquet(state_vectors_path))
    if not vectors:
        raise ValueError(f"No state vectors in {state_vectors_path}")

    clf = build_classifier(classifier, config.classifier, config.regime_model, token=token)
    scores = clf.classify_series(vectors)
    is_hmm = isinstance(clf, HMMClassifier)

    if is_hmm and verbose and clf.selection is not None:
        sel = clf.selection
        for k, bic in sorted(sel.scores.items()):
            marker = ' <-' if k == sel.best_k else ''
            print(f"  k={k}: BIC={bic:.2f}{marker}")

    name = 'regime_posteriors' if is_hmm else 'regime_scores'
    write_output(scores_frame([sv.timestamp for sv in vectors], scores), output_dir, name, verbose=verbose)

    summary = summarize(
        vectors, clf,
        percentile_window=config.classifier.percentile_window,
        mode=config.classifier.mode,
        regime_scores=scores[-1],
    ).to_dict()

    if is_hmm and clf.selection is not None:
        summary['model_selection'] = {
            'best_k': clf.selection.best_k,
            'bic': {str(k): v for k, v in clf.selection.scores.items()},
            'converged': clf.model.fit_result.converged,
        }
        path = save_model(clf.model.params, output_path(output_dir, 'regime_model'))
        if verbose:
            print(f"  -> {path}")

    write_json(summary, output_dir, 'summary', verbose=verbose)

    if verbose and summary['dominant_regime'] is not None:
        print(f"Latest regime: {summary['dominant_regime']}")
    logger.info("Regime stage complete (%s, %d vectors)", classifier, len(vectors))
    return summary
