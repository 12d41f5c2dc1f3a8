"""
End-to-end tests for the sequencer and CLI.
"""

import json

import numpy as np
import polars as pl
import pytest

from kinetikos.core.config import PipelineConfig
from kinetikos.run import main, run
from kinetikos.validation import ValidationError


@pytest.fixture
def observations_csv(tmp_path):
    rng = np.random.default_rng(21)
    n = 150
    prices = 100.0 + np.cumsum(rng.normal(0, 1, n))
    volumes = rng.uniform(500, 1500, n)
    path = tmp_path / 'obs.csv'
    pl.DataFrame({
        'timestamp': np.arange(n, dtype=float) * 60_000.0,
        'price': prices,
        'volume': volumes,
    }).write_csv(path)
    return path


@pytest.fixture
def manifest(tmp_path):
    path = tmp_path / 'manifest.yaml'
    path.write_text(
        "pipeline:\n"
        "  smoothing_window: 7\n"
        "  equilibrium_window: 10\n"
        "  entropy_window: 15\n"
        "  temperature_window: 15\n"
        "  parameter_filter:\n"
        "    particle_count: 100\n"
        "  regime_model:\n"
        "    candidate_state_counts: [1, 2]\n"
        "    random_state: 0\n"
        "  classifier:\n"
        "    percentile_window: 50\n"
    )
    return path


class TestRun:

    def test_rules(self, tmp_path, observations_csv, manifest):
        out = tmp_path / 'out'
        assert main([str(observations_csv), '--manifest', str(manifest),
                     '--output', str(out), '-q']) == 0

        sv = pl.read_parquet(out / 'state_vectors.parquet')
        assert sv.height == 150
        assert 'rank_entropy' in sv.columns
        scores = pl.read_parquet(out / 'regime_scores.parquet')
        assert scores.height == 150
        summary = json.loads((out / 'summary.json').read_text())
        assert summary['classifier'] == 'rules'
        assert summary['mode'] == 'rolling'
        assert set(summary['percentiles']) == {'potential', 'momentum', 'entropy', 'temperature'}

    def test_hmm_hindsight(self, tmp_path, observations_csv, manifest):
        out = tmp_path / 'out'
        main([str(observations_csv), '--manifest', str(manifest), '--output', str(out),
              '--classifier', 'hmm', '--hindsight', '-q'])
        summary = json.loads((out / 'summary.json').read_text())
        assert summary['classifier'] == 'hmm'
        assert summary['mode'] == 'hindsight'
        assert summary['model_selection']['best_k'] in (1, 2)
        assert (out / 'regime_model.json').exists()
        assert (out / 'regime_posteriors.parquet').exists()

    def test_hmm_rolling(self, tmp_path, observations_csv, manifest):
        out = tmp_path / 'out'
        main([str(observations_csv), '--manifest', str(manifest), '--output', str(out),
              '--classifier', 'hmm', '-q'])
        summary = json.loads((out / 'summary.json').read_text())
        assert summary['mode'] == 'rolling'
        assert summary['model_selection']['best_k'] in (1, 2)
        assert (out / 'regime_model.json').exists()

        posteriors = pl.read_parquet(out / 'regime_posteriors.parquet')
        assert posteriors.height == 150
        assert posteriors.row(0, named=True)['Regime 0'] is None

    def test_paths_from_manifest(self, tmp_path, observations_csv):
        manifest = tmp_path / 'manifest.yaml'
        manifest.write_text(
            "paths:\n"
            "  observations: obs.csv\n"
            "  output_dir: results\n"
            "smoothing_window: 7\n"
            "entropy_window: 15\n"
            "temperature_window: 15\n"
        )
        assert main(['--manifest', str(manifest), '-q']) == 0
        assert (tmp_path / 'results' / 'state_vectors.parquet').exists()
        assert (tmp_path / 'results' / 'summary.json').exists()

    def test_observations_required(self):
        with pytest.raises(SystemExit):
            main(['-q'])

    def test_stage_subset_requires_state_vectors(self, tmp_path, observations_csv):
        with pytest.raises(FileNotFoundError):
            run(str(observations_csv), str(tmp_path / 'empty'), stages=['regime'], verbose=False)

    def test_unknown_stage(self, tmp_path, observations_csv):
        with pytest.raises(ValueError):
            run(str(observations_csv), str(tmp_path / 'o'), stages=['bogus'], verbose=False)

    def test_invalid_observations(self, tmp_path):
        path = tmp_path / 'bad.csv'
        path.write_text("timestamp,price,volume\n1,10,5\n2,11,-3\n")
        with pytest.raises(ValidationError):
            run(str(path), str(tmp_path / 'o'), config=PipelineConfig(), verbose=False)
