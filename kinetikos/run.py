"""
Kinetikos Sequencer
===================

Runs the stages in dependency order:

    state_vector   observations -> state_vectors.parquet
    regime         state_vectors.parquet -> regime outputs + summary.json

Pure orchestration, no computation here.

Usage:
    python -m kinetikos data/spy.parquet
    python -m kinetikos data/spy.csv --manifest manifest.yaml --classifier hmm
    python -m kinetikos data/spy.parquet --stages regime --hindsight
    python -m kinetikos --manifest data/manifest.yaml   # paths: observations, output_dir
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from kinetikos.core.cancellation import CancellationToken
from kinetikos.core.config import PipelineConfig
from kinetikos.io.manifest import get_observations_path, get_output_dir, load_manifest, pipeline_section
from kinetikos.io.reader import output_path

logger = logging.getLogger(__name__)

ALL_STAGES = ['state_vector', 'regime']


def run(
    observations_path: str,
    output_dir: str,
    config: Optional[PipelineConfig] = None,
    stages: Optional[List[str]] = None,
    classifier: str = 'rules',
    verbose: bool = True,
    token: Optional[CancellationToken] = None,
) -> Dict[str, Any]:
    """
    Run pipeline stages in order.

    Args:
        observations_path: Observations file or directory
        output_dir: Where to write outputs
        config: PipelineConfig (defaults if None)
        stages: Subset of ALL_STAGES (all by default)
        classifier: 'rules' or 'hmm' for the regime stage
        verbose: Print progress
        token: Optional cancellation token

    Returns:
        dict with 'state_vectors' (DataFrame) and/or 'summary' (dict)
    """
    from kinetikos.stages import regime, state_vector

    config = config if config is not None else PipelineConfig()
    run_stages = [s for s in ALL_STAGES if not stages or s in stages]
    unknown = sorted(set(stages or []) - set(ALL_STAGES))
    if unknown:
        raise ValueError(f"Unknown stages: {unknown} (expected {ALL_STAGES})")

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    if verbose:
        print("=" * 70)
        print("KINETIKOS PIPELINE")
        print("=" * 70)
        print(f"Input:      {observations_path}")
        print(f"Output:     {out}")
        print(f"Stages:     {', '.join(run_stages)}")
        print(f"Classifier: {classifier} ({config.classifier.mode})")
        print(f"Workers:    {config.regime_model.effective_n_jobs}")
        print()

    start = time.time()
    results: Dict[str, Any] = {}

    if 'state_vector' in run_stages:
        results['state_vectors'] = state_vector.run(
            observations_path, str(out), config=config, verbose=verbose, token=token,
        )
        if verbose:
            print()

    if 'regime' in run_stages:
        sv_path = output_path(str(out), 'state_vectors')
        if not sv_path.exists():
            raise FileNotFoundError(f"state_vectors.parquet not found in {out}; run the state_vector stage first")
        results['summary'] = regime.run(
            str(sv_path), str(out), config=config, classifier=classifier,
            verbose=verbose, token=token,
        )
        if verbose:
            print()

    if verbose:
        print(f"Elapsed: {time.time() - start:.1f}s")
        print("=" * 70)
        print("PIPELINE COMPLETE")
        print("=" * 70)
    return results


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='kinetikos',
        description='Causal market state vector and regime engine',
    )
    parser.add_argument('observations', nargs='?',
                        help='Observations .parquet/.csv (timestamp, price, volume); '
                             'defaults to paths.observations in the manifest')
    parser.add_argument('--manifest', help='manifest.yaml with pipeline settings')
    parser.add_argument('--output', default=None, help='Output directory (default: paths.output_dir in the manifest, else <observations dir>/output)')
    parser.add_argument('--stages', default=None,
                        help=f"Comma-separated subset of {','.join(ALL_STAGES)}")
    parser.add_argument('--classifier', choices=['rules', 'hmm'], default='rules')
    parser.add_argument('--hindsight', action='store_true',
                        help='Rank/score against the whole history (not causal)')
    parser.add_argument('--log-level', default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    parser.add_argument('-q', '--quiet', action='store_true', help='Suppress progress output')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    manifest = load_manifest(args.manifest) if args.manifest else None
    config = PipelineConfig.from_dict(pipeline_section(manifest)) if manifest is not None else PipelineConfig()
    if args.hindsight:
        config.classifier.mode = 'hindsight'

    if args.observations:
        obs = Path(args.observations)
    elif manifest is not None:
        obs = Path(get_observations_path(manifest))
    else:
        build_parser().error('observations path required (or --manifest with paths.observations)')

    if args.output:
        output_dir = args.output
    elif manifest is not None and 'output_dir' in (manifest.get('paths') or {}):
        output_dir = get_output_dir(manifest)
    else:
        output_dir = str((obs.parent if obs.is_file() else obs) / 'output')
    stages = [s.strip() for s in args.stages.split(',') if s.strip()] if args.stages else None

    run(
        str(obs),
        output_dir,
        config=config,
        stages=stages,
        classifier=args.classifier,
        verbose=not args.quiet,
    )
    return 0


if __name__ == '__main__':
    sys.exit(main())
