"""
Manifest: parse manifest.yaml into a PipelineConfig.

The pipeline settings may sit at the top level or under a `pipeline:` key.
A `paths:` section may name the observations file and output directory.
"""

import yaml
from pathlib import Path
from typing import Dict, Any

from kinetikos.core.config import PipelineConfig

_NON_CONFIG_KEYS = ('paths', 'pipeline')


def load_manifest(data_path: str) -> Dict[str, Any]:
    """
    Load manifest.yaml.

    Tries:
        1. data_path itself (if it's a .yaml file)
        2. data_path/manifest.yaml
    """
    p = Path(data_path)

    if p.is_file() and p.suffix in ('.yaml', '.yml'):
        manifest_path = p
    else:
        manifest_path = p / 'manifest.yaml'

    if not manifest_path.exists():
        raise FileNotFoundError(f"No manifest.yaml in {data_path}")

    with open(manifest_path) as f:
        manifest = yaml.safe_load(f) or {}

    if not isinstance(manifest, dict):
        raise ValueError(f"Manifest {manifest_path} must be a mapping")

    # Stash the manifest path for resolving relative paths
    manifest['_manifest_path'] = str(manifest_path)
    manifest['_data_dir'] = str(manifest_path.parent)

    return manifest


def pipeline_section(manifest: Dict[str, Any]) -> Dict[str, Any]:
    """The pipeline settings of a loaded manifest."""
    if 'pipeline' in manifest:
        return dict(manifest['pipeline'] or {})
    return {
        k: v for k, v in manifest.items()
        if k not in _NON_CONFIG_KEYS and not k.startswith('_')
    }


def load_pipeline_config(data_path: str) -> PipelineConfig:
    """load_manifest + PipelineConfig.from_dict (raises ValueError on bad settings)."""
    return PipelineConfig.from_dict(pipeline_section(load_manifest(data_path)))


def get_observations_path(manifest: Dict[str, Any]) -> str:
    """Observations file named under `paths:`, resolved against the manifest directory."""
    obs_rel = (manifest.get('paths') or {}).get('observations', 'observations.parquet')
    data_dir = Path(manifest.get('_data_dir', '.'))
    return str(data_dir / obs_rel)


def get_output_dir(manifest: Dict[str, Any]) -> str:
    """Output directory named under `paths:`, resolved against the manifest directory."""
    out_rel = (manifest.get('paths') or {}).get('output_dir', 'output')
    data_dir = Path(manifest.get('_data_dir', '.'))
    return str(data_dir / out_rel)
