"""
Regime model persistence (JSON).
"""

import json
from pathlib import Path
from typing import Any, Dict, Union

import numpy as np

from kinetikos.core.regime.hmm import RegimeModelParameters

_ARRAY_FIELDS = (
    'initial_dist', 'transition_matrix', 'mixture_weights',
    'means', 'covariances', 'feature_mean', 'feature_std',
)

FORMAT_VERSION = 1


def parameters_to_dict(params: RegimeModelParameters) -> Dict[str, Any]:
    out = {name: np.asarray(getattr(params, name)).tolist() for name in _ARRAY_FIELDS}
    out['feature_names'] = list(params.feature_names)
    out['format_version'] = FORMAT_VERSION
    return out


def parameters_from_dict(raw: Dict[str, Any]) -> RegimeModelParameters:
    """
    Rebuild parameters, checking shape consistency.

    Raises:
        ValueError: on missing fields or inconsistent shapes
    """
    missing = [name for name in _ARRAY_FIELDS[:5] if name not in raw]
    if missing:
        raise ValueError(f"Model JSON missing fields: {missing}")

    arrays = {name: np.asarray(raw[name], dtype=np.float64) for name in _ARRAY_FIELDS if name in raw}
    k = arrays['transition_matrix'].shape[0]
    M = arrays['mixture_weights'].shape[1] if arrays['mixture_weights'].ndim == 2 else 0
    D = arrays['means'].shape[-1] if arrays['means'].ndim == 3 else 0
    expected = {
        'initial_dist': (k,),
        'transition_matrix': (k, k),
        'mixture_weights': (k, M),
        'means': (k, M, D),
        'covariances': (k, M, D, D),
    }
    for name, shape in expected.items():
        if arrays[name].shape != shape:
            raise ValueError(f"{name} has shape {arrays[name].shape}, expected {shape}")

    kwargs = dict(arrays)
    if 'feature_names' in raw:
        kwargs['feature_names'] = list(raw['feature_names'])
    return RegimeModelParameters(**kwargs)


def save_model(params: RegimeModelParameters, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(parameters_to_dict(params), f, indent=2)
    return path


def load_model(path: Union[str, Path]) -> RegimeModelParameters:
    with open(path) as f:
        return parameters_from_dict(json.load(f))
