"""
Configuration for repeated cross-validation of Fine-Gray models.

Defaults reproduce the head and neck cohort analysis (5 x 5 repeated CV,
horizons at 36/60/114 months, decile calibration at 60 and 114 months).
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_CATEGORICAL_VARS = [
    'Insurance_Type',
    'Node',
    'Periodontal_Grading',
    'Disease_Site_Merged_2',
]

DEFAULT_CONTINUOUS_VARS = [
    'Age',
    'Smoking_Pack_per_Year',
    'Income_1000',
    'Number_Teeth_after_Extraction',
    'RT_Dose',
    'D20',
]

DEFAULT_CV_CONFIG = {
    'seed': 123,
    'k_folds': 5,
    'n_repeats': 5,
    'categorical_vars': DEFAULT_CATEGORICAL_VARS,
    'continuous_vars': DEFAULT_CONTINUOUS_VARS,
    'time_horizons': (36, 60, 114),
    'cal_time_horizons': (60, 114),
    'cal_bins': 10,
    'max_time': 114,
    'cause': 1,
    'ci_level': 0.95,
    'penalizer': 0.0,
    'on_fit_error': 'raise',  # or 'skip'
    'n_jobs': 1,
}

FIT_ERROR_POLICIES = ('raise', 'skip')


def resolve_config(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Merge user overrides into DEFAULT_CV_CONFIG and validate the result.

    Raises:
        ValueError on unknown keys or invalid values
    """
    overrides = dict(overrides or {})
    unknown = sorted(set(overrides) - set(DEFAULT_CV_CONFIG))
    if unknown:
        raise ValueError(f"Unknown configuration keys: {unknown}")

    config = {**DEFAULT_CV_CONFIG, **overrides}
    config['categorical_vars'] = list(config['categorical_vars'])
    config['continuous_vars'] = list(config['continuous_vars'])
    config['time_horizons'] = tuple(sorted(int(h) for h in config['time_horizons']))
    config['cal_time_horizons'] = tuple(int(h) for h in config['cal_time_horizons'])

    if int(config['k_folds']) < 2:
        raise ValueError(f"k_folds must be at least 2, got {config['k_folds']}")
    if int(config['n_repeats']) < 1:
        raise ValueError(f"n_repeats must be at least 1, got {config['n_repeats']}")
    if not config['time_horizons']:
        raise ValueError("time_horizons must not be empty")
    if any(h < 1 for h in config['time_horizons'] + config['cal_time_horizons']):
        raise ValueError("Time horizons must be positive")
    if max(config['time_horizons']) > config['max_time']:
        raise ValueError(
            f"Largest time horizon {max(config['time_horizons'])} exceeds "
            f"max_time {config['max_time']}"
        )
    if int(config['cal_bins']) < 1:
        raise ValueError(f"cal_bins must be positive, got {config['cal_bins']}")
    if not 0 < config['ci_level'] < 1:
        raise ValueError(f"ci_level must be in (0, 1), got {config['ci_level']}")
    if config['on_fit_error'] not in FIT_ERROR_POLICIES:
        raise ValueError(
            f"on_fit_error must be one of {FIT_ERROR_POLICIES}, got {config['on_fit_error']!r}"
        )
    if not config['categorical_vars'] and not config['continuous_vars']:
        raise ValueError("At least one predictor is required")

    return config


def load_config(path) -> Dict[str, Any]:
    """Read a JSON file of overrides and resolve it against the defaults."""
    with open(Path(path), 'r') as f:
        overrides = json.load(f)
    return resolve_config(overrides)
