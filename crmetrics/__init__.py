"""
Competing risks evaluation metrics.

Discrimination:
    - auc_td: time-dependent cause-specific AUC (Kaplan-Meier IPCW)
    - truncated_concordance_td: truncated C-index (marginal censoring model)

Calibration / overall fit:
    - brier_score_td, integrated_brier_score, ibs_from_brier
    - aalen_johansen_cif, pseudo_values, calibration_bins
"""

from .discrimination import auc_td, truncated_concordance_td
from .calibration import (
    brier_score_td,
    integrated_brier_score,
    ibs_from_brier,
    aalen_johansen_cif,
    pseudo_values,
    calibration_bins,
)
from .utils import estimate_ipcw, censoring_survival, marginal_censoring_survival

__all__ = [
    'auc_td',
    'truncated_concordance_td',
    'brier_score_td',
    'integrated_brier_score',
    'ibs_from_brier',
    'aalen_johansen_cif',
    'pseudo_values',
    'calibration_bins',
    'estimate_ipcw',
    'censoring_survival',
    'marginal_censoring_survival',
]
