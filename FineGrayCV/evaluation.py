"""
Per-split evaluation of a fitted Fine-Gray model on its held-out partition.

Risk evaluation
    - average cumulative incidence curve over 0..max_time
    - time-dependent AUC and Brier score at 1..horizon (Kaplan-Meier
      censoring model) and the IBS at the horizon
    - truncated C-index at the horizon (marginal censoring model)

Calibration evaluation
    - decile (quantile) bins of predicted risk at a horizon, mean predicted
      vs. mean pseudo-value observed risk

All outputs are long-format DataFrames tagged with the split id ('Fold').
"""

import warnings
import numpy as np
import pandas as pd
from typing import NamedTuple, Sequence

from crmetrics.utils import estimate_ipcw
from crmetrics.discrimination import auc_td, truncated_concordance_td
from crmetrics.calibration import brier_score_td, ibs_from_brier, calibration_bins


class RiskEvaluation(NamedTuple):
    cif: pd.DataFrame       # Fold, Time, CIF
    auc: pd.DataFrame       # Fold, Time_Horizon, times, AUC
    brier: pd.DataFrame     # Fold, Time_Horizon, times, Brier
    ibs: pd.DataFrame       # Fold, Time_Horizon, IBS
    cindex: pd.DataFrame    # Fold, Time_Horizon, Cindex


def evaluate_risk(
    model,
    test_data: pd.DataFrame,
    split_id: int,
    horizons: Sequence[int],
    max_time: float,
    cause: int = 1,
    time_col: str = 'time',
    status_col: str = 'status',
    verbose: bool = False
) -> RiskEvaluation:
    """
    Score one fitted model on its held-out partition.

    Parameters
    ----------
    model
        Anything with ``predict_cif(data, times) -> (n_samples, n_times)``
    test_data : pd.DataFrame
        Held-out subjects
    split_id : int
        Written to the 'Fold' column of every table
    horizons : sequence of int
        Upper time horizons; each is scored at times 1..horizon
    max_time : float
        The incidence curve spans 0..max_time in steps of 1
    cause : int
        Cause of interest

    Returns
    -------
    RiskEvaluation
    """
    e = test_data[status_col].values.astype(int)
    t = test_data[time_col].values.astype(float)

    horizons = [int(h) for h in horizons]
    last = int(max(max_time, max(horizons)))
    grid = np.arange(0, last + 1, dtype=float)
    cif_matrix = model.predict_cif(test_data, grid)

    curve_times = grid[grid <= max_time]
    cif = pd.DataFrame({
        'Fold': split_id,
        'Time': curve_times,
        'CIF': cif_matrix[:, :len(curve_times)].mean(axis=0),
    })

    # Score-style censoring model, estimated once on the held-out data
    kmf = estimate_ipcw((e, t))

    auc_tables, brier_tables, ibs_rows, cindex_rows = [], [], [], []
    for horizon in horizons:
        if verbose:
            print(f"  Evaluating up to time horizon: {horizon}")

        times = grid[1:horizon + 1]
        risk = cif_matrix[:, 1:horizon + 1]

        auc = auc_td(e, t, risk, times, km=kmf, competing_risk=cause)
        brier = brier_score_td(e, t, risk, times, km=kmf, competing_risk=cause)
        ibs = ibs_from_brier(brier, times, horizon)
        if np.isnan(ibs):
            warnings.warn(f"No IBS for split {split_id} at horizon {horizon}; recorded as missing")

        auc_tables.append(pd.DataFrame({
            'Fold': split_id, 'Time_Horizon': horizon, 'times': times, 'AUC': auc,
        }))
        brier_tables.append(pd.DataFrame({
            'Fold': split_id, 'Time_Horizon': horizon, 'times': times, 'Brier': brier,
        }))
        ibs_rows.append({'Fold': split_id, 'Time_Horizon': horizon, 'IBS': ibs})

        if verbose:
            print(f"  Computing C-index at time horizon: {horizon}")
        c_index, _ = truncated_concordance_td(
            e, t, cif_matrix[:, horizon], times, horizon,
            km=(e, t), competing_risk=cause
        )
        cindex_rows.append({'Fold': split_id, 'Time_Horizon': horizon, 'Cindex': c_index})

    return RiskEvaluation(
        cif=cif,
        auc=pd.concat(auc_tables, ignore_index=True),
        brier=pd.concat(brier_tables, ignore_index=True),
        ibs=pd.DataFrame(ibs_rows, columns=['Fold', 'Time_Horizon', 'IBS']),
        cindex=pd.DataFrame(cindex_rows, columns=['Fold', 'Time_Horizon', 'Cindex']),
    )


def evaluate_calibration(
    model,
    test_data: pd.DataFrame,
    split_id: int,
    horizon: float,
    n_bins: int = 10,
    cause: int = 1,
    time_col: str = 'time',
    status_col: str = 'status'
) -> pd.DataFrame:
    """
    Quantile-binned calibration of predicted risk at ``horizon``.

    Returns
    -------
    pd.DataFrame
        Fold, Time_Horizon, bin, predicted_risk, observed_risk, n
        (fewer than ``n_bins`` rows when tied predictions collapse bins)
    """
    e = test_data[status_col].values.astype(int)
    t = test_data[time_col].values.astype(float)
    risk = model.predict_cif(test_data, [horizon])[:, 0]

    table = calibration_bins(e, t, risk, horizon, n_bins=n_bins, competing_risk=cause)
    table.insert(0, 'Time_Horizon', horizon)
    table.insert(0, 'Fold', split_id)
    return table
