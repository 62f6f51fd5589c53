"""
Mean and normal-approximation confidence intervals across folds.

One helper serves every statistic (AUC, Brier, IBS, C-index, CIF and
calibration bins).
"""

import numpy as np
import pandas as pd
from scipy.stats import norm
from typing import List, Sequence, Tuple, Union


def compute_mean_ci(x: Sequence[float], ci_level: float = 0.95) -> Tuple[float, float, float]:
    """
    Mean and CI of a sample: mean +/- z * sd / sqrt(n).

    Missing values are dropped before counting. With fewer than two values
    the bounds are NaN (and the mean too when nothing is left).

    Returns
    -------
    (mean, lower, upper)
    """
    x = np.asarray(x, dtype=float)
    x = np.sort(x[~np.isnan(x)])
    n = len(x)
    if n == 0:
        return np.nan, np.nan, np.nan
    if n < 2:
        return float(x[0]), np.nan, np.nan
    if x[0] == x[-1]:
        # zero variance
        return float(x[0]), float(x[0]), float(x[0])

    m = float(np.mean(x))
    sd = float(np.std(x, ddof=1))
    se = sd / np.sqrt(n)
    z = norm.ppf(1 - (1 - ci_level) / 2)  # ~1.96 for 95% CI
    return m, m - z * se, m + z * se


def summarize(
    records: pd.DataFrame,
    by: Union[str, List[str]],
    value: str,
    prefix: str = None,
    ci_level: float = 0.95
) -> pd.DataFrame:
    """
    Group long-format metric records and summarise each group.

    Parameters
    ----------
    records : pd.DataFrame
        One row per (fold, key) with a numeric ``value`` column
    by : str or list
        Grouping key column(s)
    value : str
        Column to summarise
    prefix : str, optional
        Output column prefix (defaults to ``value``)
    ci_level : float
        Confidence level

    Returns
    -------
    pd.DataFrame
        Key columns, <prefix>_Mean, <prefix>_LowerCI, <prefix>_UpperCI and N,
        sorted by key
    """
    by = [by] if isinstance(by, str) else list(by)
    prefix = prefix or value
    columns = [*by, f'{prefix}_Mean', f'{prefix}_LowerCI', f'{prefix}_UpperCI', 'N']
    if records.empty:
        return pd.DataFrame(columns=columns)

    rows = []
    for key, group in records.groupby(by, sort=True, observed=True):
        key = key if isinstance(key, tuple) else (key,)
        mean, lower, upper = compute_mean_ci(group[value].values, ci_level)
        rows.append((*key, mean, lower, upper, int(group[value].notna().sum())))

    return pd.DataFrame(rows, columns=columns)


def add_time_range(summary: pd.DataFrame, time_col: str = 'times', cut: float = 60) -> pd.DataFrame:
    """Label rows '0-60' / '60-Max' for plotting two colour bands."""
    summary = summary.copy()
    summary['Time_Range'] = np.where(
        summary[time_col] <= cut, f'0-{cut:g}', f'{cut:g}-Max'
    )
    summary.loc[summary[time_col] <= 0, 'Time_Range'] = None
    return summary
