"""
Calibration and overall-fit metrics for competing risks predictions.

- Brier score with IPCW (Kaplan-Meier censoring model), cause-specific
- Integrated Brier Score up to an endpoint
- Aalen-Johansen cumulative incidence and its jackknife pseudo-values
- Quantile-binned calibration table (mean predicted vs. mean pseudo-value)
"""

import numpy as np
import pandas as pd
from scipy.integrate import trapezoid
from typing import Optional, Tuple

from .utils import estimate_ipcw, censoring_survival, as_risk_matrix


def brier_score_td(
    e: np.ndarray,
    t: np.ndarray,
    risk_predicted: np.ndarray,
    times: np.ndarray,
    km=None,
    competing_risk: int = 1
) -> np.ndarray:
    """
    Brier score of predicted cumulative incidence at each time.

    BS(s) = 1/n sum_i W_i(s) (1{T_i <= s, cause} - F_i(s))^2 where
    W_i(s) = 1{T_i <= s, uncensored} / G(T_i-) + 1{T_i > s} / G(s).
    Subjects censored before s get weight zero but stay in n.

    Returns
    -------
    brier : np.ndarray
        Brier score per time, NaN beyond the last observed follow-up
    """
    e = np.asarray(e).flatten()
    t = np.asarray(t, dtype=float).flatten()
    times = np.atleast_1d(np.asarray(times, dtype=float))
    risk_predicted = as_risk_matrix(risk_predicted, len(times))

    kmf = estimate_ipcw((e, t) if km is None else km)
    G_t_minus = np.maximum(censoring_survival(kmf, t, left=True), 1e-10)
    G_times = censoring_survival(kmf, times)

    n = len(t)
    brier = np.full(len(times), np.nan)
    for k, s in enumerate(times):
        if s > t.max() or G_times[k] <= 0:
            continue

        observed = ((t <= s) & (e == competing_risk)).astype(float)
        weights = np.zeros(n)
        died = (t <= s) & (e != 0)
        weights[died] = 1.0 / G_t_minus[died]
        weights[t > s] = 1.0 / G_times[k]

        brier[k] = np.sum(weights * (observed - risk_predicted[:, k]) ** 2) / n

    return brier


def integrated_brier_score(
    e: np.ndarray,
    t: np.ndarray,
    risk_predicted: np.ndarray,
    times: np.ndarray,
    t_eval: Optional[float] = None,
    km=None,
    competing_risk: int = 1
) -> Tuple[float, object]:
    """
    Integrated Brier Score from the first evaluation time up to ``t_eval``.

    The Brier curve is integrated with the trapezoidal rule and divided by
    the length of the integration range. When the Brier score at ``t_eval``
    itself cannot be computed there is no IBS for that endpoint and NaN is
    returned.

    Returns
    -------
    ibs : float
    km : fitted censoring estimator (reusable for further calls)
    """
    e = np.asarray(e).flatten()
    t = np.asarray(t, dtype=float).flatten()
    times = np.atleast_1d(np.asarray(times, dtype=float))
    if t_eval is None:
        t_eval = times[-1]

    kmf = estimate_ipcw((e, t) if km is None else km)
    brier = brier_score_td(e, t, risk_predicted, times, km=kmf,
                           competing_risk=competing_risk)
    return ibs_from_brier(brier, times, t_eval), kmf


def ibs_from_brier(brier: np.ndarray, times: np.ndarray, t_eval: float) -> float:
    """Integrate an already computed Brier curve up to ``t_eval`` (NaN if undefined there)."""
    brier = np.asarray(brier, dtype=float)
    times = np.asarray(times, dtype=float)

    selected = times <= t_eval
    if not selected.any() or np.isnan(brier[selected][-1]):
        return np.nan

    valid_times = times[selected]
    valid_brier = brier[selected]
    finite = ~np.isnan(valid_brier)
    valid_times, valid_brier = valid_times[finite], valid_brier[finite]

    if len(valid_brier) == 1:
        return float(valid_brier[0])

    ibs = trapezoid(valid_brier, valid_times) / (valid_times[-1] - valid_times[0])
    return float(ibs)


def _event_counts(e, t, t_eval, competing_risk):
    """Distinct times <= t_eval with at-risk, all-cause and cause counts."""
    e = np.asarray(e).flatten()
    t = np.asarray(t, dtype=float).flatten()
    grid = np.unique(t[(e != 0) & (t <= t_eval)])
    t_sorted = np.sort(t)
    n_at_risk = (len(t) - np.searchsorted(t_sorted, grid, side='left')).astype(float)
    d_all = np.array([np.sum((t == s) & (e != 0)) for s in grid], dtype=float)
    d_cause = np.array([np.sum((t == s) & (e == competing_risk)) for s in grid], dtype=float)
    return grid, n_at_risk, d_all, d_cause


def _aalen_johansen(n_at_risk, d_all, d_cause):
    """CIF at the end of the grid from at-risk and event counts."""
    hazard_all = np.divide(d_all, n_at_risk, out=np.zeros_like(d_all), where=n_at_risk > 0)
    hazard_cause = np.divide(d_cause, n_at_risk, out=np.zeros_like(d_cause), where=n_at_risk > 0)
    surv_before = np.concatenate([[1.0], np.cumprod(1.0 - hazard_all)[:-1]])
    return float(np.sum(surv_before * hazard_cause))


def aalen_johansen_cif(
    e: np.ndarray,
    t: np.ndarray,
    t_eval: float,
    competing_risk: int = 1
) -> float:
    """Aalen-Johansen estimate of the cumulative incidence of a cause at t_eval."""
    grid, n_at_risk, d_all, d_cause = _event_counts(e, t, t_eval, competing_risk)
    if len(grid) == 0:
        return 0.0
    return _aalen_johansen(n_at_risk, d_all, d_cause)


def pseudo_values(
    e: np.ndarray,
    t: np.ndarray,
    t_eval: float,
    competing_risk: int = 1
) -> np.ndarray:
    """
    Jackknife pseudo-values of the Aalen-Johansen CIF at ``t_eval``.

    theta_i = n * F(t_eval) - (n - 1) * F_{-i}(t_eval), where F_{-i} leaves
    subject i out. Their mean over a group estimates the group's observed
    cumulative incidence under independent censoring.
    """
    e = np.asarray(e).flatten()
    t = np.asarray(t, dtype=float).flatten()
    n = len(t)

    grid, n_at_risk, d_all, d_cause = _event_counts(e, t, t_eval, competing_risk)
    if len(grid) == 0:
        return np.zeros(n)

    full = _aalen_johansen(n_at_risk, d_all, d_cause)
    pseudo = np.empty(n)
    for i in range(n):
        at_event_time = grid == t[i]
        n_i = n_at_risk - (grid <= t[i])
        d_all_i = d_all - at_event_time * (e[i] != 0)
        d_cause_i = d_cause - at_event_time * (e[i] == competing_risk)
        pseudo[i] = n * full - (n - 1) * _aalen_johansen(n_i, d_all_i, d_cause_i)

    return pseudo


def calibration_bins(
    e: np.ndarray,
    t: np.ndarray,
    risk_at_time: np.ndarray,
    t_eval: float,
    n_bins: int = 10,
    competing_risk: int = 1
) -> pd.DataFrame:
    """
    Calibration table with equal-frequency bins of predicted risk.

    Subjects are grouped by quantiles of their predicted risk at ``t_eval``.
    Tied predictions can collapse bins, so fewer than ``n_bins`` rows may
    come back.

    Returns
    -------
    pd.DataFrame
        Columns: bin (1-based), predicted_risk, observed_risk, n
    """
    risk_at_time = np.asarray(risk_at_time, dtype=float).flatten()
    observed = pseudo_values(e, t, t_eval, competing_risk=competing_risk)

    if len(np.unique(risk_at_time)) == 1:
        groups = np.zeros(len(risk_at_time), dtype=int)
    else:
        groups = pd.qcut(risk_at_time, q=n_bins, labels=False, duplicates='drop')

    frame = pd.DataFrame({
        'group': groups,
        'predicted_risk': risk_at_time,
        'observed_risk': observed,
    })
    table = frame.groupby('group', sort=True).agg(
        predicted_risk=('predicted_risk', 'mean'),
        observed_risk=('observed_risk', 'mean'),
        n=('predicted_risk', 'size'),
    ).reset_index(drop=True)
    table.insert(0, 'bin', np.arange(1, len(table) + 1))
    return table
