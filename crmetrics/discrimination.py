"""
Discrimination metrics for competing risks predictions.

- Time-dependent, cause-specific AUC with inverse probability of censoring
  weights from a Kaplan-Meier censoring model (cases vs. event-free and
  competing-event controls).
- Truncated, cause-specific concordance index (Wolbers et al., 2009) with
  weights from a marginal censoring model.

The two use different censoring corrections on purpose, matching the
scoring routines they reproduce; do not merge them.
"""

import numpy as np
from typing import Optional, Tuple

from .utils import (
    estimate_ipcw,
    censoring_survival,
    marginal_censoring_survival,
    as_risk_matrix,
)


def auc_td(
    e: np.ndarray,
    t: np.ndarray,
    risk_predicted: np.ndarray,
    times: np.ndarray,
    km=None,
    competing_risk: int = 1
) -> np.ndarray:
    """
    Time-dependent AUC for the cause ``competing_risk``.

    Cases at time s: T_i <= s with the event of interest, weighted 1/G(T_i-).
    Controls: T_j > s (weight 1/G(s)) or a competing event by s
    (weight 1/G(T_j-)). Subjects censored before s are left out.

    Parameters
    ----------
    e : np.ndarray
        Event indicators (0 = censored, 1, 2, ... = causes)
    t : np.ndarray
        Observed times
    risk_predicted : np.ndarray
        Predicted cumulative incidence, shape (n_samples, n_times)
    times : np.ndarray
        Evaluation times (columns of ``risk_predicted``)
    km : KaplanMeierFitter, tuple (e, t) or None
        Censoring model; fitted on (e, t) when None
    competing_risk : int
        Cause of interest

    Returns
    -------
    auc : np.ndarray
        AUC at each time, NaN where there are no cases or no controls or
        the time is beyond the last observed follow-up
    """
    e = np.asarray(e).flatten()
    t = np.asarray(t, dtype=float).flatten()
    times = np.atleast_1d(np.asarray(times, dtype=float))
    risk_predicted = as_risk_matrix(risk_predicted, len(times))

    kmf = estimate_ipcw((e, t) if km is None else km)
    G_t_minus = censoring_survival(kmf, t, left=True)
    G_times = censoring_survival(kmf, times)

    auc = np.full(len(times), np.nan)
    for k, s in enumerate(times):
        if s > t.max() or G_times[k] <= 0:
            continue

        cases = (t <= s) & (e == competing_risk)
        controls_alive = t > s
        controls_competing = (t <= s) & (e != 0) & (e != competing_risk)
        controls = controls_alive | controls_competing
        if not cases.any() or not controls.any():
            continue

        w_cases = 1.0 / np.maximum(G_t_minus[cases], 1e-10)
        w_controls = np.where(
            controls_alive[controls],
            1.0 / G_times[k],
            1.0 / np.maximum(G_t_minus[controls], 1e-10)
        )

        r = risk_predicted[:, k]
        diff = np.subtract.outer(r[cases], r[controls])
        score = (diff > 0) + 0.5 * (diff == 0)
        weights = np.outer(w_cases, w_controls)
        auc[k] = np.sum(weights * score) / np.sum(weights)

    return auc


def truncated_concordance_td(
    e: np.ndarray,
    t: np.ndarray,
    risk_predicted: np.ndarray,
    times: np.ndarray,
    t_eval: float,
    km: Optional[Tuple[np.ndarray, np.ndarray]] = None,
    competing_risk: int = 1,
    tied_tol: float = 1e-8
) -> Tuple[float, Tuple[np.ndarray, np.ndarray]]:
    """
    Cause-specific concordance index truncated at ``t_eval``.

    A pair (i, j) is comparable when i has the event of interest at
    T_i <= t_eval and either T_j > T_i, or j had a competing event at
    T_j <= T_i. Pairs are weighted by the marginal censoring survival:
    1/(G(T_i-) G(T_i)) for the first kind, 1/(G(T_i-) G(T_j-)) for the
    second. The pair is concordant when i has the higher predicted risk at
    ``t_eval``; ties count one half.

    Parameters
    ----------
    e, t : np.ndarray
        Event indicators and times of the evaluation data
    risk_predicted : np.ndarray
        Predicted cumulative incidence, shape (n_samples, n_times) or
        (n_samples,) already evaluated at ``t_eval``
    times : np.ndarray
        Time points matching the columns of ``risk_predicted``
    t_eval : float
        Truncation time; predictions at the last time <= t_eval are used
    km : tuple (e, t), optional
        Data for the marginal censoring model (defaults to ``(e, t)``)
    competing_risk : int
        Cause of interest
    tied_tol : float
        Tolerance for tied predictions

    Returns
    -------
    c_index : float
        NaN when no pair is comparable
    km : tuple
        The data the censoring model was estimated on
    """
    e = np.asarray(e).flatten()
    t = np.asarray(t, dtype=float).flatten()
    times = np.atleast_1d(np.asarray(times, dtype=float))
    risk_predicted = np.asarray(risk_predicted, dtype=float)
    if risk_predicted.ndim == 2:
        col = np.searchsorted(times, t_eval, side='right') - 1
        col = int(np.clip(col, 0, len(times) - 1))
        risk = risk_predicted[:, col]
    else:
        risk = risk_predicted

    if km is None:
        km = (e, t)
    e_km, t_km = km
    G_t_minus = marginal_censoring_survival(e_km, t_km, t, left=True)
    G_t = marginal_censoring_survival(e_km, t_km, t)

    numerator = 0.0
    denominator = 0.0
    for i in np.where((e == competing_risk) & (t <= t_eval))[0]:
        w_i = G_t_minus[i]
        if w_i <= 0:
            continue

        later = t > t[i]
        competing_before = (t <= t[i]) & (e != 0) & (e != competing_risk)

        weights = np.zeros(len(t))
        if G_t[i] > 0:
            weights[later] = 1.0 / (w_i * G_t[i])
        valid = competing_before & (G_t_minus > 0)
        weights[valid] = 1.0 / (w_i * G_t_minus[valid])

        comparable = weights > 0
        if not comparable.any():
            continue

        diff = risk[i] - risk[comparable]
        score = (diff > tied_tol) + 0.5 * (np.abs(diff) <= tied_tol)
        numerator += np.sum(weights[comparable] * score)
        denominator += np.sum(weights[comparable])

    if denominator == 0:
        return np.nan, km
    return float(numerator / denominator), km
