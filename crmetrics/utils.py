import numpy as np
from lifelines import KaplanMeierFitter


def estimate_ipcw(km):
    """
    Kaplan-Meier estimate of the censoring distribution (reverse KM).

    Args:
        km: Either a fitted KaplanMeierFitter, None, or a tuple (e, t) of
            event indicators (0 = censored) and times to fit it on.

    Returns:
        Fitted KaplanMeierFitter, or None when nothing is censored (G == 1).
    """
    if isinstance(km, tuple):
        kmf = KaplanMeierFitter()
        e, t = km
        e = np.asarray(e)
        t = np.asarray(t, dtype=float)
        kmf.fit(t, e == 0)
        if (e == 0).sum() == 0:
            kmf = None
    else: kmf = km
    return kmf


def censoring_survival(kmf, times, left=False):
    """
    Evaluate G(t) (or its left limit G(t-)) from a fitted censoring KM.

    A None estimator means no censoring was observed, so G is 1 everywhere.
    """
    times = np.atleast_1d(np.asarray(times, dtype=float))
    if kmf is None:
        return np.ones(len(times))
    if left:
        times = np.nextafter(times, -np.inf)
    return kmf.survival_function_at_times(times).values.astype(float)


def marginal_censoring_survival(e, t, times, left=False):
    """
    Marginal (covariate-free) reverse Kaplan-Meier of the censoring times.

    At tied times events are taken to happen before censoring, so subjects
    with an event at s are not at risk of being censored at s.

    Args:
        e: Event indicators (0 = censored).
        t: Observed times.
        times: Where to evaluate G.
        left: Evaluate the left limit G(s-) instead of G(s).

    Returns:
        np.ndarray with G at each of ``times``.
    """
    e = np.asarray(e)
    t = np.asarray(t, dtype=float)
    times = np.atleast_1d(np.asarray(times, dtype=float))

    cens_times = np.unique(t[e == 0])
    if len(cens_times) == 0:
        return np.ones(len(times))

    t_sorted = np.sort(t)
    n_at_risk = len(t) - np.searchsorted(t_sorted, cens_times, side='left')
    events_at = np.array([np.sum((t == s) & (e != 0)) for s in cens_times])
    censored_at = np.array([np.sum((t == s) & (e == 0)) for s in cens_times])
    at_risk = n_at_risk - events_at

    factors = np.ones(len(cens_times))
    valid = at_risk > 0
    factors[valid] = 1.0 - censored_at[valid] / at_risk[valid]
    G = np.cumprod(factors)

    side = 'left' if left else 'right'
    idx = np.searchsorted(cens_times, times, side=side)
    return np.concatenate([[1.0], G])[idx]


def as_risk_matrix(risk_predicted, n_times):
    """Coerce predictions to an (n_samples, n_times) float matrix."""
    risk_predicted = np.asarray(risk_predicted, dtype=float)
    if risk_predicted.ndim == 1:
        risk_predicted = np.repeat(risk_predicted[:, None], n_times, axis=1)
    if risk_predicted.shape[1] != n_times:
        raise ValueError(
            f"Predictions have {risk_predicted.shape[1]} columns, expected {n_times}"
        )
    return risk_predicted
