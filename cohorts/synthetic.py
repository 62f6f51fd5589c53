"""
Synthetic competing risks cohorts.

simulate_cohort
    Fixed status composition (censored / event of interest / competing),
    event times driven by a linear predictor so that the covariates carry
    signal about the event of interest.

simulate_fine_gray
    The Fine & Gray (1999) simulation design: the cause 1 cumulative
    incidence follows a proportional subdistribution hazards model, so the
    true CIF of every subject is known in closed form (see true_cif).
"""

import numpy as np
import pandas as pd
from typing import Sequence, Tuple

STAGES = ['I', 'II', 'III']


def simulate_cohort(
    n: int = 100,
    fractions: Tuple[float, float, float] = (0.3, 0.4, 0.3),
    max_time: float = 114,
    median_time: float = 40.0,
    random_state: int = 42
) -> pd.DataFrame:
    """
    Simulate a cohort with an exact status composition.

    Args:
        n: Number of subjects
        fractions: Shares of censored, event of interest and competing event
        max_time: Times are capped here
        median_time: Rough median of event times for an average subject
        random_state: Seed

    Returns:
        DataFrame with 'stage' (categorical), 'age', 'dose', 'time', 'status'
    """
    if len(fractions) != 3 or not np.isclose(sum(fractions), 1.0):
        raise ValueError(f"fractions must be three shares summing to 1, got {fractions}")

    rng = np.random.default_rng(random_state)
    age = rng.normal(60, 10, n)
    dose = rng.uniform(50, 70, n)
    stage_code = rng.integers(0, len(STAGES), n)

    lp = 0.06 * (age - 60) + 0.7 * stage_code + 0.05 * (dose - 60)

    n_censored = int(round(n * fractions[0]))
    n_event = int(round(n * fractions[1]))
    n_event = min(n_event, n - n_censored)

    # High-risk subjects are more likely to have the event of interest
    weights = np.exp(lp)
    event_idx = rng.choice(n, size=n_event, replace=False, p=weights / weights.sum())
    rest = rng.permutation(np.setdiff1d(np.arange(n), event_idx))
    censored_idx = rest[:n_censored]
    competing_idx = rest[n_censored:]

    status = np.zeros(n, dtype=int)
    status[event_idx] = 1
    status[competing_idx] = 2

    rate = np.log(2) / median_time
    time = np.empty(n)
    time[event_idx] = rng.exponential(1.0 / (rate * np.exp(lp[event_idx])))
    time[competing_idx] = rng.exponential(1.0 / rate, len(competing_idx))
    time[censored_idx] = rng.uniform(1.0, max_time, len(censored_idx))
    time = np.clip(np.ceil(time), 1, max_time)

    return pd.DataFrame({
        'stage': pd.Categorical([STAGES[s] for s in stage_code], categories=STAGES),
        'age': age,
        'dose': dose,
        'time': time,
        'status': status,
    })


def true_cif(
    x: np.ndarray,
    times: Sequence[float],
    beta1: Sequence[float] = (0.5, -0.5),
    p: float = 0.4,
    time_scale: float = 30.0
) -> np.ndarray:
    """
    Cause 1 cumulative incidence under the Fine & Gray design.

    F1(t | x) = 1 - (1 - p (1 - exp(-t / time_scale)))^exp(x beta1)

    Returns:
        np.ndarray of shape (n_samples, n_times)
    """
    x = np.atleast_2d(np.asarray(x, dtype=float))
    times = np.asarray(times, dtype=float)
    eta = np.exp(x @ np.asarray(beta1, dtype=float))
    base = 1.0 - p * (1.0 - np.exp(-times / time_scale))
    return 1.0 - base[None, :] ** eta[:, None]


def simulate_fine_gray(
    n: int = 500,
    beta1: Sequence[float] = (0.5, -0.5),
    beta2: Sequence[float] = (-0.5, 0.5),
    p: float = 0.4,
    time_scale: float = 30.0,
    censoring_rate: float = 0.005,
    max_time: float = 114,
    random_state: int = 42
) -> pd.DataFrame:
    """
    Simulate competing risks data with a known cause 1 CIF.

    Cause 1 occurs with probability 1 - (1 - p)^exp(x beta1); its time is
    drawn from the conditional CIF. Cause 2 times are exponential with rate
    exp(x beta2) / time_scale. Censoring is exponential with
    ``censoring_rate`` (0 disables it) plus administrative censoring at
    ``max_time``.

    Returns:
        DataFrame with 'x1', 'x2', 'time', 'status'
    """
    rng = np.random.default_rng(random_state)
    x = rng.normal(0, 1, (n, len(beta1)))

    eta1 = np.exp(x @ np.asarray(beta1, dtype=float))
    eta2 = np.exp(x @ np.asarray(beta2, dtype=float))
    p_cause1 = 1.0 - (1.0 - p) ** eta1
    is_cause1 = rng.uniform(size=n) < p_cause1

    v = rng.uniform(size=n)
    inner = (1.0 - (1.0 - v * p_cause1) ** (1.0 / eta1)) / p
    t1 = -np.log(1.0 - np.clip(inner, 0.0, 1.0 - 1e-12)) * time_scale
    t2 = rng.exponential(time_scale / eta2)
    event_time = np.where(is_cause1, t1, t2)
    cause = np.where(is_cause1, 1, 2)

    if censoring_rate > 0:
        cens_time = rng.exponential(1.0 / censoring_rate, n)
    else:
        cens_time = np.full(n, np.inf)
    cens_time = np.minimum(cens_time, max_time)

    observed = event_time <= cens_time
    time = np.where(observed, event_time, cens_time)
    status = np.where(observed, cause, 0)

    data = pd.DataFrame(x, columns=[f'x{i + 1}' for i in range(x.shape[1])])
    data['time'] = time
    data['status'] = status.astype(int)
    return data
