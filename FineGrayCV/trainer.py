"""
Fine-Gray subdistribution hazard regression.

The model is fitted as a weighted Cox regression on counting-process data
(Geskus, 2011): subjects with a competing event remain in the risk set after
their event with weight G(t-) / G(T_j-), where G is the Kaplan-Meier
estimate of the censoring distribution. lifelines' CoxTimeVaryingFitter
handles the (start, stop] intervals and the weights.
"""

import warnings
import numpy as np
import pandas as pd
from typing import List, Optional, Sequence
from lifelines import CoxTimeVaryingFitter

from crmetrics.utils import estimate_ipcw, censoring_survival

EPS = 1e-8


class FitError(RuntimeError):
    """Fitting a model on a training partition failed."""

    def __init__(self, message: str, split_id: Optional[int] = None):
        super().__init__(message)
        self.split_id = split_id

    def __reduce__(self):
        # keep split_id when sent back from joblib workers
        return (FitError, (str(self), self.split_id))


class ModelSpec:
    """
    What to fit: Hist(time, status) ~ categorical + continuous, for one cause.
    """

    def __init__(
        self,
        categorical: Sequence[str] = (),
        continuous: Sequence[str] = (),
        cause: int = 1,
        time_col: str = 'time',
        status_col: str = 'status',
        penalizer: float = 0.0
    ):
        self.categorical = list(categorical)
        self.continuous = list(continuous)
        self.cause = cause
        self.time_col = time_col
        self.status_col = status_col
        self.penalizer = penalizer

    @property
    def predictors(self) -> List[str]:
        return self.categorical + self.continuous

    @property
    def formula(self) -> str:
        return f"Hist({self.time_col}, {self.status_col}) ~ " + " + ".join(self.predictors)

    @classmethod
    def from_config(cls, config: dict) -> 'ModelSpec':
        return cls(
            categorical=config['categorical_vars'],
            continuous=config['continuous_vars'],
            cause=config['cause'],
            penalizer=config['penalizer'],
        )

    def __repr__(self):
        return f"ModelSpec({self.formula!r}, cause={self.cause})"


class FineGrayRegression:
    """
    Fine-Gray model for the cumulative incidence of one cause.

    Parameters
    ----------
    spec : ModelSpec
        Outcome columns, predictors, cause of interest and penalizer
    """

    def __init__(self, spec: ModelSpec):
        self.spec = spec

        # Fitted attributes
        self.model_ = None
        self.levels_ = None
        self.columns_ = None
        self.n_train_ = None

    # ---------------- fitting ----------------

    def fit(self, data: pd.DataFrame) -> 'FineGrayRegression':
        """
        Fit on a training partition.

        Raises whatever lifelines raises when the fit fails (e.g.
        ConvergenceError for a singular design); callers wrap it.

        Standard errors in ``summary`` are the model-based ones from
        lifelines, not a sandwich estimate clustered on subject; only the
        point estimates and predicted incidences are used downstream.
        """
        T = data[self.spec.time_col].values.astype(float)
        E = data[self.spec.status_col].values.astype(int)

        self.levels_ = {
            col: sorted(data[col].astype(str).unique())
            for col in self.spec.categorical
        }
        X = self._encode(data, fitting=True)

        constant = [c for c in X.columns if X[c].nunique() <= 1]
        if constant:
            warnings.warn(f"Dropping constant predictors from the design: {constant}")
            X = X.drop(columns=constant)
        self.columns_ = list(X.columns)

        weighted = self._weighted_data(X, T, E)

        self.model_ = CoxTimeVaryingFitter(penalizer=self.spec.penalizer)
        self.model_.fit(
            weighted,
            id_col='id',
            event_col='event',
            start_col='start',
            stop_col='stop',
            weights_col='weight',
        )
        self.n_train_ = len(data)
        return self

    def _encode(self, data: pd.DataFrame, fitting: bool = False) -> pd.DataFrame:
        """Treatment-code categoricals (first level as reference)."""
        X = pd.DataFrame(index=data.index)
        for col in self.spec.categorical:
            values = data[col].astype(str)
            for level in self.levels_[col][1:]:
                X[f'{col}_{level}'] = (values == level).astype(float)
        for col in self.spec.continuous:
            X[col] = data[col].astype(float)
        if not fitting:
            X = X[self.columns_]
        return X.reset_index(drop=True)

    def _weighted_data(self, X: pd.DataFrame, T: np.ndarray, E: np.ndarray) -> pd.DataFrame:
        """Counting-process rows with Fine-Gray weights."""
        cause = self.spec.cause
        T = np.maximum(T, EPS)
        kmf = estimate_ipcw((E, T))
        event_times = np.unique(T[E == cause])

        competing = (E != 0) & (E != cause)
        G_entry = censoring_survival(kmf, T, left=True)
        G_events = censoring_survival(kmf, event_times, left=True)

        ids, starts, stops, events, weights = [], [], [], [], []
        for i in range(len(T)):
            ids.append(i)
            starts.append(0.0)
            stops.append(T[i])
            events.append(int(E[i] == cause))
            weights.append(1.0)
            if not competing[i] or G_entry[i] <= 0:
                continue

            later = event_times > T[i]
            if not later.any():
                continue
            ends = event_times[later]
            w = G_events[later] / G_entry[i]
            begins = np.concatenate([[T[i]], ends[:-1]])
            keep = w > 0
            n_keep = int(keep.sum())
            ids.extend([i] * n_keep)
            starts.extend(begins[keep])
            stops.extend(ends[keep])
            events.extend([0] * n_keep)
            weights.extend(w[keep])

        ids = np.asarray(ids)
        weighted = X.iloc[ids].reset_index(drop=True)
        weighted['id'] = ids
        weighted['start'] = np.asarray(starts, dtype=float)
        weighted['stop'] = np.asarray(stops, dtype=float)
        weighted['event'] = np.asarray(events, dtype=bool)
        weighted['weight'] = np.asarray(weights, dtype=float)
        return weighted

    # ------------- predictions -------------

    def predict_cif(self, data: pd.DataFrame, times: Sequence[float]) -> np.ndarray:
        """
        Cumulative incidence of the cause of interest.

        Returns
        -------
        cif : np.ndarray
            Shape (n_samples, n_times); zero before the first event time
        """
        if self.model_ is None:
            raise RuntimeError("Call fit() first.")

        times = np.atleast_1d(np.asarray(times, dtype=float))
        X = self._encode(data)
        partial_hazard = self.model_.predict_partial_hazard(X).values.astype(float)

        baseline = self.model_.baseline_cumulative_hazard_
        grid = baseline.index.values.astype(float)
        H0 = baseline.iloc[:, 0].values.astype(float)
        idx = np.searchsorted(grid, times, side='right') - 1
        H0_times = np.where(idx >= 0, H0[np.clip(idx, 0, None)], 0.0)

        return 1.0 - np.exp(-np.outer(partial_hazard, H0_times))

    def predict_risk(self, data: pd.DataFrame, time: float) -> np.ndarray:
        """Predicted cumulative incidence at a single time."""
        return self.predict_cif(data, [time])[:, 0]

    @property
    def summary(self) -> pd.DataFrame:
        if self.model_ is None:
            raise RuntimeError("Call fit() first.")
        return self.model_.summary

    def __repr__(self):
        state = 'fitted' if self.model_ is not None else 'unfitted'
        return f"FineGrayRegression({self.spec.formula!r}, cause={self.spec.cause}, {state})"


def fit_model(
    train_data: pd.DataFrame,
    spec: ModelSpec,
    split_id: Optional[int] = None
) -> FineGrayRegression:
    """
    Fit one Fine-Gray model on a training partition.

    Raises
    ------
    FitError
        When the underlying fit fails; no retry is attempted
    """
    try:
        return FineGrayRegression(spec).fit(train_data)
    except Exception as e:
        where = f" on split {split_id}" if split_id is not None else ""
        raise FitError(f"Fine-Gray fit failed{where}: {e}", split_id=split_id) from e
