import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, List, Optional, Sequence

VALID_STATUS = (0, 1, 2)  # 0: censored, 1: event of interest, 2: competing risk


def load_cohort(
    path,
    categorical_vars: Sequence[str],
    continuous_vars: Sequence[str],
    time_source: str = 'ClinRad_Time_Indicator_M...8',
    status_source: str = 'ClinRad_M_Competing',
    sheet: str = 'Factors',
    max_time: Optional[float] = 114,
    scale: Optional[Dict[str, float]] = None,
    verbose: bool = True
) -> pd.DataFrame:
    """
    Read a cohort spreadsheet and prepare it for competing risks modelling.

    Args:
        path: Excel workbook (.xlsx/.xls) or .csv file
        categorical_vars: Columns converted to categorical dtype
        continuous_vars: Columns coerced to numeric
        time_source: Column holding follow-up time
        status_source: Column holding the status (0/1/2)
        sheet: Worksheet name for Excel input
        max_time: Follow-up times above this are capped (None: no cap)
        scale: Divisors applied to columns, e.g. {'D20': 100}
        verbose: Print how many rows were dropped

    Returns:
        DataFrame with the predictors plus 'time' and 'status', no missing values
    """
    path = Path(path)
    if path.suffix.lower() == '.csv':
        df = pd.read_csv(path)
    else:
        df = pd.read_excel(path, sheet_name=sheet)

    missing = [c for c in [*categorical_vars, *continuous_vars, time_source, status_source]
               if c not in df.columns]
    if missing:
        raise ValueError(f"Columns not found in {path.name}: {missing}")

    df = df.copy()
    df['time'] = pd.to_numeric(df[time_source].astype(str), errors='coerce')
    df['status'] = pd.to_numeric(df[status_source].astype(str), errors='coerce')

    for col in continuous_vars:
        df[col] = pd.to_numeric(df[col], errors='coerce')
    for col, divisor in (scale or {}).items():
        df[col] = df[col] / divisor

    return prepare_cohort(df, categorical_vars, continuous_vars, max_time=max_time,
                          verbose=verbose)


def prepare_cohort(
    df: pd.DataFrame,
    categorical_vars: Sequence[str],
    continuous_vars: Sequence[str],
    max_time: Optional[float] = 114,
    verbose: bool = True
) -> pd.DataFrame:
    """Select model columns, coerce dtypes, drop incomplete rows and cap time."""
    columns = [*categorical_vars, *continuous_vars, 'time', 'status']
    df = df[columns].copy()

    n_before = len(df)
    df = df.dropna().reset_index(drop=True)
    if verbose and len(df) < n_before:
        print(f"Dropped {n_before - len(df)} of {n_before} rows with missing values")

    for col in categorical_vars:
        df[col] = df[col].astype(str).astype('category')
    df['status'] = df['status'].astype(int)
    df['time'] = df['time'].astype(float)

    if max_time is not None:
        df['time'] = df['time'].clip(upper=max_time)

    return df


def validate_cohort(
    df: pd.DataFrame,
    categorical_vars: Sequence[str],
    continuous_vars: Sequence[str],
    time_col: str = 'time',
    status_col: str = 'status'
) -> None:
    """
    Check a prepared cohort before cross-validation.

    Raises:
        ValueError listing every problem found (missing columns, missing
        values, negative or non-numeric times, unknown status codes)
    """
    problems: List[str] = []

    required = [*categorical_vars, *continuous_vars, time_col, status_col]
    absent = [c for c in required if c not in df.columns]
    if absent:
        problems.append(f"missing columns {absent}")

    present = [c for c in required if c in df.columns]
    n_missing = df[present].isna().sum()
    n_missing = n_missing[n_missing > 0]
    if len(n_missing):
        problems.append(f"missing values in {n_missing.to_dict()}")

    if time_col in df.columns:
        if not pd.api.types.is_numeric_dtype(df[time_col]):
            problems.append(f"'{time_col}' is not numeric")
        elif (df[time_col] < 0).any():
            problems.append(f"'{time_col}' has negative values")

    if status_col in df.columns:
        unknown = set(pd.unique(df[status_col].dropna())) - set(VALID_STATUS)
        if unknown:
            problems.append(f"'{status_col}' has codes outside {VALID_STATUS}: {sorted(unknown)}")

    for col in continuous_vars:
        if col in df.columns and not pd.api.types.is_numeric_dtype(df[col]):
            problems.append(f"continuous predictor '{col}' is not numeric")

    if len(df) == 0:
        problems.append("no rows")

    if problems:
        raise ValueError("Invalid cohort: " + "; ".join(problems))


def describe_cohort(df: pd.DataFrame, status_col: str = 'status') -> Dict[str, int]:
    """Count subjects per status code."""
    values, counts = np.unique(df[status_col].values, return_counts=True)
    return {int(v): int(c) for v, c in zip(values, counts)}
