"""
Repeated Cross-Validation Runner for Fine-Gray Models

For every repeated stratified k-fold split:
- fit a Fine-Gray model on the training partition
- score it on the held-out partition (CIF curve, AUC, Brier, IBS, C-index)
- compute quantile calibration at the calibration horizons

Per-split results are concatenated into long tables and summarised with
mean and 95% CI. The best split is the one with the highest C-index at the
largest time horizon (first split wins ties).

Usage:
    python -m FineGrayCV.run_cv --data data/file.xlsx
    python -m FineGrayCV.run_cv --synthetic 300 --k-folds 5 --n-repeats 2 --plots
"""

import json
import time
import warnings
import numpy as np
import pandas as pd
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Union
from joblib import Parallel, delayed

from cohorts.loader import validate_cohort, describe_cohort
from .config import resolve_config
from .folds import Split, check_partition, create_multi_folds, global_max_time
from .trainer import FineGrayRegression, FitError, ModelSpec, fit_model
from .evaluation import RiskEvaluation, evaluate_risk, evaluate_calibration
from .aggregate import summarize, add_time_range

CALIBRATION_COLUMNS = ['Fold', 'Time_Horizon', 'bin', 'predicted_risk', 'observed_risk', 'n']


class SplitResult(NamedTuple):
    split: Split
    model: FineGrayRegression
    risk: RiskEvaluation
    calibration: pd.DataFrame  # all calibration horizons


def evaluate_split(
    split: Split,
    data: pd.DataFrame,
    config: Dict[str, Any],
    verbose: bool = False
) -> SplitResult:
    """
    Fit and evaluate one split. Pure: reads ``data``, returns new tables.

    Raises
    ------
    FitError
        When the model cannot be fitted on the training partition
    """
    train_data = data.iloc[split.train_idx].reset_index(drop=True)
    test_data = data.iloc[split.test_idx].reset_index(drop=True)

    spec = ModelSpec.from_config(config)
    model = fit_model(train_data, spec, split_id=split.split_id)

    risk = evaluate_risk(
        model, test_data, split.split_id,
        horizons=config['time_horizons'],
        max_time=config['max_time'],
        cause=config['cause'],
        verbose=verbose
    )

    calibration = [
        evaluate_calibration(
            model, test_data, split.split_id, horizon,
            n_bins=config['cal_bins'], cause=config['cause']
        )
        for horizon in config['cal_time_horizons']
    ]
    if calibration:
        calibration = pd.concat(calibration, ignore_index=True)
    else:
        calibration = pd.DataFrame(columns=CALIBRATION_COLUMNS)

    return SplitResult(split=split, model=model, risk=risk, calibration=calibration)


def _run_split(split, data, config, n_splits, verbose):
    if verbose:
        print(f"\nProcessing Split: {split.name} ( {split.split_id} of {n_splits} )")
    try:
        return evaluate_split(split, data, config, verbose=verbose)
    except FitError as e:
        if config['on_fit_error'] == 'raise':
            raise
        warnings.warn(f"Skipping split {split.split_id} ({split.name}): {e}")
        return e


def select_best_split(cindex: pd.DataFrame, horizon: int):
    """
    Split with the highest C-index at ``horizon``; lowest split id on ties.

    Returns
    -------
    (split_id, c_index), or (None, nan) when no C-index is available
    """
    at_horizon = cindex[(cindex['Time_Horizon'] == horizon) & cindex['Cindex'].notna()]
    if at_horizon.empty:
        return None, np.nan
    ranked = at_horizon.sort_values(['Cindex', 'Fold'], ascending=[False, True], kind='mergesort')
    best = ranked.iloc[0]
    return int(best['Fold']), float(best['Cindex'])


def _concat(tables: List[pd.DataFrame], keys: List[str]) -> pd.DataFrame:
    tables = [t for t in tables if not t.empty]
    if not tables:
        return pd.DataFrame(columns=keys)
    return pd.concat(tables, ignore_index=True).sort_values(keys, kind='mergesort').reset_index(drop=True)


class CVResults:
    """
    Everything produced by one repeated cross-validation run.

    Attributes
    ----------
    auc, brier, ibs, cindex, cif, calibration : pd.DataFrame
        Long-format per-split records
    auc_summary, brier_summary, ibs_summary, cindex_summary,
    cif_summary, cal_summary : pd.DataFrame
        Mean and CI per grouping key
    models : dict
        split id -> fitted FineGrayRegression
    splits : dict
        split id -> Split
    failed_splits : dict
        split id -> error message (only with on_fit_error='skip')
    best_split, best_cindex, best_model
        Selected by C-index at the largest horizon
    """

    def __init__(
        self,
        config: Dict[str, Any],
        splits: List[Split],
        split_results: List[SplitResult],
        failed_splits: Optional[Dict[int, str]] = None
    ):
        self.config = config
        self.splits = {s.split_id: s for s in splits}
        self.failed_splits = dict(failed_splits or {})
        self.models = {r.split.split_id: r.model for r in split_results}

        self.cif = _concat([r.risk.cif for r in split_results], ['Fold', 'Time'])
        self.auc = _concat([r.risk.auc for r in split_results], ['Fold', 'Time_Horizon', 'times'])
        self.brier = _concat([r.risk.brier for r in split_results], ['Fold', 'Time_Horizon', 'times'])
        self.ibs = _concat([r.risk.ibs for r in split_results], ['Fold', 'Time_Horizon'])
        self.cindex = _concat([r.risk.cindex for r in split_results], ['Fold', 'Time_Horizon'])
        self.calibration = _concat([r.calibration for r in split_results],
                                   ['Time_Horizon', 'Fold', 'bin'])

        self._summarize()

        self.max_horizon = max(config['time_horizons'])
        self.best_split, self.best_cindex = select_best_split(self.cindex, self.max_horizon)

    def _summarize(self):
        ci = self.config['ci_level']
        self.auc_summary = add_time_range(
            summarize(self.auc, ['Time_Horizon', 'times'], 'AUC', ci_level=ci))
        self.brier_summary = add_time_range(
            summarize(self.brier, ['Time_Horizon', 'times'], 'Brier', ci_level=ci))
        self.ibs_summary = summarize(self.ibs, 'Time_Horizon', 'IBS', ci_level=ci)
        self.cindex_summary = summarize(self.cindex, 'Time_Horizon', 'Cindex', ci_level=ci)
        self.cif_summary = summarize(self.cif, 'Time', 'CIF', ci_level=ci)

        predicted = summarize(self.calibration, ['Time_Horizon', 'bin'], 'predicted_risk',
                              prefix='PredRisk', ci_level=ci).drop(columns='N')
        observed = summarize(self.calibration, ['Time_Horizon', 'bin'], 'observed_risk',
                             prefix='ObsRisk', ci_level=ci)
        self.cal_summary = predicted.merge(observed, on=['Time_Horizon', 'bin'])

    @property
    def best_model(self) -> Optional[FineGrayRegression]:
        if self.best_split is None:
            return None
        return self.models[self.best_split]

    def test_data(self, data: pd.DataFrame, split_id: int) -> pd.DataFrame:
        """Held-out rows of a split."""
        return data.iloc[self.splits[split_id].test_idx].reset_index(drop=True)

    def cif_at(self, time_point: float) -> float:
        """Mean cumulative incidence across splits at a time point."""
        row = self.cif_summary[self.cif_summary['Time'] == time_point]
        return float(row['CIF_Mean'].iloc[0]) if len(row) else np.nan

    def summaries(self) -> Dict[str, pd.DataFrame]:
        return {
            'auc': self.auc_summary,
            'brier': self.brier_summary,
            'ibs': self.ibs_summary,
            'cindex': self.cindex_summary,
            'cif': self.cif_summary,
            'calibration': self.cal_summary,
        }

    def to_dict(self) -> Dict[str, Any]:
        def records(df):
            return df.astype(object).where(df.notna(), None).to_dict(orient='records')

        return {
            'config': self.config,
            'n_splits': len(self.splits),
            'failed_splits': {str(k): v for k, v in self.failed_splits.items()},
            'best_split': self.best_split,
            'best_split_name': self.splits[self.best_split].name if self.best_split is not None else None,
            'best_cindex': None if np.isnan(self.best_cindex) else self.best_cindex,
            'best_model_formula': self.best_model.spec.formula if self.best_model else None,
            'summaries': {name: records(df) for name, df in self.summaries().items()},
            'timestamp': datetime.now().isoformat(),
        }

    def save_json(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, default=str)
        return path


def run_repeated_cv(
    data: pd.DataFrame,
    config: Optional[Dict[str, Any]] = None,
    verbose: bool = True
) -> CVResults:
    """
    Run repeated stratified k-fold cross-validation of a Fine-Gray model.

    Parameters
    ----------
    data : pd.DataFrame
        Cleaned cohort with the configured predictors, 'time' and 'status'
    config : dict, optional
        Overrides of DEFAULT_CV_CONFIG
    verbose : bool
        Whether to print progress

    Returns
    -------
    CVResults
    """
    config = resolve_config(config)
    validate_cohort(data, config['categorical_vars'], config['continuous_vars'])

    splits = create_multi_folds(
        data['status'].values,
        k=config['k_folds'],
        repeats=config['n_repeats'],
        seed=config['seed']
    )
    for split in splits:
        check_partition(split, len(data))
    n_splits = len(splits)

    if verbose:
        print(f"\n{'='*70}")
        print(f"REPEATED {config['k_folds']}x{config['n_repeats']} CV: FINE-GRAY (cause {config['cause']})")
        print(f"{'='*70}")
        print(f"Data: {len(data)} subjects, status counts {describe_cohort(data)}")
        print(f"Using global maximum time horizon: {global_max_time(data['time'].values, splits)}")

    start_time = time.time()
    if config['n_jobs'] == 1:
        outcomes = [_run_split(s, data, config, n_splits, verbose) for s in splits]
    else:
        outcomes = Parallel(n_jobs=config['n_jobs'])(
            delayed(_run_split)(s, data, config, n_splits, verbose) for s in splits
        )

    split_results = [o for o in outcomes if isinstance(o, SplitResult)]
    failed = {e.split_id: str(e) for e in outcomes if isinstance(e, FitError)}
    if not split_results:
        raise FitError("Every split failed to fit; nothing to aggregate")

    results = CVResults(config, splits, split_results, failed)

    if verbose:
        print(f"\nFinished {len(split_results)} of {n_splits} splits in {time.time() - start_time:.1f}s")
        if results.best_split is not None:
            print(f"\nBest fold (model) is Fold #: {results.best_split} "
                  f"({results.splits[results.best_split].name}) with C-index at "
                  f"{results.max_horizon} = {results.best_cindex:.4f}")
        print_summary(results)

    return results


def print_summary(results: CVResults) -> None:
    label = f"{results.config['k_folds']}x{results.config['n_repeats']}"
    print(f"\nRepeated ({label}) Cross-Validated Integrated Brier Scores (IBS) for each time horizon:")
    print(results.ibs_summary.to_string(index=False))
    print(f"\nRepeated ({label}) Cross-Validated C-index for each time horizon:")
    print(results.cindex_summary.to_string(index=False))
    for t in results.config['cal_time_horizons']:
        print(f"Average CIF at month {t}: {results.cif_at(t):.4f}")


if __name__ == '__main__':
    import argparse

    from cohorts.loader import load_cohort
    from cohorts.synthetic import simulate_cohort
    from .config import load_config

    parser = argparse.ArgumentParser(description='Repeated CV of a Fine-Gray competing risks model')
    parser.add_argument('--data', type=str, default=None, help='Cohort spreadsheet (.xlsx) or .csv')
    parser.add_argument('--sheet', type=str, default='Factors', help='Worksheet name')
    parser.add_argument('--synthetic', type=int, default=None,
                        help='Use a simulated cohort of this size instead of --data')
    parser.add_argument('--config', type=str, default=None, help='JSON file with config overrides')
    parser.add_argument('--seed', type=int, default=None)
    parser.add_argument('--k-folds', type=int, default=None)
    parser.add_argument('--n-repeats', type=int, default=None)
    parser.add_argument('--n-jobs', type=int, default=None)
    parser.add_argument('--output-dir', type=str, default='results/fine_gray_cv')
    parser.add_argument('--plots', action='store_true', help='Save figures to the output directory')
    parser.add_argument('--quiet', action='store_true', help='Suppress output')

    args = parser.parse_args()

    overrides = load_config(args.config) if args.config else {}
    for key, value in [('seed', args.seed), ('k_folds', args.k_folds),
                       ('n_repeats', args.n_repeats), ('n_jobs', args.n_jobs)]:
        if value is not None:
            overrides[key] = value

    if args.synthetic:
        data = simulate_cohort(n=args.synthetic)
        overrides['categorical_vars'] = ['stage']
        overrides['continuous_vars'] = ['age', 'dose']
    elif args.data:
        resolved = resolve_config(overrides)
        data = load_cohort(
            args.data,
            categorical_vars=resolved['categorical_vars'],
            continuous_vars=resolved['continuous_vars'],
            sheet=args.sheet,
            max_time=resolved['max_time'],
            scale={'D20': 100} if 'D20' in resolved['continuous_vars'] else None,
            verbose=not args.quiet
        )
    else:
        parser.error('one of --data or --synthetic is required')

    results = run_repeated_cv(data, overrides, verbose=not args.quiet)

    output_dir = Path(args.output_dir)
    saved = results.save_json(output_dir / 'fine_gray_cv_results.json')
    if not args.quiet:
        print(f"\nSaved results to: {saved}")

    if args.plots:
        from .visualize_results import create_all_plots
        create_all_plots(results, output_dir / 'plots')
