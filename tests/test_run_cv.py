import json

import numpy as np
import pandas as pd
import pytest

from FineGrayCV import run_cv
from FineGrayCV.config import resolve_config
from FineGrayCV.folds import create_multi_folds
from FineGrayCV.run_cv import CVResults, evaluate_split, run_repeated_cv, select_best_split
from FineGrayCV.trainer import FitError
from FineGrayCV.visualize_results import create_all_plots, load_summaries


@pytest.fixture(scope='module')
def results(cohort):
    config = {
        'k_folds': 5,
        'n_repeats': 2,
        'categorical_vars': ['stage'],
        'continuous_vars': ['age', 'dose'],
        'time_horizons': (36, 60),
        'cal_time_horizons': (36, 60),
        'max_time': 114,
    }
    return run_repeated_cv(cohort, config, verbose=False)


def test_one_model_per_split(results):
    assert len(results.splits) == 10
    assert sorted(results.models) == list(range(1, 11))
    assert results.failed_splits == {}


def test_auc_and_brier_groups(results):
    for table in (results.auc, results.brier):
        sizes = table.groupby(['Fold', 'Time_Horizon']).size()
        assert len(sizes) == 20
        for (_, horizon), size in sizes.items():
            assert size == horizon


def test_ibs_and_cindex_per_horizon(results):
    for table in (results.ibs, results.cindex):
        assert table.groupby('Time_Horizon').size().to_dict() == {36: 10, 60: 10}


def test_best_split_has_highest_cindex_at_largest_horizon(results):
    at_60 = results.cindex[results.cindex['Time_Horizon'] == 60]
    assert results.max_horizon == 60
    assert results.best_cindex == at_60['Cindex'].max()
    assert results.best_model is results.models[results.best_split]


def test_summary_tables(results):
    assert len(results.auc_summary) == 36 + 60
    assert len(results.brier_summary) == 36 + 60
    assert set(results.auc_summary['Time_Range']) <= {'0-60', '60-Max'}
    assert len(results.cif_summary) == 115
    assert results.ibs_summary['Time_Horizon'].tolist() == [36, 60]
    assert results.cindex_summary['Time_Horizon'].tolist() == [36, 60]
    assert (results.cindex_summary['N'] <= 10).all()

    cal = results.cal_summary
    assert {'PredRisk_Mean', 'ObsRisk_Mean', 'ObsRisk_LowerCI', 'N'} <= set(cal.columns)
    assert set(cal['Time_Horizon']) == {36, 60}


def test_cif_at(results):
    assert results.cif_at(60) == pytest.approx(
        results.cif.loc[results.cif['Time'] == 60, 'CIF'].mean()
    )
    assert np.isnan(results.cif_at(500))


def test_held_out_rows(results, cohort):
    test = results.test_data(cohort, 1)
    assert len(test) == len(results.splits[1].test_idx)


def test_json_report(results, tmp_path):
    path = results.save_json(tmp_path / 'report.json')
    with open(path) as f:
        report = json.load(f)
    assert report['n_splits'] == 10
    assert report['best_split'] == results.best_split
    assert report['best_model_formula'] == 'Hist(time, status) ~ stage + age + dose'
    assert len(report['summaries']['ibs']) == 2

    summaries = load_summaries(path)
    assert len(summaries['auc']) == 36 + 60


def test_plots(results, tmp_path):
    paths = create_all_plots(results, tmp_path)
    assert {'auc', 'brier', 'cif', 'calibration', 'calibration_36', 'calibration_60'} <= set(paths)
    for path in paths.values():
        assert path.exists()


def test_select_best_split_ties_go_to_lowest_id():
    cindex = pd.DataFrame({
        'Fold': [1, 2, 3, 1, 2, 3],
        'Time_Horizon': [60, 60, 60, 114, 114, 114],
        'Cindex': [0.9, 0.6, 0.6, 0.7, 0.8, 0.8],
    })
    assert select_best_split(cindex, 114) == (2, 0.8)
    best, c = select_best_split(cindex, 36)
    assert best is None and np.isnan(c)


def test_invalid_cohort_is_rejected_before_fitting(cohort, cohort_config):
    with pytest.raises(ValueError, match='Invalid cohort'):
        run_repeated_cv(cohort.drop(columns='dose'), cohort_config, verbose=False)


def test_unknown_config_key(cohort, cohort_config):
    with pytest.raises(ValueError, match='Unknown'):
        run_repeated_cv(cohort, {**cohort_config, 'folds': 3}, verbose=False)


def _failing_on(split_ids, fit_model):
    def fit(train_data, spec, split_id=None):
        if split_id in split_ids:
            raise FitError(f"singular design on split {split_id}", split_id=split_id)
        return fit_model(train_data, spec, split_id=split_id)
    return fit


def test_fit_failure_aborts_by_default(cohort, cohort_config, monkeypatch):
    monkeypatch.setattr(run_cv, 'fit_model', _failing_on({3}, run_cv.fit_model))
    with pytest.raises(FitError) as info:
        run_repeated_cv(cohort, {**cohort_config, 'n_repeats': 1}, verbose=False)
    assert info.value.split_id == 3


def test_fit_failure_can_be_skipped(cohort, cohort_config, monkeypatch):
    monkeypatch.setattr(run_cv, 'fit_model', _failing_on({3}, run_cv.fit_model))
    config = {**cohort_config, 'n_repeats': 1, 'on_fit_error': 'skip'}
    with pytest.warns(UserWarning, match='Skipping split 3'):
        results = run_repeated_cv(cohort, config, verbose=False)
    assert list(results.failed_splits) == [3]
    assert sorted(results.models) == [1, 2, 4, 5]
    assert 3 not in set(results.auc['Fold'])


def test_every_split_failing(cohort, cohort_config, monkeypatch):
    monkeypatch.setattr(run_cv, 'fit_model', _failing_on(set(range(1, 6)), run_cv.fit_model))
    config = {**cohort_config, 'n_repeats': 1, 'on_fit_error': 'skip'}
    with pytest.warns(UserWarning):
        with pytest.raises(FitError, match='Every split failed'):
            run_repeated_cv(cohort, config, verbose=False)


def test_auc_figure_draws_every_horizon(results, tmp_path, monkeypatch):
    from FineGrayCV import visualize_results
    figures = []
    monkeypatch.setattr(visualize_results.plt, 'close', figures.append)

    visualize_results.plot_auc(results.auc_summary, tmp_path / 'auc.png')
    visualize_results.plot_auc(results.auc_summary, tmp_path / 'auc_36.png', horizon=36)
    monkeypatch.undo()

    all_horizons, only_36 = [fig.axes[0] for fig in figures]
    assert {line.get_linestyle() for line in all_horizons.get_lines()} == {'-', '--'}
    assert {line.get_linestyle() for line in only_36.get_lines()} == {'-'}
    for fig in figures:
        visualize_results.plt.close(fig)


def test_parallel_run_matches_sequential(results, cohort, cohort_config):
    parallel = run_repeated_cv(cohort, {**cohort_config, 'n_jobs': 2}, verbose=False)
    assert sorted(parallel.models) == sorted(results.models)
    assert parallel.best_split == results.best_split
    assert parallel.best_cindex == pytest.approx(results.best_cindex)
    for name, summary in results.summaries().items():
        pd.testing.assert_frame_equal(parallel.summaries()[name], summary)


def test_split_completion_order_does_not_matter(cohort, cohort_config):
    config = resolve_config({**cohort_config, 'n_repeats': 1})
    splits = create_multi_folds(cohort['status'].values, k=config['k_folds'],
                                repeats=config['n_repeats'], seed=config['seed'])
    split_results = [evaluate_split(s, cohort, config) for s in splits]

    in_order = CVResults(config, splits, split_results)
    reversed_order = CVResults(config, splits, split_results[::-1])
    assert in_order.best_split == reversed_order.best_split
    for name, summary in in_order.summaries().items():
        pd.testing.assert_frame_equal(reversed_order.summaries()[name], summary)
