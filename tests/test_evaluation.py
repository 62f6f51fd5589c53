import numpy as np
import pandas as pd
import pytest

from cohorts.synthetic import simulate_fine_gray, true_cif
from FineGrayCV.trainer import ModelSpec, fit_model
from FineGrayCV.evaluation import evaluate_risk, evaluate_calibration


class OracleModel:
    """Predicts the true cumulative incidence of the simulation design."""

    def predict_cif(self, data, times):
        return true_cif(data[['x1', 'x2']].values, times)


class ConstantModel:

    def __init__(self, value):
        self.value = value

    def predict_cif(self, data, times):
        return np.full((len(data), len(times)), self.value)


@pytest.fixture(scope='module')
def risk_evaluation(cohort):
    train, test = cohort.iloc[:70], cohort.iloc[70:].reset_index(drop=True)
    model = fit_model(train, ModelSpec(categorical=['stage'], continuous=['age', 'dose']))
    return evaluate_risk(model, test, split_id=3, horizons=[36, 60], max_time=114)


def test_cif_curve_covers_zero_to_max_time(risk_evaluation):
    cif = risk_evaluation.cif
    assert list(cif.columns) == ['Fold', 'Time', 'CIF']
    assert len(cif) == 115
    assert cif['Time'].iloc[0] == 0 and cif['Time'].iloc[-1] == 114
    assert cif['CIF'].is_monotonic_increasing
    assert (cif['Fold'] == 3).all()


def test_one_row_per_time_up_to_each_horizon(risk_evaluation):
    for table, value in [(risk_evaluation.auc, 'AUC'), (risk_evaluation.brier, 'Brier')]:
        assert list(table.columns) == ['Fold', 'Time_Horizon', 'times', value]
        sizes = table.groupby('Time_Horizon').size()
        assert sizes[36] == 36
        assert sizes[60] == 60
        assert table.loc[table['Time_Horizon'] == 60, 'times'].tolist() == list(range(1, 61))


def test_one_ibs_and_cindex_per_horizon(risk_evaluation):
    assert risk_evaluation.ibs['Time_Horizon'].tolist() == [36, 60]
    assert risk_evaluation.cindex['Time_Horizon'].tolist() == [36, 60]
    c = risk_evaluation.cindex['Cindex'].dropna()
    assert ((c >= 0) & (c <= 1)).all()


def test_missing_ibs_is_warned_and_kept():
    test = pd.DataFrame({
        'x1': [0.0] * 6,
        'x2': [0.0] * 6,
        'time': [2.0, 4.0, 6.0, 8.0, 10.0, 12.0],
        'status': [1, 2, 0, 1, 2, 0],
    })
    with pytest.warns(UserWarning, match='No IBS'):
        result = evaluate_risk(ConstantModel(0.3), test, split_id=1, horizons=[36], max_time=36)
    assert np.isnan(result.ibs['IBS'].iloc[0])
    assert len(result.brier) == 36
    assert result.brier['Brier'].iloc[20:].isna().all()


def test_calibration_table():
    data = simulate_fine_gray(n=300, random_state=5)
    table = evaluate_calibration(OracleModel(), data, split_id=2, horizon=60, n_bins=10)
    assert list(table.columns) == [
        'Fold', 'Time_Horizon', 'bin', 'predicted_risk', 'observed_risk', 'n'
    ]
    assert len(table) == 10
    assert (table['Fold'] == 2).all()
    assert table['n'].sum() == 300


def test_perfectly_calibrated_model():
    data = simulate_fine_gray(n=2000, random_state=21)
    table = evaluate_calibration(OracleModel(), data, split_id=1, horizon=60, n_bins=10)
    gap = (table['predicted_risk'] - table['observed_risk']).abs()
    assert gap.mean() < 0.06
    overall = np.average(table['predicted_risk'] - table['observed_risk'], weights=table['n'])
    assert abs(overall) < 0.04
