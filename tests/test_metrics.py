import numpy as np
import pytest

from crmetrics import (
    auc_td,
    truncated_concordance_td,
    brier_score_td,
    integrated_brier_score,
    ibs_from_brier,
    aalen_johansen_cif,
    pseudo_values,
    calibration_bins,
    estimate_ipcw,
    censoring_survival,
    marginal_censoring_survival,
)

# four subjects, no censoring: causes 1, 2, 1, 2 at times 1..4
E = np.array([1, 2, 1, 2])
T = np.array([1.0, 2.0, 3.0, 4.0])


class TestCensoringModels:

    def test_no_censoring_means_no_weighting(self):
        kmf = estimate_ipcw((E, T))
        assert kmf is None
        assert np.array_equal(censoring_survival(kmf, [1.0, 10.0]), [1.0, 1.0])

    def test_kaplan_meier_left_limit(self):
        e = np.array([1, 0, 1, 0])
        kmf = estimate_ipcw((e, T))
        assert censoring_survival(kmf, [2.0])[0] == pytest.approx(2 / 3)
        assert censoring_survival(kmf, [2.0], left=True)[0] == pytest.approx(1.0)

    def test_marginal_reverse_kaplan_meier(self):
        e = np.array([1, 0, 1, 0])
        G = marginal_censoring_survival(e, T, [1.0, 2.0, 3.0, 4.0])
        assert G == pytest.approx([1.0, 2 / 3, 2 / 3, 0.0])
        G_left = marginal_censoring_survival(e, T, [2.0, 4.0], left=True)
        assert G_left == pytest.approx([1.0, 2 / 3])


class TestAUC:

    def test_perfect_ranking(self):
        risk = np.array([0.9, 0.1, 0.5, 0.2])
        assert auc_td(E, T, risk, [2.5])[0] == pytest.approx(1.0)

    def test_competing_events_are_controls(self):
        # the case at t=1 outranks the competing event at t=2 and the
        # subject at t=4, but not the one at t=3
        risk = np.array([0.3, 0.1, 0.5, 0.2])
        assert auc_td(E, T, risk, [2.5])[0] == pytest.approx(2 / 3)

    def test_missing_beyond_follow_up_and_without_cases(self):
        risk = np.array([0.9, 0.1, 0.5, 0.2])
        auc = auc_td(E, T, risk, [0.5, 2.5, 5.0])
        assert np.isnan(auc[0])
        assert not np.isnan(auc[1])
        assert np.isnan(auc[2])

    def test_wrong_number_of_columns(self):
        with pytest.raises(ValueError):
            auc_td(E, T, np.zeros((4, 2)), [1.0, 2.0, 3.0])


class TestBrier:

    def test_hand_computed_value(self):
        risk = np.array([0.9, 0.1, 0.5, 0.2])
        # (1 - 0.9)^2 + 0.1^2 + 0.5^2 + 0.2^2 over four subjects
        assert brier_score_td(E, T, risk, [2.5])[0] == pytest.approx(0.31 / 4)

    def test_missing_beyond_follow_up(self):
        brier = brier_score_td(E, T, np.full(4, 0.5), [3.0, 6.0])
        assert not np.isnan(brier[0])
        assert np.isnan(brier[1])

    def test_integrated_brier_score(self):
        assert ibs_from_brier([0.1, 0.2, 0.3], [1.0, 2.0, 3.0], 3.0) == pytest.approx(0.2)
        assert ibs_from_brier([0.1, 0.2, 0.3], [1.0, 2.0, 3.0], 2.0) == pytest.approx(0.15)

    def test_no_ibs_when_endpoint_is_missing(self):
        assert np.isnan(ibs_from_brier([0.1, 0.2, np.nan], [1.0, 2.0, 3.0], 3.0))

    def test_ibs_matches_brier_curve(self):
        times = np.arange(1.0, 4.0)
        risk = np.tile(np.array([0.9, 0.1, 0.5, 0.2])[:, None], (1, 3))
        ibs, _ = integrated_brier_score(E, T, risk, times)
        brier = brier_score_td(E, T, risk, times)
        assert ibs == pytest.approx(ibs_from_brier(brier, times, 3.0))


class TestConcordance:

    def test_perfect_ranking(self):
        risk = np.array([0.9, 0.1, 0.5, 0.2])
        c, _ = truncated_concordance_td(E, T, risk, [4.0], 4.0)
        assert c == pytest.approx(1.0)

    def test_competing_event_before_case_is_comparable(self):
        # case at t=3 is compared with t=4 (later) and t=2 (competing before)
        risk = np.array([0.9, 0.1, 0.05, 0.2])
        c, _ = truncated_concordance_td(E, T, risk, [4.0], 4.0)
        assert c == pytest.approx(3 / 5)

    def test_truncation_drops_later_cases(self):
        risk = np.array([0.9, 0.1, 0.05, 0.2])
        c, _ = truncated_concordance_td(E, T, risk, [2.0], 2.0)
        assert c == pytest.approx(1.0)

    def test_matrix_predictions_use_the_column_at_t_eval(self):
        risk = np.column_stack([np.zeros(4), [0.9, 0.1, 0.5, 0.2]])
        c, _ = truncated_concordance_td(E, T, risk, [1.0, 4.0], 4.0)
        assert c == pytest.approx(1.0)

    def test_no_comparable_pairs(self):
        c, _ = truncated_concordance_td(np.array([2, 2]), np.array([1.0, 2.0]),
                                        np.array([0.1, 0.2]), [2.0], 2.0)
        assert np.isnan(c)

    def test_true_signal_beats_chance(self, fine_gray_data):
        e = fine_gray_data['status'].values
        t = fine_gray_data['time'].values
        lp = fine_gray_data[['x1', 'x2']].values @ np.array([0.5, -0.5])
        c, _ = truncated_concordance_td(e, t, lp, [60.0], 60.0)
        assert c > 0.5


class TestAalenJohansen:

    def test_without_censoring_is_the_empirical_proportion(self):
        assert aalen_johansen_cif(E, T, 3.0) == pytest.approx(0.5)
        assert aalen_johansen_cif(E, T, 3.0, competing_risk=2) == pytest.approx(0.25)

    def test_single_cause_is_one_minus_kaplan_meier(self):
        e = np.array([1, 0, 1, 1])
        assert aalen_johansen_cif(e, T, 3.0) == pytest.approx(1 - 3 / 8)

    def test_nothing_before_first_event(self):
        assert aalen_johansen_cif(E, T, 0.5) == 0.0

    def test_pseudo_values_without_censoring_are_indicators(self):
        e = np.array([1, 2, 1, 2, 1])
        t = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
        assert pseudo_values(e, t, 3.5) == pytest.approx([1, 0, 1, 0, 0])


class TestCalibrationBins:

    def test_deciles(self, fine_gray_data):
        e = fine_gray_data['status'].values
        t = fine_gray_data['time'].values
        risk = np.linspace(0.01, 0.5, len(t))
        table = calibration_bins(e, t, risk, 60.0, n_bins=10)
        assert list(table.columns) == ['bin', 'predicted_risk', 'observed_risk', 'n']
        assert list(table['bin']) == list(range(1, 11))
        assert table['n'].sum() == len(t)
        assert table['predicted_risk'].is_monotonic_increasing

    def test_identical_predictions_give_one_bin(self, fine_gray_data):
        e = fine_gray_data['status'].values
        t = fine_gray_data['time'].values
        table = calibration_bins(e, t, np.full(len(t), 0.2), 60.0)
        assert len(table) == 1
        assert table['n'].iloc[0] == len(t)

    def test_tied_predictions_collapse_bins(self, fine_gray_data):
        e = fine_gray_data['status'].values
        t = fine_gray_data['time'].values
        risk = np.repeat([0.1, 0.2, 0.3], [200, 200, 100])
        table = calibration_bins(e, t, risk, 60.0, n_bins=10)
        assert 1 < len(table) < 10
        assert table['n'].sum() == len(t)
