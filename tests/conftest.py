import matplotlib
matplotlib.use('Agg')

import pytest

from cohorts.synthetic import simulate_cohort, simulate_fine_gray


@pytest.fixture(scope='session')
def cohort():
    """100 subjects: 30 censored, 40 events of interest, 30 competing."""
    return simulate_cohort(n=100, random_state=7)


@pytest.fixture(scope='session')
def fine_gray_data():
    return simulate_fine_gray(n=500, random_state=11)


@pytest.fixture
def cohort_config():
    return {
        'k_folds': 5,
        'n_repeats': 2,
        'categorical_vars': ['stage'],
        'continuous_vars': ['age', 'dose'],
        'time_horizons': (36, 60),
        'cal_time_horizons': (36, 60),
        'max_time': 114,
    }
