"""
Cohort loading, validation and simulation.

Real data comes from a spreadsheet (one row per patient, status coded
0 = censored, 1 = event of interest, 2 = competing risk); synthetic cohorts
are used for tests and demonstrations.
"""

from .loader import load_cohort, prepare_cohort, validate_cohort, describe_cohort
from .synthetic import simulate_cohort, simulate_fine_gray, true_cif

__all__ = [
    'load_cohort',
    'prepare_cohort',
    'validate_cohort',
    'describe_cohort',
    'simulate_cohort',
    'simulate_fine_gray',
    'true_cif',
]
