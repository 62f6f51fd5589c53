"""
FineGrayCV Package

Repeated stratified k-fold cross-validation of a Fine-Gray competing risks
model:

Folds:
    - create_multi_folds: caret-style repeated stratified partitions

Model:
    - FineGrayRegression: subdistribution hazard regression (weighted
      counting-process Cox model on lifelines)

Evaluation (per split, on the held-out partition):
    - CIF curve, time-dependent AUC and Brier score, IBS, truncated C-index
    - Quantile calibration with Aalen-Johansen pseudo-values

Aggregation:
    - Mean and 95% CI across splits for every metric
    - Best split by C-index at the largest time horizon
"""

# Data loading and metrics re-exported for convenience
from cohorts import load_cohort, validate_cohort
from crmetrics import truncated_concordance_td, integrated_brier_score

from .config import DEFAULT_CV_CONFIG, resolve_config, load_config
from .folds import Split, create_multi_folds
from .aggregate import compute_mean_ci, summarize
from .trainer import FineGrayRegression, ModelSpec, FitError, fit_model
from .evaluation import RiskEvaluation, evaluate_risk, evaluate_calibration
from .run_cv import CVResults, run_repeated_cv, select_best_split

__all__ = [
    # Data (from cohorts)
    'load_cohort',
    'validate_cohort',
    # Metrics (from crmetrics)
    'truncated_concordance_td',
    'integrated_brier_score',
    # Configuration
    'DEFAULT_CV_CONFIG',
    'resolve_config',
    'load_config',
    # Folds and aggregation
    'Split',
    'create_multi_folds',
    'compute_mean_ci',
    'summarize',
    # Model
    'FineGrayRegression',
    'ModelSpec',
    'FitError',
    'fit_model',
    # Evaluation
    'RiskEvaluation',
    'evaluate_risk',
    'evaluate_calibration',
    # Cross-validation
    'CVResults',
    'run_repeated_cv',
    'select_best_split',
]
