#!/usr/bin/env python
"""
Repeated CV Visualization
=========================

Figures for a Fine-Gray repeated cross-validation run:
1. Time-dependent AUC with 95% CI ribbons (coloured by time range, one
   line style per time horizon)
2. Time-dependent Brier score with 95% CI ribbons
3. Average cumulative incidence across folds with 95% CI
4. Calibration (fold-by-fold deciles) for all calibration horizons together
5. One calibration figure per horizon

Works from a CVResults object or from the JSON written by run_cv.
"""

import argparse
import json
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, Optional, Union

# ==========================================
# CONFIGURATION
# ==========================================
PROJECT_ROOT = Path(__file__).parent.parent
RESULTS_DIR = PROJECT_ROOT / 'results' / 'fine_gray_cv'

TIME_RANGE_COLORS = {
    '0-60': 'green',
    '60-Max': 'red',
}

HORIZON_COLORS = ['blue', 'red', '#2ecc71', '#9b59b6']
HORIZON_LINESTYLES = ['-', '--', ':', '-.']


def load_summaries(results) -> Dict[str, pd.DataFrame]:
    """Summary tables from a CVResults object, a results dict, or a JSON path."""
    if hasattr(results, 'summaries'):
        return results.summaries()
    if isinstance(results, (str, Path)):
        with open(results, 'r') as f:
            results = json.load(f)
    return {name: pd.DataFrame(rows) for name, rows in results['summaries'].items()}


def _plot_time_metric(summary: pd.DataFrame, metric: str, ylabel: str, title: str,
                      output_path: Path, horizon: Optional[int] = None) -> Path:
    """
    Mean curve with CI ribbon per time range. Every horizon is drawn on the
    same axes (one line style each) unless ``horizon`` selects one.
    """
    if horizon is not None:
        summary = summary[summary['Time_Horizon'] == horizon]
    horizons = sorted(summary['Time_Horizon'].unique())

    fig, ax = plt.subplots(figsize=(10, 6))
    for i, h in enumerate(horizons):
        linestyle = HORIZON_LINESTYLES[i % len(HORIZON_LINESTYLES)]
        rows = summary[summary['Time_Horizon'] == h].sort_values('times')
        for time_range, color in TIME_RANGE_COLORS.items():
            part = rows[rows['Time_Range'] == time_range]
            if part.empty:
                continue
            label = time_range if len(horizons) == 1 else f'{time_range} (horizon {h})'
            ax.plot(part['times'], part[f'{metric}_Mean'], color=color,
                    linestyle=linestyle, label=label)
            ax.scatter(part['times'], part[f'{metric}_Mean'], color=color, s=4)
            ax.fill_between(part['times'], part[f'{metric}_LowerCI'].astype(float),
                            part[f'{metric}_UpperCI'].astype(float), color=color, alpha=0.15,
                            linewidth=0)

    max_time = summary['times'].max() if len(summary) else 1
    ax.set_xlim(0, max_time)
    ax.set_xticks(np.arange(0, max_time + 1, 10))
    ax.set_title(title, fontsize=13, fontweight='bold')
    ax.set_xlabel('Time (months)', fontsize=11)
    ax.set_ylabel(ylabel, fontsize=11)
    ax.legend(title='Time Range', fontsize=9)
    ax.grid(linestyle='--', alpha=0.4)
    ax.set_axisbelow(True)

    plt.tight_layout()
    plt.savefig(output_path, bbox_inches='tight', dpi=150)
    print(f"Saved: {output_path}")
    plt.close(fig)
    return output_path


def plot_auc(summary: pd.DataFrame, output_path: Path, label: str = '5×5',
             horizon: Optional[int] = None) -> Path:
    """Plot 1: time-dependent AUC (95% CI)."""
    return _plot_time_metric(
        summary, 'AUC', 'AUC',
        f'Repeated {label} CV Time-dependent AUC with Time Ranges (95% CI)',
        output_path, horizon
    )


def plot_brier(summary: pd.DataFrame, output_path: Path, label: str = '5×5',
               horizon: Optional[int] = None) -> Path:
    """Plot 2: time-dependent Brier score (95% CI)."""
    return _plot_time_metric(
        summary, 'Brier', 'Brier Score',
        f'Repeated {label} CV Brier Scores with Time Ranges (95% CI)',
        output_path, horizon
    )


def plot_cif(summary: pd.DataFrame, output_path: Path, label: str = '5×5') -> Path:
    """Plot 3: average CIF across folds (95% CI)."""
    summary = summary.sort_values('Time')

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.plot(summary['Time'], summary['CIF_Mean'], color='blue', linewidth=1.5)
    ax.fill_between(summary['Time'], summary['CIF_LowerCI'].astype(float),
                    summary['CIF_UpperCI'].astype(float), color='blue', alpha=0.2, linewidth=0)
    ax.scatter(summary['Time'], summary['CIF_Mean'], color='blue', s=6)

    max_time = summary['Time'].max()
    ax.set_xlim(0, max_time)
    ax.set_xticks(np.arange(0, max_time + 1, 10))
    ax.set_title(f'Repeated ({label}) CV Average CIF Across Folds (95% CI)',
                 fontsize=13, fontweight='bold')
    ax.set_xlabel('Time (months)', fontsize=11)
    ax.set_ylabel('Average CIF', fontsize=11)
    ax.grid(linestyle='--', alpha=0.4)

    plt.tight_layout()
    plt.savefig(output_path, bbox_inches='tight', dpi=150)
    print(f"Saved: {output_path}")
    plt.close(fig)
    return output_path


def _draw_calibration(ax, part: pd.DataFrame, color: str, label: Optional[str] = None):
    part = part.sort_values('bin')
    x = part['PredRisk_Mean'].astype(float)
    y = part['ObsRisk_Mean'].astype(float)
    ax.plot(x, y, color=color, marker='o', markersize=4, label=label)
    lower = y - part['ObsRisk_LowerCI'].astype(float)
    upper = part['ObsRisk_UpperCI'].astype(float) - y
    ax.errorbar(x, y, yerr=[lower.fillna(0), upper.fillna(0)], fmt='none',
                ecolor=color, alpha=0.6, capsize=2)


def _finish_calibration(ax, limit: float, title: str):
    ax.plot([0, limit], [0, limit], linestyle='--', color='grey', linewidth=1)
    ax.set_xlim(0, limit)
    ax.set_ylim(0, limit)
    ax.set_xlabel('Mean Predicted Probability (decile)', fontsize=11)
    ax.set_ylabel('Mean Observed Probability (decile)', fontsize=11)
    ax.set_title(title, fontsize=13, fontweight='bold')
    ax.grid(linestyle='--', alpha=0.4)


def plot_calibration(summary: pd.DataFrame, output_path: Path, limit: float = 0.4) -> Path:
    """Plot 4: calibration at every calibration horizon on one figure."""
    fig, ax = plt.subplots(figsize=(8, 6))
    for color, (horizon, part) in zip(HORIZON_COLORS, summary.groupby('Time_Horizon')):
        _draw_calibration(ax, part, color, label=f'{horizon} Months')
    _finish_calibration(ax, limit, 'Calibration at Multiple Time Horizons (Fold-by-Fold Deciles)')
    ax.legend(fontsize=9)

    plt.tight_layout()
    plt.savefig(output_path, bbox_inches='tight', dpi=150)
    print(f"Saved: {output_path}")
    plt.close(fig)
    return output_path


def plot_calibration_by_horizon(summary: pd.DataFrame, output_dir: Path,
                                limit: float = 0.4) -> Dict[int, Path]:
    """Plot 5: one calibration figure per horizon."""
    paths = {}
    for color, (horizon, part) in zip(HORIZON_COLORS, summary.groupby('Time_Horizon')):
        fig, ax = plt.subplots(figsize=(8, 6))
        _draw_calibration(ax, part, color)
        _finish_calibration(ax, limit, f'Calibration at {horizon} Months')

        output_path = Path(output_dir) / f'Calibration_{horizon}_Months.png'
        plt.tight_layout()
        plt.savefig(output_path, bbox_inches='tight', dpi=150)
        print(f"Saved: {output_path}")
        plt.close(fig)
        paths[int(horizon)] = output_path
    return paths


def create_all_plots(results, output_dir: Union[str, Path] = None, label: str = None) -> Dict[str, Path]:
    """Generate every figure for a run."""
    output_dir = Path(output_dir) if output_dir else RESULTS_DIR / 'plots'
    output_dir.mkdir(parents=True, exist_ok=True)

    if label is None:
        config = getattr(results, 'config', None)
        label = f"{config['k_folds']}×{config['n_repeats']}" if config else '5×5'

    print("=" * 70)
    print("GENERATING REPEATED CV VISUALIZATIONS")
    print("=" * 70)

    summaries = load_summaries(results)
    paths = {
        'auc': plot_auc(summaries['auc'], output_dir / 'auc.png', label),
        'brier': plot_brier(summaries['brier'], output_dir / 'brier.png', label),
        'cif': plot_cif(summaries['cif'], output_dir / 'cif.png', label),
    }
    if not summaries['calibration'].empty:
        paths['calibration'] = plot_calibration(
            summaries['calibration'], output_dir / 'Calibration_Combined_Plot.png')
        for horizon, path in plot_calibration_by_horizon(summaries['calibration'], output_dir).items():
            paths[f'calibration_{horizon}'] = path

    print(f"\nAll plots saved to: {output_dir}")
    return paths


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Visualize Fine-Gray repeated CV results')
    parser.add_argument('--results', type=str,
                        default=str(RESULTS_DIR / 'fine_gray_cv_results.json'),
                        help='JSON written by FineGrayCV.run_cv')
    parser.add_argument('--output-dir', type=str, default=None,
                        help='Directory to save plots')

    args = parser.parse_args()
    create_all_plots(Path(args.results), args.output_dir)
