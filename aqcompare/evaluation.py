"""
Model Evaluation Module
=======================

Scores every trained model on the held-out testing set and ranks them.

Features:
    - RMSE (standard root-mean-squared error) per model
    - Ranked results table, ascending RMSE with ties broken by model name
    - (actual, predicted) pairs per model for plotting
    - Predicted vs actual scatter plots, RMSE comparison and MARS grid charts
"""

import logging
import json
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns

from .exceptions import EvaluationError

logger = logging.getLogger(__name__)


def rmse(y_true, y_pred) -> float:
    """
    Root-mean-squared error, sqrt(mean((y_true - y_pred)^2)).

    Raises:
        ValueError: If the inputs are empty or differ in length
    """
    y_true = np.asarray(y_true, dtype=float).ravel()
    y_pred = np.asarray(y_pred, dtype=float).ravel()
    if y_true.shape != y_pred.shape:
        raise ValueError(
            f"Length mismatch: {len(y_true)} actual values, {len(y_pred)} predictions"
        )
    if y_true.size == 0:
        raise ValueError("RMSE is undefined for empty input")
    return float(np.sqrt(np.mean((y_true - y_pred) ** 2)))


def rank_results(
    results: Union[Mapping[str, float], Iterable[Tuple[str, float]]]
) -> pd.DataFrame:
    """
    Order (model, rmse) results ascending by RMSE.

    Ties are broken alphabetically by model name, so the order is total and
    independent of input order.

    Args:
        results: Mapping or iterable of (model name, RMSE)

    Returns:
        DataFrame with columns rank, model, rmse

    Raises:
        ValueError: If a model name appears more than once
    """
    pairs = list(results.items()) if isinstance(results, Mapping) else list(results)
    names = [name for name, _ in pairs]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ValueError(f"Duplicate model names in results: {duplicates}")

    table = pd.DataFrame(pairs, columns=['model', 'rmse'])
    table['rmse'] = table['rmse'].astype(float)
    table = table.sort_values(['rmse', 'model'], kind='mergesort').reset_index(drop=True)
    table.insert(0, 'rank', np.arange(1, len(table) + 1))
    return table


def plot_actual_vs_predicted(
    predictions: Dict[str, pd.DataFrame],
    figsize: Tuple[int, int] = (12, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Create predicted vs actual scatter plots, one panel per model.

    Args:
        predictions: Model name -> DataFrame with 'actual' and 'predicted'
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    names = list(predictions)
    n_rows = (len(names) + 1) // 2
    fig, axes = plt.subplots(n_rows, 2, figsize=figsize, squeeze=False)
    axes = axes.flatten()

    for ax, name in zip(axes, names):
        pairs = predictions[name]
        ax.scatter(pairs['actual'], pairs['predicted'], alpha=0.6, s=20)

        # Perfect prediction line
        min_val = min(pairs['actual'].min(), pairs['predicted'].min())
        max_val = max(pairs['actual'].max(), pairs['predicted'].max())
        ax.plot([min_val, max_val], [min_val, max_val], 'r--', linewidth=2, label='Perfect')

        ax.set_xlabel('Actual')
        ax.set_ylabel('Predicted')
        ax.set_title(
            f"{name}\nRMSE={rmse(pairs['actual'], pairs['predicted']):.4f}",
            fontsize=10, fontweight='bold'
        )
        ax.legend(loc='upper left', fontsize=8)

    # Hide unused subplots
    for idx in range(len(names), len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle('Predicted vs Actual - Testing Set', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Actual vs Predicted plot saved to {save_path}")

    return fig


def plot_rmse_comparison(
    ranking: pd.DataFrame,
    figsize: Tuple[int, int] = (8, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Bar chart of test RMSE (and CV RMSE when available) per model.

    Args:
        ranking: Ranked table from evaluate_models
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    value_vars = ['rmse'] + (['cv_rmse'] if 'cv_rmse' in ranking else [])
    long = ranking.melt(id_vars='model', value_vars=value_vars, var_name='set', value_name='RMSE')
    long['set'] = long['set'].map({'rmse': 'Test', 'cv_rmse': 'Cross-validation'})

    fig, ax = plt.subplots(figsize=figsize)
    sns.barplot(data=long, x='model', y='RMSE', hue='set', ax=ax, order=ranking['model'])
    ax.set_xlabel('Model')
    ax.set_title('Model Comparison (lower is better)', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"RMSE comparison plot saved to {save_path}")

    return fig


def plot_mars_grid(
    grid_results: pd.DataFrame,
    figsize: Tuple[int, int] = (8, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Cross-validated RMSE of every MARS (degree, nprune) combination.

    Args:
        grid_results: MarsModel.grid_results_
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)
    for degree, group in grid_results.groupby('degree'):
        ax.plot(group['nprune'], group['cv_rmse'], marker='o', label=f'degree {degree}')
    ax.set_xlabel('Maximum retained terms (nprune)')
    ax.set_ylabel('CV RMSE')
    ax.set_title('MARS Hyperparameter Search', fontsize=14, fontweight='bold')
    ax.legend()
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"MARS grid plot saved to {save_path}")

    return fig


def evaluate_models(
    models: Mapping[str, Any],
    test_df: pd.DataFrame,
    outcome: str,
    output_dir: Optional[str] = None,
    make_figures: bool = True,
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Score every trained model on the testing set and rank them.

    Args:
        models: Model name -> trained model exposing predict(df)
        test_df: Testing set
        outcome: Outcome column
        output_dir: Directory for metrics and figures (nothing written if None)
        make_figures: Whether to draw figures when output_dir is given
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing:
            - ranking: DataFrame (rank, model, rmse, cv_rmse)
            - predictions: model name -> DataFrame of (actual, predicted)
            - figures: list of written figure file names
            - metrics_file: path of the JSON metrics file, or None

    Raises:
        EvaluationError: If the testing set is empty, has no outcome column,
            there are no models, or a model returns the wrong number of
            predictions
    """
    if len(test_df) == 0:
        raise EvaluationError("Testing set is empty")
    if outcome not in test_df.columns:
        raise EvaluationError(f"Outcome column '{outcome}' not found in testing set")
    if not models:
        raise EvaluationError("No trained models to evaluate")

    logger.info("=" * 60)
    logger.info("STARTING MODEL EVALUATION")
    logger.info("=" * 60)

    actual = test_df[outcome].to_numpy(dtype=float)
    predictions = {}
    scores = {}
    for name, model in models.items():
        pred = np.asarray(model.predict(test_df), dtype=float).ravel()
        if len(pred) != len(actual):
            raise EvaluationError(
                f"{name} returned {len(pred)} predictions for {len(actual)} testing rows"
            )
        predictions[name] = pd.DataFrame(
            {'actual': actual, 'predicted': pred},
            index=test_df.index
        )
        scores[name] = rmse(actual, pred)
        logger.info(f"  {name}: test RMSE = {scores[name]:.4f}")

    ranking = rank_results(scores)
    cv_scores = [getattr(models[name], 'cv_rmse_', None) for name in ranking['model']]
    ranking['cv_rmse'] = [np.nan if score is None else float(score) for score in cv_scores]

    result = {
        'ranking': ranking,
        'predictions': predictions,
        'figures': [],
        'metrics_file': None
    }

    if output_dir is not None:
        output_dir = Path(output_dir)
        metrics_dir = output_dir / "metrics"
        metrics_dir.mkdir(parents=True, exist_ok=True)

        metrics = {
            'outcome': outcome,
            'n_test_rows': int(len(test_df)),
            'ranking': json.loads(ranking.to_json(orient='records')),
            'training': {
                name: getattr(model, 'training_info', {}) for name, model in models.items()
            }
        }
        metrics_file = metrics_dir / "evaluation_metrics.json"
        with open(metrics_file, 'w') as f:
            json.dump(metrics, f, indent=2, default=str)
        result['metrics_file'] = str(metrics_file)
        logger.info(f"Metrics saved to {metrics_file}")

        if make_figures:
            figures_dir = output_dir / "figures"
            figures_dir.mkdir(parents=True, exist_ok=True)

            logger.info("Generating Actual vs Predicted plots...")
            plot_actual_vs_predicted(
                predictions,
                save_path=str(figures_dir / "eval_actual_vs_predicted.png")
            )
            result['figures'].append("eval_actual_vs_predicted.png")

            logger.info("Generating RMSE comparison...")
            plot_rmse_comparison(
                ranking,
                save_path=str(figures_dir / "eval_rmse_comparison.png")
            )
            result['figures'].append("eval_rmse_comparison.png")

            grid = getattr(models.get('MARS'), 'grid_results_', None)
            if grid is not None:
                plot_mars_grid(grid, save_path=str(figures_dir / "eval_mars_grid.png"))
                result['figures'].append("eval_mars_grid.png")

            if show_plots:
                plt.show()
            else:
                plt.close('all')

    logger.info("=" * 60)
    logger.info("EVALUATION COMPLETE")
    logger.info(f"  Best model: {ranking.loc[0, 'model']} (RMSE {ranking.loc[0, 'rmse']:.6f})")
    logger.info("=" * 60)

    return result


def print_evaluation_report(result: Dict[str, Any]) -> None:
    """
    Print the ranked model comparison to console.

    Args:
        result: Dictionary from evaluate_models
    """
    ranking = result['ranking']

    print("\n" + "=" * 60)
    print("MODEL EVALUATION REPORT")
    print("=" * 60)
    print(f"{'Rank':<6} {'Model':<15} {'Test RMSE':>12} {'CV RMSE':>12}")
    print("-" * 60)
    for _, row in ranking.iterrows():
        cv = row.get('cv_rmse', np.nan)
        cv_text = f"{'n/a':>12}" if pd.isna(cv) else f"{cv:>12.4f}"
        print(f"{int(row['rank']):<6} {row['model']:<15} {row['rmse']:>12.4f} {cv_text}")
    print("-" * 60)
    print(f"Best model: {ranking.loc[0, 'model']}")
    print("=" * 60 + "\n")
