"""
Exploratory Data Analysis (EDA) Module
======================================

Visualizes the training set and the predictor selection.

Functions:
    - plot_correlation_matrix: Correlation heatmap
    - plot_outcome_correlations: Predictor correlation with the outcome
    - plot_pca: Explained variance and first-component loadings
    - plot_distributions: Histograms of the selected columns
    - generate_eda_report: All of the above written to a directory
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats

logger = logging.getLogger(__name__)

# Set style for all plots
plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")


def plot_correlation_matrix(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    method: str = 'pearson',
    figsize: Tuple[int, int] = (10, 8),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Create a correlation heatmap for numerical columns.

    Args:
        df: DataFrame with numerical data
        columns: Columns to include (default: all numeric)
        method: Correlation method ('pearson', 'spearman', 'kendall')
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Tuple of (Figure, correlation matrix DataFrame)
    """
    data = df[columns] if columns else df.select_dtypes(include=[np.number])
    corr_matrix = data.corr(method=method)

    fig, ax = plt.subplots(figsize=figsize)

    mask = np.triu(np.ones_like(corr_matrix, dtype=bool), k=1)
    sns.heatmap(
        corr_matrix,
        mask=mask,
        annot=len(corr_matrix) <= 12,
        fmt='.2f',
        cmap='RdYlBu_r',
        center=0,
        square=True,
        linewidths=0.5,
        cbar_kws={"shrink": 0.8, "label": "Correlation"},
        ax=ax,
        vmin=-1,
        vmax=1
    )

    ax.set_title(f'Correlation Matrix ({method.capitalize()})',
                 fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Correlation matrix saved to {save_path}")

    return fig, corr_matrix


def plot_outcome_correlations(
    ranking: pd.DataFrame,
    top_n: int = 20,
    figsize: Tuple[int, int] = (10, 7),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Horizontal bar chart of predictor correlation with the outcome.

    Args:
        ranking: DataFrame from feature_selection.correlation_ranking
        top_n: Number of strongest predictors to show
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    top = ranking.head(top_n).iloc[::-1]
    colors = ['steelblue' if r > 0 else 'coral' for r in top['correlation']]

    fig, ax = plt.subplots(figsize=figsize)
    ax.barh(top.index, top['correlation'], color=colors, alpha=0.85)
    ax.axvline(0, color='k', linewidth=0.5)
    ax.set_xlabel('Pearson correlation with outcome')
    ax.set_title(f'Top {len(top)} Predictors by |r|', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Outcome correlation plot saved to {save_path}")

    return fig


def plot_pca(
    loadings: pd.DataFrame,
    explained_variance_ratio: np.ndarray,
    top_n: int = 15,
    figsize: Tuple[int, int] = (14, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Scree plot and first-component loadings side by side.

    Args:
        loadings: DataFrame from feature_selection.pca_loadings
        explained_variance_ratio: Variance ratio per component
        top_n: Number of largest |PC1| loadings to show
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, axes = plt.subplots(1, 2, figsize=figsize)

    n_components = len(explained_variance_ratio)
    x = np.arange(1, n_components + 1)
    axes[0].bar(x, explained_variance_ratio, alpha=0.7, label='Component')
    axes[0].plot(x, np.cumsum(explained_variance_ratio), 'r-o', markersize=3, label='Cumulative')
    axes[0].set_xlabel('Principal component')
    axes[0].set_ylabel('Explained variance ratio')
    axes[0].set_title('Scree Plot', fontweight='bold')
    axes[0].legend()

    pc1 = loadings['PC1'].reindex(loadings['PC1'].abs().sort_values(ascending=False).index)
    pc1 = pc1.head(top_n).iloc[::-1]
    axes[1].barh(pc1.index, pc1.values, color='seagreen', alpha=0.8)
    axes[1].axvline(0, color='k', linewidth=0.5)
    axes[1].set_xlabel('Loading')
    axes[1].set_title(f'PC1 Loadings ({explained_variance_ratio[0]:.1%} of variance)',
                      fontweight='bold')

    plt.suptitle('Principal Component Analysis (standardized predictors)',
                 fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"PCA plot saved to {save_path}")

    return fig


def plot_distributions(
    df: pd.DataFrame,
    columns: List[str],
    figsize: Tuple[int, int] = (14, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Create distribution plots (histogram + KDE) for the given columns.

    Args:
        df: DataFrame with numerical data
        columns: Columns to plot
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    n_rows = (len(columns) + 1) // 2
    fig, axes = plt.subplots(n_rows, 2, figsize=figsize, squeeze=False)
    axes = axes.flatten()

    for idx, col in enumerate(columns):
        ax = axes[idx]

        sns.histplot(df[col], kde=True, ax=ax, bins=30, alpha=0.7)

        mean_val = df[col].mean()
        median_val = df[col].median()
        ax.axvline(mean_val, color='red', linestyle='--', label=f'Mean: {mean_val:.2f}')
        ax.axvline(median_val, color='green', linestyle='--', label=f'Median: {median_val:.2f}')

        values = df[col].dropna()
        if len(values) >= 8:
            _, p_value = stats.normaltest(values)
            normality = "Normal" if p_value > 0.05 else "Non-Normal"
            ax.set_title(f'{col} ({normality}, p={p_value:.3f})', fontsize=10, fontweight='bold')
        else:
            ax.set_title(col, fontsize=10, fontweight='bold')
        ax.legend(fontsize=8)

    # Hide unused subplots
    for idx in range(len(columns), len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle('Distribution Analysis', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Distribution plots saved to {save_path}")

    return fig


def generate_eda_report(
    train_df: pd.DataFrame,
    selection: Dict[str, Any],
    outcome: str,
    output_dir: str = "reports/figures/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate the EDA figures for the training set and predictor selection.

    Args:
        train_df: Training data
        selection: Dictionary from feature_selection.select_predictors
        outcome: Outcome column
        output_dir: Directory to save figures
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing figure names and the correlation matrix of
        the outcome and selected predictors
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = {
        "figures": [],
        "correlation_matrix": None
    }

    logger.info("Generating EDA figures...")

    columns = [outcome] + selection['predictors']
    _, corr_matrix = plot_correlation_matrix(
        train_df,
        columns=columns,
        save_path=str(output_dir / "01_correlation_matrix.png")
    )
    report["figures"].append("01_correlation_matrix.png")
    report["correlation_matrix"] = corr_matrix

    plot_outcome_correlations(
        selection['correlation_ranking'],
        save_path=str(output_dir / "02_outcome_correlations.png")
    )
    report["figures"].append("02_outcome_correlations.png")

    plot_pca(
        selection['loadings'],
        selection['explained_variance_ratio'],
        save_path=str(output_dir / "03_pca.png")
    )
    report["figures"].append("03_pca.png")

    plot_distributions(
        train_df,
        columns,
        save_path=str(output_dir / "04_distributions.png")
    )
    report["figures"].append("04_distributions.png")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("EDA COMPLETE - All figures saved to: %s", output_dir)

    return report


def print_correlation_insights(corr_matrix: pd.DataFrame, threshold: float = 0.5) -> None:
    """
    Print strongly correlated pairs among the outcome and selected predictors.

    Args:
        corr_matrix: Correlation matrix DataFrame
        threshold: Correlation threshold for "strong" correlation
    """
    print("\n" + "=" * 50)
    print("CORRELATION INSIGHTS")
    print("=" * 50)

    strong_corr = []
    for i in range(len(corr_matrix.columns)):
        for j in range(i + 1, len(corr_matrix.columns)):
            corr_val = corr_matrix.iloc[i, j]
            if abs(corr_val) >= threshold:
                strong_corr.append({
                    "col1": corr_matrix.columns[i],
                    "col2": corr_matrix.columns[j],
                    "correlation": corr_val
                })

    if strong_corr:
        print(f"\nStrong correlations (|r| >= {threshold}):")
        for item in sorted(strong_corr, key=lambda x: abs(x["correlation"]), reverse=True):
            direction = "positive" if item["correlation"] > 0 else "negative"
            print(f"  • {item['col1']} ↔ {item['col2']}: {item['correlation']:.3f} ({direction})")
        print("\n  Strongly correlated predictors carry overlapping information;")
        print("  linear model coefficients for them should be read with care.")
    else:
        print(f"\nNo strong correlations found (|r| >= {threshold})")

    print("=" * 50 + "\n")
