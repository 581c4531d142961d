"""
Feature Selection Module
========================

Chooses the predictor set shared by every model trainer. Both analyses run
on the training set only.

    1. Correlation ranking: the predictor with the largest absolute Pearson
       correlation with the outcome becomes the primary predictor.
    2. PCA: the remaining predictors are those with the largest absolute
       loading on the first principal component of the standardized
       candidate predictors.
"""

import logging
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.decomposition import PCA

from .exceptions import SelectionError
from .preprocessing import Standardizer

logger = logging.getLogger(__name__)


def candidate_predictors(
    df: pd.DataFrame,
    outcome: str,
    exclude: Iterable[str] = ()
) -> List[str]:
    """All numeric columns except the outcome and excluded identifiers."""
    exclude = set(exclude) | {outcome}
    numeric = df.select_dtypes(include=[np.number]).columns
    return [col for col in numeric if col not in exclude]


def correlation(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Pearson correlation between two numeric sequences.

    Raises:
        SelectionError: If the lengths differ or either input is constant
    """
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.shape != b.shape or a.size < 2:
        raise SelectionError("Correlation needs two sequences of equal length >= 2")

    a_c = a - a.mean()
    b_c = b - b.mean()
    denom = np.sqrt(np.dot(a_c, a_c) * np.dot(b_c, b_c))
    if denom == 0:
        raise SelectionError("Correlation is undefined for a constant sequence")
    return float(np.clip(np.dot(a_c, b_c) / denom, -1.0, 1.0))


def check_variance(df: pd.DataFrame, columns: Sequence[str]) -> None:
    """
    Raises:
        SelectionError: If any column is constant
    """
    std = df[list(columns)].std(ddof=0)
    constant = std[~(std > 0)].index.tolist()
    if constant:
        raise SelectionError(f"Zero-variance columns: {constant}")


def correlation_ranking(
    df: pd.DataFrame,
    outcome: str,
    predictors: Sequence[str]
) -> pd.DataFrame:
    """
    Rank predictors by absolute Pearson correlation with the outcome.

    Args:
        df: Training data
        outcome: Outcome column
        predictors: Candidate predictor columns

    Returns:
        DataFrame indexed by predictor with columns correlation,
        abs_correlation and p_value, strongest first (ties by name)
    """
    y = df[outcome].to_numpy(dtype=float)
    rows = []
    for col in predictors:
        x = df[col].to_numpy(dtype=float)
        r = correlation(x, y)
        p_value = stats.pearsonr(x, y)[1] if len(x) > 2 else np.nan
        rows.append({
            'predictor': col,
            'correlation': r,
            'abs_correlation': abs(r),
            'p_value': float(p_value)
        })

    ranking = pd.DataFrame(rows)
    ranking = ranking.sort_values(
        ['abs_correlation', 'predictor'],
        ascending=[False, True],
        kind='mergesort'
    )
    return ranking.set_index('predictor')


def pca_loadings(
    df: pd.DataFrame,
    predictors: Sequence[str]
) -> Tuple[pd.DataFrame, np.ndarray]:
    """
    Principal component loadings of the standardized predictors.

    Args:
        df: Training data
        predictors: Columns to decompose

    Returns:
        Tuple of (loadings DataFrame indexed by predictor with one column per
        component 'PC1', 'PC2', ..., explained variance ratio per component)
    """
    standardizer = Standardizer(columns=list(predictors))
    X = standardizer.fit_transform(df)

    pca = PCA()
    pca.fit(X)

    # components_ has one row per component; orient so PC1 has a positive sum
    components = pca.components_.copy()
    for i in range(components.shape[0]):
        if components[i].sum() < 0:
            components[i] = -components[i]

    columns = [f"PC{i + 1}" for i in range(components.shape[0])]
    loadings = pd.DataFrame(components.T, index=list(predictors), columns=columns)
    return loadings, pca.explained_variance_ratio_


def select_predictors(
    df: pd.DataFrame,
    outcome: str,
    n_predictors: int = 3,
    exclude: Iterable[str] = ()
) -> Dict[str, Any]:
    """
    Choose the ordered predictor set from the training data.

    Args:
        df: Training data
        outcome: Outcome column
        n_predictors: Size of the predictor set (primary + PC1 predictors)
        exclude: Numeric identifier columns that are not predictors

    Returns:
        Dictionary containing:
            - predictors: ordered list of selected column names
            - primary: the most correlated predictor
            - correlation_ranking: DataFrame from correlation_ranking
            - loadings: DataFrame from pca_loadings
            - explained_variance_ratio: array from pca_loadings

    Raises:
        SelectionError: On fewer than 2 candidates, a constant predictor or
            outcome, or an n_predictors outside [2, number of candidates]
    """
    if outcome not in df.columns:
        raise SelectionError(f"Outcome column '{outcome}' not found")

    candidates = candidate_predictors(df, outcome, exclude)
    if len(candidates) < 2:
        raise SelectionError(
            f"At least 2 numeric predictor columns are required, found {len(candidates)}"
        )
    if not 2 <= n_predictors <= len(candidates):
        raise SelectionError(
            f"n_predictors must be between 2 and {len(candidates)}, got {n_predictors}"
        )

    incomplete = df[candidates + [outcome]].columns[df[candidates + [outcome]].isnull().any()]
    if len(incomplete):
        raise SelectionError(f"Missing values in columns: {incomplete.tolist()}")

    check_variance(df, candidates + [outcome])

    logger.info("=" * 60)
    logger.info("STARTING FEATURE SELECTION")
    logger.info("=" * 60)
    logger.info(f"Candidate predictors: {len(candidates)}, training rows: {len(df)}")

    ranking = correlation_ranking(df, outcome, candidates)
    primary = ranking.index[0]
    logger.info(
        f"Primary predictor: {primary} "
        f"(r = {ranking.loc[primary, 'correlation']:.4f})"
    )

    loadings, explained = pca_loadings(df, candidates)
    pc1 = loadings['PC1'].drop(primary).abs().rename('abs_loading').to_frame()
    pc1['predictor'] = pc1.index
    pc1 = pc1.sort_values(['abs_loading', 'predictor'], ascending=[False, True], kind='mergesort')
    secondary = pc1['predictor'].tolist()[:n_predictors - 1]

    logger.info(f"PC1 explains {explained[0]:.1%} of predictor variance")
    logger.info(f"PC1 predictors: {secondary}")

    predictors = [primary] + secondary

    logger.info(f"FEATURE SELECTION COMPLETE: {predictors}")

    return {
        'predictors': predictors,
        'primary': primary,
        'correlation_ranking': ranking,
        'loadings': loadings,
        'explained_variance_ratio': explained
    }


def print_selection_summary(selection: Dict[str, Any], top_n: int = 10) -> None:
    """
    Print the correlation ranking, PC1 loadings and the chosen predictors.

    Args:
        selection: Dictionary from select_predictors
        top_n: Number of rows to show per table
    """
    ranking = selection['correlation_ranking']
    loadings = selection['loadings']

    print("\n" + "=" * 50)
    print("FEATURE SELECTION SUMMARY")
    print("=" * 50)
    print(f"\nTop {min(top_n, len(ranking))} correlations with outcome:")
    print("-" * 50)
    for name, row in ranking.head(top_n).iterrows():
        print(f"  {name:<28} r={row['correlation']:>7.3f}  p={row['p_value']:.2e}")

    pc1 = loadings['PC1'].abs().sort_values(ascending=False).head(top_n)
    print(f"\nTop {len(pc1)} |PC1| loadings "
          f"({selection['explained_variance_ratio'][0]:.1%} variance):")
    print("-" * 50)
    for name, value in pc1.items():
        print(f"  {name:<28} {value:.3f}")

    print(f"\nSelected predictors: {selection['predictors']}")
    print("=" * 50 + "\n")
