"""
Data Preprocessing Module
=========================

Handles train/test partitioning, standardization and conversion of frames
into model matrices.

Functions:
    - split_dataset: Seeded train/test split stratified by outcome quantiles
    - stratification_labels: Outcome groups small enough to stratify on
    - prepare_xy: Extract predictor matrix and outcome vector
Classes:
    - Standardizer: Zero-mean / unit-variance scaling learned on training data
"""

import logging
import math
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split
from sklearn.preprocessing import StandardScaler
import joblib

from .exceptions import FitError, PartitionError, SelectionError

logger = logging.getLogger(__name__)


def outcome_groups(y: np.ndarray, n_groups: int = 5) -> np.ndarray:
    """
    Assign each outcome value to a quantile group.

    Bins are right-closed, the lowest bin includes its lower edge. Coinciding
    quantiles collapse into a single group, so fewer than ``n_groups`` groups
    may be returned.

    Args:
        y: Outcome values
        n_groups: Maximum number of groups

    Returns:
        Integer group label per value (0 = lowest quantile group)
    """
    y = np.asarray(y, dtype=float)
    n_groups = max(1, min(n_groups, len(y)))
    edges = np.unique(np.quantile(y, np.linspace(0, 1, n_groups + 1)))
    inner = edges[1:-1]
    return np.searchsorted(inner, y, side='left')


def stratification_labels(
    y: np.ndarray,
    n_train: int,
    n_test: int,
    n_groups: int = 5
) -> Optional[np.ndarray]:
    """
    Outcome quantile groups usable as ``stratify`` labels.

    The number of groups is reduced until every group has at least two rows
    and both halves can hold one row per group.

    Returns:
        Group label per row, or None when no grouping fits (plain shuffle)
    """
    for k in range(n_groups, 1, -1):
        groups = outcome_groups(y, k)
        _, counts = np.unique(groups, return_counts=True)
        if len(counts) < 2:
            continue
        if counts.min() >= 2 and min(n_train, n_test) >= len(counts):
            return groups
    return None


def split_dataset(
    df: pd.DataFrame,
    outcome: str,
    train_fraction: float = 0.7,
    seed: int = 123,
    n_groups: int = 5
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Partition rows into training and testing sets.

    The testing set gets ``ceil((1 - train_fraction) * n)`` rows and the
    training set the rest. Rows are drawn with scikit-learn's
    ``train_test_split`` stratified by outcome quantile group, using
    ``random_state=seed``; global random state is never touched.

    Args:
        df: Full dataset
        outcome: Outcome column used for stratification
        train_fraction: Fraction of rows for training, strictly in (0, 1)
        seed: Random seed
        n_groups: Maximum number of outcome quantile groups

    Returns:
        Tuple of (train_df, test_df), each in original row order

    Raises:
        PartitionError: If the fraction is out of range, the dataset is empty,
            the outcome column is missing or incomplete, or either half
            would be empty
    """
    if not 0.0 < train_fraction < 1.0:
        raise PartitionError(
            f"train_fraction must be strictly between 0 and 1, got {train_fraction}"
        )
    if df is None or len(df) == 0:
        raise PartitionError("Cannot split an empty dataset")
    if outcome not in df.columns:
        raise PartitionError(f"Outcome column '{outcome}' not found in dataset")

    y = df[outcome].to_numpy(dtype=float)
    if np.isnan(y).any():
        raise PartitionError(f"Outcome column '{outcome}' contains missing values")

    n_rows = len(df)
    n_test = math.ceil(round((1.0 - train_fraction) * n_rows, 9))
    n_train = n_rows - n_test
    if n_train == 0 or n_test == 0:
        raise PartitionError(
            f"Splitting {n_rows} rows with train_fraction={train_fraction} "
            f"leaves {n_train} training and {n_test} testing rows"
        )

    groups = stratification_labels(y, n_train, n_test, n_groups)
    train_pos, test_pos = train_test_split(
        np.arange(n_rows),
        train_size=n_train,
        test_size=n_test,
        random_state=seed,
        stratify=groups
    )

    train_df = df.iloc[np.sort(train_pos)].copy()
    test_df = df.iloc[np.sort(test_pos)].copy()

    n_strata = 1 if groups is None else len(np.unique(groups))
    logger.info(
        f"Train/Test split (seed={seed}, p={train_fraction}): "
        f"{len(train_df)} train rows, {len(test_df)} test rows, "
        f"{n_strata} outcome groups"
    )

    return train_df, test_df


def prepare_xy(
    df: pd.DataFrame,
    predictors: Sequence[str],
    outcome: Optional[str] = None
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Extract the predictor matrix (and outcome vector) from a frame.

    Raises:
        FitError: If a predictor or the outcome column is missing
    """
    missing = [col for col in predictors if col not in df.columns]
    if outcome is not None and outcome not in df.columns:
        missing.append(outcome)
    if missing:
        raise FitError(f"Columns missing from dataset: {missing}")

    X = df[list(predictors)].to_numpy(dtype=float)
    y = df[outcome].to_numpy(dtype=float) if outcome is not None else None
    return X, y


class Standardizer:
    """
    Z-score scaling of numeric predictor columns.

    Means and standard deviations are learned from the frame passed to
    ``fit`` (the training set) and reused unchanged for any other frame.
    """

    def __init__(self, columns: Optional[List[str]] = None):
        self.columns = columns
        self.scaler: Optional[StandardScaler] = None
        self._is_fitted = False

    def fit(self, df: pd.DataFrame) -> 'Standardizer':
        """
        Learn per-column mean and standard deviation.

        Raises:
            SelectionError: If any column has zero variance
        """
        if self.columns is None:
            self.columns = df.select_dtypes(include=[np.number]).columns.tolist()

        self.scaler = StandardScaler()
        self.scaler.fit(df[self.columns].to_numpy(dtype=float))

        constant = [
            col for col, var in zip(self.columns, self.scaler.var_)
            if not var > 0
        ]
        if constant:
            raise SelectionError(
                f"Zero-variance columns cannot be standardized: {constant}"
            )

        self._is_fitted = True
        logger.info(f"Fitted StandardScaler on {len(self.columns)} columns")
        return self

    def transform(self, df: pd.DataFrame) -> np.ndarray:
        if not self._is_fitted:
            raise ValueError("Standardizer must be fitted before transform. Call fit() first.")
        return self.scaler.transform(df[self.columns].to_numpy(dtype=float))

    def fit_transform(self, df: pd.DataFrame) -> np.ndarray:
        self.fit(df)
        return self.transform(df)

    @property
    def mean_(self) -> pd.Series:
        return pd.Series(self.scaler.mean_, index=self.columns)

    @property
    def scale_(self) -> pd.Series:
        return pd.Series(self.scaler.scale_, index=self.columns)

    def save(self, filepath: str) -> None:
        """Save the fitted scaler state to disk."""
        state = {
            'columns': self.columns,
            'scaler': self.scaler,
            '_is_fitted': self._is_fitted
        }
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Standardizer saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'Standardizer':
        """Load a standardizer from disk."""
        state = joblib.load(filepath)
        standardizer = cls(columns=state['columns'])
        standardizer.scaler = state['scaler']
        standardizer._is_fitted = state['_is_fitted']
        logger.info(f"Standardizer loaded from {filepath}")
        return standardizer


def print_split_summary(train_df: pd.DataFrame, test_df: pd.DataFrame, outcome: str) -> None:
    """
    Print a summary of the train/test partition.

    Args:
        train_df: Training set
        test_df: Testing set
        outcome: Outcome column
    """
    total = len(train_df) + len(test_df)
    print("\n" + "=" * 50)
    print("SPLIT SUMMARY")
    print("=" * 50)
    print(f"Training rows: {len(train_df)} ({len(train_df) / total:.1%})")
    print(f"Testing rows:  {len(test_df)} ({len(test_df) / total:.1%})")
    print(f"\n{'':<10} {'mean':>10} {'std':>10} {'min':>10} {'max':>10}")
    for name, part in (('train', train_df), ('test', test_df)):
        y = part[outcome]
        print(f"{name:<10} {y.mean():>10.3f} {y.std():>10.3f} {y.min():>10.3f} {y.max():>10.3f}")
    print("=" * 50 + "\n")
