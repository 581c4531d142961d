"""
Data Loader Module
==================

Handles configuration loading, CSV ingestion (local file or URL) and basic
data quality checks for the monitor-level PM2.5 dataset.

Functions:
    - load_config: Load YAML configuration file
    - load_data: Load CSV data and check the expected schema
    - validate_data: Check the monitor data before splitting
    - drop_incomplete_rows: Remove rows with missing modelling values
    - get_data_summary: Describe the modelling columns
"""

import io
import logging
from pathlib import Path
from typing import Dict, Any, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
import requests
import yaml

from . import __version__
from .exceptions import RetrievalError, SchemaError

logger = logging.getLogger(__name__)

DEFAULT_DATA_URL = (
    "https://raw.githubusercontent.com/opencasestudies/ocs-bp-air-pollution/"
    "master/data/raw/pm25_data.csv"
)

REQUEST_HEADERS = {
    'User-Agent': f'aqcompare/{__version__} (PM2.5 model comparison)'
}


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def _is_url(source: str) -> bool:
    return str(source).lower().startswith(("http://", "https://"))


def _fetch_text(url: str, timeout: float) -> str:
    """Download the raw CSV body. A single attempt; any failure is fatal."""
    logger.info(f"Fetching dataset: {url}")
    try:
        response = requests.get(url, headers=REQUEST_HEADERS, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise RetrievalError(f"Could not retrieve dataset from {url}: {e}") from e
    return response.text


def load_data(
    source: str,
    required_columns: Optional[Iterable[str]] = None,
    outcome: Optional[str] = None,
    timeout: float = 30.0
) -> pd.DataFrame:
    """
    Load CSV data from a local path or an http(s) URL and check its schema.

    Args:
        source: Path or URL of the CSV file (header row required)
        required_columns: Columns that must be present and numeric
        outcome: Outcome column; treated as required when given
        timeout: Network timeout in seconds for URL sources

    Returns:
        DataFrame containing the loaded data

    Raises:
        RetrievalError: If the source is unreachable or the file doesn't exist
        SchemaError: If the CSV can't be parsed or required columns are
            missing or non-numeric
    """
    source = str(source)

    if _is_url(source):
        buffer = io.StringIO(_fetch_text(source, timeout))
    else:
        file_path = Path(source)
        if not file_path.exists():
            raise RetrievalError(f"Data file not found: {file_path}")
        buffer = file_path

    try:
        df = pd.read_csv(buffer)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise SchemaError(f"Could not parse CSV from {source}: {e}") from e

    logger.info(f"Loaded data from {source}: {df.shape[0]} rows × {df.shape[1]} columns")

    required: List[str] = list(required_columns or [])
    if outcome is not None and outcome not in required:
        required.insert(0, outcome)

    check_schema(df, required)

    return df


def check_schema(df: pd.DataFrame, required_columns: Iterable[str]) -> None:
    """
    Check that every required column exists and holds numeric data.

    Raises:
        SchemaError: On the first violated constraint
    """
    required_columns = list(required_columns)
    missing = [col for col in required_columns if col not in df.columns]
    if missing:
        raise SchemaError(
            f"Missing required columns: {missing}. "
            f"Columns found: {list(df.columns)}"
        )

    non_numeric = [
        col for col in required_columns
        if not pd.api.types.is_numeric_dtype(df[col])
    ]
    if non_numeric:
        raise SchemaError(f"Required columns are not numeric: {non_numeric}")


def validate_data(
    df: pd.DataFrame,
    outcome: Optional[str] = None,
    columns: Optional[Iterable[str]] = None,
    strict: bool = True
) -> Tuple[bool, Dict[str, Any]]:
    """
    Check the monitor dataset before it is split.

    Checks:
        - Missing values in the modelling columns (outcome and predictors)
        - Monitors listed more than once
        - Negative outcome concentrations
        - Text columns (state, county, city names) that modelling ignores

    Text columns are reported but never make the data invalid.

    Args:
        df: Loaded dataset
        outcome: Outcome column
        columns: Modelling columns to check for missing values (default: all)
        strict: If True, raise SchemaError when a check fails

    Returns:
        Tuple of (is_valid, validation_report)
    """
    columns = list(columns) if columns is not None else list(df.columns)
    if outcome is not None and outcome not in columns:
        columns.insert(0, outcome)

    report = {
        "total_rows": len(df),
        "checked_columns": columns,
        "issues": [],
        "notes": []
    }

    text_columns = df.select_dtypes(exclude=[np.number]).columns.tolist()
    if text_columns:
        report["notes"].append(f"Text columns ignored by modelling: {text_columns}")
        logger.info(report["notes"][-1])

    missing = df[columns].isnull().sum()
    missing = missing[missing > 0]
    if len(missing):
        report["missing_by_column"] = missing.to_dict()
        report["issues"].append(
            f"Missing values in {len(missing)} modelling columns: {missing.to_dict()}"
        )

    repeated = int(df.duplicated().sum())
    if repeated:
        report["issues"].append(f"{repeated} rows repeat an earlier monitor exactly")

    if outcome is not None:
        negative = int((df[outcome] < 0).sum())
        if negative:
            report["issues"].append(f"{negative} negative values in outcome '{outcome}'")

    for issue in report["issues"]:
        logger.warning(issue)

    is_valid = not report["issues"]
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise SchemaError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def drop_incomplete_rows(df: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    """Return a copy of df without rows that miss any of the given columns."""
    columns = list(columns)
    complete = df.dropna(subset=columns)
    dropped = len(df) - len(complete)
    if dropped:
        logger.warning(f"Dropped {dropped} rows with missing values in {columns}")
    return complete.copy()


def get_data_summary(df: pd.DataFrame, columns: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """
    Summarize the dataset and its modelling columns.

    Args:
        df: DataFrame to summarize
        columns: Columns to describe (default: every numeric column)

    Returns:
        Dictionary with the shape, the numeric column count, missing-value
        counts and a describe() table (plus skew) of the chosen columns
    """
    if columns is None:
        columns = df.select_dtypes(include=[np.number]).columns
    columns = list(columns)

    table = df[columns].describe().T
    table["skew"] = df[columns].skew()

    missing = df.isnull().sum()
    return {
        "shape": df.shape,
        "n_numeric": len(df.select_dtypes(include=[np.number]).columns),
        "missing": missing[missing > 0].to_dict(),
        "statistics": table
    }


def print_data_summary(df: pd.DataFrame, columns: Optional[List[str]] = None) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
        columns: Restrict the statistics table to these columns
    """
    summary = get_data_summary(df, columns)
    n_rows, n_cols = summary["shape"]

    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Monitors: {n_rows}, columns: {n_cols} ({summary['n_numeric']} numeric)")

    if summary["missing"]:
        print("\nColumns with missing values:")
        print("-" * 40)
        for col, count in summary["missing"].items():
            print(f"  {col}: {count} ({count / n_rows * 100:.1f}%)")

    print("\nModelling columns:")
    print("-" * 40)
    print(summary["statistics"].round(4).to_string())
    print("=" * 60 + "\n")
