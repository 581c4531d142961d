#!/usr/bin/env python3
"""
Air-Quality Model Comparison - Main Pipeline
============================================

Compares regression models for annual PM2.5 concentrations at monitoring
sites.

Phases:
    1. Load - Read the monitor dataset (file or URL)
    2. Split - Seeded 70/30 train/test partition
    3. Select - Correlation ranking and PCA predictor selection (+ EDA plots)
    4. Train - Linear, Poisson, random forest and MARS with 10-fold CV
    5. Evaluate - Test-set RMSE and model ranking

Usage:
    # Run complete pipeline
    python main.py --data data/raw/pm25_data.csv

    # Stop after a phase
    python main.py --data data/raw/pm25_data.csv --phase select

    # Run with custom config and seed
    python main.py --config config/config.yaml --seed 42
"""

import argparse
import copy
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd

from aqcompare.data_loader import (
    DEFAULT_DATA_URL, load_config, load_data, validate_data,
    drop_incomplete_rows, print_data_summary
)
from aqcompare.preprocessing import split_dataset, print_split_summary
from aqcompare.feature_selection import select_predictors, print_selection_summary
from aqcompare.eda import generate_eda_report, print_correlation_insights
from aqcompare.model import train_models, print_model_summary, RegressionModel
from aqcompare.evaluation import evaluate_models, print_evaluation_report
from aqcompare.exceptions import PipelineError

logger = logging.getLogger(__name__)

PHASES = ['split', 'select', 'train', 'evaluate', 'all']


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure logging for the pipeline."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def apply_overrides(config: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """Return a copy of config with command-line values applied."""
    config = copy.deepcopy(config)
    if args.data:
        config.setdefault('data', {})['source'] = args.data
    if args.seed is not None:
        config['random_seed'] = args.seed
    if args.n_jobs is not None:
        config.setdefault('training', {})['n_jobs'] = args.n_jobs
    if args.output:
        config.setdefault('output', {})['reports_path'] = args.output
    if args.no_figures:
        config.setdefault('output', {})['figures'] = False
    if args.verbose:
        config.setdefault('logging', {})['level'] = 'DEBUG'
    return config


def run_load(config: Dict[str, Any]) -> pd.DataFrame:
    """
    Execute Phase 1: load and check the dataset.

    Args:
        config: Configuration dictionary

    Returns:
        Dataset restricted to rows complete in the outcome and required columns
    """
    print("\n" + "=" * 70)
    print("PHASE 1: LOAD DATA")
    print("=" * 70)

    data_config = config.get('data', {})
    outcome = data_config.get('outcome', 'value')
    required = data_config.get('required_columns', [])

    df = load_data(
        data_config.get('source', DEFAULT_DATA_URL),
        required_columns=required,
        outcome=outcome
    )
    validate_data(df, outcome=outcome, columns=required, strict=False)
    df = drop_incomplete_rows(df, [outcome] + list(required))
    print_data_summary(df, columns=[outcome] + list(required))

    return df


def run_split(df: pd.DataFrame, config: Dict[str, Any]) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Execute Phase 2: train/test split.

    Args:
        df: Full dataset
        config: Configuration dictionary

    Returns:
        Tuple of (train_df, test_df)
    """
    print("\n" + "=" * 70)
    print("PHASE 2: TRAIN/TEST SPLIT")
    print("=" * 70)

    outcome = config.get('data', {}).get('outcome', 'value')
    split_config = config.get('split', {})

    train_df, test_df = split_dataset(
        df,
        outcome=outcome,
        train_fraction=split_config.get('train_fraction', 0.7),
        seed=config.get('random_seed', 123),
        n_groups=split_config.get('n_groups', 5)
    )
    print_split_summary(train_df, test_df, outcome)

    return train_df, test_df


def run_selection(train_df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 3: predictor selection on the training set, with EDA plots.

    Args:
        train_df: Training set
        config: Configuration dictionary

    Returns:
        Selection dictionary (see feature_selection.select_predictors)
    """
    print("\n" + "=" * 70)
    print("PHASE 3: FEATURE SELECTION")
    print("=" * 70)

    data_config = config.get('data', {})
    outcome = data_config.get('outcome', 'value')

    selection = select_predictors(
        train_df,
        outcome=outcome,
        n_predictors=config.get('features', {}).get('n_predictors', 3),
        exclude=data_config.get('exclude_columns', [])
    )
    print_selection_summary(selection)

    output_config = config.get('output', {})
    if output_config.get('figures', True):
        figures_dir = Path(output_config.get('reports_path', 'reports/')) / 'figures'
        report = generate_eda_report(train_df, selection, outcome, output_dir=str(figures_dir))
        print_correlation_insights(report['correlation_matrix'])
        print(f"✓ EDA complete. {len(report['figures'])} figures saved to {figures_dir}")

    return selection


def run_training(
    train_df: pd.DataFrame,
    predictors: List[str],
    config: Dict[str, Any]
) -> Dict[str, RegressionModel]:
    """
    Execute Phase 4: train every model with cross-validation.

    Args:
        train_df: Training set
        predictors: Selected predictor columns
        config: Configuration dictionary

    Returns:
        Dictionary of trained models
    """
    print("\n" + "=" * 70)
    print("PHASE 4: MODEL TRAINING")
    print("=" * 70)

    models = train_models(
        train_df,
        predictors,
        outcome=config.get('data', {}).get('outcome', 'value'),
        config=config,
        n_jobs=config.get('training', {}).get('n_jobs', 1)
    )
    print_model_summary(models)

    return models


def run_evaluation(
    models: Dict[str, RegressionModel],
    test_df: pd.DataFrame,
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 5: score and rank the models on the testing set.

    Args:
        models: Trained models
        test_df: Testing set
        config: Configuration dictionary

    Returns:
        Evaluation result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 5: MODEL EVALUATION")
    print("=" * 70)

    output_config = config.get('output', {})
    result = evaluate_models(
        models,
        test_df,
        outcome=config.get('data', {}).get('outcome', 'value'),
        output_dir=output_config.get('reports_path', 'reports/'),
        make_figures=output_config.get('figures', True)
    )
    print_evaluation_report(result)

    return result


def run_pipeline(config: Dict[str, Any], phase: str = 'all') -> Dict[str, Any]:
    """
    Execute the pipeline up to and including the requested phase.

    Args:
        config: Configuration dictionary
        phase: Last phase to run ('split', 'select', 'train', 'evaluate', 'all')

    Returns:
        Dictionary containing all phase results
    """
    if phase not in PHASES:
        raise ValueError(f"Unknown phase: {phase}. Choose from: {', '.join(PHASES)}")

    print("\n" + "=" * 70)
    print("AIR-QUALITY MODEL COMPARISON")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"Random seed: {config.get('random_seed', 123)}")
    print("=" * 70)

    results: Dict[str, Any] = {'config': config}

    df = run_load(config)
    results['data_shape'] = df.shape

    results['train'], results['test'] = run_split(df, config)
    if phase == 'split':
        return results

    results['selection'] = run_selection(results['train'], config)
    if phase == 'select':
        return results

    results['models'] = run_training(
        results['train'], results['selection']['predictors'], config
    )
    if phase == 'train':
        return results

    results['evaluation'] = run_evaluation(results['models'], results['test'], config)

    best = results['evaluation']['ranking'].iloc[0]
    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Input data: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"  • Predictors: {', '.join(results['selection']['predictors'])}")
    print(f"  • Best model: {best['model']} (test RMSE {best['rmse']:.4f})")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def run_full_pipeline(config_path: str = "config/config.yaml", **overrides) -> Dict[str, Any]:
    """
    Load the configuration file and run every phase.

    Args:
        config_path: Path to configuration file
        **overrides: Top-level configuration keys to replace

    Returns:
        Dictionary containing all phase results
    """
    config = load_config(config_path)
    config.update(overrides)
    return run_pipeline(config, phase='all')


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Compare regression models for PM2.5 monitor data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py
  python main.py --data data/raw/pm25_data.csv --phase select
  python main.py --seed 42 --n-jobs 4 --output reports/seed42/
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        default=None,
        help='Path or URL of the input CSV file (default: data.source in config)'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=PHASES,
        default='all',
        help='Last phase to run (default: all)'
    )

    parser.add_argument(
        '--seed', '-s',
        type=int,
        default=None,
        help='Random seed for the split, CV folds, random forest and MARS search'
    )

    parser.add_argument(
        '--n-jobs', '-j',
        type=int,
        default=None,
        help='Number of models to train concurrently (-1 for all cores)'
    )

    parser.add_argument(
        '--output', '-o',
        type=str,
        default=None,
        help='Directory for metrics and figures'
    )

    parser.add_argument(
        '--no-figures',
        action='store_true',
        help='Skip writing figures'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args(argv)

    # Check if config exists
    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        return 1

    config = apply_overrides(load_config(args.config), args)
    log_config = config.get('logging', {})
    setup_logging(log_config.get('level', 'INFO'), log_config.get('file'))

    try:
        run_pipeline(config, phase=args.phase)
        return 0

    except PipelineError as e:
        logging.error(f"Pipeline failed in stage '{e.stage}': {e}", exc_info=True)
        print(f"\n❌ Pipeline failed in stage '{e.stage}': {e}")
        return 1

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
