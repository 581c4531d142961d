"""
Test Suite for the Pipeline Entry Point
=======================================

Runs main.run_pipeline end to end on a small synthetic CSV.
"""

import json

import pytest
import numpy as np

import main
from conftest import make_monitor_data


@pytest.fixture
def csv_path(tmp_path, seed):
    df = make_monitor_data(n_rows=100, seed=seed)
    df.insert(0, 'id', np.arange(len(df)))
    path = tmp_path / "pm25_data.csv"
    df.to_csv(path, index=False)
    return path


@pytest.fixture
def pipeline_config(csv_path, tmp_path, seed):
    return {
        'data': {
            'source': str(csv_path),
            'outcome': 'value',
            'exclude_columns': ['id'],
            'required_columns': ['CMAQ', 'imp_a5000']
        },
        'random_seed': seed,
        'split': {'train_fraction': 0.7, 'n_groups': 5},
        'features': {'n_predictors': 3},
        'cross_validation': {'n_folds': 10},
        'models': {
            'random_forest': {'n_estimators': 20},
            'mars': {'degrees': [1, 2], 'nprune': [2, 3, 4, 5]}
        },
        'output': {'reports_path': str(tmp_path / "reports"), 'figures': True}
    }


class TestRunPipeline:
    """Tests for run_pipeline."""

    def test_full_run(self, pipeline_config, tmp_path):
        results = main.run_pipeline(pipeline_config)

        assert results['data_shape'] == (100, 5)
        assert len(results['train']) == 70
        assert len(results['test']) == 30
        assert 'id' not in results['selection']['predictors']
        assert results['selection']['primary'] == 'CMAQ'

        ranking = results['evaluation']['ranking']
        assert sorted(ranking['model']) == ['Linear', 'MARS', 'Poisson', 'RandomForest']
        assert ranking['rmse'].is_monotonic_increasing

        reports = tmp_path / "reports"
        with open(reports / "metrics" / "evaluation_metrics.json") as f:
            metrics = json.load(f)
        assert len(metrics['ranking']) == 4
        assert (reports / "figures" / "01_correlation_matrix.png").exists()
        assert (reports / "figures" / "eval_mars_grid.png").exists()

    def test_stop_after_split(self, pipeline_config):
        results = main.run_pipeline(pipeline_config, phase='split')
        assert 'selection' not in results
        assert len(results['train']) + len(results['test']) == 100

    def test_unknown_phase(self, pipeline_config):
        with pytest.raises(ValueError, match="Unknown phase"):
            main.run_pipeline(pipeline_config, phase='deploy')


class TestMain:
    """Tests for the command-line entry point."""

    @pytest.fixture(autouse=True)
    def quiet_logging(self, monkeypatch):
        monkeypatch.setattr(main, "setup_logging", lambda *args, **kwargs: None)

    @pytest.fixture
    def config_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "data:\n  outcome: value\nrandom_seed: 123\n"
            f"output:\n  reports_path: {tmp_path / 'out'}\n  figures: false\n"
        )
        return path

    def test_missing_config(self, tmp_path):
        assert main.main(['--config', str(tmp_path / "absent.yaml")]) == 1

    def test_missing_data_file(self, config_file, tmp_path):
        code = main.main([
            '--config', str(config_file),
            '--data', str(tmp_path / "absent.csv")
        ])
        assert code == 1

    def test_small_dataset_fails_with_stage(self, config_file, tmp_path, capsys):
        path = tmp_path / "small.csv"
        make_monitor_data(n_rows=14, seed=1).to_csv(path, index=False)

        code = main.main(['--config', str(config_file), '--data', str(path)])

        assert code == 1
        assert "stage 'train'" in capsys.readouterr().out

    def test_single_row_fails_at_split(self, config_file, tmp_path, capsys):
        path = tmp_path / "one.csv"
        make_monitor_data(n_rows=1, seed=1).to_csv(path, index=False)

        assert main.main(['--config', str(config_file), '--data', str(path)]) == 1
        assert "stage 'split'" in capsys.readouterr().out

    def test_unexpected_error(self, config_file, monkeypatch):
        def broken(config, phase='all'):
            raise RuntimeError("disk full")

        monkeypatch.setattr(main, "run_pipeline", broken)
        assert main.main(['--config', str(config_file)]) == 1

    def test_split_phase(self, config_file, csv_path):
        code = main.main([
            '--config', str(config_file),
            '--data', str(csv_path),
            '--phase', 'split'
        ])
        assert code == 0

    def test_apply_overrides(self):
        parser_args = main.argparse.Namespace(
            data='x.csv', seed=9, n_jobs=2, output='out/', no_figures=True, verbose=False
        )
        config = {'data': {'source': 'y.csv'}, 'random_seed': 123}
        updated = main.apply_overrides(config, parser_args)

        assert updated['data']['source'] == 'x.csv'
        assert updated['random_seed'] == 9
        assert updated['training']['n_jobs'] == 2
        assert updated['output'] == {'reports_path': 'out/', 'figures': False}
        assert config['data']['source'] == 'y.csv'


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
