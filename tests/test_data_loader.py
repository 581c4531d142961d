"""
Test Suite for Data Loader Module
=================================

Tests for configuration loading, CSV ingestion and data checks.
"""

import pytest
import numpy as np
import pandas as pd
import requests

import aqcompare
from aqcompare import data_loader
from aqcompare.data_loader import (
    check_schema, drop_incomplete_rows, get_data_summary,
    load_config, load_data, validate_data
)
from aqcompare.exceptions import PipelineError, RetrievalError, SchemaError

CSV_TEXT = "id,value,CMAQ,state\n1,9.5,8.1,Maryland\n2,11.2,10.4,Ohio\n3,7.8,6.9,Texas\n"


class FakeResponse:
    def __init__(self, text, status=200):
        self.text = text
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / "pm25.csv"
    path.write_text(CSV_TEXT)
    return path


class TestLoadData:
    """Tests for load_data."""

    def test_local_file(self, csv_file):
        df = load_data(str(csv_file), required_columns=['CMAQ'], outcome='value')
        assert df.shape == (3, 4)
        assert df['value'].tolist() == [9.5, 11.2, 7.8]

    def test_missing_file(self, tmp_path):
        with pytest.raises(RetrievalError, match="not found"):
            load_data(str(tmp_path / "absent.csv"))

    def test_missing_column(self, csv_file):
        with pytest.raises(SchemaError, match="aod"):
            load_data(str(csv_file), required_columns=['CMAQ', 'aod'], outcome='value')

    def test_missing_outcome(self, csv_file):
        with pytest.raises(SchemaError, match="pm25"):
            load_data(str(csv_file), outcome='pm25')

    def test_non_numeric_required_column(self, csv_file):
        with pytest.raises(SchemaError, match="not numeric"):
            load_data(str(csv_file), required_columns=['state'])

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("")
        with pytest.raises(SchemaError):
            load_data(str(path))

    def test_url(self, monkeypatch):
        calls = []

        def fake_get(url, headers=None, timeout=None):
            calls.append((url, timeout))
            return FakeResponse(CSV_TEXT)

        monkeypatch.setattr(data_loader.requests, "get", fake_get)
        df = load_data("https://example.org/pm25.csv", outcome='value', timeout=5)

        assert len(df) == 3
        assert calls == [("https://example.org/pm25.csv", 5)]

    def test_url_identifies_project(self, monkeypatch):
        seen = {}

        def fake_get(url, headers=None, timeout=None):
            seen.update(headers)
            return FakeResponse(CSV_TEXT)

        monkeypatch.setattr(data_loader.requests, "get", fake_get)
        load_data("https://example.org/pm25.csv")

        assert seen["User-Agent"] == f"aqcompare/{aqcompare.__version__} (PM2.5 model comparison)"
        assert "pypi.org" not in seen["User-Agent"]

    def test_url_http_error(self, monkeypatch):
        monkeypatch.setattr(
            data_loader.requests, "get",
            lambda url, headers=None, timeout=None: FakeResponse("", status=404)
        )
        with pytest.raises(RetrievalError, match="404"):
            load_data("https://example.org/missing.csv")

    def test_url_unreachable(self, monkeypatch):
        def fake_get(url, headers=None, timeout=None):
            raise requests.ConnectionError("Name or service not known")

        monkeypatch.setattr(data_loader.requests, "get", fake_get)
        with pytest.raises(RetrievalError) as excinfo:
            load_data("http://unreachable.invalid/pm25.csv")
        assert excinfo.value.stage == 'load'


class TestChecks:
    """Tests for schema and quality checks."""

    def test_check_schema_passes(self):
        check_schema(pd.DataFrame({'a': [1.0], 'b': [2]}), ['a', 'b'])

    def test_validate_clean_data(self):
        df = pd.DataFrame({'a': np.arange(10, dtype=float), 'b': np.arange(10) * 2.0})
        is_valid, report = validate_data(df)
        assert is_valid
        assert report['issues'] == []

    def test_validate_strict(self):
        df = pd.DataFrame({'a': [1.0, np.nan, 3.0], 'b': [1.0, 2.0, 3.0]})
        with pytest.raises(SchemaError, match="Missing values"):
            validate_data(df, strict=True)

    def test_validate_lenient(self):
        df = pd.DataFrame({'a': [1.0, np.nan, 3.0], 'name': ['x', 'y', 'z']})
        is_valid, report = validate_data(df, strict=False)
        assert not is_valid
        assert report['missing_by_column'] == {'a': 1}
        assert any('Text columns' in note for note in report['notes'])

    def test_validate_only_modelling_columns(self):
        df = pd.DataFrame({'value': [1.0, 2.0], 'CMAQ': [3.0, 4.0], 'zcta': [np.nan, 1.0]})
        is_valid, _ = validate_data(df, outcome='value', columns=['CMAQ'])
        assert is_valid

    def test_validate_negative_outcome(self):
        df = pd.DataFrame({'value': [-1.0, 2.0], 'CMAQ': [3.0, 4.0]})
        with pytest.raises(SchemaError, match="negative"):
            validate_data(df, outcome='value', columns=['CMAQ'])

    def test_drop_incomplete_rows(self):
        df = pd.DataFrame({'a': [1.0, np.nan, 3.0], 'b': [np.nan, 2.0, 3.0], 'c': [1, 2, 3]})
        cleaned = drop_incomplete_rows(df, ['a'])
        assert cleaned.index.tolist() == [0, 2]

    def test_summary(self, monitor_data):
        summary = get_data_summary(monitor_data)
        assert summary['shape'] == (100, 4)
        assert summary['statistics'].loc['CMAQ', 'count'] == 100
        assert 'skew' in summary['statistics'].columns

        restricted = get_data_summary(monitor_data, ['value'])
        assert restricted['statistics'].index.tolist() == ['value']


class TestConfig:
    """Tests for load_config."""

    def test_load(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("random_seed: 7\nsplit:\n  train_fraction: 0.8\n")
        config = load_config(str(path))
        assert config == {'random_seed': 7, 'split': {'train_fraction': 0.8}}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(str(path)) == {}

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_project_config(self):
        from pathlib import Path
        config = load_config(str(Path(__file__).parent.parent / "config" / "config.yaml"))
        assert config['random_seed'] == 123
        assert config['data']['outcome'] == 'value'


class TestExceptions:
    """Tests for the stage-tagged error hierarchy."""

    def test_str_includes_stage(self):
        assert str(SchemaError("bad header")) == "[load] bad header"

    def test_stage_override(self):
        error = PipelineError("boom", stage="evaluate")
        assert error.stage == "evaluate"
        assert isinstance(RetrievalError("x"), PipelineError)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
