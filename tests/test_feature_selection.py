"""
Test Suite for Feature Selection Module
=======================================

Tests for correlation ranking, PCA loadings and predictor selection.
"""

import pytest
import numpy as np
import pandas as pd

from aqcompare.exceptions import SelectionError
from aqcompare.feature_selection import (
    candidate_predictors, correlation, correlation_ranking,
    pca_loadings, select_predictors
)


@pytest.fixture
def correlated_block_data():
    """
    x1 tracks the outcome; a and b are nearly identical to each other and
    unrelated to the outcome; c is independent noise.
    """
    rng = np.random.default_rng(42)
    n = 200
    outcome = rng.normal(10, 2, n)
    a = rng.normal(0, 1, n)
    return pd.DataFrame({
        'value': outcome,
        'x1': outcome + rng.normal(0, 0.5, n),
        'a': a,
        'b': a + rng.normal(0, 0.05, n),
        'c': rng.normal(0, 1, n)
    })


class TestCorrelation:
    """Tests for the Pearson correlation helper."""

    def test_symmetric(self, monitor_data):
        r_ab = correlation(monitor_data['CMAQ'], monitor_data['value'])
        r_ba = correlation(monitor_data['value'], monitor_data['CMAQ'])
        assert r_ab == pytest.approx(r_ba, abs=1e-12)

    def test_self_correlation_is_one(self, monitor_data):
        assert correlation(monitor_data['value'], monitor_data['value']) == pytest.approx(1.0, abs=1e-9)

    def test_matches_pandas(self, monitor_data):
        expected = monitor_data['imp_a5000'].corr(monitor_data['value'])
        assert correlation(monitor_data['imp_a5000'], monitor_data['value']) == pytest.approx(expected)

    def test_negative(self):
        assert correlation([1, 2, 3, 4], [8, 6, 4, 2]) == pytest.approx(-1.0)

    def test_constant_input(self):
        with pytest.raises(SelectionError):
            correlation([1, 1, 1], [1, 2, 3])

    def test_length_mismatch(self):
        with pytest.raises(SelectionError):
            correlation([1, 2, 3], [1, 2])


class TestCorrelationRanking:
    """Tests for correlation_ranking."""

    def test_sorted_by_absolute_correlation(self, monitor_data):
        ranking = correlation_ranking(
            monitor_data, 'value', ['log_pri_length_15000', 'imp_a5000', 'CMAQ']
        )
        assert ranking.index[0] == 'CMAQ'
        assert ranking['abs_correlation'].is_monotonic_decreasing
        assert set(ranking.columns) >= {'correlation', 'abs_correlation', 'p_value'}

    def test_ties_broken_by_name(self, monitor_data):
        data = monitor_data.assign(zz=monitor_data['CMAQ'], aa=monitor_data['CMAQ'])
        ranking = correlation_ranking(data, 'value', ['zz', 'imp_a5000', 'aa'])
        assert ranking.index.tolist()[:2] == ['aa', 'zz']


class TestPcaLoadings:
    """Tests for pca_loadings."""

    def test_shapes(self, correlated_block_data):
        predictors = ['x1', 'a', 'b', 'c']
        loadings, explained = pca_loadings(correlated_block_data, predictors)

        assert loadings.index.tolist() == predictors
        assert loadings.columns[0] == 'PC1'
        assert len(explained) == 4
        assert explained.sum() == pytest.approx(1.0)
        assert np.all(np.diff(explained) <= 1e-12)

    def test_first_component_follows_correlated_block(self, correlated_block_data):
        loadings, _ = pca_loadings(correlated_block_data, ['x1', 'a', 'b', 'c'])
        pc1 = loadings['PC1'].abs()
        assert set(pc1.nlargest(2).index) == {'a', 'b'}

    def test_unit_length_components(self, correlated_block_data):
        loadings, _ = pca_loadings(correlated_block_data, ['x1', 'a', 'b', 'c'])
        np.testing.assert_allclose((loadings ** 2).sum(axis=0).values, 1.0)


class TestSelectPredictors:
    """Tests for select_predictors."""

    def test_primary_and_pca_predictors(self, correlated_block_data):
        selection = select_predictors(correlated_block_data, 'value', n_predictors=3)

        assert selection['primary'] == 'x1'
        assert selection['predictors'][0] == 'x1'
        assert set(selection['predictors'][1:]) == {'a', 'b'}

    def test_expected_keys(self, monitor_data):
        selection = select_predictors(monitor_data, 'value')
        for key in ['predictors', 'primary', 'correlation_ranking',
                    'loadings', 'explained_variance_ratio']:
            assert key in selection, f"Missing key: {key}"

    def test_fixed_size_and_ordered(self, monitor_data):
        selection = select_predictors(monitor_data, 'value', n_predictors=3)
        assert selection['predictors'][0] == 'CMAQ'
        assert sorted(selection['predictors']) == ['CMAQ', 'imp_a5000', 'log_pri_length_15000']

        two = select_predictors(monitor_data, 'value', n_predictors=2)
        assert len(two['predictors']) == 2
        assert two['predictors'][0] == 'CMAQ'

    def test_deterministic(self, monitor_data):
        first = select_predictors(monitor_data, 'value')
        second = select_predictors(monitor_data, 'value')
        assert first['predictors'] == second['predictors']

    def test_excluded_and_non_numeric_columns_ignored(self, monitor_data):
        data = monitor_data.assign(
            id=np.arange(len(monitor_data)),
            state=['Maryland'] * len(monitor_data)
        )
        candidates = candidate_predictors(data, 'value', exclude=['id'])
        assert 'id' not in candidates
        assert 'state' not in candidates
        assert 'value' not in candidates

        selection = select_predictors(data, 'value', exclude=['id'])
        assert 'id' not in selection['predictors']

    def test_too_few_predictors(self, monitor_data):
        with pytest.raises(SelectionError, match="At least 2"):
            select_predictors(monitor_data[['value', 'CMAQ']], 'value')

    def test_zero_variance_predictor(self, monitor_data):
        data = monitor_data.assign(aod=5.0)
        with pytest.raises(SelectionError, match="aod"):
            select_predictors(data, 'value')

    def test_n_predictors_out_of_range(self, monitor_data):
        with pytest.raises(SelectionError):
            select_predictors(monitor_data, 'value', n_predictors=4)
        with pytest.raises(SelectionError):
            select_predictors(monitor_data, 'value', n_predictors=1)

    def test_missing_outcome(self, monitor_data):
        with pytest.raises(SelectionError):
            select_predictors(monitor_data, 'pm25')

    def test_error_reports_stage(self, monitor_data):
        with pytest.raises(SelectionError) as excinfo:
            select_predictors(monitor_data.assign(aod=0.0), 'value')
        assert excinfo.value.stage == 'select'


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
