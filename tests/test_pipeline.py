"""
Unit Tests for appliedbayes Pipeline
====================================

Test suite for the end-to-end pipeline:
- Pipeline initialization
- Data validation
- Fit/predict workflow
- Evaluation
- Save/load functionality
- MCMC comparison
"""

import pytest
import pandas as pd
import numpy as np
from pathlib import Path
import warnings

from appliedbayes import Pipeline, __version__


# ============================================================================
# Test Fixtures
# ============================================================================

GROUP_SIZES = [2, 3, 5, 8, 10, 15, 25, 40]


def generate_grouped_data(sizes, seed=42, sd_y=0.8):
    """Simulate log radon measurements for counties of different sizes."""
    rng = np.random.default_rng(seed)
    true_means = rng.normal(1.3, 0.4, size=len(sizes))

    frames = []
    for j, (n, mu) in enumerate(zip(sizes, true_means)):
        frames.append(pd.DataFrame({
            'county': f'county_{j}',
            'log_radon': rng.normal(mu, sd_y, size=n)
        }))

    return pd.concat(frames, ignore_index=True)


@pytest.fixture
def grouped_data():
    return generate_grouped_data(GROUP_SIZES)


@pytest.fixture
def fitted_pipeline(grouped_data):
    pipeline = Pipeline(random_seed=42)
    pipeline.fit(grouped_data, group_col='county', value_col='log_radon')
    return pipeline


# ============================================================================
# Test 1: Pipeline Initialization
# ============================================================================

def test_pipeline_init_defaults():
    pipeline = Pipeline()

    assert pipeline.alpha == 0.95
    assert pipeline.use_mcmc is False
    assert pipeline.quick_mode is False
    assert pipeline.random_seed == 42
    assert pipeline.table is None


@pytest.mark.parametrize("alpha", [0.0, 1.0, 2.0])
def test_pipeline_init_rejects_bad_alpha(alpha):
    with pytest.raises(ValueError):
        Pipeline(alpha=alpha)


def test_version_available():
    assert isinstance(__version__, str)
    assert len(__version__) > 0


# ============================================================================
# Test 2: Data Validation
# ============================================================================

def test_fit_with_non_dataframe():
    pipeline = Pipeline()

    with pytest.raises(TypeError):
        pipeline.fit({'county_0': [1.0, 2.0]}, group_col='county', value_col='y')


def test_fit_with_missing_column(grouped_data):
    pipeline = Pipeline()

    with pytest.raises(ValueError):
        pipeline.fit(grouped_data, group_col='county', value_col='activity')


def test_fit_with_single_group_warns(grouped_data):
    one_group = grouped_data[grouped_data['county'] == 'county_7']
    pipeline = Pipeline()

    with pytest.warns(UserWarning, match="group"):
        pipeline.fit(one_group, group_col='county', value_col='log_radon',
                     mean_prior=1.0, sd_prior=0.5)

    assert len(pipeline.summary()) == 1


def test_fit_with_single_group_needs_prior(grouped_data):
    one_group = grouped_data[grouped_data['county'] == 'county_7']
    pipeline = Pipeline()

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        with pytest.raises(ValueError):
            pipeline.fit(one_group, group_col='county', value_col='log_radon')

    assert pipeline.table is None
    assert pipeline.group_col is None


def test_fit_with_single_measurement_group_warns(grouped_data):
    extra = pd.DataFrame({'county': ['county_new'], 'log_radon': [1.0]})
    data = pd.concat([grouped_data, extra], ignore_index=True)
    pipeline = Pipeline()

    with pytest.warns(UserWarning, match="single measurement"):
        pipeline.fit(data, group_col='county', value_col='log_radon')


def test_predictor_without_mcmc_warns(grouped_data):
    grouped_data['floor'] = 0
    pipeline = Pipeline()

    with pytest.warns(UserWarning, match="use_mcmc"):
        pipeline.fit(grouped_data, group_col='county', value_col='log_radon',
                     predictor_col='floor')


# ============================================================================
# Test 3: Fit Functionality
# ============================================================================

def test_fit_returns_self(grouped_data):
    pipeline = Pipeline()

    result = pipeline.fit(grouped_data, group_col='county', value_col='log_radon')

    assert result is pipeline


def test_fit_sets_attributes(fitted_pipeline):
    assert fitted_pipeline.group_col == 'county'
    assert fitted_pipeline.value_col == 'log_radon'
    assert fitted_pipeline.sd_y > 0
    assert fitted_pipeline.sd_prior > 0
    assert fitted_pipeline.updater is not None
    assert fitted_pipeline.hierarchical_model is None
    assert len(fitted_pipeline.summary()) == len(GROUP_SIZES)


def test_fit_uses_given_prior_and_sd(grouped_data):
    pipeline = Pipeline()
    pipeline.fit(grouped_data, group_col='county', value_col='log_radon',
                 sd_y=0.8, mean_prior=1.3, sd_prior=0.4)

    assert pipeline.sd_y == 0.8
    assert pipeline.mean_prior == 1.3
    assert pipeline.sd_prior == 0.4

    table = pipeline.summary()
    np.testing.assert_allclose(table['sd_obs'], 0.8 / np.sqrt(table['n']))


def test_fit_estimates_only_missing_hyperparameter(grouped_data):
    pipeline = Pipeline()
    pipeline.fit(grouped_data, group_col='county', value_col='log_radon',
                 mean_prior=0.0)

    assert pipeline.mean_prior == 0.0
    assert pipeline.sd_prior > 0


def test_failed_refit_keeps_previous_fit(fitted_pipeline, grouped_data):
    before = fitted_pipeline.summary()
    prior = (fitted_pipeline.mean_prior, fitted_pipeline.sd_prior)
    one_group = pd.DataFrame({'site': ['s1', 's1'], 'y': [0.5, 0.7]})

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        with pytest.raises(ValueError):
            fitted_pipeline.fit(one_group, group_col='site', value_col='y')

    assert fitted_pipeline.group_col == 'county'
    assert fitted_pipeline.value_col == 'log_radon'
    assert (fitted_pipeline.mean_prior, fitted_pipeline.sd_prior) == prior
    pd.testing.assert_frame_equal(fitted_pipeline.summary(), before)
    assert fitted_pipeline.evaluate(grouped_data)['n_new_groups'] == 0


def test_summary_is_a_copy(fitted_pipeline):
    table = fitted_pipeline.summary()
    table['mean_post'] = 0.0

    assert not (fitted_pipeline.summary()['mean_post'] == 0.0).all()


def test_smaller_groups_shrink_more(fitted_pipeline):
    by_size = fitted_pipeline.summary().sort_values('n')

    assert np.all(np.diff(by_size['shrinkage'].to_numpy()) < 0)


def test_posterior_between_observed_and_prior(fitted_pipeline):
    table = fitted_pipeline.summary()
    low = np.minimum(table['value'], fitted_pipeline.mean_prior)
    high = np.maximum(table['value'], fitted_pipeline.mean_prior)

    assert ((table['mean_post'] >= low - 1e-12) & (table['mean_post'] <= high + 1e-12)).all()


# ============================================================================
# Test 4: Predict Functionality
# ============================================================================

def test_predict_without_fit_raises_error():
    pipeline = Pipeline()

    with pytest.raises(RuntimeError):
        pipeline.predict(group_id='county_0')
    with pytest.raises(RuntimeError):
        pipeline.summary()


def test_predict_existing_group(fitted_pipeline):
    draws = fitted_pipeline.predict(group_id='county_7', n_samples=5000)
    row = fitted_pipeline.summary().set_index('group_id').loc['county_7']

    assert draws.shape == (5000,)
    assert draws.mean() == pytest.approx(row['mean_post'], abs=0.1)


def test_predict_is_reproducible(fitted_pipeline):
    a = fitted_pipeline.predict(group_id='county_3', n_samples=100)
    b = fitted_pipeline.predict(group_id='county_3', n_samples=100)

    np.testing.assert_array_equal(a, b)


def test_predict_mean_narrower_than_observation(fitted_pipeline):
    obs = fitted_pipeline.predict(group_id='county_3', n_samples=20000)
    mean = fitted_pipeline.predict(group_id='county_3', n_samples=20000, kind='mean')

    assert mean.std() < obs.std()


def test_predict_new_group_uses_prior(fitted_pipeline):
    draws = fitted_pipeline.predict(n_samples=20000, kind='mean')

    assert draws.mean() == pytest.approx(fitted_pipeline.mean_prior, abs=0.05)
    assert draws.std() == pytest.approx(fitted_pipeline.sd_prior, rel=0.05)


def test_predict_unknown_group(fitted_pipeline):
    with pytest.raises(ValueError):
        fitted_pipeline.predict(group_id='county_99')


def test_predict_unknown_kind(fitted_pipeline):
    with pytest.raises(ValueError):
        fitted_pipeline.predict(group_id='county_0', kind='median')


# ============================================================================
# Test 5: Evaluate Functionality
# ============================================================================

def test_evaluate_returns_metrics(fitted_pipeline):
    test_data = generate_grouped_data([5] * 9, seed=7)

    metrics = fitted_pipeline.evaluate(test_data)

    assert set(metrics) == {'rmse', 'coverage', 'n_observations', 'n_new_groups'}
    assert metrics['rmse'] > 0
    assert 0 <= metrics['coverage'] <= 1
    assert metrics['n_observations'] == 45
    # county_8 was not in the training data
    assert metrics['n_new_groups'] == 1


def test_evaluate_coverage_on_training_data(fitted_pipeline, grouped_data):
    metrics = fitted_pipeline.evaluate(grouped_data)

    assert metrics['coverage'] > 0.8
    assert metrics['n_new_groups'] == 0


def test_evaluate_missing_column(fitted_pipeline):
    with pytest.raises(ValueError):
        fitted_pipeline.evaluate(pd.DataFrame({'county': ['county_0']}))


def test_evaluate_without_complete_rows(fitted_pipeline):
    test_data = pd.DataFrame({'county': ['county_0', None],
                              'log_radon': [np.nan, 1.0]})

    with pytest.raises(ValueError, match="No complete test rows"):
        fitted_pipeline.evaluate(test_data)


# ============================================================================
# Test 6: Save/Load Functionality
# ============================================================================

def test_save_and_load_pipeline(fitted_pipeline, tmp_path):
    path = tmp_path / "pipeline.pkl"

    fitted_pipeline.save(str(path))
    assert Path(path).exists()

    loaded = Pipeline.load(str(path))

    assert loaded.random_seed == fitted_pipeline.random_seed
    assert loaded.mean_prior == fitted_pipeline.mean_prior
    pd.testing.assert_frame_equal(loaded.summary(), fitted_pipeline.summary())
    np.testing.assert_array_equal(
        loaded.predict(group_id='county_1', n_samples=10),
        fitted_pipeline.predict(group_id='county_1', n_samples=10)
    )


def test_load_nonexistent_file_raises_error():
    with pytest.raises(FileNotFoundError):
        Pipeline.load('/nonexistent/path/to/pipeline.pkl')


# ============================================================================
# Test 7: MCMC Comparison
# ============================================================================

def test_mcmc_methods_without_mcmc_raise(fitted_pipeline):
    with pytest.raises(RuntimeError):
        fitted_pipeline.compare_with_mcmc()
    with pytest.raises(RuntimeError):
        fitted_pipeline.get_convergence_diagnostics()


def test_full_workflow_with_mcmc(grouped_data, tmp_path):
    """fit (conjugate + MCMC) → compare → diagnostics → save → load."""
    pipeline = Pipeline(use_mcmc=True, quick_mode=True, random_seed=42)

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        pipeline.fit(grouped_data, group_col='county', value_col='log_radon',
                     validate_convergence=False)

    comparison = pipeline.compare_with_mcmc()
    assert len(comparison) == len(GROUP_SIZES)
    assert {'mean_post', 'mcmc_mean', 'mcmc_sd', 'difference'} <= set(comparison.columns)
    assert np.all(np.isfinite(comparison['mcmc_mean']))
    assert (comparison['mcmc_sd'] > 0).all()

    diagnostics = pipeline.get_convergence_diagnostics()
    assert {'parameter', 'r_hat', 'ess_bulk', 'ess_tail'} <= set(diagnostics.columns)
    assert (diagnostics['ess_bulk'] > 0).all()

    path = tmp_path / "pipeline.pkl"
    pipeline.save(str(path))
    assert pipeline.hierarchical_model.model_ is not None

    loaded = Pipeline.load(str(path))
    assert loaded.hierarchical_model.model_ is None
    assert len(loaded.compare_with_mcmc()) == len(GROUP_SIZES)


# ============================================================================
# Run Tests
# ============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
