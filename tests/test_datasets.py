"""
Unit Tests for Dataset Preparation
==================================
"""

import pytest
import numpy as np
import pandas as pd
import warnings

from appliedbayes.datasets import (
    load_table,
    prepare_radon,
    prepare_survey_estimates,
    inverse_logit
)
from appliedbayes.conjugate import update_groups


@pytest.fixture
def raw_radon():
    return pd.DataFrame({
        'county': [' AITKIN', 'AITKIN ', 'ANOKA', None, 'ANOKA'],
        'activity': [2.2, 0.0, 1.5, 3.0, -1.0],
        'floor': [0, 1, 0, 1, 0],
    })


@pytest.fixture
def survey():
    return pd.DataFrame({
        'country': ['Kenya', 'Ghana', 'Peru'],
        'prevalence': [0.5, 0.2, 0.75],
        'se': [0.05, 0.02, 0.03],
    })


# ============================================================================
# Test 1: Loading
# ============================================================================

def test_load_table(tmp_path, raw_radon):
    path = tmp_path / "radon.csv"
    raw_radon.to_csv(path, index=False)

    loaded = load_table(path, verbose=False)

    assert list(loaded.columns) == ['county', 'activity', 'floor']
    assert len(loaded) == 5


def test_load_table_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_table(tmp_path / "missing.csv")


# ============================================================================
# Test 2: Radon
# ============================================================================

def test_prepare_radon_drops_invalid_rows(raw_radon):
    radon = prepare_radon(raw_radon, verbose=False)

    assert len(radon) == 3
    assert list(radon['county']) == ['AITKIN', 'AITKIN', 'ANOKA']


def test_prepare_radon_log_scale(raw_radon):
    radon = prepare_radon(raw_radon, verbose=False)

    np.testing.assert_allclose(
        radon['log_radon'],
        [np.log(2.2), np.log(0.1), np.log(1.5)]
    )


def test_prepare_radon_floor_is_int(raw_radon):
    radon = prepare_radon(raw_radon, verbose=False)

    assert list(radon['floor']) == [0, 1, 0]
    assert pd.api.types.is_integer_dtype(radon['floor'])


def test_prepare_radon_does_not_modify_input(raw_radon):
    before = raw_radon.copy()
    prepare_radon(raw_radon, verbose=False)

    pd.testing.assert_frame_equal(raw_radon, before)


def test_prepare_radon_missing_column(raw_radon):
    with pytest.raises(ValueError):
        prepare_radon(raw_radon.drop(columns='activity'), verbose=False)


# ============================================================================
# Test 3: Survey Estimates
# ============================================================================

def test_prepare_survey_estimates_logit(survey):
    records = prepare_survey_estimates(survey, 'country', 'prevalence', 'se')

    assert list(records.columns) == ['group_id', 'value', 'se']
    np.testing.assert_allclose(
        records['value'],
        [0.0, np.log(0.25), np.log(3.0)]
    )
    # delta method: se / (p (1 - p))
    np.testing.assert_allclose(
        records['se'],
        [0.05 / 0.25, 0.02 / 0.16, 0.03 / 0.1875]
    )


def test_prepare_survey_estimates_identity(survey):
    records = prepare_survey_estimates(
        survey, 'country', 'prevalence', 'se', transform=None
    )

    np.testing.assert_allclose(records['value'], survey['prevalence'])
    np.testing.assert_allclose(records['se'], survey['se'])


@pytest.mark.parametrize("p", [0.0, 1.0, 1.2])
def test_prepare_survey_estimates_rejects_bad_proportion(survey, p):
    survey.loc[0, 'prevalence'] = p

    with pytest.raises(ValueError):
        prepare_survey_estimates(survey, 'country', 'prevalence', 'se')


def test_prepare_survey_estimates_rejects_bad_se(survey):
    survey.loc[1, 'se'] = 0.0

    with pytest.raises(ValueError):
        prepare_survey_estimates(survey, 'country', 'prevalence', 'se')


def test_prepare_survey_estimates_unknown_transform(survey):
    with pytest.raises(ValueError):
        prepare_survey_estimates(survey, 'country', 'prevalence', 'se',
                                 transform='probit')


def test_survey_records_feed_group_updates(survey):
    records = prepare_survey_estimates(survey, 'country', 'prevalence', 'se')

    table = update_groups(records, sd_y=None, mean_prior=0.0, sd_prior=1.0)
    prevalence = inverse_logit(table['mean_post'])

    assert len(table) == 3
    assert np.all((prevalence > 0) & (prevalence < 1))
    # Kenya sits at the prior mean on the logit scale
    assert prevalence[0] == pytest.approx(0.5)


def test_inverse_logit():
    np.testing.assert_allclose(inverse_logit([0.0, np.log(3.0)]), [0.5, 0.75])


def test_inverse_logit_saturates_without_overflow():
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        result = inverse_logit([-1000.0, 1000.0])

    np.testing.assert_array_equal(result, [0.0, 1.0])


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
