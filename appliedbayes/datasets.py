"""
Course Dataset Preparation

Loading and light cleaning for the two datasets used in the course:
household radon measurements (grouped by county) and survey estimates of
contraceptive prevalence with standard errors (grouped by country or
region).

"""

import numpy as np
import pandas as pd
from pathlib import Path
from scipy.special import expit
from typing import Optional, Union


# Detection floor for radon activity (pCi/L); zeros are replaced by it
# before taking logs
RADON_DETECTION_FLOOR = 0.1


def load_table(
    filepath: Union[str, Path],
    verbose: bool = True,
    **read_kwargs
) -> pd.DataFrame:
    """
    Read a CSV file into a DataFrame.

    Raises
    ------
    FileNotFoundError
        If filepath doesn't exist
    """
    filepath = Path(filepath)

    if not filepath.exists():
        raise FileNotFoundError(f"Data file not found: {filepath}")

    data = pd.read_csv(filepath, **read_kwargs)

    if verbose:
        print(f"✓ Loaded {len(data)} rows, {len(data.columns)} columns "
              f"from {filepath.name}")

    return data


def prepare_radon(
    data: pd.DataFrame,
    county_col: str = 'county',
    activity_col: str = 'activity',
    floor_col: Optional[str] = 'floor',
    verbose: bool = True
) -> pd.DataFrame:
    """
    Clean household radon measurements.

    Parameters
    ----------
    data : pd.DataFrame
        Raw measurements, one row per household
    county_col : str, optional (default='county')
        County name column
    activity_col : str, optional (default='activity')
        Radon activity in pCi/L
    floor_col : str or None, optional (default='floor')
        Measurement floor (0 = basement, 1 = first floor). Ignored if None
        or absent.
    verbose : bool, optional (default=True)
        Print a cleaning summary

    Returns
    -------
    radon : pd.DataFrame
        Copy with stripped county names, negative or missing activities
        dropped, and a 'log_radon' column (zero activity set to the
        detection floor of 0.1 before the log).
    """
    for col in (county_col, activity_col):
        if col not in data.columns:
            raise ValueError(f"Radon data missing column '{col}'")

    radon = data.copy()
    n_raw = len(radon)

    radon[county_col] = radon[county_col].astype('string').str.strip()
    radon[activity_col] = pd.to_numeric(radon[activity_col], errors='coerce')

    radon = radon.dropna(subset=[county_col, activity_col])
    radon = radon[radon[county_col] != '']
    radon = radon[radon[activity_col] >= 0]

    activity = radon[activity_col].clip(lower=RADON_DETECTION_FLOOR)
    radon['log_radon'] = np.log(activity)

    if floor_col is not None and floor_col in radon.columns:
        radon = radon.dropna(subset=[floor_col])
        radon[floor_col] = radon[floor_col].astype(int)

    radon = radon.reset_index(drop=True)

    if verbose:
        print(f"✓ Radon data cleaned: {len(radon)}/{n_raw} rows kept, "
              f"{radon[county_col].nunique()} counties")

    return radon


def prepare_survey_estimates(
    data: pd.DataFrame,
    group_col: str,
    value_col: str,
    se_col: str,
    transform: Optional[str] = 'logit'
) -> pd.DataFrame:
    """
    Turn survey proportions with standard errors into group records.

    Parameters
    ----------
    data : pd.DataFrame
        One row per survey estimate (e.g. contraceptive prevalence by
        country)
    group_col : str
        Group identifier column
    value_col : str
        Estimated proportion, in (0, 1)
    se_col : str
        Standard error of the proportion
    transform : {'logit', None}, optional (default='logit')
        'logit' maps p to log(p / (1 - p)) and the standard error by the
        delta method, se / (p (1 - p)). None keeps the proportion scale.

    Returns
    -------
    records : pd.DataFrame
        Columns group_id, value, se, ready for
        :func:`appliedbayes.conjugate.update_groups` with sd_y=None

    Raises
    ------
    ValueError
        If a proportion is outside (0, 1), a standard error is not positive,
        or transform is unknown
    """
    for col in (group_col, value_col, se_col):
        if col not in data.columns:
            raise ValueError(f"Survey data missing column '{col}'")

    clean = data.dropna(subset=[group_col, value_col, se_col])
    p = clean[value_col].to_numpy(dtype=np.float64)
    se = clean[se_col].to_numpy(dtype=np.float64)

    if np.any((p <= 0) | (p >= 1)):
        raise ValueError(f"Proportions in '{value_col}' must be in (0, 1)")
    if np.any(se <= 0):
        raise ValueError(f"Standard errors in '{se_col}' must be positive")

    if transform == 'logit':
        value = np.log(p / (1 - p))
        se = se / (p * (1 - p))
    elif transform is None:
        value = p
    else:
        raise ValueError(f"Unknown transform: {transform!r}")

    return pd.DataFrame({
        'group_id': clean[group_col].to_numpy(),
        'value': value,
        'se': se
    })


def inverse_logit(x):
    """Map logit-scale values back to proportions."""
    return expit(np.asarray(x, dtype=np.float64))
