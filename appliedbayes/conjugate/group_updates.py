"""
Per-Group Conjugate Updates and Shrinkage Summaries

Applies the normal-normal update to every row of a group-level table
(county mean radon, country-level survey estimates) and summarises how far
each group estimate is pulled toward the prior mean.

"""

import numpy as np
import pandas as pd
from typing import Dict, Optional, Tuple

from .normal_updater import InvalidArgument, posterior, credible_interval


def summarize_groups(
    data: pd.DataFrame,
    group_col: str,
    value_col: str
) -> pd.DataFrame:
    """
    Collapse unit-level data into one record per group.

    Parameters
    ----------
    data : pd.DataFrame
        Unit-level data, one row per measurement
    group_col : str
        Column identifying the group (e.g. 'county')
    value_col : str
        Column with the measured value (e.g. 'log_radon')

    Returns
    -------
    records : pd.DataFrame
        Columns: group_id, value (group mean), n, sd (within-group sample
        sd, NaN for single-measurement groups). Sorted by group_id.

    Raises
    ------
    ValueError
        If a column is missing or no rows remain after dropping missing values
    """
    for col in (group_col, value_col):
        if col not in data.columns:
            raise ValueError(f"Column '{col}' not found in data")

    clean = data.dropna(subset=[group_col, value_col])
    if len(clean) == 0:
        raise ValueError("No rows with both a group and a value")

    grouped = clean.groupby(group_col, sort=True, observed=True)[value_col]

    records = pd.DataFrame({
        'value': grouped.mean(),
        'n': grouped.size(),
        'sd': grouped.std(ddof=1)
    })
    records.index.name = 'group_id'

    return records.reset_index()


def pooled_within_sd(
    data: pd.DataFrame,
    group_col: str,
    value_col: str
) -> float:
    """
    Pooled within-group standard deviation.

    sqrt( Σ_j (n_j - 1) s_j² / Σ_j (n_j - 1) ). Groups with one measurement
    carry no degrees of freedom and drop out.

    Raises
    ------
    ValueError
        If no group has more than one measurement
    """
    records = summarize_groups(data, group_col, value_col)

    dof = records['n'] - 1
    total_dof = dof.sum()
    if total_dof == 0:
        raise ValueError(
            "Cannot pool within-group sd: every group has a single measurement"
        )

    ss = (dof * records['sd'].fillna(0.0) ** 2).sum()

    return float(np.sqrt(ss / total_dof))


def _observation_sd(
    records: pd.DataFrame,
    sd_y: Optional[float]
) -> np.ndarray:
    """
    Standard deviation of each group's observed value.

    A reported 'se' column wins; otherwise sd_y / sqrt(n).
    """
    if 'se' in records.columns:
        return records['se'].to_numpy(dtype=np.float64)

    if sd_y is None:
        raise ValueError(
            "sd_y is required unless records carry an 'se' column"
        )

    if 'n' not in records.columns:
        raise ValueError("records need an 'n' column to scale sd_y")

    n = records['n'].to_numpy(dtype=np.float64)
    if np.any(n < 1):
        raise ValueError("Group sizes n must be >= 1")

    return sd_y / np.sqrt(n)


def estimate_hyperparameters(
    records: pd.DataFrame,
    sd_y: Optional[float] = None,
    min_sd: float = 1e-3
) -> Tuple[float, float]:
    """
    Method-of-moments estimate of the prior over group means.

    The between-group variance is the variance of the observed group means
    minus the average sampling variance, floored at min_sd². The prior mean
    is the precision-weighted average of the group means using the total
    (between + sampling) variance of each group.

    Parameters
    ----------
    records : pd.DataFrame
        Group records with value and n (or se)
    sd_y : float, optional
        Known unit-level sd, scaled by sqrt(n). Ignored when the records
        carry an 'se' column.
    min_sd : float, optional (default=1e-3)
        Lower bound on the returned between-group sd

    Returns
    -------
    mean_prior : float
    sd_prior : float

    Raises
    ------
    ValueError
        If fewer than two groups are given
    """
    if len(records) < 2:
        raise ValueError(
            f"Need at least 2 groups to estimate hyperparameters, got {len(records)}"
        )

    values = records['value'].to_numpy(dtype=np.float64)
    sd_obs = _observation_sd(records, sd_y)

    var_between = np.var(values, ddof=1) - np.mean(sd_obs ** 2)
    var_between = max(var_between, min_sd ** 2)

    weights = 1.0 / (sd_obs ** 2 + var_between)
    mean_prior = np.sum(weights * values) / np.sum(weights)

    return float(mean_prior), float(np.sqrt(var_between))


def update_groups(
    records: pd.DataFrame,
    sd_y: Optional[float],
    mean_prior: float,
    sd_prior: float,
    alpha: float = 0.95
) -> pd.DataFrame:
    """
    Conjugate posterior for every group mean.

    Parameters
    ----------
    records : pd.DataFrame
        Columns group_id, value and either n (with sd_y) or se
    sd_y : float or None
        Known unit-level sd; group observation sd is sd_y / sqrt(n).
        When the records carry an 'se' column it is used instead and sd_y
        may be None.
    mean_prior, sd_prior : float
        Normal prior over group means
    alpha : float, optional (default=0.95)
        Credible interval level

    Returns
    -------
    table : pd.DataFrame
        Columns:
        - group_id
        - n (when present in records)
        - value: observed group mean
        - sd_obs: sd of the observed group mean
        - mean_post, sd_post: posterior of the group mean
        - lower, upper: central credible interval
        - shrinkage: weight on the prior mean, sd_post² / sd_prior²
    """
    for col in ('group_id', 'value'):
        if col not in records.columns:
            raise ValueError(f"records missing column '{col}'")

    values = records['value'].to_numpy(dtype=np.float64)
    sd_obs = _observation_sd(records, sd_y)

    mean_post, sd_post = posterior(values, sd_obs, mean_prior, sd_prior)
    lower, upper = credible_interval(values, sd_obs, mean_prior, sd_prior, alpha)

    table = pd.DataFrame({'group_id': records['group_id'].to_numpy()})
    if 'n' in records.columns:
        table['n'] = records['n'].to_numpy()
    table['value'] = values
    table['sd_obs'] = sd_obs
    table['mean_post'] = mean_post
    table['sd_post'] = sd_post
    table['lower'] = lower
    table['upper'] = upper
    table['shrinkage'] = np.asarray(sd_post) ** 2 / float(sd_prior) ** 2

    return table


def compute_shrinkage_metrics(
    table: pd.DataFrame,
    true_values: Optional[np.ndarray] = None
) -> Dict[str, float]:
    """
    Aggregate shrinkage statistics for a table from :func:`update_groups`.

    Parameters
    ----------
    table : pd.DataFrame
        Output of update_groups
    true_values : np.ndarray, optional
        Known group means (simulation studies); enables 'coverage'

    Returns
    -------
    metrics : dict
        - 'mean_shrinkage', 'min_shrinkage', 'max_shrinkage'
        - 'mean_abs_pull': average |mean_post - value|
        - 'mean_interval_width': average upper - lower
        - 'coverage': fraction of true_values inside [lower, upper]
          (if true_values provided)
    """
    if len(table) == 0:
        raise InvalidArgument("Cannot summarise an empty table")

    metrics = {
        'mean_shrinkage': float(table['shrinkage'].mean()),
        'min_shrinkage': float(table['shrinkage'].min()),
        'max_shrinkage': float(table['shrinkage'].max()),
        'mean_abs_pull': float((table['mean_post'] - table['value']).abs().mean()),
        'mean_interval_width': float((table['upper'] - table['lower']).mean()),
    }

    if true_values is not None:
        true_values = np.asarray(true_values, dtype=np.float64)
        if len(true_values) != len(table):
            raise ValueError(
                f"Length mismatch: true_values ({len(true_values)}) vs "
                f"table ({len(table)})"
            )
        inside = (
            (true_values >= table['lower'].to_numpy())
            & (true_values <= table['upper'].to_numpy())
        )
        metrics['coverage'] = float(np.mean(inside))

    return metrics
