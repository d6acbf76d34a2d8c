"""Conjugate normal-normal updates"""

from .normal_updater import (
    ConjugateNormalUpdater,
    InvalidArgument,
    posterior,
    credible_interval,
    predictive_sample
)
from .group_updates import (
    summarize_groups,
    pooled_within_sd,
    estimate_hyperparameters,
    update_groups,
    compute_shrinkage_metrics
)

__all__ = [
    'ConjugateNormalUpdater',
    'InvalidArgument',
    'posterior',
    'credible_interval',
    'predictive_sample',
    'summarize_groups',
    'pooled_within_sd',
    'estimate_hyperparameters',
    'update_groups',
    'compute_shrinkage_metrics'
]
