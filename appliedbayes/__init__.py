"""
appliedbayes: closed-form and MCMC tools for an applied Bayesian course

Conjugate normal-normal updates for group means, partial pooling summaries,
and a PyMC varying-intercept model to check the closed forms against.
"""

from .version import __version__, __author__, __description__
from .conjugate import ConjugateNormalUpdater, InvalidArgument
from .pipeline import Pipeline

__all__ = [
    'ConjugateNormalUpdater',
    'InvalidArgument',
    'Pipeline',
    '__version__',
    '__author__',
    '__description__',
]
