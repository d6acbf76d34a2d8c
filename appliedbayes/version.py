"""Version information for appliedbayes."""

__version__ = "0.1.0"
__author__ = "Applied Bayes Course Team"
__email__ = "appliedbayes@users.noreply.github.com"
__description__ = "Conjugate normal updates and hierarchical models for an applied Bayesian statistics course"
__url__ = "https://github.com/appliedbayes/appliedbayes"
