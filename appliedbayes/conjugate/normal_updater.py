"""
Conjugate Normal-Normal Updating

Closed-form posterior for an unknown mean when the observation variance is
known and the prior is normal. Used in the course to check MCMC fits of
group means (radon by county, survey estimates by country) against the
exact answer.

"""

import numpy as np
from scipy.stats import norm
from typing import Optional, Tuple, Union


ArrayLike = Union[float, np.ndarray]


class InvalidArgument(ValueError):
    """Raised when an input to the conjugate update is out of its domain."""


def _as_output(value: np.ndarray) -> ArrayLike:
    """Return Python floats for scalar results, arrays otherwise."""
    if np.ndim(value) == 0:
        return float(value)
    return value


def _validate_sd(sd: ArrayLike, name: str) -> np.ndarray:
    """Check that a standard deviation (or array of them) is strictly positive."""
    sd = np.asarray(sd, dtype=np.float64)

    # NaN compares False, so it is rejected here as well
    if not np.all(sd > 0):
        raise InvalidArgument(f"{name} must be positive. Got: {sd}")

    return sd


def posterior(
    y: ArrayLike,
    sd_y: ArrayLike,
    mean_prior: ArrayLike,
    sd_prior: ArrayLike
) -> Tuple[ArrayLike, ArrayLike]:
    """
    Compute the posterior of an unknown mean under a normal prior.

    The posterior precision is the sum of the prior and data precisions,
    and the posterior mean is the precision-weighted average of the prior
    mean and the observation.

    Parameters
    ----------
    y : float or np.ndarray
        Observed value, or vector of observed group means
    sd_y : float or np.ndarray
        Known standard deviation of the observation. For the mean of n
        measurements pass sd / sqrt(n).
    mean_prior : float or np.ndarray
        Prior mean
    sd_prior : float or np.ndarray
        Prior standard deviation. np.inf gives the flat-prior limit.

    Returns
    -------
    mean_post : float or np.ndarray
        Posterior mean
    sd_post : float or np.ndarray
        Posterior standard deviation

    Raises
    ------
    InvalidArgument
        If sd_y or sd_prior is not strictly positive, or both are infinite

    Examples
    --------
    >>> mean_post, sd_post = posterior(0.3, 0.05, 0.5, 0.1)
    >>> round(mean_post, 4), round(sd_post, 4)
    (0.34, 0.0447)
    """
    sd_y = _validate_sd(sd_y, 'sd_y')
    sd_prior = _validate_sd(sd_prior, 'sd_prior')

    if np.any(np.isinf(sd_y) & np.isinf(sd_prior)):
        raise InvalidArgument(
            "sd_y and sd_prior cannot both be infinite (posterior is improper)"
        )

    y = np.asarray(y, dtype=np.float64)
    mean_prior = np.asarray(mean_prior, dtype=np.float64)

    precision_prior = 1.0 / sd_prior ** 2
    precision_y = 1.0 / sd_y ** 2

    var_post = 1.0 / (precision_prior + precision_y)
    sd_post = np.sqrt(var_post)
    mean_post = (mean_prior * precision_prior + y * precision_y) * var_post

    return _as_output(mean_post), _as_output(sd_post)


def credible_interval(
    y: ArrayLike,
    sd_y: ArrayLike,
    mean_prior: ArrayLike,
    sd_prior: ArrayLike,
    alpha: float = 0.95
) -> Tuple[ArrayLike, ArrayLike]:
    """
    Central credible interval of the posterior.

    Parameters
    ----------
    y, sd_y, mean_prior, sd_prior
        As in :func:`posterior`
    alpha : float, optional (default=0.95)
        Posterior probability mass inside the interval

    Returns
    -------
    lower : float or np.ndarray
        Posterior quantile at (1 - alpha) / 2
    upper : float or np.ndarray
        Posterior quantile at 1 - (1 - alpha) / 2

    Raises
    ------
    InvalidArgument
        If alpha is not in (0, 1) or a standard deviation is invalid
    """
    if not 0 < alpha < 1:
        raise InvalidArgument(f"alpha must be in (0,1), got {alpha}")

    mean_post, sd_post = posterior(y, sd_y, mean_prior, sd_prior)

    tail = (1 - alpha) / 2
    lower = norm.ppf(tail, loc=mean_post, scale=sd_post)
    upper = norm.ppf(1 - tail, loc=mean_post, scale=sd_post)

    return _as_output(lower), _as_output(upper)


def predictive_sample(
    count: int,
    mean: ArrayLike,
    sd: ArrayLike,
    seed: Optional[int] = None
) -> np.ndarray:
    """
    Draw independent normal samples.

    Used for simulating new observations (pass the propagated sd,
    sqrt(sd_post² + sd_y²)) and for simulating new group means.

    Parameters
    ----------
    count : int
        Number of draws
    mean : float or np.ndarray, shape (k,)
        Mean, or vector of k group means
    sd : float or np.ndarray
        Standard deviation (broadcast against mean)
    seed : int, optional
        Seed for numpy's Generator; a fixed seed reproduces the draws

    Returns
    -------
    samples : np.ndarray, shape (count,) or (count, k)
        Predictive draws

    Raises
    ------
    InvalidArgument
        If count is not a non-negative integer or sd is negative
    """
    if isinstance(count, bool) or not isinstance(count, (int, np.integer)):
        raise InvalidArgument(f"count must be an integer. Got: {count!r}")
    if count < 0:
        raise InvalidArgument(f"count must be >= 0. Got: {count}")

    mean = np.asarray(mean, dtype=np.float64)
    sd = np.asarray(sd, dtype=np.float64)
    if not np.all(sd >= 0):
        raise InvalidArgument(f"sd must be >= 0. Got: {sd}")

    rng = np.random.default_rng(seed)
    size = (count,) + np.broadcast(mean, sd).shape

    return rng.normal(loc=mean, scale=sd, size=size)


class ConjugateNormalUpdater:
    """
    Normal-normal conjugate updater with a fixed prior.

    Binds a normal prior over an unknown mean and exposes the closed-form
    posterior, credible intervals and predictive sampling for one
    observation or a vector of group means.

    Parameters
    ----------
    mean_prior : float, optional (default=0.0)
        Prior mean
    sd_prior : float, optional (default=1.0)
        Prior standard deviation
    random_seed : int, optional (default=42)
        Default seed for predictive sampling

    Examples
    --------
    >>> updater = ConjugateNormalUpdater(mean_prior=0.5, sd_prior=0.1)
    >>> mean_post, sd_post = updater.posterior(0.3, sd_y=0.05)
    >>> round(mean_post, 4), round(sd_post, 4)
    (0.34, 0.0447)
    >>> lower, upper = updater.credible_interval(0.3, sd_y=0.05, alpha=0.95)
    >>> draws = updater.posterior_predictive(0.3, sd_y=0.05, count=1000)
    """

    def __init__(
        self,
        mean_prior: float = 0.0,
        sd_prior: float = 1.0,
        random_seed: Optional[int] = 42
    ):
        _validate_sd(sd_prior, 'sd_prior')

        self.mean_prior = mean_prior
        self.sd_prior = sd_prior
        self.random_seed = random_seed

    def __repr__(self) -> str:
        return (
            f"ConjugateNormalUpdater(mean_prior={self.mean_prior}, "
            f"sd_prior={self.sd_prior})"
        )

    def posterior(
        self,
        y: ArrayLike,
        sd_y: ArrayLike
    ) -> Tuple[ArrayLike, ArrayLike]:
        """Posterior (mean, sd) of the unknown mean given y with known sd_y."""
        return posterior(y, sd_y, self.mean_prior, self.sd_prior)

    def credible_interval(
        self,
        y: ArrayLike,
        sd_y: ArrayLike,
        alpha: float = 0.95
    ) -> Tuple[ArrayLike, ArrayLike]:
        """Central alpha-level posterior interval."""
        return credible_interval(y, sd_y, self.mean_prior, self.sd_prior, alpha)

    def predictive_sample(
        self,
        count: int,
        mean: ArrayLike,
        sd: ArrayLike,
        seed: Optional[int] = None
    ) -> np.ndarray:
        """Normal draws, seeded with random_seed unless seed is given."""
        if seed is None:
            seed = self.random_seed
        return predictive_sample(count, mean, sd, seed=seed)

    def posterior_predictive(
        self,
        y: ArrayLike,
        sd_y: ArrayLike,
        count: int,
        kind: str = 'observation',
        seed: Optional[int] = None
    ) -> np.ndarray:
        """
        Simulate from the posterior predictive distribution.

        Parameters
        ----------
        y : float or np.ndarray
            Observed value(s) used for the update
        sd_y : float or np.ndarray
            Known observation sd used for the update; for kind='observation'
            it is also the sd of the new observation
        count : int
            Number of draws
        kind : {'observation', 'mean'}, optional (default='observation')
            'observation' draws new measurements, with sd
            sqrt(sd_post² + sd_y²). 'mean' draws the unknown mean itself,
            with sd sd_post.
        seed : int, optional
            Overrides random_seed

        Returns
        -------
        samples : np.ndarray
            Shape (count,) or (count, k)
        """
        mean_post, sd_post = self.posterior(y, sd_y)

        if kind == 'observation':
            sd = np.sqrt(np.asarray(sd_post) ** 2 + np.asarray(sd_y, dtype=np.float64) ** 2)
        elif kind == 'mean':
            sd = sd_post
        else:
            raise InvalidArgument(
                f"kind must be 'observation' or 'mean'. Got: {kind!r}"
            )

        return self.predictive_sample(count, mean_post, sd, seed=seed)

    def update(self, y: float, sd_y: float) -> "ConjugateNormalUpdater":
        """
        Return a new updater whose prior is the posterior after observing y.

        Sequential updates with independent observations give the same
        result as one update with the combined precision.
        """
        mean_post, sd_post = self.posterior(y, sd_y)
        if np.ndim(mean_post) != 0:
            raise InvalidArgument("update() takes a single scalar observation")

        return ConjugateNormalUpdater(
            mean_prior=mean_post,
            sd_prior=sd_post,
            random_seed=self.random_seed
        )
