"""
Hierarchical Normal Model for Grouped Measurements

Varying-intercept normal model (e.g. log radon by county, optionally with a
floor-level slope) specified in PyMC and fitted via MCMC (NUTS). Serves as
the sampling-based reference for the closed-form conjugate updates.

"""

import numpy as np
import pandas as pd
import pymc as pm
import arviz as az
from pathlib import Path
from typing import Dict, Tuple, Optional
from sklearn.linear_model import LinearRegression


class HierarchicalNormalModel:
    """
    Partial-pooling model for group means with a normal likelihood.

    Three-level hierarchy:
    Level 1 (Population): μ_α, σ_α
    Level 2 (Group): α_j for j = 1,...,J
    Level 3 (Observations): y_ij ~ Normal(α_j + β x_ij, σ_y)

    Parameters
    ----------
    mu_prior : float, optional (default=0.0)
        Prior mean of the population mean μ_α
    sigma_mu : float, optional (default=10.0)
        Prior sd of μ_α (and of the slope β when a predictor is used)
    tau : float, optional (default=1.0)
        HalfNormal scale for the between-group sd σ_α
    sigma_y_scale : float, optional (default=2.0)
        HalfNormal scale for the within-group sd σ_y
    random_seed : int, optional (default=42)
        Random seed for MCMC reproducibility

    Attributes
    ----------
    model_ : pm.Model
        PyMC model object
    trace_ : az.InferenceData
        Posterior samples from MCMC
    convergence_ : Dict
        Convergence diagnostics (R̂, ESS)
    J_ : int
        Number of groups
    group_ids_ : List
        Group identifiers, in the order of the alpha_j dimension

    Examples
    --------
    >>> model = HierarchicalNormalModel(mu_prior=1.0, sigma_mu=5.0)
    >>> model.fit(radon, group_col='county', value_col='log_radon',
    ...           predictor_col='floor', chains=4, draws=2000, tune=1000)
    >>> model.check_convergence()
    >>> draws = model.posterior_predictive('HENNEPIN', n_samples=1000)
    """

    def __init__(
        self,
        mu_prior: float = 0.0,
        sigma_mu: float = 10.0,
        tau: float = 1.0,
        sigma_y_scale: float = 2.0,
        random_seed: int = 42
    ):
        """Initialize hierarchical normal model."""
        if sigma_mu <= 0:
            raise ValueError(f"sigma_mu must be positive. Got: {sigma_mu}")
        if tau <= 0:
            raise ValueError(f"tau must be positive. Got: {tau}")
        if sigma_y_scale <= 0:
            raise ValueError(
                f"sigma_y_scale must be positive. Got: {sigma_y_scale}"
            )

        self.mu_prior = mu_prior
        self.sigma_mu = sigma_mu
        self.tau = tau
        self.sigma_y_scale = sigma_y_scale
        self.random_seed = random_seed

        # Placeholders
        self.model_ = None
        self.trace_ = None
        self.convergence_ = None
        self.J_ = None
        self.group_ids_ = None
        self.data_ = None
        self.group_col_ = None
        self.value_col_ = None
        self.predictor_col_ = None

    def fit(
        self,
        data: pd.DataFrame,
        group_col: str,
        value_col: str,
        predictor_col: Optional[str] = None,
        chains: int = 4,
        draws: int = 2000,
        tune: int = 1000,
        target_accept: float = 0.90,
        cores: Optional[int] = None,
        verbose: bool = True
    ) -> "HierarchicalNormalModel":
        """
        Fit the hierarchical model via MCMC (NUTS).

        Parameters
        ----------
        data : pd.DataFrame
            Unit-level data, one row per measurement
        group_col : str
            Group identifier column
        value_col : str
            Outcome column
        predictor_col : str, optional
            Column for a single slope shared by all groups
        chains : int, optional (default=4)
            Number of MCMC chains
        draws : int, optional (default=2000)
            Number of samples per chain
        tune : int, optional (default=1000)
            Number of warmup iterations
        target_accept : float, optional (default=0.90)
            Target acceptance rate for NUTS
        cores : int, optional (default=None)
            Number of CPU cores. If None, PyMC decides
        verbose : bool, optional (default=True)
            If True, print progress

        Returns
        -------
        self : HierarchicalNormalModel
            Fitted model with populated trace_
        """
        self.group_col_ = group_col
        self.value_col_ = value_col
        self.predictor_col_ = predictor_col

        y_all, x_all, group_idx = self._prepare_data(data, verbose=verbose)
        self.J_ = len(self.group_ids_)

        if verbose:
            print(f"\n{'=' * 80}")
            print("HIERARCHICAL NORMAL MODEL: MCMC SAMPLING")
            print(f"{'=' * 80}")
            print(f"Groups (J): {self.J_}")
            print(f"Observations: {len(y_all)}")
            print(f"Predictor: {predictor_col if predictor_col else 'none'}")
            print(f"\nMCMC Configuration:")
            print(f"  Chains: {chains}")
            print(f"  Draws per chain: {draws}")
            print(f"  Warmup iterations: {tune}")
            print(f"  Target acceptance: {target_accept}")

        self.model_ = self._specify_model(y_all, x_all, group_idx)

        if verbose:
            print(f"Start time: {pd.Timestamp.now().strftime('%H:%M:%S')}")

        with self.model_:
            self.trace_ = pm.sample(
                draws=draws,
                tune=tune,
                chains=chains,
                cores=cores,
                target_accept=target_accept,
                return_inferencedata=True,
                random_seed=self.random_seed,
                progressbar=verbose
            )

        if verbose:
            print(f"End time: {pd.Timestamp.now().strftime('%H:%M:%S')}")
            print(f"\n✓ MCMC sampling completed")
            print(f"  Total samples: {chains * draws}")

        return self

    def _prepare_data(
        self,
        data: pd.DataFrame,
        verbose: bool = True
    ) -> Tuple[np.ndarray, Optional[np.ndarray], np.ndarray]:
        """
        Extract outcome, predictor and group index arrays.

        Rows with a missing group, outcome or predictor are dropped. Groups
        are indexed in sorted order and stored in group_ids_.
        """
        cols = [self.group_col_, self.value_col_]
        if self.predictor_col_ is not None:
            cols.append(self.predictor_col_)

        for col in cols:
            if col not in data.columns:
                raise ValueError(f"Column '{col}' not found in data")

        clean = data.dropna(subset=cols)
        if len(clean) == 0:
            raise ValueError("No complete rows to fit")

        group_idx, group_ids = pd.factorize(clean[self.group_col_], sort=True)
        self.group_ids_ = list(group_ids)
        self.data_ = clean[cols].reset_index(drop=True)

        y_all = clean[self.value_col_].to_numpy(dtype=np.float64)
        x_all = None
        if self.predictor_col_ is not None:
            x_all = clean[self.predictor_col_].to_numpy(dtype=np.float64)

        if verbose:
            print(f"\n✓ Data prepared")
            print(f"  Observations: {len(y_all)}")
            print(f"  Groups: {len(group_ids)}")
            print(f"  Mean outcome: {y_all.mean():.3f}")

        return y_all, x_all, group_idx.astype(np.int32)

    def _specify_model(
        self,
        y_all: np.ndarray,
        x_all: Optional[np.ndarray],
        group_idx: np.ndarray
    ) -> pm.Model:
        """Build the PyMC model (non-centered group intercepts)."""
        coords = {'group': self.group_ids_}

        with pm.Model(coords=coords) as model:
            mu_alpha = pm.Normal('mu_alpha', mu=self.mu_prior, sigma=self.sigma_mu)
            sigma_alpha = pm.HalfNormal('sigma_alpha', sigma=self.tau)

            # Non-centered to avoid the funnel when groups are small
            alpha_raw = pm.Normal('alpha_raw', mu=0, sigma=1, dims='group')
            alpha = pm.Deterministic(
                'alpha',
                mu_alpha + sigma_alpha * alpha_raw,
                dims='group'
            )

            mu_obs = alpha[group_idx]
            if x_all is not None:
                beta = pm.Normal('beta', mu=0, sigma=self.sigma_mu)
                mu_obs = mu_obs + beta * x_all

            sigma_y = pm.HalfNormal('sigma_y', sigma=self.sigma_y_scale)

            pm.Normal('y_obs', mu=mu_obs, sigma=sigma_y, observed=y_all)

        return model

    def _check_fitted(self, action: str):
        if self.trace_ is None:
            raise ValueError(f"Model not fitted. Call fit() before {action}.")

    def check_convergence(
        self,
        verbose: bool = True
    ) -> Dict[str, bool]:
        """
        Check MCMC convergence using R̂ and ESS diagnostics.

        Returns
        -------
        convergence : Dict
            - 'rhat_ok': All R̂ < 1.01
            - 'rhat_max': Largest R̂
            - 'ess_ok': All ESS > 400
            - 'ess_min': Smallest ESS
            - 'all_ok': Both criteria met

        Raises
        ------
        ValueError
            If model hasn't been fitted yet
        """
        self._check_fitted("checking convergence")

        var_names = ['mu_alpha', 'sigma_alpha', 'alpha', 'sigma_y']
        if self.predictor_col_ is not None:
            var_names.append('beta')

        rhat = az.rhat(self.trace_, var_names=var_names)
        rhat_max = max(float(np.max(rhat[var].values)) for var in rhat.data_vars)
        rhat_ok = rhat_max < 1.01

        ess = az.ess(self.trace_, var_names=var_names)
        ess_min = min(float(np.min(ess[var].values)) for var in ess.data_vars)
        ess_ok = ess_min > 400

        all_ok = rhat_ok and ess_ok

        if verbose:
            print(f"\n{'=' * 80}")
            print("CONVERGENCE DIAGNOSTICS")
            print(f"{'=' * 80}")
            print(f"  Max R̂: {rhat_max:.6f} "
                  f"({'✓ PASS' if rhat_ok else '✗ FAIL'}, criterion < 1.01)")
            print(f"  Min ESS: {ess_min:.0f} "
                  f"({'✓ PASS' if ess_ok else '✗ FAIL'}, criterion > 400)")
            if not all_ok:
                print("  → Increase draws or tune iterations")

        self.convergence_ = {
            'rhat_ok': bool(rhat_ok),
            'rhat_max': rhat_max,
            'ess_ok': bool(ess_ok),
            'ess_min': ess_min,
            'all_ok': bool(all_ok)
        }

        return self.convergence_

    def extract_posterior_means(self) -> Dict[str, object]:
        """
        Posterior means and sds of the model parameters.

        Returns
        -------
        estimates : Dict
            - 'mu_alpha', 'sigma_alpha', 'sigma_y' (and 'beta'): floats
            - 'alpha': pd.DataFrame with group_id, mean, sd
        """
        self._check_fitted("extracting means")

        post = self.trace_.posterior
        estimates = {
            'mu_alpha': float(post['mu_alpha'].mean()),
            'sigma_alpha': float(post['sigma_alpha'].mean()),
            'sigma_y': float(post['sigma_y'].mean()),
        }
        if 'beta' in post:
            estimates['beta'] = float(post['beta'].mean())

        alpha = post['alpha']
        estimates['alpha'] = pd.DataFrame({
            'group_id': self.group_ids_,
            'mean': alpha.mean(dim=('chain', 'draw')).values,
            'sd': alpha.std(dim=('chain', 'draw')).values
        })

        return estimates

    def compute_no_pooling_estimates(self, verbose: bool = True) -> pd.DataFrame:
        """
        Independent per-group least-squares fits for comparison.

        Without a predictor each intercept is the group mean; with one, a
        single regression on group indicators plus the predictor gives a
        separate intercept per group and a common slope.

        Returns
        -------
        estimates : pd.DataFrame
            Columns group_id, intercept (and slope)
        """
        if self.data_ is None:
            raise ValueError("No data available. Call fit() first.")

        dummies = pd.get_dummies(self.data_[self.group_col_]).reindex(
            columns=self.group_ids_, fill_value=0
        ).astype(np.float64)
        X = dummies.to_numpy()
        if self.predictor_col_ is not None:
            X = np.column_stack([X, self.data_[self.predictor_col_].to_numpy(dtype=np.float64)])
        y = self.data_[self.value_col_].to_numpy(dtype=np.float64)

        lr = LinearRegression(fit_intercept=False)
        lr.fit(X, y)

        estimates = pd.DataFrame({
            'group_id': self.group_ids_,
            'intercept': lr.coef_[:self.J_]
        })
        if self.predictor_col_ is not None:
            estimates['slope'] = lr.coef_[self.J_]

        if verbose:
            print(f"✓ No-pooling estimates computed for {self.J_} groups")

        return estimates

    def _flat_samples(self, var: str) -> np.ndarray:
        """Stack chains and draws into the first axis."""
        values = self.trace_.posterior[var].values
        return values.reshape((-1,) + values.shape[2:])

    def _subsample(
        self,
        rng: np.random.Generator,
        n_total: int,
        n_samples: int
    ) -> np.ndarray:
        if n_samples < n_total:
            return rng.choice(n_total, size=n_samples, replace=False)
        return np.arange(n_total)

    def posterior_predictive(
        self,
        group_id,
        x_new: Optional[np.ndarray] = None,
        n_samples: int = 1000,
        kind: str = 'observation'
    ) -> Dict[str, np.ndarray]:
        """
        Posterior predictive draws for an existing group.

        Parameters
        ----------
        group_id
            Group identifier (as in the fitted data)
        x_new : np.ndarray, shape (n_new,), optional
            Predictor values; required if the model has a predictor
        n_samples : int, optional (default=1000)
            Number of posterior draws to use
        kind : {'observation', 'mean'}, optional (default='observation')
            'observation' adds within-group noise σ_y, 'mean' returns the
            expected value α_j + β x

        Returns
        -------
        predictions : Dict[str, np.ndarray]
            - 'mean', 'std', 'lower_90', 'upper_90': shape (n_new,)
            - 'samples': shape (n_samples, n_new)

        Raises
        ------
        ValueError
            If model hasn't been fitted or group_id is unknown
        """
        self._check_fitted("making predictions")

        if group_id not in self.group_ids_:
            raise ValueError(f"Unknown group_id: {group_id!r}")
        j = self.group_ids_.index(group_id)

        alpha = self._flat_samples('alpha')[:, j]
        return self._predict(alpha, x_new, n_samples, kind)

    def predict_new_group(
        self,
        x_new: Optional[np.ndarray] = None,
        n_samples: int = 1000,
        kind: str = 'observation'
    ) -> Dict[str, np.ndarray]:
        """
        Posterior predictive draws for a group not seen in the data.

        The new intercept is drawn from Normal(μ_α, σ_α) for each posterior
        draw of the hyperparameters.
        """
        self._check_fitted("making predictions")

        rng = np.random.default_rng(self.random_seed)
        mu_alpha = self._flat_samples('mu_alpha')
        sigma_alpha = self._flat_samples('sigma_alpha')
        alpha = rng.normal(mu_alpha, sigma_alpha)

        return self._predict(alpha, x_new, n_samples, kind)

    def _predict(
        self,
        alpha: np.ndarray,
        x_new: Optional[np.ndarray],
        n_samples: int,
        kind: str
    ) -> Dict[str, np.ndarray]:
        if kind not in ('observation', 'mean'):
            raise ValueError(f"kind must be 'observation' or 'mean'. Got: {kind!r}")

        if self.predictor_col_ is not None and x_new is None:
            raise ValueError(
                f"x_new is required: model uses predictor '{self.predictor_col_}'"
            )
        x_new = np.zeros(1) if x_new is None else np.atleast_1d(
            np.asarray(x_new, dtype=np.float64)
        )

        rng = np.random.default_rng(self.random_seed)
        idx = self._subsample(rng, len(alpha), n_samples)
        mu = np.repeat(alpha[idx][:, None], len(x_new), axis=1)
        if self.predictor_col_ is not None:
            beta = self._flat_samples('beta')[idx]
            mu = mu + beta[:, None] * x_new[None, :]

        if kind == 'observation':
            sigma_y = self._flat_samples('sigma_y')[idx]
            samples = rng.normal(mu, sigma_y[:, None])
        else:
            samples = mu

        return {
            'mean': samples.mean(axis=0),
            'std': samples.std(axis=0),
            'lower_90': np.percentile(samples, 5, axis=0),
            'upper_90': np.percentile(samples, 95, axis=0),
            'samples': samples
        }

    def save_trace(
        self,
        filepath: str,
        verbose: bool = True
    ) -> None:
        """
        Save MCMC trace to NetCDF format (load with load_trace()).
        """
        self._check_fitted("saving the trace")

        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        self.trace_.to_netcdf(filepath)

        if verbose:
            print(f"\n✓ Trace saved to {filepath}")

    @staticmethod
    def load_trace(
        filepath: str,
        verbose: bool = True
    ) -> az.InferenceData:
        """
        Load MCMC trace from NetCDF format.

        Raises
        ------
        FileNotFoundError
            If filepath doesn't exist
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise FileNotFoundError(f"Trace file not found: {filepath}")

        trace = az.from_netcdf(filepath)

        if verbose:
            chains = trace.posterior.sizes['chain']
            draws = trace.posterior.sizes['draw']
            print(f"✓ Trace loaded from {filepath}")
            print(f"  Chains: {chains}, draws per chain: {draws}")

        return trace
