"""appliedbayes Pipeline - Main User Interface"""

import pickle
import warnings
from typing import Dict, Optional
import pandas as pd
import numpy as np
from scipy.stats import norm
from sklearn.metrics import mean_squared_error

from .conjugate.normal_updater import ConjugateNormalUpdater
from .conjugate.group_updates import (
    summarize_groups,
    pooled_within_sd,
    estimate_hyperparameters,
    update_groups,
    compute_shrinkage_metrics
)
from .hierarchical.hierarchical_model import HierarchicalNormalModel


class Pipeline:
    """
    Partial pooling of group means from unit-level data.

    Summarises the data by group, fixes the within-group sd and the prior
    over group means (given or estimated), applies the conjugate normal
    update to every group and optionally fits the PyMC hierarchical model
    for comparison.

    Parameters
    ----------
    alpha : float, default=0.95
        Credible interval level.

    use_mcmc : bool, default=False
        If True, also fits the hierarchical model with PyMC.

    quick_mode : bool, default=False
        If True, uses short MCMC runs (2 chains, 500 draws, 500 tune).

    random_seed : int, default=42
        Random seed for predictive sampling and MCMC.

    Examples
    --------
    >>> from appliedbayes import Pipeline
    >>> from appliedbayes.datasets import load_table, prepare_radon
    >>>
    >>> radon = prepare_radon(load_table('data/radon.csv'))
    >>> pipeline = Pipeline()
    >>> pipeline.fit(radon, group_col='county', value_col='log_radon')
    >>> pipeline.summary().head()
    >>> draws = pipeline.predict(group_id='HENNEPIN', n_samples=1000)
    """

    def __init__(
        self,
        alpha: float = 0.95,
        use_mcmc: bool = False,
        quick_mode: bool = False,
        random_seed: int = 42
    ):
        if not 0 < alpha < 1:
            raise ValueError(f"alpha must be in (0,1), got {alpha}")

        self.alpha = alpha
        self.use_mcmc = use_mcmc
        self.quick_mode = quick_mode
        self.random_seed = random_seed

        # Will be initialized during fit()
        self.updater = None
        self.hierarchical_model = None
        self.records = None
        self.table = None
        self.group_col = None
        self.value_col = None
        self.sd_y = None
        self.mean_prior = None
        self.sd_prior = None

    def fit(
        self,
        data: pd.DataFrame,
        group_col: str,
        value_col: str,
        sd_y: Optional[float] = None,
        mean_prior: Optional[float] = None,
        sd_prior: Optional[float] = None,
        predictor_col: Optional[str] = None,
        validate_convergence: bool = True
    ) -> 'Pipeline':
        """
        Fit the pipeline on unit-level grouped data.

        Parameters
        ----------
        data : pd.DataFrame
            One row per measurement.

        group_col : str
            Group identifier column (e.g. 'county').

        value_col : str
            Measurement column (e.g. 'log_radon').

        sd_y : float, optional
            Known within-group sd. If None, the pooled within-group sd.

        mean_prior, sd_prior : float, optional
            Prior over group means. Whichever is None is estimated from the
            data by the method of moments.

        predictor_col : str, optional
            Slope covariate for the MCMC model (ignored without use_mcmc).

        validate_convergence : bool, default=True
            If True, raises error if MCMC doesn't converge (R̂ ≥ 1.01).

        Returns
        -------
        self : Pipeline
            Fitted pipeline.
        """
        self._validate_data(data, group_col, value_col)

        records = summarize_groups(data, group_col, value_col)

        print(f"\n{'='*70}")
        print(f"appliedbayes Pipeline: Fitting on {len(records)} groups")
        print(f"{'='*70}\n")

        if sd_y is None:
            sd_y = pooled_within_sd(data, group_col, value_col)

        if mean_prior is None or sd_prior is None:
            est_mean, est_sd = estimate_hyperparameters(records, sd_y)
            mean_prior = est_mean if mean_prior is None else mean_prior
            sd_prior = est_sd if sd_prior is None else sd_prior

        print(f"✓ sd_y = {sd_y:.4f}, prior = Normal({mean_prior:.4f}, "
              f"{sd_prior:.4f})")

        updater = ConjugateNormalUpdater(
            mean_prior=mean_prior,
            sd_prior=sd_prior,
            random_seed=self.random_seed
        )
        table = update_groups(
            records,
            sd_y=sd_y,
            mean_prior=mean_prior,
            sd_prior=sd_prior,
            alpha=self.alpha
        )

        metrics = compute_shrinkage_metrics(table)
        print(f"✓ Conjugate updates computed (mean shrinkage = "
              f"{metrics['mean_shrinkage']:.3f})")

        hierarchical_model = None
        if self.use_mcmc:
            print("\n[MCMC] Fitting hierarchical normal model...")
            hierarchical_model = self._fit_hierarchical(
                data, group_col, value_col, predictor_col
            )
            if validate_convergence:
                self._validate_convergence(hierarchical_model)
        elif predictor_col is not None:
            warnings.warn(
                f"predictor_col '{predictor_col}' is only used with use_mcmc=True"
            )

        # Nothing is stored until every step above has succeeded
        self.group_col = group_col
        self.value_col = value_col
        self.records = records
        self.sd_y = sd_y
        self.mean_prior = mean_prior
        self.sd_prior = sd_prior
        self.updater = updater
        self.table = table
        self.hierarchical_model = hierarchical_model

        print(f"\n{'='*70}")
        print("✓ Pipeline fitted successfully!")
        print(f"{'='*70}\n")

        return self

    def summary(self) -> pd.DataFrame:
        """Per-group posterior table (see update_groups)."""
        self._check_fitted()
        return self.table.copy()

    def predict(
        self,
        group_id=None,
        n_samples: int = 1000,
        kind: str = 'observation'
    ) -> np.ndarray:
        """
        Posterior predictive draws from the conjugate model.

        Parameters
        ----------
        group_id : optional
            Fitted group. If None, draws for a new group from the prior.

        n_samples : int, default=1000
            Number of draws.

        kind : {'observation', 'mean'}, default='observation'
            'observation' draws new measurements (adds sd_y), 'mean' draws
            the group mean.

        Returns
        -------
        samples : np.ndarray, shape (n_samples,)
        """
        self._check_fitted()

        if kind not in ('observation', 'mean'):
            raise ValueError(f"kind must be 'observation' or 'mean'. Got: {kind!r}")

        if group_id is None:
            mean, sd = self.mean_prior, self.sd_prior
        else:
            row = self._group_row(group_id)
            mean, sd = row['mean_post'], row['sd_post']

        if kind == 'observation':
            sd = np.sqrt(sd ** 2 + self.sd_y ** 2)

        return self.updater.predictive_sample(n_samples, mean, sd)

    def compare_with_mcmc(self) -> pd.DataFrame:
        """
        Closed-form vs MCMC estimates of each group mean.

        With a predictor the MCMC intercepts are at predictor = 0 and are not
        directly comparable to the group means.

        Returns
        -------
        comparison : pd.DataFrame
            Columns group_id, mean_post, sd_post, mcmc_mean, mcmc_sd,
            difference (mcmc_mean - mean_post)
        """
        if self.hierarchical_model is None:
            raise RuntimeError("No MCMC fit. Use Pipeline(use_mcmc=True).")

        alpha = self.hierarchical_model.extract_posterior_means()['alpha']
        alpha = alpha.rename(columns={'mean': 'mcmc_mean', 'sd': 'mcmc_sd'})

        comparison = self.table[['group_id', 'mean_post', 'sd_post']].merge(
            alpha, on='group_id', how='inner'
        )
        comparison['difference'] = comparison['mcmc_mean'] - comparison['mean_post']

        return comparison

    def get_convergence_diagnostics(self) -> pd.DataFrame:
        """
        Return MCMC convergence diagnostics (R̂, ESS).

        Returns
        -------
        diagnostics : pd.DataFrame
            DataFrame with columns: parameter, r_hat, ess_bulk, ess_tail
        """
        if self.hierarchical_model is None:
            raise RuntimeError("No MCMC fit. Use Pipeline(use_mcmc=True).")

        import arviz as az
        var_names = ['mu_alpha', 'sigma_alpha', 'alpha', 'sigma_y']
        if self.hierarchical_model.predictor_col_ is not None:
            var_names.append('beta')
        summary = az.summary(self.hierarchical_model.trace_, var_names=var_names)

        summary = summary.reset_index()
        summary = summary.rename(columns={'index': 'parameter'})

        cols = ['parameter', 'r_hat', 'ess_bulk', 'ess_tail']
        return summary[cols]

    def evaluate(self, test_data: pd.DataFrame) -> Dict[str, float]:
        """
        Score held-out measurements against the posterior predictive.

        Groups not seen during fit() are predicted from the prior.

        Returns
        -------
        metrics : dict
            - rmse: of the posterior (or prior) mean vs each measurement
            - coverage: fraction inside the alpha-level predictive interval
            - n_observations: scored measurements
            - n_new_groups: groups not present at fit time
        """
        self._check_fitted()
        self._validate_data(test_data, self.group_col, self.value_col, warn=False)

        test = test_data.dropna(subset=[self.group_col, self.value_col])
        if len(test) == 0:
            raise ValueError("No complete test rows to evaluate")
        lookup = self.table.set_index('group_id')

        known = test[self.group_col].isin(lookup.index)
        mean = np.full(len(test), self.mean_prior, dtype=np.float64)
        sd = np.full(len(test), self.sd_prior, dtype=np.float64)
        mean[known.to_numpy()] = lookup.loc[test.loc[known, self.group_col], 'mean_post'].to_numpy()
        sd[known.to_numpy()] = lookup.loc[test.loc[known, self.group_col], 'sd_post'].to_numpy()

        y = test[self.value_col].to_numpy(dtype=np.float64)
        sd_pred = np.sqrt(sd ** 2 + self.sd_y ** 2)
        z = norm.ppf(1 - (1 - self.alpha) / 2)
        inside = np.abs(y - mean) <= z * sd_pred

        return {
            'rmse': float(np.sqrt(mean_squared_error(y, mean))),
            'coverage': float(np.mean(inside)),
            'n_observations': int(len(test)),
            'n_new_groups': int(test.loc[~known, self.group_col].nunique()),
        }

    def save(self, filepath: str):
        """
        Save fitted pipeline to disk.

        Note: The PyMC model object cannot be pickled directly.
        Use hierarchical_model.save_trace() to save the MCMC trace separately.
        """
        model_backup = None
        if self.hierarchical_model is not None:
            model_backup = self.hierarchical_model.model_
            self.hierarchical_model.model_ = None

        try:
            with open(filepath, 'wb') as f:
                pickle.dump(self, f)
            print(f"✓ Pipeline saved to {filepath}")
        finally:
            if model_backup is not None:
                self.hierarchical_model.model_ = model_backup

    @classmethod
    def load(cls, filepath: str) -> 'Pipeline':
        """Load fitted pipeline from disk."""
        with open(filepath, 'rb') as f:
            pipeline = pickle.load(f)
        print(f"✓ Pipeline loaded from {filepath}")
        return pipeline

    # ---- Private methods ----

    def _check_fitted(self):
        if self.table is None:
            raise RuntimeError("Pipeline not fitted. Call .fit() first.")

    def _group_row(self, group_id) -> pd.Series:
        matches = self.table[self.table['group_id'] == group_id]
        if len(matches) == 0:
            raise ValueError(f"Unknown group_id: {group_id!r}")
        return matches.iloc[0]

    def _validate_data(
        self,
        data: pd.DataFrame,
        group_col: str,
        value_col: str,
        warn: bool = True
    ):
        """Validate unit-level data structure and content."""
        if not isinstance(data, pd.DataFrame):
            raise TypeError("data must be a pandas DataFrame")

        for col in (group_col, value_col):
            if col not in data.columns:
                raise ValueError(f"data missing column '{col}'")

        if not warn:
            return

        counts = data.dropna(subset=[group_col, value_col]).groupby(
            group_col, observed=True
        ).size()

        if len(counts) < 2:
            warnings.warn(
                f"Only {len(counts)} group(s) provided. "
                "Pass mean_prior and sd_prior, hyperparameters need 2+ groups."
            )

        n_single = int((counts == 1).sum())
        if n_single > 0:
            warnings.warn(
                f"{n_single} group(s) have a single measurement and rely "
                "heavily on the prior."
            )

    def _fit_hierarchical(self, data, group_col, value_col, predictor_col):
        """Fit the PyMC hierarchical normal model."""
        n_chains = 2 if self.quick_mode else 4
        n_draws = 500 if self.quick_mode else 2000
        n_tune = 500 if self.quick_mode else 1000

        values = data[value_col].dropna()
        model = HierarchicalNormalModel(
            mu_prior=float(values.mean()),
            sigma_mu=max(float(values.std()) * 10, 1.0),
            tau=max(float(values.std()), 1e-3),
            sigma_y_scale=max(float(values.std()) * 2, 1e-3),
            random_seed=self.random_seed
        )

        model.fit(
            data,
            group_col=group_col,
            value_col=value_col,
            predictor_col=predictor_col,
            chains=n_chains,
            draws=n_draws,
            tune=n_tune
        )

        print("  ✓ Hierarchical model fitted")
        return model

    def _validate_convergence(self, model):
        """Check MCMC convergence and raise error if failed."""
        diagnostics = model.check_convergence()

        if not diagnostics['rhat_ok']:
            raise RuntimeError(
                f"MCMC convergence failed! R̂ ≥ 1.01 detected.\n"
                f"Max R̂ = {diagnostics['rhat_max']:.4f}\n\n"
                "Try increasing MCMC draws: Pipeline(quick_mode=False)"
            )

        if not diagnostics['ess_ok']:
            warnings.warn(
                f"Low effective sample size detected (ESS = {diagnostics['ess_min']:.0f}). "
                "Consider increasing MCMC draws for more reliable inference."
            )

        print(f"  ✓ Convergence validated (max R̂ = {diagnostics['rhat_max']:.4f}, "
              f"min ESS = {diagnostics['ess_min']:.0f})")
