"""
appliedbayes Quickstart Example
===============================

This example walks through the course workflow:
1. Simulate radon-like measurements for counties of different sizes
2. Compute closed-form posteriors for every county mean
3. Look at shrinkage and posterior predictive draws
4. Check the closed form against an MCMC fit of the hierarchical model

NOTE: This example uses synthetic data. Use appliedbayes.datasets.load_table
and prepare_radon for the course data.
"""

import numpy as np
import pandas as pd

from appliedbayes import Pipeline, ConjugateNormalUpdater
from appliedbayes.conjugate import compute_shrinkage_metrics
from appliedbayes.plotting import PlotStyle, plot_shrinkage

rng = np.random.default_rng(42)

print("=" * 70)
print("appliedbayes Quickstart Example")
print("=" * 70)

# ===== 1. Single update =====
print("\n[Step 1] One conjugate update")

updater = ConjugateNormalUpdater(mean_prior=0.5, sd_prior=0.1)
mean_post, sd_post = updater.posterior(0.3, sd_y=0.05)
lower, upper = updater.credible_interval(0.3, sd_y=0.05, alpha=0.95)
print(f"  Posterior: mean = {mean_post:.4f}, sd = {sd_post:.4f}")
print(f"  95% interval: [{lower:.4f}, {upper:.4f}]")

# ===== 2. Simulate county data =====
print("\n[Step 2] Simulating county measurements...")

sizes = [1, 2, 3, 5, 8, 12, 20, 35, 60, 100]
true_means = rng.normal(1.3, 0.35, size=len(sizes))
radon = pd.concat([
    pd.DataFrame({
        'county': f'county_{j:02d}',
        'log_radon': rng.normal(mu, 0.8, size=n)
    })
    for j, (n, mu) in enumerate(zip(sizes, true_means))
], ignore_index=True)

print(f"  {radon['county'].nunique()} counties, {len(radon)} measurements")

# ===== 3. Partial pooling =====
print("\n[Step 3] Fitting pipeline (closed form)")

pipeline = Pipeline(alpha=0.95, random_seed=42)
pipeline.fit(radon, group_col='county', value_col='log_radon')

table = pipeline.summary()
print(table[['group_id', 'n', 'value', 'mean_post', 'sd_post', 'shrinkage']]
      .round(3).to_string(index=False))

metrics = compute_shrinkage_metrics(table, true_values=true_means)
print(f"\n  Mean shrinkage: {metrics['mean_shrinkage']:.3f}")
print(f"  Coverage of true county means: {metrics['coverage']:.0%}")

draws = pipeline.predict(group_id='county_00', n_samples=1000)
print(f"  Predictive 90% range, county_00: "
      f"[{np.percentile(draws, 5):.2f}, {np.percentile(draws, 95):.2f}]")

fig, ax = PlotStyle.create_figure()
plot_shrinkage(table, mean_prior=pipeline.mean_prior, ax=ax)
PlotStyle.save_figure(fig, 'shrinkage.png')

# ===== 4. MCMC check =====
print("\n[Step 4] Checking against MCMC (quick mode)")

mcmc_pipeline = Pipeline(use_mcmc=True, quick_mode=True, random_seed=42)
mcmc_pipeline.fit(radon, group_col='county', value_col='log_radon',
                  validate_convergence=False)

comparison = mcmc_pipeline.compare_with_mcmc()
print(comparison.round(3).to_string(index=False))
print(f"\n  Largest |MCMC - closed form|: {comparison['difference'].abs().max():.3f}")

print("\n" + "=" * 70)
print("✓ Quickstart complete")
print("=" * 70)
