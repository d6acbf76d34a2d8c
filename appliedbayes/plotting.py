"""
Plots for group-level posterior summaries.

Shrinkage of group means toward the prior mean and posterior credible
intervals per group, drawn from the table returned by
:func:`appliedbayes.conjugate.update_groups`.

"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from typing import Optional, Tuple


class PlotStyle:
    """
    Shared figure styling for course plots.

    Examples
    --------
    >>> PlotStyle.apply()
    >>> fig, ax = PlotStyle.create_figure()
    >>> plot_shrinkage(table, ax=ax)
    >>> PlotStyle.save_figure(fig, 'figures/shrinkage.png')
    """

    FIGSIZE_MAIN = (10, 6)
    FIGSIZE_TALL = (8, 10)

    DPI = 300

    COLORS = {
        'observed': '#2ca02c',     # Green for no-pooling group means
        'posterior': '#1f77b4',    # Blue for posterior estimates
        'prior': '#ff7f0e',        # Orange for the prior mean
        'interval': '#aec7e8',     # Light blue for credible intervals
    }

    FONTSIZE_TITLE = 14
    FONTSIZE_LABEL = 12
    FONTSIZE_TICK = 10
    FONTSIZE_LEGEND = 10

    @classmethod
    def apply(cls) -> None:
        """Set matplotlib defaults for all subsequent plots."""
        plt.rcParams['figure.figsize'] = cls.FIGSIZE_MAIN
        plt.rcParams['savefig.dpi'] = cls.DPI

        plt.rcParams['font.size'] = cls.FONTSIZE_TICK
        plt.rcParams['axes.titlesize'] = cls.FONTSIZE_TITLE
        plt.rcParams['axes.labelsize'] = cls.FONTSIZE_LABEL
        plt.rcParams['legend.fontsize'] = cls.FONTSIZE_LEGEND

        plt.rcParams['grid.alpha'] = 0.3
        plt.rcParams['grid.linestyle'] = '--'

    @classmethod
    def create_figure(
        cls,
        figsize: Optional[Tuple[float, float]] = None,
        **kwargs
    ) -> Tuple[plt.Figure, plt.Axes]:
        """Create a figure and single axis (FIGSIZE_MAIN by default)."""
        if figsize is None:
            figsize = cls.FIGSIZE_MAIN

        fig, ax = plt.subplots(figsize=figsize, **kwargs)
        return fig, ax

    @classmethod
    def save_figure(
        cls,
        fig: plt.Figure,
        filepath: str,
        dpi: Optional[int] = None,
        bbox_inches: str = 'tight',
        **kwargs
    ) -> None:
        """Save a figure at cls.DPI unless dpi is given."""
        if dpi is None:
            dpi = cls.DPI

        fig.savefig(filepath, dpi=dpi, bbox_inches=bbox_inches, **kwargs)
        print(f"✓ Figure saved: {filepath}")

    @classmethod
    def format_axis(
        cls,
        ax: plt.Axes,
        title: Optional[str] = None,
        xlabel: Optional[str] = None,
        ylabel: Optional[str] = None,
        legend: bool = False
    ) -> None:
        """Apply title, labels, grid and (optionally) legend."""
        if title:
            ax.set_title(title, fontsize=cls.FONTSIZE_TITLE, fontweight='bold')
        if xlabel:
            ax.set_xlabel(xlabel, fontsize=cls.FONTSIZE_LABEL)
        if ylabel:
            ax.set_ylabel(ylabel, fontsize=cls.FONTSIZE_LABEL)

        ax.grid(True, alpha=0.3, linestyle='--')

        if legend:
            ax.legend(fontsize=cls.FONTSIZE_LEGEND, framealpha=0.8)


def _check_table(table: pd.DataFrame, columns):
    missing = [c for c in columns if c not in table.columns]
    if missing:
        raise ValueError(f"Table missing columns: {missing}")


def plot_shrinkage(
    table: pd.DataFrame,
    mean_prior: Optional[float] = None,
    ax: Optional[plt.Axes] = None
) -> plt.Axes:
    """
    Observed vs posterior group means against group size.

    Each group is drawn as an observed point and a posterior point joined by
    a line, so small groups visibly move further toward the prior mean.

    Parameters
    ----------
    table : pd.DataFrame
        Output of update_groups (needs n, value, mean_post)
    mean_prior : float, optional
        Drawn as a horizontal reference line
    ax : plt.Axes, optional
        Axis to draw on; a new figure is created if None

    Returns
    -------
    ax : plt.Axes
    """
    _check_table(table, ['n', 'value', 'mean_post'])

    if ax is None:
        _, ax = PlotStyle.create_figure()

    # Jitter x so groups with equal n stay distinguishable
    rng = np.random.default_rng(0)
    x = table['n'].to_numpy(dtype=np.float64) * np.exp(rng.uniform(-0.05, 0.05, len(table)))

    for xi, obs, post in zip(x, table['value'], table['mean_post']):
        ax.plot([xi, xi], [obs, post], color='gray', alpha=0.5, linewidth=1)

    ax.scatter(x, table['value'], color=PlotStyle.COLORS['observed'],
               label='Observed group mean', s=25, zorder=3)
    ax.scatter(x, table['mean_post'], color=PlotStyle.COLORS['posterior'],
               label='Posterior mean', s=25, zorder=3)

    if mean_prior is not None:
        ax.axhline(mean_prior, color=PlotStyle.COLORS['prior'],
                   linestyle='--', label='Prior mean')

    ax.set_xscale('log')
    PlotStyle.format_axis(
        ax,
        title='Shrinkage of group means',
        xlabel='Group size n (log scale)',
        ylabel='Estimate',
        legend=True
    )

    return ax


def plot_posterior_intervals(
    table: pd.DataFrame,
    ax: Optional[plt.Axes] = None,
    sort: bool = True
) -> plt.Axes:
    """
    Posterior means with credible intervals, one row per group.

    Parameters
    ----------
    table : pd.DataFrame
        Output of update_groups (needs group_id, mean_post, lower, upper)
    ax : plt.Axes, optional
        Axis to draw on; a new figure is created if None
    sort : bool, optional (default=True)
        Order groups by posterior mean

    Returns
    -------
    ax : plt.Axes
    """
    _check_table(table, ['group_id', 'mean_post', 'lower', 'upper'])

    if sort:
        table = table.sort_values('mean_post')

    if ax is None:
        _, ax = PlotStyle.create_figure(figsize=PlotStyle.FIGSIZE_TALL)

    y = np.arange(len(table))
    ax.hlines(y, table['lower'], table['upper'],
              color=PlotStyle.COLORS['interval'], linewidth=3)
    ax.scatter(table['mean_post'], y, color=PlotStyle.COLORS['posterior'],
               s=15, zorder=3)

    if 'value' in table.columns:
        ax.scatter(table['value'], y, color=PlotStyle.COLORS['observed'],
                   marker='x', s=15, zorder=3, label='Observed group mean')

    ax.set_yticks(y)
    ax.set_yticklabels([str(g) for g in table['group_id']])
    PlotStyle.format_axis(
        ax,
        title='Posterior group means',
        xlabel='Estimate',
        legend='value' in table.columns
    )

    return ax
