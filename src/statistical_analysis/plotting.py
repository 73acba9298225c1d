import logging

import matplotlib.pyplot as plt
import numpy as np
from scipy.stats import norm, probplot

logger = logging.getLogger(__name__)


def _plot_residual_histogram(ax, residuals):
    """
    Plot histogram of standardized residuals with standard normal curve overlay.

    Parameters
    ----------
    ax : matplotlib.axes.Axes
        Axes object to plot on.
    residuals : array-like
        Model residuals.
    """
    residuals = np.asarray(residuals, dtype=float)
    standardized = (residuals - residuals.mean()) / residuals.std(ddof=1)
    ax.hist(standardized, bins=20, density=True, alpha=0.6, label="Residuals")
    x = np.linspace(min(standardized), max(standardized), 300)
    ax.plot(x, norm.pdf(x, 0, 1), "r-", linewidth=2, label="Standard Normal")
    ax.set_xlabel("Standardized residual")
    ax.set_ylabel("Density")
    ax.set_title("Distribution of Residuals")
    ax.legend()


def _plot_residual_qq(ax, residuals):
    """Q-Q plot of residuals against the normal distribution."""
    probplot(residuals, dist="norm", plot=ax)
    ax.set_title("Q-Q Plot for Residuals")
    ax.grid(True, alpha=0.3)


def _plot_residuals_vs_fitted(ax, fitted_values, residuals):
    ax.scatter(fitted_values, residuals, alpha=0.6, edgecolor="black", linewidth=0.5)
    ax.axhline(0, color="r", linestyle="--", linewidth=1)
    ax.set_xlabel("Fitted value")
    ax.set_ylabel("Residual")
    ax.set_title("Residuals vs Fitted")
    ax.grid(True, alpha=0.3)


def _plot_boxcox_profile(ax, profile, selected_lambda=None):
    """
    Plot the Box-Cox profile log-likelihood with an approximate 95% interval.

    Parameters
    ----------
    ax : matplotlib.axes.Axes
        Axes object to plot on.
    profile : pd.DataFrame
        Columns ``lambda`` and ``log_likelihood``.
    selected_lambda : float, optional
        Lambda adopted by the transformation stage.
    """
    ax.plot(profile["lambda"], profile["log_likelihood"], "b-", linewidth=2)
    best = profile.loc[profile["log_likelihood"].idxmax()]
    # Likelihood-ratio cutoff for a 95% interval (chi2_1 / 2)
    cutoff = best["log_likelihood"] - 1.92
    ax.axhline(cutoff, color="gray", linestyle=":", linewidth=1, label="95% interval")
    ax.axvline(best["lambda"], color="r", linestyle="--", linewidth=1, label=f"max at {best['lambda']:+.1f}")
    if selected_lambda is not None and selected_lambda != best["lambda"]:
        ax.axvline(selected_lambda, color="g", linestyle="-.", linewidth=1, label="adopted")
    ax.set_xlabel("Lambda")
    ax.set_ylabel("Log-likelihood")
    ax.set_title("Box-Cox Profile")
    ax.legend()


def _plot_interaction(ax, emmeans, factor, by):
    """Interaction plot of estimated marginal means, one line per stratum."""
    positions = np.arange(emmeans[factor].nunique())
    if by is None or by not in emmeans.columns:
        ax.errorbar(
            positions,
            emmeans["emmean"],
            yerr=[emmeans["emmean"] - emmeans["ci_lower"], emmeans["ci_upper"] - emmeans["emmean"]],
            marker="o",
            capsize=4,
        )
    else:
        for stratum, stratum_df in emmeans.groupby(by, observed=True, sort=False):
            ax.errorbar(
                positions,
                stratum_df["emmean"],
                yerr=[
                    stratum_df["emmean"] - stratum_df["ci_lower"],
                    stratum_df["ci_upper"] - stratum_df["emmean"],
                ],
                marker="o",
                capsize=4,
                label=f"{by} = {stratum}",
            )
        ax.legend()
    ax.set_xticks(positions)
    ax.set_xticklabels([str(level) for level in emmeans[factor].unique()])
    ax.set_xlabel(factor)
    ax.set_ylabel("Estimated marginal mean")
    ax.set_title("Interaction Plot")
    ax.grid(True, alpha=0.3)


def _plot_tukey_intervals(ax, posthoc):
    """Tukey-adjusted confidence intervals of pairwise differences."""
    labels = [f"{row.group1} - {row.group2}" for row in posthoc.itertuples()]
    positions = np.arange(len(posthoc))
    colors = ["r" if reject else "k" for reject in posthoc["reject"]]
    ax.hlines(positions, posthoc["ci_lower"], posthoc["ci_upper"], colors=colors, linewidth=2)
    ax.scatter(posthoc["estimate"], positions, c=colors, zorder=3)
    ax.axvline(0, color="gray", linestyle="--", linewidth=1)
    ax.set_yticks(positions)
    ax.set_yticklabels(labels)
    ax.set_xlabel("Difference (working scale)")
    ax.set_title("Tukey HSD Intervals")
    ax.grid(True, axis="x", alpha=0.3)


def plot_analysis_output(output: dict, save_path: str = None, posthoc_factor="age_group", posthoc_by="cardiac_history"):
    """
    Plot diagnostic and interpretive figures for a pipeline result.

    Generates residual diagnostics of the selected model, the Box-Cox
    profile (if a search ran), an interaction plot of marginal means and
    Tukey intervals for the marginal pairwise comparisons.

    Parameters
    ----------
    output : dict
        Dictionary of results from run_anova_pipeline.
    save_path : str, optional
        Path to save the plot image. If None, displays the plot interactively.
    posthoc_factor : str, optional
        Factor on the x-axis of the interaction plot.
    posthoc_by : str, optional
        Factor drawn as separate lines in the interaction plot.

    Raises
    ------
    RuntimeError
        If the output holds no selected model.
    """
    selection = output.get("selection")
    if selection is None:
        raise RuntimeError(f"No selected model found in output. Check output = {list(output.keys())}.")

    working = selection.selected
    profile = output.get("boxcox_profile")
    emmeans = output.get("emmeans")
    posthoc = output.get("posthoc_marginal")

    plot_profile = profile is not None and not profile.empty
    plot_emmeans = emmeans is not None and not emmeans.empty
    plot_posthoc = posthoc is not None and not posthoc.empty

    num_plots = 3 + int(plot_profile) + int(plot_emmeans) + int(plot_posthoc)
    ncols = 3
    nrows = int(np.ceil(num_plots / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(5 * ncols, 4.5 * nrows))
    axes = np.atleast_1d(axes).flatten()

    ax_idx = 0
    _plot_residual_histogram(axes[ax_idx], working.residuals)
    ax_idx += 1
    _plot_residual_qq(axes[ax_idx], working.residuals)
    ax_idx += 1
    _plot_residuals_vs_fitted(axes[ax_idx], working.fitted_values, working.residuals)
    ax_idx += 1

    if plot_profile:
        transformation = output.get("transformation")
        selected_lambda = transformation.lmbda if transformation is not None else None
        _plot_boxcox_profile(axes[ax_idx], profile, selected_lambda)
        ax_idx += 1

    if plot_emmeans:
        _plot_interaction(axes[ax_idx], emmeans, posthoc_factor, posthoc_by)
        ax_idx += 1

    if plot_posthoc:
        _plot_tukey_intervals(axes[ax_idx], posthoc)
        ax_idx += 1

    for ax in axes[ax_idx:]:
        ax.set_visible(False)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches="tight")
        plt.close(fig)
        logger.info(f"Plot saved to {save_path}")
    else:
        plt.show()
