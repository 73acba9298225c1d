import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy.stats import levene, shapiro

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagnosticResult:
    """Outcome of one model-assumption test."""

    test_name: str
    statistic: float
    p_value: float
    alpha: float = 0.05

    @property
    def assumption_met(self) -> bool:
        """True unless the test rejects the assumption at level ``alpha``."""
        return self.p_value >= self.alpha


def normality_test(residuals, alpha: float = 0.05) -> DiagnosticResult:
    """
    Shapiro-Wilk test of model residuals against a normal distribution.

    Args:
        residuals (array-like): model residuals
        alpha (float, optional): significance level. Defaults to 0.05.
    """
    residuals = np.asarray(residuals, dtype=float)
    if residuals.size == 0:
        raise ValueError("residuals must not be empty")
    if np.any(np.isnan(residuals)) or np.any(np.isinf(residuals)):
        raise ValueError("residuals contains NaN or infinite values")
    if residuals.size < 3:
        raise ValueError("residuals must have at least 3 elements for the Shapiro-Wilk test")

    stat, p_value = shapiro(residuals)
    return DiagnosticResult("Shapiro-Wilk", float(stat), float(p_value), alpha)


def variance_homogeneity_test(residuals, groups, alpha: float = 0.05) -> DiagnosticResult:
    """
    Levene test (median-centred, i.e. Brown-Forsythe) for equal residual variance across groups.

    Args:
        residuals (array-like): model residuals
        groups (array-like or list of array-like): one group label per residual,
            or several label arrays whose combination defines the groups
        alpha (float, optional): significance level. Defaults to 0.05.
    """
    residuals = pd.Series(np.asarray(residuals, dtype=float))
    if residuals.empty:
        raise ValueError("residuals must not be empty")
    if residuals.isna().any():
        raise ValueError("residuals contains NaN values")

    if isinstance(groups, (list, tuple)) and len(groups) > 0 and np.ndim(groups[0]) > 0:
        keys = [np.asarray(g) for g in groups]
    else:
        keys = [np.asarray(groups)]
    if any(len(k) != len(residuals) for k in keys):
        raise ValueError("groups must have one label per residual")

    samples = [values.to_numpy() for _, values in residuals.groupby(keys, observed=True)]
    if len(samples) < 2:
        raise ValueError("At least two groups are needed to test variance homogeneity")

    stat, p_value = levene(*samples, center="median")
    return DiagnosticResult("Levene (median)", float(stat), float(p_value), alpha)


def check_assumptions(fitted, data: pd.DataFrame, alpha: float = 0.05) -> dict:
    """
    Run residual normality and variance homogeneity tests for a fitted model.

    Groups for the homogeneity test are the cells of the full cross of the
    model's factors. Failed assumptions are reported, never raised.

    Parameters
    ----------
    fitted : FittedModel
        Model whose residuals are tested.
    data : pd.DataFrame
        Dataset the model was fit on.
    alpha : float, optional
        Significance level. Defaults to 0.05.

    Returns
    -------
    dict
        ``{"normality": DiagnosticResult, "homogeneity": DiagnosticResult}``
    """
    residuals = fitted.residuals.loc[data.index]
    groups = [data[f].to_numpy() for f in fitted.spec.factors]

    diagnostics = {
        "normality": normality_test(residuals, alpha=alpha),
        "homogeneity": variance_homogeneity_test(residuals, groups, alpha=alpha),
    }

    for name, result in diagnostics.items():
        verdict = "met" if result.assumption_met else "violated"
        logger.info(
            f"{result.test_name} ({name}): statistic={result.statistic:.4f}, "
            f"pvalue={result.p_value:.4f} -> assumption {verdict}"
        )

    return diagnostics


def transformation_required(diagnostics: dict) -> bool:
    """True if any assumption in ``diagnostics`` is violated."""
    return not all(result.assumption_met for result in diagnostics.values())
