"""
Post-hoc pairwise comparisons on a fitted ANOVA model.

Comparisons are made between estimated marginal means: model predictions on
a reference grid of all factor level combinations, averaged with equal
weights over the factors not being compared. Each family of comparisons
(all pairs of levels, either marginally or within one stratum of a second
factor) is adjusted with Tukey's studentized range method.
"""

import logging
from itertools import combinations, product

import numpy as np
import pandas as pd
from patsy import build_design_matrices
from scipy.stats import studentized_range, t

logger = logging.getLogger(__name__)


def _check_factors(fitted, factor, by):
    if factor not in fitted.spec.factors:
        raise ValueError(f"Factor '{factor}' is not in model {fitted.spec.name}")
    if by is not None:
        if by not in fitted.spec.factors:
            raise ValueError(f"Stratifying factor '{by}' is not in model {fitted.spec.name}")
        if by == factor:
            raise ValueError("Stratifying factor must differ from the compared factor")


def _reference_grid(fitted):
    """All level combinations of the model factors and their design matrix rows."""
    factors = list(fitted.spec.factors)
    grid = pd.DataFrame(
        list(product(*(fitted.levels[f] for f in factors))), columns=factors
    )
    design_info = fitted.results.model.data.design_info
    (design,) = build_design_matrices([design_info], grid, return_type="matrix")
    return grid, np.asarray(design)


def _averaging_rows(fitted, factor, by=None):
    """
    Rows of the linear map from coefficients to marginal means.

    Returns
    -------
    list of (stratum, level, np.ndarray)
        ``stratum`` is None when ``by`` is None.
    """
    grid, design = _reference_grid(fitted)
    strata = fitted.levels[by] if by is not None else [None]

    rows = []
    for stratum in strata:
        in_stratum = np.ones(len(grid), dtype=bool) if by is None else (grid[by] == stratum).to_numpy()
        for level in fitted.levels[factor]:
            mask = in_stratum & (grid[factor] == level).to_numpy()
            rows.append((stratum, level, design[mask].mean(axis=0)))
    return rows


def estimated_marginal_means(fitted, factor: str, by: str | None = None, alpha: float = 0.05) -> pd.DataFrame:
    """
    Estimated marginal means of ``factor`` (optionally within each level of ``by``).

    Parameters
    ----------
    fitted : FittedModel
        Working model.
    factor : str
        Factor whose levels are estimated.
    by : str, optional
        Stratifying factor.
    alpha : float, optional
        One minus the confidence level. Defaults to 0.05.

    Returns
    -------
    pd.DataFrame
        Columns ``[by], level, emmean, std_error, df, ci_lower, ci_upper``.
    """
    _check_factors(fitted, factor, by)

    beta = fitted.params.to_numpy()
    cov = fitted.results.cov_params().to_numpy()
    df = fitted.df_resid
    t_crit = t.ppf(1 - alpha / 2, df)

    records = []
    for stratum, level, row in _averaging_rows(fitted, factor, by):
        estimate = float(row @ beta)
        se = float(np.sqrt(row @ cov @ row))
        record = {} if by is None else {by: stratum}
        record.update(
            {
                factor: level,
                "emmean": estimate,
                "std_error": se,
                "df": df,
                "ci_lower": estimate - t_crit * se,
                "ci_upper": estimate + t_crit * se,
            }
        )
        records.append(record)

    return pd.DataFrame(records)


def _pairwise_contrasts(fitted, factor, by=None):
    """
    Pairwise differences of marginal means with their standard errors.

    Yields one dict per pair: stratum, group1, group2, estimate, std_error.
    """
    beta = fitted.params.to_numpy()
    cov = fitted.results.cov_params().to_numpy()

    rows = _averaging_rows(fitted, factor, by)
    strata = fitted.levels[by] if by is not None else [None]

    contrasts = []
    for stratum in strata:
        stratum_rows = [(level, row) for s, level, row in rows if s == stratum or by is None]
        for (level1, row1), (level2, row2) in combinations(stratum_rows, 2):
            contrast = row1 - row2
            contrasts.append(
                {
                    "stratum": stratum,
                    "group1": level1,
                    "group2": level2,
                    "estimate": float(contrast @ beta),
                    "std_error": float(np.sqrt(contrast @ cov @ contrast)),
                }
            )
    return contrasts


def pairwise_tukey(fitted, factor: str, by: str | None = None, alpha: float = 0.05) -> pd.DataFrame:
    """
    Tukey-adjusted pairwise comparisons of the levels of ``factor``.

    Each stratum of ``by`` (or the whole model when ``by`` is None) forms
    one family of comparisons. Only adjusted p-values are reported.

    Parameters
    ----------
    fitted : FittedModel
        Working model.
    factor : str
        Factor whose levels are compared.
    by : str, optional
        Stratifying factor; one Tukey family per level.
    alpha : float, optional
        Family-wise error rate for the confidence intervals. Defaults to 0.05.

    Returns
    -------
    pd.DataFrame
        Columns ``[by], group1, group2, estimate, std_error, ci_lower, ci_upper, p_adj, reject``.

    Raises
    ------
    ValueError
        If ``factor`` or ``by`` is not a factor of the model, or ``factor``
        has fewer than two levels.
    """
    _check_factors(fitted, factor, by)

    k = len(fitted.levels[factor])
    if k < 2:
        raise ValueError(f"Factor '{factor}' needs at least two levels for pairwise comparisons")

    df = fitted.df_resid
    q_crit = studentized_range.ppf(1 - alpha, k, df)

    records = []
    for contrast in _pairwise_contrasts(fitted, factor, by):
        estimate = contrast["estimate"]
        se = contrast["std_error"]
        q_stat = abs(estimate) / se * np.sqrt(2)
        half_width = q_crit / np.sqrt(2) * se
        p_adj = float(min(1.0, studentized_range.sf(q_stat, k, df)))

        record = {} if by is None else {by: contrast["stratum"]}
        record.update(
            {
                "group1": contrast["group1"],
                "group2": contrast["group2"],
                "estimate": estimate,
                "std_error": se,
                "ci_lower": estimate - half_width,
                "ci_upper": estimate + half_width,
                "p_adj": p_adj,
                "reject": p_adj < alpha,
            }
        )
        records.append(record)

    table = pd.DataFrame(records)
    n_reject = int(table["reject"].sum()) if not table.empty else 0
    scope = f"within levels of {by}" if by else "marginal"
    logger.info(f"Tukey comparisons of {factor} ({scope}): {n_reject}/{len(table)} significant")
    return table
