"""
ANOVA model fitting and nested model selection.

Models are ordinary least-squares fits of a response on categorical factors
and their interactions. Term significance comes from Type II sums of squares
by default, which do not depend on term order and therefore suit unbalanced
designs. Model selection drops non-significant terms (keeping every term
contained in a significant one), refits, and checks the reduction with a
nested F-test corroborated by AIC and BIC.
"""

import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Any

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from statsmodels.stats.anova import anova_lm

logger = logging.getLogger(__name__)

STRONG_EVIDENCE_DELTA = 10.0
NOTABLE_EVIDENCE_DELTA = 2.0


class DegenerateDesignError(Exception):
    """Raised when a model term cannot be estimated from the available data."""

    pass


# ─────────────────────────────────────────────────────────────────────────────
# Model specification
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ModelSpec:
    """
    Response plus a set of factor terms.

    Each term is a tuple of factor names: ``("sex",)`` is a main effect,
    ``("sex", "age_group")`` a two-way interaction. Factor names inside a term
    follow the order of ``factors``.
    """

    response: str
    factors: tuple[str, ...]
    terms: tuple[tuple[str, ...], ...]

    @classmethod
    def full_factorial(cls, response: str, factors) -> "ModelSpec":
        """All main effects and every interaction up to the order of ``len(factors)``."""
        factors = tuple(factors)
        terms = tuple(
            term for order in range(1, len(factors) + 1) for term in combinations(factors, order)
        )
        return cls(response=response, factors=factors, terms=terms)

    def with_terms(self, terms) -> "ModelSpec":
        """Spec with the given subset of terms; factors absent from every term are removed."""
        terms = tuple(tuple(t) for t in terms)
        unknown = [t for t in terms if t not in self.terms]
        if unknown:
            raise ValueError(f"Terms not in model {self.name}: {unknown}")
        factors = tuple(f for f in self.factors if any(f in t for t in terms))
        return ModelSpec(response=self.response, factors=factors, terms=terms)

    def with_response(self, response: str) -> "ModelSpec":
        return ModelSpec(response=response, factors=self.factors, terms=self.terms)

    @staticmethod
    def term_label(term) -> str:
        """Term name as it appears in statsmodels ANOVA tables, e.g. ``C(sex):C(age_group)``."""
        return ":".join(f"C({factor})" for factor in term)

    @property
    def rhs(self) -> str:
        if not self.terms:
            return "1"
        return " + ".join(self.term_label(term) for term in self.terms)

    @property
    def formula(self) -> str:
        return f"{self.response} ~ {self.rhs}"

    @property
    def name(self) -> str:
        """Compact display name, e.g. ``age_group * cardiac_history``."""
        if not self.terms:
            return "intercept only"
        if self.terms == ModelSpec.full_factorial(self.response, self.factors).terms:
            return " * ".join(self.factors)
        return " + ".join(":".join(term) for term in self.terms)

    def is_nested_in(self, other: "ModelSpec") -> bool:
        return self.response == other.response and set(self.terms) <= set(other.terms)


# ─────────────────────────────────────────────────────────────────────────────
# Fitted model snapshot
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FittedModel:
    """Immutable summary of one OLS fit on one dataset snapshot."""

    spec: ModelSpec
    params: pd.Series
    residuals: pd.Series
    fitted_values: pd.Series
    df_model: float
    df_resid: float
    ssr: float
    nobs: int
    llf: float
    aic: float
    bic: float
    anova: pd.DataFrame
    levels: dict = field(default_factory=dict)
    results: Any = field(default=None, repr=False, compare=False)

    def term_p_values(self) -> dict:
        """Map each model term (tuple) to its ANOVA p-value."""
        table = self.anova.set_index("term")
        return {term: float(table.loc[self.spec.term_label(term), "p_value"]) for term in self.spec.terms}


def _factor_levels(series: pd.Series) -> list:
    if isinstance(series.dtype, pd.CategoricalDtype):
        return list(series.cat.categories)
    return sorted(series.dropna().unique())


def _drop_unused_levels(data: pd.DataFrame, factors) -> pd.DataFrame:
    """Copy of ``data`` without categories that have no observations."""
    unused = {
        f: data[f].cat.categories.difference(data[f].dropna().unique()).tolist()
        for f in factors
        if f in data.columns and isinstance(data[f].dtype, pd.CategoricalDtype)
    }
    unused = {f: levels for f, levels in unused.items() if levels}
    if not unused:
        return data

    data = data.copy()
    for factor, levels in unused.items():
        logger.debug(f"Ignoring unobserved level(s) {levels} of '{factor}'")
        data[factor] = data[factor].cat.remove_unused_categories()
    return data


def check_design(data: pd.DataFrame, spec: ModelSpec, min_cell_count: int = 1) -> None:
    """
    Verify every term of ``spec`` is estimable from ``data``.

    Raises
    ------
    DegenerateDesignError
        If the dataset is empty, a factor has fewer than two observed levels
        (zero between-group degrees of freedom), or a level combination of
        any term has fewer than ``min_cell_count`` observations.
    """
    missing = [col for col in (spec.response, *spec.factors) if col not in data.columns]
    if missing:
        raise ValueError(f"Fields not in dataset: {', '.join(missing)}")
    if len(data) == 0:
        raise DegenerateDesignError("Cannot fit a model on an empty dataset")

    for factor in spec.factors:
        n_observed = data[factor].nunique(dropna=True)
        if n_observed < 2:
            raise DegenerateDesignError(
                f"Factor '{factor}' has {n_observed} observed level(s); "
                "between-group degrees of freedom would be zero"
            )

    for term in spec.terms:
        grouping = [
            pd.Categorical(data[f], categories=_factor_levels(data[f])) for f in term
        ]
        counts = pd.Series(1, index=data.index).groupby(grouping, observed=False).sum()
        sparse = counts[counts < min_cell_count]
        if len(sparse) > 0:
            cells = ", ".join(str(idx) for idx in sparse.index[:5])
            raise DegenerateDesignError(
                f"Term {':'.join(term)} is not estimable: {len(sparse)} level combination(s) "
                f"with fewer than {min_cell_count} observation(s) (e.g. {cells})"
            )


def anova_table(results, typ: int = 2) -> pd.DataFrame:
    """
    Tidy ANOVA table for a fitted statsmodels OLS formula model.

    Returns
    -------
    pd.DataFrame
        Columns ``term, sum_sq, df, F, p_value``; the last row is ``Residual``.
    """
    table = anova_lm(results, typ=typ)
    table = table.rename(columns={"PR(>F)": "p_value"})
    table = table[["sum_sq", "df", "F", "p_value"]]
    return table.rename_axis("term").reset_index()


def fit_anova_model(
    data: pd.DataFrame,
    spec: ModelSpec,
    anova_type: int = 2,
    min_cell_count: int = 1,
) -> FittedModel:
    """
    Fit an OLS ANOVA model and extract its immutable summary.

    Parameters
    ----------
    data : pd.DataFrame
        Filtered dataset with the response and all factors of ``spec``.
    spec : ModelSpec
        Terms to fit.
    anova_type : int, optional
        Sum-of-squares decomposition, 1 (sequential) or 2 (Type II). Defaults to 2.
    min_cell_count : int, optional
        Minimum observations per level combination of each term. Defaults to 1.

    Returns
    -------
    FittedModel

    Raises
    ------
    DegenerateDesignError
        If a term is not estimable, the design matrix is rank deficient, or no
        residual degrees of freedom remain.
    """
    if anova_type not in (1, 2):
        raise ValueError(f"Unsupported ANOVA type: {anova_type}")

    data = _drop_unused_levels(data, spec.factors)
    check_design(data, spec, min_cell_count=min_cell_count)

    results = smf.ols(spec.formula, data=data).fit()

    n_columns = results.model.exog.shape[1]
    if results.model.rank < n_columns:
        raise DegenerateDesignError(
            f"Design matrix of {spec.name} is rank deficient "
            f"(rank {results.model.rank} < {n_columns} columns)"
        )
    if results.df_resid <= 0:
        raise DegenerateDesignError(f"Model {spec.name} leaves no residual degrees of freedom")

    table = anova_table(results, typ=anova_type) if spec.terms else pd.DataFrame(
        {"term": ["Residual"], "sum_sq": [results.ssr], "df": [results.df_resid],
         "F": [np.nan], "p_value": [np.nan]}
    )

    logger.debug(
        f"Fitted {spec.formula}: n={int(results.nobs)}, df_model={results.df_model:.0f}, "
        f"df_resid={results.df_resid:.0f}, AIC={results.aic:.2f}"
    )

    return FittedModel(
        spec=spec,
        params=results.params.copy(),
        residuals=pd.Series(results.resid, index=data.index),
        fitted_values=pd.Series(results.fittedvalues, index=data.index),
        df_model=float(results.df_model),
        df_resid=float(results.df_resid),
        ssr=float(results.ssr),
        nobs=int(results.nobs),
        llf=float(results.llf),
        aic=float(results.aic),
        bic=float(results.bic),
        anova=table,
        levels={f: _factor_levels(data[f]) for f in spec.factors},
        results=results,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Model selection
# ─────────────────────────────────────────────────────────────────────────────


def select_terms(fitted: FittedModel, alpha: float = 0.05) -> tuple:
    """
    Terms to keep after dropping non-significant ones.

    A term survives if its p-value is below ``alpha`` or if it is contained
    in a surviving higher-order term. Factors not implicated in any
    significant term therefore drop out entirely.

    Returns
    -------
    tuple of tuple
        Surviving terms in the original model order.
    """
    p_values = fitted.term_p_values()
    significant = [term for term, p in p_values.items() if p < alpha]

    kept = set()
    for term in significant:
        for order in range(1, len(term) + 1):
            kept.update(combinations(term, order))

    for term, p in p_values.items():
        status = "significant" if term in significant else ("kept" if term in kept else "dropped")
        logger.debug(f"Term {':'.join(term)}: p={p:.4f} ({status})")

    return tuple(term for term in fitted.spec.terms if term in kept)


def information_criterion_evidence(delta: float) -> str:
    """Qualitative strength of an information-criterion difference."""
    magnitude = abs(delta)
    if magnitude > STRONG_EVIDENCE_DELTA:
        return "strong"
    if magnitude > NOTABLE_EVIDENCE_DELTA:
        return "worth mentioning"
    return "negligible"


@dataclass(frozen=True)
class ModelComparison:
    """Nested F-test and information criteria for a full vs. reduced model."""

    full_name: str
    reduced_name: str
    f_statistic: float
    p_value: float
    df_diff: float
    df_resid_full: float
    aic_full: float
    aic_reduced: float
    bic_full: float
    bic_reduced: float
    preferred: str

    @property
    def delta_aic(self) -> float:
        """AIC(full) - AIC(reduced); positive favours the reduced model."""
        return self.aic_full - self.aic_reduced

    @property
    def delta_bic(self) -> float:
        return self.bic_full - self.bic_reduced

    @property
    def aic_evidence(self) -> str:
        return information_criterion_evidence(self.delta_aic)

    @property
    def bic_evidence(self) -> str:
        return information_criterion_evidence(self.delta_bic)


def compare_models(full: FittedModel, reduced: FittedModel, alpha: float = 0.05) -> ModelComparison:
    """
    Compare nested models with an F-test on the incremental sum of squares.

    A non-significant test (p >= alpha) means the reduced model is not
    significantly worse and is preferred.

    Raises
    ------
    ValueError
        If ``reduced`` is not nested in ``full`` or both have the same terms.
    """
    if not reduced.spec.is_nested_in(full.spec):
        raise ValueError(f"Model {reduced.spec.name} is not nested in {full.spec.name}")
    if set(reduced.spec.terms) == set(full.spec.terms):
        raise ValueError("Cannot compare a model with itself")

    f_statistic, p_value, df_diff = full.results.compare_f_test(reduced.results)
    preferred = "reduced" if p_value >= alpha else "full"

    comparison = ModelComparison(
        full_name=full.spec.name,
        reduced_name=reduced.spec.name,
        f_statistic=float(f_statistic),
        p_value=float(p_value),
        df_diff=float(df_diff),
        df_resid_full=full.df_resid,
        aic_full=full.aic,
        aic_reduced=reduced.aic,
        bic_full=full.bic,
        bic_reduced=reduced.bic,
        preferred=preferred,
    )

    logger.info(
        f"Nested F-test {full.spec.name} vs {reduced.spec.name}: "
        f"F({df_diff:.0f}, {full.df_resid:.0f})={f_statistic:.3f}, p={p_value:.4f}; "
        f"dAIC={comparison.delta_aic:.2f} ({comparison.aic_evidence}), "
        f"dBIC={comparison.delta_bic:.2f} ({comparison.bic_evidence})"
    )
    return comparison


@dataclass(frozen=True)
class ModelSelection:
    """Outcome of the model selection stage."""

    full: FittedModel
    selected: FittedModel
    reduced: FittedModel | None = None
    comparison: ModelComparison | None = None
    dropped_terms: tuple = ()


def select_model(
    data: pd.DataFrame,
    full_spec: ModelSpec,
    alpha: float = 0.05,
    anova_type: int = 2,
) -> ModelSelection:
    """
    Fit the full model, derive a reduced model from term significance, and choose.

    Steps: fit ``full_spec``; keep significant terms plus the terms they
    contain; fit the reduced model; compare with a nested F-test. The reduced
    model is selected when it is not significantly worse.

    Raises
    ------
    DegenerateDesignError
        If either model cannot be fit. The reduced term set is never replaced
        by a different one.
    """
    full = fit_anova_model(data, full_spec, anova_type=anova_type)
    kept = select_terms(full, alpha=alpha)
    dropped = tuple(term for term in full_spec.terms if term not in kept)

    if not dropped:
        logger.info(f"All terms of {full_spec.name} are retained; keeping the full model")
        return ModelSelection(full=full, selected=full)

    logger.info(f"Dropping non-significant term(s): {', '.join(':'.join(t) for t in dropped)}")

    reduced = fit_anova_model(data, full_spec.with_terms(kept), anova_type=anova_type)
    comparison = compare_models(full, reduced, alpha=alpha)
    selected = reduced if comparison.preferred == "reduced" else full

    logger.info(f"Selected model: {selected.spec.formula}")
    return ModelSelection(
        full=full,
        selected=selected,
        reduced=reduced,
        comparison=comparison,
        dropped_terms=dropped,
    )
