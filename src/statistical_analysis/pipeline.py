import logging

from src.cohort.derivation import LENGTH_OF_STAY, prepare_dataset
from src.cohort.ingestion import load_dataset
from src.config.schema import AnalysisConfig
from src.statistical_analysis.models import ModelSpec, fit_anova_model, select_model
from src.statistical_analysis.posthoc import estimated_marginal_means, pairwise_tukey
from src.statistical_analysis.statistical_tests import check_assumptions
from src.statistical_analysis.transformation import apply_transformation, choose_transformation
from src.statistical_analysis.utils import cell_counts, group_summary, is_balanced, outcome_rates

logger = logging.getLogger(__name__)

WORKING_RESPONSE = "response"


def run_anova_pipeline(raw_df, config: AnalysisConfig | None = None):
    """
    Run the length-of-stay ANOVA pipeline on a raw clinical dataset.

    Derives and filters the analysis fields, checks model assumptions on the
    raw response, selects a response transformation, fits and compares the
    full factorial model against a reduced model, and runs Tukey-adjusted
    pairwise comparisons on the selected model.

    Parameters
    ----------
    raw_df : pd.DataFrame
        Dataset as loaded from the source file.
    config : AnalysisConfig, optional
        Analysis parameters. Defaults to ``AnalysisConfig()``.

    Returns
    -------
    dict
        Named results:
        - "dataset": filtered dataset with the working response column
        - "cell_counts", "balanced", "group_summary", "outcome_rates": summary tables
        - "diagnostics": normality and homogeneity results on the raw response
        - "transformation", "boxcox_profile": selected transformation and search profile
        - "selection": ModelSelection with full, reduced and selected models
        - "anova_full", "anova_reduced": ANOVA tables (reduced may be None)
        - "model_comparison": ModelComparison or None
        - "emmeans": marginal means of the post-hoc factor per stratum
        - "posthoc_marginal", "posthoc_stratified": Tukey comparison tables

    Raises
    ------
    ValueError
        If no rows remain after filtering.
    DegenerateDesignError
        If a model cannot be estimated from the data.
    """
    config = config or AnalysisConfig()
    factors = list(config.factors)

    ##############################
    # Derivation & filtering
    ##############################

    df = prepare_dataset(raw_df, config)
    if len(df) == 0:
        raise ValueError("No complete rows left after filtering. Cannot proceed with analysis.")

    logger.info(f"Analysis dataset: {len(df)} of {len(raw_df)} rows retained")

    counts = cell_counts(df, factors)
    balanced = is_balanced(counts)
    if not balanced:
        logger.info(
            f"Unbalanced design: cell sizes range from {counts['n'].min()} to {counts['n'].max()}"
        )

    out = {
        "cell_counts": counts,
        "balanced": balanced,
        "group_summary": group_summary(df, LENGTH_OF_STAY, factors),
        "outcome_rates": outcome_rates(df, config.posthoc_factor),
    }

    ##############################
    # Assumption diagnostics
    ##############################

    raw_spec = ModelSpec.full_factorial(LENGTH_OF_STAY, factors)
    baseline = fit_anova_model(df, raw_spec, anova_type=config.anova_type)
    diagnostics = check_assumptions(baseline, df, alpha=config.alpha)
    out["diagnostics"] = diagnostics

    ##############################
    # Transformation selection
    ##############################

    transformation, profile = choose_transformation(df, raw_spec, diagnostics, config)
    df = apply_transformation(df, transformation, LENGTH_OF_STAY, WORKING_RESPONSE)
    out["transformation"] = transformation
    out["boxcox_profile"] = profile

    ##############################
    # Model fitting & selection
    ##############################

    full_spec = raw_spec.with_response(WORKING_RESPONSE)
    selection = select_model(df, full_spec, alpha=config.alpha, anova_type=config.anova_type)
    out["selection"] = selection
    out["anova_full"] = selection.full.anova
    out["anova_reduced"] = selection.reduced.anova if selection.reduced is not None else None
    out["model_comparison"] = selection.comparison

    ##############################
    # Post-hoc comparisons
    ##############################

    working = selection.selected
    factor = config.posthoc_factor
    by = config.posthoc_by

    out["emmeans"] = None
    out["posthoc_marginal"] = None
    out["posthoc_stratified"] = None

    if factor not in working.spec.factors:
        logger.warning(f"'{factor}' is not in the selected model; skipping post-hoc comparisons")
    else:
        out["posthoc_marginal"] = pairwise_tukey(working, factor, alpha=config.alpha)

        if by is not None and by in working.spec.factors:
            emmeans = estimated_marginal_means(working, factor, by=by, alpha=config.alpha)
            out["posthoc_stratified"] = pairwise_tukey(working, factor, by=by, alpha=config.alpha)
        else:
            if by is not None:
                logger.warning(f"'{by}' is not in the selected model; skipping stratified comparisons")
            emmeans = estimated_marginal_means(working, factor, alpha=config.alpha)

        # Marginal means back on the length-of-stay scale
        emmeans["emmean_los"] = transformation.inverse(emmeans["emmean"])
        out["emmeans"] = emmeans

    out["dataset"] = df

    logger.info(
        f"Pipeline finished: working response {transformation.description}, "
        f"selected model {working.spec.name}"
    )
    return out


def run_pipeline_from_csv(path, config: AnalysisConfig | None = None):
    """Load a dataset file and run ``run_anova_pipeline`` on it."""
    config = config or AnalysisConfig()
    raw_df = load_dataset(path, config.columns)
    return run_anova_pipeline(raw_df, config)
