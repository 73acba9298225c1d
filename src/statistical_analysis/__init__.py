"""Statistical analysis module for ANOVA modelling of hospital length of stay."""

from src.statistical_analysis.models import (
    DegenerateDesignError,
    FittedModel,
    ModelComparison,
    ModelSelection,
    ModelSpec,
    compare_models,
    fit_anova_model,
    select_model,
    select_terms,
)
from src.statistical_analysis.pipeline import run_anova_pipeline, run_pipeline_from_csv
from src.statistical_analysis.posthoc import estimated_marginal_means, pairwise_tukey
from src.statistical_analysis.report import (
    ReportCollector,
    generate_markdown_report,
)
from src.statistical_analysis.statistical_tests import (
    DiagnosticResult,
    check_assumptions,
    normality_test,
    variance_homogeneity_test,
)
from src.statistical_analysis.transformation import (
    Transformation,
    boxcox_profile,
    choose_transformation,
    select_transformation,
)
from src.statistical_analysis.utils import cell_counts, group_summary, is_balanced, outcome_rates

__all__ = [
    # Main pipeline
    "run_anova_pipeline",
    "run_pipeline_from_csv",
    # Report generation
    "ReportCollector",
    "generate_markdown_report",
    # Assumption diagnostics
    "DiagnosticResult",
    "check_assumptions",
    "normality_test",
    "variance_homogeneity_test",
    # Transformation selection
    "Transformation",
    "boxcox_profile",
    "choose_transformation",
    "select_transformation",
    # Models
    "DegenerateDesignError",
    "FittedModel",
    "ModelComparison",
    "ModelSelection",
    "ModelSpec",
    "compare_models",
    "fit_anova_model",
    "select_model",
    "select_terms",
    # Post-hoc
    "estimated_marginal_means",
    "pairwise_tukey",
    # Summary tables
    "cell_counts",
    "group_summary",
    "is_balanced",
    "outcome_rates",
]
