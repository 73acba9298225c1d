"""Integration tests: error rates of the post-hoc and model selection steps under the null hypothesis.

Generates many synthetic datasets in which the compared groups share the
same distribution and checks that Tukey-adjusted comparisons and the
nested F-test do not reject more often than expected (~5%).
"""

import pytest

from src.config.schema import AnalysisConfig
from src.statistical_analysis.models import ModelSpec, compare_models, fit_anova_model
from src.statistical_analysis.pipeline import run_anova_pipeline
from src.statistical_analysis.posthoc import pairwise_tukey
from tests.statistical_analysis.generate_synthetic_cohort import (
    AGE_GROUPS,
    generate_design_frame,
    generate_synthetic_cohort,
)

N_SIMULATIONS = 500
ALPHA = 0.05
MAX_FALSE_POSITIVE_RATE = ALPHA + 3e-2


@pytest.mark.integration_statistical_analysis
def test_tukey_familywise_error_rate_under_null():
    """With equal group means, at most ~5% of datasets should have any significant pair."""
    spec = ModelSpec.full_factorial("response", ["age_group"])
    rejections = 0

    for seed in range(N_SIMULATIONS):
        df = generate_design_frame(seed=seed, levels={"age_group": AGE_GROUPS}, cell_size=8)
        table = pairwise_tukey(fit_anova_model(df, spec), "age_group", alpha=ALPHA)

        if table["reject"].any():
            rejections += 1

    false_positive_rate = rejections / N_SIMULATIONS

    assert false_positive_rate <= MAX_FALSE_POSITIVE_RATE, (
        f"Family-wise error rate {false_positive_rate:.3f} ({rejections}/{N_SIMULATIONS}) "
        f"exceeds maximum allowed rate of {MAX_FALSE_POSITIVE_RATE}"
    )


@pytest.mark.integration_statistical_analysis
def test_nested_f_test_false_positive_rate_under_null():
    """When the dropped interaction has no effect, the F-test should prefer the full model ~5% of the time."""
    levels = {"age_group": AGE_GROUPS, "cardiac_history": ["no", "yes"]}
    full_spec = ModelSpec.full_factorial("response", list(levels))
    reduced_spec = full_spec.with_terms([("age_group",), ("cardiac_history",)])
    rejections = 0

    for seed in range(N_SIMULATIONS):
        df = generate_design_frame(
            seed=seed,
            levels=levels,
            cell_size=5,
            effects={"age_group": {"80+": 1.0}, "cardiac_history": {"yes": 0.5}},
        )
        comparison = compare_models(
            fit_anova_model(df, full_spec), fit_anova_model(df, reduced_spec), alpha=ALPHA
        )

        if comparison.preferred == "full":
            rejections += 1

    false_positive_rate = rejections / N_SIMULATIONS

    assert false_positive_rate <= MAX_FALSE_POSITIVE_RATE, (
        f"False positive rate {false_positive_rate:.3f} ({rejections}/{N_SIMULATIONS}) "
        f"exceeds maximum allowed rate of {MAX_FALSE_POSITIVE_RATE}"
    )


@pytest.mark.integration_statistical_analysis
@pytest.mark.parametrize("seed", range(10))
def test_pipeline_runs_on_random_designs(seed):
    """Random cell sizes between 3 and 20 must always yield a selected model."""
    raw_df = generate_synthetic_cohort(seed=seed)
    output = run_anova_pipeline(raw_df, AnalysisConfig(transformation_policy="always"))

    assert output["selection"].selected is not None
    assert output["transformation"] is not None
