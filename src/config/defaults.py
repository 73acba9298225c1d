"""Environment-driven defaults for the analysis configuration."""

import os

from .schema import AnalysisConfig

# Defaults (can be overridden via environment variables)
DEFAULT_ALPHA = float(os.getenv("LOS_ANOVA_ALPHA", "0.05"))
DEFAULT_DATE_FORMAT = os.getenv("LOS_ANOVA_DATE_FORMAT") or None
DEFAULT_TRANSFORMATION_POLICY = os.getenv("LOS_ANOVA_TRANSFORMATION", "auto")


def get_default_config(**overrides) -> AnalysisConfig:
    """
    Get the default analysis configuration.

    Significance level, date format and transformation policy can be
    overridden via the LOS_ANOVA_ALPHA, LOS_ANOVA_DATE_FORMAT and
    LOS_ANOVA_TRANSFORMATION environment variables. Keyword arguments take
    precedence over both.

    Raises
    ------
    pydantic.ValidationError
        If any resulting value is invalid.
    """
    params = {
        "alpha": DEFAULT_ALPHA,
        "date_format": DEFAULT_DATE_FORMAT,
        "transformation_policy": DEFAULT_TRANSFORMATION_POLICY,
    }
    params.update({k: v for k, v in overrides.items() if v is not None})
    return AnalysisConfig(**params)
