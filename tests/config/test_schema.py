"""Unit tests for src.config."""

import numpy as np
import pytest
from pydantic import ValidationError

from src.config import AnalysisConfig, get_default_config


class TestAnalysisConfig:
    def test_defaults(self):
        config = AnalysisConfig()
        assert config.alpha == 0.05
        assert config.factors == ("sex", "age_group", "cardiac_history")
        assert config.age_labels == ("<50", "50-65", "65-80", "80+")

    def test_is_frozen(self):
        config = AnalysisConfig()
        with pytest.raises(ValidationError):
            config.alpha = 0.1

    def test_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            AnalysisConfig(alpah=0.1)

    @pytest.mark.parametrize("alpha", [0, 1, -0.05, 1.5])
    def test_rejects_invalid_alpha(self, alpha):
        with pytest.raises(ValidationError):
            AnalysisConfig(alpha=alpha)

    def test_rejects_unsorted_bins(self):
        with pytest.raises(ValidationError, match="strictly increasing"):
            AnalysisConfig(age_bins=(0, 65, 50, 80, 100))

    def test_rejects_label_count_mismatch(self):
        with pytest.raises(ValidationError, match="age labels"):
            AnalysisConfig(age_labels=("young", "old"))

    def test_rejects_posthoc_factor_outside_model(self):
        with pytest.raises(ValidationError, match="posthoc_factor"):
            AnalysisConfig(posthoc_factor="ward")


class TestLambdaGrid:
    def test_default_grid(self):
        grid = AnalysisConfig().lambda_grid()
        assert len(grid) == 41
        assert grid[0] == -2.0
        assert grid[-1] == 2.0
        assert 0.0 in grid

    def test_custom_grid(self):
        grid = AnalysisConfig(lambda_min=-1, lambda_max=1, lambda_step=0.5).lambda_grid()
        np.testing.assert_allclose(grid, [-1.0, -0.5, 0.0, 0.5, 1.0])


class TestGetDefaultConfig:
    def test_overrides_take_precedence(self):
        config = get_default_config(alpha=0.01, transformation_policy="never")
        assert config.alpha == 0.01
        assert config.transformation_policy == "never"

    def test_none_overrides_are_ignored(self):
        config = get_default_config(alpha=None)
        assert 0 < config.alpha < 1
