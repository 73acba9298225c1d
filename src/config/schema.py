from typing import Literal

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------- Source columns ----------


class ColumnMap(BaseModel):
    """Names of the source columns in the raw dataset."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    age: str = "age"
    sex: str = "sex"
    cardiac_history: str = "cardiac_history"
    outcome: str = "outcome"
    admission_date: str = "admission_date"
    discharge_date: str = "discharge_date"

    def required(self) -> list[str]:
        return [
            self.age,
            self.sex,
            self.cardiac_history,
            self.outcome,
            self.admission_date,
            self.discharge_date,
        ]


# ---------- Analysis parameters ----------


class AnalysisConfig(BaseModel):
    """Frozen set of parameters for one run of the analysis pipeline."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    columns: ColumnMap = Field(default_factory=ColumnMap)

    age_bins: tuple[float, ...] = (0, 50, 65, 80, 100)
    age_labels: tuple[str, ...] = ("<50", "50-65", "65-80", "80+")
    date_format: str | None = None

    alpha: float = Field(default=0.05, gt=0, lt=1)
    factors: tuple[str, ...] = ("sex", "age_group", "cardiac_history")
    anova_type: Literal[1, 2] = 2

    transformation_policy: Literal["auto", "always", "never"] = "auto"
    response_offset: float = Field(default=1.0, gt=0)
    lambda_min: float = -2.0
    lambda_max: float = 2.0
    lambda_step: float = Field(default=0.1, gt=0)
    log_tolerance: float = Field(default=0.1, ge=0)

    posthoc_factor: str = "age_group"
    posthoc_by: str | None = "cardiac_history"

    @model_validator(mode="after")
    def _check_consistency(self):
        if len(self.age_bins) < 2:
            raise ValueError("age_bins must contain at least two edges")
        if any(hi <= lo for lo, hi in zip(self.age_bins[:-1], self.age_bins[1:])):
            raise ValueError("age_bins must be strictly increasing")
        if len(self.age_labels) != len(self.age_bins) - 1:
            raise ValueError(
                f"Expected {len(self.age_bins) - 1} age labels, got {len(self.age_labels)}"
            )
        if self.lambda_min >= self.lambda_max:
            raise ValueError("lambda_min must be smaller than lambda_max")
        if not self.factors:
            raise ValueError("factors must not be empty")
        if self.posthoc_factor not in self.factors:
            raise ValueError(f"posthoc_factor '{self.posthoc_factor}' is not a model factor")
        if self.posthoc_by is not None and self.posthoc_by not in self.factors:
            raise ValueError(f"posthoc_by '{self.posthoc_by}' is not a model factor")
        return self

    def lambda_grid(self) -> np.ndarray:
        """Box-Cox lambda values searched by the transformation stage, end points included."""
        n_steps = int(round((self.lambda_max - self.lambda_min) / self.lambda_step))
        grid = self.lambda_min + self.lambda_step * np.arange(n_steps + 1)
        return np.round(grid, 10)
