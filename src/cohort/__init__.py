"""Cohort module for loading the clinical dataset and deriving analysis fields."""

from src.cohort.derivation import (
    REQUIRED_FIELDS,
    cast_categorical,
    compute_length_of_stay,
    derive_age_group,
    derive_dataset,
    encode_binary,
    filter_complete_cases,
    prepare_dataset,
)
from src.cohort.ingestion import IngestionError, load_dataset, validate_columns

__all__ = [
    # Ingestion
    "IngestionError",
    "load_dataset",
    "validate_columns",
    # Derivation
    "REQUIRED_FIELDS",
    "cast_categorical",
    "compute_length_of_stay",
    "derive_age_group",
    "derive_dataset",
    "encode_binary",
    # Filtering
    "filter_complete_cases",
    "prepare_dataset",
]
