import logging

import numpy as np
import pandas as pd

from src.config.schema import AnalysisConfig

logger = logging.getLogger(__name__)

# Canonical field names of the derived dataset
AGE = "age"
AGE_GROUP = "age_group"
SEX = "sex"
CARDIAC_HISTORY = "cardiac_history"
OUTCOME = "outcome"
OUTCOME_CODE = "outcome_code"
LENGTH_OF_STAY = "length_of_stay"

REQUIRED_FIELDS = [AGE_GROUP, SEX, CARDIAC_HISTORY, OUTCOME, OUTCOME_CODE, LENGTH_OF_STAY]


def derive_age_group(age, bins, labels) -> pd.Series:
    """
    Bin a numeric age into an ordered categorical using half-open intervals.

    Each interval is ``[lower, upper)``, so a boundary value belongs to the
    interval that starts at it. Non-numeric and out-of-range ages become missing.

    Parameters
    ----------
    age : pd.Series
        Age values, numeric or parseable as numeric.
    bins : sequence of float
        Strictly increasing interval edges, e.g. ``(0, 50, 65, 80, 100)``.
    labels : sequence of str
        One label per interval.

    Returns
    -------
    pd.Series
        Ordered categorical with every label as a category, used or not.
    """
    numeric_age = pd.to_numeric(pd.Series(age), errors="coerce")
    return pd.cut(numeric_age, bins=list(bins), labels=list(labels), right=False)


def cast_categorical(series) -> pd.Series:
    """Cast a field to categorical dtype with its sorted observed levels."""
    series = pd.Series(series)
    levels = sorted(series.dropna().unique())
    return pd.Series(pd.Categorical(series, categories=levels), index=series.index)


def encode_binary(series) -> pd.Series:
    """
    Encode a two-level factor as 0.0 / 1.0 following its category order.

    Missing values stay missing.

    Raises
    ------
    ValueError
        If the factor has more than two levels.
    """
    categorical = cast_categorical(series)
    n_levels = len(categorical.cat.categories)
    if n_levels > 2:
        raise ValueError(
            f"Binary encoding requires at most two levels, found {n_levels}: "
            f"{list(categorical.cat.categories)}"
        )
    codes = categorical.cat.codes.astype(float)
    return codes.where(codes >= 0, np.nan)


def compute_length_of_stay(admission, discharge, date_format=None) -> pd.Series:
    """
    Compute length of stay in whole days as discharge date minus admission date.

    Unparseable dates yield a missing value rather than an error. Stays whose
    discharge precedes the admission are set to missing as well, so a
    retained length of stay is never negative.

    Returns
    -------
    pd.Series
        Float series of non-negative day counts, NaN where undefined.
    """
    admission = pd.Series(admission)
    discharge = pd.Series(discharge)
    admitted = pd.to_datetime(admission, format=date_format, errors="coerce")
    discharged = pd.to_datetime(discharge, format=date_format, errors="coerce")

    n_missing = int((admission.isna() | discharge.isna()).sum())
    if n_missing:
        logger.debug(f"{n_missing} row(s) with a missing admission or discharge date")

    unparsed = (admission.notna() & admitted.isna()) | (discharge.notna() & discharged.isna())
    if unparsed.any():
        expected = f"format {date_format}" if date_format else "the format inferred from the first date"
        logger.warning(
            f"Excluding {int(unparsed.sum())} row(s) with dates that could not be parsed "
            f"(expected {expected})"
        )

    los = (discharged - admitted).dt.days.astype(float)

    negative = los < 0
    if negative.any():
        logger.warning(
            f"Excluding {int(negative.sum())} row(s) with discharge date before admission date"
        )
        los = los.mask(negative)

    return los


def derive_dataset(raw: pd.DataFrame, config: AnalysisConfig | None = None) -> pd.DataFrame:
    """
    Compute the derived fields used by the analysis.

    Adds (or overwrites) the canonical fields ``age``, ``age_group``, ``sex``,
    ``cardiac_history``, ``outcome``, ``outcome_code`` and ``length_of_stay``
    on a copy of ``raw``. Other columns are carried over untouched.

    Parameters
    ----------
    raw : pd.DataFrame
        Dataset as returned by ``load_dataset``.
    config : AnalysisConfig, optional
        Column names, age bins and date format. Defaults to ``AnalysisConfig()``.

    Returns
    -------
    pd.DataFrame
        New DataFrame; ``raw`` is not modified.
    """
    config = config or AnalysisConfig()
    cols = config.columns

    # Read every source column before any canonical field overwrites it
    age = pd.to_numeric(raw[cols.age], errors="coerce")
    sex = raw[cols.sex]
    cardiac = raw[cols.cardiac_history]
    outcome = raw[cols.outcome]
    admission = raw[cols.admission_date]
    discharge = raw[cols.discharge_date]

    df = raw.copy()
    df[AGE] = age
    df[AGE_GROUP] = derive_age_group(age, config.age_bins, config.age_labels)
    df[SEX] = cast_categorical(sex)
    df[CARDIAC_HISTORY] = cast_categorical(cardiac)
    df[OUTCOME] = cast_categorical(outcome)
    df[OUTCOME_CODE] = encode_binary(outcome)
    df[LENGTH_OF_STAY] = compute_length_of_stay(admission, discharge, config.date_format)

    n_out_of_range = int((age.notna() & df[AGE_GROUP].isna()).sum())
    if n_out_of_range:
        logger.warning(f"{n_out_of_range} row(s) with age outside {config.age_bins[0]}-{config.age_bins[-1]}")

    return df


def filter_complete_cases(df: pd.DataFrame, required=None) -> pd.DataFrame:
    """
    Drop rows with a missing value in any required field. No imputation.

    Filtering an already filtered dataset returns an identical dataset.

    Parameters
    ----------
    df : pd.DataFrame
        Derived dataset.
    required : list of str, optional
        Fields that must be populated. Defaults to ``REQUIRED_FIELDS``.

    Returns
    -------
    pd.DataFrame
        Filtered copy with a fresh RangeIndex.
    """
    required = REQUIRED_FIELDS if required is None else list(required)
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ValueError(f"Cannot filter on absent field(s): {', '.join(missing)}")

    filtered = df.dropna(subset=required).reset_index(drop=True)

    n_dropped = len(df) - len(filtered)
    if n_dropped:
        logger.info(f"Dropped {n_dropped} of {len(df)} row(s) with missing required fields")

    # Levels without any retained row are not part of the design
    for col in filtered.columns:
        if isinstance(filtered[col].dtype, pd.CategoricalDtype):
            observed = set(filtered[col].dropna().unique())
            unused = [c for c in filtered[col].cat.categories if c not in observed]
            if unused:
                logger.warning(f"Field '{col}' has no rows for level(s) {unused}; dropping them")
                filtered[col] = filtered[col].cat.remove_unused_categories()

    return filtered


def prepare_dataset(raw: pd.DataFrame, config: AnalysisConfig | None = None) -> pd.DataFrame:
    """Derive the analysis fields and drop incomplete rows."""
    return filter_complete_cases(derive_dataset(raw, config))
