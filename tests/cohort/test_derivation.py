"""Unit tests for src.cohort.derivation."""

import numpy as np
import pandas as pd
import pytest

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
from src.config.schema import AnalysisConfig, ColumnMap

BINS = (0, 50, 65, 80, 100)
LABELS = ("<50", "50-65", "65-80", "80+")

# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def raw_df():
    """Small raw dataset with one problem per row after the first two."""
    return pd.DataFrame(
        {
            "age": [45, 70, 82, 55, 130, 66],
            "sex": [0, 1, 1, 0, 1, 0],
            "cardiac_history": ["no", "yes", "yes", "no", "no", None],
            "outcome": [0, 1, 0, 0, 1, 0],
            "admission_date": [
                "2023-01-01",
                "2023-02-10",
                "not a date",
                "2023-03-05",
                "2023-04-01",
                "2023-05-01",
            ],
            "discharge_date": [
                "2023-01-05",
                "2023-02-10",
                "2023-03-01",
                "2023-03-01",
                "2023-04-03",
                "2023-05-04",
            ],
        }
    )


# ─────────────────────────────────────────────────────────────────────────────
# Tests for derive_age_group
# ─────────────────────────────────────────────────────────────────────────────


class TestDeriveAgeGroup:
    @pytest.mark.parametrize(
        "age, expected",
        [
            (0, "<50"),
            (49.9, "<50"),
            (50, "50-65"),
            (64, "50-65"),
            (65, "65-80"),
            (79.5, "65-80"),
            (80, "80+"),
            (99, "80+"),
        ],
    )
    def test_boundaries_are_left_closed(self, age, expected):
        result = derive_age_group(pd.Series([age]), BINS, LABELS)
        assert result.iloc[0] == expected

    @pytest.mark.parametrize("age", [-1, 100, 120, "unknown", None])
    def test_out_of_range_or_invalid_is_missing(self, age):
        result = derive_age_group(pd.Series([age], dtype=object), BINS, LABELS)
        assert pd.isna(result.iloc[0])

    def test_keeps_all_levels_in_order(self):
        result = derive_age_group(pd.Series([70, 45]), BINS, LABELS)
        assert list(result.cat.categories) == list(LABELS)
        assert result.cat.ordered


# ─────────────────────────────────────────────────────────────────────────────
# Tests for categorical casting and binary encoding
# ─────────────────────────────────────────────────────────────────────────────


class TestCastCategorical:
    def test_sorted_observed_levels(self):
        result = cast_categorical(pd.Series(["yes", "no", None, "yes"]))
        assert list(result.cat.categories) == ["no", "yes"]
        assert pd.isna(result.iloc[2])


class TestEncodeBinary:
    def test_encodes_in_category_order(self):
        result = encode_binary(pd.Series(["survived", "died", "survived"]))
        np.testing.assert_array_equal(result.to_numpy(), [1.0, 0.0, 1.0])

    def test_missing_stays_missing(self):
        result = encode_binary(pd.Series([0, None, 1]))
        assert pd.isna(result.iloc[1])
        assert result.iloc[2] == 1.0

    def test_raises_for_more_than_two_levels(self):
        with pytest.raises(ValueError, match="at most two levels"):
            encode_binary(pd.Series(["a", "b", "c"]))


# ─────────────────────────────────────────────────────────────────────────────
# Tests for compute_length_of_stay
# ─────────────────────────────────────────────────────────────────────────────


class TestComputeLengthOfStay:
    def test_whole_days(self):
        result = compute_length_of_stay(
            pd.Series(["2023-01-01", "2023-01-31"]), pd.Series(["2023-01-04", "2023-02-02"])
        )
        np.testing.assert_array_equal(result.to_numpy(), [3.0, 2.0])

    def test_same_day_is_zero(self):
        result = compute_length_of_stay(pd.Series(["2023-06-01"]), pd.Series(["2023-06-01"]))
        assert result.iloc[0] == 0.0

    def test_unparseable_date_is_missing(self):
        result = compute_length_of_stay(pd.Series(["garbage"]), pd.Series(["2023-01-04"]))
        assert pd.isna(result.iloc[0])

    def test_discharge_before_admission_is_missing(self, caplog):
        result = compute_length_of_stay(pd.Series(["2023-01-10"]), pd.Series(["2023-01-04"]))
        assert pd.isna(result.iloc[0])
        assert "discharge date before admission" in caplog.text

    def test_date_in_second_format_is_reported(self, caplog):
        result = compute_length_of_stay(
            pd.Series(["2023-01-01", "2023-01-31", "2023-01-05", None]),
            pd.Series(["2023-01-04", "2023-02-02", "03/01/2023", "2023-01-09"]),
        )
        assert result.iloc[:2].tolist() == [3.0, 2.0]
        assert pd.isna(result.iloc[2])
        assert pd.isna(result.iloc[3])
        assert "Excluding 1 row(s) with dates that could not be parsed" in caplog.text

    def test_explicit_date_format(self):
        result = compute_length_of_stay(
            pd.Series(["01/02/2023"]), pd.Series(["05/02/2023"]), date_format="%d/%m/%Y"
        )
        assert result.iloc[0] == 4.0


# ─────────────────────────────────────────────────────────────────────────────
# Tests for derive_dataset / filter_complete_cases
# ─────────────────────────────────────────────────────────────────────────────


class TestDeriveDataset:
    def test_adds_canonical_fields(self, raw_df):
        result = derive_dataset(raw_df)
        for col in REQUIRED_FIELDS:
            assert col in result.columns
        assert isinstance(result["sex"].dtype, pd.CategoricalDtype)
        assert isinstance(result["cardiac_history"].dtype, pd.CategoricalDtype)
        assert isinstance(result["outcome"].dtype, pd.CategoricalDtype)

    def test_does_not_modify_input(self, raw_df):
        original = raw_df.copy()
        derive_dataset(raw_df)
        pd.testing.assert_frame_equal(raw_df, original)

    def test_renamed_source_columns(self, raw_df):
        renamed = raw_df.rename(columns={"age": "AGE_YEARS", "outcome": "died"})
        config = AnalysisConfig(columns=ColumnMap(age="AGE_YEARS", outcome="died"))
        result = derive_dataset(renamed, config)
        assert result["age_group"].iloc[0] == "<50"
        assert result["outcome_code"].iloc[1] == 1.0


class TestFilterCompleteCases:
    def test_drops_incomplete_rows(self, raw_df):
        result = prepare_dataset(raw_df)
        # Row 2: bad date, row 3: negative stay, row 4: age out of range, row 5: missing cardiac history
        assert len(result) == 2
        assert list(result["age"]) == [45, 70]
        assert result[REQUIRED_FIELDS].notna().all().all()

    def test_length_of_stay_never_negative(self, raw_df):
        result = prepare_dataset(raw_df)
        assert (result["length_of_stay"] >= 0).all()

    def test_idempotent(self, raw_df):
        once = prepare_dataset(raw_df)
        twice = filter_complete_cases(once)
        pd.testing.assert_frame_equal(once, twice)

    def test_drops_levels_without_rows(self, raw_df, caplog):
        result = prepare_dataset(raw_df)
        # Retained ages 45 and 70
        assert list(result["age_group"].cat.categories) == ["<50", "65-80"]
        assert "no rows for level(s)" in caplog.text

    def test_raises_for_absent_field(self, raw_df):
        with pytest.raises(ValueError, match="absent field"):
            filter_complete_cases(raw_df, required=["length_of_stay"])
