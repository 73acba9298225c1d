import logging
from pathlib import Path

import pandas as pd

from src.config.schema import ColumnMap

logger = logging.getLogger(__name__)


class IngestionError(Exception):
    """Raised when the source dataset cannot be read or lacks required columns."""

    pass


def validate_columns(df: pd.DataFrame, columns: ColumnMap | None = None) -> None:
    """
    Check that all source columns needed by the derivation stage are present.

    Raises
    ------
    IngestionError
        If one or more columns are missing, with all of them listed.
    """
    columns = columns or ColumnMap()
    missing = [col for col in columns.required() if col not in df.columns]
    if missing:
        raise IngestionError(f"Dataset is missing required column(s): {', '.join(missing)}")


def load_dataset(path, columns: ColumnMap | None = None) -> pd.DataFrame:
    """
    Load a flat tabular dataset (rows = subjects) from a CSV or TSV file.

    Parameters
    ----------
    path : str or Path
        Path to the file. Files ending in ``.tsv`` are read tab-separated.
    columns : ColumnMap, optional
        Source column names to validate. Defaults to ``ColumnMap()``.

    Returns
    -------
    pd.DataFrame
        The raw dataset, unmodified apart from pandas type inference.

    Raises
    ------
    IngestionError
        If the file does not exist, is empty or malformed, or lacks a required column.
    """
    path = Path(path)
    if not path.is_file():
        raise IngestionError(f"Dataset file does not exist: {path}")

    sep = "\t" if path.suffix.lower() == ".tsv" else ","
    try:
        df = pd.read_csv(path, sep=sep)
    except pd.errors.EmptyDataError as e:
        raise IngestionError(f"Dataset file is empty: {path}") from e
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise IngestionError(f"Could not parse dataset {path}: {e}") from e

    validate_columns(df, columns)

    logger.info(f"Loaded {len(df)} rows and {len(df.columns)} columns from {path.name}")
    return df
