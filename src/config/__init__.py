"""Analysis parameters and their environment defaults."""

from src.config.defaults import get_default_config
from src.config.schema import AnalysisConfig, ColumnMap

__all__ = [
    "AnalysisConfig",
    "ColumnMap",
    "get_default_config",
]
