"""Tests for report module."""

from pathlib import Path

import pytest

from src.config.schema import AnalysisConfig
from src.statistical_analysis.pipeline import run_anova_pipeline
from src.statistical_analysis.report import ReportCollector, generate_markdown_report
from tests.statistical_analysis.generate_synthetic_cohort import (
    UNBALANCED_CELL_SIZES,
    generate_synthetic_cohort,
)


@pytest.fixture(scope="module")
def pipeline_output():
    raw_df = generate_synthetic_cohort(seed=2, cell_sizes=UNBALANCED_CELL_SIZES)
    return run_anova_pipeline(raw_df, AnalysisConfig(transformation_policy="always"))


def test_collector_summary_stats(pipeline_output):
    collector = ReportCollector()
    collector.add_result(dataset_id="1", source="cohort.csv", pipeline_output=pipeline_output)
    collector.add_result(dataset_id="2", source="broken.csv", error="Dataset file is empty")

    stats = collector.get_summary_stats()
    assert stats["total_datasets"] == 2
    assert stats["successful_analyses"] == 1
    assert stats["failed_analyses"] == 1

    result = collector.results[0]
    assert result.n_rows == 100
    assert result.full_model == pipeline_output["selection"].full.spec.formula
    assert "anova_full" in result.tables
    assert set(result.diagnostics) == {"normality", "homogeneity"}


def test_generate_markdown_report_creates_valid_report(tmp_path, pipeline_output):
    """Test that generate_markdown_report creates a valid Markdown file."""
    collector = ReportCollector()
    collector.add_result(dataset_id="1", source="cohort.csv", pipeline_output=pipeline_output)
    collector.add_result(dataset_id="2", source="broken.csv", error="Dataset file is empty")

    report_path = tmp_path / "reports" / "report.md"
    result = generate_markdown_report(collector, str(report_path))

    assert Path(result).exists()
    content = report_path.read_text()
    assert "# Length of Stay ANOVA Report" in content
    assert "### Dataset 1" in content
    assert "#### ANOVA (full model)" in content
    assert "**Error:** Dataset file is empty" in content
    assert pipeline_output["transformation"].description in content
