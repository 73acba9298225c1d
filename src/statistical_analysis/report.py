"""
Report generation for ANOVA pipeline results.

This module provides functionality to collect pipeline results from one or
more datasets and generate a consolidated Markdown report.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import pandas as pd

logger = logging.getLogger(__name__)


@dataclass
class DatasetResult:
    """Results from analyzing a single dataset."""

    dataset_id: str
    source: str
    n_rows: int = 0
    transformation: str = None
    full_model: str = None
    selected_model: str = None
    comparison_p_value: float = None
    delta_aic: float = None
    n_significant_pairs: int = 0
    tables: dict = field(default_factory=dict)
    diagnostics: dict = field(default_factory=dict)
    notes: list = field(default_factory=list)
    plot_path: str = None
    error: str = None


def _format_value(value):
    if isinstance(value, float):
        if pd.isna(value):
            return "-"
        return f"{value:.4g}"
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


def _markdown_table(df: pd.DataFrame) -> list[str]:
    """Render a DataFrame as Markdown table lines."""
    if df is None or df.empty:
        return ["_No rows._"]
    header = "| " + " | ".join(str(c) for c in df.columns) + " |"
    divider = "|" + "|".join(":---" for _ in df.columns) + "|"
    rows = [
        "| " + " | ".join(_format_value(v) for v in row) + " |"
        for row in df.itertuples(index=False, name=None)
    ]
    return [header, divider, *rows]


class ReportCollector:
    """Collects pipeline results from multiple datasets for report generation."""

    def __init__(self):
        self.results: list[DatasetResult] = []

    def add_result(
        self,
        dataset_id: str,
        source: str,
        pipeline_output: dict = None,
        plot_path: str = None,
        error: str = None,
    ):
        """
        Add analysis result for a dataset.

        Parameters
        ----------
        dataset_id : str
            Unique identifier for the dataset.
        source : str
            Source of the dataset (e.g., CSV filename).
        pipeline_output : dict, optional
            Output from run_anova_pipeline().
        plot_path : str, optional
            Path to saved plot image.
        error : str, optional
            Error message if analysis failed.
        """
        result = DatasetResult(dataset_id=dataset_id, source=source, error=error)

        if pipeline_output and not error:
            selection = pipeline_output["selection"]
            result.n_rows = len(pipeline_output["dataset"])
            result.transformation = pipeline_output["transformation"].description
            result.full_model = selection.full.spec.formula
            result.selected_model = selection.selected.spec.formula

            comparison = pipeline_output.get("model_comparison")
            if comparison is not None:
                result.comparison_p_value = comparison.p_value
                result.delta_aic = comparison.delta_aic
                result.notes.append(
                    f"Nested F-test: F({comparison.df_diff:.0f}, {comparison.df_resid_full:.0f}) = "
                    f"{comparison.f_statistic:.3f}, p = {comparison.p_value:.4f}; "
                    f"{comparison.preferred} model preferred"
                )
                result.notes.append(
                    f"AIC full = {comparison.aic_full:.2f}, reduced = {comparison.aic_reduced:.2f} "
                    f"(difference {comparison.delta_aic:.2f}, {comparison.aic_evidence}); "
                    f"BIC full = {comparison.bic_full:.2f}, reduced = {comparison.bic_reduced:.2f} "
                    f"(difference {comparison.delta_bic:.2f}, {comparison.bic_evidence})"
                )

            if selection.dropped_terms:
                dropped = ", ".join(":".join(t) for t in selection.dropped_terms)
                result.notes.append(f"Dropped terms: {dropped}")

            for name, diag in pipeline_output["diagnostics"].items():
                result.diagnostics[name] = diag

            for key in (
                "cell_counts",
                "anova_full",
                "anova_reduced",
                "emmeans",
                "posthoc_marginal",
                "posthoc_stratified",
            ):
                table = pipeline_output.get(key)
                if table is not None:
                    result.tables[key] = table

            posthoc = pipeline_output.get("posthoc_marginal")
            if posthoc is not None and not posthoc.empty:
                result.n_significant_pairs = int(posthoc["reject"].sum())

            result.plot_path = plot_path

        self.results.append(result)

    def get_summary_stats(self) -> dict:
        """
        Calculate summary statistics across all datasets.

        Returns
        -------
        dict
            Counts of analyzed, failed and reduced-model datasets.
        """
        successful = [r for r in self.results if r.error is None]
        reduced = [r for r in successful if r.selected_model and r.selected_model != r.full_model]

        return {
            "total_datasets": len(self.results),
            "successful_analyses": len(successful),
            "failed_analyses": len(self.results) - len(successful),
            "reduced_models": len(reduced),
        }


TABLE_TITLES = {
    "cell_counts": "Cell counts",
    "anova_full": "ANOVA (full model)",
    "anova_reduced": "ANOVA (reduced model)",
    "emmeans": "Estimated marginal means",
    "posthoc_marginal": "Tukey comparisons (marginal)",
    "posthoc_stratified": "Tukey comparisons (per stratum)",
}


def generate_markdown_report(collector: ReportCollector, output_path: str) -> str:
    """
    Generate a Markdown report from collected analysis results.

    Parameters
    ----------
    collector : ReportCollector
        Collector containing analysis results.
    output_path : str
        Path to save the Markdown report.

    Returns
    -------
    str
        Path to the generated report.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    stats = collector.get_summary_stats()
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    lines = []

    # Header
    lines.append("# Length of Stay ANOVA Report")
    lines.append("")
    lines.append(f"**Generated:** {timestamp}")
    lines.append("")

    # Summary section
    lines.append("## Summary")
    lines.append("")
    lines.append(f"- **Datasets analyzed:** {stats['total_datasets']}")
    lines.append(f"- **Successful analyses:** {stats['successful_analyses']}")
    lines.append(f"- **Failed analyses:** {stats['failed_analyses']}")
    lines.append(f"- **Reduced model selected:** {stats['reduced_models']}")
    lines.append("")

    # Results table
    lines.append("## Results Overview")
    lines.append("")
    lines.append("| ID | Source | Rows | Transformation | Selected model | F-test p-value | Status |")
    lines.append("|:---|:-------|:-----|:---------------|:---------------|:---------------|:-------|")

    for r in collector.results:
        if r.error:
            status = "Error"
            rows = transformation = selected = comparison_p = "-"
        else:
            status = "OK"
            rows = str(r.n_rows)
            transformation = r.transformation or "-"
            selected = f"`{r.selected_model}`" if r.selected_model else "-"
            comparison_p = f"{r.comparison_p_value:.4f}" if r.comparison_p_value is not None else "-"

        source_display = r.source
        if len(source_display) > 40:
            source_display = "..." + source_display[-37:]

        lines.append(
            f"| {r.dataset_id} | {source_display} | {rows} | {transformation} | {selected} | {comparison_p} | {status} |"
        )

    lines.append("")

    # Detailed results section
    lines.append("## Detailed Results")
    lines.append("")

    for r in collector.results:
        lines.append(f"### Dataset {r.dataset_id}")
        lines.append("")
        lines.append(f"**Source:** {r.source}")
        lines.append("")

        if r.error:
            lines.append(f"**Error:** {r.error}")
            lines.append("")
            continue

        lines.append(f"**Rows analyzed:** {r.n_rows}")
        lines.append("")

        if r.diagnostics:
            lines.append("**Assumption checks (raw response):**")
            for name, diag in r.diagnostics.items():
                verdict = "met" if diag.assumption_met else "violated"
                lines.append(
                    f"- {name}: {diag.test_name}, statistic = {diag.statistic:.4f}, "
                    f"p = {diag.p_value:.4f} ({verdict})"
                )
            lines.append("")

        lines.append(f"**Working response:** {r.transformation}")
        lines.append("")
        lines.append(f"**Full model:** `{r.full_model}`")
        lines.append("")
        lines.append(f"**Selected model:** `{r.selected_model}`")
        lines.append("")

        for note in r.notes:
            lines.append(f"- {note}")
        if r.notes:
            lines.append("")

        for key, title in TABLE_TITLES.items():
            if key in r.tables:
                lines.append(f"#### {title}")
                lines.append("")
                lines.extend(_markdown_table(r.tables[key]))
                lines.append("")

        # Plot
        if r.plot_path:
            # Use relative path from report location
            plot_rel_path = Path(r.plot_path).name
            lines.append(
                f'<img src="figures/{plot_rel_path}" alt="Analysis plots for dataset {r.dataset_id}" height="400">'
            )
            lines.append("")

    # Write report
    report_content = "\n".join(lines)
    output_path.write_text(report_content)

    logger.info(f"Report generated: {output_path}")
    return str(output_path)
