import argparse
import logging
import pathlib
import sys
from datetime import datetime

from dotenv import load_dotenv

load_dotenv()

from src.cohort import IngestionError, load_dataset, prepare_dataset
from src.config import get_default_config
from src.statistical_analysis.pipeline import run_anova_pipeline
from src.statistical_analysis.plotting import plot_analysis_output
from src.statistical_analysis.report import ReportCollector, generate_markdown_report
from src.statistical_analysis.utils import cell_counts, is_balanced

DATASET_SUFFIXES = (".csv", ".tsv")


def configure_logging(log_level: str):
    """Configure logging with the specified level."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True,
    )
    return logging.getLogger(__name__)


def _resolve_dataset_sources(csv_arg: str) -> list[pathlib.Path]:
    """Resolve --csv argument into a list of dataset files.

    Accepts a single CSV/TSV file or a directory of them.
    """
    path = pathlib.Path(csv_arg)

    if path.is_file():
        if path.suffix.lower() not in DATASET_SUFFIXES:
            raise SystemExit(f"Not a CSV/TSV file: {path}")
        return [path.resolve()]

    if path.is_dir():
        files = sorted(p for p in path.iterdir() if p.suffix.lower() in DATASET_SUFFIXES)
        if not files:
            raise SystemExit(f"No CSV/TSV files found in directory: {path}")
        return [p.resolve() for p in files]

    raise SystemExit(f"Path does not exist: {path}")


def cmd_analyze(args):
    """Run the ANOVA pipeline on one or more datasets."""
    logger = configure_logging(args.log_level)
    config = get_default_config(alpha=args.alpha, transformation_policy=args.transformation)

    # Setup report collector if report is requested
    report_collector = ReportCollector() if args.report else None
    report_plots_enabled = args.report and args.report_plots

    # Setup report output paths
    if args.report:
        if args.report is True:
            # Default path
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            report_path = pathlib.Path(f"reports/anova_report_{timestamp}.md")
        else:
            report_path = pathlib.Path(args.report)

        # Create figures directory if report plots are enabled
        if report_plots_enabled:
            figures_dir = report_path.parent / "figures"
            figures_dir.mkdir(parents=True, exist_ok=True)

    sources = _resolve_dataset_sources(args.csv)
    logger.info(f"Found {len(sources)} dataset(s) to analyze")

    # Determine if interactive plotting should be enabled
    plot_enabled = args.plot and len(sources) == 1
    if args.plot and len(sources) > 1:
        logger.warning(
            "Interactive plotting is only supported for a single dataset. Plotting will be disabled."
        )

    for idx, source in enumerate(sources, start=1):
        dataset_id = str(idx)
        logger.info(f"Processing: {source.name}")
        output = None
        error_msg = None
        plot_path = None

        try:
            raw_df = load_dataset(source, config.columns)
            output = run_anova_pipeline(raw_df, config)
            logger.debug(f"Successfully processed {source.name}")
        except Exception as e:
            error_msg = str(e)
            logger.error(f"Error processing {source.name}: {error_msg}")

        # Handle plotting
        if output and not error_msg:
            try:
                if report_plots_enabled:
                    plot_path = str(figures_dir / f"dataset_{dataset_id}_plots.png")
                    plot_analysis_output(
                        output,
                        save_path=plot_path,
                        posthoc_factor=config.posthoc_factor,
                        posthoc_by=config.posthoc_by,
                    )
                elif plot_enabled:
                    plot_analysis_output(
                        output, posthoc_factor=config.posthoc_factor, posthoc_by=config.posthoc_by
                    )
            except Exception as e:
                logger.error(f"Plotting failed: {str(e)}")

        # Collect results for report
        if report_collector:
            report_collector.add_result(
                dataset_id=dataset_id,
                source=source.name,
                pipeline_output=output,
                plot_path=plot_path,
                error=error_msg,
            )

    # Generate report if requested
    if report_collector:
        generate_markdown_report(report_collector, str(report_path))
        logger.info(f"Report generated: {report_path}")


def cmd_summarize(args):
    """Print factor-level cell counts of a dataset to reveal design imbalance."""
    configure_logging(args.log_level)
    config = get_default_config()

    try:
        raw_df = load_dataset(args.csv, config.columns)
    except IngestionError as e:
        raise SystemExit(str(e))

    df = prepare_dataset(raw_df, config)
    factors = list(config.factors)
    counts = cell_counts(df, factors)

    # Print header
    header = " ".join(f"{f:<18}" for f in factors)
    print(f"\n{header} {'n':>6}")
    print("-" * (19 * len(factors) + 7))

    for row in counts.itertuples(index=False):
        cells = " ".join(f"{str(getattr(row, f)):<18}" for f in factors)
        print(f"{cells} {row.n:>6}")

    balance = "balanced" if is_balanced(counts) else "unbalanced"
    empty = int((counts["n"] == 0).sum())
    print(f"\nTotal: {len(df)} of {len(raw_df)} row(s) retained, {len(counts)} cell(s), design {balance}")
    if empty:
        print(f"Warning: {empty} empty cell(s); the full factorial model is not estimable")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="LOS ANOVA - Length of stay analysis of variance pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Analyze command
    analyze_parser = subparsers.add_parser(
        "analyze", help="Run the ANOVA pipeline on one or more datasets"
    )
    analyze_parser.add_argument(
        "--csv",
        required=True,
        help="Dataset CSV/TSV file or directory of datasets",
    )
    analyze_parser.add_argument(
        "--alpha",
        type=float,
        help="Significance level for all decision rules (default: 0.05 or LOS_ANOVA_ALPHA)",
    )
    analyze_parser.add_argument(
        "--transformation",
        choices=["auto", "always", "never"],
        help="Box-Cox search policy (default: auto, or LOS_ANOVA_TRANSFORMATION)",
    )
    analyze_parser.add_argument(
        "--plot",
        action="store_true",
        help="Show diagnostic and interpretive plots (only works with a single dataset)",
    )
    analyze_parser.add_argument(
        "--report",
        nargs="?",
        const=True,
        default=False,
        metavar="PATH",
        help="Generate a Markdown report. Optionally specify output path (default: reports/anova_report_<timestamp>.md)",
    )
    analyze_parser.add_argument(
        "--report-plots",
        action="store_true",
        help="Include plots in the report (requires --report)",
    )
    analyze_parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set logging level (default: INFO)",
    )
    analyze_parser.set_defaults(func=cmd_analyze)

    # Summarize command
    summarize_parser = subparsers.add_parser(
        "summarize", help="Print cell counts of the factor cross for a dataset"
    )
    summarize_parser.add_argument("--csv", required=True, help="Dataset CSV/TSV file")
    summarize_parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set logging level (default: WARNING)",
    )
    summarize_parser.set_defaults(func=cmd_summarize)

    args = parser.parse_args(sys.argv[1:] if argv is None else argv)

    if args.command is None:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
