"""Command line entry point for the segment migration engine."""

from __future__ import annotations

import argparse
import json
import logging
from datetime import date
from pathlib import Path

import pandas as pd

from segment_migration.errors import SegmentationError
from segment_migration.foundation.windows import PeriodGranularity
from segment_migration.pandas.records import (
    dataframe_to_customers,
    dataframe_to_transactions,
)
from segment_migration.pipeline import SegmentationConfig, run_segmentation
from segment_migration.reporting import (
    export_run_csvs,
    export_run_summary_json,
    write_markdown_report,
)

logger = logging.getLogger(__name__)


MAX_INPUT_BYTES = 25 * 1024 * 1024  # 25 MiB cap to avoid accidental OOM

EXIT_OK = 0
EXIT_WINDOW_FAILURE = 1
EXIT_INPUT_ERROR = 2
EXIT_OUTPUT_ERROR = 1


def _load_table(path: Path) -> pd.DataFrame:
    """Read a CSV or JSON (list of objects) input file as a DataFrame."""
    resolved = path.resolve()
    size = resolved.stat().st_size
    if size > MAX_INPUT_BYTES:
        raise ValueError(
            f"Input file {resolved} is {size} bytes; exceeds limit of {MAX_INPUT_BYTES} bytes"
        )

    suffix = path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(path, dtype=str, keep_default_na=False)
    if suffix == ".json":
        with path.open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
        if not isinstance(payload, list):
            raise ValueError(f"Expected a list of records in {path}")
        return pd.DataFrame(payload)
    raise ValueError(f"Unsupported input format {path.suffix!r}; use .csv or .json")


def _parse_start_date(text: str) -> date:
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"invalid date {text!r}; expected YYYY-MM-DD"
        ) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="segment-migration",
        description="Segment customers by RFM score per window and track "
        "segment migration between consecutive windows",
    )
    parser.add_argument(
        "transactions",
        type=Path,
        help="CSV or JSON file with columns customer_id, order_id, order_date, "
        "is_returned, amount_paid",
    )
    parser.add_argument(
        "--customers",
        type=Path,
        required=True,
        help="CSV or JSON file with columns customer_id, acquisition_channel",
    )
    parser.add_argument(
        "--start-date",
        type=_parse_start_date,
        required=True,
        help="First day of the first window (ISO format: YYYY-MM-DD)",
    )
    parser.add_argument(
        "--windows",
        type=int,
        default=2,
        help="Number of consecutive windows (default: 2)",
    )
    parser.add_argument(
        "--granularity",
        choices=[item.value for item in PeriodGranularity],
        default=PeriodGranularity.YEAR.value,
        help="Window length (default: year)",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("segment_migration_output"),
        help="Directory for CSV exports and the JSON summary",
    )
    parser.add_argument(
        "--report",
        type=Path,
        help="Optional path for a Markdown report",
    )
    parser.add_argument(
        "--potential-high-value-min-recency",
        type=int,
        help="Require r_score >= R for the Potential High-Value segment",
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Process windows in a process pool",
    )
    parser.add_argument(
        "--workers",
        type=int,
        help="Worker processes for --parallel (default: CPU count)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser


def segment_migration_cli(argv: list[str] | None = None) -> int:
    """Run segmentation and migration tracking from input files.

    Writes ``segment_migration.csv``, ``segment_kpis.csv``, the supplementary
    CSV exports and ``run_summary.json`` into ``--output-dir``.

    Args:
        argv: Command line arguments (defaults to sys.argv)

    Returns:
        0 on success, 1 when a window failed, none could be processed or the
        outputs could not be written,
        2 on input contract or configuration errors
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = SegmentationConfig(
            start_date=args.start_date,
            window_count=args.windows,
            granularity=PeriodGranularity(args.granularity),
            potential_high_value_min_recency=args.potential_high_value_min_recency,
            parallel=args.parallel,
            n_workers=args.workers,
        )

        logger.info(f"Loading transactions from {args.transactions}")
        txn_df = _load_table(args.transactions)
        if "is_returned" not in txn_df.columns:
            txn_df["is_returned"] = False
        transactions = dataframe_to_transactions(txn_df)

        logger.info(f"Loading customers from {args.customers}")
        customers = dataframe_to_customers(_load_table(args.customers))
    except SegmentationError as exc:
        logger.error(f"{type(exc).__name__}: {exc}")
        return EXIT_INPUT_ERROR
    except (OSError, ValueError) as exc:
        logger.error(f"Could not read input: {exc}")
        return EXIT_INPUT_ERROR

    logger.info(
        f"Loaded {len(transactions)} transactions and {len(customers)} customers"
    )

    try:
        run = run_segmentation(transactions, customers, config)
    except SegmentationError as exc:
        logger.error(f"{type(exc).__name__}: {exc}")
        return EXIT_INPUT_ERROR

    try:
        written = export_run_csvs(run, args.output_dir)
        summary_path = export_run_summary_json(
            run,
            args.output_dir / "run_summary.json",
            metadata={
                "transactions_file": str(args.transactions),
                "customers_file": str(args.customers),
                "granularity": config.granularity.value,
                "window_count": config.window_count,
                "potential_high_value_min_recency": config.potential_high_value_min_recency,
            },
        )
        if args.report:
            write_markdown_report(run, args.report)
    except OSError as exc:
        logger.error(f"Could not write output: {exc}")
        return EXIT_OUTPUT_ERROR

    for name, path in written.items():
        logger.info(f"  {name}: {path}")
    logger.info(f"  summary: {summary_path}")

    if not run.window_results:
        logger.error("No windows could be processed")
        return EXIT_WINDOW_FAILURE
    if run.failures:
        logger.error(f"{len(run.failures)} failure(s): {', '.join(run.failures)}")
        return EXIT_WINDOW_FAILURE
    return EXIT_OK


def main() -> None:
    raise SystemExit(segment_migration_cli())
