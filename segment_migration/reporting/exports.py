"""Export segmentation results to files.

This module writes the tabular exports consumed by downstream reporting and
visualisation tools (migration flows and segment KPIs), plus supplementary
per-customer, retention and channel breakdowns and a JSON run summary.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from segment_migration.pandas.exports import (
    kpis_to_dataframe,
    migrations_to_dataframe,
    run_to_dataframes,
)
from segment_migration.pipeline import SegmentationRun

logger = logging.getLogger(__name__)

#: File names written by :func:`export_run_csvs`, keyed by DataFrame name.
EXPORT_FILENAMES = {
    "migration": "segment_migration.csv",
    "kpis": "segment_kpis.csv",
    "assignments": "customer_segments.csv",
    "retention": "segment_retention.csv",
    "channel_mix": "segment_channel_mix.csv",
}


def export_migration_csv(run: SegmentationRun, output_path: str | Path) -> Path:
    """Write the migration export (one row per edge per window pair).

    Examples
    --------
    >>> export_migration_csv(run, "out/segment_migration.csv")
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    migrations_to_dataframe(run.migrations).to_csv(output_path, index=False)
    logger.info(f"Migration export written to {output_path}")
    return output_path


def export_kpis_csv(run: SegmentationRun, output_path: str | Path) -> Path:
    """Write the KPI export (one row per segment per window)."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    kpis_to_dataframe(run.kpis).to_csv(output_path, index=False)
    logger.info(f"KPI export written to {output_path}")
    return output_path


def export_run_csvs(run: SegmentationRun, output_dir: str | Path) -> dict[str, Path]:
    """Write every tabular export of ``run`` into ``output_dir``.

    Returns
    -------
    dict[str, Path]
        Written file paths keyed by export name
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    written: dict[str, Path] = {}
    for name, df in run_to_dataframes(run).items():
        path = output_dir / EXPORT_FILENAMES[name]
        df.to_csv(path, index=False)
        written[name] = path

    logger.info(f"Wrote {len(written)} exports to {output_dir}")
    return written


def run_summary(run: SegmentationRun) -> dict[str, Any]:
    """Build a JSON-serialisable summary of ``run``."""
    return {
        "windows": [
            {
                "window_id": w.window_id,
                "start_date": w.start_date.isoformat(),
                "end_date": w.end_date.isoformat(),
                "status": "failed" if w.window_id in run.failures else "ok",
                "active_customers": (
                    len(run.window_results[w.window_id].assignments)
                    if w.window_id in run.window_results
                    else None
                ),
            }
            for w in run.windows
        ],
        "migrations": [
            {
                "prior_window_id": m.prior_window_id,
                "next_window_id": m.next_window_id,
                "retained": len(m.retained),
                "churned": len(m.churned),
                "new": len(m.new),
                "reactivated": len(m.reactivated),
                "retention_rate": float(m.retention_rate),
                "churn_rate": float(m.churn_rate),
            }
            for m in run.migrations
        ],
        "failures": {
            key: {
                "error_type": type(error).__name__,
                "window_id": error.window_id,
                "field": error.field,
                "message": str(error),
            }
            for key, error in run.failures.items()
        },
    }


def export_run_summary_json(
    run: SegmentationRun,
    output_path: str | Path,
    metadata: dict[str, Any] | None = None,
) -> Path:
    """Write a JSON summary of window status, retention and failures.

    Parameters
    ----------
    run:
        Segmentation results
    output_path:
        Path where the JSON file will be saved
    metadata:
        Optional metadata to include (e.g. input file names)
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    report_data = {
        "metadata": metadata or {},
        "timestamp": datetime.now().isoformat(),
        **run_summary(run),
    }
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(report_data, f, indent=2)

    logger.info(f"Run summary exported to {output_path}")
    return output_path
