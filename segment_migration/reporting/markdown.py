"""Markdown formatters for segmentation results.

Formats KPI and migration results as plain markdown tables for reports and
notebooks.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Sequence

from segment_migration.analyses.kpis import SegmentKPI
from segment_migration.analyses.migration import MigrationMetrics
from segment_migration.pipeline import SegmentationRun

logger = logging.getLogger(__name__)


def format_kpi_table(kpis: Sequence[SegmentKPI], window_id: str) -> str:
    """Format one window's segment KPIs as a markdown table.

    Parameters
    ----------
    kpis:
        Segment KPIs; rows of other windows are ignored
    window_id:
        Window to format

    Returns
    -------
    str:
        Markdown section with one row per segment
    """
    table = f"### Window {window_id}\n\n"
    table += "| Segment | Customers | Avg Orders | Avg Spend | Total Spend | Revenue Share |\n"
    table += "|---------|-----------|------------|-----------|-------------|---------------|\n"
    for kpi in kpis:
        if kpi.window_id != window_id:
            continue
        table += (
            f"| {kpi.segment.value} | {kpi.customer_count:,} | {kpi.avg_frequency} | "
            f"${kpi.avg_monetary:,.2f} | ${kpi.total_monetary:,.2f} | "
            f"{kpi.revenue_share_pct}% |\n"
        )
    return table


def format_migration_table(metrics: MigrationMetrics) -> str:
    """Format one window pair's migration as markdown tables.

    The first table summarises retention; the second lists every edge.
    """
    table = f"### {metrics.prior_window_id} → {metrics.next_window_id}\n\n"
    table += "| Metric | Value |\n"
    table += "|--------|-------|\n"
    table += f"| Retained Customers | {len(metrics.retained):,} |\n"
    table += f"| Churned Customers | {len(metrics.churned):,} |\n"
    table += f"| New Customers | {len(metrics.new):,} |\n"
    table += f"| Reactivated Customers | {len(metrics.reactivated):,} |\n"
    table += f"| Retention Rate | {metrics.retention_rate}% |\n"
    table += f"| Churn Rate | {metrics.churn_rate}% |\n"

    if metrics.segment_retention:
        table += "\n| Segment | Customers | Retained | Retention Rate |\n"
        table += "|---------|-----------|----------|----------------|\n"
        for retention in metrics.segment_retention.values():
            table += (
                f"| {retention.segment.value} | {retention.customer_count:,} | "
                f"{retention.retained_count:,} | {retention.retention_rate}% |\n"
            )

    if metrics.edges:
        table += "\n| From | To | Customers |\n"
        table += "|------|----|-----------|\n"
        for edge in metrics.edges:
            table += (
                f"| {edge.from_segment.value} | {edge.to_segment.value} | "
                f"{edge.count:,} |\n"
            )
    return table


def format_run_report(run: SegmentationRun) -> str:
    """Format a complete run as a markdown report."""
    lines = ["# Customer Segment Migration Report\n"]
    lines.append(f"**Generated:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append(
        f"**Windows:** {', '.join(w.window_id for w in run.windows)} "
        f"({run.windows[0].start_date} to {run.windows[-1].end_date})\n"
    )

    if run.failures:
        lines.append("## Failures\n")
        for key, error in run.failures.items():
            lines.append(f"- **{key}:** {type(error).__name__}: {error}")
        lines.append("")

    lines.append("## Segment KPIs\n")
    for window in run.windows:
        if window.window_id in run.window_results:
            lines.append(format_kpi_table(run.kpis, window.window_id))

    lines.append("## Segment Migration\n")
    if not run.migrations:
        lines.append("No consecutive window pairs were available.\n")
    for migration in run.migrations:
        lines.append(format_migration_table(migration))

    return "\n".join(lines)


def write_markdown_report(run: SegmentationRun, output_path: str | Path) -> Path:
    """Write :func:`format_run_report` output to ``output_path``."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        f.write(format_run_report(run))
    logger.info(f"Markdown report written to {output_path}")
    return output_path
