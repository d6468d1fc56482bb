"""Pandas DataFrame adapters for segmentation results.

Column names of the migration and KPI frames, and the ``Inactive`` segment
label, are a stable contract for downstream reporting tools.
"""

from typing import Dict, Sequence

import pandas as pd  # type: ignore

from segment_migration.analyses.kpis import SegmentChannelMix, SegmentKPI
from segment_migration.analyses.migration import MigrationMetrics
from segment_migration.pipeline import SegmentationRun
from ._utils import decimal_to_float, frame_with_columns

MIGRATION_COLUMNS = [
    "prior_segment",
    "next_segment",
    "customer_count",
    "prior_window_id",
    "next_window_id",
]
KPI_COLUMNS = [
    "window_id",
    "segment",
    "customer_count",
    "avg_frequency",
    "avg_monetary",
    "total_monetary",
    "revenue_share_pct",
]
ASSIGNMENT_COLUMNS = [
    "customer_id",
    "window_id",
    "recency_days",
    "frequency",
    "monetary",
    "is_first_time",
    "r_score",
    "f_score",
    "m_score",
    "rfm_score",
    "segment",
]
RETENTION_COLUMNS = [
    "prior_window_id",
    "next_window_id",
    "from_segment",
    "customer_count",
    "retained_count",
    "retention_rate",
]
CHANNEL_MIX_COLUMNS = [
    "window_id",
    "segment",
    "acquisition_channel",
    "customer_count",
    "share_pct",
]


def migrations_to_dataframe(migrations: Sequence[MigrationMetrics]) -> pd.DataFrame:
    """Flatten migration edges of one or more window pairs.

    Args:
        migrations: Migration results, typically ``SegmentationRun.migrations``

    Returns:
        DataFrame with columns prior_segment, next_segment, customer_count,
        prior_window_id, next_window_id; one row per edge

    Example:
        >>> df = migrations_to_dataframe(run.migrations)
        >>> df[df["next_segment"] == "Inactive"]["customer_count"].sum()
    """
    rows = [
        {
            "prior_segment": edge.from_segment.value,
            "next_segment": edge.to_segment.value,
            "customer_count": edge.count,
            "prior_window_id": migration.prior_window_id,
            "next_window_id": migration.next_window_id,
        }
        for migration in migrations
        for edge in migration.edges
    ]
    return frame_with_columns(rows, MIGRATION_COLUMNS)


def kpis_to_dataframe(kpis: Sequence[SegmentKPI]) -> pd.DataFrame:
    """Convert segment KPIs to the KPI export layout."""
    rows = [
        {
            "window_id": kpi.window_id,
            "segment": kpi.segment.value,
            "customer_count": kpi.customer_count,
            "avg_frequency": decimal_to_float(kpi.avg_frequency),
            "avg_monetary": decimal_to_float(kpi.avg_monetary),
            "total_monetary": decimal_to_float(kpi.total_monetary),
            "revenue_share_pct": decimal_to_float(kpi.revenue_share_pct),
        }
        for kpi in kpis
    ]
    return frame_with_columns(rows, KPI_COLUMNS)


def assignments_to_dataframe(run: SegmentationRun) -> pd.DataFrame:
    """One row per customer per window with metrics, scores and segment."""
    segments = {(a.window_id, a.customer_id): a.segment for a in run.assignments}
    rows = [
        {
            "customer_id": s.customer_id,
            "window_id": s.window_id,
            "recency_days": s.metrics.recency_days,
            "frequency": s.metrics.frequency,
            "monetary": decimal_to_float(s.metrics.monetary),
            "is_first_time": s.is_first_time,
            "r_score": s.r_score,
            "f_score": s.f_score,
            "m_score": s.m_score,
            "rfm_score": s.rfm_score,
            "segment": segments[(s.window_id, s.customer_id)].value,
        }
        for s in run.scores
    ]
    return frame_with_columns(rows, ASSIGNMENT_COLUMNS)


def retention_to_dataframe(migrations: Sequence[MigrationMetrics]) -> pd.DataFrame:
    """Per-segment retention of every window pair."""
    rows = [
        {
            "prior_window_id": migration.prior_window_id,
            "next_window_id": migration.next_window_id,
            "from_segment": retention.segment.value,
            "customer_count": retention.customer_count,
            "retained_count": retention.retained_count,
            "retention_rate": decimal_to_float(retention.retention_rate),
        }
        for migration in migrations
        for retention in migration.segment_retention.values()
    ]
    return frame_with_columns(rows, RETENTION_COLUMNS)


def channel_mix_to_dataframe(mix: Sequence[SegmentChannelMix]) -> pd.DataFrame:
    """Convert the acquisition channel breakdown to a DataFrame."""
    rows = [
        {
            "window_id": m.window_id,
            "segment": m.segment.value,
            "acquisition_channel": m.acquisition_channel,
            "customer_count": m.customer_count,
            "share_pct": decimal_to_float(m.share_pct),
        }
        for m in mix
    ]
    return frame_with_columns(rows, CHANNEL_MIX_COLUMNS)


def run_to_dataframes(run: SegmentationRun) -> Dict[str, pd.DataFrame]:
    """Convert a whole run to DataFrames.

    Returns:
        Dictionary with keys 'migration', 'kpis', 'assignments', 'retention'
        and 'channel_mix'

    Example:
        >>> dfs = run_to_dataframes(run)
        >>> dfs["migration"].to_csv("segment_migration.csv", index=False)
    """
    return {
        "migration": migrations_to_dataframe(run.migrations),
        "kpis": kpis_to_dataframe(run.kpis),
        "assignments": assignments_to_dataframe(run),
        "retention": retention_to_dataframe(run.migrations),
        "channel_mix": channel_mix_to_dataframe(run.channel_mix),
    }
