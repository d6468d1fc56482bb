"""Segment analyses built on window-level RFM scores.

1. Segment classification - one named segment per customer per window
2. Segment migration - transitions between consecutive windows
3. Segment KPIs - per-window, per-segment roll-ups
"""

from .kpis import (
    SegmentChannelMix,
    SegmentKPI,
    aggregate_channel_mix,
    aggregate_segment_kpis,
)
from .migration import (
    MigrationEdge,
    MigrationMetrics,
    SegmentRetention,
    track_migration,
)
from .segments import (
    SEGMENT_ORDER,
    SEGMENT_RULES,
    Segment,
    SegmentAssignment,
    SegmentRule,
    build_segment_rules,
    classify_customer,
    classify_scores,
    classify_window,
)

__all__ = [
    # Classification
    "SEGMENT_ORDER",
    "SEGMENT_RULES",
    "Segment",
    "SegmentAssignment",
    "SegmentRule",
    "build_segment_rules",
    "classify_customer",
    "classify_scores",
    "classify_window",
    # Migration
    "MigrationEdge",
    "MigrationMetrics",
    "SegmentRetention",
    "track_migration",
    # KPIs
    "SegmentChannelMix",
    "SegmentKPI",
    "aggregate_channel_mix",
    "aggregate_segment_kpis",
]
