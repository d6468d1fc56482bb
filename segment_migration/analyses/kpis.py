"""Per-window, per-segment KPI roll-ups.

Summarises each segment of each window for reporting: how many customers it
holds, how often and how much they buy, and what share of the window's
revenue the segment accounts for. Also breaks segments down by the static
acquisition channel of their customers.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Sequence

from segment_migration.analyses.segments import SEGMENT_ORDER, Segment, SegmentAssignment
from segment_migration.errors import InvariantError
from segment_migration.foundation.records import Customer
from segment_migration.foundation.rfm import WindowRFMMetrics

logger = logging.getLogger(__name__)

# Standard percentage precision: 2 decimal places (e.g., 45.67%)
PERCENTAGE_PRECISION = Decimal("0.01")
VALUE_PRECISION = Decimal("0.01")

#: Channel reported for customers missing from the customer table.
UNKNOWN_CHANNEL = "unknown"


@dataclass(frozen=True)
class SegmentKPI:
    """Summary statistics for one segment in one window.

    Attributes
    ----------
    window_id:
        Window the statistics belong to
    segment:
        Segment being summarised
    customer_count:
        Customers assigned to the segment
    avg_frequency:
        Mean number of orders per customer
    avg_monetary:
        Mean amount paid per customer
    total_monetary:
        Total amount paid by the segment
    revenue_share_pct:
        Segment total as a percentage of the window total
    """

    window_id: str
    segment: Segment
    customer_count: int
    avg_frequency: Decimal
    avg_monetary: Decimal
    total_monetary: Decimal
    revenue_share_pct: Decimal

    def __post_init__(self) -> None:
        """Validate KPI values."""
        if self.customer_count < 1:
            raise InvariantError(
                f"Segment KPI needs at least one customer: {self.customer_count}",
                window_id=self.window_id,
                field="customer_count",
            )
        if self.total_monetary < 0:
            raise InvariantError(
                f"Total monetary cannot be negative: {self.total_monetary}",
                window_id=self.window_id,
                field="total_monetary",
            )
        if not 0 <= self.revenue_share_pct <= 100:
            raise InvariantError(
                f"Revenue share must be 0-100: {self.revenue_share_pct}",
                window_id=self.window_id,
                field="revenue_share_pct",
            )


@dataclass(frozen=True)
class SegmentChannelMix:
    """Customers of one segment acquired through one channel."""

    window_id: str
    segment: Segment
    acquisition_channel: str
    customer_count: int
    share_pct: Decimal


def _group_by_window(
    assignments: Sequence[SegmentAssignment],
) -> dict[str, list[SegmentAssignment]]:
    # Insertion order keeps windows in the order they were first seen.
    grouped: dict[str, list[SegmentAssignment]] = {}
    for assignment in assignments:
        grouped.setdefault(assignment.window_id, []).append(assignment)
    return grouped


def _raise_for_duplicates(counts: Counter, source: str) -> None:
    duplicates = [key for key, count in counts.items() if count > 1]
    if duplicates:
        window_id, _ = duplicates[0]
        raise InvariantError(
            f"Duplicate customer IDs found in {source}: "
            f"{[customer_id for _, customer_id in duplicates[:5]]}",
            window_id=window_id,
            field="customer_id",
        )


def aggregate_segment_kpis(
    assignments: Sequence[SegmentAssignment],
    metrics: Sequence[WindowRFMMetrics],
) -> list[SegmentKPI]:
    """Aggregate segment statistics per ``(window, segment)``.

    Parameters
    ----------
    assignments:
        Segment assignments for one or more windows
    metrics:
        Window metrics of the same customers and windows

    Returns
    -------
    list[SegmentKPI]
        One row per populated segment, ordered by window (first appearance)
        then segment priority

    Raises
    ------
    InvariantError
        If an assignment has no metrics for its customer and window, or
        if a customer appears more than once per window in either input.

    Examples
    --------
    >>> from decimal import Decimal
    >>> metrics = [
    ...     WindowRFMMetrics("C1", "2024", 3, 2, Decimal("300")),
    ...     WindowRFMMetrics("C2", "2024", 40, 1, Decimal("100")),
    ... ]
    >>> assignments = [
    ...     SegmentAssignment("C1", "2024", Segment.CHAMPIONS),
    ...     SegmentAssignment("C2", "2024", Segment.LOST),
    ... ]
    >>> [float(k.revenue_share_pct) for k in aggregate_segment_kpis(assignments, metrics)]
    [75.0, 25.0]
    """
    metric_counts = Counter((m.window_id, m.customer_id) for m in metrics)
    _raise_for_duplicates(metric_counts, "metrics")
    assignment_counts = Counter((a.window_id, a.customer_id) for a in assignments)
    _raise_for_duplicates(assignment_counts, "segment assignments")
    metrics_index = {(m.window_id, m.customer_id): m for m in metrics}

    kpis: list[SegmentKPI] = []
    for window_id, window_assignments in _group_by_window(assignments).items():
        by_segment: dict[Segment, list[WindowRFMMetrics]] = {}
        for assignment in window_assignments:
            customer_metrics = metrics_index.get((window_id, assignment.customer_id))
            if customer_metrics is None:
                raise InvariantError(
                    f"Customer {assignment.customer_id} has a segment assignment "
                    f"but no metrics",
                    window_id=window_id,
                    field="customer_id",
                )
            by_segment.setdefault(assignment.segment, []).append(customer_metrics)

        window_total = sum(
            (m.monetary for members in by_segment.values() for m in members),
            Decimal("0"),
        )

        for segment in sorted(by_segment, key=SEGMENT_ORDER.__getitem__):
            members = by_segment[segment]
            count = len(members)
            total_monetary = sum((m.monetary for m in members), Decimal("0"))
            total_orders = sum(m.frequency for m in members)
            if window_total > 0:
                revenue_share = (total_monetary / window_total * 100).quantize(
                    PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP
                )
            else:
                revenue_share = Decimal("0")

            kpis.append(
                SegmentKPI(
                    window_id=window_id,
                    segment=segment,
                    customer_count=count,
                    avg_frequency=(Decimal(total_orders) / count).quantize(
                        VALUE_PRECISION, rounding=ROUND_HALF_UP
                    ),
                    avg_monetary=(total_monetary / count).quantize(
                        VALUE_PRECISION, rounding=ROUND_HALF_UP
                    ),
                    total_monetary=total_monetary.quantize(
                        VALUE_PRECISION, rounding=ROUND_HALF_UP
                    ),
                    revenue_share_pct=revenue_share,
                )
            )
    return kpis


def aggregate_channel_mix(
    assignments: Sequence[SegmentAssignment],
    customers: Sequence[Customer],
) -> list[SegmentChannelMix]:
    """Break each window's segments down by acquisition channel.

    Customers without a customer record are counted under
    :data:`UNKNOWN_CHANNEL` and reported in a warning.
    """
    channels = {c.customer_id: c.acquisition_channel for c in customers}
    missing = sorted({a.customer_id for a in assignments} - channels.keys())
    if missing:
        logger.warning(
            f"{len(missing)} assigned customers have no customer record; "
            f"reporting them under channel '{UNKNOWN_CHANNEL}'. First 5: {missing[:5]}"
        )

    mix: list[SegmentChannelMix] = []
    for window_id, window_assignments in _group_by_window(assignments).items():
        segment_sizes = Counter(a.segment for a in window_assignments)
        channel_counts = Counter(
            (a.segment, channels.get(a.customer_id, UNKNOWN_CHANNEL))
            for a in window_assignments
        )
        for (segment, channel), count in sorted(
            channel_counts.items(),
            key=lambda item: (SEGMENT_ORDER[item[0][0]], item[0][1]),
        ):
            mix.append(
                SegmentChannelMix(
                    window_id=window_id,
                    segment=segment,
                    acquisition_channel=channel,
                    customer_count=count,
                    share_pct=(
                        Decimal(count) / Decimal(segment_sizes[segment]) * 100
                    ).quantize(PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP),
                )
            )
    return mix
