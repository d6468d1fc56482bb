"""Segment migration between consecutive windows.

Joins two windows' segment assignments and answers questions like:
- How many customers moved from each segment to each other segment?
- How many customers were retained vs. churned?
- How many customers were acquired, and how many of those were reactivations?
- Which segments retain their customers best?

Customers are outer-joined on customer_id. A customer missing from a window
appears there as the ``Inactive`` segment, so every customer active in either
window contributes to exactly one migration edge.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence

from segment_migration.analyses.segments import (
    SEGMENT_ORDER,
    Segment,
    SegmentAssignment,
)
from segment_migration.errors import InvariantError

RATE_SUM_TOLERANCE = Decimal("0.1")  # Tolerance for retention + churn = 100%
PERCENTAGE_PRECISION = Decimal("0.01")


@dataclass(frozen=True)
class MigrationEdge:
    """Number of customers moving from one segment to another.

    ``from_segment`` or ``to_segment`` is ``Segment.INACTIVE`` when the customer
    had no assignment in the corresponding window.
    """

    from_segment: Segment
    to_segment: Segment
    count: int

    def __post_init__(self) -> None:
        if self.count < 1:
            raise InvariantError(
                f"Migration edge count must be positive: {self.count} "
                f"({self.from_segment.value} -> {self.to_segment.value})",
                field="count",
            )
        if self.from_segment is Segment.INACTIVE and self.to_segment is Segment.INACTIVE:
            raise InvariantError(
                "Migration edge cannot connect Inactive to Inactive",
                field="segment",
            )


@dataclass(frozen=True)
class SegmentRetention:
    """Retention of the customers that started in one segment.

    Attributes
    ----------
    segment:
        Segment in the earlier window
    customer_count:
        Customers in that segment in the earlier window
    retained_count:
        Of those, customers active (in any segment) in the later window
    retention_rate:
        retained_count / customer_count, as a percentage
    """

    segment: Segment
    customer_count: int
    retained_count: int
    retention_rate: Decimal


@dataclass(frozen=True)
class MigrationMetrics:
    """Migration between a prior and a next window.

    Attributes
    ----------
    prior_window_id, next_window_id:
        Windows being compared (None when inferred from empty inputs)
    edges:
        Aggregated transitions, sorted by segment priority (Inactive last)
    retained:
        Customers active in both windows
    churned:
        Customers active in the prior window only
    new:
        Customers active in the next window only (includes reactivations)
    reactivated:
        Subset of ``new`` that was active in some window before the prior one
    retention_rate:
        Percentage of prior-window customers still active in the next window
    churn_rate:
        Percentage of prior-window customers inactive in the next window
    segment_retention:
        Retention grouped by prior-window segment
    """

    prior_window_id: str | None
    next_window_id: str | None
    edges: tuple[MigrationEdge, ...]
    retained: frozenset[str]
    churned: frozenset[str]
    new: frozenset[str]
    reactivated: frozenset[str]
    retention_rate: Decimal
    churn_rate: Decimal
    segment_retention: dict[Segment, SegmentRetention] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate migration metrics."""
        if self.retained & self.churned or self.retained & self.new or self.churned & self.new:
            raise InvariantError(
                "Customer IDs cannot be in more than one of retained, churned and new",
                window_id=self.next_window_id,
                field="migration",
            )
        if not self.reactivated.issubset(self.new):
            raise InvariantError(
                "Reactivated customers must be a subset of new customers",
                window_id=self.next_window_id,
                field="reactivated",
            )
        edge_total = sum(edge.count for edge in self.edges)
        customer_total = len(self.retained) + len(self.churned) + len(self.new)
        if edge_total != customer_total:
            raise InvariantError(
                f"Migration edges count {edge_total} customers but "
                f"{customer_total} customers are active in either window",
                window_id=self.next_window_id,
                field="edges",
            )
        rate_sum = self.retention_rate + self.churn_rate
        if rate_sum > 0 and abs(rate_sum - 100) > RATE_SUM_TOLERANCE:
            raise InvariantError(
                f"Retention rate ({self.retention_rate}) + churn rate ({self.churn_rate}) "
                f"must equal 100, got {rate_sum}",
                window_id=self.next_window_id,
                field="retention_rate",
            )

    @property
    def total_customers(self) -> int:
        """Customers active in either window."""
        return len(self.retained) + len(self.churned) + len(self.new)


def _percentage(part: int, whole: int) -> Decimal:
    if whole == 0:
        return Decimal("0")
    return (Decimal(part) / Decimal(whole) * 100).quantize(
        PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP
    )


def _index_assignments(
    assignments: Sequence[SegmentAssignment], label: str, window_id: str | None
) -> tuple[dict[str, Segment], str | None]:
    window_ids = {a.window_id for a in assignments}
    if window_id is not None:
        window_ids.add(window_id)
    if len(window_ids) > 1:
        raise InvariantError(
            f"{label} assignments span several windows: {sorted(window_ids)}",
            field="window_id",
        )

    counts = Counter(a.customer_id for a in assignments)
    duplicates = [cid for cid, count in counts.items() if count > 1]
    if duplicates:
        raise InvariantError(
            f"Duplicate customer IDs found in {label} assignments: {duplicates[:5]}",
            window_id=next(iter(window_ids)),
            field="customer_id",
        )
    resolved = next(iter(window_ids)) if window_ids else None
    return {a.customer_id: a.segment for a in assignments}, resolved


def track_migration(
    previous: Sequence[SegmentAssignment],
    current: Sequence[SegmentAssignment],
    *,
    prior_window_id: str | None = None,
    next_window_id: str | None = None,
    all_customer_history: Iterable[str] | None = None,
) -> MigrationMetrics:
    """Compare two consecutive windows' segment assignments.

    Parameters
    ----------
    previous:
        Assignments of the earlier window. Must contain unique customer IDs.
    current:
        Assignments of the later window. Must contain unique customer IDs.
    prior_window_id, next_window_id:
        Optional explicit window ids. Needed to label the result when a side
        is empty; must agree with the assignments otherwise.
    all_customer_history:
        Optional IDs of customers active in any window *before* the earlier
        one. Enables identification of reactivated customers among the new
        ones; reactivated is empty when omitted.

    Returns
    -------
    MigrationMetrics
        Migration edges and retention summary. Empty inputs produce zero edges.

    Raises
    ------
    InvariantError
        On duplicate customers or assignments that mix windows.

    Examples
    --------
    >>> prev = [SegmentAssignment("C1", "2023", Segment.CHAMPIONS),
    ...         SegmentAssignment("C2", "2023", Segment.LOYAL_CUSTOMERS)]
    >>> curr = [SegmentAssignment("C1", "2024", Segment.AT_RISK)]
    >>> result = track_migration(prev, curr)
    >>> [(e.from_segment.value, e.to_segment.value, e.count) for e in result.edges]
    [('Champions', 'At Risk', 1), ('Loyal Customers', 'Inactive', 1)]
    >>> float(result.retention_rate)
    50.0
    """
    prior_segments, prior_window_id = _index_assignments(
        previous, "previous", prior_window_id
    )
    next_segments, next_window_id = _index_assignments(
        current, "current", next_window_id
    )

    prior_customers = frozenset(prior_segments)
    next_customers = frozenset(next_segments)
    retained = prior_customers & next_customers
    churned = prior_customers - next_customers
    new = next_customers - prior_customers

    if all_customer_history is not None:
        reactivated = new & (frozenset(all_customer_history) - prior_customers)
    else:
        reactivated = frozenset()

    transitions: Counter[tuple[Segment, Segment]] = Counter()
    for customer_id in prior_customers | next_customers:
        transitions[
            (
                prior_segments.get(customer_id, Segment.INACTIVE),
                next_segments.get(customer_id, Segment.INACTIVE),
            )
        ] += 1

    edges = tuple(
        MigrationEdge(from_segment=from_seg, to_segment=to_seg, count=count)
        for (from_seg, to_seg), count in sorted(
            transitions.items(),
            key=lambda item: (SEGMENT_ORDER[item[0][0]], SEGMENT_ORDER[item[0][1]]),
        )
    )

    segment_sizes = Counter(prior_segments.values())
    segment_retained = Counter(prior_segments[cid] for cid in retained)
    segment_retention = {
        segment: SegmentRetention(
            segment=segment,
            customer_count=size,
            retained_count=segment_retained.get(segment, 0),
            retention_rate=_percentage(segment_retained.get(segment, 0), size),
        )
        for segment, size in sorted(
            segment_sizes.items(), key=lambda item: SEGMENT_ORDER[item[0]]
        )
    }

    return MigrationMetrics(
        prior_window_id=prior_window_id,
        next_window_id=next_window_id,
        edges=edges,
        retained=retained,
        churned=churned,
        new=new,
        reactivated=reactivated,
        retention_rate=_percentage(len(retained), len(prior_customers)),
        churn_rate=_percentage(len(churned), len(prior_customers)),
        segment_retention=segment_retention,
    )
