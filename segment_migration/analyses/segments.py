"""Rule-based customer segment classification.

Each active customer in a window receives exactly one named segment. The
segment is chosen by an ordered decision list: rules are evaluated top to
bottom and the first rule whose predicate holds wins; later rules are never
consulted. Several predicates overlap (for instance "Potential Loyalists" and
"Can't Lose Them"), so the order of :data:`SEGMENT_RULES` is part of the
classification logic and must not be rearranged.

First-time customers (whose first ever purchase falls inside the window) are
split by monetary score before any behavioural rule applies. The final
catch-all rule makes the classification total for every valid score triple.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Callable, Sequence

from segment_migration.errors import ConfigurationError, InvariantError
from segment_migration.foundation.rfm import VALID_SCORES, ScoredRFMMetrics

logger = logging.getLogger(__name__)


class Segment(str, Enum):
    """Segment labels, in classification priority order.

    ``INACTIVE`` is reserved for migration tracking: it marks a customer with
    no assignment in a window and is never produced by the classifier.
    """

    FIRST_TIME_HIGH_VALUE = "First-Time High-Value"
    FIRST_TIME_LOW_VALUE = "First-Time Low-Value"
    FIRST_TIME_MID_VALUE = "First-Time Mid-Value"
    CHAMPIONS = "Champions"
    LOYAL_CUSTOMERS = "Loyal Customers"
    POTENTIAL_LOYALISTS = "Potential Loyalists"
    POTENTIAL_HIGH_VALUE = "Potential High-Value"
    BARGAIN_HUNTERS = "Bargain Hunters"
    PROMISING = "Promising"
    CANT_LOSE_THEM = "Can't Lose Them"
    AT_RISK = "At Risk"
    NEED_ATTENTION = "Need Attention"
    ABOUT_TO_SLEEP = "About To Sleep"
    LOST = "Lost"
    UNCLASSIFIED = "Unclassified"
    INACTIVE = "Inactive"

    def __str__(self) -> str:
        return self.value


#: Position of each segment in priority order; used to sort reports.
SEGMENT_ORDER = {segment: position for position, segment in enumerate(Segment)}


@dataclass(frozen=True)
class RuleInput:
    """Scores and first-purchase flag a rule predicate is evaluated against."""

    r: int
    f: int
    m: int
    is_first_time: bool


@dataclass(frozen=True)
class SegmentRule:
    """A ``(predicate, segment)`` pair of the decision list."""

    segment: Segment
    predicate: Callable[[RuleInput], bool]
    description: str


@dataclass(frozen=True)
class SegmentAssignment:
    """Segment assigned to one customer in one window."""

    customer_id: str
    window_id: str
    segment: Segment

    def __post_init__(self) -> None:
        if self.segment is Segment.INACTIVE:
            raise InvariantError(
                f"'{Segment.INACTIVE.value}' is reserved for migration tracking "
                f"(customer_id={self.customer_id})",
                window_id=self.window_id,
                field="segment",
            )


def _potential_high_value(s: RuleInput, min_recency: int | None) -> bool:
    if min_recency is not None and s.r < min_recency:
        return False
    return s.f == 1 and s.m >= 4


def build_segment_rules(
    potential_high_value_min_recency: int | None = None,
) -> tuple[SegmentRule, ...]:
    """Build the ordered decision list.

    Parameters
    ----------
    potential_high_value_min_recency:
        Optional minimum recency score for "Potential High-Value". The rule is
        ``f == 1 and m >= 4`` without a recency condition by default; some
        descriptions of the segment imply ``r >= 2``. Pass 2 to apply that
        guard explicitly.
    """
    if potential_high_value_min_recency is not None and (
        potential_high_value_min_recency not in VALID_SCORES
    ):
        raise ConfigurationError(
            f"Recency guard must be a score between 1 and 5: "
            f"{potential_high_value_min_recency}",
            field="potential_high_value_min_recency",
        )
    phv_description = "f == 1 and m >= 4"
    if potential_high_value_min_recency is not None:
        phv_description += f" and r >= {potential_high_value_min_recency}"

    return (
        SegmentRule(
            Segment.FIRST_TIME_HIGH_VALUE,
            lambda s: s.is_first_time and s.m >= 4,
            "first time and m >= 4",
        ),
        SegmentRule(
            Segment.FIRST_TIME_LOW_VALUE,
            lambda s: s.is_first_time and s.m <= 2,
            "first time and m <= 2",
        ),
        SegmentRule(
            Segment.FIRST_TIME_MID_VALUE,
            lambda s: s.is_first_time,
            "first time",
        ),
        SegmentRule(
            Segment.CHAMPIONS,
            lambda s: s.r >= 4 and s.f >= 4 and s.m >= 4,
            "r >= 4 and f >= 4 and m >= 4",
        ),
        SegmentRule(
            Segment.LOYAL_CUSTOMERS,
            lambda s: s.r >= 3 and s.f >= 3 and s.m >= 3,
            "r >= 3 and f >= 3 and m >= 3",
        ),
        SegmentRule(
            Segment.POTENTIAL_LOYALISTS,
            lambda s: s.r >= 4 and (s.f >= 3 or s.m >= 3),
            "r >= 4 and (f >= 3 or m >= 3)",
        ),
        SegmentRule(
            Segment.POTENTIAL_HIGH_VALUE,
            partial(
                _potential_high_value, min_recency=potential_high_value_min_recency
            ),
            phv_description,
        ),
        SegmentRule(
            Segment.BARGAIN_HUNTERS,
            lambda s: s.f >= 4 and s.m <= 2,
            "f >= 4 and m <= 2",
        ),
        SegmentRule(
            Segment.PROMISING,
            lambda s: s.r >= 3 and s.f <= 2 and s.m <= 3,
            "r >= 3 and f <= 2 and m <= 3",
        ),
        SegmentRule(
            Segment.CANT_LOSE_THEM,
            lambda s: s.f >= 3 and s.m >= 4 and s.r <= 2,
            "f >= 3 and m >= 4 and r <= 2",
        ),
        SegmentRule(
            Segment.AT_RISK,
            lambda s: s.m >= 3 and s.r <= 2,
            "m >= 3 and r <= 2",
        ),
        SegmentRule(
            Segment.NEED_ATTENTION,
            lambda s: s.r == 3 and s.f >= 2 and s.m <= 2,
            "r == 3 and f >= 2 and m <= 2",
        ),
        SegmentRule(
            Segment.ABOUT_TO_SLEEP,
            lambda s: s.r <= 2 and s.f <= 2 and s.m <= 2,
            "r <= 2 and f <= 2 and m <= 2",
        ),
        SegmentRule(
            Segment.LOST,
            lambda s: s.r == 1 and s.f == 1 and s.m <= 2,
            "r == 1 and f == 1 and m <= 2",
        ),
        SegmentRule(Segment.UNCLASSIFIED, lambda s: True, "always"),
    )


SEGMENT_RULES = build_segment_rules()


def classify_scores(
    r_score: int,
    f_score: int,
    m_score: int,
    is_first_time: bool,
    rules: Sequence[SegmentRule] = SEGMENT_RULES,
) -> Segment:
    """Return the segment of the first rule matching the given scores.

    Raises
    ------
    InvariantError
        If any score lies outside 1-5. Invalid scores are a scorer defect and
        never reach the rules.

    Examples
    --------
    >>> classify_scores(5, 4, 5, is_first_time=False)
    <Segment.CHAMPIONS: 'Champions'>
    >>> classify_scores(5, 4, 5, is_first_time=True)
    <Segment.FIRST_TIME_HIGH_VALUE: 'First-Time High-Value'>
    """
    for name, value in (("r_score", r_score), ("f_score", f_score), ("m_score", m_score)):
        if value not in VALID_SCORES:
            raise InvariantError(
                f"{name} must be between 1 and 5: {value}", field=name
            )

    rule_input = RuleInput(r=r_score, f=f_score, m=m_score, is_first_time=is_first_time)
    for rule in rules:
        if rule.predicate(rule_input):
            return rule.segment
    return Segment.UNCLASSIFIED


def classify_customer(
    scored: ScoredRFMMetrics, rules: Sequence[SegmentRule] = SEGMENT_RULES
) -> SegmentAssignment:
    """Classify a single scored customer."""
    try:
        segment = classify_scores(
            scored.r_score,
            scored.f_score,
            scored.m_score,
            scored.is_first_time,
            rules,
        )
    except InvariantError as exc:
        raise exc.with_window(scored.window_id) from exc
    return SegmentAssignment(
        customer_id=scored.customer_id,
        window_id=scored.window_id,
        segment=segment,
    )


def classify_window(
    scored: Sequence[ScoredRFMMetrics], rules: Sequence[SegmentRule] = SEGMENT_RULES
) -> list[SegmentAssignment]:
    """Classify every scored customer of one window.

    Returns
    -------
    list[SegmentAssignment]
        One assignment per customer, sorted by customer_id

    Raises
    ------
    InvariantError
        If a customer appears more than once or scores are out of range.
    """
    customer_counts = Counter(s.customer_id for s in scored)
    duplicates = [cid for cid, count in customer_counts.items() if count > 1]
    if duplicates:
        raise InvariantError(
            f"Duplicate customer IDs found in scored metrics: {duplicates[:5]}",
            window_id=scored[0].window_id,
            field="customer_id",
        )

    assignments = [classify_customer(s, rules) for s in scored]
    assignments.sort(key=lambda a: a.customer_id)

    unclassified = [
        a.customer_id for a in assignments if a.segment is Segment.UNCLASSIFIED
    ]
    if unclassified:
        logger.warning(
            f"{len(unclassified)} customers in window {assignments[0].window_id} "
            f"matched no segment rule and were marked '{Segment.UNCLASSIFIED.value}'. "
            f"First 5: {unclassified[:5]}"
        )
    return assignments
