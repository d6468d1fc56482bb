"""Window-level RFM (Recency-Frequency-Monetary) metrics and scores.

RFM analysis describes each customer along three dimensions:
- Recency: How recently did the customer purchase within the window?
- Frequency: How many distinct orders did they place?
- Monetary: How much did they pay in total?

Metrics are computed independently for every window from non-returned line
items only. Scores are window-local: quintiles are recomputed per window and a
customer's scores are never compared across windows directly.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping, Optional, Sequence

import numpy as np
import pandas as pd  # Used for rank-based quintile scoring

from segment_migration.errors import InvariantError
from segment_migration.foundation.records import Transaction, first_purchase_dates
from segment_migration.foundation.windows import Window

#: Number of groups used for rank-based scores.
SCORE_BINS = 5
VALID_SCORES = range(1, SCORE_BINS + 1)
MONEY_PRECISION = Decimal("0.01")


@dataclass(frozen=True)
class WindowRFMMetrics:
    """RFM metrics for a single customer within a single window.

    Attributes
    ----------
    customer_id:
        Unique customer identifier
    window_id:
        Identifier of the window the metrics belong to
    recency_days:
        Days between the customer's last purchase in the window and the
        window end (0 when the last purchase is on the final day)
    frequency:
        Number of distinct orders in the window
    monetary:
        Total amount paid in the window
    is_first_time:
        True when the customer's first ever purchase falls inside the window
    """

    customer_id: str
    window_id: str
    recency_days: int
    frequency: int
    monetary: Decimal
    is_first_time: bool = False

    def __post_init__(self) -> None:
        """Validate RFM metrics."""
        if self.recency_days < 0:
            raise InvariantError(
                f"Recency cannot be negative: {self.recency_days} (customer_id={self.customer_id})",
                window_id=self.window_id,
                field="recency_days",
            )
        if self.frequency < 1:
            raise InvariantError(
                f"Frequency must be positive: {self.frequency} (customer_id={self.customer_id})",
                window_id=self.window_id,
                field="frequency",
            )
        if self.monetary < 0:
            raise InvariantError(
                f"Monetary value cannot be negative: {self.monetary} (customer_id={self.customer_id})",
                window_id=self.window_id,
                field="monetary",
            )


def calculate_window_rfm(
    transactions: Sequence[Transaction],
    window: Window,
    first_purchases: Optional[Mapping[str, date]] = None,
) -> list[WindowRFMMetrics]:
    """Calculate RFM metrics for every customer active in ``window``.

    Only non-returned transactions dated inside the window (both ends
    inclusive) count. A customer whose window transactions were all returned
    is treated as inactive and produces no record.

    Parameters
    ----------
    transactions:
        The full transaction history. It is filtered here, never mutated.
    window:
        Window to compute metrics for.
    first_purchases:
        Optional mapping of customer_id to first non-returned purchase date,
        computed over the full history. Computed from ``transactions`` when
        omitted; pass it in when processing several windows to avoid
        recomputing it.

    Returns
    -------
    list[WindowRFMMetrics]
        One record per active customer, sorted by customer_id

    Examples
    --------
    >>> from datetime import date
    >>> from decimal import Decimal
    >>> from segment_migration.foundation.windows import Window
    >>> window = Window("H1", date(2024, 1, 1), date(2024, 6, 30))
    >>> txns = [
    ...     Transaction("C1", "A", date(2024, 5, 1), False, Decimal("50")),
    ...     Transaction("C1", "B", date(2024, 6, 15), False, Decimal("70")),
    ... ]
    >>> m = calculate_window_rfm(txns, window)[0]
    >>> (m.recency_days, m.frequency, m.monetary)
    (15, 2, Decimal('120.00'))
    """
    if first_purchases is None:
        first_purchases = first_purchase_dates(transactions)

    customer_data: dict[str, dict] = {}
    for txn in transactions:
        if txn.is_returned or not window.contains(txn.order_date):
            continue
        data = customer_data.setdefault(
            txn.customer_id,
            {
                "last_order_date": txn.order_date,
                "orders": set(),
                "total_spend": Decimal("0"),
            },
        )
        if txn.order_date > data["last_order_date"]:
            data["last_order_date"] = txn.order_date
        data["orders"].add(txn.order_id)
        data["total_spend"] += txn.amount_paid

    rfm_metrics: list[WindowRFMMetrics] = []
    for customer_id, data in customer_data.items():
        first_date = first_purchases.get(customer_id)
        rfm_metrics.append(
            WindowRFMMetrics(
                customer_id=customer_id,
                window_id=window.window_id,
                recency_days=(window.end_date - data["last_order_date"]).days,
                frequency=len(data["orders"]),
                monetary=data["total_spend"].quantize(
                    MONEY_PRECISION, rounding=ROUND_HALF_UP
                ),
                is_first_time=first_date is not None and window.contains(first_date),
            )
        )

    rfm_metrics.sort(key=lambda m: m.customer_id)
    return rfm_metrics


@dataclass(frozen=True)
class ScoredRFMMetrics:
    """Window metrics extended with 1-5 scores.

    Attributes
    ----------
    metrics:
        The underlying window metrics
    r_score:
        Recency score (1-5, where 5 = most recent)
    f_score:
        Frequency score (1, 4 or 5 from fixed thresholds)
    m_score:
        Monetary score (1-5, where 5 = highest spend)
    """

    metrics: WindowRFMMetrics
    r_score: int
    f_score: int
    m_score: int

    def __post_init__(self) -> None:
        """Validate RFM scores."""
        for score_name, score_value in [
            ("r_score", self.r_score),
            ("f_score", self.f_score),
            ("m_score", self.m_score),
        ]:
            if score_value not in VALID_SCORES:
                raise InvariantError(
                    f"{score_name} must be between 1 and 5: {score_value} "
                    f"(customer_id={self.customer_id})",
                    window_id=self.window_id,
                    field=score_name,
                )

    @property
    def customer_id(self) -> str:
        return self.metrics.customer_id

    @property
    def window_id(self) -> str:
        return self.metrics.window_id

    @property
    def is_first_time(self) -> bool:
        return self.metrics.is_first_time

    @property
    def rfm_score(self) -> str:
        """Combined score string, e.g. ``"545"``."""
        return f"{self.r_score}{self.f_score}{self.m_score}"


def frequency_score(frequency: int) -> int:
    """Map an order count to its fixed-threshold score.

    Three or more orders score 5, two orders score 4 and a single order scores
    1. Scores 2 and 3 are never produced.
    """
    if frequency >= 3:
        return 5
    if frequency == 2:
        return 4
    return 1


def quintile_scores(values: pd.Series, bins: int = SCORE_BINS) -> pd.Series:
    """Score ``values`` 1..bins by ascending rank into equal-sized groups.

    Ties are broken by position in ``values`` (``rank(method="first")``), so
    the result is reproducible. Rank positions are split with
    ``numpy.array_split``: group sizes differ by at most one and lower groups
    absorb the remainder. With fewer values than bins the top groups are empty.

    Examples
    --------
    >>> quintile_scores(pd.Series([10, 20, 30, 40, 50, 60])).tolist()
    [1, 1, 2, 3, 4, 5]
    """
    if values.empty:
        return pd.Series([], index=values.index, dtype=int)

    positions = values.rank(method="first").astype(int).to_numpy() - 1
    score_by_position = np.empty(len(values), dtype=int)
    for score, chunk in enumerate(np.array_split(np.arange(len(values)), bins), start=1):
        score_by_position[chunk] = score
    return pd.Series(score_by_position[positions], index=values.index)


def calculate_rfm_scores(rfm_metrics: Sequence[WindowRFMMetrics]) -> list[ScoredRFMMetrics]:
    """Score one window's RFM metrics.

    - Recency is ranked descending by days, so the most recent 20% score 5.
    - Frequency uses fixed thresholds (see :func:`frequency_score`).
    - Monetary is ranked ascending, so the top 20% of spenders score 5.

    Scoring is a whole-window computation: every customer of the window must
    be present before scores can be assigned.

    Parameters
    ----------
    rfm_metrics:
        Metrics of a single window, typically as returned by
        :func:`calculate_window_rfm` (sorted by customer_id, which fixes the
        tie-break order).

    Returns
    -------
    list[ScoredRFMMetrics]
        Scored metrics in input order

    Raises
    ------
    InvariantError
        If the metrics span more than one window or repeat a customer.
    """
    if not rfm_metrics:
        return []

    window_ids = {m.window_id for m in rfm_metrics}
    if len(window_ids) > 1:
        raise InvariantError(
            f"Scores are window-local; got metrics from {sorted(window_ids)}",
            field="window_id",
        )
    window_id = next(iter(window_ids))

    customer_counts = Counter(m.customer_id for m in rfm_metrics)
    duplicates = [cid for cid, count in customer_counts.items() if count > 1]
    if duplicates:
        raise InvariantError(
            f"Duplicate customer IDs found in window metrics: {duplicates[:5]}",
            window_id=window_id,
            field="customer_id",
        )

    df = pd.DataFrame(
        {
            # Negated so that an ascending rank puts the most recent last.
            "neg_recency": [-m.recency_days for m in rfm_metrics],
            "monetary": [float(m.monetary) for m in rfm_metrics],
        }
    )
    df["r_score"] = quintile_scores(df["neg_recency"])
    df["m_score"] = quintile_scores(df["monetary"])

    scored: list[ScoredRFMMetrics] = []
    for metrics, r_score, m_score in zip(rfm_metrics, df["r_score"], df["m_score"]):
        scored.append(
            ScoredRFMMetrics(
                metrics=metrics,
                r_score=int(r_score),
                f_score=frequency_score(metrics.frequency),
                m_score=int(m_score),
            )
        )
    return scored
