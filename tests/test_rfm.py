"""Tests for window-level RFM metrics and scores."""

from datetime import date
from decimal import Decimal

import pandas as pd
import pytest

from segment_migration.errors import InvariantError
from segment_migration.foundation.records import Transaction
from segment_migration.foundation.rfm import (
    ScoredRFMMetrics,
    WindowRFMMetrics,
    calculate_rfm_scores,
    calculate_window_rfm,
    frequency_score,
    quintile_scores,
)
from segment_migration.foundation.windows import Window

H1_2024 = Window("2024-H1", date(2024, 1, 1), date(2024, 6, 30))


def _txn(customer_id, order_id, day, amount, is_returned=False):
    return Transaction(customer_id, order_id, day, is_returned, Decimal(amount))


class TestWindowRFMMetrics:
    """Test WindowRFMMetrics dataclass validation."""

    def test_negative_recency_raises_error(self):
        with pytest.raises(InvariantError, match="Recency cannot be negative"):
            WindowRFMMetrics("C1", "W", -1, 1, Decimal("10"))

    def test_zero_frequency_raises_error(self):
        """Inactive customers have no record rather than a zero frequency."""
        with pytest.raises(InvariantError, match="Frequency must be positive"):
            WindowRFMMetrics("C1", "W", 0, 0, Decimal("0"))

    def test_negative_monetary_raises_error(self):
        with pytest.raises(InvariantError, match="Monetary value cannot be negative") as exc_info:
            WindowRFMMetrics("C1", "W", 0, 1, Decimal("-0.01"))
        assert exc_info.value.window_id == "W"
        assert exc_info.value.field == "monetary"


class TestCalculateWindowRFM:
    """Test metric calculation for a single window."""

    def test_recency_frequency_monetary(self):
        """Two orders on May 1 ($50) and June 15 ($70) in a window ending June 30."""
        txns = [
            _txn("C1", "A", date(2024, 5, 1), "50"),
            _txn("C1", "B", date(2024, 6, 15), "70"),
        ]
        metrics = calculate_window_rfm(txns, H1_2024)

        assert len(metrics) == 1
        assert metrics[0].recency_days == 15
        assert metrics[0].frequency == 2
        assert metrics[0].monetary == Decimal("120.00")
        assert metrics[0].window_id == "2024-H1"

    def test_line_items_of_one_order_count_once(self):
        """Frequency counts distinct orders, monetary sums all line items."""
        txns = [
            _txn("C1", "A", date(2024, 2, 1), "10.00"),
            _txn("C1", "A", date(2024, 2, 1), "15.50"),
            _txn("C1", "B", date(2024, 3, 1), "4.50"),
        ]
        metrics = calculate_window_rfm(txns, H1_2024)[0]

        assert metrics.frequency == 2
        assert metrics.monetary == Decimal("30.00")

    def test_returned_items_excluded(self):
        """Returned line items contribute to none of R, F or M."""
        txns = [
            _txn("C1", "A", date(2024, 3, 1), "40"),
            _txn("C1", "B", date(2024, 6, 20), "100", is_returned=True),
        ]
        metrics = calculate_window_rfm(txns, H1_2024)[0]

        assert metrics.recency_days == (date(2024, 6, 30) - date(2024, 3, 1)).days
        assert metrics.frequency == 1
        assert metrics.monetary == Decimal("40.00")

    def test_returned_only_customer_is_inactive(self):
        txns = [
            _txn("C1", "A", date(2024, 3, 1), "40"),
            _txn("C2", "B", date(2024, 3, 1), "40", is_returned=True),
        ]
        assert [m.customer_id for m in calculate_window_rfm(txns, H1_2024)] == ["C1"]

    def test_window_boundaries_are_inclusive(self):
        txns = [
            _txn("C1", "A", date(2024, 1, 1), "10"),
            _txn("C2", "B", date(2024, 6, 30), "10"),
            _txn("C3", "C", date(2023, 12, 31), "10"),
            _txn("C4", "D", date(2024, 7, 1), "10"),
        ]
        metrics = calculate_window_rfm(txns, H1_2024)

        assert [m.customer_id for m in metrics] == ["C1", "C2"]
        assert metrics[1].recency_days == 0

    def test_first_time_flag(self):
        """First-time means the first ever purchase falls inside the window."""
        txns = [
            _txn("C1", "A", date(2023, 11, 1), "10"),
            _txn("C1", "B", date(2024, 2, 1), "10"),
            _txn("C2", "C", date(2024, 2, 1), "10"),
        ]
        metrics = {m.customer_id: m for m in calculate_window_rfm(txns, H1_2024)}

        assert metrics["C1"].is_first_time is False
        assert metrics["C2"].is_first_time is True

    def test_first_purchases_can_be_supplied(self):
        txns = [_txn("C1", "A", date(2024, 2, 1), "10")]
        metrics = calculate_window_rfm(
            txns, H1_2024, first_purchases={"C1": date(2020, 1, 1)}
        )
        assert metrics[0].is_first_time is False

    def test_sorted_by_customer_and_empty_input(self):
        txns = [
            _txn("C2", "A", date(2024, 2, 1), "10"),
            _txn("C1", "B", date(2024, 2, 1), "10"),
        ]
        assert [m.customer_id for m in calculate_window_rfm(txns, H1_2024)] == ["C1", "C2"]
        assert calculate_window_rfm([], H1_2024) == []


class TestFrequencyScore:
    """Test fixed-threshold frequency scores."""

    @pytest.mark.parametrize(
        "frequency,expected", [(1, 1), (2, 4), (3, 5), (10, 5)]
    )
    def test_thresholds(self, frequency, expected):
        assert frequency_score(frequency) == expected

    def test_scores_two_and_three_never_produced(self):
        assert {frequency_score(f) for f in range(1, 50)} == {1, 4, 5}


class TestQuintileScores:
    """Test rank-based quintile scoring."""

    def test_five_distinct_values(self):
        scores = quintile_scores(pd.Series([50, 10, 40, 20, 30]))
        assert scores.tolist() == [5, 1, 4, 2, 3]

    @pytest.mark.parametrize("n", [1, 4, 5, 7, 13, 100])
    def test_group_sizes_differ_by_at_most_one(self, n):
        scores = quintile_scores(pd.Series(range(n)))
        counts = scores.value_counts()
        assert counts.max() - counts.min() <= 1
        assert scores.between(1, 5).all()

    def test_lower_groups_absorb_remainder(self):
        scores = quintile_scores(pd.Series(range(7)))
        assert scores.value_counts().sort_index().tolist() == [2, 2, 1, 1, 1]

    def test_ties_broken_by_position(self):
        """Equal values are ranked by their order of appearance."""
        scores = quintile_scores(pd.Series([7, 7, 7, 7, 7]))
        assert scores.tolist() == [1, 2, 3, 4, 5]

    def test_fewer_values_than_bins(self):
        assert quintile_scores(pd.Series([3.0, 1.0])).tolist() == [2, 1]

    def test_empty_series(self):
        assert quintile_scores(pd.Series([], dtype=float)).empty


def _metrics(customer_id, recency, frequency, monetary, window_id="W"):
    return WindowRFMMetrics(customer_id, window_id, recency, frequency, Decimal(monetary))


class TestCalculateRFMScores:
    """Test whole-window scoring."""

    def test_most_recent_and_highest_spender_score_five(self):
        metrics = [
            _metrics("C1", 15, 2, "120"),
            _metrics("C2", 121, 1, "20"),
            _metrics("C3", 150, 1, "30"),
            _metrics("C4", 90, 1, "40"),
            _metrics("C5", 167, 3, "10"),
        ]
        scores = {s.customer_id: s for s in calculate_rfm_scores(metrics)}

        assert (scores["C1"].r_score, scores["C1"].f_score, scores["C1"].m_score) == (5, 4, 5)
        assert scores["C1"].rfm_score == "545"
        assert scores["C5"].r_score == 1
        assert scores["C5"].f_score == 5
        assert scores["C5"].m_score == 1
        assert scores["C4"].r_score == 4

    def test_preserves_input_order(self):
        metrics = [_metrics("C2", 1, 1, "5"), _metrics("C1", 2, 1, "6")]
        assert [s.customer_id for s in calculate_rfm_scores(metrics)] == ["C2", "C1"]

    def test_all_scores_in_range(self):
        metrics = [
            _metrics(f"C{i}", (i * 37) % 180, 1 + i % 4, str(5 + (i * 13) % 97))
            for i in range(23)
        ]
        for scored in calculate_rfm_scores(metrics):
            assert 1 <= scored.r_score <= 5
            assert scored.f_score in {1, 4, 5}
            assert 1 <= scored.m_score <= 5

    def test_empty_input(self):
        assert calculate_rfm_scores([]) == []

    def test_multiple_windows_raise_error(self):
        """Scores are window-local."""
        metrics = [_metrics("C1", 1, 1, "5", "A"), _metrics("C2", 1, 1, "5", "B")]
        with pytest.raises(InvariantError, match="window-local"):
            calculate_rfm_scores(metrics)

    def test_duplicate_customers_raise_error(self):
        metrics = [_metrics("C1", 1, 1, "5"), _metrics("C1", 2, 1, "6")]
        with pytest.raises(InvariantError, match="Duplicate customer IDs"):
            calculate_rfm_scores(metrics)


class TestScoredRFMMetrics:
    """Test ScoredRFMMetrics validation."""

    @pytest.mark.parametrize("field", ["r_score", "f_score", "m_score"])
    def test_out_of_range_score_raises_error(self, field):
        scores = {"r_score": 3, "f_score": 4, "m_score": 2}
        scores[field] = 6
        with pytest.raises(InvariantError, match=f"{field} must be between 1 and 5"):
            ScoredRFMMetrics(metrics=_metrics("C1", 1, 2, "5"), **scores)
