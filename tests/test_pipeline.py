"""Tests for the end-to-end segmentation run."""

from datetime import date
from decimal import Decimal

import pytest

import segment_migration.pipeline as pipeline
from segment_migration.analyses.segments import Segment
from segment_migration.errors import ConfigurationError, InvariantError
from segment_migration.foundation.records import Customer, Transaction
from segment_migration.foundation.windows import PeriodGranularity, Window
from segment_migration.pipeline import (
    SegmentationConfig,
    process_window,
    run_segmentation,
)
from segment_migration.synthetic import ScenarioConfig, generate_dataset


def _txn(customer_id, order_id, day, amount, is_returned=False):
    return Transaction(customer_id, order_id, day, is_returned, Decimal(amount))


@pytest.fixture
def three_year_history():
    """C1 buys every year, C2 skips 2023, C3 stops after 2022, C4 joins in 2024."""
    transactions = [
        _txn("C1", "O1", date(2022, 3, 1), "100"),
        _txn("C1", "O2", date(2022, 11, 1), "150"),
        _txn("C1", "O3", date(2023, 6, 1), "80"),
        _txn("C1", "O4", date(2024, 12, 1), "90"),
        _txn("C2", "O5", date(2022, 5, 1), "40"),
        _txn("C2", "O6", date(2024, 2, 1), "60"),
        _txn("C3", "O7", date(2022, 8, 1), "25"),
        _txn("C3", "O8", date(2023, 9, 1), "30", is_returned=True),
        _txn("C4", "O9", date(2024, 7, 1), "300"),
    ]
    customers = [
        Customer("C1", "organic"),
        Customer("C2", "paid_search"),
        Customer("C3", "social"),
        Customer("C4", "organic"),
    ]
    return transactions, customers


class TestSegmentationConfig:
    """Test run configuration validation."""

    def test_defaults(self):
        config = SegmentationConfig(start_date=date(2023, 1, 1))
        assert config.window_count == 2
        assert config.granularity is PeriodGranularity.YEAR
        assert config.potential_high_value_min_recency is None
        assert config.parallel is False

    def test_granularity_string_is_coerced(self):
        config = SegmentationConfig(start_date=date(2023, 1, 1), granularity="quarter")
        assert config.granularity is PeriodGranularity.QUARTER

    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"window_count": 0}, "window_count"),
            ({"granularity": "week"}, "granularity"),
            ({"n_workers": 0}, "n_workers"),
            ({"potential_high_value_min_recency": 7}, "potential_high_value_min_recency"),
            ({"start_date": "2023-01-01"}, "start_date"),
        ],
    )
    def test_invalid_values_raise_error(self, overrides, field):
        values = {"start_date": date(2023, 1, 1), **overrides}
        with pytest.raises(ConfigurationError) as exc_info:
            SegmentationConfig(**values)
        assert exc_info.value.field == field

    def test_from_mapping(self):
        config = SegmentationConfig.from_mapping(
            {"start_date": "2022-01-01", "window_count": 3, "granularity": "year"}
        )
        assert config.start_date == date(2022, 1, 1)
        assert config.window_count == 3

    def test_from_mapping_rejects_unknown_keys(self):
        with pytest.raises(ConfigurationError, match="Unknown configuration keys"):
            SegmentationConfig.from_mapping({"start_date": "2022-01-01", "windows": 3})

    def test_from_mapping_rejects_bad_date(self):
        with pytest.raises(ConfigurationError, match="Unparseable start_date"):
            SegmentationConfig.from_mapping({"start_date": "01/01/2022"})


class TestRunSegmentation:
    """Test the full multi-window run."""

    def test_windows_and_migrations(self, three_year_history):
        transactions, customers = three_year_history
        config = SegmentationConfig(start_date=date(2022, 1, 1), window_count=3)

        run = run_segmentation(transactions, customers, config)

        assert run.succeeded
        assert [w.window_id for w in run.windows] == ["2022", "2023", "2024"]
        assert [
            (m.prior_window_id, m.next_window_id) for m in run.migrations
        ] == [("2022", "2023"), ("2023", "2024")]
        assert run.window_results["2023"].active_customers == frozenset({"C1"})

    def test_churn_new_and_reactivation(self, three_year_history):
        transactions, customers = three_year_history
        run = run_segmentation(
            transactions, customers, SegmentationConfig(date(2022, 1, 1), 3)
        )
        first, second = run.migrations

        assert first.churned == frozenset({"C2", "C3"})
        assert first.retained == frozenset({"C1"})
        assert second.new == frozenset({"C2", "C4"})
        # C2 was active in 2022, C4 never before
        assert second.reactivated == frozenset({"C2"})

    def test_returned_only_customer_is_inactive(self, three_year_history):
        """C3's only 2023 order was returned."""
        transactions, customers = three_year_history
        run = run_segmentation(
            transactions, customers, SegmentationConfig(date(2022, 1, 1), 3)
        )
        edges = {
            (e.from_segment, e.to_segment): e.count for e in run.migrations[0].edges
        }
        assert sum(
            count for (src, dst), count in edges.items() if dst is Segment.INACTIVE
        ) == 2

    def test_first_time_flag_uses_full_history(self, three_year_history):
        transactions, customers = three_year_history
        run = run_segmentation(
            transactions, customers, SegmentationConfig(date(2022, 1, 1), 3)
        )
        by_customer = {
            (s.window_id, s.customer_id): s.is_first_time for s in run.scores
        }
        assert by_customer[("2022", "C1")] is True
        assert by_customer[("2023", "C1")] is False
        assert by_customer[("2024", "C2")] is False
        assert by_customer[("2024", "C4")] is True

    def test_kpis_and_channel_mix(self, three_year_history):
        transactions, customers = three_year_history
        run = run_segmentation(
            transactions, customers, SegmentationConfig(date(2022, 1, 1), 3)
        )
        assert {k.window_id for k in run.kpis} == {"2022", "2023", "2024"}
        assert sum(k.customer_count for k in run.kpis) == len(run.assignments) == 7
        assert sum(m.customer_count for m in run.channel_mix) == 7

    def test_explicit_windows(self, three_year_history):
        transactions, customers = three_year_history
        windows = [
            Window("H1", date(2024, 1, 1), date(2024, 6, 30)),
            Window("H2", date(2024, 7, 1), date(2024, 12, 31)),
        ]
        run = run_segmentation(
            transactions, customers, SegmentationConfig(date(2024, 1, 1)), windows
        )
        assert run.window_results["H1"].active_customers == frozenset({"C2"})
        assert run.migrations[0].new == frozenset({"C1", "C4"})

    def test_invalid_explicit_windows_abort_run(self, three_year_history):
        transactions, customers = three_year_history
        windows = [
            Window("H1", date(2024, 1, 1), date(2024, 6, 30)),
            Window("H2", date(2024, 6, 1), date(2024, 12, 31)),
        ]
        with pytest.raises(ConfigurationError, match="Overlapping"):
            run_segmentation(
                transactions, customers, SegmentationConfig(date(2024, 1, 1)), windows
            )

    def test_single_window_has_no_migration(self, three_year_history, caplog):
        transactions, customers = three_year_history
        run = run_segmentation(
            transactions, customers, SegmentationConfig(date(2022, 1, 1), 1)
        )
        assert run.migrations == []
        assert "migration tracking needs at least 2" in caplog.text

    def test_window_without_activity(self, three_year_history):
        transactions, customers = three_year_history
        run = run_segmentation(
            transactions, customers, SegmentationConfig(date(2025, 1, 1), 2)
        )
        assert run.succeeded
        assert run.assignments == []
        assert run.migrations[0].edges == ()


class TestPartialFailure:
    """A failing window does not discard the others."""

    def test_failed_window_recorded_and_migrations_skipped(
        self, three_year_history, monkeypatch
    ):
        transactions, customers = three_year_history
        real_scores = pipeline.calculate_rfm_scores

        def failing_scores(metrics):
            if metrics and metrics[0].window_id == "2023":
                raise InvariantError("score outside domain", field="r_score")
            return real_scores(metrics)

        monkeypatch.setattr(pipeline, "calculate_rfm_scores", failing_scores)
        run = run_segmentation(
            transactions, customers, SegmentationConfig(date(2022, 1, 1), 3)
        )

        assert not run.succeeded
        assert set(run.window_results) == {"2022", "2024"}
        assert run.failures["2023"].window_id == "2023"
        assert run.failures["2023"].field == "r_score"
        assert run.migrations == []
        with pytest.raises(InvariantError, match="window=2023"):
            run.raise_for_failures()

    def test_process_window_tags_errors(self, monkeypatch):
        def failing_scores(metrics):
            raise InvariantError("boom", field="m_score")

        monkeypatch.setattr(pipeline, "calculate_rfm_scores", failing_scores)
        window = Window("2024", date(2024, 1, 1), date(2024, 12, 31))
        with pytest.raises(InvariantError) as exc_info:
            process_window([], window, {})
        assert exc_info.value.window_id == "2024"


class TestParallelRun:
    """Parallel and serial runs produce identical results."""

    def test_parallel_matches_serial(self):
        data = generate_dataset(
            60, date(2022, 1, 1), date(2024, 12, 31), ScenarioConfig(seed=11)
        )
        serial = run_segmentation(
            data.transactions,
            data.customers,
            SegmentationConfig(date(2022, 1, 1), 6, "quarter"),
        )
        parallel = run_segmentation(
            data.transactions,
            data.customers,
            SegmentationConfig(date(2022, 1, 1), 6, "quarter", parallel=True, n_workers=2),
        )

        assert parallel.window_results == serial.window_results
        assert parallel.migrations == serial.migrations
        assert parallel.channel_mix == serial.channel_mix
        assert parallel.failures == serial.failures == {}
