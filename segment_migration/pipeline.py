"""End-to-end segmentation run over a sequence of windows.

A run takes the full, validated transaction history and customer table and:

1. defines (or validates) the windows,
2. computes first-purchase facts once over the whole history,
3. for every window computes metrics, scores, segment assignments and KPIs,
4. tracks migration for each pair of consecutive windows, and
5. breaks segments down by acquisition channel.

Windows are independent of each other, so step 3 can run in a process pool.
A failure while processing one window is recorded against that window and
does not discard the results of the others; migration pairs that touch a
failed window are skipped.
"""

from __future__ import annotations

import logging
import multiprocessing
import os
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping, Optional, Sequence

from segment_migration.analyses.kpis import (
    SegmentChannelMix,
    SegmentKPI,
    aggregate_channel_mix,
    aggregate_segment_kpis,
)
from segment_migration.analyses.migration import MigrationMetrics, track_migration
from segment_migration.analyses.segments import (
    SegmentAssignment,
    build_segment_rules,
    classify_window,
)
from segment_migration.errors import ConfigurationError, SegmentationError
from segment_migration.foundation.records import (
    Customer,
    Transaction,
    first_purchase_dates,
)
from segment_migration.foundation.rfm import (
    ScoredRFMMetrics,
    WindowRFMMetrics,
    calculate_rfm_scores,
    calculate_window_rfm,
)
from segment_migration.foundation.windows import (
    PeriodGranularity,
    Window,
    define_windows,
    validate_windows,
)

logger = logging.getLogger(__name__)


@dataclass
class SegmentationConfig:
    """Configuration for a segmentation run.

    Attributes
    ----------
    start_date:
        First day of the first window
    window_count:
        Number of consecutive windows (at least 2 for migration tracking)
    granularity:
        Window length; one year by default
    potential_high_value_min_recency:
        Optional recency guard for the "Potential High-Value" rule. None keeps
        the plain ``f == 1 and m >= 4`` rule.
    parallel:
        Process windows in a multiprocessing pool
    n_workers:
        Worker processes for parallel runs. If None, uses CPU count.
    """

    start_date: date
    window_count: int = 2
    granularity: PeriodGranularity = PeriodGranularity.YEAR
    potential_high_value_min_recency: Optional[int] = None
    parallel: bool = False
    n_workers: Optional[int] = None

    def __post_init__(self) -> None:
        if not isinstance(self.start_date, date):
            raise ConfigurationError(
                f"start_date must be a date: {self.start_date!r}", field="start_date"
            )
        if (
            isinstance(self.window_count, bool)
            or not isinstance(self.window_count, int)
            or self.window_count < 1
        ):
            raise ConfigurationError(
                f"window_count must be a positive integer: {self.window_count!r}",
                field="window_count",
            )
        try:
            self.granularity = PeriodGranularity(self.granularity)
        except ValueError as exc:
            raise ConfigurationError(
                f"Unsupported granularity: {self.granularity!r}", field="granularity"
            ) from exc
        if self.n_workers is not None and self.n_workers < 1:
            raise ConfigurationError(
                f"n_workers must be at least 1: {self.n_workers}", field="n_workers"
            )
        # Validates the recency guard range.
        build_segment_rules(self.potential_high_value_min_recency)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "SegmentationConfig":
        """Build a config from plain values such as parsed CLI or JSON input."""
        data = dict(values)
        start = data.get("start_date")
        if isinstance(start, str):
            try:
                data["start_date"] = date.fromisoformat(start)
            except ValueError as exc:
                raise ConfigurationError(
                    f"Unparseable start_date: {start!r}", field="start_date"
                ) from exc
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration keys: {sorted(unknown)}", field="config"
            )
        return cls(**data)


@dataclass(frozen=True)
class WindowResult:
    """Everything computed for one window."""

    window: Window
    metrics: list[WindowRFMMetrics]
    scores: list[ScoredRFMMetrics]
    assignments: list[SegmentAssignment]
    kpis: list[SegmentKPI]

    @property
    def active_customers(self) -> frozenset[str]:
        return frozenset(a.customer_id for a in self.assignments)


@dataclass
class SegmentationRun:
    """Results of :func:`run_segmentation`.

    Attributes
    ----------
    windows:
        All windows of the run, in order
    window_results:
        Results of successfully processed windows, keyed by window id
    migrations:
        Migration between each pair of consecutive successful windows
    channel_mix:
        Acquisition channel breakdown of every successful window
    failures:
        Errors keyed by window id, or by ``"<prior>-><next>"`` for migration
        failures
    """

    windows: list[Window]
    window_results: dict[str, WindowResult] = field(default_factory=dict)
    migrations: list[MigrationMetrics] = field(default_factory=list)
    channel_mix: list[SegmentChannelMix] = field(default_factory=list)
    failures: dict[str, SegmentationError] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return not self.failures

    @property
    def kpis(self) -> list[SegmentKPI]:
        return [kpi for result in self.window_results.values() for kpi in result.kpis]

    @property
    def assignments(self) -> list[SegmentAssignment]:
        return [a for result in self.window_results.values() for a in result.assignments]

    @property
    def scores(self) -> list[ScoredRFMMetrics]:
        return [s for result in self.window_results.values() for s in result.scores]

    def raise_for_failures(self) -> None:
        """Re-raise the first recorded failure, if any."""
        for error in self.failures.values():
            raise error


def process_window(
    transactions: Sequence[Transaction],
    window: Window,
    first_purchases: Mapping[str, date],
    potential_high_value_min_recency: Optional[int] = None,
) -> WindowResult:
    """Compute metrics, scores, assignments and KPIs for a single window.

    Raises
    ------
    SegmentationError
        Tagged with the window id when any step fails.
    """
    try:
        metrics = calculate_window_rfm(transactions, window, first_purchases)
        scores = calculate_rfm_scores(metrics)
        assignments = classify_window(
            scores, build_segment_rules(potential_high_value_min_recency)
        )
        kpis = aggregate_segment_kpis(assignments, metrics)
    except SegmentationError as exc:
        if exc.window_id is None:
            raise exc.with_window(window.window_id) from exc
        raise
    return WindowResult(
        window=window,
        metrics=metrics,
        scores=scores,
        assignments=assignments,
        kpis=kpis,
    )


def _process_window_safely(
    transactions: Sequence[Transaction],
    window: Window,
    first_purchases: Mapping[str, date],
    potential_high_value_min_recency: Optional[int],
) -> tuple[Window, WindowResult | None, SegmentationError | None]:
    """Worker entry point: report a window failure instead of aborting the pool."""
    try:
        result = process_window(
            transactions, window, first_purchases, potential_high_value_min_recency
        )
    except SegmentationError as exc:
        return window, None, exc
    return window, result, None


def run_segmentation(
    transactions: Sequence[Transaction],
    customers: Sequence[Customer],
    config: SegmentationConfig,
    windows: Optional[Sequence[Window]] = None,
) -> SegmentationRun:
    """Run the full segmentation and migration analysis.

    Parameters
    ----------
    transactions:
        Validated transaction history (see
        :func:`~segment_migration.foundation.records.validate_transactions`)
    customers:
        Validated customer table
    config:
        Run configuration
    windows:
        Optional explicit windows. When omitted they are derived from
        ``config.start_date``, ``config.window_count`` and
        ``config.granularity``.

    Returns
    -------
    SegmentationRun
        Results of every window that succeeded plus recorded failures

    Raises
    ------
    ConfigurationError
        If the windows are invalid; raised before any window is processed.
    """
    if windows is None:
        windows = define_windows(config.start_date, config.window_count, config.granularity)
    else:
        windows = list(windows)
        validate_windows(windows)

    if len(windows) < 2:
        logger.warning(
            f"Only {len(windows)} window defined; migration tracking needs at least 2"
        )

    logger.info(
        f"Running segmentation over {len(windows)} windows "
        f"({windows[0].start_date} to {windows[-1].end_date}) "
        f"for {len(transactions)} transactions"
    )
    first_purchases = first_purchase_dates(transactions)
    tasks = [
        (transactions, window, first_purchases, config.potential_high_value_min_recency)
        for window in windows
    ]

    if config.parallel and len(windows) > 1:
        workers = config.n_workers if config.n_workers is not None else (os.cpu_count() or 1)
        workers = max(1, min(workers, len(windows)))
        logger.info(f"Processing windows in parallel with {workers} workers")
        with multiprocessing.Pool(processes=workers) as pool:
            outcomes = pool.starmap(_process_window_safely, tasks)
    else:
        outcomes = [_process_window_safely(*task) for task in tasks]

    run = SegmentationRun(windows=list(windows))
    for window, result, error in outcomes:
        if error is not None:
            logger.error(f"Window {window.window_id} failed: {error}")
            run.failures[window.window_id] = error
            continue
        run.window_results[window.window_id] = result
        logger.info(
            f"Window {window.window_id}: {len(result.assignments)} active customers "
            f"in {len(result.kpis)} segments"
        )

    history: set[str] = set()
    for prior, following in zip(windows, windows[1:]):
        prior_result = run.window_results.get(prior.window_id)
        next_result = run.window_results.get(following.window_id)
        if prior_result is None or next_result is None:
            logger.warning(
                f"Skipping migration {prior.window_id} -> {following.window_id}: "
                f"a window failed"
            )
            if prior_result is not None:
                history |= prior_result.active_customers
            continue
        try:
            migration = track_migration(
                prior_result.assignments,
                next_result.assignments,
                prior_window_id=prior.window_id,
                next_window_id=following.window_id,
                all_customer_history=frozenset(history),
            )
        except SegmentationError as exc:
            pair = f"{prior.window_id}->{following.window_id}"
            logger.error(f"Migration {pair} failed: {exc}")
            run.failures[pair] = exc
        else:
            run.migrations.append(migration)
            logger.info(
                f"Migration {prior.window_id} -> {following.window_id}: "
                f"retention={migration.retention_rate}%, churn={migration.churn_rate}%, "
                f"new={len(migration.new)}, reactivated={len(migration.reactivated)}"
            )
        history |= prior_result.active_customers

    run.channel_mix = aggregate_channel_mix(run.assignments, customers)
    return run
