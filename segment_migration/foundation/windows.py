"""Time window definitions for multi-period segmentation.

Windows partition the transaction history into closed, non-overlapping,
contiguous reporting periods. Each window is scored and classified on its own,
and consecutive windows are joined to track segment migration.

Quick Start
-----------
>>> from datetime import date
>>> from segment_migration.foundation.windows import define_windows
>>> windows = define_windows(date(2022, 1, 1), count=2)
>>> [(w.window_id, w.start_date.isoformat(), w.end_date.isoformat()) for w in windows]
[('2022', '2022-01-01', '2022-12-31'), ('2023', '2023-01-01', '2023-12-31')]
"""

from __future__ import annotations

import calendar
from collections import Counter
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Sequence

from segment_migration.errors import ConfigurationError


class PeriodGranularity(str, Enum):
    """Supported window lengths."""

    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


_MONTHS_PER_PERIOD = {
    PeriodGranularity.MONTH: 1,
    PeriodGranularity.QUARTER: 3,
    PeriodGranularity.YEAR: 12,
}


@dataclass(frozen=True)
class Window:
    """A closed reporting period ``[start_date, end_date]``.

    Attributes
    ----------
    window_id:
        Stable identifier used in exports (e.g. ``"2023"`` or ``"2023-Q1"``).
    start_date:
        First day of the window (inclusive).
    end_date:
        Last day of the window (inclusive).
    """

    window_id: str
    start_date: date
    end_date: date

    def __post_init__(self) -> None:
        if self.start_date > self.end_date:
            raise ConfigurationError(
                f"start_date must not be after end_date: "
                f"start={self.start_date.isoformat()}, end={self.end_date.isoformat()}",
                window_id=self.window_id,
                field="start_date",
            )

    def contains(self, day: date) -> bool:
        """Return True if ``day`` falls inside the window (both ends inclusive)."""
        return self.start_date <= day <= self.end_date

    @property
    def length_days(self) -> int:
        return (self.end_date - self.start_date).days + 1


def add_months(day: date, months: int) -> date:
    """Shift ``day`` by ``months``, clamping to the last day of the target month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def _window_id(start: date, end: date, granularity: PeriodGranularity) -> str:
    if start.day == 1:
        if granularity is PeriodGranularity.YEAR and start.month == 1:
            return f"{start.year}"
        if granularity is PeriodGranularity.QUARTER and start.month % 3 == 1:
            return f"{start.year}-Q{(start.month - 1) // 3 + 1}"
        if granularity is PeriodGranularity.MONTH:
            return f"{start.year}-{start.month:02d}"
    return f"{start.isoformat()}/{end.isoformat()}"


def define_windows(
    start_date: date,
    count: int,
    granularity: PeriodGranularity | str = PeriodGranularity.YEAR,
) -> list[Window]:
    """Create ``count`` consecutive windows starting at ``start_date``.

    Windows cover ``[start_date, start_date + length * count)``; each window
    ends the day before the next one starts, so the sequence is contiguous and
    non-overlapping by construction.

    Parameters
    ----------
    start_date:
        First day of the first window.
    count:
        Number of windows; must be at least 1. Migration tracking needs at
        least two.
    granularity:
        Window length (month, quarter or year). Defaults to one year.

    Raises
    ------
    ConfigurationError
        If ``count`` is below 1 or ``granularity`` is unknown.

    Examples
    --------
    >>> from datetime import date
    >>> [w.window_id for w in define_windows(date(2023, 1, 1), 2, "quarter")]
    ['2023-Q1', '2023-Q2']
    """
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise ConfigurationError(
            f"Window count must be a positive integer: {count!r}", field="count"
        )
    try:
        granularity = PeriodGranularity(granularity)
    except ValueError as exc:
        raise ConfigurationError(
            f"Unsupported granularity: {granularity!r}", field="granularity"
        ) from exc

    step = _MONTHS_PER_PERIOD[granularity]
    windows: list[Window] = []
    for i in range(count):
        window_start = add_months(start_date, step * i)
        window_end = add_months(start_date, step * (i + 1)) - timedelta(days=1)
        windows.append(
            Window(
                window_id=_window_id(window_start, window_end, granularity),
                start_date=window_start,
                end_date=window_end,
            )
        )

    validate_windows(windows)
    return windows


def validate_windows(windows: Sequence[Window]) -> None:
    """Validate that ``windows`` form an ordered, contiguous, disjoint sequence.

    Raises
    ------
    ConfigurationError
        If the sequence is empty, window ids repeat, windows are out of order,
        two windows overlap, or consecutive windows leave a gap.
    """
    if not windows:
        raise ConfigurationError("At least one window is required", field="windows")

    id_counts = Counter(w.window_id for w in windows)
    duplicates = [wid for wid, n in id_counts.items() if n > 1]
    if duplicates:
        raise ConfigurationError(
            f"Duplicate window ids: {duplicates}", field="window_id"
        )

    for current, following in zip(windows, windows[1:]):
        if following.start_date <= current.end_date:
            raise ConfigurationError(
                f"Overlapping windows detected: '{current.window_id}' "
                f"(ends {current.end_date.isoformat()}) overlaps with "
                f"'{following.window_id}' (starts {following.start_date.isoformat()})",
                window_id=following.window_id,
                field="start_date",
            )
        if following.start_date != current.end_date + timedelta(days=1):
            raise ConfigurationError(
                f"Windows must be contiguous: '{current.window_id}' ends "
                f"{current.end_date.isoformat()} but '{following.window_id}' starts "
                f"{following.start_date.isoformat()}",
                window_id=following.window_id,
                field="start_date",
            )
