"""Shared utilities for pandas conversion operations."""

from decimal import Decimal
from typing import Any, Mapping, Sequence

import pandas as pd  # type: ignore


def decimal_to_float(value: Decimal) -> float:
    """Convert a money or percentage Decimal to float for DataFrame columns."""
    return float(value)


def frame_with_columns(
    rows: Sequence[Mapping[str, Any]], columns: Sequence[str]
) -> pd.DataFrame:
    """Build a DataFrame with ``columns`` in order, even when ``rows`` is empty."""
    return pd.DataFrame(list(rows), columns=list(columns))
