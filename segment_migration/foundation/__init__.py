"""Foundational building blocks for multi-period segmentation.

This package exposes the transaction/customer record contracts, the window
definitions that partition history into reporting periods, and window-level
RFM (Recency-Frequency-Monetary) metrics and scores.
"""

from .records import (
    Customer,
    CustomerContract,
    FirstPurchaseFact,
    Transaction,
    TransactionContract,
    calculate_first_purchases,
    first_purchase_dates,
    validate_customers,
    validate_transactions,
)
from .rfm import (
    ScoredRFMMetrics,
    WindowRFMMetrics,
    calculate_rfm_scores,
    calculate_window_rfm,
    frequency_score,
    quintile_scores,
)
from .windows import PeriodGranularity, Window, define_windows, validate_windows

__all__ = [
    "Customer",
    "CustomerContract",
    "FirstPurchaseFact",
    "Transaction",
    "TransactionContract",
    "calculate_first_purchases",
    "first_purchase_dates",
    "validate_customers",
    "validate_transactions",
    "ScoredRFMMetrics",
    "WindowRFMMetrics",
    "calculate_rfm_scores",
    "calculate_window_rfm",
    "frequency_score",
    "quintile_scores",
    "PeriodGranularity",
    "Window",
    "define_windows",
    "validate_windows",
]
