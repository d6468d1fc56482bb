"""Pandas DataFrame adapters for the segmentation engine."""

from .records import (
    customers_to_dataframe,
    dataframe_to_customers,
    dataframe_to_transactions,
    transactions_to_dataframe,
)
from .exports import (
    assignments_to_dataframe,
    channel_mix_to_dataframe,
    kpis_to_dataframe,
    migrations_to_dataframe,
    retention_to_dataframe,
    run_to_dataframes,
)

__all__ = [
    # Record adapters
    "customers_to_dataframe",
    "dataframe_to_customers",
    "dataframe_to_transactions",
    "transactions_to_dataframe",
    # Result adapters
    "assignments_to_dataframe",
    "channel_mix_to_dataframe",
    "kpis_to_dataframe",
    "migrations_to_dataframe",
    "retention_to_dataframe",
    "run_to_dataframes",
]
