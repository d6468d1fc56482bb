"""Pandas DataFrame adapters for transaction and customer records."""

from typing import List, Sequence

import pandas as pd  # type: ignore

from segment_migration.errors import DataContractError
from segment_migration.foundation.records import (
    Customer,
    CustomerContract,
    Transaction,
    TransactionContract,
)
from ._utils import decimal_to_float, frame_with_columns

TRANSACTION_COLUMNS = [
    "customer_id",
    "order_id",
    "order_date",
    "is_returned",
    "amount_paid",
]
CUSTOMER_COLUMNS = ["customer_id", "acquisition_channel"]


def _check_frame(df: pd.DataFrame, required: Sequence[str], label: str) -> None:
    missing_cols = [col for col in required if col not in df.columns]
    if missing_cols:
        raise DataContractError(
            f"{label} DataFrame missing required columns: {missing_cols}",
            field=missing_cols[0],
        )

    null_mask = df[list(required)].isnull()
    if null_mask.any().any():
        null_col = null_mask.any()[null_mask.any()].index[0]
        first_row = int(null_mask[null_col].to_numpy().nonzero()[0][0])
        raise DataContractError(
            f"Null/NaN values found in {label} column '{null_col}'",
            field=null_col,
            context={"record_index": first_row},
        )


def dataframe_to_transactions(df: pd.DataFrame) -> List[Transaction]:
    """Convert a transactions DataFrame to validated records.

    Args:
        df: DataFrame with columns customer_id, order_id, order_date,
            is_returned and amount_paid

    Returns:
        List of validated Transaction objects in row order

    Raises:
        DataContractError: If a column is missing, holds nulls, or a value
            cannot be parsed

    Example:
        >>> df = pd.read_csv("transactions.csv", dtype=str)
        >>> transactions = dataframe_to_transactions(df)
    """
    _check_frame(df, TRANSACTION_COLUMNS, "Transactions")
    if df.empty:
        return []
    return TransactionContract().validate_records(
        df[TRANSACTION_COLUMNS].to_dict("records")
    )


def dataframe_to_customers(df: pd.DataFrame) -> List[Customer]:
    """Convert a customers DataFrame to validated records.

    Raises:
        DataContractError: If a column is missing, holds nulls, or a customer
            id repeats
    """
    _check_frame(df, CUSTOMER_COLUMNS, "Customers")
    if df.empty:
        return []
    return CustomerContract().validate_records(df[CUSTOMER_COLUMNS].to_dict("records"))


def transactions_to_dataframe(transactions: Sequence[Transaction]) -> pd.DataFrame:
    """Convert transaction records to a DataFrame with the input contract columns."""
    return frame_with_columns(
        [
            {
                "customer_id": t.customer_id,
                "order_id": t.order_id,
                "order_date": t.order_date.isoformat(),
                "is_returned": t.is_returned,
                "amount_paid": decimal_to_float(t.amount_paid),
            }
            for t in transactions
        ],
        TRANSACTION_COLUMNS,
    )


def customers_to_dataframe(customers: Sequence[Customer]) -> pd.DataFrame:
    """Convert customer records to a DataFrame with the input contract columns."""
    return frame_with_columns(
        [
            {"customer_id": c.customer_id, "acquisition_channel": c.acquisition_channel}
            for c in customers
        ],
        CUSTOMER_COLUMNS,
    )
