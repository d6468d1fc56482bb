"""Transaction and customer record contracts.

The record contract is the boundary between the external normaliser, which
turns arbitrary source data into clean rows, and the segmentation engine. It
captures the minimum fields every downstream step relies on and rejects rows
that do not honour them. Invalid rows are never dropped or repaired here: any
violation raises :class:`~segment_migration.errors.DataContractError` naming
the field and the record index.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from numbers import Integral
from typing import Any, Iterable, Mapping, Sequence

import numpy as np

from segment_migration.errors import DataContractError

_TRUE_STRINGS = {"true", "t", "yes", "y", "1"}
_FALSE_STRINGS = {"false", "f", "no", "n", "0"}


@dataclass(frozen=True)
class Transaction:
    """A single line item of a customer order.

    Attributes
    ----------
    customer_id:
        Identifier of the purchasing customer.
    order_id:
        Identifier of the order. Several line items may share one order id;
        the order, not the line item, is the purchase event.
    order_date:
        Calendar date of the order.
    is_returned:
        Whether the line item was returned. Returned items contribute nothing
        to recency, frequency or monetary value.
    amount_paid:
        Amount paid for the line item.
    """

    customer_id: str
    order_id: str
    order_date: date
    is_returned: bool
    amount_paid: Decimal

    def __post_init__(self) -> None:
        if not isinstance(self.amount_paid, Decimal):
            raise DataContractError(
                f"amount_paid must be a Decimal: {self.amount_paid!r}",
                field="amount_paid",
                context={"customer_id": self.customer_id, "order_id": self.order_id},
            )
        if self.amount_paid < 0:
            raise DataContractError(
                f"amount_paid cannot be negative: {self.amount_paid}",
                field="amount_paid",
                context={"customer_id": self.customer_id, "order_id": self.order_id},
            )


@dataclass(frozen=True)
class Customer:
    """Static customer attributes for the whole analysis horizon."""

    customer_id: str
    acquisition_channel: str


@dataclass(frozen=True)
class FirstPurchaseFact:
    """Date of a customer's first ever non-returned purchase."""

    customer_id: str
    first_purchase_date: date


class TransactionContract:
    """Validate raw transaction mappings into :class:`Transaction` records."""

    #: Fields that must be present and non-empty on every record.
    REQUIRED_FIELDS = ("customer_id", "order_id", "order_date", "amount_paid")

    def validate_records(
        self, records: Iterable[Mapping[str, Any]]
    ) -> list[Transaction]:
        transactions: list[Transaction] = []
        for idx, record in enumerate(records):
            _require_fields(record, self.REQUIRED_FIELDS, idx)
            transactions.append(
                Transaction(
                    customer_id=str(record["customer_id"]).strip(),
                    order_id=str(record["order_id"]).strip(),
                    order_date=parse_date(record["order_date"], "order_date", idx),
                    is_returned=parse_bool(
                        record.get("is_returned", False), "is_returned", idx
                    ),
                    amount_paid=parse_amount(record["amount_paid"], "amount_paid", idx),
                )
            )
        return transactions


class CustomerContract:
    """Validate raw customer mappings into :class:`Customer` records."""

    REQUIRED_FIELDS = ("customer_id", "acquisition_channel")

    def validate_records(self, records: Iterable[Mapping[str, Any]]) -> list[Customer]:
        customers: list[Customer] = []
        seen: set[str] = set()
        for idx, record in enumerate(records):
            _require_fields(record, self.REQUIRED_FIELDS, idx)
            customer_id = str(record["customer_id"]).strip()
            if customer_id in seen:
                raise DataContractError(
                    "Duplicate customer record",
                    field="customer_id",
                    context={"record_index": idx, "customer_id": customer_id},
                )
            seen.add(customer_id)
            customers.append(
                Customer(
                    customer_id=customer_id,
                    acquisition_channel=str(record["acquisition_channel"]).strip(),
                )
            )
        return customers


def validate_transactions(records: Iterable[Mapping[str, Any]]) -> list[Transaction]:
    """Validate raw transaction rows.

    Parameters
    ----------
    records:
        Iterable of mappings with at least ``customer_id``, ``order_id``,
        ``order_date`` and ``amount_paid``. ``is_returned`` defaults to false.

    Raises
    ------
    DataContractError
        If a required field is missing or empty, the date cannot be parsed,
        or the amount is unparseable or negative.

    Examples
    --------
    >>> rows = [{"customer_id": "C1", "order_id": "O1",
    ...          "order_date": "2024-05-01", "amount_paid": "50.00"}]
    >>> validate_transactions(rows)[0].amount_paid
    Decimal('50.00')
    """
    return TransactionContract().validate_records(records)


def validate_customers(records: Iterable[Mapping[str, Any]]) -> list[Customer]:
    """Validate raw customer rows; duplicate ids are a contract violation."""
    return CustomerContract().validate_records(records)


def first_purchase_dates(transactions: Iterable[Transaction]) -> dict[str, date]:
    """Map each customer to the date of their first non-returned purchase."""
    firsts: dict[str, date] = {}
    for txn in transactions:
        if txn.is_returned:
            continue
        current = firsts.get(txn.customer_id)
        if current is None or txn.order_date < current:
            firsts[txn.customer_id] = txn.order_date
    return firsts


def calculate_first_purchases(
    transactions: Sequence[Transaction],
) -> list[FirstPurchaseFact]:
    """Compute first-purchase facts over the entire transaction history.

    Customers whose every transaction was returned have no fact.
    """
    firsts = first_purchase_dates(transactions)
    return [
        FirstPurchaseFact(customer_id=customer_id, first_purchase_date=first_date)
        for customer_id, first_date in sorted(firsts.items())
    ]


def _require_fields(
    record: Mapping[str, Any], required: Sequence[str], idx: int
) -> None:
    for name in required:
        value = record.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise DataContractError(
                "Record missing required field",
                field=name,
                context={"record_index": idx},
            )


def parse_date(value: Any, field: str, idx: int) -> date:
    """Parse ``value`` into a :class:`date`, accepting ISO strings and datetimes."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if len(text) == 10:
                return date.fromisoformat(text)
            # Only a genuine time part may follow the date.
            if len(text) > 10 and text[10] in ("T", " "):
                return datetime.fromisoformat(text).date()
        except ValueError:
            pass
    raise DataContractError(
        f"Unparseable date: {value!r}",
        field=field,
        context={"record_index": idx},
    )


def parse_amount(value: Any, field: str, idx: int) -> Decimal:
    """Parse a monetary amount; negative or non-finite values are rejected."""
    if isinstance(value, bool):
        raise DataContractError(
            f"Unparseable amount: {value!r}", field=field, context={"record_index": idx}
        )
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise DataContractError(
            f"Unparseable amount: {value!r}", field=field, context={"record_index": idx}
        ) from exc
    if not amount.is_finite():
        raise DataContractError(
            f"Amount must be finite: {value!r}",
            field=field,
            context={"record_index": idx},
        )
    if amount < 0:
        raise DataContractError(
            f"Amount cannot be negative: {amount}",
            field=field,
            context={"record_index": idx},
        )
    return amount


def parse_bool(value: Any, field: str, idx: int) -> bool:
    """Parse a boolean flag from bools, 0/1 integers or common strings."""
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, Integral) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise DataContractError(
        f"Unparseable boolean: {value!r}",
        field=field,
        context={"record_index": idx},
    )
