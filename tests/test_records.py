"""Tests for transaction and customer record contracts."""

from datetime import date, datetime
from decimal import Decimal

import numpy as np
import pytest

from segment_migration.errors import DataContractError
from segment_migration.foundation.records import (
    Customer,
    FirstPurchaseFact,
    Transaction,
    calculate_first_purchases,
    first_purchase_dates,
    parse_bool,
    validate_customers,
    validate_transactions,
)


def _row(**overrides):
    row = {
        "customer_id": "C1",
        "order_id": "O1",
        "order_date": "2024-05-01",
        "is_returned": "false",
        "amount_paid": "50.00",
    }
    row.update(overrides)
    return row


class TestTransaction:
    """Test Transaction dataclass validation."""

    def test_negative_amount_raises_error(self):
        """Negative amounts violate the contract."""
        with pytest.raises(DataContractError, match="amount_paid cannot be negative"):
            Transaction("C1", "O1", date(2024, 1, 1), False, Decimal("-1"))

    def test_zero_amount_is_allowed(self):
        """Zero-priced line items (e.g. free gifts) are valid."""
        txn = Transaction("C1", "O1", date(2024, 1, 1), False, Decimal("0"))
        assert txn.amount_paid == Decimal("0")

    @pytest.mark.parametrize("amount", [10.5, 10, "10.00"])
    def test_non_decimal_amount_raises_error(self, amount):
        """Amounts are summed as Decimals downstream."""
        with pytest.raises(DataContractError, match="must be a Decimal") as exc_info:
            Transaction("C1", "O1", date(2024, 1, 1), False, amount)
        assert exc_info.value.field == "amount_paid"


class TestValidateTransactions:
    """Test raw row validation."""

    def test_valid_rows(self):
        """String fields are parsed into typed values."""
        txns = validate_transactions([_row(), _row(order_id="O2", is_returned="true")])

        assert txns[0] == Transaction(
            "C1", "O1", date(2024, 5, 1), False, Decimal("50.00")
        )
        assert txns[1].is_returned is True

    def test_is_returned_defaults_to_false(self):
        """A missing is_returned flag means not returned."""
        row = _row()
        del row["is_returned"]
        assert validate_transactions([row])[0].is_returned is False

    def test_accepts_datetime_and_date_values(self):
        """Timestamps are truncated to their calendar date."""
        txns = validate_transactions(
            [
                _row(order_date=datetime(2024, 5, 1, 13, 45)),
                _row(order_date=date(2024, 5, 2)),
                _row(order_date="2024-05-03T10:00:00"),
            ]
        )
        assert [t.order_date for t in txns] == [
            date(2024, 5, 1),
            date(2024, 5, 2),
            date(2024, 5, 3),
        ]

    def test_missing_field_names_field_and_index(self):
        """A missing required field identifies the field and record index."""
        rows = [_row(), _row(order_id="")]
        with pytest.raises(DataContractError) as exc_info:
            validate_transactions(rows)

        assert exc_info.value.field == "order_id"
        assert exc_info.value.context["record_index"] == 1

    @pytest.mark.parametrize(
        "value",
        ["05/01/2024", "2024-05-01-not-a-date", "2024-05-01x", "2024-05-01T99:00"],
    )
    def test_unparseable_date_raises_error(self, value):
        """Dates must be ISO formatted; only a time part may follow the date."""
        with pytest.raises(DataContractError, match="Unparseable date") as exc_info:
            validate_transactions([_row(order_date=value)])
        assert exc_info.value.field == "order_date"

    def test_date_with_space_separated_time(self):
        txns = validate_transactions([_row(order_date="2024-05-03 10:00:00")])
        assert txns[0].order_date == date(2024, 5, 3)

    @pytest.mark.parametrize("amount", ["abc", "NaN", "-5.00", True])
    def test_invalid_amount_raises_error(self, amount):
        """Unparseable, non-finite and negative amounts are rejected."""
        with pytest.raises(DataContractError) as exc_info:
            validate_transactions([_row(amount_paid=amount)])
        assert exc_info.value.field == "amount_paid"

    def test_invalid_return_flag_raises_error(self):
        """Return flags outside the accepted vocabulary are rejected."""
        with pytest.raises(DataContractError, match="Unparseable boolean"):
            validate_transactions([_row(is_returned="maybe")])

    def test_data_contract_error_is_value_error(self):
        """Callers guarding with ValueError still catch contract errors."""
        with pytest.raises(ValueError):
            validate_transactions([_row(amount_paid="-1")])


class TestParseBool:
    """Test return flag parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (True, True),
            (False, False),
            (np.bool_(True), True),
            (1, True),
            (0, False),
            ("Yes", True),
            (" n ", False),
            ("TRUE", True),
            ("0", False),
        ],
    )
    def test_accepted_values(self, value, expected):
        assert parse_bool(value, "is_returned", 0) is expected

    def test_other_integers_rejected(self):
        with pytest.raises(DataContractError):
            parse_bool(2, "is_returned", 0)


class TestValidateCustomers:
    """Test customer table validation."""

    def test_valid_customers(self):
        customers = validate_customers(
            [
                {"customer_id": " C1 ", "acquisition_channel": "organic"},
                {"customer_id": "C2", "acquisition_channel": "paid_search"},
            ]
        )
        assert customers == [
            Customer("C1", "organic"),
            Customer("C2", "paid_search"),
        ]

    def test_duplicate_customer_raises_error(self):
        """Each customer has exactly one static record."""
        rows = [
            {"customer_id": "C1", "acquisition_channel": "organic"},
            {"customer_id": "C1", "acquisition_channel": "social"},
        ]
        with pytest.raises(DataContractError, match="Duplicate customer record") as exc_info:
            validate_customers(rows)
        assert exc_info.value.context["record_index"] == 1

    def test_missing_channel_raises_error(self):
        with pytest.raises(DataContractError) as exc_info:
            validate_customers([{"customer_id": "C1"}])
        assert exc_info.value.field == "acquisition_channel"


class TestFirstPurchases:
    """Test first-purchase facts over the whole history."""

    def test_earliest_non_returned_purchase(self):
        """Returned line items never count as a first purchase."""
        txns = [
            Transaction("C1", "O1", date(2023, 1, 5), True, Decimal("10")),
            Transaction("C1", "O2", date(2023, 3, 1), False, Decimal("20")),
            Transaction("C1", "O3", date(2023, 2, 1), False, Decimal("20")),
            Transaction("C2", "O4", date(2023, 6, 1), False, Decimal("5")),
        ]
        assert first_purchase_dates(txns) == {
            "C1": date(2023, 2, 1),
            "C2": date(2023, 6, 1),
        }

    def test_fully_returned_customer_has_no_fact(self):
        txns = [
            Transaction("C2", "O1", date(2023, 1, 5), True, Decimal("10")),
            Transaction("C1", "O2", date(2023, 1, 6), False, Decimal("10")),
        ]
        assert calculate_first_purchases(txns) == [
            FirstPurchaseFact("C1", date(2023, 1, 6))
        ]
