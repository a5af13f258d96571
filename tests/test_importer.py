"""Tests for import row normalization."""

from datetime import date, datetime

import pytest

from spendito.exceptions import RowError
from spendito.models import RawTransaction, SourceAccount
from spendito.services.importer import (
    ImportResult,
    dedup_key,
    normalize_row,
    parse_amount,
    parse_date,
    source_key,
)


class TestParseDate:
    """Tests for parse_date()."""

    def test_german_format(self):
        assert parse_date("15.03.2024") == datetime(2024, 3, 15)

    def test_iso_with_time(self):
        """Only the date part of an ISO timestamp is kept."""
        assert parse_date("2024-03-15T10:30:00Z") == datetime(2024, 3, 15)

    def test_datetime_truncated_to_day(self):
        assert parse_date(datetime(2024, 3, 15, 18, 45)) == datetime(2024, 3, 15)

    def test_date_object(self):
        assert parse_date(date(2024, 3, 15)) == datetime(2024, 3, 15)

    @pytest.mark.parametrize("value", [None, "", "   ", "gestern", "31.02.2024", 20240315])
    def test_invalid(self, value):
        """Missing or unparseable dates raise ValueError."""
        with pytest.raises(ValueError):
            parse_date(value)


class TestParseAmount:
    """Tests for parse_amount()."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("-45.99", -45.99),
            ("45,99", 45.99),
            ("-1.234,56", -1234.56),
            ("1.000", 1.0),
            (" 250 ", 250.0),
            (12, 12.0),
            (-3.5, -3.5),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_amount(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", [None, "", "abc", "nan", "inf", True, float("nan"), float("-inf")])
    def test_invalid(self, value):
        """Missing, non-numeric and non-finite amounts raise ValueError."""
        with pytest.raises(ValueError):
            parse_amount(value)


class TestNormalizeRow:
    """Tests for normalize_row()."""

    def test_mapping_row(self):
        """Mapping rows are parsed and stripped."""
        raw = normalize_row(
            {
                "date": "10.03.2024",
                "amount": "-45,99",
                "description": " Zooplus Bestellung ",
                "counterparty": "Zooplus AG",
                "external_id": "PP_1",
            }
        )
        assert raw.date == datetime(2024, 3, 10)
        assert raw.amount == pytest.approx(-45.99)
        assert raw.description == "Zooplus Bestellung"
        assert raw.currency == "EUR"
        assert raw.external_id == "PP_1"

    def test_raw_transaction_row(self):
        """RawTransaction rows pass through validation too."""
        row = RawTransaction(date=datetime(2024, 3, 10, 12), amount=10, description="Spende")
        raw = normalize_row(row)
        assert raw.date == datetime(2024, 3, 10)
        assert raw.amount == 10.0

    def test_description_falls_back_to_counterparty(self):
        raw = normalize_row({"date": "2024-03-10", "amount": 5, "counterparty": "Max Mustermann"})
        assert raw.description == "Max Mustermann"

    def test_empty_external_id_is_none(self):
        raw = normalize_row({"date": "2024-03-10", "amount": 5, "external_id": ""})
        assert raw.external_id is None

    def test_invalid_date_reports_row(self):
        """Row errors name the row and the offending field."""
        with pytest.raises(RowError) as exc_info:
            normalize_row({"date": "kaputt", "amount": 5}, row_index=3)
        assert str(exc_info.value).startswith("Row 3: invalid date")
        assert exc_info.value.row_index == 3

    def test_missing_amount(self):
        with pytest.raises(RowError, match="invalid amount"):
            normalize_row({"date": "2024-03-10"})

    def test_non_string_text_fields(self):
        """Numbers from a feed are taken as text."""
        raw = normalize_row(
            {"date": "2024-03-10", "amount": 5, "description": 12345, "counterparty": 42, "external_id": 7}
        )
        assert raw.description == "12345"
        assert raw.counterparty == "42"
        assert raw.external_id == "7"

    def test_nan_amount_is_a_row_error(self):
        with pytest.raises(RowError, match="invalid amount"):
            normalize_row({"date": "2024-03-10", "amount": float("nan")}, row_index=0)


class TestImportHelpers:
    """Tests for result and key helpers."""

    def test_dedup_key_rounds_amount(self):
        raw = RawTransaction(date=datetime(2024, 3, 10), amount=-45.994, description="Zooplus")
        assert dedup_key(raw) == ("2024-03-10", -45.99, "Zooplus")

    def test_source_key(self):
        assert source_key(SourceAccount.PAYPAL) == "import:paypal"

    def test_row_errors_do_not_fail_result(self):
        """Only fatal errors make a result unsuccessful."""
        result = ImportResult(source="volksbank", row_errors=["Row 1: invalid date"])
        assert result.success
        result.errors.append("database is locked")
        assert not result.success
