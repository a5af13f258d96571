"""Reader for Volksbank CSV account exports.

The export is semicolon separated with a header row. Amounts and dates use
German formatting (``-1.234,56``, ``31.12.2024``); the ledger's row
normalization parses them.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..exceptions import RowError
from ..models import RawTransaction, SourceAccount
from ..services.importer import normalize_row, parse_date

logger = logging.getLogger(__name__)

# Column indices (0-based)
BOOKING_DATE = 4
COUNTERPARTY_NAME = 6
COUNTERPARTY_IBAN = 7
COUNTERPARTY_BIC = 8
BOOKING_TEXT = 9
PURPOSE = 10
AMOUNT = 11
CURRENCY = 12

MIN_COLUMNS = 12

PAYPAL_NAME = "PayPal"
PAYPAL_IBAN = "LU89751000135104200E"
PAYPAL_BIC = "PPLXLUL2"
PAYPAL_PURPOSE = re.compile(r"PP\.\d+\.PP")
PAYPAL_REFERENCE = re.compile(r"(\d+)/PP\.\d+\.PP")

_EXTERNAL_ID_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def _column(row: list[str], index: int) -> str:
    return row[index].strip() if len(row) > index else ""


def is_paypal_row(row: list[str]) -> bool:
    """Check if a bank row is a payment to or from PayPal."""
    return (
        PAYPAL_NAME in _column(row, COUNTERPARTY_NAME)
        or _column(row, COUNTERPARTY_IBAN) == PAYPAL_IBAN
        or _column(row, COUNTERPARTY_BIC) == PAYPAL_BIC
        or bool(PAYPAL_PURPOSE.search(_column(row, PURPOSE)))
    )


def paypal_reference(purpose: str) -> Optional[str]:
    """Extract the PayPal transaction reference, e.g. from "1046991113506/PP.7142.PP"."""
    match = PAYPAL_REFERENCE.search(purpose)
    return match.group(1) if match else None


def external_id_for_row(row: list[str]) -> str:
    """Stable identifier derived from booking date, amount, counterparty and purpose."""
    counterparty = _column(row, COUNTERPARTY_NAME) or "unknown"
    raw_id = (
        f"bank_{_column(row, BOOKING_DATE)}_{_column(row, AMOUNT)}_"
        f"{counterparty[:20]}_{_column(row, PURPOSE)[:30]}"
    )
    return _EXTERNAL_ID_CHARS.sub("", raw_id)


def parse_volksbank_csv(content: str) -> tuple[list[dict], list[RowError]]:
    """Split a Volksbank export into import rows.

    Returns:
        Tuple of (rows, row_errors). Rows are mappings accepted by the
        ledger import; rows with too few columns become row errors.
    """
    reader = csv.reader(io.StringIO(content), delimiter=";", quotechar='"')
    rows: list[dict] = []
    errors: list[RowError] = []
    header_seen = False
    for line_number, columns in enumerate(reader, start=1):
        if not any(c.strip() for c in columns):
            continue
        if not header_seen:
            header_seen = True
            continue
        if len(columns) < MIN_COLUMNS:
            errors.append(RowError(f"not enough columns ({len(columns)})", line_number))
            continue

        counterparty = _column(columns, COUNTERPARTY_NAME) or "Unbekannt"
        purpose = _column(columns, PURPOSE)
        description = purpose or _column(columns, BOOKING_TEXT) or counterparty
        is_paypal = is_paypal_row(columns)
        rows.append(
            {
                "date": _column(columns, BOOKING_DATE),
                "amount": _column(columns, AMOUNT),
                "description": description,
                "counterparty": counterparty,
                "currency": _column(columns, CURRENCY) or "EUR",
                "external_id": external_id_for_row(columns),
                "raw_data": {
                    "booking_text": _column(columns, BOOKING_TEXT),
                    "is_paypal": is_paypal,
                    "paypal_reference": paypal_reference(purpose) if is_paypal else None,
                },
            }
        )
    logger.debug("Parsed %d rows, %d rejected", len(rows), len(errors))
    return rows, errors


def read_volksbank_csv(path: Path) -> tuple[list[dict], list[RowError]]:
    """Read and parse a Volksbank export file.

    Raises:
        OSError: If the file cannot be read.
    """
    text = Path(path).read_text(encoding="utf-8-sig")
    return parse_volksbank_csv(text)


class VolksbankCsvFeed:
    """Feed adapter serving the rows of a Volksbank CSV export."""

    source_account = SourceAccount.VOLKSBANK

    def __init__(self, path: Path):
        self.path = Path(path)
        self.row_errors: list[RowError] = []

    def fetch_transactions(self, since_date: Optional[datetime] = None) -> list[RawTransaction]:
        """Rows of the export as RawTransactions, optionally from a date on.

        Rows whose date or amount cannot be parsed end up in ``row_errors``.
        """
        rows, self.row_errors = read_volksbank_csv(self.path)
        transactions = []
        for index, row in enumerate(rows):
            try:
                raw = normalize_row(row, index)
            except RowError as e:
                self.row_errors.append(e)
                continue
            if since_date is None or raw.date >= parse_date(since_date):
                transactions.append(raw)
        return transactions
