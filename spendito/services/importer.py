"""Import intake: row normalization, validation and import-level dedup.

Feed adapters and CSV readers hand over transaction-shaped records. Each
row is validated on its own; a row with a missing or unparseable date or
amount is rejected with a ``RowError`` while the rest of the batch goes on.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Optional, Union

from ..exceptions import RowError
from ..models import RawTransaction, SourceAccount, Transaction

__all__ = [
    "ImportResult",
    "ImportRow",
    "dedup_key",
    "normalize_row",
    "parse_amount",
    "parse_date",
    "source_key",
]

ImportRow = Union[RawTransaction, Mapping[str, Any]]

_GERMAN_DATE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$")
_GERMAN_AMOUNT = re.compile(r"^[+-]?\d{1,3}(\.\d{3})*(,\d+)?$|^[+-]?\d+(,\d+)?$")


@dataclass
class ImportResult:
    """Result of importing one batch of rows."""

    source: str  # source account value
    fetched: int = 0  # Rows handed over by the producer
    inserted: int = 0
    skipped_duplicates: int = 0
    errors: list[str] = field(default_factory=list)  # Fatal failures
    row_errors: list[str] = field(default_factory=list)  # Rejected single rows
    transactions: list[Transaction] = field(default_factory=list, repr=False)
    linked: int = 0  # Transactions whose linker flags changed

    @property
    def success(self) -> bool:
        """Check if the batch went through (row errors don't count)."""
        return len(self.errors) == 0


def parse_date(value: Any) -> datetime:
    """Parse an intake date (datetime, date, ISO string or ``DD.MM.YYYY``).

    Raises:
        ValueError: If the value is empty or not a recognizable date.
    """
    if isinstance(value, datetime):
        return value.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        raise ValueError("missing date")
    text = value.strip()
    match = _GERMAN_DATE.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        return datetime(year, month, day)
    return datetime.strptime(text[:10], "%Y-%m-%d")


def parse_amount(value: Any) -> float:
    """Parse a signed amount (number, ``-45.99`` or German ``-1.234,56``).

    Raises:
        ValueError: If the value is empty or not a number.
    """
    if isinstance(value, bool):
        raise ValueError(f"not an amount: {value!r}")
    if isinstance(value, (int, float)):
        amount = float(value)
    elif not isinstance(value, str) or not value.strip():
        raise ValueError("missing amount")
    else:
        text = value.strip().replace(" ", "")
        if "," in text and _GERMAN_AMOUNT.match(text):
            text = text.replace(".", "").replace(",", ".")
        amount = float(text)
    if not math.isfinite(amount):
        raise ValueError(f"not a finite amount: {value!r}")
    return amount


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def normalize_row(row: ImportRow, row_index: Optional[int] = None) -> RawTransaction:
    """Validate a producer row and return a RawTransaction.

    Raises:
        RowError: If the date or amount is missing or unparseable.
    """
    if isinstance(row, RawTransaction):
        data: Mapping[str, Any] = {
            "date": row.date,
            "amount": row.amount,
            "description": row.description,
            "counterparty": row.counterparty,
            "currency": row.currency,
            "external_id": row.external_id,
            "raw_data": row.raw_data,
        }
    else:
        data = row

    try:
        txn_date = parse_date(data.get("date"))
    except ValueError as e:
        raise RowError(f"invalid date {data.get('date')!r}: {e}", row_index) from e
    try:
        amount = parse_amount(data.get("amount"))
    except ValueError as e:
        raise RowError(f"invalid amount {data.get('amount')!r}: {e}", row_index) from e

    description = _text(data.get("description"))
    counterparty = _text(data.get("counterparty"))
    return RawTransaction(
        date=txn_date,
        amount=amount,
        description=description or counterparty,
        counterparty=counterparty,
        currency=data.get("currency") or "EUR",
        external_id=_text(data.get("external_id")) or None,
        raw_data=data.get("raw_data"),
    )


def dedup_key(raw: RawTransaction) -> tuple[str, float, str]:
    """The (date, amount, description) triple used when no external ID matches."""
    return (raw.date.strftime("%Y-%m-%d"), round(raw.amount, 2), raw.description)


def source_key(source_account: SourceAccount) -> str:
    """Sync state key for a source account."""
    return f"import:{source_account.value}"
