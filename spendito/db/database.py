"""SQLite database management for Spendito.

Handles connection management and provides query methods for:
- Transactions from both source accounts (with linker flags)
- Categorization rules (the learned rule store)
- Sync state tracking per source account
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from ..models import Category, CategoryRule, SourceAccount, Transaction, TransactionType

__all__ = ["Database"]

logger = logging.getLogger(__name__)

_TRANSACTION_COLUMNS = (
    "id",
    "external_id",
    "source_account",
    "date",
    "amount",
    "currency",
    "description",
    "counterparty",
    "category",
    "type",
    "confidence",
    "is_manually_categorized",
    "is_user_confirmed",
    "is_duplicate",
    "duplicate_reason",
    "linked_transaction_id",
    "is_guthaben_transfer",
    "linked_payment_id",
    "linked_payment_description",
    "linked_payment_counterparty",
    "linked_payment_category",
    "raw_data",
)


def _now_iso() -> str:
    """Return current datetime as ISO format string."""
    return datetime.now().isoformat()


def _date_str(dt: date | datetime) -> str:
    """Convert date/datetime to YYYY-MM-DD string."""
    return dt.strftime("%Y-%m-%d")


def _transaction_to_row(txn: Transaction) -> tuple[Any, ...]:
    return (
        txn.id,
        txn.external_id,
        txn.source_account.value,
        _date_str(txn.date),
        txn.amount,
        txn.currency,
        txn.description,
        txn.counterparty,
        txn.category.value,
        txn.type.value,
        txn.confidence,
        txn.is_manually_categorized,
        txn.is_user_confirmed,
        txn.is_duplicate,
        txn.duplicate_reason,
        txn.linked_transaction_id,
        txn.is_guthaben_transfer,
        txn.linked_payment_id,
        txn.linked_payment_description,
        txn.linked_payment_counterparty,
        txn.linked_payment_category.value if txn.linked_payment_category else None,
        json.dumps(txn.raw_data) if txn.raw_data is not None else None,
    )


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        external_id=row["external_id"],
        source_account=SourceAccount(row["source_account"]),
        date=datetime.strptime(row["date"][:10], "%Y-%m-%d"),
        amount=row["amount"],
        currency=row["currency"],
        description=row["description"] or "",
        counterparty=row["counterparty"] or "",
        category=Category(row["category"]),
        type=TransactionType(row["type"]),
        confidence=row["confidence"],
        is_manually_categorized=bool(row["is_manually_categorized"]),
        is_user_confirmed=bool(row["is_user_confirmed"]),
        is_duplicate=bool(row["is_duplicate"]),
        duplicate_reason=row["duplicate_reason"],
        linked_transaction_id=row["linked_transaction_id"],
        is_guthaben_transfer=bool(row["is_guthaben_transfer"]),
        linked_payment_id=row["linked_payment_id"],
        linked_payment_description=row["linked_payment_description"],
        linked_payment_counterparty=row["linked_payment_counterparty"],
        linked_payment_category=(
            Category(row["linked_payment_category"]) if row["linked_payment_category"] else None
        ),
        raw_data=json.loads(row["raw_data"]) if row["raw_data"] else None,
    )


def _row_to_rule(row: sqlite3.Row) -> CategoryRule:
    return CategoryRule(
        id=row["id"],
        pattern=row["pattern"],
        category=Category(row["category"]),
        priority=row["priority"],
        match_count=row["match_count"],
        is_user_defined=bool(row["is_user_defined"]),
        min_amount=row["min_amount"],
        max_amount=row["max_amount"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class Database:
    """SQLite database manager for transactions, rules and sync state."""

    def __init__(self, db_path: Path | str):
        """Initialize database connection."""
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._depth = 0
        self._init_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create a persistent database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30.0)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=30000")
        return self._conn

    def close(self):
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections.

        Nested uses share the outermost commit: only the outermost block
        commits, and an exception anywhere rolls the whole block back.
        """
        conn = self._get_connection()
        if self._depth:
            yield conn
            return
        self._depth += 1
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._depth -= 1

    def atomic(self):
        """Group several writes into a single commit."""
        return self._connection()

    def _count(self, table: str, where: str = "", params: tuple[Any, ...] = ()) -> int:
        """Count rows in a table with optional WHERE clause."""
        query = f"SELECT COUNT(*) as count FROM {table}"
        if where:
            query += f" WHERE {where}"
        with self._connection() as conn:
            row = conn.execute(query, params).fetchone()
            return int(row["count"]) if row else 0

    def _init_schema(self):
        """Create database tables if they don't exist."""
        with self._connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS transactions (
                    id TEXT PRIMARY KEY,
                    external_id TEXT,
                    source_account TEXT NOT NULL,
                    date DATE NOT NULL,
                    amount REAL NOT NULL,
                    currency TEXT DEFAULT 'EUR',
                    description TEXT,
                    counterparty TEXT,
                    category TEXT NOT NULL,
                    type TEXT NOT NULL,
                    confidence REAL DEFAULT 0,
                    is_manually_categorized BOOLEAN DEFAULT 0,
                    is_user_confirmed BOOLEAN DEFAULT 0,
                    is_duplicate BOOLEAN DEFAULT 0,
                    duplicate_reason TEXT,
                    linked_transaction_id TEXT,
                    is_guthaben_transfer BOOLEAN DEFAULT 0,
                    linked_payment_id TEXT,
                    linked_payment_description TEXT,
                    linked_payment_counterparty TEXT,
                    linked_payment_category TEXT,
                    raw_data TEXT,
                    imported_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    modified_at TIMESTAMP
                );
                CREATE TABLE IF NOT EXISTS category_rules (
                    id TEXT PRIMARY KEY,
                    position INTEGER NOT NULL,
                    pattern TEXT NOT NULL,
                    category TEXT NOT NULL,
                    priority INTEGER NOT NULL,
                    match_count INTEGER DEFAULT 0,
                    is_user_defined BOOLEAN DEFAULT 0,
                    min_amount REAL,
                    max_amount REAL,
                    created_at TIMESTAMP NOT NULL
                );
                CREATE TABLE IF NOT EXISTS sync_state (
                    key TEXT PRIMARY KEY,
                    last_sync_at TIMESTAMP,
                    record_count INTEGER
                );
                CREATE INDEX IF NOT EXISTS idx_txn_date ON transactions(date);
                CREATE INDEX IF NOT EXISTS idx_txn_external ON transactions(external_id);
                CREATE INDEX IF NOT EXISTS idx_txn_source ON transactions(source_account);
                CREATE INDEX IF NOT EXISTS idx_txn_category ON transactions(category);
            """)

    def clear_all(self) -> dict[str, int]:
        """Clear all data from all tables."""
        counts = {}
        with self._connection() as conn:
            for table in ["transactions", "category_rules", "sync_state"]:
                row = conn.execute(f"SELECT COUNT(*) as count FROM {table}").fetchone()
                counts[table] = row["count"] if row else 0
                conn.execute(f"DELETE FROM {table}")
        return counts

    # =========================================================================
    # Transaction Methods
    # =========================================================================

    def upsert_transaction(self, txn: Transaction) -> tuple[bool, bool]:
        """Insert or update a transaction.

        Returns:
            Tuple of (was_inserted, was_changed).
        """
        new_row = _transaction_to_row(txn)
        with self._connection() as conn:
            existing = conn.execute(
                f"SELECT {', '.join(_TRANSACTION_COLUMNS)} FROM transactions WHERE id = ?",
                (txn.id,),
            ).fetchone()
            if existing is None:
                placeholders = ", ".join("?" for _ in _TRANSACTION_COLUMNS)
                conn.execute(
                    f"INSERT INTO transactions ({', '.join(_TRANSACTION_COLUMNS)}) "
                    f"VALUES ({placeholders})",
                    new_row,
                )
                return True, True
            if tuple(existing) == new_row:
                return False, False
            assignments = ", ".join(f"{col}=?" for col in _TRANSACTION_COLUMNS[1:])
            conn.execute(
                f"UPDATE transactions SET {assignments}, modified_at=? WHERE id=?",
                (*new_row[1:], _now_iso(), txn.id),
            )
            return False, True

    def upsert_transactions(self, transactions: Iterable[Transaction]) -> tuple[int, int]:
        """Batch upsert transactions in one commit."""
        inserted, updated = 0, 0
        with self._connection():
            for txn in transactions:
                was_inserted, was_changed = self.upsert_transaction(txn)
                if was_inserted:
                    inserted += 1
                elif was_changed:
                    updated += 1
        return inserted, updated

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Get a single transaction by ID."""
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {', '.join(_TRANSACTION_COLUMNS)} FROM transactions WHERE id = ?",
                (transaction_id,),
            ).fetchone()
            return _row_to_transaction(row) if row else None

    def get_transactions(
        self,
        year: Optional[int] = None,
        source_account: Optional[SourceAccount] = None,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        """Query transactions, newest first."""
        conditions, params = [], []
        if year is not None:
            conditions.append("date >= ? AND date < ?")
            params.extend([f"{year:04d}-01-01", f"{year + 1:04d}-01-01"])
        if source_account is not None:
            conditions.append("source_account = ?")
            params.append(source_account.value)
        where_clause = " AND ".join(conditions) if conditions else "1=1"
        limit_clause = f"LIMIT {int(limit)}" if limit else ""
        with self._connection() as conn:
            rows = conn.execute(
                f"""SELECT {', '.join(_TRANSACTION_COLUMNS)} FROM transactions
                WHERE {where_clause} ORDER BY date DESC, id {limit_clause}""",
                params,
            ).fetchall()
            return [_row_to_transaction(row) for row in rows]

    def find_existing_transaction(
        self,
        external_id: Optional[str],
        txn_date: datetime,
        amount: float,
        description: str,
    ) -> Optional[str]:
        """Find a stored transaction for an intake record.

        Records with an external ID match by that ID only; records without
        one match by the (date, amount, description) triple.

        Returns:
            The stored transaction ID, or None.
        """
        with self._connection() as conn:
            if external_id:
                row = conn.execute(
                    "SELECT id FROM transactions WHERE external_id = ? LIMIT 1", (external_id,)
                ).fetchone()
                return row["id"] if row else None
            row = conn.execute(
                """SELECT id FROM transactions
                WHERE date = ? AND ABS(amount - ?) < 0.005 AND description = ? LIMIT 1""",
                (_date_str(txn_date), amount, description),
            ).fetchone()
            return row["id"] if row else None

    def delete_transaction(self, transaction_id: str) -> bool:
        """Delete a transaction by ID."""
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM transactions WHERE id = ?", (transaction_id,))
            return cursor.rowcount > 0

    def get_transaction_count(self, source_account: Optional[SourceAccount] = None) -> int:
        """Get total transaction count, optionally for one account."""
        if source_account is None:
            return self._count("transactions")
        return self._count("transactions", "source_account = ?", (source_account.value,))

    def get_duplicate_count(self) -> int:
        """Get count of transactions flagged as duplicates."""
        return self._count("transactions", "is_duplicate = 1")

    def get_transaction_years(self) -> list[int]:
        """Get the distinct years that have transactions, newest first."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT DISTINCT substr(date, 1, 4) AS year FROM transactions ORDER BY year DESC"
            ).fetchall()
            return [int(row["year"]) for row in rows]

    def get_transaction_date_range(self) -> tuple[Optional[str], Optional[str]]:
        """Get earliest and latest transaction dates."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT MIN(date) as earliest, MAX(date) as latest FROM transactions"
            ).fetchone()
            if row and row["earliest"]:
                return (row["earliest"][:10], row["latest"][:10])
            return (None, None)

    # =========================================================================
    # Rule Methods
    # =========================================================================

    def get_rules(self) -> list[CategoryRule]:
        """Load the rule store in its stored order."""
        with self._connection() as conn:
            rows = conn.execute(
                """SELECT id, pattern, category, priority, match_count, is_user_defined,
                min_amount, max_amount, created_at FROM category_rules ORDER BY position"""
            ).fetchall()
            return [_row_to_rule(row) for row in rows]

    def save_rules(self, rules: list[CategoryRule]) -> None:
        """Replace the stored rule set with the given rules."""
        with self._connection() as conn:
            conn.execute("DELETE FROM category_rules")
            conn.executemany(
                """INSERT INTO category_rules (id, position, pattern, category, priority,
                match_count, is_user_defined, min_amount, max_amount, created_at)
                VALUES (?,?,?,?,?,?,?,?,?,?)""",
                [
                    (
                        rule.id,
                        position,
                        rule.pattern,
                        rule.category.value,
                        rule.priority,
                        rule.match_count,
                        rule.is_user_defined,
                        rule.min_amount,
                        rule.max_amount,
                        rule.created_at.isoformat(),
                    )
                    for position, rule in enumerate(rules)
                ],
            )
        logger.debug("Saved %d categorization rules", len(rules))

    def get_rule_count(self) -> int:
        """Get count of stored rules."""
        return self._count("category_rules")

    # =========================================================================
    # Sync State Methods
    # =========================================================================

    def get_sync_state(self, key: str) -> Optional[dict[str, Any]]:
        """Get sync state for a source key."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT key, last_sync_at, record_count FROM sync_state WHERE key = ?", (key,)
            ).fetchone()
            if not row:
                return None
            return {
                "key": row["key"],
                "last_sync_at": (
                    datetime.fromisoformat(row["last_sync_at"]) if row["last_sync_at"] else None
                ),
                "record_count": row["record_count"],
            }

    def update_sync_state(self, key: str, sync_at: datetime, record_count: int) -> None:
        """Record a completed sync for a source key."""
        with self._connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sync_state (key, last_sync_at, record_count) VALUES (?,?,?)",
                (key, sync_at.isoformat(), record_count),
            )
