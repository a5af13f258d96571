"""JSON backup and restore of the transaction set and the rule store."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from ..db.database import Database
from ..exceptions import BackupError
from ..models import Category, CategoryRule, SourceAccount, Transaction, TransactionType

logger = logging.getLogger(__name__)

BACKUP_FORMAT = "spendito-backup"
BACKUP_VERSION = 1


def transaction_to_dict(txn: Transaction) -> dict[str, Any]:
    return {
        "id": txn.id,
        "external_id": txn.external_id,
        "source_account": txn.source_account.value,
        "date": txn.display_date,
        "amount": txn.amount,
        "currency": txn.currency,
        "description": txn.description,
        "counterparty": txn.counterparty,
        "category": txn.category.value,
        "type": txn.type.value,
        "confidence": txn.confidence,
        "is_manually_categorized": txn.is_manually_categorized,
        "is_user_confirmed": txn.is_user_confirmed,
        "is_duplicate": txn.is_duplicate,
        "duplicate_reason": txn.duplicate_reason,
        "linked_transaction_id": txn.linked_transaction_id,
        "is_guthaben_transfer": txn.is_guthaben_transfer,
        "linked_payment_id": txn.linked_payment_id,
        "linked_payment_description": txn.linked_payment_description,
        "linked_payment_counterparty": txn.linked_payment_counterparty,
        "linked_payment_category": (
            txn.linked_payment_category.value if txn.linked_payment_category else None
        ),
        "raw_data": txn.raw_data,
    }


def transaction_from_dict(data: dict[str, Any]) -> Transaction:
    linked_category = data.get("linked_payment_category")
    return Transaction(
        id=data["id"],
        external_id=data.get("external_id"),
        source_account=SourceAccount(data["source_account"]),
        date=datetime.strptime(data["date"], "%Y-%m-%d"),
        amount=float(data["amount"]),
        currency=data.get("currency", "EUR"),
        description=data.get("description", ""),
        counterparty=data.get("counterparty", ""),
        category=Category(data["category"]),
        type=TransactionType(data["type"]),
        confidence=float(data.get("confidence", 0.0)),
        is_manually_categorized=bool(data.get("is_manually_categorized", False)),
        is_user_confirmed=bool(data.get("is_user_confirmed", False)),
        is_duplicate=bool(data.get("is_duplicate", False)),
        duplicate_reason=data.get("duplicate_reason"),
        linked_transaction_id=data.get("linked_transaction_id"),
        is_guthaben_transfer=bool(data.get("is_guthaben_transfer", False)),
        linked_payment_id=data.get("linked_payment_id"),
        linked_payment_description=data.get("linked_payment_description"),
        linked_payment_counterparty=data.get("linked_payment_counterparty"),
        linked_payment_category=Category(linked_category) if linked_category else None,
        raw_data=data.get("raw_data"),
    )


def rule_to_dict(rule: CategoryRule) -> dict[str, Any]:
    return {
        "id": rule.id,
        "pattern": rule.pattern,
        "category": rule.category.value,
        "priority": rule.priority,
        "match_count": rule.match_count,
        "is_user_defined": rule.is_user_defined,
        "min_amount": rule.min_amount,
        "max_amount": rule.max_amount,
        "created_at": rule.created_at.isoformat(),
    }


def rule_from_dict(data: dict[str, Any]) -> CategoryRule:
    return CategoryRule(
        id=data["id"],
        pattern=data["pattern"],
        category=Category(data["category"]),
        priority=int(data["priority"]),
        match_count=int(data.get("match_count", 0)),
        is_user_defined=bool(data.get("is_user_defined", False)),
        min_amount=data.get("min_amount"),
        max_amount=data.get("max_amount"),
        created_at=datetime.fromisoformat(data["created_at"]),
    )


def export_backup(db: Database, path: Path) -> dict[str, int]:
    """Write every transaction and rule to a JSON backup file.

    Returns:
        Counts of exported transactions and rules.
    """
    transactions = db.get_transactions()
    rules = db.get_rules()
    payload = {
        "format": BACKUP_FORMAT,
        "version": BACKUP_VERSION,
        "exported_at": datetime.now().isoformat(),
        "transactions": [transaction_to_dict(t) for t in transactions],
        "rules": [rule_to_dict(r) for r in rules],
    }
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
    logger.info("Exported %d transactions and %d rules to %s", len(transactions), len(rules), path)
    return {"transactions": len(transactions), "rules": len(rules)}


def restore_backup(db: Database, path: Path) -> dict[str, int]:
    """Replace the stored transactions and rules with a backup's contents.

    The backup is fully parsed before anything is written; a broken file
    leaves the database untouched.

    Raises:
        BackupError: If the file is missing, not JSON, or not a known backup version.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            payload = json.load(f)
    except OSError as e:
        raise BackupError(f"Cannot read backup {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise BackupError(f"Backup {path} is not valid JSON: {e}") from e

    if not isinstance(payload, dict) or payload.get("format") != BACKUP_FORMAT:
        raise BackupError(f"{path} is not a Spendito backup")
    if payload.get("version") != BACKUP_VERSION:
        raise BackupError(f"Unsupported backup version: {payload.get('version')!r}")

    try:
        transactions = [transaction_from_dict(d) for d in payload.get("transactions", [])]
        rules = [rule_from_dict(d) for d in payload.get("rules", [])]
    except (KeyError, TypeError, ValueError) as e:
        raise BackupError(f"Backup {path} has a malformed record: {e}") from e

    with db.atomic():
        db.clear_all()
        db.upsert_transactions(transactions)
        db.save_rules(rules)
    logger.info("Restored %d transactions and %d rules from %s", len(transactions), len(rules), path)
    return {"transactions": len(transactions), "rules": len(rules)}
