"""Shared pytest fixtures for Spendito tests."""

from datetime import datetime

import pytest

from spendito.config import Config
from spendito.db.database import Database
from spendito.models import (
    Category,
    SourceAccount,
    Transaction,
    new_transaction_id,
    type_for_category,
)
from spendito.services import CategorizerService, DuplicateLinker, LedgerService

# A fixed reference day keeps date-window tests independent of "today"
DAY = datetime(2024, 3, 10)


@pytest.fixture
def temp_db_path(tmp_path):
    """Create a temporary database path."""
    return tmp_path / "test_spendito.db"


@pytest.fixture
def database(temp_db_path):
    """Create a test database instance."""
    db = Database(temp_db_path)
    yield db
    db.close()


@pytest.fixture
def sample_config(tmp_path):
    """Configuration pointing at a temporary data directory."""
    return Config(data_dir=tmp_path)


@pytest.fixture
def categorizer(database):
    """Categorizer seeded with the default rules."""
    return CategorizerService(db=database)


@pytest.fixture
def linker():
    """Linker with default thresholds."""
    return DuplicateLinker()


@pytest.fixture
def ledger(database, categorizer, sample_config):
    """Ledger service wired to the test database."""
    return LedgerService(db=database, categorizer=categorizer, config=sample_config)


@pytest.fixture
def make_transaction():
    """Factory for transactions with sensible defaults."""

    def _make(
        amount: float,
        description: str = "",
        source_account: SourceAccount = SourceAccount.VOLKSBANK,
        category: Category | None = None,
        date: datetime = DAY,
        counterparty: str = "",
        **kwargs,
    ) -> Transaction:
        if category is None:
            category = Category.OTHER_INCOME if amount >= 0 else Category.OTHER_EXPENSE
        return Transaction(
            id=kwargs.pop("id", new_transaction_id()),
            date=date,
            amount=amount,
            description=description,
            counterparty=counterparty,
            source_account=source_account,
            category=category,
            type=kwargs.pop("type", type_for_category(category, amount)),
            confidence=kwargs.pop("confidence", 0.5),
            **kwargs,
        )

    return _make


@pytest.fixture
def zooplus_pair(make_transaction):
    """A PayPal purchase and its "PAYPAL *ZOOPLUS" bank line one day later."""
    paypal = make_transaction(
        -45.99,
        "Zooplus AG",
        source_account=SourceAccount.PAYPAL,
        category=Category.FOSTER_CARE,
        counterparty="Zooplus AG",
        id="pp-zooplus",
    )
    bank = make_transaction(
        -45.99,
        "PAYPAL *ZOOPLUS",
        source_account=SourceAccount.VOLKSBANK,
        category=Category.FOSTER_CARE,
        counterparty="PayPal Europe S.a.r.l.",
        date=datetime(2024, 3, 11),
        id="vb-zooplus",
    )
    return paypal, bank


@pytest.fixture
def guthaben_pair(make_transaction):
    """A PayPal balance top-up on day N and the payment it funds on day N+1."""
    transfer = make_transaction(
        -89.50,
        "Guthaben-Transfer",
        source_account=SourceAccount.PAYPAL,
        category=Category.TRANSFER,
        counterparty="PayPal",
        id="pp-transfer",
    )
    payment = make_transaction(
        -89.50,
        "Futterbestellung",
        source_account=SourceAccount.PAYPAL,
        category=Category.FOSTER_CARE,
        counterparty="Zooplus AG",
        date=datetime(2024, 3, 11),
        id="pp-payment",
    )
    return transfer, payment
