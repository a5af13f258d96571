"""Mock feeds for testing and development without bank access.

Both feeds draw from the same seeded generator, so a PayPal purchase and
its "PAYPAL *ZOOPLUS" bank line always appear together, as do balance
top-ups and the payments they fund.
"""

from __future__ import annotations

import random
from datetime import datetime
from typing import Optional

from ..models import RawTransaction, SourceAccount

DONORS = [
    "Maria Schmidt",
    "Hans Müller",
    "Petra Weber",
    "Klaus Fischer",
    "Sabine Becker",
    "Thomas Wagner",
    "Anna Hoffmann",
    "Michael Schulz",
]
DOGS = ["Luna", "Max", "Bella", "Rocky", "Mia", "Bruno", "Emma", "Leo"]
PURCHASE_AMOUNTS = [45.99, 67.80, 89.50, 125.00]


def build_mock_data(
    year: int,
    seed: int = 42,
    last_month: int = 12,
) -> dict[SourceAccount, list[RawTransaction]]:
    """Generate a year of transactions for both accounts.

    Args:
        year: Calendar year to generate.
        seed: Random seed; the same seed always yields the same data.
        last_month: Last month to generate (inclusive).
    """
    rng = random.Random(seed)
    bank: list[RawTransaction] = []
    paypal: list[RawTransaction] = []

    def add(target, kind, month, day, amount, description, counterparty, index=0):
        prefix = "VB" if target is bank else "PP"
        target.append(
            RawTransaction(
                date=datetime(year, month, day),
                amount=round(amount, 2),
                description=description,
                counterparty=counterparty,
                external_id=f"{prefix}_{year}{month:02d}{day:02d}_{kind}_{index}",
            )
        )

    for month in range(1, last_month + 1):
        # Bank donations and adoption fees
        for i in range(rng.randint(2, 5)):
            add(
                bank,
                "donation",
                month,
                rng.randint(1, 28),
                rng.choice([20, 30, 50, 100, 150]),
                "Spende für die Hunde",
                rng.choice(DONORS),
                i,
            )
        for i in range(rng.randint(1, 3)):
            add(
                bank,
                "adoption",
                month,
                rng.randint(1, 28),
                rng.choice([350, 400, 450, 500]),
                f"Schutzgebühr {rng.choice(DOGS)}",
                rng.choice(DONORS),
                i,
            )
        if month % 3 == 1:
            for i in range(rng.randint(3, 6)):
                add(
                    bank,
                    "member",
                    month,
                    5,
                    rng.choice([30, 50, 60]),
                    f"Mitgliedsbeitrag Quartal {rng.choice(DONORS).split()[0]}",
                    rng.choice(DONORS),
                    i,
                )

        # Bank expenses
        add(
            bank,
            "vet",
            month,
            rng.randint(1, 28),
            -rng.choice([200, 350, 500, 800]),
            "Tierarzt Behandlung",
            rng.choice(["Tierklinik Nord", "Dr. Tierlieb"]),
        )
        add(
            bank,
            "foster",
            month,
            rng.randint(1, 5),
            -rng.choice([100, 150, 200]),
            "Pflegestelle Aufwandsentschädigung",
            rng.choice(DONORS),
        )
        add(
            bank,
            "admin",
            month,
            28,
            -rng.choice([20, 30, 50]),
            rng.choice(["Porto Versand", "Bankgebühren", "Versicherung Verein"]),
            rng.choice(["Deutsche Post", "Volksbank"]),
        )

        # PayPal donations
        for i in range(rng.randint(2, 6)):
            add(
                paypal,
                "donation",
                month,
                rng.randint(1, 28),
                rng.choice([5, 10, 15, 20, 25, 50]),
                "Spende Tierschutz",
                rng.choice(DONORS),
                i,
            )

        # PayPal purchase mirrored on the bank statement one or two days later
        day = rng.randint(10, 19)
        amount = -rng.choice(PURCHASE_AMOUNTS)
        add(paypal, "purchase", month, day, amount, "Zooplus Bestellung", "Zooplus AG")
        add(
            bank,
            "paypal",
            month,
            min(day + rng.randint(1, 2), 28),
            amount,
            "PAYPAL *ZOOPLUS",
            "PayPal Europe S.a.r.l.",
        )

        # Balance top-up funding a PayPal payment the next day
        if month % 2 == 0:
            day = rng.randint(1, 8)
            amount = -rng.choice(PURCHASE_AMOUNTS)
            add(paypal, "topup", month, day, amount, "Guthaben-Transfer vom Bankkonto", "PayPal")
            add(paypal, "funded", month, day + 1, amount, "Futterbestellung", "Zooplus AG")
            add(
                bank,
                "topup",
                month,
                day,
                amount,
                "PayPal Guthaben-Aufladung",
                "PayPal Europe S.a.r.l.",
            )

        if rng.random() > 0.5:
            add(
                paypal,
                "transport",
                month,
                rng.randint(1, 28),
                -rng.choice([35, 50, 65, 80]),
                "Tankstelle Benzin",
                "Shell Station",
            )

    return {SourceAccount.VOLKSBANK: bank, SourceAccount.PAYPAL: paypal}


class MockFeed:
    """Deterministic feed for one account."""

    def __init__(
        self,
        source_account: SourceAccount,
        year: Optional[int] = None,
        seed: int = 42,
    ):
        now = datetime.now()
        self.source_account = source_account
        self.year = year or now.year
        self.seed = seed
        self._last_month = 12 if self.year < now.year else now.month

    def fetch_transactions(self, since_date: Optional[datetime] = None) -> list[RawTransaction]:
        data = build_mock_data(self.year, self.seed, self._last_month)[self.source_account]
        if since_date is not None:
            data = [t for t in data if t.date >= since_date]
        return data


class FailingFeed:
    """Feed that always fails, for exercising error reporting."""

    def __init__(self, source_account: SourceAccount, message: str = "connection refused"):
        self.source_account = source_account
        self.message = message

    def fetch_transactions(self, since_date: Optional[datetime] = None) -> list[RawTransaction]:
        raise ConnectionError(self.message)
