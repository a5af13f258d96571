"""Feed adapters and external collaborator interfaces for Spendito."""

from .mock_feed import FailingFeed, MockFeed, build_mock_data
from .protocols import ReviewAdvisorProtocol, TransactionFeedProtocol
from .volksbank_csv import VolksbankCsvFeed, parse_volksbank_csv, read_volksbank_csv

__all__ = [
    # Protocols
    "ReviewAdvisorProtocol",
    "TransactionFeedProtocol",
    # Volksbank
    "VolksbankCsvFeed",
    "parse_volksbank_csv",
    "read_volksbank_csv",
    # Mock
    "FailingFeed",
    "MockFeed",
    "build_mock_data",
]
