"""Services layer for Spendito."""

from .categorizer import CategorizationResult, CategorizerService
from .duplicate_linker import DuplicateLinker, DuplicateMatch, LinkResult
from .importer import ImportResult
from .ledger import LedgerService, RecategorizeResult
from .review import QuarterlyReviewSummary, ReviewResult, ReviewService
from .sync import SyncService

__all__ = [
    "CategorizationResult",
    "CategorizerService",
    "DuplicateLinker",
    "DuplicateMatch",
    "ImportResult",
    "LedgerService",
    "LinkResult",
    "QuarterlyReviewSummary",
    "RecategorizeResult",
    "ReviewResult",
    "ReviewService",
    "SyncService",
]
