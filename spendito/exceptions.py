"""Exception hierarchy for Spendito."""


class SpenditoError(Exception):
    """Base class for all Spendito errors."""


class ConfigError(SpenditoError):
    """Configuration file could not be read or parsed."""


class TransactionNotFoundError(SpenditoError, KeyError):
    """No transaction exists with the requested ID."""

    def __init__(self, transaction_id: str):
        super().__init__(transaction_id)
        self.transaction_id = transaction_id

    def __str__(self) -> str:
        return f"Transaction not found: {self.transaction_id}"


class RuleNotFoundError(SpenditoError, KeyError):
    """No categorization rule exists with the requested ID."""

    def __init__(self, rule_id: str):
        super().__init__(rule_id)
        self.rule_id = rule_id

    def __str__(self) -> str:
        return f"Rule not found: {self.rule_id}"


class RowError(SpenditoError, ValueError):
    """A single import row is unusable (missing or unparseable date/amount).

    Row errors are reported per row and never abort the rest of a batch.
    """

    def __init__(self, message: str, row_index: int | None = None):
        super().__init__(message)
        self.row_index = row_index

    def __str__(self) -> str:
        message = super().__str__()
        if self.row_index is not None:
            return f"Row {self.row_index}: {message}"
        return message


class BackupError(SpenditoError):
    """Backup file is missing, unreadable, or has an unknown format."""
