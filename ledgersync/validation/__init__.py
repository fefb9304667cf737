"""Create-time validation of optimistic rows."""

from ledgersync.validation.validator import TransactionValidator

__all__ = ["TransactionValidator"]
