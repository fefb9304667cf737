"""
Remote Collections Package

Provides abstract interfaces for the budget, projected and payment-summary
endpoints, the adapter that normalizes their payloads, and an in-memory
implementation.
"""

from ledgersync.services.collections.interface import (
    BudgetCollection,
    LedgerError,
    NotFoundError,
    PaymentSummarySource,
    ProjectedCollection,
    ReconciliationError,
    RemoteError,
    TransactionValidationError,
    UploadError,
)
from ledgersync.services.collections.adapter import (
    filter_transactions,
    normalize_account_list,
    normalize_flat,
    parse_created,
    parse_import_result,
    parse_payment_summaries,
    parse_rows,
)
from ledgersync.services.collections.memory import (
    InMemoryBudgetCollection,
    InMemoryLedgerBackend,
    InMemoryProjectedCollection,
)

__all__ = [
    # Interfaces
    "BudgetCollection",
    "PaymentSummarySource",
    "ProjectedCollection",
    # Exceptions
    "LedgerError",
    "NotFoundError",
    "ReconciliationError",
    "RemoteError",
    "TransactionValidationError",
    "UploadError",
    # Adapter
    "filter_transactions",
    "normalize_account_list",
    "normalize_flat",
    "parse_created",
    "parse_import_result",
    "parse_payment_summaries",
    "parse_rows",
    # In-memory implementation
    "InMemoryBudgetCollection",
    "InMemoryLedgerBackend",
    "InMemoryProjectedCollection",
]
