"""
Data Models Package

This package contains all Pydantic models used by LedgerSync.
All data flowing through the engine must conform to these schemas.
"""

from ledgersync.models.transaction import (
    JOINT_ACCOUNT,
    TEMP_ID_PREFIX,
    AccountKind,
    AccountRef,
    AccountTransactionList,
    BudgetTransaction,
    ImportResult,
    PaymentSummary,
    ProjectedTransaction,
    Scope,
    Transaction,
    TransactionAdapter,
    TransactionBase,
    as_budget,
    as_projected,
    is_temporary_id,
    make_temp_id,
    parse_statement_period,
    statement_period_for,
    statement_period_options,
    transaction_from_mapping,
)
from ledgersync.models.results import (
    DeleteResult,
    InvalidatedScope,
    InvalidationReport,
    LedgerTotals,
    MutationResult,
    RowState,
    RowStatus,
    ValidationIssue,
    ValidationResult,
)
from ledgersync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Transaction models
    "JOINT_ACCOUNT",
    "TEMP_ID_PREFIX",
    "AccountKind",
    "AccountRef",
    "AccountTransactionList",
    "BudgetTransaction",
    "ImportResult",
    "PaymentSummary",
    "ProjectedTransaction",
    "Scope",
    "Transaction",
    "TransactionAdapter",
    "TransactionBase",
    "as_budget",
    "as_projected",
    "is_temporary_id",
    "make_temp_id",
    "parse_statement_period",
    "statement_period_for",
    "statement_period_options",
    "transaction_from_mapping",
    # Outcome models
    "DeleteResult",
    "InvalidatedScope",
    "InvalidationReport",
    "LedgerTotals",
    "MutationResult",
    "RowState",
    "RowStatus",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
