"""
Outcome Models

Everything the engine hands back to a caller after doing work: validation
results, per-row save state, mutation outcomes, the scopes an invalidation
touched and the totals shown next to a transaction table.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found on a row."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'not_in_enumeration')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """Result of validating one draft before it is sent to the server."""

    row_id: str = Field(
        ...,
        description="Id of the row being validated"
    )
    validated_at: datetime = Field(default_factory=_utcnow)
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def message(self) -> str:
        """All error messages joined for display next to the row."""
        return ". ".join(i.message for i in self.issues if i.severity == "error")


# =============================================================================
# ROW STATE
# =============================================================================

class RowStatus(str, Enum):
    """
    Save state of one row.

    Local-Draft -> Saving -> {Persisted | Local-Draft + error}
    Persisted   -> Saving -> {Persisted (updated) | Persisted + error}
    """
    LOCAL_DRAFT = "local_draft"
    SAVING = "saving"
    PERSISTED = "persisted"


class RowState(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: RowStatus
    error: Optional[str] = None

    @property
    def is_saving(self) -> bool:
        return self.status == RowStatus.SAVING


# =============================================================================
# MUTATION OUTCOMES
# =============================================================================

class MutationResult(BaseModel):
    """Outcome of a create, update or save on one row."""

    row_id: str = Field(
        ...,
        description="Id the caller passed in (temporary for creates)"
    )
    success: bool
    error: Optional[str] = None
    validation: Optional[ValidationResult] = None
    transaction: Optional[Any] = Field(
        default=None,
        description="The reconciled row after success"
    )

    @property
    def persisted_id(self) -> Optional[str]:
        return getattr(self.transaction, "id", None)


class DeleteResult(BaseModel):
    """Outcome of a best-effort multi-row delete."""

    removed_local: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed


# =============================================================================
# INVALIDATION
# =============================================================================

class InvalidatedScope(BaseModel):
    """One cache scope marked stale by the invalidation fan-out."""
    model_config = ConfigDict(frozen=True)

    resource: str = Field(
        ...,
        description="Resource kind value (budgetTransactions, projectedTransactions, paymentSummary)"
    )
    account: Optional[str] = Field(
        default=None,
        description="Account the scope belongs to; None for list-level and aggregate scopes"
    )
    key: tuple
    aggregate: bool = False

    @property
    def label(self) -> str:
        """Short human label, e.g. ``josh-projected`` or ``aggregate-payment-summary``."""
        names = {
            "budgetTransactions": "budget",
            "projectedTransactions": "projected",
            "paymentSummary": "payment-summary",
        }
        owner = "aggregate" if self.aggregate else (self.account or "list")
        return f"{owner}-{names.get(self.resource, self.resource)}"


class InvalidationReport(BaseModel):
    """Every scope a fan-out call invalidated, and the ones that failed."""

    account: Optional[str] = None
    statement_period: Optional[str] = None
    scopes: list[InvalidatedScope] = Field(default_factory=list)
    failures: list[str] = Field(default_factory=list)

    @property
    def labels(self) -> set[str]:
        return {scope.label for scope in self.scopes}

    def merge(self, other: "InvalidationReport") -> "InvalidationReport":
        seen = {s.key for s in self.scopes}
        scopes = list(self.scopes) + [s for s in other.scopes if s.key not in seen]
        return InvalidationReport(
            account=self.account,
            statement_period=self.statement_period,
            scopes=scopes,
            failures=[*self.failures, *other.failures],
        )


# =============================================================================
# TOTALS
# =============================================================================

class LedgerTotals(BaseModel):
    """Balances shown above a transaction table."""

    budget_total: Decimal = Decimal("0")
    projected_total: Decimal = Decimal("0")
    personal_balance: Decimal = Decimal("0")
    joint_balance: Decimal = Decimal("0")
    count: int = 0

    @property
    def total(self) -> Decimal:
        return self.budget_total + self.projected_total
