"""
Create-Time Validation

DESIGN DECISION: Only creates are validated locally.
A draft that fails any rule never reaches the network; the issues are
reported against the draft's id and the row stays editable. Updates are
left to the server.

Rules:
- ``name`` must be non-empty
- ``amount`` must be a number
- ``criticality``, when set, must match a configured option (any casing)
- when categories are enumerated, ``category`` is required and must match
  one exactly

IMPORTANT: Validation NEVER silently fixes issues.
It reports them and leaves the row as the user typed it.
"""

from typing import Optional

import structlog
from pydantic import ValidationError

from ledgersync.config import LedgerSettings, get_categories, get_criticality_options
from ledgersync.models.results import ValidationIssue, ValidationResult
from ledgersync.models.transaction import TransactionBase


logger = structlog.get_logger(__name__)


class TransactionValidator:
    """Validates optimistic rows before they are created remotely."""

    def __init__(self, settings: Optional[LedgerSettings] = None):
        """
        Initialize validator.

        Args:
            settings: Ledger settings to read enumerations from.
                      If None, the environment settings are used.
        """
        self._settings = settings

    def validate(self, row: TransactionBase) -> ValidationResult:
        """
        Run every create rule against ``row``.

        Returns:
            ValidationResult with all issues found
        """
        issues: list[ValidationIssue] = []

        if not row.name or not row.name.strip():
            issues.append(ValidationIssue(
                field="name",
                issue_type="missing",
                message="Name is required",
            ))

        if row.amount is None or not row.amount.is_finite():
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be a number",
            ))

        issues.extend(self._check_criticality(row.criticality))
        issues.extend(self._check_category(row.category))

        result = ValidationResult(row_id=row.id, issues=issues)
        if result.has_errors:
            logger.info(
                "create_validation_failed",
                row_id=row.id,
                fields=[i.field for i in result.issues],
            )
        return result

    def from_model_error(self, row_id: str, error: ValidationError) -> ValidationResult:
        """Report field errors raised while building a row from user input."""
        issues = []
        for detail in error.errors():
            field = str(detail["loc"][0]) if detail.get("loc") else "row"
            if field == "amount":
                message = "Amount must be a number"
            else:
                message = f"{field}: {detail.get('msg', 'invalid value')}"
            issues.append(ValidationIssue(field=field, issue_type="invalid_value", message=message))
        return ValidationResult(row_id=row_id, issues=issues)

    def _check_criticality(self, criticality: str) -> list[ValidationIssue]:
        value = (criticality or "").strip()
        if not value:
            return []
        options = get_criticality_options(self._settings)
        if not options:
            return []
        if value.lower() in {o.lower() for o in options}:
            return []
        return [ValidationIssue(
            field="criticality",
            issue_type="not_in_enumeration",
            message=f"Criticality must be one of: {', '.join(options)}",
        )]

    def _check_category(self, category: str) -> list[ValidationIssue]:
        categories = get_categories(self._settings)
        if not categories:
            return []
        value = (category or "").strip()
        if not value:
            return [ValidationIssue(
                field="category",
                issue_type="missing",
                message="Category is required",
            )]
        if value not in categories:
            return [ValidationIssue(
                field="category",
                issue_type="not_in_enumeration",
                message=f"Category must be one of: {', '.join(categories)}",
            )]
        return []

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Summary suitable for showing next to the row.

        Empty when the row is valid.
        """
        if result.is_valid:
            return ""
        lines = ["Please fix the following before saving:"]
        for issue in result.issues:
            if issue.severity == "error":
                lines.append(f"  - {issue.message}")
        return "\n".join(lines)
