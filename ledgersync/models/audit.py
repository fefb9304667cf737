"""
Audit Models for LedgerSync

Every mutation the engine performs is recorded as an audit event so a
session can be reconstructed from the log: what the user asked for, what
the server answered, and which cached views were invalidated as a result.

DESIGN DECISION: Audit events are append-only and carry a correlation id
per user action, so a create and the fan-out it triggered read as one story.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Creates
    CREATE_REQUESTED = "create_requested"
    CREATE_SUCCEEDED = "create_succeeded"
    CREATE_FAILED = "create_failed"
    VALIDATION_FAILED = "validation_failed"

    # Updates
    UPDATE_SUCCEEDED = "update_succeeded"
    UPDATE_FAILED = "update_failed"

    # Deletes
    DELETE_COMPLETED = "delete_completed"

    # Bulk import
    UPLOAD_SUCCEEDED = "upload_succeeded"
    UPLOAD_FAILED = "upload_failed"

    # Cache
    INVALIDATION_COMPLETED = "invalidation_completed"
    STALE_RESPONSE_DISCARDED = "stale_response_discarded"

    # System events
    RECONCILIATION_ERROR = "reconciliation_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant mutation step creates one of these.
    """

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # What row or scope is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'import', 'cache')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Row id (temporary or persistent) or scope label"
    )

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (one user action)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.create_succeeded(temp_id, persisted_id, "projected", cid)
        event = AuditEventBuilder.invalidation_completed("joint", labels, cid)
    """

    @staticmethod
    def create_requested(
        row_id: str,
        collection: str,
        account: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREATE_REQUESTED,
            entity_type="transaction",
            entity_id=row_id,
            correlation_id=correlation_id,
            description=f"Create requested in {collection}",
            details={"collection": collection, "account": account},
        )

    @staticmethod
    def create_succeeded(
        temp_id: str,
        persisted_id: str,
        collection: str,
        attempted_account: Optional[str],
        assigned_account: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREATE_SUCCEEDED,
            entity_type="transaction",
            entity_id=persisted_id,
            correlation_id=correlation_id,
            description=f"Created {collection} transaction {persisted_id}",
            details={
                "temp_id": temp_id,
                "collection": collection,
                "attempted_account": attempted_account,
                "assigned_account": assigned_account,
            },
        )

    @staticmethod
    def create_failed(
        row_id: str,
        collection: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREATE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="transaction",
            entity_id=row_id,
            correlation_id=correlation_id,
            description=f"Create in {collection} failed",
            error_message=error_message,
            details={"collection": collection},
        )

    @staticmethod
    def validation_failed(
        row_id: str,
        issues: list[dict],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=row_id,
            correlation_id=correlation_id,
            description=f"Validation failed with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def update_succeeded(
        row_id: str,
        collection: str,
        fields: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UPDATE_SUCCEEDED,
            entity_type="transaction",
            entity_id=row_id,
            correlation_id=correlation_id,
            description=f"Updated {collection} transaction {row_id}",
            details={"collection": collection, "fields": fields},
        )

    @staticmethod
    def update_failed(
        row_id: str,
        collection: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UPDATE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="transaction",
            entity_id=row_id,
            correlation_id=correlation_id,
            description=f"Update of {collection} transaction {row_id} failed",
            error_message=error_message,
            details={"collection": collection},
        )

    @staticmethod
    def delete_completed(
        removed_local: list[str],
        deleted: list[str],
        failed: dict[str, str],
        correlation_id: UUID,
    ) -> AuditEvent:
        severity = AuditSeverity.WARNING if failed else AuditSeverity.INFO
        return AuditEvent(
            event_type=AuditEventType.DELETE_COMPLETED,
            severity=severity,
            entity_type="transaction",
            correlation_id=correlation_id,
            description=f"Deleted {len(deleted)} rows, removed {len(removed_local)} drafts, {len(failed)} failed",
            details={
                "removed_local": removed_local,
                "deleted": deleted,
                "failed": failed,
            },
        )

    @staticmethod
    def upload_succeeded(
        statement_period: str,
        imported_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UPLOAD_SUCCEEDED,
            entity_type="import",
            entity_id=statement_period,
            correlation_id=correlation_id,
            description=f"Imported {imported_count} transactions into {statement_period}",
            details={"imported_count": imported_count},
        )

    @staticmethod
    def upload_failed(
        statement_period: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UPLOAD_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="import",
            entity_id=statement_period,
            correlation_id=correlation_id,
            description=f"Import into {statement_period} failed",
            error_message=error_message,
        )

    @staticmethod
    def invalidation_completed(
        account: Optional[str],
        labels: list[str],
        failures: list[str],
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVALIDATION_COMPLETED,
            severity=AuditSeverity.WARNING if failures else AuditSeverity.DEBUG,
            entity_type="cache",
            entity_id=account or "list",
            correlation_id=correlation_id,
            description=f"Invalidated {len(labels)} scopes",
            details={"scopes": labels, "failures": failures},
        )

    @staticmethod
    def stale_response_discarded(
        requested_scope: str,
        current_scope: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STALE_RESPONSE_DISCARDED,
            severity=AuditSeverity.DEBUG,
            entity_type="cache",
            entity_id=requested_scope,
            description="Discarded a response for an abandoned scope",
            details={"requested": requested_scope, "current": current_scope},
        )

    @staticmethod
    def reconciliation_error(
        stage: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_ERROR,
            severity=AuditSeverity.ERROR,
            entity_type="cache",
            description=f"Reconciliation error during {stage}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
