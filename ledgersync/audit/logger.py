"""
Audit Logger

DESIGN DECISION: Every mutation the engine performs is logged.
This provides:
1. Complete traceability of optimistic rows (temp id -> persisted id)
2. Debugging capability for fan-out (which scopes went stale and why)
3. A record of row-scoped failures that the UI only shows transiently

The audit logger:
- Logs locally through structlog (JSON by default)
- Gracefully handles failures (never crashes a mutation if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledgersync.config import LoggingSettings
from ledgersync.models.audit import AuditEvent, AuditEventBuilder


def configure_logging(settings: Optional[LoggingSettings] = None) -> None:
    """
    Configure structlog on top of the standard library logger.

    Called once at import with environment settings; call again to switch
    level or renderer at runtime.
    """
    settings = settings or LoggingSettings()
    level = getattr(logging, settings.log_level, logging.INFO)

    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger("ledgersync").setLevel(level)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class MutationAuditLogger:
    """
    Central audit logging service for mutations.

    Every event is logged locally at the level matching its severity and is
    kept in a bounded in-memory trail so a session can show recent history.
    """

    def __init__(self, max_events: int = 500):
        self._logger = structlog.get_logger("ledgersync.audit")
        self._max_events = max_events
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        """Recorded events, oldest first."""
        return list(self._events)

    def events_for(self, correlation_id: UUID) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns False when the event could not be recorded; never raises.
        """
        try:
            log_dict = event.to_log_dict()
            severity = event.severity.value
            if severity == "error":
                self._logger.error("audit_event", **log_dict)
            elif severity == "warning":
                self._logger.warning("audit_event", **log_dict)
            elif severity == "debug":
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)

            self._events.append(event)
            if len(self._events) > self._max_events:
                del self._events[: len(self._events) - self._max_events]
            return True
        except Exception as e:
            # Log failure but don't raise
            self._logger.error(
                "audit_log_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    def log_create_requested(
        self,
        row_id: str,
        collection: str,
        account: Optional[str],
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.create_requested(
            row_id=row_id,
            collection=collection,
            account=account,
            correlation_id=correlation_id,
        ))

    def log_create_succeeded(
        self,
        temp_id: str,
        persisted_id: str,
        collection: str,
        attempted_account: Optional[str],
        assigned_account: Optional[str],
        correlation_id: UUID,
    ) -> None:
        """Log a create that the server accepted."""
        self.log(AuditEventBuilder.create_succeeded(
            temp_id=temp_id,
            persisted_id=persisted_id,
            collection=collection,
            attempted_account=attempted_account,
            assigned_account=assigned_account,
            correlation_id=correlation_id,
        ))

    def log_create_failed(
        self,
        row_id: str,
        collection: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.create_failed(
            row_id=row_id,
            collection=collection,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    def log_validation_failed(
        self,
        row_id: str,
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        """Log validation failure."""
        self.log(AuditEventBuilder.validation_failed(
            row_id=row_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    def log_update_succeeded(
        self,
        row_id: str,
        collection: str,
        fields: list[str],
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.update_succeeded(
            row_id=row_id,
            collection=collection,
            fields=fields,
            correlation_id=correlation_id,
        ))

    def log_update_failed(
        self,
        row_id: str,
        collection: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.update_failed(
            row_id=row_id,
            collection=collection,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    def log_delete_completed(
        self,
        removed_local: list[str],
        deleted: list[str],
        failed: dict[str, str],
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.delete_completed(
            removed_local=removed_local,
            deleted=deleted,
            failed=failed,
            correlation_id=correlation_id,
        ))

    def log_upload_succeeded(
        self,
        statement_period: str,
        imported_count: int,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.upload_succeeded(
            statement_period=statement_period,
            imported_count=imported_count,
            correlation_id=correlation_id,
        ))

    def log_upload_failed(
        self,
        statement_period: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.upload_failed(
            statement_period=statement_period,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    def log_invalidation(
        self,
        account: Optional[str],
        labels: list[str],
        failures: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log the scopes one fan-out call invalidated."""
        self.log(AuditEventBuilder.invalidation_completed(
            account=account,
            labels=labels,
            failures=failures,
            correlation_id=correlation_id,
        ))

    def log_stale_response(
        self,
        requested_scope: str,
        current_scope: str,
    ) -> None:
        self.log(AuditEventBuilder.stale_response_discarded(
            requested_scope=requested_scope,
            current_scope=current_scope,
        ))

    def log_reconciliation_error(
        self,
        stage: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a swallowed reconciliation failure."""
        self.log(AuditEventBuilder.reconciliation_error(
            stage=stage,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., saving a row).
    Pass it through all subsequent operations.
    """
    return uuid4()
