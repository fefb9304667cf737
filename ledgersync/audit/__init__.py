"""Audit logging package."""

from ledgersync.audit.logger import (
    MutationAuditLogger,
    configure_logging,
    create_correlation_id,
)

__all__ = ["MutationAuditLogger", "configure_logging", "create_correlation_id"]
