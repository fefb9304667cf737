"""
Mutation Coordinator

Executes creates, updates, deletes and bulk uploads against the right
remote collection, reconciles the session's working set with the answer
and then triggers the invalidation fan-out.

Row state machine:
    Local-Draft -> Saving -> {Persisted | Local-Draft + error}
    Persisted   -> Saving -> {Persisted (updated) | Persisted + error}

DESIGN DECISION: Failures stay on the row.
Create, update and save never raise for a failed row. The error is recorded
against the row id, the row stays in the working set and the caller gets a
``MutationResult``. Nothing is retried automatically. Only ``upload`` raises,
because an import succeeds or fails as a whole.

Invalidation always runs after the mutation's own success path.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError

from ledgersync.audit import MutationAuditLogger, create_correlation_id
from ledgersync.cache import ResourceKind
from ledgersync.models.results import DeleteResult, MutationResult, ValidationResult
from ledgersync.models.transaction import ImportResult, TransactionBase, is_temporary_id
from ledgersync.reconcile import InvalidationFanOut
from ledgersync.services.collections import (
    BudgetCollection,
    ProjectedCollection,
    UploadError,
    parse_created,
    parse_import_result,
)
from ledgersync.validation import TransactionValidator

if TYPE_CHECKING:
    from ledgersync.session import TransactionSession


logger = structlog.get_logger(__name__)


def _collection_name(row: TransactionBase) -> str:
    return "projected" if row.is_projected else "budget"


class MutationCoordinator:
    """
    Runs the five mutation entry points for one session.

    The session owns the working set, the row state table and the
    selection; the coordinator changes them only through their own methods.
    """

    def __init__(
        self,
        session: "TransactionSession",
        budget: BudgetCollection,
        projected: ProjectedCollection,
        validator: TransactionValidator,
        fan_out: InvalidationFanOut,
        audit_logger: Optional[MutationAuditLogger] = None,
    ):
        self._session = session
        self._budget = budget
        self._projected = projected
        self._validator = validator
        self._fan_out = fan_out
        self._audit = audit_logger or MutationAuditLogger()

    def _collection_for(self, row: TransactionBase) -> Union[BudgetCollection, ProjectedCollection]:
        return self._projected if row.is_projected else self._budget

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create(self, draft: Union[str, TransactionBase]) -> MutationResult:
        """
        Persist an optimistic row.

        Args:
            draft: The draft row, or the id of a draft already in the working set

        Returns:
            MutationResult; on success ``transaction`` is the row that
            replaced the draft
        """
        session = self._session
        row = session.working_set.find(draft) if isinstance(draft, str) else draft
        if row is None:
            return self._missing(str(draft))
        if not row.is_new:
            return MutationResult(
                row_id=row.id,
                success=False,
                error=f"Transaction {row.id} is already persisted",
            )
        if row.id not in session.working_set:
            session.working_set.add_local(row)

        correlation_id = create_correlation_id()
        collection = _collection_name(row)

        validation = self._validator.validate(row)
        if validation.has_errors:
            return self._reject(row.id, validation, correlation_id)

        payload = row.to_payload()
        if not payload.get("statementPeriod") and session.statement_period:
            payload["statementPeriod"] = session.statement_period

        session.row_states.begin_save(row.id)
        self._audit.log_create_requested(
            row_id=row.id,
            collection=collection,
            account=row.account or None,
            correlation_id=correlation_id,
        )

        try:
            raw = await self._collection_for(row).create(payload)
        except Exception as e:
            message = str(e) or "Create failed"
            # The view may have moved to another scope while the call was in flight
            if row.id in session.working_set:
                session.row_states.fail(row.id, message)
            self._audit.log_create_failed(
                row_id=row.id,
                collection=collection,
                error_message=message,
                correlation_id=correlation_id,
            )
            return MutationResult(row_id=row.id, success=False, error=message)

        created = parse_created(raw, projected=row.is_projected)
        attempted_account = row.account or None

        if created is None:
            # Persisted but unreadable; the fan-out and next refresh show the real row
            session.working_set.remove([row.id])
            session.row_states.clear(row.id)
            session.discard_selection([row.id])
            self._audit.log_reconciliation_error(
                stage="create_response",
                error_message="Create response did not contain a transaction",
                details={"row_id": row.id, "collection": collection},
                correlation_id=correlation_id,
            )
            self._invalidate([attempted_account], payload.get("statementPeriod"), correlation_id)
            return MutationResult(row_id=row.id, success=True)

        session.working_set.replace_row(row.id, created)
        session.row_states.succeed(row.id, created.id)
        session.rename_selection(row.id, created.id)
        self._audit.log_create_succeeded(
            temp_id=row.id,
            persisted_id=created.id,
            collection=collection,
            attempted_account=attempted_account,
            assigned_account=created.account or None,
            correlation_id=correlation_id,
        )

        # The server may have moved the row (e.g. joint -> member): both accounts go stale
        self._invalidate(
            [attempted_account, created.account or None],
            created.statement_period or payload.get("statementPeriod"),
            correlation_id,
        )
        return MutationResult(row_id=row.id, success=True, transaction=created)

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update(self, row_id: str, patch: Optional[dict[str, Any]] = None) -> MutationResult:
        """
        Apply ``patch`` to a persisted row and send it.

        The patch is applied to the working set before the call. On failure
        the owning collection is refetched so the optimistic patch does not
        linger.
        """
        session = self._session
        row = session.working_set.find(row_id)
        if row is None:
            return self._missing(row_id)
        if row.is_new or is_temporary_id(row_id):
            return MutationResult(
                row_id=row_id,
                success=False,
                error=f"Transaction {row_id} has not been created yet",
            )

        correlation_id = create_correlation_id()
        patch = dict(patch or {})
        try:
            updated = row.merged(patch)
        except ValidationError as e:
            return self._reject(row_id, self._validator.from_model_error(row_id, e), correlation_id)

        collection = _collection_name(updated)
        session.working_set.replace_row(row_id, updated)
        session.row_states.begin_save(row_id)

        try:
            raw = await self._collection_for(updated).update(row_id, updated.to_payload())
        except Exception as e:
            message = str(e) or "Update failed"
            self._audit.log_update_failed(
                row_id=row_id,
                collection=collection,
                error_message=message,
                correlation_id=correlation_id,
            )
            if row_id in session.working_set:
                session.row_states.fail(row_id, message)
                # Back to the last confirmed row in case the refetch fails too
                session.working_set.replace_row(row_id, row)
                kind = ResourceKind.PROJECTED if updated.is_projected else ResourceKind.BUDGET
                await session.reload(kind)
            return MutationResult(row_id=row_id, success=False, error=message)

        confirmed = parse_created(raw, projected=updated.is_projected)
        if confirmed is not None and confirmed.id == row_id:
            session.working_set.replace_row(row_id, confirmed)
            updated = confirmed

        session.row_states.succeed(row_id)
        self._audit.log_update_succeeded(
            row_id=row_id,
            collection=collection,
            fields=sorted(patch),
            correlation_id=correlation_id,
        )
        self._invalidate(
            [row.account or None, updated.account or None],
            updated.statement_period or session.statement_period,
            correlation_id,
        )
        return MutationResult(row_id=row_id, success=True, transaction=updated)

    # =========================================================================
    # SAVE
    # =========================================================================

    async def save(self, row_id: str, patch: Optional[dict[str, Any]] = None) -> MutationResult:
        """Create a draft or update a persisted row, whichever ``row_id`` is."""
        session = self._session
        row = session.working_set.find(row_id)
        if row is None:
            return self._missing(row_id)

        patch = dict(patch or {})
        if session.statement_period:
            patch["statementPeriod"] = session.statement_period

        if not row.is_new:
            return await self.update(row_id, patch)

        try:
            merged = row.merged(patch)
        except ValidationError as e:
            return self._reject(row_id, self._validator.from_model_error(row_id, e), create_correlation_id())
        session.working_set.replace_row(row_id, merged)
        return await self.create(merged)

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete(self, row_ids: Optional[Iterable[str]] = None) -> DeleteResult:
        """
        Delete rows, best effort.

        Local drafts are dropped without a network call. Persisted rows are
        deleted in parallel; one failure does not stop the others.

        Args:
            row_ids: Rows to delete; defaults to the current selection
        """
        session = self._session
        ids = list(dict.fromkeys(row_ids if row_ids is not None else session.selected_ids))
        correlation_id = create_correlation_id()
        result = DeleteResult()
        if not ids:
            return result

        local_ids = []
        targets: list[TransactionBase] = []
        for row_id in ids:
            row = session.working_set.find(row_id)
            if is_temporary_id(row_id) or (row is not None and row.is_new):
                local_ids.append(row_id)
            elif row is None:
                result.failed[row_id] = f"Transaction {row_id} not found"
            else:
                targets.append(row)

        if local_ids:
            result.removed_local = session.working_set.remove(local_ids) or []
            session.discard_selection(local_ids)
            for row_id in local_ids:
                session.row_states.clear(row_id)

        if targets:
            outcomes = await asyncio.gather(*(self._delete_one(row) for row in targets))
            deleted = [row_id for row_id, error in outcomes if error is None]
            for row_id, error in outcomes:
                if error is not None:
                    result.failed[row_id] = error
            result.deleted = deleted

            if deleted:
                session.working_set.remove(deleted)
                session.discard_selection(deleted)

            accounts = [session.account_name] + [row.account or None for row in targets]
            self._invalidate(accounts, session.statement_period, correlation_id)
            await session.refresh()

        self._audit.log_delete_completed(
            removed_local=result.removed_local,
            deleted=result.deleted,
            failed=result.failed,
            correlation_id=correlation_id,
        )
        return result

    async def _delete_one(self, row: TransactionBase) -> tuple[str, Optional[str]]:
        try:
            await self._collection_for(row).delete(row.id)
            return row.id, None
        except Exception as e:
            logger.warning(
                "delete_failed",
                row_id=row.id,
                collection=_collection_name(row),
                error=str(e),
            )
            return row.id, str(e) or "Delete failed"

    # =========================================================================
    # UPLOAD
    # =========================================================================

    async def upload(self, file: Any, statement_period: Optional[str] = None) -> ImportResult:
        """
        Bulk-import a statement file into the Budget collection.

        Raises:
            UploadError: If the import fails; nothing is reconciled locally
        """
        session = self._session
        period = statement_period or session.statement_period
        if not period:
            raise UploadError("A statement period is required to upload")

        correlation_id = create_correlation_id()
        try:
            raw = await self._budget.upload(file, period)
        except UploadError as e:
            self._audit.log_upload_failed(period, str(e), correlation_id)
            raise
        except Exception as e:
            self._audit.log_upload_failed(period, str(e), correlation_id)
            raise UploadError(str(e) or "Upload failed", statement_period=period) from e

        result = parse_import_result(raw, period)
        self._audit.log_upload_succeeded(period, result.imported_count, correlation_id)

        self._invalidate([session.account_name, None], period, correlation_id)
        await session.refresh()
        return result

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _invalidate(
        self,
        accounts: list[Optional[str]],
        statement_period: Optional[str],
        correlation_id: UUID,
    ) -> None:
        self._fan_out.invalidate_accounts(
            accounts,
            statement_period,
            correlation_id=correlation_id,
        )

    def _reject(self, row_id: str, validation: ValidationResult, correlation_id: UUID) -> MutationResult:
        message = validation.message or "Validation failed"
        self._session.row_states.fail(row_id, message)
        self._audit.log_validation_failed(
            row_id=row_id,
            issues=[issue.model_dump() for issue in validation.issues],
            correlation_id=correlation_id,
        )
        return MutationResult(row_id=row_id, success=False, error=message, validation=validation)

    def _missing(self, row_id: str) -> MutationResult:
        logger.warning("mutation_row_not_found", row_id=row_id)
        return MutationResult(row_id=row_id, success=False, error=f"Transaction {row_id} not found")
