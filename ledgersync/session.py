"""
Transaction View Session

One session backs one open transaction table: an account (or none, for
the household-wide list), a statement period and optional filters.

It exposes the read model (``rows``, ``loading``, ``error``, ``totals``),
the user's selection and drafts, and the mutation entry points, which it
hands to a ``MutationCoordinator``.

DESIGN DECISION: Responses are checked against the current scope.
Every selection change bumps a generation counter. A fetch remembers the
generation it started under and its result is dropped if the counter has
moved on, so a slow October response can never land in a November view.
In-flight requests are not cancelled; their results are ignored.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import structlog

from ledgersync.audit import MutationAuditLogger
from ledgersync.cache import CacheEvent, ResourceKind, describe_key, key_matches
from ledgersync.config import (
    LedgerSettings,
    get_categories,
    get_criticality_for_category,
    get_default_payment_method_for_account,
)
from ledgersync.models.results import DeleteResult, LedgerTotals, MutationResult, RowState
from ledgersync.models.transaction import (
    AccountTransactionList,
    BudgetTransaction,
    ImportResult,
    ProjectedTransaction,
    Scope,
    TransactionBase,
    make_temp_id,
)
from ledgersync.mutations import MutationCoordinator
from ledgersync.queries import TransactionQueryExecutor
from ledgersync.reconcile import InvalidationFanOut, RowStateTable, WorkingSet
from ledgersync.services.collections import (
    BudgetCollection,
    LedgerError,
    ProjectedCollection,
    ReconciliationError,
)
from ledgersync.validation import TransactionValidator


logger = structlog.get_logger(__name__)


def _totals_of(result: Any) -> tuple[Decimal, Decimal]:
    """(personal, joint) totals of a fetch result."""
    if result is None:
        return Decimal("0"), Decimal("0")
    if isinstance(result, AccountTransactionList):
        return result.resolved_personal_total(), result.resolved_joint_total()
    personal = sum((row.amount or Decimal("0") for row in result), Decimal("0"))
    return personal, Decimal("0")


class TransactionSession:
    """
    Read model and mutation surface for one account/period selection.

    Usage:
        session = client.open_session()
        await session.select("joint", "NOVEMBER2025")
        draft = session.add_draft(projected=True, name="Rent", amount=-1200)
        result = await session.save(draft.id)
    """

    def __init__(
        self,
        executor: TransactionQueryExecutor,
        budget: BudgetCollection,
        projected: ProjectedCollection,
        fan_out: InvalidationFanOut,
        validator: Optional[TransactionValidator] = None,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[MutationAuditLogger] = None,
    ):
        self._executor = executor
        self._fan_out = fan_out
        self._settings = settings
        self._audit = audit_logger or MutationAuditLogger()

        self.working_set = WorkingSet()
        self.row_states = RowStateTable()
        self._selected: set[str] = set()

        self._scope: Optional[Scope] = None
        self._generation = 0
        self._loading = False
        self._error: Optional[str] = None
        self._budget_result: Any = None
        self._projected_result: Any = None

        self._mutations = MutationCoordinator(
            session=self,
            budget=budget,
            projected=projected,
            validator=validator or TransactionValidator(settings),
            fan_out=fan_out,
            audit_logger=self._audit,
        )
        self._unsubscribe = executor.cache.subscribe(self._on_cache_event)
        self._closed = False

    # =========================================================================
    # READ MODEL
    # =========================================================================

    @property
    def rows(self) -> tuple[TransactionBase, ...]:
        return self.working_set.rows

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def scope(self) -> Optional[Scope]:
        return self._scope

    @property
    def statement_period(self) -> Optional[str]:
        return self._scope.statement_period if self._scope else None

    @property
    def account_name(self) -> Optional[str]:
        return self._scope.account_name if self._scope else None

    @property
    def is_resolved(self) -> bool:
        """True once a statement period has been chosen."""
        return bool(self.statement_period)

    @property
    def is_stale(self) -> bool:
        """True when a cached collection behind the visible rows was invalidated."""
        if not self.is_resolved:
            return False
        cache = self._executor.cache
        return (
            cache.is_stale(self._executor.budget_key(self._scope))
            or cache.is_stale(self._executor.projected_key(self._scope))
        )

    @property
    def totals(self) -> LedgerTotals:
        """Balances for the table header; all zero until a period is resolved."""
        if not self.is_resolved:
            return LedgerTotals()
        personal, joint = _totals_of(self._budget_result)
        projected_personal, projected_joint = _totals_of(self._projected_result)
        return LedgerTotals(
            budget_total=personal + joint,
            projected_total=projected_personal + projected_joint,
            personal_balance=personal,
            joint_balance=joint,
            count=len(self.working_set),
        )

    def row_state(self, row_id: str) -> RowState:
        return self.row_states.get(row_id)

    @property
    def save_errors(self) -> dict[str, str]:
        return self.row_states.errors

    @property
    def saving_ids(self) -> set[str]:
        return self.row_states.saving_ids

    # =========================================================================
    # SCOPE AND LOADING
    # =========================================================================

    async def select(
        self,
        account: Optional[str] = None,
        statement_period: Optional[str] = None,
        **filters: Optional[str],
    ) -> tuple[TransactionBase, ...]:
        """
        Switch the session to a new account/period/filter selection.

        The working set, selection and row states are discarded before the
        new scope is loaded.
        """
        scope = Scope.of(account, statement_period, **filters)
        if scope != self._scope:
            self._generation += 1
            self._scope = scope
            self.working_set.clear()
            self._selected.clear()
            self.row_states.clear()
            self._budget_result = None
            self._projected_result = None
            self._error = None
            logger.info(
                "session_scope_changed",
                account=scope.account_name,
                statement_period=scope.statement_period,
                generation=self._generation,
            )
        return await self.refresh()

    async def refresh(self, force: bool = False) -> tuple[TransactionBase, ...]:
        """
        Load both collections for the current scope and rebuild the rows.

        Fresh cache entries are reused unless ``force`` is set. Errors are
        reported through ``error`` rather than raised.
        """
        if not self.is_resolved:
            self.working_set.clear()
            self._loading = False
            return self.rows

        scope = self._scope
        generation = self._generation
        self._loading = True
        try:
            budget = await self._executor.fetch_budget(scope, force=force)
            projected = await self._executor.fetch_projected(scope, force=force)
        except ReconciliationError as e:
            if generation == self._generation:
                self._degrade(str(e))
            return self.rows
        except LedgerError as e:
            if generation == self._generation:
                self._loading = False
                self._error = str(e)
                logger.warning("session_fetch_failed", statement_period=scope.statement_period, error=str(e))
            return self.rows

        if generation != self._generation:
            self._audit.log_stale_response(
                requested_scope=self._describe(scope),
                current_scope=self._describe(self._scope),
            )
            return self.rows

        self._apply(budget, projected)
        return self.rows

    async def reload(self, kind: ResourceKind) -> tuple[TransactionBase, ...]:
        """Force-refetch one collection, then rebuild from the cache."""
        if not self.is_resolved:
            return self.rows
        generation = self._generation
        try:
            if kind == ResourceKind.PROJECTED:
                await self._executor.fetch_projected(self._scope, force=True)
            else:
                await self._executor.fetch_budget(self._scope, force=True)
        except LedgerError as e:
            logger.warning("session_reload_failed", resource=kind.value, error=str(e))
            if generation == self._generation:
                self._error = str(e)
            return self.rows
        return await self.refresh()

    def _apply(self, budget: Any, projected: Any) -> None:
        try:
            self.working_set.rebuild(budget, projected)
            self._budget_result = budget
            self._projected_result = projected
            self._error = None
        except Exception as e:
            self._degrade(str(e))
            return
        finally:
            self._loading = False
        self._selected &= set(self.working_set.ids)

    def _degrade(self, message: str) -> None:
        """Keep the drafts and drop everything fetched."""
        self._loading = False
        self.working_set.keep_local_only()
        self._budget_result = None
        self._projected_result = None
        self._audit.log_reconciliation_error(
            stage="rebuild",
            error_message=message,
            details={"scope": self._describe(self._scope)},
        )

    def _on_cache_event(self, event: CacheEvent) -> None:
        """Rebuild when another fetch replaced one of this session's entries."""
        if self._loading or event.kind != "updated" or not self.is_resolved:
            return
        budget_key = self._executor.budget_key(self._scope)
        projected_key = self._executor.projected_key(self._scope)
        if event.key not in (budget_key, projected_key):
            return
        cache = self._executor.cache
        logger.debug("session_cache_updated", key=describe_key(event.key))
        self._apply(cache.get(budget_key), cache.get(projected_key))

    def watches(self, pattern: tuple) -> bool:
        """True when an invalidation ``pattern`` covers this session's data."""
        if not self.is_resolved:
            return False
        return (
            key_matches(pattern, self._executor.budget_key(self._scope))
            or key_matches(pattern, self._executor.projected_key(self._scope))
        )

    @staticmethod
    def _describe(scope: Optional[Scope]) -> str:
        if scope is None:
            return "unresolved"
        return f"{scope.account_name or 'list'}:{scope.statement_period or 'unresolved'}"

    # =========================================================================
    # SELECTION
    # =========================================================================

    @property
    def selected_ids(self) -> frozenset[str]:
        return frozenset(self._selected)

    @property
    def is_all_selected(self) -> bool:
        ids = set(self.working_set.ids)
        return bool(ids) and ids <= self._selected

    def toggle_select(self, row_id: str) -> bool:
        """Flip one row's selection; returns whether it is now selected."""
        if row_id in self._selected:
            self._selected.discard(row_id)
            return False
        if row_id not in self.working_set:
            return False
        self._selected.add(row_id)
        return True

    def toggle_select_all(self) -> None:
        if self.is_all_selected:
            self._selected.clear()
        else:
            self._selected = set(self.working_set.ids)

    def clear_selection(self) -> None:
        self._selected.clear()

    def discard_selection(self, row_ids) -> None:
        self._selected.difference_update(row_ids)

    def rename_selection(self, old_id: str, new_id: str) -> None:
        if old_id in self._selected:
            self._selected.discard(old_id)
            self._selected.add(new_id)

    # =========================================================================
    # DRAFTS
    # =========================================================================

    def add_draft(self, projected: bool = False, **fields: Any) -> TransactionBase:
        """
        Put a new optimistic row at the top of the table.

        The row is stamped with the session's account and statement period.
        Payment method, category and criticality default from configuration
        when not given.

        Raises:
            LedgerError: If no statement period is selected yet
        """
        if not self.is_resolved:
            logger.warning("draft_rejected_unresolved_period", account=self.account_name)
            raise LedgerError("Select a statement period before adding a transaction")

        account = fields.pop("account", None) or self.account_name or ""
        data: dict[str, Any] = {
            "account": account,
            "statement_period": self.statement_period,
            "transaction_date": datetime.now(timezone.utc),
        }
        data.update(fields)

        if not data.get("payment_method") and not data.get("paymentMethod"):
            data["payment_method"] = get_default_payment_method_for_account(account, self._settings) or ""

        categories = get_categories(self._settings)
        if categories and not data.get("category"):
            data["category"] = categories[0]
        if not data.get("criticality"):
            data["criticality"] = get_criticality_for_category(data.get("category"), self._settings)

        data["id"] = make_temp_id()
        data["is_new"] = True
        model = ProjectedTransaction if projected else BudgetTransaction
        draft = model.model_validate(data)

        self.working_set.add_local(draft)
        logger.debug("draft_added", row_id=draft.id, projected=projected, account=account)
        return draft

    def cancel_draft(self, row_id: str) -> bool:
        """Drop an unsaved row; persisted rows are left alone."""
        row = self.working_set.find(row_id)
        if row is None or not row.is_new:
            return False
        self.working_set.remove([row_id])
        self._selected.discard(row_id)
        self.row_states.clear(row_id)
        return True

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def create(self, draft) -> MutationResult:
        return await self._mutations.create(draft)

    async def update(self, row_id: str, patch: Optional[dict[str, Any]] = None) -> MutationResult:
        return await self._mutations.update(row_id, patch)

    async def save(self, row_id: str, patch: Optional[dict[str, Any]] = None) -> MutationResult:
        return await self._mutations.save(row_id, patch)

    async def delete(self, row_ids=None) -> DeleteResult:
        return await self._mutations.delete(row_ids)

    async def upload(self, file: Any, statement_period: Optional[str] = None) -> ImportResult:
        return await self._mutations.upload(file, statement_period)

    def invalidate(self, account: Optional[str] = None):
        """Manual fan-out for ``account`` (defaults to the session's) in the current period."""
        return self._fan_out.invalidate(account or self.account_name, self.statement_period)

    # =========================================================================
    # TEARDOWN
    # =========================================================================

    def close(self) -> None:
        """Stop listening to the cache and forget all per-row state."""
        if self._closed:
            return
        self._closed = True
        self._unsubscribe()
        self._generation += 1
        self.working_set.clear()
        self.row_states.clear()
        self._selected.clear()
