"""
Query Execution Engine

DESIGN DECISION: Reads are cached and normalized in one place.
Every read of the budget, projected and payment-summary endpoints goes
through this executor. It:
1. Builds the cache key from the scope (one canonical filter path)
2. Serves the cached value unless it is missing, stale or forced
3. Normalizes the raw payload with the adapter before it is cached

Consumers therefore never see a raw payload, and a projected read that had
to be filtered client-side is cached exactly like a server-filtered one.
"""

from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from ledgersync.cache import QueryCache, ResourceKind, build_key, summary_key
from ledgersync.models.transaction import (
    AccountTransactionList,
    PaymentSummary,
    Scope,
    TransactionBase,
)
from ledgersync.services.collections import (
    BudgetCollection,
    LedgerError,
    PaymentSummarySource,
    ProjectedCollection,
    ReconciliationError,
    RemoteError,
    filter_transactions,
    normalize_account_list,
    normalize_flat,
    parse_payment_summaries,
)


logger = structlog.get_logger(__name__)

FetchResult = Union[AccountTransactionList, list[TransactionBase]]


class QueryExecutionError(RemoteError):
    """A read failed."""
    pass


class TransactionQueryExecutor:
    """
    Executes cached reads against the remote collections.

    GUARANTEES:
    - Account-scoped reads return an ``AccountTransactionList``
    - Un-scoped reads return a flat list, already filtered by the scope
    - Projected rows are always tagged projected, budget rows budget
    """

    def __init__(
        self,
        budget: BudgetCollection,
        projected: ProjectedCollection,
        cache: QueryCache,
        payment_summary: Optional[PaymentSummarySource] = None,
    ):
        self._budget = budget
        self._projected = projected
        self._payment_summary = payment_summary
        self._cache = cache

    @property
    def cache(self) -> QueryCache:
        return self._cache

    def budget_key(self, scope: Scope) -> tuple:
        return build_key(ResourceKind.BUDGET, scope.account_name, scope.filters())

    def projected_key(self, scope: Scope) -> tuple:
        return build_key(ResourceKind.PROJECTED, scope.account_name, scope.filters())

    async def fetch_budget(self, scope: Scope, force: bool = False) -> FetchResult:
        """Budget rows for a scope."""
        filters = scope.filters()

        async def load() -> FetchResult:
            raw = await self._call(
                "budget.list",
                lambda: self._budget.list_transactions(scope.account_name, filters),
            )
            return self._normalize(raw, scope, projected=False)

        return await self._cache.fetch(self.budget_key(scope), load, force=force)

    async def fetch_projected(self, scope: Scope, force: bool = False) -> FetchResult:
        """
        Projected rows for a scope.

        The global endpoint has no filtering, so un-scoped reads are filtered
        here before they are cached.
        """
        filters = scope.filters()

        async def load() -> FetchResult:
            if scope.account is not None:
                raw = await self._call(
                    "projected.list",
                    lambda: self._projected.list_transactions(scope.account_name, filters),
                )
                return self._normalize(raw, scope, projected=True)

            raw = await self._call("projected.list_all", self._projected.list_all)
            rows = self._normalize(raw, scope, projected=True)
            filtered = filter_transactions(rows, filters)
            logger.debug(
                "projected_filtered_client_side",
                fetched=len(rows),
                kept=len(filtered),
                filters=filters,
            )
            return filtered

        return await self._cache.fetch(self.projected_key(scope), load, force=force)

    async def fetch_payment_summary(
        self,
        accounts: list[str],
        statement_period: Optional[str],
        force: bool = False,
    ) -> list[PaymentSummary]:
        """Payment summaries for a set of accounts, cached per account set and period."""
        if self._payment_summary is None:
            raise QueryExecutionError("No payment summary source configured", operation="payment_summary")

        names = sorted({a.strip().lower() for a in accounts if a and a.strip()})

        async def load() -> list[PaymentSummary]:
            raw = await self._call(
                "payment_summary",
                lambda: self._payment_summary.get_payment_summary(names, statement_period),
            )
            return parse_payment_summaries(raw)

        return await self._cache.fetch(summary_key(names, statement_period), load, force=force)

    async def _call(self, operation: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run a remote call; anything that is not already a LedgerError becomes a QueryExecutionError."""
        try:
            return await fn()
        except LedgerError:
            raise
        except Exception as e:
            logger.error("remote_read_failed", operation=operation, error=str(e))
            raise QueryExecutionError(str(e), operation=operation) from e

    def _normalize(self, raw: Any, scope: Scope, projected: bool) -> FetchResult:
        try:
            if scope.account is not None:
                return normalize_account_list(raw, projected=projected)
            return normalize_flat(raw, projected=projected)
        except Exception as e:
            logger.error(
                "normalize_failed",
                projected=projected,
                account=scope.account_name,
                error=str(e),
            )
            raise ReconciliationError(f"Could not read response: {e}") from e
