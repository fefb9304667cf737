"""
Main Orchestrator for LedgerSync

Ties the components together into one client object. A ``LedgerClient``
owns the pieces every view shares:
1. The query cache (one per client, shared by all sessions)
2. The query executor reading through that cache
3. The invalidation fan-out writing into it
4. The audit logger

DESIGN DECISION: Sessions share the client's cache.
A mutation in one session invalidates keys in the shared cache, so every
other session watching an affected account sees ``is_stale`` and picks the
change up on its next refresh, without any event bus between them.
"""

from typing import Iterable, Optional

import structlog

from ledgersync.audit import MutationAuditLogger
from ledgersync.cache import QueryCache
from ledgersync.config import LedgerSettings, get_accounts
from ledgersync.models.results import InvalidationReport
from ledgersync.models.transaction import PaymentSummary
from ledgersync.queries import TransactionQueryExecutor
from ledgersync.reconcile import InvalidationFanOut
from ledgersync.services.collections import (
    BudgetCollection,
    InMemoryLedgerBackend,
    PaymentSummarySource,
    ProjectedCollection,
)
from ledgersync.session import TransactionSession
from ledgersync.validation import TransactionValidator


logger = structlog.get_logger(__name__)


class LedgerClient:
    """
    Root object of the engine.

    Flow:
    1. Open a session per visible table
    2. Select an account and statement period on it
    3. Edit through the session; fan-out reaches every other session
    """

    def __init__(
        self,
        budget: BudgetCollection,
        projected: ProjectedCollection,
        payment_summary: Optional[PaymentSummarySource] = None,
        settings: Optional[LedgerSettings] = None,
        cache: Optional[QueryCache] = None,
        audit_logger: Optional[MutationAuditLogger] = None,
    ):
        self._budget = budget
        self._projected = projected
        self._settings = settings
        self.cache = cache or QueryCache()
        self.audit_logger = audit_logger or MutationAuditLogger()
        self.executor = TransactionQueryExecutor(
            budget=budget,
            projected=projected,
            cache=self.cache,
            payment_summary=payment_summary,
        )
        self.fan_out = InvalidationFanOut(
            cache=self.cache,
            settings=settings,
            audit_logger=self.audit_logger,
        )
        self._validator = TransactionValidator(settings)
        self._sessions: list[TransactionSession] = []

    @property
    def sessions(self) -> list[TransactionSession]:
        return list(self._sessions)

    def open_session(self) -> TransactionSession:
        session = TransactionSession(
            executor=self.executor,
            budget=self._budget,
            projected=self._projected,
            fan_out=self.fan_out,
            validator=self._validator,
            settings=self._settings,
            audit_logger=self.audit_logger,
        )
        self._sessions.append(session)
        logger.debug("session_opened", open_sessions=len(self._sessions))
        return session

    def close_session(self, session: TransactionSession) -> None:
        session.close()
        if session in self._sessions:
            self._sessions.remove(session)

    def invalidate(
        self,
        account: Optional[str] = None,
        statement_period: Optional[str] = None,
        canonical_member_accounts: Optional[Iterable[str]] = None,
    ) -> InvalidationReport:
        """Manual escape hatch: run the fan-out for ``account``."""
        return self.fan_out.invalidate(account, statement_period, canonical_member_accounts)

    async def payment_summary(
        self,
        accounts: Optional[Iterable[str]] = None,
        statement_period: Optional[str] = None,
        force: bool = False,
    ) -> list[PaymentSummary]:
        """
        Payment summaries per account, cached and refetched after invalidation.

        Defaults to every configured member account.
        """
        names = list(accounts) if accounts else get_accounts(self._settings)
        return await self.executor.fetch_payment_summary(names, statement_period, force=force)

    def close(self) -> None:
        for session in list(self._sessions):
            self.close_session(session)
        self.cache.clear()


def create_ledger_client(
    backend: Optional[InMemoryLedgerBackend] = None,
    budget: Optional[BudgetCollection] = None,
    projected: Optional[ProjectedCollection] = None,
    payment_summary: Optional[PaymentSummarySource] = None,
    settings: Optional[LedgerSettings] = None,
) -> LedgerClient:
    """
    Factory function to create a ledger client.

    Args:
        backend: In-memory backend providing all three endpoints. Used for
                 any endpoint not passed explicitly; one is created when no
                 collections are given at all.
        settings: Ledger settings; None reads the environment.

    Returns:
        A ready ``LedgerClient``
    """
    if backend is None and (budget is None or projected is None):
        logger.info("using_in_memory_backend")
        backend = InMemoryLedgerBackend()

    return LedgerClient(
        budget=budget or backend.budget,
        projected=projected or backend.projected,
        payment_summary=payment_summary or backend,
        settings=settings,
        audit_logger=MutationAuditLogger(),
    )
