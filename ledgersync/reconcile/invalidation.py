"""
Invalidation Fan-Out

Given the account a mutation touched, mark every cached scope that could
now show different data as stale.

Rules:
- no account:  budget list, projected list, aggregate payment summary
- member:      that member's budget, projected and payment summary
- joint:       joint budget and projected, then budget, projected and
               payment summary of every member, then the aggregate summary

DESIGN DECISION: A mutation against "joint" is never assumed to stay in
"joint". The server may split a shared expense across member accounts, so
every member scope is invalidated too.

Each key is invalidated on its own. A failure on one key is logged and
recorded in the report; the remaining keys are still invalidated.
"""

from typing import Callable, Iterable, Optional
from uuid import UUID

import structlog

from ledgersync.audit import MutationAuditLogger
from ledgersync.cache import QueryCache, ResourceKind, build_key, describe_key, summary_key
from ledgersync.config import LedgerSettings, get_accounts
from ledgersync.models.results import InvalidatedScope, InvalidationReport
from ledgersync.models.transaction import JOINT_ACCOUNT, AccountRef


logger = structlog.get_logger(__name__)

InvalidationListener = Callable[[InvalidationReport], None]


class InvalidationFanOut:
    """
    Computes and applies the invalidation fan-out for one mutated account.

    Listeners registered with ``subscribe`` receive the report of every
    fan-out after it has run.
    """

    def __init__(
        self,
        cache: QueryCache,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[MutationAuditLogger] = None,
    ):
        self._cache = cache
        self._settings = settings
        self._audit = audit_logger
        self._listeners: list[InvalidationListener] = []

    def subscribe(self, listener: InvalidationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def invalidate(
        self,
        account: Optional[str],
        statement_period: Optional[str] = None,
        canonical_member_accounts: Optional[Iterable[str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> InvalidationReport:
        """
        Invalidate every scope affected by a change to ``account``.

        Args:
            account: Mutated account, "joint" (any casing) or None for list-level
            statement_period: Period the change belongs to; None invalidates every period
            canonical_member_accounts: Member accounts for joint fan-out and the
                aggregate summary; defaults to the configured accounts

        Returns:
            Report of the scopes invalidated and the ones that failed
        """
        ref = AccountRef.parse(account)
        report = InvalidationReport(
            account=ref.name if ref else None,
            statement_period=statement_period,
        )
        filters = {"statementPeriod": statement_period} if statement_period else None
        members = self._members(canonical_member_accounts)

        if ref is None:
            self._apply(report, ResourceKind.BUDGET, None, build_key(ResourceKind.BUDGET, None, filters))
            self._apply(report, ResourceKind.PROJECTED, None, build_key(ResourceKind.PROJECTED, None, filters))
            self._apply_aggregate(report, members, statement_period)
        elif ref.is_joint:
            for kind in (ResourceKind.BUDGET, ResourceKind.PROJECTED):
                self._apply(report, kind, JOINT_ACCOUNT, build_key(kind, JOINT_ACCOUNT, filters))
            for member in members:
                self._apply_member(report, member, filters, statement_period)
            self._apply_aggregate(report, members, statement_period)
        else:
            self._apply_member(report, ref.name, filters, statement_period)

        logger.info(
            "invalidation_fan_out",
            account=report.account,
            statement_period=statement_period,
            scopes=sorted(report.labels),
            failures=len(report.failures),
        )
        if self._audit is not None:
            self._audit.log_invalidation(
                account=report.account,
                labels=sorted(report.labels),
                failures=report.failures,
                correlation_id=correlation_id,
            )
        self._notify(report)
        return report

    def invalidate_accounts(
        self,
        accounts: Iterable[Optional[str]],
        statement_period: Optional[str] = None,
        canonical_member_accounts: Optional[Iterable[str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> InvalidationReport:
        """
        Fan out for several accounts, each account once.

        Used after a create, when the server-assigned account is only known
        from the response and may differ from the attempted one.
        """
        seen: list[Optional[str]] = []
        for account in accounts:
            ref = AccountRef.parse(account)
            name = ref.name if ref else None
            if name not in seen:
                seen.append(name)

        report: Optional[InvalidationReport] = None
        for name in seen:
            single = self.invalidate(name, statement_period, canonical_member_accounts, correlation_id)
            report = single if report is None else report.merge(single)
        return report or InvalidationReport(statement_period=statement_period)

    def _members(self, canonical: Optional[Iterable[str]]) -> list[str]:
        try:
            source = list(canonical) if canonical else get_accounts(self._settings)
            members = []
            for name in source:
                ref = AccountRef.parse(name)
                if ref is not None and not ref.is_joint and ref.name not in members:
                    members.append(ref.name)
            return members
        except Exception as e:
            logger.error("member_accounts_unavailable", error=str(e))
            return []

    def _apply_member(
        self,
        report: InvalidationReport,
        member: str,
        filters: Optional[dict],
        statement_period: Optional[str],
    ) -> None:
        self._apply(report, ResourceKind.BUDGET, member, build_key(ResourceKind.BUDGET, member, filters))
        self._apply(report, ResourceKind.PROJECTED, member, build_key(ResourceKind.PROJECTED, member, filters))
        self._apply(report, ResourceKind.PAYMENT_SUMMARY, member, summary_key([member], statement_period))

    def _apply_aggregate(
        self,
        report: InvalidationReport,
        members: list[str],
        statement_period: Optional[str],
    ) -> None:
        self._apply(
            report,
            ResourceKind.PAYMENT_SUMMARY,
            None,
            summary_key(members, statement_period),
            aggregate=True,
        )

    def _apply(
        self,
        report: InvalidationReport,
        kind: ResourceKind,
        account: Optional[str],
        key: tuple,
        aggregate: bool = False,
    ) -> None:
        scope = InvalidatedScope(resource=kind.value, account=account, key=key, aggregate=aggregate)
        try:
            logger.debug("invalidating_key", key=describe_key(key), account=account)
            self._cache.invalidate(key)
            report.scopes.append(scope)
        except Exception as e:
            logger.error("invalidate_key_failed", scope=scope.label, key=describe_key(key), error=str(e))
            report.failures.append(scope.label)

    def _notify(self, report: InvalidationReport) -> None:
        for listener in list(self._listeners):
            try:
                listener(report)
            except Exception as e:
                logger.error("invalidation_listener_failed", error=str(e))
