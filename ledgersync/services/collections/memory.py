"""
In-Memory Ledger Backend

A complete stand-in for the ledger server, used by tests and for running
the engine without a network.

It answers in the same raw shapes the real server uses, so responses still
go through the adapter. Two server behaviours worth noting are reproduced:
- account-scoped reads return the account's rows plus the joint rows
- an optional ``joint_router`` reassigns rows created against "joint" to a
  member account, the way the server redistributes shared expenses

Failure injection (``fail``) and per-operation gates (``hold``) let tests
exercise error paths and in-flight ordering.
"""

import asyncio
import csv
import io
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

import structlog

from ledgersync.models.transaction import JOINT_ACCOUNT
from ledgersync.services.collections.interface import (
    BudgetCollection,
    NotFoundError,
    PaymentSummarySource,
    ProjectedCollection,
    RemoteError,
    UploadError,
)


logger = structlog.get_logger(__name__)

JointRouter = Callable[[dict], Optional[str]]

_UPLOAD_COLUMNS = {
    "name", "amount", "category", "criticality", "account",
    "paymentMethod", "memo", "transactionDate",
}


def _amount(row: dict) -> Decimal:
    try:
        return Decimal(str(row.get("amount") or 0))
    except InvalidOperation:
        return Decimal("0")


def _matches(row: dict, filters: Optional[dict[str, str]]) -> bool:
    for key, value in (filters or {}).items():
        if key == "account":
            continue
        if value not in (None, "") and row.get(key) != value:
            return False
    return True


def _section(rows: list[dict]) -> dict:
    return {
        "transactions": [dict(r) for r in rows],
        "count": len(rows),
        "total": str(sum((_amount(r) for r in rows), Decimal("0"))),
    }


class _MemoryStore:
    """Rows of one collection, keyed by persistent id."""

    def __init__(self, backend: "InMemoryLedgerBackend", name: str, id_prefix: str):
        self._backend = backend
        self.name = name
        self._id_prefix = id_prefix
        self.next_id = 1
        self.rows: dict[str, dict] = {}

    def insert(self, payload: dict) -> dict:
        row = {k: v for k, v in payload.items() if k not in ("id", "isNew", "kind")}
        account = str(row.get("account") or "")
        if account.lower() == JOINT_ACCOUNT and self._backend.joint_router is not None:
            assigned = self._backend.joint_router(dict(row))
            if assigned:
                row["account"] = assigned
        row["id"] = f"{self._id_prefix}{self.next_id}"
        self.next_id += 1
        self.rows[row["id"]] = row
        return dict(row)

    def update(self, transaction_id: str, payload: dict) -> dict:
        if transaction_id not in self.rows:
            raise NotFoundError(f"{self.name} transaction {transaction_id} not found", operation="update")
        row = dict(self.rows[transaction_id])
        row.update({k: v for k, v in payload.items() if k not in ("id", "isNew", "kind")})
        self.rows[transaction_id] = row
        return dict(row)

    def delete(self, transaction_id: str) -> dict:
        if self.rows.pop(transaction_id, None) is None:
            raise NotFoundError(f"{self.name} transaction {transaction_id} not found", operation="delete")
        return {"id": transaction_id, "deleted": True}

    def select(self, filters: Optional[dict[str, str]] = None) -> list[dict]:
        return [dict(r) for r in self.rows.values() if _matches(r, filters)]

    def account_list(self, account: str, filters: Optional[dict[str, str]] = None) -> dict:
        wanted = account.lower()
        rows = self.select(filters)
        personal = [r for r in rows if str(r.get("account", "")).lower() == wanted]
        joint = []
        if wanted != JOINT_ACCOUNT:
            joint = [r for r in rows if str(r.get("account", "")).lower() == JOINT_ACCOUNT]
        return {
            "personalTransactions": _section(personal),
            "jointTransactions": _section(joint),
            "total": str(sum((_amount(r) for r in personal + joint), Decimal("0"))),
        }


class InMemoryBudgetCollection(BudgetCollection):
    def __init__(self, backend: "InMemoryLedgerBackend"):
        self._backend = backend
        self.store = _MemoryStore(backend, "budget", "b-")

    async def list_transactions(self, account=None, filters=None):
        await self._backend._enter("budget.list", account=account, filters=filters)
        if account:
            return self.store.account_list(account, filters)
        return self.store.select(filters)

    async def create(self, payload):
        await self._backend._enter("budget.create", payload=payload)
        return self.store.insert(payload)

    async def update(self, transaction_id, payload):
        await self._backend._enter("budget.update", id=transaction_id, payload=payload)
        return self.store.update(transaction_id, payload)

    async def delete(self, transaction_id):
        await self._backend._enter("budget.delete", id=transaction_id)
        return self.store.delete(transaction_id)

    async def upload(self, file, statement_period):
        await self._backend._enter("budget.upload", statement_period=statement_period)
        text = _read_upload(file)
        reader = csv.DictReader(io.StringIO(text))
        if not reader.fieldnames or "amount" not in reader.fieldnames:
            raise UploadError("CSV must have a header row with an amount column", statement_period=statement_period)

        parsed = []
        skipped = 0
        errors = []
        for line_no, record in enumerate(reader, start=2):
            row = {k: v.strip() for k, v in record.items() if k in _UPLOAD_COLUMNS and v and v.strip()}
            try:
                Decimal(row.get("amount") or "")
            except InvalidOperation:
                skipped += 1
                errors.append(f"line {line_no}: amount is not a number")
                continue
            row["statementPeriod"] = statement_period
            parsed.append(row)

        # All or nothing: rows are inserted only after the whole file parsed
        for row in parsed:
            self.store.insert(row)

        logger.info("memory_upload", statement_period=statement_period, imported=len(parsed), skipped=skipped)
        return {
            "statementPeriod": statement_period,
            "importedCount": len(parsed),
            "skippedCount": skipped,
            "errors": errors,
        }


class InMemoryProjectedCollection(ProjectedCollection):
    def __init__(self, backend: "InMemoryLedgerBackend"):
        self._backend = backend
        self.store = _MemoryStore(backend, "projected", "p-")

    async def list_transactions(self, account, filters=None):
        await self._backend._enter("projected.list", account=account, filters=filters)
        return self.store.account_list(account, filters)

    async def list_all(self):
        await self._backend._enter("projected.list_all")
        return self.store.select()

    async def create(self, payload):
        await self._backend._enter("projected.create", payload=payload)
        return self.store.insert(payload)

    async def update(self, transaction_id, payload):
        await self._backend._enter("projected.update", id=transaction_id, payload=payload)
        return self.store.update(transaction_id, payload)

    async def delete(self, transaction_id):
        await self._backend._enter("projected.delete", id=transaction_id)
        return self.store.delete(transaction_id)


class InMemoryLedgerBackend(PaymentSummarySource):
    """
    Budget, projected and payment-summary endpoints held in memory.

    Usage:
        backend = InMemoryLedgerBackend(joint_router=lambda row: "josh")
        client = create_ledger_client(backend=backend, settings=settings)
    """

    def __init__(self, joint_router: Optional[JointRouter] = None):
        self.joint_router = joint_router
        self.calls: list[tuple[str, dict]] = []
        self._failures: dict[str, tuple[Exception, Optional[set[str]]]] = {}
        self._gates: dict[str, asyncio.Event] = {}
        self.budget = InMemoryBudgetCollection(self)
        self.projected = InMemoryProjectedCollection(self)

    # -------------------------------------------------------------------------
    # Seeding and inspection
    # -------------------------------------------------------------------------

    def seed_budget(self, *rows: dict) -> list[dict]:
        return [self.budget.store.insert(r) for r in rows]

    def seed_projected(self, *rows: dict) -> list[dict]:
        return [self.projected.store.insert(r) for r in rows]

    def calls_to(self, operation: str) -> list[dict]:
        return [kwargs for name, kwargs in self.calls if name == operation]

    @property
    def network_call_count(self) -> int:
        return len(self.calls)

    # -------------------------------------------------------------------------
    # Failure injection and gating
    # -------------------------------------------------------------------------

    def fail(
        self,
        operation: str,
        error: Optional[Exception] = None,
        ids: Optional[set[str]] = None,
    ) -> None:
        """
        Make ``operation`` (e.g. ``"projected.create"``) raise.

        With ``ids`` only calls addressing one of those ids fail.
        """
        self._failures[operation] = (error or RemoteError(f"{operation} failed", operation=operation), ids)

    def recover(self, operation: Optional[str] = None) -> None:
        if operation is None:
            self._failures.clear()
        else:
            self._failures.pop(operation, None)

    def hold(self, operation: str) -> asyncio.Event:
        """
        Block calls to ``operation`` until the returned event is set.

        A call waits on the gate that was registered when it started, so
        ``unhold`` lets later calls through while earlier ones stay blocked.
        """
        gate = asyncio.Event()
        self._gates[operation] = gate
        return gate

    def unhold(self, operation: str) -> None:
        self._gates.pop(operation, None)

    async def _enter(self, operation: str, **kwargs) -> None:
        self.calls.append((operation, kwargs))
        gate = self._gates.get(operation)
        if gate is not None:
            await gate.wait()
        else:
            await asyncio.sleep(0)

        failure = self._failures.get(operation)
        if failure is not None:
            error, ids = failure
            if ids is None or kwargs.get("id") in ids:
                raise error

    # -------------------------------------------------------------------------
    # Payment summary
    # -------------------------------------------------------------------------

    async def get_payment_summary(self, accounts, statement_period):
        await self._enter("payment_summary", accounts=list(accounts or []), statement_period=statement_period)
        filters = {"statementPeriod": statement_period} if statement_period else None
        summary = []
        for account in accounts or []:
            wanted = str(account).lower()
            totals: dict[str, Decimal] = {}
            breakdowns: dict[str, dict[str, Decimal]] = {}
            for row in self.budget.store.select(filters):
                if str(row.get("account", "")).lower() != wanted:
                    continue
                method = row.get("paymentMethod") or "Unknown"
                category = row.get("category") or "Uncategorized"
                totals[method] = totals.get(method, Decimal("0")) + _amount(row)
                by_category = breakdowns.setdefault(method, {})
                by_category[category] = by_category.get(category, Decimal("0")) + _amount(row)
            summary.append({
                "account": wanted,
                "creditCardTotals": {k: str(v) for k, v in totals.items()},
                "creditCardCategoryBreakdowns": {
                    method: {c: str(v) for c, v in cats.items()}
                    for method, cats in breakdowns.items()
                },
            })
        return {"summary": summary}


def _read_upload(file: Any) -> str:
    if hasattr(file, "read"):
        file = file.read()
    if isinstance(file, bytes):
        return file.decode("utf-8-sig")
    if isinstance(file, str):
        return file
    raise UploadError(f"Unsupported upload payload: {type(file).__name__}")
