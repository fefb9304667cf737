"""
Response Shape Adapter

DESIGN DECISION: Shape guessing happens here and nowhere else.
Servers have returned transaction lists in several shapes over time. Every
raw payload crosses this module once and comes out as one of two canonical
forms: an ``AccountTransactionList`` (personal + joint) or a flat list of
transactions. Rows that cannot be read are skipped and logged rather than
failing the whole response.

Accepted account-list shapes:
    {"personalTransactions": {"transactions": [...], "count": n, "total": t},
     "jointTransactions": {...}, "total": t}
    {"personal": [...], "joint": [...]}
    {"budgetTransactions": [...]} / {"projections": [...]}
    {"data" | "transactions" | "results": [...]}
    [...]
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional

import structlog
from pydantic import ValidationError

from ledgersync.models.transaction import (
    AccountTransactionList,
    ImportResult,
    PaymentSummary,
    TransactionBase,
    transaction_from_mapping,
)


logger = structlog.get_logger(__name__)

_WRAPPER_KEYS = ("budgetTransactions", "projections", "data", "transactions", "results")

# Filter names as they appear in a scope, mapped to the row attribute they test.
_FILTER_FIELDS = {
    "statementPeriod": "statement_period",
    "category": "category",
    "criticality": "criticality",
    "paymentMethod": "payment_method",
}


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def parse_rows(raw_rows: Any, *, projected: bool) -> list[TransactionBase]:
    """Parse a list of raw rows; unreadable rows are skipped."""
    if not isinstance(raw_rows, (list, tuple)):
        return []

    rows: list[TransactionBase] = []
    for raw in raw_rows:
        if not isinstance(raw, Mapping):
            logger.warning("skipping_non_mapping_row", row_type=type(raw).__name__)
            continue
        data = {k: v for k, v in raw.items() if k not in ("kind", "isProjected")}
        try:
            rows.append(transaction_from_mapping(data, projected=projected))
        except ValidationError as e:
            logger.warning(
                "skipping_unreadable_row",
                row_id=str(raw.get("id")),
                projected=projected,
                error_count=e.error_count(),
            )
    return rows


def _section(raw: Mapping[str, Any], key: str) -> tuple[Any, Optional[Decimal]]:
    """Rows and server total of a ``personalTransactions``-style section."""
    section = raw.get(key)
    if isinstance(section, Mapping):
        return section.get("transactions", []), _to_decimal(section.get("total"))
    return section or [], None


def normalize_account_list(raw: Any, *, projected: bool) -> AccountTransactionList:
    """
    Normalize any known account-list payload.

    Wrapper and flat shapes carry no personal/joint split; their rows are
    all reported as personal.
    """
    if not raw:
        return AccountTransactionList()

    if isinstance(raw, (list, tuple)):
        return AccountTransactionList(personal=parse_rows(raw, projected=projected))

    if not isinstance(raw, Mapping):
        logger.warning("unknown_account_list_shape", shape=type(raw).__name__)
        return AccountTransactionList()

    if "personalTransactions" in raw or "jointTransactions" in raw:
        personal_rows, personal_total = _section(raw, "personalTransactions")
        joint_rows, joint_total = _section(raw, "jointTransactions")
        return AccountTransactionList(
            personal=parse_rows(personal_rows, projected=projected),
            joint=parse_rows(joint_rows, projected=projected),
            personal_total=_to_decimal(raw.get("personalTotal")) if personal_total is None else personal_total,
            joint_total=_to_decimal(raw.get("jointTotal")) if joint_total is None else joint_total,
        )

    if "personal" in raw or "joint" in raw:
        return AccountTransactionList(
            personal=parse_rows(raw.get("personal") or [], projected=projected),
            joint=parse_rows(raw.get("joint") or [], projected=projected),
        )

    for key in _WRAPPER_KEYS:
        if isinstance(raw.get(key), list):
            return AccountTransactionList(
                personal=parse_rows(raw[key], projected=projected),
                personal_total=_to_decimal(raw.get("total")),
            )

    logger.warning("unknown_account_list_shape", keys=sorted(str(k) for k in raw.keys()))
    return AccountTransactionList()


def normalize_flat(raw: Any, *, projected: bool) -> list[TransactionBase]:
    """Normalize a payload into a flat list, flattening any personal/joint split."""
    if isinstance(raw, (list, tuple)):
        return parse_rows(raw, projected=projected)
    return normalize_account_list(raw, projected=projected).rows


def filter_transactions(
    rows: Iterable[TransactionBase],
    filters: Optional[Mapping[str, Any]],
) -> list[TransactionBase]:
    """
    Equality-filter rows on statementPeriod, category, criticality and paymentMethod.

    Used for reads the server cannot filter, so the result looks exactly like
    a server-filtered one. Unknown filter names are ignored.
    """
    active = {
        _FILTER_FIELDS[k]: v
        for k, v in (filters or {}).items()
        if k in _FILTER_FIELDS and v not in (None, "")
    }
    if not active:
        return list(rows)
    return [
        row for row in rows
        if all(getattr(row, attr) == value for attr, value in active.items())
    ]


def parse_created(raw: Any, *, projected: bool) -> Optional[TransactionBase]:
    """
    Read the entity a create call returned.

    Servers answer with the object or a one-element list. None when nothing
    readable came back.
    """
    if isinstance(raw, (list, tuple)):
        raw = raw[0] if raw else None
    if not isinstance(raw, Mapping):
        return None
    rows = parse_rows([raw], projected=projected)
    return rows[0] if rows else None


def parse_payment_summaries(raw: Any) -> list[PaymentSummary]:
    """Payment summaries from a list or a ``{"summary": [...]}`` wrapper."""
    items = raw
    if isinstance(raw, Mapping):
        items = raw.get("summary")
    if not isinstance(items, (list, tuple)):
        if raw:
            logger.warning("unknown_payment_summary_shape", shape=type(raw).__name__)
        return []

    summaries = []
    for item in items:
        try:
            summaries.append(PaymentSummary.model_validate(item))
        except ValidationError as e:
            logger.warning("skipping_unreadable_summary", error_count=e.error_count())
    return summaries


def parse_import_result(raw: Any, statement_period: str) -> ImportResult:
    """
    Read a bulk-import response; a bare count or list is accepted.

    The import has already been committed when this runs, so an unreadable
    answer degrades to an empty result instead of raising.
    """
    if isinstance(raw, ImportResult):
        return raw
    if isinstance(raw, Mapping):
        data = {k: v for k, v in raw.items() if v is not None}
        data.setdefault("statementPeriod", statement_period)
        try:
            return ImportResult.model_validate(data)
        except ValidationError as e:
            logger.warning(
                "unreadable_import_result",
                statement_period=statement_period,
                error_count=e.error_count(),
            )
            return ImportResult(statement_period=statement_period)
    if isinstance(raw, int) and not isinstance(raw, bool):
        return ImportResult(statement_period=statement_period, imported_count=max(raw, 0))
    if isinstance(raw, (list, tuple)):
        return ImportResult(statement_period=statement_period, imported_count=len(raw))
    return ImportResult(statement_period=statement_period)
