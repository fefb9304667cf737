"""
Cache Key Builder

DESIGN DECISION: A cache key is a plain tuple.
Tuples are immutable and hash by structure, so two keys built from the same
scope compare equal and can be used directly as dictionary keys.

Key shapes:
    (kind, "accounts", account, filters?)   account-scoped
    (kind, "list", filters?)                 un-scoped
    ("paymentSummary", "summary", "anna,josh", period)

Filters are kept in the order the caller built them. Every caller goes
through ``Scope.filters()`` so one resource always sees one ordering.
"""

from enum import Enum
from typing import Any, Iterable, Mapping, Optional

import structlog


logger = structlog.get_logger(__name__)


class ResourceKind(str, Enum):
    """Cacheable remote resources."""
    BUDGET = "budgetTransactions"
    PROJECTED = "projectedTransactions"
    PAYMENT_SUMMARY = "paymentSummary"


class FilterItems(tuple):
    """
    Filter pairs inside a cache key.

    A tuple of ``(name, value)`` pairs in insertion order. Typed separately
    so partial matching can tell a filter element from a plain string.
    """

    @classmethod
    def from_mapping(cls, filters: Mapping[str, Any]) -> "FilterItems":
        return cls((str(k), v) for k, v in filters.items())

    def as_dict(self) -> dict[str, Any]:
        return dict(self)

    def covers(self, other: "FilterItems") -> bool:
        """True when every pair of ``self`` also appears in ``other``."""
        theirs = other.as_dict()
        return all(k in theirs and theirs[k] == v for k, v in self)


def build_key(
    kind: ResourceKind,
    account: Optional[Any] = None,
    filters: Optional[Mapping[str, Any]] = None,
) -> tuple:
    """
    Build the cache key for a resource query.

    Never raises: if the account or filters cannot be turned into a key the
    coarser list key for the resource is returned instead, which can only
    over-invalidate.
    """
    try:
        parts: list[Any] = [ResourceKind(kind).value]
        if account is not None and str(account) != "":
            parts.extend(["accounts", str(account)])
        else:
            parts.append("list")
        if filters:
            items = FilterItems.from_mapping(filters)
            hash(items)
            parts.append(items)
        return tuple(parts)
    except Exception as e:
        fallback = (getattr(kind, "value", str(kind)), "list")
        logger.warning(
            "cache_key_degraded",
            kind=str(kind),
            account=str(account),
            error=str(e),
            fallback=fallback,
        )
        return fallback


def summary_key(accounts: Optional[Iterable[str]], statement_period: Optional[str]) -> tuple:
    """
    Build the payment-summary key.

    Account order does not matter: the names are sorted and joined. With no
    accounts the key is scoped by the statement period alone.
    """
    try:
        names = sorted({str(a).strip().lower() for a in (accounts or []) if str(a).strip()})
        if not names:
            return (
                ResourceKind.PAYMENT_SUMMARY.value,
                FilterItems.from_mapping({"statementPeriod": statement_period}),
            )
        return (
            ResourceKind.PAYMENT_SUMMARY.value,
            "summary",
            ",".join(names),
            statement_period,
        )
    except Exception as e:
        logger.warning("summary_key_degraded", error=str(e))
        return (ResourceKind.PAYMENT_SUMMARY.value,)


def key_matches(pattern: tuple, key: tuple) -> bool:
    """
    Partial key matching.

    ``pattern`` matches ``key`` when it is a prefix of it. A filter element in
    the pattern matches a filter element in the key when its pairs are a
    subset of the key's pairs.
    """
    if len(pattern) > len(key):
        return False
    for expected, actual in zip(pattern, key):
        if isinstance(expected, FilterItems):
            if not isinstance(actual, FilterItems) or not expected.covers(actual):
                return False
        elif expected != actual:
            return False
    return True


def describe_key(key: tuple) -> str:
    """Readable form for logs, e.g. ``projectedTransactions/accounts/josh``."""
    out = []
    for part in key:
        if isinstance(part, FilterItems):
            out.append(",".join(f"{k}={v}" for k, v in part))
        else:
            out.append(str(part))
    return "/".join(out)
