"""
Local Working Set

The rows one view shows: unsaved optimistic rows on top, then projected
rows, then budget rows, each group newest first.

DESIGN DECISION: The working set is rebuilt, never patched.
Every fetch result produces a new tuple of rows through ``merge_working_set``.
Only the optimistic rows survive a rebuild; everything else comes from the
freshest fetch. Projected and budget rows are grouped by source and are not
interleaved by date.
"""

from typing import Any, Iterable, Optional

import structlog

from ledgersync.models.transaction import (
    AccountTransactionList,
    TransactionBase,
    as_projected,
)


logger = structlog.get_logger(__name__)


def sort_newest_first(rows: Iterable[TransactionBase]) -> list[TransactionBase]:
    """Stable sort by transaction date, newest first; undated rows go last."""
    return sorted(rows, key=lambda row: row.sort_timestamp(), reverse=True)


def flatten(value: Any) -> list[TransactionBase]:
    """Rows of a fetch result: an account split, a flat list or nothing."""
    if value is None:
        return []
    if isinstance(value, AccountTransactionList):
        return value.rows
    return list(value)


def merge_working_set(
    previous: Iterable[TransactionBase],
    budget: Any,
    projected: Any,
) -> tuple[TransactionBase, ...]:
    """
    Merge optimistic rows with freshly fetched budget and projected rows.

    Args:
        previous: The working set being replaced
        budget: Budget fetch result for the active scope
        projected: Projected fetch result for the active scope

    Returns:
        ``local_only + sorted(projected) + sorted(budget)``
    """
    local_only = [row for row in previous if row.is_new]
    projected_rows = sort_newest_first(as_projected(r) for r in flatten(projected))
    budget_rows = sort_newest_first(flatten(budget))
    return tuple(local_only + projected_rows + budget_rows)


class WorkingSet:
    """
    The row list owned by one session.

    Every change assigns a new tuple, so a reader holding ``rows`` never
    sees a half-applied update.
    """

    def __init__(self, rows: Iterable[TransactionBase] = ()):
        self._rows: tuple[TransactionBase, ...] = tuple(rows)

    @property
    def rows(self) -> tuple[TransactionBase, ...]:
        return self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self):
        return iter(self._rows)

    def __contains__(self, row_id: str) -> bool:
        return self.find(row_id) is not None

    @property
    def ids(self) -> list[str]:
        return [row.id for row in self._rows]

    @property
    def local_only(self) -> list[TransactionBase]:
        return [row for row in self._rows if row.is_new]

    def find(self, row_id: str) -> Optional[TransactionBase]:
        for row in self._rows:
            if row.id == row_id:
                return row
        return None

    def rebuild(self, budget: Any, projected: Any) -> None:
        self._rows = merge_working_set(self._rows, budget, projected)

    def keep_local_only(self) -> None:
        """Fallback after a failed rebuild: drafts are never dropped."""
        self._rows = tuple(self.local_only)

    def clear(self) -> None:
        self._rows = ()

    def add_local(self, row: TransactionBase) -> None:
        """Put a new optimistic row on top."""
        self._rows = (row, *self._rows)

    def replace_row(self, row_id: str, row: TransactionBase) -> bool:
        """
        Swap the row with ``row_id`` for ``row`` in place.

        Any other row already carrying ``row.id`` is dropped so the id stays
        unique (a refetch can land before the create response).
        """
        if self.find(row_id) is None:
            return False
        new_rows = []
        for existing in self._rows:
            if existing.id == row_id:
                new_rows.append(row)
            elif existing.id != row.id:
                new_rows.append(existing)
        self._rows = tuple(new_rows)
        return True

    def remove(self, row_ids: Iterable[str]) -> list[str]:
        """Remove rows by id; returns the ids that were present."""
        doomed = set(row_ids)
        removed = [row.id for row in self._rows if row.id in doomed]
        if removed:
            self._rows = tuple(row for row in self._rows if row.id not in doomed)
        return removed
