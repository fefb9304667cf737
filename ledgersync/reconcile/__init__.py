"""Working set merge, per-row save state and the invalidation fan-out."""

from ledgersync.reconcile.invalidation import InvalidationFanOut
from ledgersync.reconcile.row_state import RowStateTable
from ledgersync.reconcile.working_set import (
    WorkingSet,
    flatten,
    merge_working_set,
    sort_newest_first,
)

__all__ = [
    "InvalidationFanOut",
    "RowStateTable",
    "WorkingSet",
    "flatten",
    "merge_working_set",
    "sort_newest_first",
]
