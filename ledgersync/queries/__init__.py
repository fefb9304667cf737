"""Cached, normalized reads of the remote collections."""

from ledgersync.queries.executor import (
    FetchResult,
    QueryExecutionError,
    TransactionQueryExecutor,
)

__all__ = ["FetchResult", "QueryExecutionError", "TransactionQueryExecutor"]
