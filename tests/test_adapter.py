"""Tests for response-shape normalization."""

from decimal import Decimal

import pytest

from ledgersync.models import BudgetTransaction, ProjectedTransaction
from ledgersync.services.collections import (
    filter_transactions,
    normalize_account_list,
    normalize_flat,
    parse_created,
    parse_import_result,
    parse_payment_summaries,
)


def _row(row_id, **fields):
    return {"id": row_id, "name": f"row {row_id}", "amount": "10", **fields}


class TestAccountListShapes:
    """Tests for every accepted account-list payload."""

    def test_sectioned_shape(self):
        """Test the canonical server shape with section totals."""
        raw = {
            "personalTransactions": {"transactions": [_row("b-1")], "count": 1, "total": "10"},
            "jointTransactions": {"transactions": [_row("b-2"), _row("b-3")], "count": 2, "total": "25"},
            "total": "35",
        }
        listing = normalize_account_list(raw, projected=False)
        assert [r.id for r in listing.personal] == ["b-1"]
        assert [r.id for r in listing.joint] == ["b-2", "b-3"]
        assert listing.joint_total == Decimal("25")
        assert all(isinstance(r, BudgetTransaction) for r in listing.rows)

    def test_plain_split_shape(self):
        raw = {"personal": [_row("p-1")], "joint": [_row("p-2")]}
        listing = normalize_account_list(raw, projected=True)
        assert listing.count == 2
        assert all(isinstance(r, ProjectedTransaction) for r in listing.rows)

    def test_wrapper_shape(self):
        """Test legacy wrapper keys."""
        listing = normalize_account_list({"projections": [_row("p-1")]}, projected=True)
        assert [r.id for r in listing.personal] == ["p-1"]
        listing = normalize_account_list({"budgetTransactions": [_row("b-1")], "total": "10"}, projected=False)
        assert listing.personal_total == Decimal("10")

    def test_flat_list_shape(self):
        listing = normalize_account_list([_row("b-1"), _row("b-2")], projected=False)
        assert listing.count == 2
        assert listing.joint == []

    def test_unknown_shape_is_empty(self):
        """Test that unknown payloads degrade to empty."""
        assert normalize_account_list({"weird": 1}, projected=False).count == 0
        assert normalize_account_list(None, projected=False).count == 0
        assert normalize_account_list("nope", projected=False).count == 0

    def test_bad_rows_are_skipped(self):
        """Test that one unreadable row does not drop the response."""
        raw = [_row("b-1"), "garbage", {"name": "no id"}, _row("b-2", amount="abc")]
        rows = normalize_flat(raw, projected=False)
        assert [r.id for r in rows] == ["b-1"]

    def test_server_kind_field_is_ignored(self):
        """Test that the collection, not the payload, decides the variant."""
        rows = normalize_flat([_row("p-1", kind="budget", isProjected=False)], projected=True)
        assert rows[0].is_projected


class TestFiltering:
    """Tests for client-side equality filtering."""

    def test_filters_by_every_field(self):
        rows = normalize_flat([
            _row("p-1", statementPeriod="MAY2025", category="Dining", paymentMethod="Visa"),
            _row("p-2", statementPeriod="MAY2025", category="Housing", paymentMethod="Visa"),
            _row("p-3", statementPeriod="JUNE2025", category="Dining", paymentMethod="Visa"),
        ], projected=True)
        kept = filter_transactions(rows, {"statementPeriod": "MAY2025", "category": "Dining"})
        assert [r.id for r in kept] == ["p-1"]

    def test_empty_filters_keep_everything(self):
        rows = normalize_flat([_row("p-1"), _row("p-2")], projected=True)
        assert len(filter_transactions(rows, {})) == 2
        assert len(filter_transactions(rows, {"category": ""})) == 2


class TestOtherResponses:
    """Tests for create, summary and import responses."""

    def test_created_object_or_list(self):
        """Test that a create answer may be wrapped in a list."""
        assert parse_created(_row("p-55"), projected=True).id == "p-55"
        assert parse_created([_row("p-56")], projected=True).id == "p-56"
        assert parse_created([], projected=True) is None
        assert parse_created({"ok": True}, projected=True) is None

    def test_payment_summary_wrapper(self):
        raw = {"summary": [{"account": "josh", "creditCardTotals": {"Visa": "12"}}]}
        summaries = parse_payment_summaries(raw)
        assert summaries[0].account == "josh"
        assert parse_payment_summaries([{"account": "anna"}])[0].account == "anna"
        assert parse_payment_summaries(None) == []

    def test_import_result(self):
        result = parse_import_result({"importedCount": 3, "skippedCount": 1}, "MAY2025")
        assert result.statement_period == "MAY2025"
        assert result.imported_count == 3
        assert parse_import_result(5, "MAY2025").imported_count == 5

    def test_malformed_import_result_degrades(self):
        """Test that nulls keep the requested period and bad counts fall back to empty."""
        result = parse_import_result({"statementPeriod": None, "importedCount": 2}, "MAY2025")
        assert result.statement_period == "MAY2025"
        assert result.imported_count == 2

        fallback = parse_import_result({"importedCount": -3}, "MAY2025")
        assert fallback.statement_period == "MAY2025"
        assert fallback.imported_count == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
