"""
Tests for the transaction view session

Covers scope switching, stale-response protection, cross-session staleness,
totals, selection and drafts.
"""

import asyncio
from decimal import Decimal

import pytest

from ledgersync.models import AuditEventType, BudgetTransaction, ProjectedTransaction
from ledgersync.orchestrator import create_ledger_client
from ledgersync.services.collections import InMemoryLedgerBackend, LedgerError


NOVEMBER = "NOVEMBER2025"
OCTOBER = "OCTOBER2025"


def _row(account, period, name, amount="-10", day="03", **fields):
    row = {
        "account": account,
        "statementPeriod": period,
        "name": name,
        "amount": amount,
        "transactionDate": f"2025-11-{day}T08:00:00",
    }
    row.update(fields)
    return row


class TestScopeChanges:
    """Tests for switching account and statement period."""

    def test_stale_response_is_discarded(self, client, backend):
        """Test that a slow October answer never lands in a November view."""
        backend.seed_budget(
            _row("josh", OCTOBER, "October coffee"),
            _row("josh", NOVEMBER, "November coffee"),
        )

        async def scenario():
            session = client.open_session()
            gate = backend.hold("budget.list")
            october = asyncio.create_task(session.select("josh", OCTOBER))
            await asyncio.sleep(0)

            backend.unhold("budget.list")
            await session.select("josh", NOVEMBER)

            gate.set()
            await october
            return session

        session = asyncio.run(scenario())

        assert [row.name for row in session.rows] == ["November coffee"]
        assert session.statement_period == NOVEMBER
        stale_events = [
            e for e in client.audit_logger.events
            if e.event_type == AuditEventType.STALE_RESPONSE_DISCARDED
        ]
        assert len(stale_events) == 1

    def test_unresolved_period_makes_no_calls(self, client, backend):
        """Test that a view without a statement period stays empty."""
        backend.seed_budget(_row("josh", NOVEMBER, "Coffee"))

        async def scenario():
            session = client.open_session()
            await session.select("josh")
            return session

        session = asyncio.run(scenario())

        assert session.rows == ()
        assert backend.network_call_count == 0
        assert not session.is_resolved
        assert not session.is_stale
        assert session.totals.total == Decimal("0")

    def test_drafts_need_a_statement_period(self, client):
        """Test that an unresolved view refuses drafts and stays empty."""

        async def scenario():
            session = client.open_session()
            await session.select("josh", None)
            return session

        session = asyncio.run(scenario())

        with pytest.raises(LedgerError):
            session.add_draft(name="Early")
        assert session.rows == ()

    def test_period_change_clears_rows_and_selection(self, client, backend):
        backend.seed_budget(_row("josh", NOVEMBER, "Coffee"))

        async def scenario():
            session = client.open_session()
            await session.select("josh", NOVEMBER)
            draft = session.add_draft(name="Unsaved")
            session.toggle_select("b-1")
            session.toggle_select(draft.id)
            await session.select("josh", OCTOBER)
            return session

        session = asyncio.run(scenario())

        assert session.rows == ()
        assert session.selected_ids == frozenset()
        assert session.statement_period == OCTOBER

    def test_reselecting_the_same_scope_keeps_drafts(self, client):
        async def scenario():
            session = client.open_session()
            await session.select("josh", NOVEMBER)
            draft = session.add_draft(name="Unsaved")
            await session.select("josh", NOVEMBER)
            return session, draft

        session, draft = asyncio.run(scenario())
        assert draft.id in session.working_set

    def test_fetch_failure_sets_error(self, client, backend):
        backend.fail("budget.list")

        async def scenario():
            session = client.open_session()
            await session.select("josh", NOVEMBER)
            return session

        session = asyncio.run(scenario())

        assert session.error == "budget.list failed"
        assert not session.loading
        assert session.rows == ()


class TestCrossSession:
    """Tests for staleness shared through the client's cache."""

    def test_joint_create_marks_member_view_stale(self, client, backend):
        """Test that a joint view's create reaches an open member view."""

        async def scenario():
            joint_view = client.open_session()
            josh_view = client.open_session()
            await joint_view.select("joint", NOVEMBER)
            await josh_view.select("josh", NOVEMBER)
            assert not josh_view.is_stale

            draft = joint_view.add_draft(name="Groceries", amount=Decimal("-60"))
            await joint_view.save(draft.id)
            stale_before_refresh = josh_view.is_stale

            await josh_view.refresh()
            return josh_view, stale_before_refresh

        josh_view, stale_before_refresh = asyncio.run(scenario())

        assert stale_before_refresh
        assert not josh_view.is_stale
        assert [row.name for row in josh_view.rows] == ["Groceries"]

    def test_member_create_leaves_other_member_fresh(self, client):
        async def scenario():
            anna_view = client.open_session()
            josh_view = client.open_session()
            await anna_view.select("anna", NOVEMBER)
            await josh_view.select("josh", NOVEMBER)

            draft = josh_view.add_draft(name="Lunch", amount=Decimal("-12"))
            await josh_view.save(draft.id)
            return anna_view

        anna_view = asyncio.run(scenario())
        assert not anna_view.is_stale

    def test_closed_session_stops_listening(self, client):
        async def scenario():
            session = client.open_session()
            await session.select("josh", NOVEMBER)
            client.close_session(session)
            return session

        session = asyncio.run(scenario())

        assert session not in client.sessions
        assert session.rows == ()


class TestTotals:
    """Tests for the balances shown above a table."""

    def test_personal_and_joint_balances(self, settings):
        """Test totals with joint rows kept on the joint account."""
        backend = InMemoryLedgerBackend()
        backend.seed_budget(
            _row("josh", NOVEMBER, "Coffee", amount="-4.50"),
            _row("joint", NOVEMBER, "Utilities", amount="-100"),
            _row("anna", NOVEMBER, "Books", amount="-20"),
        )
        backend.seed_projected(_row("josh", NOVEMBER, "Gym", amount="-30"))
        client = create_ledger_client(backend=backend, settings=settings)

        async def scenario():
            session = client.open_session()
            await session.select("josh", NOVEMBER)
            return session

        session = asyncio.run(scenario())
        totals = session.totals

        assert totals.personal_balance == Decimal("-4.50")
        assert totals.joint_balance == Decimal("-100")
        assert totals.budget_total == Decimal("-104.50")
        assert totals.projected_total == Decimal("-30")
        assert totals.count == 3
        client.close()


class TestSelection:
    """Tests for row selection."""

    def test_toggle_and_select_all(self, client, backend):
        backend.seed_budget(
            _row("josh", NOVEMBER, "Coffee"),
            _row("josh", NOVEMBER, "Lunch", day="04"),
        )

        async def scenario():
            session = client.open_session()
            await session.select("josh", NOVEMBER)
            return session

        session = asyncio.run(scenario())

        assert session.toggle_select("b-1") is True
        assert session.toggle_select("missing") is False
        assert session.selected_ids == frozenset({"b-1"})
        assert not session.is_all_selected

        session.toggle_select_all()
        assert session.is_all_selected
        session.toggle_select_all()
        assert session.selected_ids == frozenset()

        session.toggle_select("b-2")
        assert session.toggle_select("b-2") is False
        assert session.selected_ids == frozenset()


class TestDrafts:
    """Tests for optimistic drafts."""

    def test_draft_defaults(self, client):
        """Test that drafts pick up account, period, card and criticality."""

        async def scenario():
            session = client.open_session()
            await session.select("josh", NOVEMBER)
            draft = session.add_draft(name="Dinner", category="Dining")
            return session, draft

        session, draft = asyncio.run(scenario())

        assert isinstance(draft, BudgetTransaction)
        assert draft.is_new
        assert draft.account == "josh"
        assert draft.statement_period == NOVEMBER
        assert draft.payment_method == "Visa"
        assert draft.criticality == "Nonessential"
        assert draft.transaction_date is not None
        assert session.rows[0].id == draft.id

    def test_projected_draft_on_joint(self, client):
        async def scenario():
            session = client.open_session()
            await session.select("joint", NOVEMBER)
            return session.add_draft(projected=True, name="Rent")

        draft = asyncio.run(scenario())

        assert isinstance(draft, ProjectedTransaction)
        assert draft.account == "joint"
        assert draft.payment_method == "Amex"

    def test_cancel_draft(self, client, backend):
        backend.seed_budget(_row("josh", NOVEMBER, "Coffee"))

        async def scenario():
            session = client.open_session()
            await session.select("josh", NOVEMBER)
            draft = session.add_draft(name="Typo")
            return session, draft

        session, draft = asyncio.run(scenario())

        assert session.cancel_draft(draft.id)
        assert draft.id not in session.working_set
        assert not session.cancel_draft("b-1")
        assert "b-1" in session.working_set

    def test_failed_rebuild_keeps_drafts(self, client, backend, monkeypatch):
        """Test that a merge failure degrades to the local drafts."""
        backend.seed_budget(_row("josh", NOVEMBER, "Coffee"))

        def broken_rebuild(budget, projected):
            raise ValueError("merge exploded")

        async def scenario():
            session = client.open_session()
            await session.select("josh", NOVEMBER)
            draft = session.add_draft(name="Unsaved")
            monkeypatch.setattr(session.working_set, "rebuild", broken_rebuild)
            await session.refresh(force=True)
            return session, draft

        session, draft = asyncio.run(scenario())

        assert session.working_set.ids == [draft.id]
        assert session.error is None
        errors = [
            e for e in client.audit_logger.events
            if e.event_type == AuditEventType.RECONCILIATION_ERROR
        ]
        assert errors and errors[-1].error_message == "merge exploded"


class TestReads:
    """Tests for global views and payment summaries."""

    def test_global_view_filters_projected_client_side(self, client, backend):
        """Test that the unfiltered projected endpoint is narrowed to the period."""
        backend.seed_projected(
            _row("josh", NOVEMBER, "Gym"),
            _row("anna", NOVEMBER, "Yoga"),
            _row("josh", OCTOBER, "Old gym"),
        )

        async def scenario():
            session = client.open_session()
            await session.select(None, NOVEMBER)
            return session

        session = asyncio.run(scenario())

        assert sorted(row.name for row in session.rows) == ["Gym", "Yoga"]
        assert all(row.is_projected for row in session.rows)
        assert len(backend.calls_to("projected.list_all")) == 1

    def test_payment_summary_is_cached_until_invalidated(self, client, backend):
        backend.seed_budget(
            _row("josh", NOVEMBER, "Coffee", amount="-4.50", paymentMethod="Visa", category="Dining"),
            _row("anna", NOVEMBER, "Books", amount="-20", paymentMethod="Amex", category="Education"),
        )

        async def scenario():
            first = await client.payment_summary(statement_period=NOVEMBER)
            await client.payment_summary(statement_period=NOVEMBER)
            calls_cached = len(backend.calls_to("payment_summary"))

            client.invalidate("josh", NOVEMBER)
            await client.payment_summary(statement_period=NOVEMBER)
            calls_after_member = len(backend.calls_to("payment_summary"))

            client.invalidate(None, NOVEMBER)
            await client.payment_summary(statement_period=NOVEMBER)
            return first, calls_cached, calls_after_member

        first, calls_cached, calls_after_member = asyncio.run(scenario())

        by_account = {summary.account: summary for summary in first}
        assert by_account["josh"].credit_card_totals == {"Visa": Decimal("-4.50")}
        assert by_account["anna"].total == Decimal("-20")
        assert calls_cached == 1
        assert calls_after_member == 1
        assert len(backend.calls_to("payment_summary")) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
