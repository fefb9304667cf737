"""
Tests for the mutation coordinator

Every test drives a real session against the in-memory backend with
asyncio.run; failures are injected per operation.
"""

import asyncio
from decimal import Decimal

import pytest

from ledgersync.models import RowStatus
from ledgersync.services.collections import RemoteError, UploadError


PERIOD = "NOVEMBER2025"


def _seed_budget(backend, account="josh", **fields):
    row = {
        "account": account,
        "statementPeriod": PERIOD,
        "name": "Coffee",
        "amount": "-4.50",
        "transactionDate": "2025-11-03T08:00:00",
    }
    row.update(fields)
    return backend.seed_budget(row)[0]


def _seed_projected(backend, account="josh", **fields):
    row = {
        "account": account,
        "statementPeriod": PERIOD,
        "name": "Gym",
        "amount": "-30",
        "transactionDate": "2025-11-20T08:00:00",
    }
    row.update(fields)
    return backend.seed_projected(row)[0]


class TestCreate:
    """Tests for creating optimistic rows."""

    def test_optimistic_id_replacement(self, client):
        """Test that the temp row is replaced by exactly one persisted row."""

        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            draft = session.add_draft(name="Groceries", amount=Decimal("-82.10"))
            result = await session.save(draft.id)
            return session, draft, result

        session, draft, result = asyncio.run(scenario())

        assert result.success
        assert result.persisted_id == "b-1"
        ids = [row.id for row in session.rows]
        assert ids.count("b-1") == 1
        assert draft.id not in ids
        assert session.working_set.find("b-1").is_projected is False
        assert session.row_state("b-1").status == RowStatus.PERSISTED

    def test_joint_projected_create_moved_by_server(self, client, backend):
        """Test a joint projected create that the server assigns to josh."""
        backend.projected.store.next_id = 55
        reports = []
        client.fan_out.subscribe(reports.append)

        async def scenario():
            joint_view = client.open_session()
            josh_view = client.open_session()
            await joint_view.select("joint", PERIOD)
            await josh_view.select("josh", PERIOD)

            draft = joint_view.add_draft(
                projected=True,
                name="Rent",
                amount=Decimal("-1200"),
                category="Housing",
            )
            result = await joint_view.save(draft.id)
            return joint_view, josh_view, draft, result

        joint_view, josh_view, draft, result = asyncio.run(scenario())

        assert result.success
        created = joint_view.working_set.find("p-55")
        assert created is not None
        assert created.is_projected
        assert created.account == "josh"
        assert draft.id not in [row.id for row in joint_view.rows]

        labels = set().union(*(report.labels for report in reports))
        assert {"josh-projected", "joint-projected"} <= labels
        assert josh_view.is_stale
        assert joint_view.is_stale

    def test_payload_never_contains_client_fields(self, client, backend):
        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            draft = session.add_draft(projected=True, name="Rent", amount=Decimal("-1200"))
            await session.save(draft.id)

        asyncio.run(scenario())

        payload = backend.calls_to("projected.create")[0]["payload"]
        assert "id" not in payload
        assert "isNew" not in payload
        assert "kind" not in payload
        assert payload["statementPeriod"] == PERIOD
        assert payload["account"] == "josh"

    def test_remote_failure_preserves_draft(self, client, backend):
        """Test that a failed create keeps the draft with its error."""
        backend.fail("budget.create", RemoteError("Server unavailable"))

        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            draft = session.add_draft(name="Groceries", amount=Decimal("-10"))
            result = await session.save(draft.id)
            return session, draft, result

        session, draft, result = asyncio.run(scenario())

        assert not result.success
        assert draft.id in [row.id for row in session.rows]
        assert session.save_errors[draft.id] == "Server unavailable"
        assert session.row_state(draft.id).status == RowStatus.LOCAL_DRAFT
        assert not session.saving_ids

    def test_validation_failure_never_reaches_network(self, client, backend):
        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            draft = session.add_draft(name="", amount=None)
            result = await session.save(draft.id)
            return session, draft, result

        session, draft, result = asyncio.run(scenario())

        assert not result.success
        assert result.validation is not None
        assert backend.calls_to("budget.create") == []
        assert "Name is required" in session.save_errors[draft.id]
        assert draft.id in [row.id for row in session.rows]

    def test_retry_after_failure(self, client, backend):
        """Test that a failed draft can be saved again once the server recovers."""
        backend.fail("budget.create")

        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            draft = session.add_draft(name="Groceries", amount=Decimal("-10"))
            first = await session.save(draft.id)
            backend.recover()
            second = await session.save(draft.id)
            return session, first, second

        session, first, second = asyncio.run(scenario())

        assert not first.success
        assert second.success
        assert session.save_errors == {}

    def test_unreadable_create_response_drops_draft(self, client, backend):
        async def fake_create(payload):
            return {"ok": True}

        backend.budget.create = fake_create

        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            draft = session.add_draft(name="Groceries", amount=Decimal("-10"))
            result = await session.save(draft.id)
            return session, draft, result

        session, draft, result = asyncio.run(scenario())

        assert result.success
        assert result.transaction is None
        assert draft.id not in [row.id for row in session.rows]

    def test_failure_after_scope_change_leaves_no_error(self, client, backend):
        """Test that a create failing for an abandoned view records nothing."""

        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            draft = session.add_draft(name="Groceries", amount=Decimal("-10"))

            gate = backend.hold("budget.create")
            pending = asyncio.create_task(session.save(draft.id))
            await asyncio.sleep(0)
            backend.fail("budget.create", RemoteError("Server unavailable"))
            await session.select("josh", "OCTOBER2025")

            gate.set()
            result = await pending
            return session, result

        session, result = asyncio.run(scenario())

        assert not result.success
        assert session.save_errors == {}
        assert session.row_states.errors == {}


class TestUpdate:
    """Tests for updating persisted rows."""

    def test_update_sends_patch_to_owning_collection(self, client, backend):
        _seed_projected(backend)

        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            result = await session.update("p-1", {"name": "Climbing gym", "isProjected": False})
            return session, result

        session, result = asyncio.run(scenario())

        assert result.success
        assert backend.calls_to("budget.update") == []
        call = backend.calls_to("projected.update")[0]
        assert call["id"] == "p-1"
        assert "id" not in call["payload"]
        assert session.working_set.find("p-1").name == "Climbing gym"
        assert session.working_set.find("p-1").is_projected

    def test_update_failure_refetches(self, client, backend):
        """Test that a failed update is corrected from the server."""
        _seed_budget(backend)
        backend.fail("budget.update", RemoteError("Conflict"))

        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            result = await session.update("b-1", {"name": "Changed"})
            return session, result

        session, result = asyncio.run(scenario())

        assert not result.success
        assert session.save_errors["b-1"] == "Conflict"
        assert session.working_set.find("b-1").name == "Coffee"
        assert len(backend.calls_to("budget.list")) == 2

    def test_save_routes_persisted_rows_to_update(self, client, backend):
        _seed_budget(backend)

        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            return await session.save("b-1", {"memo": "with a friend"})

        result = asyncio.run(scenario())

        assert result.success
        assert backend.calls_to("budget.create") == []
        assert backend.budget.store.rows["b-1"]["memo"] == "with a friend"

    def test_failed_refetch_still_drops_the_patch(self, client, backend):
        """Test that the confirmed row comes back when the corrective read fails too."""
        _seed_budget(backend)

        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            backend.fail("budget.update", RemoteError("Connection reset"))
            backend.fail("budget.list", RemoteError("Connection reset"))
            result = await session.update("b-1", {"name": "Changed"})
            return session, result

        session, result = asyncio.run(scenario())

        assert not result.success
        assert session.working_set.find("b-1").name == "Coffee"
        assert session.save_errors["b-1"] == "Connection reset"
        assert session.error == "Connection reset"

    def test_failure_after_scope_change_skips_refetch(self, client, backend):
        """Test that an update failing for an abandoned view neither records nor refetches."""
        _seed_budget(backend)

        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)

            gate = backend.hold("budget.update")
            pending = asyncio.create_task(session.update("b-1", {"name": "Changed"}))
            await asyncio.sleep(0)
            backend.fail("budget.update", RemoteError("Conflict"))
            await session.select("josh", "OCTOBER2025")

            gate.set()
            result = await pending
            return session, result

        session, result = asyncio.run(scenario())

        assert not result.success
        assert session.save_errors == {}
        assert len(backend.calls_to("budget.list")) == 2


class TestDelete:
    """Tests for best-effort deletes."""

    def test_local_only_delete_makes_no_network_call(self, client, backend):
        """Test deleting a selected draft."""

        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            draft = session.add_draft(name="Typo")
            session.toggle_select(draft.id)
            calls_before = backend.network_call_count
            result = await session.delete()
            return session, draft, result, calls_before

        session, draft, result, calls_before = asyncio.run(scenario())

        assert backend.network_call_count == calls_before
        assert result.removed_local == [draft.id]
        assert draft.id not in [row.id for row in session.rows]
        assert session.selected_ids == frozenset()

    def test_deleting_a_draft_twice_is_harmless(self, client, backend):
        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            draft = session.add_draft(name="Typo")
            await session.delete([draft.id])
            return await session.delete([draft.id])

        result = asyncio.run(scenario())
        assert result.success
        assert result.removed_local == []

    def test_partial_failure_does_not_abort_others(self, client, backend):
        """Test that one failed delete leaves the rest deleted."""
        _seed_budget(backend)
        _seed_budget(backend, name="Lunch")
        _seed_projected(backend)
        backend.fail("budget.delete", RemoteError("Locked"), ids={"b-2"})

        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            result = await session.delete(["b-1", "b-2", "p-1"])
            return session, result

        session, result = asyncio.run(scenario())

        assert sorted(result.deleted) == ["b-1", "p-1"]
        assert result.failed == {"b-2": "Locked"}
        assert [row.id for row in session.rows] == ["b-2"]
        assert [c["id"] for c in backend.calls_to("projected.delete")] == ["p-1"]
        assert sorted(c["id"] for c in backend.calls_to("budget.delete")) == ["b-1", "b-2"]


class TestUpload:
    """Tests for bulk import."""

    CSV = (
        "name,amount,category,account,transactionDate\n"
        "Coffee,-4.50,Dining,josh,2025-11-01T08:00:00\n"
        "Books,-20,Education,josh,2025-11-02T08:00:00\n"
    )

    def test_upload_refreshes_view(self, client, backend):
        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            result = await session.upload(self.CSV.encode())
            return session, result

        session, result = asyncio.run(scenario())

        assert result.imported_count == 2
        assert result.statement_period == PERIOD
        assert sorted(row.name for row in session.rows) == ["Books", "Coffee"]

    def test_upload_failure_is_atomic(self, client, backend):
        """Test that a failed import raises once and changes nothing."""
        _seed_budget(backend)

        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            before = session.rows
            with pytest.raises(UploadError):
                await session.upload(b"no,header,here\n1,2,3\n")
            return session, before

        session, before = asyncio.run(scenario())

        assert session.rows == before
        assert len(backend.budget.store.rows) == 1

    def test_transport_errors_become_upload_errors(self, client, backend):
        backend.fail("budget.upload", RuntimeError("disk full"))

        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            await session.upload(self.CSV)

        with pytest.raises(UploadError) as exc_info:
            asyncio.run(scenario())
        assert "disk full" in str(exc_info.value)
        assert exc_info.value.statement_period == PERIOD

    def test_unreadable_import_answer_still_refreshes(self, client, backend):
        """Test that a committed import shows up even when its answer is malformed."""

        async def committed_upload(file, statement_period):
            backend.seed_budget({
                "account": "josh",
                "statementPeriod": statement_period,
                "name": "Imported",
                "amount": "-9",
            })
            return {"statementPeriod": None, "importedCount": 1}

        backend.budget.upload = committed_upload

        async def scenario():
            session = client.open_session()
            await session.select("josh", PERIOD)
            result = await session.upload(b"x")
            return session, result

        session, result = asyncio.run(scenario())

        assert result.statement_period == PERIOD
        assert result.imported_count == 1
        assert [row.name for row in session.rows] == ["Imported"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
