"""Shared fixtures: household settings, an in-memory backend and a client over it."""

import pytest

from ledgersync.config import LedgerSettings
from ledgersync.orchestrator import create_ledger_client
from ledgersync.services.collections import InMemoryLedgerBackend


@pytest.fixture
def settings() -> LedgerSettings:
    return LedgerSettings(
        accounts=["josh", "anna"],
        categories=[],
        criticality_options=["Essential", "Nonessential"],
        payment_methods=["Visa", "Amex"],
        default_payment_method_map={"josh": "Visa", "anna": "Amex", "joint": "Amex"},
        default_criticality_map={"Housing": "Essential", "Dining": "Nonessential"},
        user_profiles={},
    )


@pytest.fixture
def backend() -> InMemoryLedgerBackend:
    # Joint rows are reassigned to josh, like the server's split rules do
    return InMemoryLedgerBackend(joint_router=lambda row: "josh")


@pytest.fixture
def client(backend, settings):
    ledger = create_ledger_client(backend=backend, settings=settings)
    yield ledger
    ledger.close()
