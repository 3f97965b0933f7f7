"""Shared fixtures: in-memory stores seeded with the demo ledger."""

import random

import pytest

from blockfraud.domain.models import EvidenceDraft
from blockfraud.domain.state_machine import DisputePolicy
from blockfraud.events.bus import InMemoryEventBus
from blockfraud.infra.demo_data import demo_transactions
from blockfraud.infra.evidence_storage import content_address
from blockfraud.infra.repositories import InMemoryDisputeStore, InMemoryTransactionRepository
from blockfraud.services.dispute_lifecycle import DisputeLifecycle
from blockfraud.services.transaction_service import TransactionService


def make_ref(seed: str) -> str:
    return content_address(seed.encode("utf-8"))


def make_draft(seed: str = "receipt", description: str = "Bank receipt") -> EvidenceDraft:
    return EvidenceDraft(content_ref=make_ref(seed), description=description, file_type="application/pdf")


@pytest.fixture
def tx_repo():
    return InMemoryTransactionRepository(demo_transactions())


@pytest.fixture
def transactions(tx_repo):
    return TransactionService(tx_repo)


@pytest.fixture
def bus():
    return InMemoryEventBus()


@pytest.fixture
def published(bus):
    """Every envelope published on the bus, in order."""
    seen = []
    bus.subscribe("*", seen.append)
    return seen


@pytest.fixture
def store():
    return InMemoryDisputeStore()


@pytest.fixture
def make_lifecycle(store, transactions, bus):
    def _make(**policy):
        return DisputeLifecycle(store, transactions, bus, policy=DisputePolicy(**policy))

    return _make


@pytest.fixture
def lifecycle(make_lifecycle):
    return make_lifecycle()


@pytest.fixture
def rng():
    return random.Random(1234)
