"""Tests for the repository layer"""

from types import SimpleNamespace

import pytest

from blockfraud.domain.models import Dispute, DisputeChange, DisputeEvent, Evidence, Vote
from blockfraud.domain.states import DisputeEventType, DisputeStatus
from blockfraud.infra.repositories import (
    InMemoryDisputeStore,
    RepositoryError,
    SupabaseDisputeStore,
    _extract_missing_column_name,
)


class FakeTable:
    """Minimal stand-in for a supabase-py query builder."""

    def __init__(self, client, name):
        self.client = client
        self.name = name
        self.mode = "select"
        self.payload = None
        self.filters = {}

    def insert(self, payload):
        self.mode, self.payload = "insert", payload
        return self

    def update(self, payload):
        self.mode, self.payload = "update", payload
        return self

    def delete(self):
        self.mode = "delete"
        return self

    def select(self, *_args, **_kwargs):
        self.mode = "select"
        return self

    def eq(self, key, value):
        self.filters[key] = value
        return self

    def order(self, *_args, **_kwargs):
        return self

    def limit(self, _count):
        return self

    def _matching(self):
        rows = self.client.rows.setdefault(self.name, [])
        return [r for r in rows if all(r.get(k) == v for k, v in self.filters.items())]

    def execute(self):
        rows = self.client.rows.setdefault(self.name, [])
        if self.client.fail_on == (self.mode, self.name):
            raise Exception("connection reset by peer")
        if self.mode == "insert":
            missing = self.client.missing.get(self.name, set()) & set(self.payload)
            if missing:
                col = sorted(missing)[0]
                raise Exception(f"Could not find the '{col}' column of '{self.name}' in the schema cache")
            rows.append(dict(self.payload))
            self.client.inserted.append((self.name, dict(self.payload)))
            return SimpleNamespace(data=[dict(self.payload)])
        matched = self._matching()
        if self.mode == "update":
            for row in matched:
                row.update(self.payload)
        elif self.mode == "delete":
            self.client.rows[self.name] = [r for r in rows if r not in matched]
        return SimpleNamespace(data=[dict(r) for r in matched])


class FakeClient:
    def __init__(self, missing=None, fail_on=None):
        self.missing = missing or {}
        self.fail_on = fail_on
        self.inserted = []
        self.rows = {}

    def table(self, name):
        return FakeTable(self, name)


@pytest.mark.parametrize(
    "message,column",
    [
        ("Could not find the 'block_hash' column of 'transactions' in the schema cache", "block_hash"),
        ("column 'location' does not exist", "location"),
        ("permission denied", None),
    ],
)
def test_extract_missing_column_name(message, column):
    assert _extract_missing_column_name(message) == column


def test_insert_drops_unknown_columns():
    client = FakeClient(missing={"dispute_events": {"payload"}})
    store = SupabaseDisputeStore(client)
    row = store._insert_one("dispute_events", {"id": "e1", "payload": {"a": 1}, "event_type": "created"})
    assert row == {"id": "e1", "event_type": "created"}


def test_insert_error_becomes_repository_error():
    store = SupabaseDisputeStore(FakeClient(fail_on=("insert", "dispute_votes")))
    with pytest.raises(RepositoryError):
        store._insert_one("dispute_votes", {"id": "v1", "voter_id": "alice"})


def test_duplicate_vote_row_stops_the_commit():
    """Test that a rejected vote insert writes no timeline event"""
    client = FakeClient(fail_on=("insert", "dispute_votes"))
    store = SupabaseDisputeStore(client)
    change = DisputeChange(
        dispute_id="d-1",
        votes=[Vote(dispute_id="d-1", voter_id="alice", support=True)],
        events=[DisputeEvent(dispute_id="d-1", event_type=DisputeEventType.VOTE_CAST)],
    )
    with pytest.raises(RepositoryError):
        store._write_children(change)
    assert client.inserted == []


def test_memory_store_commit_unknown_dispute():
    with pytest.raises(RepositoryError):
        InMemoryDisputeStore().commit(DisputeChange(dispute_id="missing"))


def test_memory_store_returns_copies():
    store = InMemoryDisputeStore()
    store.create_dispute({"id": "d-1", "transaction_id": "1", "status": "open"}, DisputeChange(dispute_id="d-1"))
    snapshot = store.get_dispute("d-1")
    snapshot["status"] = "resolved"
    snapshot["evidence"].append({"id": "x"})
    assert store.get_dispute("d-1")["status"] == "open"
    assert store.get_dispute("d-1")["evidence"] == []


def _seeded_store(**client_kwargs):
    client = FakeClient(**client_kwargs)
    store = SupabaseDisputeStore(client)
    dispute = Dispute(transaction_id="1", description="Funds never arrived", status=DisputeStatus.VOTING)
    client.rows["disputes"] = [dispute.to_row()]
    return client, store, dispute


def _vote_change(dispute_id, voter_id="alice"):
    return DisputeChange(
        dispute_id=dispute_id,
        updates={"votes_for": 1},
        votes=[Vote(dispute_id=dispute_id, voter_id=voter_id, support=True)],
        events=[DisputeEvent(dispute_id=dispute_id, event_type=DisputeEventType.VOTE_CAST)],
    )


def test_commit_removes_children_when_update_fails():
    """Test that a failed tally update leaves no orphaned vote behind"""
    client, store, dispute = _seeded_store(fail_on=("update", "disputes"))

    with pytest.raises(RepositoryError):
        store.commit(_vote_change(dispute.id))

    assert client.rows["dispute_votes"] == []
    assert client.rows["dispute_events"] == []
    assert client.rows["disputes"][0]["votes_for"] == 0

    client.fail_on = None
    aggregate = store.commit(_vote_change(dispute.id))
    assert aggregate["votes_for"] == 1
    assert [v["voter_id"] for v in aggregate["votes"]] == ["alice"]


def test_commit_removes_earlier_children_when_a_later_insert_fails():
    client, store, dispute = _seeded_store(fail_on=("insert", "dispute_events"))
    change = _vote_change(dispute.id)
    change.evidence = [Evidence(dispute_id=dispute.id, content_ref="Qm", description="Receipt")]

    with pytest.raises(RepositoryError):
        store.commit(change)

    assert client.rows["dispute_votes"] == []
    assert client.rows["dispute_evidence"] == []


def test_create_dispute_removed_when_children_fail():
    client = FakeClient(fail_on=("insert", "dispute_events"))
    store = SupabaseDisputeStore(client)
    dispute = Dispute(transaction_id="1", description="Funds never arrived")
    change = DisputeChange(
        dispute_id=dispute.id,
        events=[DisputeEvent(dispute_id=dispute.id, event_type=DisputeEventType.CREATED)],
    )

    with pytest.raises(RepositoryError):
        store.create_dispute(dispute.to_row(), change)
    assert client.rows["disputes"] == []


def test_read_failures_become_repository_errors():
    store = SupabaseDisputeStore(FakeClient(fail_on=("select", "disputes")))
    with pytest.raises(RepositoryError):
        store.get_dispute("d-1")
    with pytest.raises(RepositoryError):
        store.list_disputes()
