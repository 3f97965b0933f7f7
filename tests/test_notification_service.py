"""Tests for the notification inbox fed from bus events"""

import asyncio
import random

import pytest

from blockfraud.domain.errors import NotFound
from blockfraud.events.contracts import build_event_envelope
from blockfraud.services.analysis_service import FraudAnalysisService
from blockfraud.services.notification_service import NotificationService


def _resolved(resolution):
    return build_event_envelope(
        event_type="dispute.resolved",
        payload={"resolution": resolution, "votes_for": 1, "votes_against": 0},
        transaction_id="1",
        dispute_id="d-1",
    )


def test_dispute_flow_produces_notifications(bus, lifecycle):
    inbox = NotificationService(bus)
    dispute = lifecycle.create_dispute("1", "Funds never arrived")
    lifecycle.start_voting(dispute.id)
    lifecycle.cast_vote(dispute.id, "alice", True)
    lifecycle.resolve(dispute.id)

    titles = [n.title for n in inbox.list()]
    assert titles == ["Dispute resolved", "Vote recorded", "Voting open", "Dispute filed"]
    assert inbox.list()[0].type == "success"
    assert all(n.related_dispute_id == dispute.id for n in inbox.list())


def test_rejected_resolution_is_a_warning():
    note = NotificationService().handle_event(_resolved("rejected"))
    assert note.type == "warning"
    assert note.related_transaction_id == "1"


def test_fallback_analysis_is_labelled(bus, transactions):
    inbox = NotificationService(bus)
    service = FraudAnalysisService(transactions, bus, rng=random.Random(3))
    asyncio.run(service.analyze_by_id("3"))

    note = inbox.list()[0]
    assert note.type == "danger"
    assert "fallback estimate" in note.message


def test_unmapped_events_are_ignored():
    envelope = build_event_envelope(
        event_type="analysis.feedback_received",
        payload={"is_correct": True},
        transaction_id="1",
    )
    inbox = NotificationService()
    assert inbox.handle_event(envelope) is None
    assert inbox.list() == []


def test_mark_read_and_unread_count():
    inbox = NotificationService()
    first = inbox.handle_event(_resolved("approved"))
    inbox.handle_event(_resolved("rejected"))
    assert inbox.unread_count() == 2

    inbox.mark_read(first.id)
    assert inbox.unread_count() == 1
    assert first.id not in [n.id for n in inbox.list(unread_only=True)]
    with pytest.raises(NotFound):
        inbox.mark_read("nope")


def test_delete_and_clear():
    inbox = NotificationService()
    note = inbox.handle_event(_resolved("approved"))
    inbox.handle_event(_resolved("rejected"))

    inbox.delete(note.id)
    assert len(inbox.list()) == 1
    with pytest.raises(NotFound):
        inbox.delete(note.id)
    assert inbox.clear() == 1
    assert inbox.list() == []


def test_inbox_is_capped():
    inbox = NotificationService(max_items=3)
    for _ in range(5):
        inbox.handle_event(_resolved("approved"))
    assert len(inbox.list()) == 3
