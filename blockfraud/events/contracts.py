from __future__ import annotations

from typing import Any

from blockfraud.domain.models import utc_now

DISPUTE_EVENTS = {
    "dispute.created",
    "dispute.evidence_added",
    "dispute.voting_started",
    "dispute.vote_cast",
    "dispute.resolved",
}

ANALYSIS_EVENTS = {
    "analysis.completed",
    "analysis.feedback_received",
}

CORE_EVENTS = DISPUTE_EVENTS | ANALYSIS_EVENTS


def is_valid_event_type(event_type: str) -> bool:
    return event_type in CORE_EVENTS


EVENT_REQUIRED_KEYS: dict[str, set[str]] = {
    "dispute.created": {"description", "evidence_count"},
    "dispute.evidence_added": {"evidence_id", "content_ref"},
    "dispute.voting_started": {"evidence_count"},
    "dispute.vote_cast": {"voter_id", "support", "votes_for", "votes_against"},
    "dispute.resolved": {"resolution", "votes_for", "votes_against"},
    "analysis.completed": {"fraud_score", "verdict", "confidence", "source"},
    "analysis.feedback_received": {"is_correct"},
}


def validate_event_payload(event_type: str, payload: dict[str, Any]) -> None:
    if not is_valid_event_type(event_type):
        raise ValueError(f"Unsupported event type: {event_type}")

    required = EVENT_REQUIRED_KEYS.get(event_type)
    if not required:
        return

    missing = sorted(k for k in required if k not in payload)
    if missing:
        raise ValueError(f"Event payload missing required keys for {event_type}: {missing}")


def build_event_envelope(
    *,
    event_type: str,
    payload: dict[str, Any],
    transaction_id: str | None,
    dispute_id: str | None = None,
    actor_id: str | None = None,
    timestamp: str | None = None,
) -> dict[str, Any]:
    validate_event_payload(event_type, payload)
    return {
        "event_type": event_type,
        "transaction_id": transaction_id,
        "dispute_id": dispute_id,
        "actor_id": actor_id,
        "payload": payload,
        "timestamp": timestamp or utc_now(),
    }
