from __future__ import annotations

import logging
from threading import RLock
from typing import Any

from blockfraud.contracts.payloads import NotificationContract
from blockfraud.domain.errors import NotFound
from blockfraud.domain.models import Notification, utc_now
from blockfraud.events.bus import EventBus


logger = logging.getLogger(__name__)

_VERDICT_TYPES = {
    "fraudulent": "danger",
    "suspicious": "warning",
    "legitimate": "success",
}


class NotificationService:
    """Projects bus events into user-facing notifications and keeps the inbox."""

    def __init__(self, bus: EventBus | None = None, max_items: int = 200) -> None:
        self._lock = RLock()
        self._items: list[Notification] = []
        self.max_items = max_items
        if bus is not None:
            bus.subscribe("*", self.handle_event)

    def handle_event(self, envelope: dict[str, Any]) -> Notification | None:
        built = self._build(envelope)
        if built is None:
            return None
        kind, title, message = built
        contract = NotificationContract(
            type=kind,
            title=title,
            message=message,
            timestamp=envelope.get("timestamp") or utc_now(),
            related_transaction_id=envelope.get("transaction_id"),
            related_dispute_id=envelope.get("dispute_id"),
        )
        notification = Notification(**contract.model_dump())
        with self._lock:
            self._items.insert(0, notification)
            del self._items[self.max_items :]
        return notification

    def _build(self, envelope: dict[str, Any]) -> tuple[str, str, str] | None:
        event_type = envelope.get("event_type")
        payload = envelope.get("payload") or {}
        tx = envelope.get("transaction_id")

        if event_type == "dispute.created":
            return "info", "Dispute filed", f"A dispute was filed against transaction {tx}."
        if event_type == "dispute.evidence_added":
            return "info", "Evidence added", f"New evidence {payload.get('content_ref')} was attached to a dispute."
        if event_type == "dispute.voting_started":
            return "info", "Voting open", f"Community voting has started on the dispute for transaction {tx}."
        if event_type == "dispute.vote_cast":
            return (
                "info",
                "Vote recorded",
                f"Votes now {payload.get('votes_for')} for, {payload.get('votes_against')} against.",
            )
        if event_type == "dispute.resolved":
            approved = payload.get("resolution") == "approved"
            return (
                "success" if approved else "warning",
                "Dispute resolved",
                f"The dispute for transaction {tx} was {payload.get('resolution')}.",
            )
        if event_type == "analysis.completed":
            verdict = str(payload.get("verdict"))
            source = " (fallback estimate)" if payload.get("source") == "fallback" else ""
            return (
                _VERDICT_TYPES.get(verdict, "info"),
                "AI analysis complete",
                f"Transaction {tx} scored {payload.get('fraud_score')}/100: {verdict}{source}.",
            )
        return None

    def list(self, unread_only: bool = False) -> list[Notification]:
        with self._lock:
            return [n for n in self._items if not (unread_only and n.read)]

    def unread_count(self) -> int:
        with self._lock:
            return sum(1 for n in self._items if not n.read)

    def mark_read(self, notification_id: str) -> Notification:
        with self._lock:
            for n in self._items:
                if n.id == notification_id:
                    n.read = True
                    return n
        raise NotFound("Notification", notification_id)

    def delete(self, notification_id: str) -> None:
        with self._lock:
            before = len(self._items)
            self._items = [n for n in self._items if n.id != notification_id]
            if len(self._items) == before:
                raise NotFound("Notification", notification_id)

    def clear(self) -> int:
        with self._lock:
            count = len(self._items)
            self._items = []
            logger.info("Cleared %d notification(s)", count)
            return count
