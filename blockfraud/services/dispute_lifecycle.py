from __future__ import annotations

import logging
from contextlib import contextmanager
from threading import Lock, RLock
from typing import Iterator, Sequence

from blockfraud.domain.errors import DuplicateVote, InvalidState, NotFound, QuorumNotMet, ValidationError
from blockfraud.domain.models import (
    Dispute,
    DisputeChange,
    DisputeEvent,
    Evidence,
    EvidenceDraft,
    Vote,
    utc_now,
)
from blockfraud.domain.state_machine import DisputePolicy, StateMachine, derive_resolution
from blockfraud.domain.states import DisputeEventType, DisputeStatus
from blockfraud.events.bus import EventBus
from blockfraud.events.contracts import build_event_envelope
from blockfraud.infra.repositories import DisputeStore
from blockfraud.services.evidence_ledger import EvidenceLedger
from blockfraud.services.transaction_service import TransactionService


logger = logging.getLogger(__name__)


class DisputeLocks:
    """One re-entrant lock per dispute; disputes never block each other.

    A lock lives only while some thread holds or waits on it.
    """

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[str, list] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, dispute_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(dispute_id)
            if entry is None:
                entry = self._locks[dispute_id] = [RLock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[dispute_id]


class DisputeLifecycle:
    """Authoritative owner of dispute state: open -> voting -> resolved.

    Every write for a dispute happens under that dispute's lock and lands in the
    store as a single commit, followed by one bus event per timeline event.
    """

    def __init__(
        self,
        store: DisputeStore,
        transactions: TransactionService,
        bus: EventBus,
        policy: DisputePolicy | None = None,
        ledger: EvidenceLedger | None = None,
    ) -> None:
        self.store = store
        self.transactions = transactions
        self.bus = bus
        self.policy = policy or DisputePolicy()
        self.ledger = ledger or EvidenceLedger(store)
        self.sm = StateMachine()
        self.locks = DisputeLocks()

    def create_dispute(
        self,
        transaction_id: str,
        description: str,
        initial_evidence: Sequence[EvidenceDraft] = (),
        actor_id: str | None = None,
    ) -> Dispute:
        description = (description or "").strip()
        if not description:
            raise ValidationError("Dispute description is required")
        self.transactions.get_transaction(transaction_id)

        dispute = Dispute(transaction_id=transaction_id, description=description)
        evidence = [self.ledger.build(dispute.id, draft) for draft in initial_evidence]
        events = [
            DisputeEvent(
                dispute_id=dispute.id,
                event_type=DisputeEventType.CREATED,
                payload={
                    "transaction_id": transaction_id,
                    "description": description,
                    "evidence_count": len(evidence),
                },
            )
        ]
        events.extend(self.ledger.added_event(e) for e in evidence)

        with self.locks.hold(dispute.id):
            row = self.store.create_dispute(
                dispute.to_row(),
                DisputeChange(dispute_id=dispute.id, evidence=evidence, events=events),
            )
            created = Dispute.from_row(row)
            logger.info("Dispute %s opened against transaction %s", created.id, transaction_id)
            self._publish(created, events, actor_id)
            if self._should_auto_start(created):
                return self._start_voting_locked(created, actor_id)
            return created

    def add_evidence(self, dispute_id: str, draft: EvidenceDraft, actor_id: str | None = None) -> Evidence:
        with self.locks.hold(dispute_id):
            evidence = self.ledger.append(dispute_id, draft)
            updated = self.get_dispute(dispute_id)
            added = [e for e in updated.timeline if e.payload.get("evidence_id") == evidence.id]
            self._publish(updated, added, actor_id)
            logger.info("Evidence %s added to dispute %s", evidence.id, dispute_id)

            if self._should_auto_start(updated):
                self._start_voting_locked(updated, actor_id)
            return evidence

    def start_voting(self, dispute_id: str, actor_id: str | None = None) -> Dispute:
        with self.locks.hold(dispute_id):
            return self._start_voting_locked(self.get_dispute(dispute_id), actor_id)

    def cast_vote(self, dispute_id: str, voter_id: str, support: bool) -> Dispute:
        voter_id = (voter_id or "").strip()
        if not voter_id:
            raise ValidationError("voter_id is required")

        with self.locks.hold(dispute_id):
            dispute = self.get_dispute(dispute_id)
            if dispute.status != DisputeStatus.VOTING:
                raise InvalidState(f"Dispute {dispute_id} is {dispute.status.value}; voting is not open")
            if dispute.has_voted(voter_id):
                logger.info("Rejected duplicate vote by %s on dispute %s", voter_id, dispute_id)
                raise DuplicateVote(dispute_id, voter_id)

            votes_for = dispute.votes_for + (1 if support else 0)
            votes_against = dispute.votes_against + (0 if support else 1)
            event = DisputeEvent(
                dispute_id=dispute_id,
                event_type=DisputeEventType.VOTE_CAST,
                payload={
                    "voter_id": voter_id,
                    "support": bool(support),
                    "votes_for": votes_for,
                    "votes_against": votes_against,
                },
            )
            row = self.store.commit(
                DisputeChange(
                    dispute_id=dispute_id,
                    updates={"votes_for": votes_for, "votes_against": votes_against},
                    events=[event],
                    votes=[Vote(dispute_id=dispute_id, voter_id=voter_id, support=bool(support))],
                )
            )
            updated = Dispute.from_row(row)
            self._publish(updated, [event], voter_id)

            if self.policy.auto_resolve and self.policy.quorum_met(votes_for, votes_against):
                return self._resolve_locked(updated, force=False, actor_id=None)
            return updated

    def resolve(self, dispute_id: str, force: bool = False, actor_id: str | None = None) -> Dispute:
        """Close voting and record the resolution.

        ``force`` is the explicit close action: it skips the quorum check but
        never the state check.
        """
        with self.locks.hold(dispute_id):
            return self._resolve_locked(self.get_dispute(dispute_id), force=force, actor_id=actor_id)

    def get_dispute(self, dispute_id: str) -> Dispute:
        row = self.store.get_dispute(dispute_id)
        if not row:
            raise NotFound("Dispute", dispute_id)
        return Dispute.from_row(row)

    def list_disputes(
        self,
        transaction_id: str | None = None,
        status: DisputeStatus | str | None = None,
        limit: int = 500,
    ) -> list[Dispute]:
        status_value = DisputeStatus(status).value if status else None
        rows = self.store.list_disputes(transaction_id=transaction_id, status=status_value, limit=limit)
        return [Dispute.from_row(r) for r in rows]

    def list_evidence(self, dispute_id: str) -> list[Evidence]:
        return self.ledger.list(dispute_id)

    def timeline(self, dispute_id: str) -> list[DisputeEvent]:
        return self.get_dispute(dispute_id).timeline

    def _should_auto_start(self, dispute: Dispute) -> bool:
        return (
            self.policy.auto_start_voting
            and dispute.status == DisputeStatus.OPEN
            and len(dispute.evidence) >= self.policy.min_evidence
        )

    def _start_voting_locked(self, dispute: Dispute, actor_id: str | None) -> Dispute:
        self.sm.transition(dispute.status, DisputeStatus.VOTING)
        if len(dispute.evidence) < self.policy.min_evidence:
            raise InvalidState(
                f"Dispute {dispute.id} has {len(dispute.evidence)} evidence item(s), "
                f"{self.policy.min_evidence} required to start voting"
            )

        event = DisputeEvent(
            dispute_id=dispute.id,
            event_type=DisputeEventType.VOTING_STARTED,
            payload={"evidence_count": len(dispute.evidence)},
        )
        row = self.store.commit(
            DisputeChange(
                dispute_id=dispute.id,
                updates={"status": DisputeStatus.VOTING.value, "votes_for": 0, "votes_against": 0},
                events=[event],
            )
        )
        updated = Dispute.from_row(row)
        logger.info("Voting started on dispute %s", dispute.id)
        self._publish(updated, [event], actor_id)
        return updated

    def _resolve_locked(self, dispute: Dispute, force: bool, actor_id: str | None) -> Dispute:
        if dispute.status == DisputeStatus.RESOLVED:
            raise InvalidState(f"Dispute {dispute.id} is already resolved")
        self.sm.transition(dispute.status, DisputeStatus.RESOLVED)
        if not force and not self.policy.quorum_met(dispute.votes_for, dispute.votes_against):
            raise QuorumNotMet(dispute.id, dispute.total_votes, self.policy.quorum)

        resolution = derive_resolution(dispute.votes_for, dispute.votes_against)
        event = DisputeEvent(
            dispute_id=dispute.id,
            event_type=DisputeEventType.RESOLVED,
            payload={
                "resolution": resolution.value,
                "votes_for": dispute.votes_for,
                "votes_against": dispute.votes_against,
                "forced": force,
            },
        )
        row = self.store.commit(
            DisputeChange(
                dispute_id=dispute.id,
                updates={
                    "status": DisputeStatus.RESOLVED.value,
                    "resolution": resolution.value,
                    "resolved_at": utc_now(),
                },
                events=[event],
            )
        )
        updated = Dispute.from_row(row)
        logger.info(
            "Dispute %s resolved as %s (%d for, %d against)",
            dispute.id,
            resolution.value,
            dispute.votes_for,
            dispute.votes_against,
        )
        self._publish(updated, [event], actor_id)
        return updated

    def _publish(self, dispute: Dispute, events: Sequence[DisputeEvent], actor_id: str | None) -> None:
        for event in events:
            envelope = build_event_envelope(
                event_type=f"dispute.{event.event_type.value}",
                payload=event.payload,
                transaction_id=dispute.transaction_id,
                dispute_id=dispute.id,
                actor_id=actor_id,
                timestamp=event.timestamp,
            )
            try:
                self.bus.publish(envelope["event_type"], envelope)
            except Exception:
                # State is already committed; a failing subscriber must not undo it.
                logger.exception("Event handler failed for %s", envelope["event_type"])
