from __future__ import annotations

from blockfraud.domain.errors import InvalidState, NotFound, ValidationError
from blockfraud.domain.models import DisputeChange, DisputeEvent, Evidence, EvidenceDraft
from blockfraud.domain.states import EVIDENCE_STATES, DisputeEventType, DisputeStatus
from blockfraud.infra.evidence_storage import ContentRefValidator, is_content_address
from blockfraud.infra.repositories import DisputeStore


class EvidenceLedger:
    """Append-only evidence per dispute.

    Only references are stored; the content lives in external content-addressed
    storage. Every append writes the evidence row and its ``evidence_added``
    timeline event in one commit. Appends are refused once the dispute is
    resolved. Callers that race other writers must hold the dispute's lock.
    """

    def __init__(self, store: DisputeStore, validator: ContentRefValidator = is_content_address) -> None:
        self.store = store
        self.validator = validator

    def build(self, dispute_id: str, draft: EvidenceDraft) -> Evidence:
        ref = (draft.content_ref or "").strip()
        if not ref:
            raise ValidationError("Evidence has no content reference yet; upload it first")
        if not self.validator(ref):
            raise ValidationError(f"Malformed content reference: {ref}")
        description = (draft.description or "").strip()
        if not description:
            raise ValidationError("Evidence description is required")
        return Evidence(
            dispute_id=dispute_id,
            content_ref=ref,
            description=description,
            file_type=draft.file_type,
        )

    @staticmethod
    def added_event(evidence: Evidence) -> DisputeEvent:
        return DisputeEvent(
            dispute_id=evidence.dispute_id,
            event_type=DisputeEventType.EVIDENCE_ADDED,
            payload={"evidence_id": evidence.id, "content_ref": evidence.content_ref},
        )

    def ensure_open(self, dispute_id: str) -> None:
        row = self.store.get_dispute(dispute_id)
        if row is None:
            raise NotFound("Dispute", dispute_id)
        status = DisputeStatus(row.get("status") or DisputeStatus.OPEN.value)
        if status not in EVIDENCE_STATES:
            raise InvalidState(f"Dispute {dispute_id} is {status.value}; evidence is closed")

    def append(self, dispute_id: str, draft: EvidenceDraft) -> Evidence:
        self.ensure_open(dispute_id)
        evidence = self.build(dispute_id, draft)
        self.store.commit(
            DisputeChange(dispute_id=dispute_id, evidence=[evidence], events=[self.added_event(evidence)])
        )
        return evidence

    def list(self, dispute_id: str) -> list[Evidence]:
        if self.store.get_dispute(dispute_id) is None:
            raise NotFound("Dispute", dispute_id)
        return [Evidence.from_row(r) for r in self.store.list_evidence(dispute_id)]
