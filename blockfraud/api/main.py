from __future__ import annotations

import base64
import binascii
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from blockfraud.config import settings
from blockfraud.contracts.payloads import RiskLevelLiteral, VerdictLiteral
from blockfraud.domain.errors import (
    DuplicateVote,
    InvalidState,
    NotFound,
    QuorumNotMet,
    ValidationError,
)
from blockfraud.domain.models import EvidenceDraft, TransactionFilter
from blockfraud.infra.evidence_storage import EvidenceStorageError, gateway_url
from blockfraud.infra.repositories import RepositoryError
from blockfraud.logging_conf import init_logging
from blockfraud.services.container import Services, build_services


class TransactionRequest(BaseModel):
    sender: str = Field(min_length=1)
    receiver: str = Field(min_length=1)
    amount: float = Field(ge=0)
    currency: str = "ETH"
    status: str = "pending"
    risk_level: RiskLevelLiteral = "low"
    block_confirmations: int = Field(default=0, ge=0)
    block_hash: str | None = None
    location: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class BatchAnalysisRequest(BaseModel):
    transaction_ids: list[str] = Field(min_length=1)


class FeedbackRequest(BaseModel):
    is_correct: bool
    actual_verdict: VerdictLiteral | None = None


class EvidenceRequest(BaseModel):
    description: str = Field(min_length=1)
    content_ref: str | None = None
    content_base64: str | None = None
    filename: str = "evidence"
    file_type: str | None = None


class DisputeRequest(BaseModel):
    transaction_id: str = Field(min_length=1)
    description: str = Field(min_length=1)
    evidence: list[EvidenceRequest] = Field(default_factory=list)
    actor_id: str | None = None


class VoteRequest(BaseModel):
    voter_id: str = Field(min_length=1)
    support: bool


class ResolveRequest(BaseModel):
    force: bool = False
    actor_id: str | None = None


class StartVotingRequest(BaseModel):
    actor_id: str | None = None


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": type(exc).__name__})


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFound)
    async def not_found_handler(_request: Request, exc: NotFound) -> JSONResponse:
        return _error(404, exc)

    @app.exception_handler(ValidationError)
    async def validation_error_handler(_request: Request, exc: ValidationError) -> JSONResponse:
        return _error(422, exc)

    @app.exception_handler(InvalidState)
    async def invalid_state_handler(_request: Request, exc: InvalidState) -> JSONResponse:
        return _error(409, exc)

    @app.exception_handler(DuplicateVote)
    async def duplicate_vote_handler(_request: Request, exc: DuplicateVote) -> JSONResponse:
        return _error(409, exc)

    @app.exception_handler(QuorumNotMet)
    async def quorum_handler(_request: Request, exc: QuorumNotMet) -> JSONResponse:
        return _error(409, exc)

    @app.exception_handler(EvidenceStorageError)
    async def storage_error_handler(_request: Request, exc: EvidenceStorageError) -> JSONResponse:
        return _error(502, exc)

    @app.exception_handler(RepositoryError)
    async def repository_error_handler(_request: Request, exc: RepositoryError) -> JSONResponse:
        return _error(503, exc)


def create_app(services: Services | None = None) -> FastAPI:
    init_logging(settings.log_level, settings.app_env)
    svc = services or build_services()
    app = FastAPI(title="BlockFraud Dispute API", version="1.0.0")
    app.state.services = svc
    _register_error_handlers(app)

    def _draft(payload: EvidenceRequest) -> EvidenceDraft:
        ref = (payload.content_ref or "").strip()
        if not ref and payload.content_base64:
            try:
                data = base64.b64decode(payload.content_base64, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ValidationError("content_base64 is not valid base64") from exc
            ref = svc.evidence_storage.put(payload.filename, data)
        return EvidenceDraft(content_ref=ref, description=payload.description, file_type=payload.file_type)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "persistence": "supabase" if svc.dispute_store.using_supabase else "memory",
            "oracle": svc.analysis.oracle.name if svc.analysis.oracle else "fallback",
            "policy": {
                "min_evidence": svc.disputes.policy.min_evidence,
                "quorum": svc.disputes.policy.quorum,
                "auto_start_voting": svc.disputes.policy.auto_start_voting,
                "auto_resolve": svc.disputes.policy.auto_resolve,
                "tie_break": "rejected",
            },
        }

    @app.get("/transactions")
    def list_transactions(
        wallet: str | None = None,
        start: str | None = None,
        end: str | None = None,
        limit: int = Query(default=20, ge=1, le=200),
        offset: int = Query(default=0, ge=0),
    ) -> dict[str, Any]:
        page = svc.transactions.list_transactions(
            TransactionFilter(wallet=wallet, start=start, end=end, limit=limit, offset=offset)
        )
        return page.to_dict()

    @app.get("/transactions/{transaction_id}")
    def get_transaction(transaction_id: str) -> dict[str, Any]:
        return svc.transactions.get_transaction(transaction_id).to_dict()

    @app.post("/transactions")
    def record_transaction(payload: TransactionRequest) -> dict[str, Any]:
        return svc.transactions.record_transaction(payload.model_dump()).to_dict()

    @app.post("/transactions/analyze")
    async def analyze_batch(payload: BatchAnalysisRequest) -> dict[str, Any]:
        items = await svc.analysis.analyze_many(payload.transaction_ids)
        return {
            "items": [item.model_dump() for item in items],
            "failed": sum(1 for item in items if item.error),
        }

    @app.post("/transactions/{transaction_id}/analyze")
    async def analyze_transaction(transaction_id: str) -> dict[str, Any]:
        result = await svc.analysis.analyze_by_id(transaction_id)
        return result.to_dict()

    @app.post("/transactions/{transaction_id}/feedback")
    def submit_feedback(transaction_id: str, payload: FeedbackRequest) -> dict[str, Any]:
        ack = svc.analysis.submit_feedback(transaction_id, payload.is_correct, payload.actual_verdict)
        return ack.model_dump()

    @app.post("/disputes")
    def create_dispute(payload: DisputeRequest) -> dict[str, Any]:
        dispute = svc.disputes.create_dispute(
            transaction_id=payload.transaction_id,
            description=payload.description,
            initial_evidence=[_draft(e) for e in payload.evidence],
            actor_id=payload.actor_id,
        )
        return dispute.to_dict()

    @app.get("/disputes")
    def list_disputes(transaction_id: str | None = None, status: str | None = None) -> list[dict[str, Any]]:
        try:
            disputes = svc.disputes.list_disputes(transaction_id=transaction_id, status=status)
        except ValueError as exc:
            raise ValidationError(f"Unknown dispute status: {status}") from exc
        return [d.to_dict() for d in disputes]

    @app.get("/disputes/{dispute_id}")
    def get_dispute(dispute_id: str) -> dict[str, Any]:
        return svc.disputes.get_dispute(dispute_id).to_dict()

    @app.post("/disputes/{dispute_id}/evidence")
    def add_evidence(dispute_id: str, payload: EvidenceRequest) -> dict[str, Any]:
        # Fail fast before uploading content for an unknown dispute.
        svc.disputes.get_dispute(dispute_id)
        evidence = svc.disputes.add_evidence(dispute_id, _draft(payload))
        return {**evidence.to_dict(), "url": gateway_url(evidence.content_ref)}

    @app.get("/disputes/{dispute_id}/evidence")
    def list_evidence(dispute_id: str) -> list[dict[str, Any]]:
        return [
            {**e.to_dict(), "url": gateway_url(e.content_ref)}
            for e in svc.disputes.list_evidence(dispute_id)
        ]

    @app.post("/disputes/{dispute_id}/voting/start")
    def start_voting(dispute_id: str, payload: StartVotingRequest | None = None) -> dict[str, Any]:
        actor_id = payload.actor_id if payload else None
        return svc.disputes.start_voting(dispute_id, actor_id=actor_id).to_dict()

    @app.post("/disputes/{dispute_id}/vote")
    def cast_vote(dispute_id: str, payload: VoteRequest) -> dict[str, Any]:
        return svc.disputes.cast_vote(dispute_id, payload.voter_id, payload.support).to_dict()

    @app.post("/disputes/{dispute_id}/resolve")
    def resolve_dispute(dispute_id: str, payload: ResolveRequest | None = None) -> dict[str, Any]:
        payload = payload or ResolveRequest()
        return svc.disputes.resolve(dispute_id, force=payload.force, actor_id=payload.actor_id).to_dict()

    @app.get("/disputes/{dispute_id}/timeline")
    def get_timeline(dispute_id: str) -> list[dict[str, Any]]:
        return [e.to_dict() for e in svc.disputes.timeline(dispute_id)]

    @app.get("/notifications")
    def list_notifications(unread_only: bool = False) -> dict[str, Any]:
        return {
            "items": [n.to_dict() for n in svc.notifications.list(unread_only=unread_only)],
            "unread": svc.notifications.unread_count(),
        }

    @app.post("/notifications/{notification_id}/read")
    def mark_notification_read(notification_id: str) -> dict[str, Any]:
        return svc.notifications.mark_read(notification_id).to_dict()

    @app.delete("/notifications/{notification_id}")
    def delete_notification(notification_id: str) -> dict[str, Any]:
        svc.notifications.delete(notification_id)
        return {"deleted": notification_id}

    @app.delete("/notifications")
    def clear_notifications() -> dict[str, Any]:
        return {"cleared": svc.notifications.clear()}

    return app


app = create_app()
