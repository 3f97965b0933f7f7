from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from blockfraud.domain.states import (
    AnalysisSource,
    DisputeEventType,
    DisputeStatus,
    Resolution,
    RiskLevel,
    TransactionStatus,
    Verdict,
)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid4())


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def _known(cls: type, row: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in row.items() if k in names}


@dataclass
class AnalysisDetails:
    flagged_patterns: list[str] = field(default_factory=list)
    similar_cases: int = 0
    recommendation: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "flagged_patterns": list(self.flagged_patterns),
            "similar_cases": self.similar_cases,
            "recommendation": self.recommendation,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any] | None) -> "AnalysisDetails":
        row = row or {}
        return cls(
            flagged_patterns=[str(p) for p in row.get("flagged_patterns") or []],
            similar_cases=int(row.get("similar_cases") or 0),
            recommendation=str(row.get("recommendation") or ""),
        )


@dataclass
class AIAnalysisResult:
    transaction_id: str
    fraud_score: int
    verdict: Verdict
    confidence: int
    source: AnalysisSource
    details: AnalysisDetails = field(default_factory=AnalysisDetails)
    analysis_time: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "fraud_score": self.fraud_score,
            "verdict": self.verdict.value,
            "confidence": self.confidence,
            "source": self.source.value,
            "details": self.details.to_dict(),
            "analysis_time": self.analysis_time,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "AIAnalysisResult":
        return cls(
            transaction_id=str(row["transaction_id"]),
            fraud_score=int(row["fraud_score"]),
            verdict=Verdict(row["verdict"]),
            confidence=int(row["confidence"]),
            source=AnalysisSource(row.get("source") or AnalysisSource.ORACLE.value),
            details=AnalysisDetails.from_row(row.get("details")),
            analysis_time=str(row.get("analysis_time") or utc_now()),
        )


@dataclass
class Transaction:
    sender: str
    receiver: str
    amount: float
    currency: str = "ETH"
    status: TransactionStatus = TransactionStatus.PENDING
    risk_level: RiskLevel = RiskLevel.LOW
    block_confirmations: int = 0
    block_hash: str | None = None
    location: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    ai_detection: AIAnalysisResult | None = None
    id: str = field(default_factory=_new_id)
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        row = {f.name: _plain(getattr(self, f.name)) for f in fields(self)}
        row["ai_detection"] = self.ai_detection.to_dict() if self.ai_detection else None
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Transaction":
        data = _known(cls, row)
        data["status"] = TransactionStatus(data.get("status") or TransactionStatus.PENDING.value)
        data["risk_level"] = RiskLevel(data.get("risk_level") or RiskLevel.LOW.value)
        data["amount"] = float(data.get("amount") or 0)
        data["block_confirmations"] = int(data.get("block_confirmations") or 0)
        data["location"] = dict(data.get("location") or {})
        data["metadata"] = dict(data.get("metadata") or {})
        detection = data.get("ai_detection")
        data["ai_detection"] = AIAnalysisResult.from_row(detection) if detection else None
        return cls(**data)


@dataclass
class TransactionFilter:
    wallet: str | None = None
    start: str | None = None
    end: str | None = None
    limit: int = 20
    offset: int = 0


@dataclass
class TransactionPage:
    items: list[Transaction]
    total: int
    has_more: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [t.to_dict() for t in self.items],
            "total": self.total,
            "has_more": self.has_more,
        }


@dataclass
class EvidenceDraft:
    """Evidence as submitted by a caller, before it enters the ledger."""

    content_ref: str
    description: str
    file_type: str | None = None


@dataclass
class Evidence:
    dispute_id: str
    content_ref: str
    description: str
    file_type: str | None = None
    id: str = field(default_factory=_new_id)
    uploaded_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Evidence":
        return cls(**_known(cls, row))


@dataclass
class DisputeEvent:
    dispute_id: str
    event_type: DisputeEventType
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=_new_id)
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "dispute_id": self.dispute_id,
            "event_type": self.event_type.value,
            "payload": _plain(self.payload),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "DisputeEvent":
        data = _known(cls, row)
        data["event_type"] = DisputeEventType(data["event_type"])
        data["payload"] = dict(data.get("payload") or {})
        return cls(**data)


@dataclass
class Vote:
    dispute_id: str
    voter_id: str
    support: bool
    id: str = field(default_factory=_new_id)
    cast_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Vote":
        data = _known(cls, row)
        data["support"] = bool(data["support"])
        return cls(**data)


@dataclass
class Dispute:
    transaction_id: str
    description: str
    id: str = field(default_factory=_new_id)
    status: DisputeStatus = DisputeStatus.OPEN
    resolution: Resolution | None = None
    votes_for: int = 0
    votes_against: int = 0
    evidence: list[Evidence] = field(default_factory=list)
    timeline: list[DisputeEvent] = field(default_factory=list)
    votes: list[Vote] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    resolved_at: str | None = None

    @property
    def total_votes(self) -> int:
        return self.votes_for + self.votes_against

    def has_voted(self, voter_id: str) -> bool:
        return any(v.voter_id == voter_id for v in self.votes)

    def to_row(self) -> dict[str, Any]:
        """Flat row for the disputes table (no child collections)."""
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "description": self.description,
            "status": self.status.value,
            "resolution": self.resolution.value if self.resolution else None,
            "votes_for": self.votes_for,
            "votes_against": self.votes_against,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "resolved_at": self.resolved_at,
        }

    def to_dict(self) -> dict[str, Any]:
        out = self.to_row()
        out["total_votes"] = self.total_votes
        out["evidence"] = [e.to_dict() for e in self.evidence]
        out["timeline"] = [e.to_dict() for e in self.timeline]
        return out

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Dispute":
        resolution = row.get("resolution")
        return cls(
            id=str(row["id"]),
            transaction_id=str(row["transaction_id"]),
            description=str(row.get("description") or ""),
            status=DisputeStatus(row.get("status") or DisputeStatus.OPEN.value),
            resolution=Resolution(resolution) if resolution else None,
            votes_for=int(row.get("votes_for") or 0),
            votes_against=int(row.get("votes_against") or 0),
            evidence=[Evidence.from_row(r) for r in row.get("evidence") or []],
            timeline=[DisputeEvent.from_row(r) for r in row.get("timeline") or []],
            votes=[Vote.from_row(r) for r in row.get("votes") or []],
            created_at=str(row.get("created_at") or utc_now()),
            updated_at=str(row.get("updated_at") or utc_now()),
            resolved_at=row.get("resolved_at"),
        )


@dataclass
class DisputeChange:
    """Everything one lifecycle step writes for a single dispute."""

    dispute_id: str
    updates: dict[str, Any] = field(default_factory=dict)
    evidence: list[Evidence] = field(default_factory=list)
    events: list[DisputeEvent] = field(default_factory=list)
    votes: list[Vote] = field(default_factory=list)


@dataclass
class Notification:
    type: str
    title: str
    message: str
    related_transaction_id: str | None = None
    related_dispute_id: str | None = None
    read: bool = False
    id: str = field(default_factory=_new_id)
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
