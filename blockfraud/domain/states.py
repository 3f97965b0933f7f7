from __future__ import annotations

from enum import Enum


class DisputeStatus(str, Enum):
    OPEN = "open"
    VOTING = "voting"
    RESOLVED = "resolved"


class Resolution(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class DisputeEventType(str, Enum):
    CREATED = "created"
    EVIDENCE_ADDED = "evidence_added"
    VOTING_STARTED = "voting_started"
    VOTE_CAST = "vote_cast"
    RESOLVED = "resolved"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Verdict(str, Enum):
    LEGITIMATE = "legitimate"
    SUSPICIOUS = "suspicious"
    FRAUDULENT = "fraudulent"


class AnalysisSource(str, Enum):
    ORACLE = "oracle"
    FALLBACK = "fallback"


ALLOWED_TRANSITIONS: dict[DisputeStatus, set[DisputeStatus]] = {
    DisputeStatus.OPEN: {DisputeStatus.VOTING},
    DisputeStatus.VOTING: {DisputeStatus.RESOLVED},
    DisputeStatus.RESOLVED: set(),
}

# Evidence may be appended until the dispute is resolved.
EVIDENCE_STATES = {DisputeStatus.OPEN, DisputeStatus.VOTING}
