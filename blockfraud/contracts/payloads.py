from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


VerdictLiteral = Literal["legitimate", "suspicious", "fraudulent"]
RiskLevelLiteral = Literal["low", "medium", "high"]
NotificationType = Literal["info", "warning", "danger", "success"]


class OracleRequest(BaseModel):
    transaction_id: str
    transaction: dict[str, Any]


class OracleDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    flagged_patterns: list[str] = Field(default_factory=list, alias="flaggedPatterns")
    similar_cases: int = Field(default=0, ge=0, alias="similarCases")
    recommendation: str = ""


class OracleResponse(BaseModel):
    """Shape every oracle backend must return; anything else counts as a failure."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    fraud_score: int = Field(ge=0, le=100, alias="fraudScore")
    verdict: VerdictLiteral
    confidence: int = Field(ge=0, le=100)
    details: OracleDetails = Field(default_factory=OracleDetails)

    @field_validator("details", mode="before")
    @classmethod
    def _coerce_details(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, str):
            return {"recommendation": value}
        return value


class NotificationContract(BaseModel):
    type: NotificationType
    title: str
    message: str
    timestamp: str
    related_transaction_id: str | None = None
    related_dispute_id: str | None = None


class FeedbackAck(BaseModel):
    success: bool
    transaction_id: str


class BatchItem(BaseModel):
    transaction_id: str
    result: dict[str, Any] | None = None
    error: str | None = None
