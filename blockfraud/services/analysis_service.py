from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Sequence

from pydantic import ValidationError as PydanticValidationError

from blockfraud.contracts.payloads import BatchItem, FeedbackAck, OracleRequest, OracleResponse
from blockfraud.domain.errors import BlockFraudError, InvalidState, NotFound, OracleUnavailable, ValidationError
from blockfraud.domain.models import AIAnalysisResult, AnalysisDetails, Transaction, utc_now
from blockfraud.domain.scoring import synthesize_analysis
from blockfraud.domain.states import AnalysisSource, Verdict
from blockfraud.events.bus import EventBus
from blockfraud.events.contracts import build_event_envelope
from blockfraud.infra.oracle_adapter import FraudOracle
from blockfraud.infra.repositories import RepositoryError
from blockfraud.services.transaction_service import TransactionService


logger = logging.getLogger(__name__)


def oracle_snapshot(tx: Transaction) -> dict[str, Any]:
    return {
        "sender": tx.sender,
        "receiver": tx.receiver,
        "amount": tx.amount,
        "currency": tx.currency,
        "status": tx.status.value,
        "riskLevel": tx.risk_level.value,
        "location": tx.location,
        "metadata": tx.metadata,
    }


def parse_oracle_payload(transaction_id: str, payload: Any) -> AIAnalysisResult:
    try:
        parsed = OracleResponse.model_validate(payload)
    except PydanticValidationError as exc:
        raise OracleUnavailable(f"Malformed oracle payload: {exc.error_count()} error(s)") from exc
    # The oracle's verdict is taken as given, even if it disagrees with its score.
    return AIAnalysisResult(
        transaction_id=transaction_id,
        fraud_score=parsed.fraud_score,
        verdict=Verdict(parsed.verdict),
        confidence=parsed.confidence,
        source=AnalysisSource.ORACLE,
        details=AnalysisDetails(
            flagged_patterns=list(parsed.details.flagged_patterns),
            similar_cases=parsed.details.similar_cases,
            recommendation=parsed.details.recommendation,
        ),
    )


class FraudAnalysisService:
    def __init__(
        self,
        transactions: TransactionService,
        bus: EventBus,
        oracle: FraudOracle | None = None,
        timeout: float = 10.0,
        concurrency: int = 4,
        rng: random.Random | None = None,
    ) -> None:
        self.transactions = transactions
        self.bus = bus
        self.oracle = oracle
        self.timeout = timeout
        self.concurrency = max(1, concurrency)
        self.rng = rng or random.Random()

    async def _ask_oracle(self, tx: Transaction) -> AIAnalysisResult:
        if self.oracle is None:
            raise OracleUnavailable("No oracle configured")
        request = OracleRequest(transaction_id=tx.id, transaction=oracle_snapshot(tx))
        try:
            payload = await asyncio.wait_for(self.oracle.analyze(request), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise OracleUnavailable(f"Oracle timed out after {self.timeout}s") from exc
        except OracleUnavailable:
            raise
        except Exception as exc:
            raise OracleUnavailable(f"Oracle call failed: {exc}") from exc
        return parse_oracle_payload(tx.id, payload)

    async def analyze(self, tx: Transaction) -> AIAnalysisResult:
        """Score a transaction; always returns a result.

        Oracle failures of any kind fall back to a synthesized verdict tagged
        ``source="fallback"``.
        """
        try:
            result = await self._ask_oracle(tx)
        except OracleUnavailable as exc:
            if self.oracle is not None:
                logger.warning(
                    "Oracle unavailable, using fallback scoring",
                    extra={"extra": {"transaction_id": tx.id, "reason": str(exc)}},
                )
            result = synthesize_analysis(tx, self.rng)

        self._store(result)
        self._publish(
            "analysis.completed",
            tx.id,
            {
                "fraud_score": result.fraud_score,
                "verdict": result.verdict.value,
                "confidence": result.confidence,
                "source": result.source.value,
            },
        )
        return result

    async def analyze_by_id(self, transaction_id: str) -> AIAnalysisResult:
        return await self.analyze(self.transactions.get_transaction(transaction_id))

    async def analyze_many(self, transaction_ids: Sequence[str]) -> list[BatchItem]:
        """Analyze many transactions with at most ``concurrency`` oracle calls in flight.

        Results come back in input order, one item per id. An unknown id or a
        failed lookup yields an item with ``error`` set instead of failing the batch.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(transaction_id: str) -> BatchItem:
            async with semaphore:
                try:
                    result = await self.analyze_by_id(transaction_id)
                except BlockFraudError as exc:
                    return BatchItem(transaction_id=transaction_id, error=str(exc))
                except Exception as exc:
                    logger.exception("Batch analysis failed for %s", transaction_id)
                    return BatchItem(transaction_id=transaction_id, error=f"{type(exc).__name__}: {exc}")
                return BatchItem(transaction_id=transaction_id, result=result.to_dict())

        return list(await asyncio.gather(*(_one(tid) for tid in transaction_ids)))

    def submit_feedback(
        self,
        transaction_id: str,
        is_correct: bool,
        actual_verdict: Verdict | str | None = None,
    ) -> FeedbackAck:
        try:
            verdict = Verdict(actual_verdict) if actual_verdict else None
        except ValueError as exc:
            raise ValidationError(f"Unknown verdict: {actual_verdict}") from exc
        self.transactions.get_transaction(transaction_id)

        self.transactions.repo.save_feedback(
            {
                "transaction_id": transaction_id,
                "is_correct": bool(is_correct),
                "actual_verdict": verdict.value if verdict else None,
            }
        )
        logger.info(
            "AI feedback received",
            extra={"extra": {"transaction_id": transaction_id, "is_correct": bool(is_correct)}},
        )
        self._publish(
            "analysis.feedback_received",
            transaction_id,
            {"is_correct": bool(is_correct), "actual_verdict": verdict.value if verdict else None},
        )
        return FeedbackAck(success=True, transaction_id=transaction_id)

    def _store(self, result: AIAnalysisResult) -> None:
        try:
            self.transactions.attach_analysis(result)
        except (InvalidState, NotFound) as exc:
            logger.info("Analysis for %s not stored: %s", result.transaction_id, exc)
        except RepositoryError as exc:
            logger.warning("Analysis for %s not persisted: %s", result.transaction_id, exc)
        except Exception:
            logger.exception("Analysis for %s not persisted", result.transaction_id)

    def _publish(self, event_type: str, transaction_id: str, payload: dict[str, Any]) -> None:
        envelope = build_event_envelope(
            event_type=event_type,
            payload=payload,
            transaction_id=transaction_id,
            timestamp=utc_now(),
        )
        try:
            self.bus.publish(event_type, envelope)
        except Exception:
            logger.exception("Event handler failed for %s", event_type)
