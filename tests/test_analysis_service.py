"""Tests for fraud analysis: oracle calls, fallback scoring, batches and feedback"""

import asyncio
import random

import pytest

from blockfraud.domain.errors import NotFound, OracleUnavailable, ValidationError
from blockfraud.domain.states import AnalysisSource, Verdict
from blockfraud.events.bus import InMemoryEventBus
from blockfraud.infra.demo_data import demo_transactions
from blockfraud.infra.repositories import InMemoryTransactionRepository, RepositoryError
from blockfraud.services.analysis_service import FraudAnalysisService, oracle_snapshot, parse_oracle_payload
from blockfraud.services.transaction_service import TransactionService


class StubOracle:
    name = "stub"

    def __init__(self, payload=None, error=None, delay=0.0):
        self.payload = payload
        self.error = error
        self.delay = delay
        self.requests = []

    async def analyze(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.payload


class CountingOracle:
    name = "counting"

    def __init__(self):
        self.in_flight = 0
        self.max_in_flight = 0

    async def analyze(self, request):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0.01)
        self.in_flight -= 1
        return {"fraudScore": 12, "verdict": "legitimate", "confidence": 90, "details": {}}


GOOD_PAYLOAD = {
    "fraudScore": 91,
    "verdict": "fraudulent",
    "confidence": 88,
    "details": {
        "flaggedPatterns": ["Mixer interaction"],
        "similarCases": 42,
        "recommendation": "Freeze funds",
    },
}


@pytest.fixture
def make_service(transactions, bus):
    def _make(oracle=None, **kwargs):
        kwargs.setdefault("rng", random.Random(99))
        return FraudAnalysisService(transactions, bus, oracle=oracle, **kwargs)

    return _make


def test_oracle_result_is_stored_and_published(make_service, transactions, published):
    oracle = StubOracle(payload=GOOD_PAYLOAD)
    result = asyncio.run(make_service(oracle).analyze_by_id("3"))

    assert result.source == AnalysisSource.ORACLE
    assert result.fraud_score == 91
    assert result.verdict == Verdict.FRAUDULENT
    assert result.details.flagged_patterns == ["Mixer interaction"]
    assert result.details.similar_cases == 42

    stored = transactions.get_transaction("3").ai_detection
    assert stored is not None and stored.fraud_score == 91
    assert published[-1]["event_type"] == "analysis.completed"
    assert published[-1]["payload"]["source"] == "oracle"
    assert oracle.requests[0].transaction["riskLevel"] == "high"


def test_oracle_verdict_taken_verbatim(make_service):
    """Test that a verdict disagreeing with the score is not second-guessed"""
    payload = {"fraudScore": 95, "verdict": "legitimate", "confidence": 60}
    result = asyncio.run(make_service(StubOracle(payload=payload)).analyze_by_id("1"))
    assert result.fraud_score == 95
    assert result.verdict == Verdict.LEGITIMATE


def test_string_details_become_recommendation(make_service):
    payload = {"fraudScore": 10, "verdict": "legitimate", "confidence": 80, "details": "Looks routine"}
    result = asyncio.run(make_service(StubOracle(payload=payload)).analyze_by_id("1"))
    assert result.details.recommendation == "Looks routine"
    assert result.details.flagged_patterns == []


@pytest.mark.parametrize(
    "oracle",
    [
        StubOracle(error=RuntimeError("connection reset")),
        StubOracle(error=OracleUnavailable("edge function 500")),
        StubOracle(payload={"fraudScore": 150, "verdict": "fraudulent", "confidence": 90}),
        StubOracle(payload={"fraudScore": 50, "verdict": "maybe", "confidence": 90}),
        StubOracle(payload={"verdict": "fraudulent"}),
        StubOracle(payload=None),
    ],
)
def test_oracle_failures_fall_back(make_service, oracle):
    """Test that any oracle failure yields a fallback result instead of an error"""
    result = asyncio.run(make_service(oracle).analyze_by_id("3"))
    assert result.source == AnalysisSource.FALLBACK
    assert 70 <= result.fraud_score < 100
    assert result.verdict == Verdict.FRAUDULENT


def test_oracle_timeout_falls_back(make_service):
    oracle = StubOracle(payload=GOOD_PAYLOAD, delay=1.0)
    result = asyncio.run(make_service(oracle, timeout=0.05).analyze_by_id("2"))
    assert result.source == AnalysisSource.FALLBACK
    assert 30 <= result.fraud_score < 70
    assert result.verdict == Verdict.SUSPICIOUS


def test_no_oracle_uses_fallback(make_service, transactions):
    result = asyncio.run(make_service().analyze_by_id("1"))
    assert result.source == AnalysisSource.FALLBACK
    assert result.verdict == Verdict.LEGITIMATE
    assert transactions.get_transaction("1").ai_detection.source == AnalysisSource.FALLBACK


def test_fallback_is_reproducible_with_seed(make_service):
    first = asyncio.run(make_service(rng=random.Random(5)).analyze_by_id("2"))
    second = asyncio.run(make_service(rng=random.Random(5)).analyze_by_id("2"))
    assert (first.fraud_score, first.confidence) == (second.fraud_score, second.confidence)


def test_rejected_transaction_analysis_not_stored(make_service, transactions, published):
    result = asyncio.run(make_service(StubOracle(payload=GOOD_PAYLOAD)).analyze_by_id("5"))
    assert result.fraud_score == 91
    assert transactions.get_transaction("5").ai_detection is None
    assert published[-1]["event_type"] == "analysis.completed"


def test_analyze_unknown_transaction(make_service):
    with pytest.raises(NotFound):
        asyncio.run(make_service().analyze_by_id("missing"))


def test_analyze_many_keeps_order_and_reports_errors(make_service):
    items = asyncio.run(make_service().analyze_many(["2", "missing", "1"]))

    assert [i.transaction_id for i in items] == ["2", "missing", "1"]
    assert items[0].result is not None and items[0].error is None
    assert items[1].result is None and "not found" in items[1].error
    assert items[2].result["verdict"] == "legitimate"


def test_analyze_many_bounds_concurrency(make_service):
    oracle = CountingOracle()
    service = make_service(oracle, concurrency=2)
    items = asyncio.run(service.analyze_many(["1", "2", "3", "4", "5"]))

    assert len(items) == 5
    assert all(i.error is None for i in items)
    assert 1 <= oracle.max_in_flight <= 2


def test_submit_feedback(make_service, tx_repo, published):
    ack = make_service().submit_feedback("1", False, "fraudulent")

    assert ack.success is True
    assert ack.transaction_id == "1"
    feedback = tx_repo.list_feedback("1")
    assert len(feedback) == 1
    assert feedback[0]["is_correct"] is False
    assert feedback[0]["actual_verdict"] == "fraudulent"
    assert published[-1]["event_type"] == "analysis.feedback_received"


def test_submit_feedback_rejects_unknown_verdict(make_service, tx_repo):
    with pytest.raises(ValidationError):
        make_service().submit_feedback("1", False, "probably-bad")
    assert tx_repo.list_feedback() == []


def test_submit_feedback_unknown_transaction(make_service):
    with pytest.raises(NotFound):
        make_service().submit_feedback("missing", True)


def test_parse_oracle_payload_rejects_out_of_range_confidence():
    with pytest.raises(OracleUnavailable):
        parse_oracle_payload("1", {"fraudScore": 10, "verdict": "legitimate", "confidence": 101})


def test_oracle_snapshot_uses_plain_values(transactions):
    snapshot = oracle_snapshot(transactions.get_transaction("4"))
    assert snapshot["currency"] == "MATIC"
    assert snapshot["status"] == "confirmed"
    assert snapshot["riskLevel"] == "low"


class FailingLookupRepository(InMemoryTransactionRepository):
    """Demo ledger whose lookups fail for chosen ids once ``failures`` is set."""

    def __init__(self, failures=None):
        super().__init__(demo_transactions())
        self.failures = failures or {}

    def get_transaction(self, transaction_id):
        if transaction_id in self.failures:
            raise self.failures[transaction_id]
        return super().get_transaction(transaction_id)


def test_storage_error_after_scoring_still_returns_result():
    """Test that a lookup failure while storing does not lose the computed verdict"""
    repo = FailingLookupRepository()
    service = FraudAnalysisService(TransactionService(repo), InMemoryEventBus(), rng=random.Random(4))
    tx = service.transactions.get_transaction("3")
    repo.failures["3"] = ConnectionError("connection reset")

    result = asyncio.run(service.analyze(tx))

    assert result.source == AnalysisSource.FALLBACK
    assert result.verdict == Verdict.FRAUDULENT


def test_analyze_many_reports_storage_failures_per_item():
    repo = FailingLookupRepository({"2": RepositoryError("Transaction query failed")})
    service = FraudAnalysisService(TransactionService(repo), InMemoryEventBus(), rng=random.Random(4))

    items = asyncio.run(service.analyze_many(["1", "2"]))

    assert items[0].error is None and items[0].result["verdict"] == "legitimate"
    assert items[1].result is None
    assert "Transaction query failed" in items[1].error


def test_analyze_many_reports_unexpected_errors_per_item():
    repo = FailingLookupRepository({"1": ConnectionError("connection reset")})
    service = FraudAnalysisService(TransactionService(repo), InMemoryEventBus(), rng=random.Random(4))

    items = asyncio.run(service.analyze_many(["1", "3"]))

    assert items[0].error == "ConnectionError: connection reset"
    assert items[1].result["verdict"] == "fraudulent"
