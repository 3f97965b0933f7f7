"""Synthesized fraud verdicts used when the scoring oracle cannot answer.

The fallback is randomized inside fixed buckets keyed by the transaction's
advisory risk level. Pass a seeded ``random.Random`` for reproducible output.
Results are always tagged ``AnalysisSource.FALLBACK``.
"""
from __future__ import annotations

import random

from blockfraud.domain.models import AIAnalysisResult, AnalysisDetails, Transaction
from blockfraud.domain.states import AnalysisSource, RiskLevel, Verdict

# risk level -> (score lower bound inclusive, upper bound exclusive, verdict)
SCORE_BUCKETS: dict[RiskLevel, tuple[int, int, Verdict]] = {
    RiskLevel.LOW: (0, 30, Verdict.LEGITIMATE),
    RiskLevel.MEDIUM: (30, 70, Verdict.SUSPICIOUS),
    RiskLevel.HIGH: (70, 100, Verdict.FRAUDULENT),
}

CONFIDENCE_RANGE = (70, 100)

FLAGGED_PATTERNS = [
    "Unusual transaction amount",
    "Suspicious recipient history",
    "Pattern matches known fraud cases",
]

RECOMMENDATIONS: dict[Verdict, str] = {
    Verdict.FRAUDULENT: "Block this transaction immediately",
    Verdict.SUSPICIOUS: "Review this transaction carefully before proceeding",
    Verdict.LEGITIMATE: "No action required",
}


def verdict_for_score(score: int) -> Verdict:
    for low, high, verdict in SCORE_BUCKETS.values():
        if low <= score < high:
            return verdict
    return Verdict.FRAUDULENT


def _bucket(risk_level: RiskLevel | str | None) -> tuple[int, int, Verdict]:
    try:
        level = RiskLevel(risk_level)
    except ValueError:
        # Anything unrecognised is scored as high risk.
        level = RiskLevel.HIGH
    return SCORE_BUCKETS[level]


def synthesize_analysis(transaction: Transaction, rng: random.Random | None = None) -> AIAnalysisResult:
    rng = rng or random.Random()
    low, high, verdict = _bucket(transaction.risk_level)
    fraud_score = rng.randrange(low, high)
    confidence = rng.randint(*CONFIDENCE_RANGE)

    flagged = verdict != Verdict.LEGITIMATE
    details = AnalysisDetails(
        flagged_patterns=list(FLAGGED_PATTERNS) if flagged else [],
        similar_cases=rng.randrange(0, 500) if flagged else 0,
        recommendation=RECOMMENDATIONS[verdict],
    )
    return AIAnalysisResult(
        transaction_id=transaction.id,
        fraud_score=fraud_score,
        verdict=verdict,
        confidence=confidence,
        source=AnalysisSource.FALLBACK,
        details=details,
    )
