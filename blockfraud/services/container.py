from __future__ import annotations

import random
from dataclasses import dataclass

from blockfraud.config import Settings, settings as default_settings
from blockfraud.domain.state_machine import DisputePolicy
from blockfraud.events.bus import EventBus, build_event_bus
from blockfraud.infra.demo_data import demo_transactions
from blockfraud.infra.evidence_storage import EvidenceStorage, build_evidence_storage
from blockfraud.infra.oracle_adapter import FraudOracle, build_oracle
from blockfraud.infra.repositories import DisputeStore, TransactionRepository, build_repositories
from blockfraud.services.analysis_service import FraudAnalysisService
from blockfraud.services.dispute_lifecycle import DisputeLifecycle
from blockfraud.services.notification_service import NotificationService
from blockfraud.services.transaction_service import TransactionService


@dataclass
class Services:
    bus: EventBus
    transaction_repo: TransactionRepository
    dispute_store: DisputeStore
    transactions: TransactionService
    disputes: DisputeLifecycle
    analysis: FraudAnalysisService
    notifications: NotificationService
    evidence_storage: EvidenceStorage


def build_services(
    settings: Settings | None = None,
    *,
    transaction_repo: TransactionRepository | None = None,
    dispute_store: DisputeStore | None = None,
    oracle: FraudOracle | None = None,
    evidence_storage: EvidenceStorage | None = None,
    policy: DisputePolicy | None = None,
    rng: random.Random | None = None,
) -> Services:
    cfg = settings or default_settings
    if transaction_repo is None or dispute_store is None:
        built_tx, built_disputes = build_repositories(demo_transactions() if cfg.seed_demo_data else None)
        transaction_repo = transaction_repo or built_tx
        dispute_store = dispute_store or built_disputes

    bus = build_event_bus()
    notifications = NotificationService(bus)
    transactions = TransactionService(transaction_repo)
    disputes = DisputeLifecycle(
        dispute_store,
        transactions,
        bus,
        policy=policy or DisputePolicy.from_settings(cfg),
    )
    analysis = FraudAnalysisService(
        transactions,
        bus,
        oracle=oracle if oracle is not None else build_oracle(),
        timeout=cfg.oracle_timeout_seconds,
        concurrency=cfg.analysis_concurrency,
        rng=rng or random.Random(cfg.fallback_seed),
    )
    return Services(
        bus=bus,
        transaction_repo=transaction_repo,
        dispute_store=dispute_store,
        transactions=transactions,
        disputes=disputes,
        analysis=analysis,
        notifications=notifications,
        evidence_storage=evidence_storage or build_evidence_storage(),
    )
