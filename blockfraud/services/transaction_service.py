from __future__ import annotations

import logging
from typing import Any

from blockfraud.domain.errors import InvalidState, NotFound, ValidationError
from blockfraud.domain.models import (
    AIAnalysisResult,
    Transaction,
    TransactionFilter,
    TransactionPage,
)
from blockfraud.domain.states import RiskLevel, TransactionStatus
from blockfraud.infra.repositories import TransactionRepository


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


class TransactionService:
    def __init__(self, repo: TransactionRepository) -> None:
        self.repo = repo

    def list_transactions(self, flt: TransactionFilter | None = None) -> TransactionPage:
        flt = flt or TransactionFilter()
        if flt.limit < 1 or flt.offset < 0:
            raise ValidationError("limit must be >= 1 and offset >= 0")
        flt.limit = min(flt.limit, MAX_PAGE_SIZE)

        rows, total = self.repo.list_transactions(flt)
        return TransactionPage(
            items=[Transaction.from_row(r) for r in rows],
            total=total,
            has_more=total > flt.offset + flt.limit,
        )

    def get_transaction(self, transaction_id: str) -> Transaction:
        row = self.repo.get_transaction(transaction_id)
        if not row:
            raise NotFound("Transaction", transaction_id)
        return Transaction.from_row(row)

    def record_transaction(self, data: dict[str, Any]) -> Transaction:
        try:
            tx = Transaction.from_row({k: v for k, v in data.items() if v is not None})
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid transaction: {exc}") from exc
        if not tx.sender or not tx.receiver:
            raise ValidationError("sender and receiver are required")
        if tx.amount < 0:
            raise ValidationError("amount must be non-negative")
        if tx.block_confirmations < 0:
            raise ValidationError("block_confirmations must be non-negative")

        row = self.repo.create_transaction(tx.to_dict())
        logger.info("Recorded transaction %s", tx.id)
        return Transaction.from_row(row)

    def _mutable(self, transaction_id: str) -> Transaction:
        tx = self.get_transaction(transaction_id)
        if tx.status == TransactionStatus.REJECTED:
            raise InvalidState(f"Transaction {transaction_id} is rejected and can no longer change")
        return tx

    def update_risk_level(self, transaction_id: str, risk_level: RiskLevel | str) -> Transaction:
        try:
            level = RiskLevel(risk_level)
        except ValueError as exc:
            raise ValidationError(f"Unknown risk level: {risk_level}") from exc
        self._mutable(transaction_id)
        return Transaction.from_row(self.repo.update_transaction(transaction_id, {"risk_level": level.value}))

    def update_confirmations(self, transaction_id: str, confirmations: int) -> Transaction:
        tx = self._mutable(transaction_id)
        if confirmations < tx.block_confirmations:
            raise ValidationError(
                f"block_confirmations cannot decrease ({tx.block_confirmations} -> {confirmations})"
            )
        return Transaction.from_row(
            self.repo.update_transaction(transaction_id, {"block_confirmations": confirmations})
        )

    def attach_analysis(self, result: AIAnalysisResult) -> Transaction:
        self._mutable(result.transaction_id)
        self.repo.save_analysis(result.to_dict())
        return self.get_transaction(result.transaction_id)
