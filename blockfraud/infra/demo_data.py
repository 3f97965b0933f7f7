from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any


def _ago(**delta: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(**delta)).isoformat()


def demo_transactions() -> list[dict[str, Any]]:
    """Sample ledger used to seed the in-memory repository."""
    return [
        {
            "id": "1",
            "timestamp": _ago(minutes=5),
            "sender": "0x1234...5678",
            "receiver": "0xabcd...efgh",
            "amount": 1.2,
            "currency": "ETH",
            "status": "confirmed",
            "risk_level": "low",
            "block_confirmations": 12,
            "block_hash": "0x7f1e74a478644f1b6c0de51536512bd87bc5a0731f3f59ce81c0f5d48799736d",
            "location": {"sender": "New York, US", "receiver": "London, UK"},
            "metadata": {"category": "payment", "memo": "Payment for services", "gas_price": 50, "gas_limit": 21000},
            "ai_detection": None,
        },
        {
            "id": "2",
            "timestamp": _ago(minutes=10),
            "sender": "0xabcd...efgh",
            "receiver": "0x9876...5432",
            "amount": 0.5,
            "currency": "ETH",
            "status": "confirmed",
            "risk_level": "medium",
            "block_confirmations": 15,
            "block_hash": "0x8d1e74a478644f1b6c0de51536512bd87bc5a0731f3f59ce81c0f5d48799736e",
            "location": {"sender": "Tokyo, JP", "receiver": "Sydney, AU"},
            "metadata": {"category": "exchange", "memo": "Token swap", "gas_price": 45, "gas_limit": 21000},
            "ai_detection": None,
        },
        {
            "id": "3",
            "timestamp": _ago(minutes=1),
            "sender": "0x5678...1234",
            "receiver": "0xefgh...abcd",
            "amount": 3.0,
            "currency": "ETH",
            "status": "pending",
            "risk_level": "high",
            "block_confirmations": 2,
            "block_hash": None,
            "location": {"sender": "Unknown", "receiver": "Berlin, DE"},
            "metadata": {"category": "unknown", "gas_price": 60, "gas_limit": 21000},
            "ai_detection": None,
        },
        {
            "id": "4",
            "timestamp": _ago(hours=2),
            "sender": "0x1234...5678",
            "receiver": "0x5432...9876",
            "amount": 100.0,
            "currency": "MATIC",
            "status": "confirmed",
            "risk_level": "low",
            "block_confirmations": 85,
            "block_hash": "0x9f1e74a478644f1b6c0de51536512bd87bc5a0731f3f59ce81c0f5d48799736f",
            "location": {"sender": "San Francisco, US", "receiver": "Singapore, SG"},
            "metadata": {"category": "investment", "memo": "Portfolio allocation", "gas_price": 40, "gas_limit": 21000},
            "ai_detection": None,
        },
        {
            "id": "5",
            "timestamp": _ago(hours=1),
            "sender": "0xefgh...abcd",
            "receiver": "0x1234...5678",
            "amount": 0.25,
            "currency": "ETH",
            "status": "rejected",
            "risk_level": "high",
            "block_confirmations": 0,
            "block_hash": None,
            "location": {"sender": "Moscow, RU", "receiver": "Miami, US"},
            "metadata": {"category": "unknown", "gas_price": 55, "gas_limit": 21000},
            "ai_detection": None,
        },
    ]
