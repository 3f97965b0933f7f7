#!/usr/bin/env python3
from __future__ import annotations

import asyncio
import json
import sys

from blockfraud.config import settings
from blockfraud.contracts.payloads import OracleRequest
from blockfraud.domain.errors import OracleUnavailable
from blockfraud.domain.models import Transaction
from blockfraud.infra.demo_data import demo_transactions
from blockfraud.infra.oracle_adapter import build_oracle
from blockfraud.services.analysis_service import oracle_snapshot, parse_oracle_payload


async def probe(transaction_id: str) -> None:
    oracle = build_oracle()
    if oracle is None:
        print(f"oracle_backend={settings.oracle_backend!r} is not configured (set ORACLE_BACKEND and its keys)")
        return

    rows = {row["id"]: row for row in demo_transactions()}
    if transaction_id not in rows:
        print(f"unknown demo transaction {transaction_id!r}; choose one of {sorted(rows)}")
        return
    tx = Transaction.from_row(rows[transaction_id])

    print(f"oracle={oracle.name}")
    print(f"timeout={settings.oracle_timeout_seconds}s")
    request = OracleRequest(transaction_id=tx.id, transaction=oracle_snapshot(tx))
    try:
        payload = await asyncio.wait_for(oracle.analyze(request), timeout=settings.oracle_timeout_seconds)
    except asyncio.TimeoutError:
        print("raw_ok=False")
        print("raw_detail=timed out")
        return
    except OracleUnavailable as exc:
        print("raw_ok=False")
        print(f"raw_detail={exc}")
        return

    print("raw_ok=True")
    print(f"raw_payload={json.dumps(payload)[:350]}")
    try:
        result = parse_oracle_payload(tx.id, payload)
    except OracleUnavailable as exc:
        print(f"parsed_ok=False ({exc})")
        return
    print(f"parsed={json.dumps(result.to_dict(), indent=2)}")


def main() -> None:
    asyncio.run(probe(sys.argv[1] if len(sys.argv) > 1 else "3"))


if __name__ == "__main__":
    main()
