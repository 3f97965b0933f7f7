from __future__ import annotations

import copy
import logging
import re
from datetime import datetime, timezone
from threading import RLock
from typing import Any

from blockfraud.config import settings
from blockfraud.domain.models import DisputeChange, TransactionFilter, utc_now
from blockfraud.infra.supabase_client import get_supabase_client


logger = logging.getLogger(__name__)


class RepositoryError(RuntimeError):
    pass


def _extract_missing_column_name(message: str) -> str | None:
    # Handles messages like:
    # "Could not find the 'block_hash' column of 'transactions' in the schema cache"
    patterns = [
        r"'([^']+)'\s+column",
        r"column\s+'([^']+)'",
        r'Could not find the "([^"]+)" column',
    ]
    for pat in patterns:
        m = re.search(pat, message, flags=re.IGNORECASE)
        if m:
            return m.group(1)
    return None


def _parse_ts(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TransactionRepository:
    using_supabase = False

    def list_transactions(self, flt: TransactionFilter) -> tuple[list[dict[str, Any]], int]:
        raise NotImplementedError

    def get_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def create_transaction(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def update_transaction(self, transaction_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def save_analysis(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def save_feedback(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError


class DisputeStore:
    """Persists disputes together with their evidence, timeline and votes.

    ``create_dispute`` and ``commit`` apply everything in one call so a reader
    never sees half of a lifecycle step.
    """

    using_supabase = False

    def create_dispute(self, row: dict[str, Any], change: DisputeChange) -> dict[str, Any]:
        raise NotImplementedError

    def commit(self, change: DisputeChange) -> dict[str, Any]:
        raise NotImplementedError

    def get_dispute(self, dispute_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def list_disputes(
        self,
        transaction_id: str | None = None,
        status: str | None = None,
        limit: int = 500,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    def list_evidence(self, dispute_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    def list_events(self, dispute_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError


class InMemoryTransactionRepository(TransactionRepository):
    def __init__(self, rows: list[dict[str, Any]] | None = None) -> None:
        self._lock = RLock()
        self._transactions: dict[str, dict[str, Any]] = {}
        self._feedback: list[dict[str, Any]] = []
        for row in rows or []:
            self.create_transaction(row)

    def _matches(self, row: dict[str, Any], flt: TransactionFilter) -> bool:
        if flt.wallet and flt.wallet not in (row.get("sender"), row.get("receiver")):
            return False
        ts = _parse_ts(row.get("timestamp"))
        start, end = _parse_ts(flt.start), _parse_ts(flt.end)
        if start and (ts is None or ts < start):
            return False
        if end and (ts is None or ts > end):
            return False
        return True

    def list_transactions(self, flt: TransactionFilter) -> tuple[list[dict[str, Any]], int]:
        with self._lock:
            rows = [r for r in self._transactions.values() if self._matches(r, flt)]
            rows.sort(key=lambda r: _parse_ts(r.get("timestamp")) or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
            page = rows[flt.offset : flt.offset + flt.limit]
            return [copy.deepcopy(r) for r in page], len(rows)

    def get_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._transactions.get(transaction_id)
            return copy.deepcopy(row) if row else None

    def create_transaction(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            if row["id"] in self._transactions:
                raise RepositoryError(f"Transaction already exists: {row['id']}")
            self._transactions[str(row["id"])] = copy.deepcopy(row)
            return copy.deepcopy(row)

    def update_transaction(self, transaction_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            existing = self._transactions.get(transaction_id)
            if not existing:
                raise RepositoryError(f"Transaction not found: {transaction_id}")
            existing.update(copy.deepcopy(updates))
            return copy.deepcopy(existing)

    def save_analysis(self, row: dict[str, Any]) -> dict[str, Any]:
        return self.update_transaction(str(row["transaction_id"]), {"ai_detection": row})

    def save_feedback(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            item = {"created_at": utc_now(), **row}
            self._feedback.append(item)
            return dict(item)

    def list_feedback(self, transaction_id: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._feedback
            if transaction_id:
                rows = [r for r in rows if r.get("transaction_id") == transaction_id]
            return [dict(r) for r in rows]


class InMemoryDisputeStore(DisputeStore):
    def __init__(self) -> None:
        self._lock = RLock()
        self._disputes: dict[str, dict[str, Any]] = {}

    @staticmethod
    def _aggregate(entry: dict[str, Any]) -> dict[str, Any]:
        out = dict(entry["row"])
        out["evidence"] = entry["evidence"]
        out["timeline"] = entry["timeline"]
        out["votes"] = entry["votes"]
        return copy.deepcopy(out)

    @staticmethod
    def _apply(entry: dict[str, Any], change: DisputeChange) -> None:
        entry["row"].update(change.updates)
        entry["row"]["updated_at"] = utc_now()
        entry["evidence"].extend(e.to_dict() for e in change.evidence)
        entry["timeline"].extend(e.to_dict() for e in change.events)
        entry["votes"].extend(v.to_dict() for v in change.votes)

    def create_dispute(self, row: dict[str, Any], change: DisputeChange) -> dict[str, Any]:
        with self._lock:
            if row["id"] in self._disputes:
                raise RepositoryError(f"Dispute already exists: {row['id']}")
            entry = {"row": dict(row), "evidence": [], "timeline": [], "votes": []}
            self._apply(entry, change)
            self._disputes[str(row["id"])] = entry
            return self._aggregate(entry)

    def commit(self, change: DisputeChange) -> dict[str, Any]:
        with self._lock:
            entry = self._disputes.get(change.dispute_id)
            if not entry:
                raise RepositoryError(f"Dispute not found: {change.dispute_id}")
            self._apply(entry, change)
            return self._aggregate(entry)

    def get_dispute(self, dispute_id: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._disputes.get(dispute_id)
            return self._aggregate(entry) if entry else None

    def list_disputes(
        self,
        transaction_id: str | None = None,
        status: str | None = None,
        limit: int = 500,
    ) -> list[dict[str, Any]]:
        with self._lock:
            entries = list(self._disputes.values())
            if transaction_id:
                entries = [e for e in entries if e["row"].get("transaction_id") == transaction_id]
            if status:
                entries = [e for e in entries if e["row"].get("status") == status]
            entries.sort(key=lambda e: str(e["row"].get("created_at", "")), reverse=True)
            return [self._aggregate(e) for e in entries[:limit]]

    def list_evidence(self, dispute_id: str) -> list[dict[str, Any]]:
        with self._lock:
            entry = self._disputes.get(dispute_id)
            return copy.deepcopy(entry["evidence"]) if entry else []

    def list_events(self, dispute_id: str) -> list[dict[str, Any]]:
        with self._lock:
            entry = self._disputes.get(dispute_id)
            return copy.deepcopy(entry["timeline"]) if entry else []


class _SupabaseTables:
    def __init__(self, client: Any) -> None:
        self.client = client

    def _insert_one(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        payload = dict(row)
        # Retry by dropping unknown columns reported by PostgREST schema cache.
        for _ in range(20):
            try:
                res = self.client.table(table).insert(payload).execute()
                if not res.data:
                    raise RepositoryError(f"Insert failed for {table}")
                return dict(res.data[0])
            except RepositoryError:
                raise
            except Exception as exc:
                missing_col = _extract_missing_column_name(str(exc))
                if missing_col and missing_col in payload:
                    logger.warning("Dropping column %s missing from %s", missing_col, table)
                    payload.pop(missing_col, None)
                    continue
                raise RepositoryError(f"Insert failed for {table}: {exc}") from exc
        raise RepositoryError(f"Insert failed for {table}: too many schema-mismatch retries")

    def _update(self, table: str, row_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        try:
            res = self.client.table(table).update(updates).eq("id", row_id).execute()
        except Exception as exc:
            raise RepositoryError(f"Update failed for {table} {row_id}: {exc}") from exc
        if not res.data:
            raise RepositoryError(f"Update failed for {table} {row_id}")
        return dict(res.data[0])

    def _delete(self, table: str, row_id: str) -> None:
        try:
            self.client.table(table).delete().eq("id", row_id).execute()
        except Exception as exc:
            raise RepositoryError(f"Delete failed for {table} {row_id}: {exc}") from exc

    def _run(self, table: str, query: Any) -> list[dict[str, Any]]:
        try:
            res = query.execute()
        except Exception as exc:
            raise RepositoryError(f"Query failed for {table}: {exc}") from exc
        return [dict(r) for r in (res.data or [])]

    def _select(self, table: str, **eq: Any) -> list[dict[str, Any]]:
        q = self.client.table(table).select("*")
        for key, value in eq.items():
            q = q.eq(key, value)
        return self._run(table, q)


class SupabaseTransactionRepository(_SupabaseTables, TransactionRepository):
    using_supabase = True

    def _latest_analyses(self, transaction_ids: list[str]) -> dict[str, dict[str, Any]]:
        if not transaction_ids:
            return {}
        query = (
            self.client.table("transaction_ai_analysis")
            .select("*")
            .in_("transaction_id", transaction_ids)
            .order("analysis_time", desc=True)
        )
        latest: dict[str, dict[str, Any]] = {}
        for row in self._run("transaction_ai_analysis", query):
            latest.setdefault(str(row["transaction_id"]), row)
        return latest

    def _with_analysis(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        latest = self._latest_analyses([str(r["id"]) for r in rows])
        return [{**r, "ai_detection": latest.get(str(r["id"]))} for r in rows]

    def list_transactions(self, flt: TransactionFilter) -> tuple[list[dict[str, Any]], int]:
        q = self.client.table("transactions").select("*", count="exact")
        if flt.wallet:
            q = q.or_(f"sender.eq.{flt.wallet},receiver.eq.{flt.wallet}")
        if flt.start:
            q = q.gte("timestamp", flt.start)
        if flt.end:
            q = q.lte("timestamp", flt.end)
        q = q.order("timestamp", desc=True).range(flt.offset, flt.offset + flt.limit - 1)
        try:
            res = q.execute()
        except Exception as exc:
            raise RepositoryError(f"Transaction query failed: {exc}") from exc
        rows = [dict(r) for r in (res.data or [])]
        return self._with_analysis(rows), int(res.count or 0)

    def get_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        rows = self._select("transactions", id=transaction_id)
        if not rows:
            return None
        return self._with_analysis(rows[:1])[0]

    def create_transaction(self, row: dict[str, Any]) -> dict[str, Any]:
        payload = {k: v for k, v in row.items() if k != "ai_detection"}
        return {**self._insert_one("transactions", payload), "ai_detection": None}

    def update_transaction(self, transaction_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        self._update("transactions", transaction_id, updates)
        row = self.get_transaction(transaction_id)
        if not row:
            raise RepositoryError(f"Transaction not found: {transaction_id}")
        return row

    def save_analysis(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._insert_one("transaction_ai_analysis", row)

    def save_feedback(self, row: dict[str, Any]) -> dict[str, Any]:
        return self._insert_one("ai_feedback", {"created_at": utc_now(), **row})


class SupabaseDisputeStore(_SupabaseTables, DisputeStore):
    using_supabase = True

    def _rollback(self, written: list[tuple[str, str]]) -> None:
        for table, row_id in reversed(written):
            try:
                self._delete(table, row_id)
            except RepositoryError:
                logger.exception("Could not roll back %s row %s", table, row_id)

    def _write_children(self, change: DisputeChange) -> list[tuple[str, str]]:
        """Insert child rows; on failure remove the ones already written."""
        rows = [("dispute_votes", v.to_dict()) for v in change.votes]
        rows += [("dispute_evidence", e.to_dict()) for e in change.evidence]
        rows += [("dispute_events", e.to_dict()) for e in change.events]

        # Votes first: the (dispute_id, voter_id) unique index rejects a double vote
        # before any other row lands.
        written: list[tuple[str, str]] = []
        try:
            for table, row in rows:
                self._insert_one(table, row)
                written.append((table, str(row["id"])))
        except RepositoryError:
            self._rollback(written)
            raise
        return written

    def _ordered(self, table: str, dispute_id: str, order_by: str) -> list[dict[str, Any]]:
        return self._run(table, self.client.table(table).select("*").eq("dispute_id", dispute_id).order(order_by))

    def _aggregate(self, row: dict[str, Any]) -> dict[str, Any]:
        dispute_id = str(row["id"])
        return {
            **row,
            "evidence": self.list_evidence(dispute_id),
            "timeline": self.list_events(dispute_id),
            "votes": self._ordered("dispute_votes", dispute_id, "cast_at"),
        }

    def create_dispute(self, row: dict[str, Any], change: DisputeChange) -> dict[str, Any]:
        created = self._insert_one("disputes", {**row, **change.updates})
        try:
            self._write_children(change)
        except RepositoryError:
            self._rollback([("disputes", str(created["id"]))])
            raise
        return self._aggregate(created)

    def commit(self, change: DisputeChange) -> dict[str, Any]:
        """Write child rows, then the dispute row.

        If the dispute update fails the child rows are deleted again, so a vote is
        never recorded without its tally.
        """
        written = self._write_children(change)
        try:
            updated = self._update("disputes", change.dispute_id, {**change.updates, "updated_at": utc_now()})
        except RepositoryError:
            self._rollback(written)
            raise
        return self._aggregate(updated)

    def get_dispute(self, dispute_id: str) -> dict[str, Any] | None:
        rows = self._select("disputes", id=dispute_id)
        return self._aggregate(rows[0]) if rows else None

    def list_disputes(
        self,
        transaction_id: str | None = None,
        status: str | None = None,
        limit: int = 500,
    ) -> list[dict[str, Any]]:
        q = self.client.table("disputes").select("*").order("created_at", desc=True).limit(limit)
        if transaction_id:
            q = q.eq("transaction_id", transaction_id)
        if status:
            q = q.eq("status", status)
        return [self._aggregate(r) for r in self._run("disputes", q)]

    def list_evidence(self, dispute_id: str) -> list[dict[str, Any]]:
        return self._ordered("dispute_evidence", dispute_id, "uploaded_at")

    def list_events(self, dispute_id: str) -> list[dict[str, Any]]:
        return self._ordered("dispute_events", dispute_id, "timestamp")


def build_repositories(seed_rows: list[dict[str, Any]] | None = None) -> tuple[TransactionRepository, DisputeStore]:
    if settings.persistence_backend == "supabase":
        client, err = get_supabase_client()
        if client is not None:
            return SupabaseTransactionRepository(client), SupabaseDisputeStore(client)
        logger.warning("Supabase persistence unavailable, using memory: %s", err)
    return InMemoryTransactionRepository(seed_rows), InMemoryDisputeStore()
