from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Protocol

import requests
from groq import AsyncGroq

from blockfraud.config import settings
from blockfraud.contracts.payloads import OracleRequest
from blockfraud.domain.errors import OracleUnavailable


logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a blockchain fraud detection AI. You analyze transaction data and detect "
    "potential fraud patterns. Always respond with valid JSON."
)


class FraudOracle(Protocol):
    name: str

    async def analyze(self, request: OracleRequest) -> dict[str, Any]:
        ...


def build_prompt(tx: dict[str, Any]) -> str:
    return (
        "Analyze this blockchain transaction for potential fraud:\n"
        f"- Sender: {tx.get('sender')}\n"
        f"- Receiver: {tx.get('receiver')}\n"
        f"- Amount: {tx.get('amount')} {tx.get('currency')}\n"
        f"- Transaction status: {tx.get('status')}\n"
        f"- Risk level indicated: {tx.get('riskLevel')}\n"
        f"- Location data: {json.dumps(tx.get('location') or {})}\n"
        f"- Transaction metadata: {json.dumps(tx.get('metadata') or {})}\n\n"
        "Consider transaction amount, parties involved, location and any unusual patterns. "
        "Return strict JSON with keys: fraudScore (0-100, higher means more likely fraudulent), "
        'verdict ("legitimate", "suspicious" or "fraudulent"), confidence (0-100), '
        "details (object with flaggedPatterns, similarCases, recommendation)."
    )


def extract_json(text: str) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"\{[\s\S]*\}", text)
        if not match:
            raise OracleUnavailable("Could not extract JSON from model response")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise OracleUnavailable("Could not parse model response as JSON") from exc
    if not isinstance(data, dict):
        raise OracleUnavailable("Model response must be a JSON object")
    return data


class GroqFraudOracle:
    name = "groq"

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        self.client = AsyncGroq(api_key=api_key or settings.groq_api_key)
        self.model = model or settings.groq_model

    async def analyze(self, request: OracleRequest) -> dict[str, Any]:
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                temperature=0,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(request.transaction)},
                ],
            )
        except Exception as exc:
            raise OracleUnavailable(f"Groq request failed: {exc}") from exc

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise OracleUnavailable("Groq returned an empty completion")
        return extract_json(content)


class EdgeFunctionOracle:
    """Calls the ``analyze-transaction`` Supabase edge function."""

    name = "edge"

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.url = f"{(base_url or settings.supabase_url).rstrip('/')}/functions/v1/analyze-transaction"
        self.api_key = api_key if api_key is not None else settings.supabase_key
        self.timeout = timeout or settings.oracle_timeout_seconds
        self.session = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _post(self, request: OracleRequest) -> dict[str, Any]:
        body = {"transaction": {"id": request.transaction_id, **request.transaction}}
        try:
            res = self.session.post(self.url, json=body, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise OracleUnavailable(f"Edge function request error: {exc}") from exc

        if res.status_code >= 400:
            raise OracleUnavailable(f"Edge function error [{res.status_code}] {res.text[:300]}")
        try:
            data = res.json()
        except ValueError as exc:
            raise OracleUnavailable("Edge function returned non-JSON response") from exc
        if not isinstance(data, dict) or "error" in data:
            raise OracleUnavailable(f"Edge function returned an error payload: {str(data)[:300]}")
        return data

    async def analyze(self, request: OracleRequest) -> dict[str, Any]:
        return await asyncio.to_thread(self._post, request)


def build_oracle() -> FraudOracle | None:
    backend = settings.oracle_backend
    if backend == "groq" and settings.groq_api_key:
        return GroqFraudOracle()
    if backend == "edge" and settings.supabase_url and settings.supabase_key:
        return EdgeFunctionOracle()
    if backend not in {"none", ""}:
        logger.warning("Oracle backend %r not configured, analysis will use fallback scoring", backend)
    return None
