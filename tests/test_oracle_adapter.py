"""Tests for oracle adapters and response parsing"""

import asyncio

import pytest
import requests

from blockfraud.contracts.payloads import OracleRequest
from blockfraud.domain.errors import OracleUnavailable
from blockfraud.infra.oracle_adapter import EdgeFunctionOracle, build_prompt, extract_json


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


REQUEST = OracleRequest(
    transaction_id="3",
    transaction={"sender": "0x5678", "receiver": "0xefgh", "amount": 3.0, "currency": "ETH", "riskLevel": "high"},
)


def _oracle(session):
    return EdgeFunctionOracle(base_url="https://proj.supabase.co/", api_key="anon", timeout=2, session=session)


def test_extract_json_plain():
    assert extract_json('{"fraudScore": 10}') == {"fraudScore": 10}


def test_extract_json_from_surrounding_text():
    text = 'Here is the analysis:\n```json\n{"fraudScore": 80, "verdict": "fraudulent"}\n```'
    assert extract_json(text)["verdict"] == "fraudulent"


@pytest.mark.parametrize("text", ["no json here", "[1, 2, 3]", "{not: valid}"])
def test_extract_json_failures(text):
    with pytest.raises(OracleUnavailable):
        extract_json(text)


def test_build_prompt_mentions_fields():
    prompt = build_prompt(REQUEST.transaction)
    assert "3.0 ETH" in prompt
    assert "Risk level indicated: high" in prompt


def test_edge_oracle_posts_transaction():
    session = FakeSession(FakeResponse(payload={"fraudScore": 20, "verdict": "legitimate", "confidence": 75}))
    data = asyncio.run(_oracle(session).analyze(REQUEST))

    assert data["verdict"] == "legitimate"
    url, kwargs = session.calls[0]
    assert url == "https://proj.supabase.co/functions/v1/analyze-transaction"
    assert kwargs["json"]["transaction"]["id"] == "3"
    assert kwargs["headers"]["Authorization"] == "Bearer anon"
    assert kwargs["timeout"] == 2


@pytest.mark.parametrize(
    "session",
    [
        FakeSession(error=requests.Timeout("slow")),
        FakeSession(FakeResponse(status_code=502, text="bad gateway")),
        FakeSession(FakeResponse(payload=ValueError("not json"))),
        FakeSession(FakeResponse(payload={"error": "GROQ_API_KEY is not configured"})),
        FakeSession(FakeResponse(payload=["unexpected"])),
    ],
)
def test_edge_oracle_failures(session):
    with pytest.raises(OracleUnavailable):
        asyncio.run(_oracle(session).analyze(REQUEST))
