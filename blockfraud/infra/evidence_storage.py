from __future__ import annotations

import hashlib
import logging
import re
from typing import Callable, Protocol

import requests

from blockfraud.config import settings


logger = logging.getLogger(__name__)

ContentRefValidator = Callable[[str], bool]

_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_CID_V0 = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")
_CID_V1_BASE32 = re.compile(r"^b[a-z2-7]{58,}$")


class EvidenceStorageError(RuntimeError):
    pass


def is_content_address(ref: str) -> bool:
    """Accept CIDv0 (``Qm...``) and base32 CIDv1 (``b...``) references."""
    ref = (ref or "").strip()
    return bool(_CID_V0.match(ref) or _CID_V1_BASE32.match(ref))


def _b58encode(raw: bytes) -> str:
    num = int.from_bytes(raw, "big")
    out = ""
    while num:
        num, rem = divmod(num, 58)
        out = _B58_ALPHABET[rem] + out
    pad = len(raw) - len(raw.lstrip(b"\0"))
    return "1" * pad + out


def content_address(data: bytes) -> str:
    """Base58btc sha2-256 multihash of ``data`` (CIDv0 form)."""
    digest = hashlib.sha256(data).digest()
    return _b58encode(b"\x12\x20" + digest)


def gateway_url(ref: str, gateway: str | None = None) -> str:
    return f"{(gateway or settings.ipfs_gateway_url).rstrip('/')}/{ref}"


class EvidenceStorage(Protocol):
    def put(self, filename: str, data: bytes) -> str:
        ...


class LocalEvidenceStorage:
    """Keeps blobs in process memory, addressed by their CIDv0-style hash."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    def put(self, filename: str, data: bytes) -> str:
        ref = content_address(data)
        self._blobs[ref] = data
        return ref

    def get(self, ref: str) -> bytes | None:
        return self._blobs.get(ref)


class IpfsEvidenceStorage:
    def __init__(self, api_url: str | None = None, timeout: float = 30, session: requests.Session | None = None) -> None:
        self.api_url = (api_url or settings.ipfs_api_url).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def put(self, filename: str, data: bytes) -> str:
        try:
            res = self.session.post(
                f"{self.api_url}/api/v0/add",
                params={"cid-version": 0, "pin": "true"},
                files={"file": (filename, data)},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise EvidenceStorageError(f"IPFS upload failed: {exc}") from exc
        if res.status_code >= 400:
            raise EvidenceStorageError(f"IPFS upload failed [{res.status_code}] {res.text[:300]}")
        try:
            ref = str(res.json()["Hash"])
        except (ValueError, KeyError) as exc:
            raise EvidenceStorageError("IPFS add returned no Hash") from exc
        logger.info("Uploaded evidence %s to IPFS as %s", filename, ref)
        return ref


def build_evidence_storage() -> EvidenceStorage:
    if settings.ipfs_api_url:
        return IpfsEvidenceStorage()
    return LocalEvidenceStorage()
