from __future__ import annotations

import os
import re
from dataclasses import dataclass

from dotenv import load_dotenv


load_dotenv()

_TRUE = {"1", "true", "yes", "y", "on"}


def _get_config_value(*keys: str, default: str = "") -> str:
    for key in keys:
        value = os.getenv(key, "").strip()
        if value:
            return value
    return default


def _get_bool(*keys: str, default: bool = False) -> bool:
    raw = _get_config_value(*keys)
    if not raw:
        return default
    return raw.lower() in _TRUE


def _get_int(*keys: str, default: int) -> int:
    raw = _get_config_value(*keys)
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _pick_supabase_key() -> str:
    return (
        _get_config_value("SUPABASE_SERVICE_KEY", "SUPABASE_SERVICE_ROLE_KEY")
        or _get_config_value("SUPABASE_KEY")
        or _get_config_value("SUPABASE_ANON_KEY")
    )


@dataclass(frozen=True)
class Settings:
    app_env: str
    log_level: str
    persistence_backend: str
    supabase_url: str
    supabase_key: str
    oracle_backend: str
    groq_api_key: str
    groq_model: str
    oracle_timeout_seconds: float
    analysis_concurrency: int
    fallback_seed: int | None
    dispute_min_evidence: int
    dispute_quorum: int
    dispute_auto_start_voting: bool
    dispute_auto_resolve: bool
    event_bus_backend: str
    ipfs_api_url: str
    ipfs_gateway_url: str
    seed_demo_data: bool

    def supabase_url_valid(self) -> bool:
        # Must be project URL, not postgres DSN.
        return bool(re.match(r"^https://[a-z0-9-]+\.supabase\.co$", self.supabase_url))

    def supabase_key_present(self) -> bool:
        return bool(self.supabase_key)


def load_settings() -> Settings:
    seed_raw = _get_config_value("FALLBACK_SEED")
    return Settings(
        app_env=_get_config_value("APP_ENV", default="dev"),
        log_level=_get_config_value("LOG_LEVEL", default="INFO").upper(),
        persistence_backend=_get_config_value("PERSISTENCE_BACKEND", default="memory").lower(),
        supabase_url=_get_config_value("SUPABASE_URL").rstrip("/"),
        supabase_key=_pick_supabase_key(),
        oracle_backend=_get_config_value("ORACLE_BACKEND", default="none").lower(),
        groq_api_key=_get_config_value("GROQ_API_KEY"),
        groq_model=_get_config_value("GROQ_MODEL", default="llama-3.1-70b-versatile"),
        oracle_timeout_seconds=float(_get_config_value("ORACLE_TIMEOUT_SECONDS", default="10") or 10),
        analysis_concurrency=max(1, _get_int("ANALYSIS_CONCURRENCY", default=4)),
        fallback_seed=int(seed_raw) if seed_raw.lstrip("-").isdigit() else None,
        dispute_min_evidence=max(0, _get_int("DISPUTE_MIN_EVIDENCE", default=0)),
        dispute_quorum=max(0, _get_int("DISPUTE_QUORUM", "DISPUTE_MIN_VOTES", default=1)),
        dispute_auto_start_voting=_get_bool("DISPUTE_AUTO_START_VOTING", default=False),
        dispute_auto_resolve=_get_bool("DISPUTE_AUTO_RESOLVE", default=False),
        event_bus_backend=_get_config_value("EVENT_BUS_BACKEND", default="inmemory").lower(),
        ipfs_api_url=_get_config_value("IPFS_API_URL").rstrip("/"),
        ipfs_gateway_url=_get_config_value("IPFS_GATEWAY_URL", default="https://ipfs.io/ipfs").rstrip("/"),
        seed_demo_data=_get_bool("SEED_DEMO_DATA", default=True),
    )


settings = load_settings()
