from __future__ import annotations

from typing import Any

from supabase import create_client

from blockfraud.config import settings


def _build_client(api_key: str) -> tuple[Any | None, str | None]:
    if not settings.supabase_url or not api_key:
        return None, "SUPABASE_URL or API key missing"

    if not settings.supabase_url_valid():
        return None, "SUPABASE_URL invalid (must look like https://<project-ref>.supabase.co)"

    try:
        client = create_client(settings.supabase_url, api_key)
        return client, None
    except Exception as exc:  # pragma: no cover
        return None, f"Supabase init failed: {exc}"


def get_supabase_client() -> tuple[Any | None, str | None]:
    return _build_client(settings.supabase_key)
