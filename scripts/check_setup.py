from __future__ import annotations

import json

import requests

from blockfraud.config import settings

TABLES = [
    "transactions",
    "transaction_ai_analysis",
    "ai_feedback",
    "disputes",
    "dispute_evidence",
    "dispute_events",
    "dispute_votes",
]


def probe(url: str, headers: dict[str, str] | None = None) -> tuple[int | None, str]:
    try:
        res = requests.get(url, headers=headers or {}, timeout=20)
        return res.status_code, res.text[:200]
    except requests.RequestException as exc:
        return None, str(exc)


def main() -> None:
    key = settings.supabase_key

    print("== ENV VALIDATION ==")
    print(json.dumps({
        "PERSISTENCE_BACKEND": settings.persistence_backend,
        "SUPABASE_URL_VALID": settings.supabase_url_valid(),
        "SUPABASE_KEY_PRESENT": settings.supabase_key_present(),
        "ORACLE_BACKEND": settings.oracle_backend,
        "GROQ_KEY_PRESENT": bool(settings.groq_api_key),
        "IPFS_API_URL": settings.ipfs_api_url or None,
        "DISPUTE_POLICY": {
            "min_evidence": settings.dispute_min_evidence,
            "quorum": settings.dispute_quorum,
            "auto_start_voting": settings.dispute_auto_start_voting,
            "auto_resolve": settings.dispute_auto_resolve,
        },
    }, indent=2))

    if settings.supabase_url_valid() and key:
        print("\n== SUPABASE TABLES ==")
        headers = {"apikey": key, "Authorization": f"Bearer {key}"}
        for table in TABLES:
            status, detail = probe(f"{settings.supabase_url}/rest/v1/{table}?select=id&limit=1", headers)
            print(f"{table}: status={status}")
            if status is None or status >= 400:
                print(f"  detail={detail}")
    else:
        print("\nsupabase: skipped (fix SUPABASE_URL/SUPABASE_KEY for persistence checks)")

    if settings.groq_api_key:
        status, detail = probe(
            "https://api.groq.com/openai/v1/models",
            headers={"Authorization": f"Bearer {settings.groq_api_key}"},
        )
        print(f"groq_models: status={status}")
        if status is None or status >= 400:
            print(f"  detail={detail}")
    else:
        print("groq_models: skipped (no GROQ_API_KEY)")

    if settings.ipfs_api_url:
        try:
            res = requests.post(f"{settings.ipfs_api_url}/api/v0/version", timeout=10)
            print(f"ipfs_version: status={res.status_code}")
        except requests.RequestException as exc:
            print(f"ipfs_version: failed ({exc})")


if __name__ == "__main__":
    main()
