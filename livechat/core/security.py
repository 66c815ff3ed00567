from __future__ import annotations

import hashlib
import hmac
import secrets

API_KEY_PREFIX = "lc_"
API_KEY_BYTES = 32


def generate_api_key() -> str:
    return f"{API_KEY_PREFIX}{secrets.token_urlsafe(API_KEY_BYTES)}"


def hash_api_key(raw_key: str, secret: str) -> str:
    if not raw_key:
        raise ValueError("API key cannot be empty.")

    digest = hmac.new(
        secret.encode("utf-8"),
        raw_key.strip().encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return digest

