from __future__ import annotations

from urllib.parse import urlencode

from app.core.config import settings
from app.core.crypto import RetrievalTokenError, decrypt_json, encrypt_json


def issue_retrieval_url(key: str) -> str:
    """
    Time-limited URL for a stored artifact. The token is a Fernet message, so
    its timestamp is signed and checked against the TTL on the way back in.
    """
    token = encrypt_json({"k": key})
    base = settings.public_base_url.rstrip("/")
    return f"{base}/v1/artifacts?{urlencode({'token': token})}"


def resolve_retrieval_token(token: str) -> str:
    data = decrypt_json(token, ttl_seconds=settings.retrieval_url_ttl_seconds)
    key = data.get("k")
    # upload grants share the key format but never read anything back
    if "op" in data or not isinstance(key, str) or not key:
        raise RetrievalTokenError("token carries no artifact key")
    return key
