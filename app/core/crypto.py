import json
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from app.core.config import settings


class RetrievalTokenError(Exception):
    pass


@lru_cache(maxsize=1)
def _fernet() -> Fernet:
    return Fernet(settings.url_signing_key.get_secret_value().encode("utf-8"))


def encrypt_json(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    token = _fernet().encrypt(raw)
    return token.decode("utf-8")


def decrypt_json(token: str, *, ttl_seconds: int | None = None) -> dict:
    try:
        raw = _fernet().decrypt(token.encode("utf-8"), ttl=ttl_seconds)
    except InvalidToken as e:
        raise RetrievalTokenError("invalid or expired token") from e
    return json.loads(raw.decode("utf-8"))
