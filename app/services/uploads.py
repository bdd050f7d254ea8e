from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from urllib.parse import urlencode

from app.core.config import settings
from app.core.crypto import RetrievalTokenError, decrypt_json, encrypt_json
from app.services.media import UPLOAD_PREFIX


ALLOWED_UPLOAD_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


class UploadNotAllowed(ValueError):
    pass


@dataclass(frozen=True)
class UploadGrant:
    file_key: str
    content_type: str
    file_name: str


def staging_key(content_type: str, *, today: date | None = None) -> str:
    ext = ALLOWED_UPLOAD_TYPES[content_type]
    day = (today or date.today()).isoformat()
    return f"{UPLOAD_PREFIX}{day}/{uuid.uuid4()}.{ext}"


def issue_upload_target(*, file_name: str, content_type: str, today: date | None = None) -> dict[str, str | int]:
    """
    Reserve a staging key and sign a short-lived PUT target for it. The
    client uploads there, then lists the returned fileKey in its submission.
    """
    content_type = content_type.split(";")[0].strip().lower()
    if content_type not in ALLOWED_UPLOAD_TYPES:
        raise UploadNotAllowed(f"Invalid content type. Allowed types: {', '.join(ALLOWED_UPLOAD_TYPES)}")

    key = staging_key(content_type, today=today)
    token = encrypt_json({"op": "put", "k": key, "ct": content_type, "fn": file_name})
    base = settings.public_base_url.rstrip("/")
    return {
        "uploadUrl": f"{base}/v1/uploads?{urlencode({'token': token})}",
        "fileKey": key,
        "expiresIn": settings.upload_url_ttl_seconds,
    }


def resolve_upload_token(token: str) -> UploadGrant:
    data = decrypt_json(token, ttl_seconds=settings.upload_url_ttl_seconds)
    key = data.get("k")
    if data.get("op") != "put" or not isinstance(key, str) or not key.startswith(UPLOAD_PREFIX):
        raise RetrievalTokenError("token is not an upload grant")
    return UploadGrant(file_key=key, content_type=data.get("ct") or "", file_name=data.get("fn") or "")
