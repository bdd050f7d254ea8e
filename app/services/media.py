from __future__ import annotations

import logging
import mimetypes
import posixpath
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from urllib.parse import urlparse

from app.services.http_client import HubHttpClient
from app.services.storage import LocalObjectStore, ObjectNotFound


log = logging.getLogger(__name__)

# Client uploads land here before a submission is processed
UPLOAD_PREFIX = "uploads/"
DEFAULT_EXTENSION = "jpg"
DEFAULT_CONTENT_TYPE = "image/jpeg"

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/heic": "heic",
}


class MediaRelocationError(Exception):
    def __init__(self, message: str, *, failures: list[tuple[str, str]], retryable: bool = False):
        super().__init__(message)
        self.failures = failures
        self.retryable = retryable


@dataclass
class MediaRelocation:
    images: list[str] = field(default_factory=list)
    # (source, reason)
    failures: list[tuple[str, str]] = field(default_factory=list)
    retryable_failures: int = 0


def listing_folder(owner: str, listing_id: str) -> str:
    return f"users/{owner}/listings/{listing_id}"


def user_folder(user_id: str) -> str:
    return f"users/{user_id}"


def _extension_for(source: str) -> str:
    path = urlparse(source).path if "://" in source else source
    suffix = PurePosixPath(path).suffix.lower().lstrip(".")
    if suffix and suffix.isalnum() and len(suffix) <= 5:
        return suffix
    return DEFAULT_EXTENSION


def _staging_key(source: str) -> str | None:
    # the key must still point inside the upload area once ".." segments are folded
    key = posixpath.normpath(source)
    if not key.startswith(UPLOAD_PREFIX) or "\\" in key:
        return None
    return key


def _content_type_for(ext: str, declared: str | None = None) -> str:
    if declared:
        return declared.split(";")[0].strip().lower()
    guessed, _ = mimetypes.guess_type(f"x.{ext}")
    return guessed or DEFAULT_CONTENT_TYPE


async def relocate_images(
    *,
    store: LocalObjectStore,
    http: HubHttpClient,
    sources: list[str],
    folder: str,
    max_bytes: int,
    timeout_seconds: float | None = None,
) -> MediaRelocation:
    """
    Move submitted images into the listing's permanent folder.

    Upload keys are copied then removed from the upload area; http(s) sources
    are downloaded into place. Each item succeeds or fails on its own and a
    failed item is skipped. Raises MediaRelocationError only when nothing
    could be moved.
    """
    result = MediaRelocation()
    folder = folder.rstrip("/")

    for index, source in enumerate(sources):
        scheme = urlparse(source).scheme

        if scheme in ("http", "https"):
            fetched = await http.fetch_bytes(url=source, max_bytes=max_bytes, timeout_seconds=timeout_seconds)
            if not fetched.ok:
                log.warning("media: fetch failed source=%s code=%s", source, fetched.error_code)
                result.failures.append((source, fetched.error_code or "FETCH_FAILED"))
                if fetched.retryable:
                    result.retryable_failures += 1
                continue
            content_type = _content_type_for(_extension_for(source), fetched.content_type)
            ext = _EXTENSIONS.get(content_type) or _extension_for(source)
            dst_key = f"{folder}/image-{index + 1}.{ext}"
            store.put_bytes(
                key=dst_key,
                data=fetched.content,
                content_type=content_type,
                metadata={"source": source},
            )
            result.images.append(dst_key)
            continue

        if scheme or not source.startswith(UPLOAD_PREFIX):
            log.warning("media: unsupported image reference %s", source)
            result.failures.append((source, "UNSUPPORTED_SOURCE"))
            continue

        staged = _staging_key(source)
        if staged is None:
            log.warning("media: upload key leaves the upload area %s", source)
            result.failures.append((source, "INVALID_KEY"))
            continue

        dst_key = f"{folder}/image-{index + 1}.{_extension_for(staged)}"
        try:
            store.copy(src_key=staged, dst_key=dst_key)
        except ObjectNotFound:
            log.warning("media: upload not found %s", source)
            result.failures.append((source, "NOT_FOUND"))
            continue
        except ValueError:
            log.warning("media: invalid upload key %s", source)
            result.failures.append((source, "INVALID_KEY"))
            continue
        except OSError as e:
            log.warning("media: copy failed source=%s err=%s", source, e)
            result.failures.append((source, "COPY_FAILED"))
            result.retryable_failures += 1
            continue

        try:
            store.delete(staged)
        except OSError as e:
            # the copy already landed; a stale upload is harmless
            log.warning("media: could not remove upload %s err=%s", source, e)

        result.images.append(dst_key)

    if not result.images:
        raise MediaRelocationError(
            "No images could be processed",
            failures=result.failures,
            retryable=result.retryable_failures > 0,
        )

    log.info("media: moved %d/%d images into %s", len(result.images), len(sources), folder)
    return result


def delete_listing_media(store: LocalObjectStore, keys: list[str]) -> int:
    """Best-effort removal of a listing's stored images; returns how many went."""
    deleted = 0
    for key in keys:
        if "://" in key:
            continue
        try:
            store.delete(key)
            deleted += 1
        except (OSError, ValueError) as e:
            log.warning("media: failed to delete %s err=%s", key, e)
    return deleted
