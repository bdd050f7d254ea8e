from __future__ import annotations
import json
import shutil
from pathlib import Path
from typing import Any


_META_SUFFIX = ".meta.json"
_FOLDER_MARKER = ".keep"


class ObjectNotFound(Exception):
    pass


class LocalObjectStore:
    """
    Key/value object store on the local filesystem.

    Keys are slash-separated paths under base_dir. Each object may carry a
    metadata sidecar ("<key>.meta.json") holding content type and tags,
    which copy() carries over to the destination.
    """

    def __init__(self, base_dir: str):
        self.base = Path(base_dir).resolve()
        self.base.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.base / key.lstrip("/")).resolve()
        if path != self.base and self.base not in path.parents:
            raise ValueError(f"Key escapes storage root: {key}")
        return path

    def _meta_path(self, key: str) -> Path:
        path = self._path(key)
        return path.with_name(path.name + _META_SUFFIX)

    def uri_for(self, key: str) -> str:
        return f"file://{self._path(key).as_posix()}"

    def put_bytes(
        self,
        *,
        key: str,
        data: bytes,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        if content_type or metadata:
            self._meta_path(key).write_text(
                json.dumps({"content_type": content_type, "metadata": dict(metadata or {})}),
                encoding="utf-8",
            )
        return self.uri_for(key)

    def get_bytes(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise ObjectNotFound(key)
        return path.read_bytes()

    def head(self, key: str) -> dict[str, Any]:
        if not self._path(key).is_file():
            raise ObjectNotFound(key)
        meta = self._meta_path(key)
        if meta.is_file():
            return json.loads(meta.read_text(encoding="utf-8"))
        return {"content_type": None, "metadata": {}}

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def copy(self, *, src_key: str, dst_key: str) -> str:
        src = self._path(src_key)
        if not src.is_file():
            raise ObjectNotFound(src_key)
        dst = self._path(dst_key)
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src, dst)

        src_meta = self._meta_path(src_key)
        if src_meta.is_file():
            shutil.copyfile(src_meta, self._meta_path(dst_key))
        return self.uri_for(dst_key)

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
        self._meta_path(key).unlink(missing_ok=True)

    def make_folder(self, prefix: str) -> str:
        folder = self._path(prefix.rstrip("/"))
        folder.mkdir(parents=True, exist_ok=True)
        (folder / _FOLDER_MARKER).touch(exist_ok=True)
        return prefix.rstrip("/") + "/"

    def folder_exists(self, prefix: str) -> bool:
        return self._path(prefix.rstrip("/")).is_dir()

