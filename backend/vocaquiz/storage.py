from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .settings import settings

logger = logging.getLogger(__name__)

MEDIA_ROUTE = "/media"


class StorageError(RuntimeError):
    pass


class LocalObjectStorage:
    """
    Durable object storage on the local filesystem.

    Objects live under ``<root>/<bucket>/<key>`` and are served by the app's
    static mount, so the public URL is ``<public_base_url>/media/<bucket>/<key>``.
    Uploading to an existing key overwrites it.
    """

    def __init__(self, root: Optional[str] = None, *, bucket: Optional[str] = None, public_base_url: Optional[str] = None) -> None:
        self.root = Path(root or settings.storage_dir).resolve()
        self.bucket = bucket or settings.storage_bucket
        self.public_base_url = (public_base_url if public_base_url is not None else settings.public_base_url).rstrip("/")

    def _path_for(self, key: str) -> Path:
        bucket_dir = (self.root / self.bucket).resolve()
        path = (bucket_dir / key).resolve()
        if bucket_dir not in path.parents:
            raise StorageError(f"invalid object key: {key!r}")
        return path

    def upload(self, key: str, data: bytes, *, content_type: str = "application/octet-stream") -> str:
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(path.name + ".part")
            tmp.write_bytes(data)
            tmp.replace(path)
        except OSError as exc:
            raise StorageError(f"upload of {key} failed: {exc}") from exc
        logger.debug("Stored %d bytes (%s) at %s", len(data), content_type, key)
        return self.get_public_url(key)

    def get_public_url(self, key: str) -> str:
        return f"{self.public_base_url}{MEDIA_ROUTE}/{self.bucket}/{key}"

    def exists(self, key: str) -> bool:
        return self._path_for(key).is_file()
