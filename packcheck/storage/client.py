from __future__ import annotations

import logging
from typing import Any

import requests

"""Blob store client for captured order photos.

Thin client over the storage REST API of the managed backend: upload by path,
public URL lookup and removal. Only the photo capture actions use it.
"""

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


class BlobStorageClient:
    """Session-based client with timeouts; one bucket per instance."""

    def __init__(
        self,
        base_url: str,
        bucket: str,
        api_key: str | None = None,
        *,
        timeout: int = 30,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url:
            raise StorageError("storage url is not configured")
        self.base = base_url.rstrip("/")
        self.bucket = bucket
        self.timeout = int(timeout)
        self.s = session or requests.Session()
        if api_key:
            self.s.headers.update({
                "Authorization": f"Bearer {api_key}",
                "apikey": api_key,
            })

    # ---------- helpers ----------
    def _object_url(self, path: str) -> str:
        return f"{self.base}/storage/v1/object/{self.bucket}/{path.lstrip('/')}"

    def _check(self, r: requests.Response, action: str) -> Any:
        try:
            r.raise_for_status()
        except requests.HTTPError as e:
            preview = (r.text or "")[:300]
            raise StorageError(f"{action} failed: {e} {preview}".strip()) from e
        try:
            return r.json()
        except ValueError:
            return None

    # ---------- objects ----------
    def upload(self, path: str, data: bytes, content_type: str = "image/jpeg") -> str:
        """Upload bytes to ``path`` inside the bucket; returns the path."""
        logger.info("upload object bucket=%s path=%s bytes=%d", self.bucket, path, len(data))
        try:
            r = self.s.post(
                self._object_url(path),
                data=data,
                headers={"Content-Type": content_type},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise StorageError(f"upload {path} failed: {e}") from e
        self._check(r, f"upload {path}")
        return path

    def public_url(self, path: str) -> str:
        return f"{self.base}/storage/v1/object/public/{self.bucket}/{path.lstrip('/')}"

    def remove(self, paths: list[str]) -> None:
        if not paths:
            return
        logger.info("remove objects bucket=%s paths=%s", self.bucket, paths)
        try:
            r = self.s.delete(
                f"{self.base}/storage/v1/object/{self.bucket}",
                json={"prefixes": paths},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise StorageError(f"remove {paths} failed: {e}") from e
        self._check(r, f"remove {paths}")


def object_path_from_url(url: str) -> str:
    """Blob path of a public URL: its last two segments (``<order>/<file>``)."""
    return "/".join(url.rstrip("/").split("/")[-2:])
