"""
Vercel Blob file storage client (REST API over httpx).

Used for attachment uploads and for the storage health report. Requires
BLOB_READ_WRITE_TOKEN; without it ``ping()`` is False and uploads raise.
"""

from typing import Any, Dict, List, Optional

import httpx

from oms.core.config import OMSConfig
from oms.errors import BlobStorageError
from oms.utils.logger import get_logger

logger = get_logger("blob")

API_VERSION = "7"


class BlobStorage:
    """
    Thin client for the Vercel Blob REST API.

    ``transport`` lets tests plug in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        token: str,
        base_url: str = "https://blob.vercel-storage.com",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.token = token
        self.base_url = base_url.rstrip("/")
        self._client = None
        if token:
            self._client = httpx.Client(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "x-api-version": API_VERSION,
                },
                timeout=timeout,
                transport=transport,
            )

    @classmethod
    def from_config(cls, config: OMSConfig) -> "BlobStorage":
        return cls(token=config.blob_token, base_url=config.blob_base_url)

    @property
    def configured(self) -> bool:
        return self._client is not None

    def upload_file(self, filename: str, content: bytes, content_type: str = "application/octet-stream") -> Dict[str, Any]:
        """
        Upload ``content`` as a public blob named ``filename``.

        Returns:
            {"url", "pathname", "size"}
        """
        if self._client is None:
            raise BlobStorageError("Blob storage not configured", filename=filename)
        logger.info("blob: method=upload pathname=%s size=%d", filename, len(content))
        try:
            resp = self._client.put(
                f"/{filename.lstrip('/')}",
                content=content,
                headers={"x-content-type": content_type, "x-add-random-suffix": "1"},
            )
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("blob: upload failed pathname=%s error=%s", filename, e)
            raise BlobStorageError("Failed to upload file", filename=filename, error=str(e)) from e
        return {
            "url": body.get("url"),
            "pathname": body.get("pathname", filename),
            "size": len(content),
        }

    def delete_file(self, url: str) -> bool:
        if self._client is None:
            return False
        try:
            resp = self._client.post("/delete", json={"urls": [url]})
            resp.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning("blob: delete failed url=%s error=%s", url, e)
            return False

    def list_files(self, prefix: str = "", limit: int = 1000) -> List[Dict[str, Any]]:
        if self._client is None:
            return []
        params: Dict[str, Any] = {"limit": limit}
        if prefix:
            params["prefix"] = prefix
        try:
            resp = self._client.get("/", params=params)
            resp.raise_for_status()
            return list(resp.json().get("blobs", []))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("blob: list failed prefix=%s error=%s", prefix, e)
            return []

    def ping(self) -> bool:
        """True when the blob API answers an authenticated list request."""
        if self._client is None:
            return False
        try:
            resp = self._client.get("/", params={"limit": 1})
            return resp.status_code < 400
        except httpx.HTTPError:
            return False

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
