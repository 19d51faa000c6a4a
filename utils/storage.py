from __future__ import annotations

from typing import Dict, Optional

import httpx

from utils.config import Settings
from utils.errors import Misconfigured, UpstreamFailure
from utils.logger import get_logger

logger = get_logger("storage")

_STORAGE_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


class ObjectStorage:
    """Private bucket on a hosted storage REST API (``/storage/v1``)."""

    def __init__(
        self,
        base_url: Optional[str],
        service_key: Optional[str],
        bucket: str,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._service_key = service_key
        self.bucket = bucket
        self._client = client or httpx.Client(timeout=_STORAGE_TIMEOUT)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStorage":
        return cls(settings.storage_url, settings.storage_service_key, settings.storage_bucket)

    @property
    def configured(self) -> bool:
        return bool(self._base_url and self._service_key)

    def _headers(self) -> Dict[str, str]:
        if not self.configured:
            raise Misconfigured("Object storage not configured")
        return {"Authorization": f"Bearer {self._service_key}", "apikey": self._service_key or ""}

    def _object_url(self, path: str) -> str:
        return f"{self._base_url}/storage/v1/object/{self.bucket}/{path}"

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        headers = self._headers()
        headers.update({"Content-Type": content_type, "x-upsert": "false"})
        try:
            response = self._client.post(self._object_url(path), content=data, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Upload of %s failed: %s", path, exc)
            raise UpstreamFailure("Failed to upload file", status_code=500) from exc

    def remove(self, path: str) -> None:
        try:
            response = self._client.request(
                "DELETE",
                f"{self._base_url}/storage/v1/object/{self.bucket}",
                json={"prefixes": [path]},
                headers=self._headers(),
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Removal of %s failed: %s", path, exc)
            raise UpstreamFailure("Failed to remove file") from exc

    def create_signed_url(self, path: str, expires_in: int = 3600) -> Optional[str]:
        try:
            response = self._client.post(
                f"{self._base_url}/storage/v1/object/sign/{self.bucket}/{path}",
                json={"expiresIn": expires_in},
                headers=self._headers(),
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Could not sign %s: %s", path, exc)
            return None
        signed = response.json().get("signedURL")
        if not signed:
            return None
        return f"{self._base_url}/storage/v1{signed}"
