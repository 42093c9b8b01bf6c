"""Cloudinary media host client built on httpx.

Talks to the Cloudinary upload REST API directly: signed multipart POSTs to
``/v1_1/<cloud>/image/upload`` that return a ``secure_url``.
"""

from __future__ import annotations

import hashlib
import logging
import time
from urllib.parse import unquote, urlsplit

import httpx

from devevent.config import Settings

log = logging.getLogger(__name__)

API_BASE = "https://api.cloudinary.com/v1_1"


class MediaUploadError(RuntimeError):
    """The media host refused or failed an upload."""


class CloudinaryBackend:
    """Uploads image bytes or remote/data URLs into one Cloudinary folder."""

    def __init__(
        self,
        cloud_name: str,
        api_key: str | None,
        api_secret: str | None,
        *,
        folder: str = "DevEvent",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> CloudinaryBackend | None:
        """Build a backend when the environment names one, else ``None``."""
        if not settings.has_media_backend:
            return None
        cloud_name = settings.cloudinary_cloud_name
        api_key = settings.cloudinary_api_key
        api_secret = settings.cloudinary_api_secret
        if settings.cloudinary_url:
            # cloudinary://<api_key>:<api_secret>@<cloud_name>
            parts = urlsplit(settings.cloudinary_url)
            cloud_name = parts.hostname or cloud_name
            api_key = unquote(parts.username) if parts.username else api_key
            api_secret = unquote(parts.password) if parts.password else api_secret
        return cls(
            cloud_name or "",
            api_key,
            api_secret,
            folder=settings.media_folder,
        )

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            )
        return self._client

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    @property
    def endpoint(self) -> str:
        return f"{API_BASE}/{self.cloud_name}/image/upload"

    def sign(self, params: dict[str, str]) -> str:
        """SHA-1 signature over the sorted ``key=value`` pairs plus the secret."""
        payload = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k])
        return hashlib.sha1(f"{payload}{self.api_secret}".encode()).hexdigest()

    def _signed_fields(self) -> dict[str, str]:
        if not (self.cloud_name and self.api_key and self.api_secret):
            raise MediaUploadError(
                "Cloudinary credentials are incomplete: need cloud name, "
                "API key and API secret"
            )
        params = {"folder": self.folder, "timestamp": str(int(time.time()))}
        return {**params, "api_key": self.api_key, "signature": self.sign(params)}

    async def _post(
        self, fields: dict[str, str], files: dict | None = None
    ) -> str:
        client = await self._ensure_client()
        try:
            resp = await client.post(self.endpoint, data=fields, files=files)
        except httpx.TransportError as exc:
            raise MediaUploadError(f"Cloudinary upload failed: {exc}") from exc
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.is_error:
            detail = body.get("error", {}).get("message") or resp.text
            raise MediaUploadError(
                f"Cloudinary upload failed ({resp.status_code}): {detail}"
            )
        secure_url = body.get("secure_url")
        if not secure_url:
            raise MediaUploadError("Cloudinary response did not include a secure_url")
        log.info("Uploaded image to Cloudinary: %s", secure_url)
        return secure_url

    # ------------------------------------------------------------------
    # Upload contract
    # ------------------------------------------------------------------

    async def upload_bytes(self, data: bytes, filename: str = "upload") -> str:
        """Stream raw image bytes to the media host and return the secure URL."""
        fields = self._signed_fields()
        return await self._post(fields, files={"file": (filename, data)})

    async def upload_url(self, url: str) -> str:
        """Have the media host fetch an http(s) or data URL itself."""
        fields = self._signed_fields()
        return await self._post({**fields, "file": url})
