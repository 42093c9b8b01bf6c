"""Turn an incoming ``image`` field into one stored, fetchable URL.

Accepted shapes: a multipart file upload, an ``http(s)://`` or ``data:``
URL, or an absolute / ``~``-relative local path. With a media host configured
everything ends up there; otherwise bytes are written under the public
uploads directory and remote URLs are stored as given.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
from pathlib import Path, PurePath

from starlette.datastructures import UploadFile

from devevent.errors import ImageNotFound, InvalidInput
from devevent.media import CloudinaryBackend

log = logging.getLogger(__name__)

URL_PREFIXES = ("http://", "https://", "data:")
_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:\\")
_EXTENSION = re.compile(r"^[A-Za-z0-9]+$")


def is_local_path(value: str) -> bool:
    return value.startswith(("/", "~")) or bool(_WINDOWS_DRIVE.match(value))


def _extension(name: str | None) -> str:
    ext = PurePath(name or "").suffix.lstrip(".").lower()
    return ext if ext and _EXTENSION.match(ext) else "png"


class ImageResolver:
    """Resolves one image input to a URL, via the media host or local disk."""

    def __init__(
        self,
        backend: CloudinaryBackend | None,
        uploads_dir: Path,
        *,
        url_path: str = "/uploads",
        home: str | None = None,
    ) -> None:
        self.backend = backend
        self.uploads_dir = Path(uploads_dir)
        self.url_path = url_path.rstrip("/")
        self.home = home or str(Path.home())

    async def resolve(self, value: UploadFile | str | None) -> str:
        """Return the stored image URL, or ``""`` when nothing was supplied."""
        if isinstance(value, UploadFile):
            data = await value.read()
            return await self.store_bytes(data, value.filename)
        if value is None:
            return ""
        s = str(value).strip()
        if not s:
            return ""
        if s.startswith(URL_PREFIXES):
            if self.backend:
                return await self.backend.upload_url(s)
            return s
        if is_local_path(s):
            return await self.store_local_file(s)
        raise InvalidInput(
            "send a File, a data URL, an http(s) URL, or an absolute file path",
            message="Invalid image field",
        )

    async def store_local_file(self, raw_path: str) -> str:
        path = raw_path
        # Only "~" and "~/..." mean the configured home; "~user" is left as given
        if path == "~" or path.startswith("~/"):
            path = self.home + path[1:]
        local = Path(path)
        if not local.exists():
            raise ImageNotFound(f"File not found: {path}", message="File not found")
        data = await asyncio.to_thread(local.read_bytes)
        return await self.store_bytes(data, local.name)

    async def store_bytes(self, data: bytes, filename: str | None) -> str:
        if self.backend:
            return await self.backend.upload_bytes(data, filename or "upload")
        return await self._write_upload(data, _extension(filename))

    async def _write_upload(self, data: bytes, ext: str) -> str:
        name = f"{secrets.token_hex(16)}.{ext}"
        target = self.uploads_dir / name

        def write() -> None:
            self.uploads_dir.mkdir(parents=True, exist_ok=True)
            # "xb" refuses to clobber an existing file
            with open(target, "xb") as fh:
                fh.write(data)

        await asyncio.to_thread(write)
        log.debug("Stored upload locally at %s", target)
        return f"{self.url_path}/{name}"
