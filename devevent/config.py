"""Environment-driven settings for the DevEvent API."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Required: a missing value fails at startup.
    database_url: str

    # Media host. Either the single URL form or the explicit trio.
    cloudinary_url: str | None = None
    cloudinary_cloud_name: str | None = None
    cloudinary_api_key: str | None = None
    cloudinary_api_secret: str | None = None
    media_folder: str = "DevEvent"

    # Base of the public site; the revalidation hint is POSTed here.
    public_base_url: str = "http://localhost:3000"
    revalidate_timeout: float = 5.0

    # Used for ``~`` expansion of local image paths.
    home: str | None = None

    uploads_dir: Path = Path("public") / "uploads"
    uploads_url_path: str = "/uploads"
    seed_dir: Path | None = None

    log_level: str = "INFO"
    cors_origins: list[str] = ["*"]

    @property
    def has_media_backend(self) -> bool:
        return bool(self.cloudinary_url or self.cloudinary_cloud_name)

    @property
    def database_path(self) -> str:
        """Filesystem path (or ``:memory:``) named by ``database_url``."""
        url = self.database_url
        if url.startswith("sqlite") and ":///" in url:
            return url.split(":///", 1)[1]
        return url

    @property
    def home_dir(self) -> str:
        return self.home or str(Path.home())


@lru_cache
def get_settings() -> Settings:
    return Settings()
