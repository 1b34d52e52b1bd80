from __future__ import annotations

import os
import socket
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Secrets(BaseSettings):
    """Credentials, loaded from the environment or a secrets management service."""

    model_config = SettingsConfigDict(
        env_prefix="MEDIAAPP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    unsplash_access_key: Optional[str] = Field(default=None, description="Client-ID for the Unsplash API.")
    s3_access_key_id: Optional[str] = None
    s3_secret_access_key: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Secrets":
        return cls()


class Settings(BaseSettings):
    """Centralised runtime configuration for the media ingestion service."""

    model_config = SettingsConfigDict(
        env_prefix="MEDIAAPP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "MediaApp API"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./mediaapp.db",
        description="SQLAlchemy compatible DSN.",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for the search work queue.",
    )
    database_auto_create: bool = Field(
        default=True,
        description="Create missing tables at start-up; deployments running Alembic turn this off.",
    )

    work_queue_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Backend for the search work queue (memory keeps tasks in-process).",
    )
    work_queue_name: str = Field(default="photo_search_queue")
    publish_timeout_s: float = Field(default=5.0, gt=0, description="Upper bound for a single publish.")
    consume_poll_interval_s: float = Field(default=1.0, gt=0, description="Receive timeout between stop checks.")
    max_delivery_attempts: int = Field(
        default=5,
        ge=0,
        description="Deliveries before a failing task is dead-lettered (0 requeues forever).",
    )
    worker_concurrency: int = Field(default=1, ge=1, description="Number of consume loops per worker process.")
    worker_name: str = Field(default_factory=socket.gethostname)
    shutdown_grace_s: float = Field(default=2.0, ge=0)
    embedded_worker: bool = Field(
        default=True,
        description="Run a consumer inside the API process when the memory backend is active.",
    )

    admission_capacity: int = Field(default=5, ge=1, description="Concurrent expensive operations per process.")
    search_admission_wait_s: float = Field(default=1.0, gt=0, description="Wait bound on the search endpoint.")
    disconnect_poll_interval_s: float = Field(default=0.1, gt=0)

    unsplash_api_url: str = Field(default="https://api.unsplash.com")
    http_timeout_s: float = Field(default=10.0, gt=0)

    blob_backend: Literal["local", "s3"] = Field(default="local", description="Active blob store implementation.")
    local_blob_root: Path = Field(default_factory=lambda: Path("blobs"), description="Root for locally stored blobs.")
    blob_public_base_url: Optional[str] = Field(
        default=None,
        description="Base for public blob links (defaults to the S3 endpoint or a file URI).",
    )
    blob_key_prefix: str = Field(default="unsplash-photos")
    s3_endpoint_url: Optional[str] = None
    s3_bucket: str = Field(default="mediaapp-photos")
    s3_region: str = Field(default="us-east-1")

    secrets: Secrets = Field(default_factory=Secrets, description="Holds sensitive configuration.")

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()

    @property
    def embedded_worker_enabled(self) -> bool:
        return self.embedded_worker and self.work_queue_backend == "memory"


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "MEDIAAPP_ENV": "MEDIAAPP_ENVIRONMENT",
        "MEDIAAPP_DB_URL": "MEDIAAPP_DATABASE_URL",
        "MEDIAAPP_QUEUE_BACKEND": "MEDIAAPP_WORK_QUEUE_BACKEND",
        "UNSPLASH_API_KEY": "MEDIAAPP_UNSPLASH_ACCESS_KEY",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    settings = Settings()
    secrets = Secrets.from_settings(settings)

    if settings.environment_lower == "production" and not secrets.unsplash_access_key:
        raise ValueError("Production environment must configure an Unsplash access key.")

    settings.secrets = secrets
    return settings


__all__ = ["Secrets", "Settings", "get_settings"]
