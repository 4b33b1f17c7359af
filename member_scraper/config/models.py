"""Pydantic models used across the member-scraper configuration flow."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_SEARCH_PATTERNS: tuple[str, ...] = ("", "a", "e", "i", "o", "u", "s", "t", "n", "r")

ExportFormat = Literal["json", "csv"]


class LoginCredentials(BaseModel):
    """Credentials handed to the source client's ``connect``."""

    api_id: int | None = None
    api_hash: str = ""
    session_file: str = "member_scraper.session"


class SourceClientConfig(BaseModel):
    """Which source client to build and how it talks to the remote side."""

    kind: Literal["http", "fixture"] = "http"
    base_url: str = "http://127.0.0.1:8080"
    fixture_path: Path | None = None
    timeout: float = 30.0
    page_size: int = 50
    request_delay: float = 0.0
    search_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_SEARCH_PATTERNS))
    credentials: LoginCredentials = Field(default_factory=LoginCredentials)

    @field_validator("fixture_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path | None:
        if value in (None, ""):
            return None
        return Path(value)

    @model_validator(mode="after")
    def _validate_limits(self) -> "SourceClientConfig":
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")
        if self.request_delay < 0:
            raise ValueError("request_delay must be >= 0")
        return self


class StorageConfig(BaseModel):
    """Location of the durable member table."""

    db_path: Path = Field(default=Path("data/members.db"))
    busy_timeout: float = 30.0

    @field_validator("db_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    def resolved_db_path(self, base_dir: Path) -> Path:
        """Return the database path relative to the project root."""

        if not self.db_path.is_absolute():
            return (base_dir / self.db_path).resolve()
        return self.db_path


class IngestionConfig(BaseModel):
    """Worker pool sizing and per-target limits."""

    workers: int = 4
    queue_size: int = 256
    default_max_members: int = 500

    @model_validator(mode="after")
    def _validate_pool(self) -> "IngestionConfig":
        if not 1 <= self.workers <= 32:
            raise ValueError("workers must be between 1 and 32")
        if self.queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        if self.default_max_members < 0:
            raise ValueError("default_max_members must be >= 0")
        return self


class ExportConfig(BaseModel):
    """Export artifact naming and formats."""

    base_name: str = "scrape_results"
    output_dir: Path = Field(default=Path("."))
    formats: list[ExportFormat] = Field(default_factory=lambda: ["json", "csv"])
    only_run_targets: bool = False

    @field_validator("output_dir", mode="before")
    @classmethod
    def _coerce_dir(cls, value: Any) -> Path:
        return Path(value)

    @field_validator("formats", mode="before")
    @classmethod
    def _coerce_formats(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            value = [part.strip() for part in value.split(",") if part.strip()]
        if not value:
            raise ValueError("at least one export format is required")
        return list(dict.fromkeys(str(item).lower() for item in value))

    @field_validator("base_name")
    @classmethod
    def _validate_base_name(cls, value: str) -> str:
        value = value.strip()
        if not value or "/" in value or "\\" in value:
            raise ValueError("base_name must be a plain file name prefix")
        return value


class GlobalConfig(BaseModel):
    """Top-level configuration shared by every run."""

    source: SourceClientConfig = Field(default_factory=SourceClientConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    enable_progress_bar: bool = True


__all__ = [
    "DEFAULT_SEARCH_PATTERNS",
    "ExportConfig",
    "ExportFormat",
    "GlobalConfig",
    "IngestionConfig",
    "LoginCredentials",
    "SourceClientConfig",
    "StorageConfig",
]
