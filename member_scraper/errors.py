"""Error taxonomy shared across the ingestion pipeline."""

from __future__ import annotations


class ScraperError(Exception):
    """Base class for every error raised by member-scraper."""


class AuthError(ScraperError):
    """Connecting to the source failed; fatal to the whole run."""


class FetchError(ScraperError):
    """A single target could not be scraped."""

    def __init__(self, target: str, reason: str) -> None:
        super().__init__(f"{target}: {reason}")
        self.target = target
        self.reason = reason


class ValidationError(ScraperError):
    """A raw record cannot be normalised into a MemberRecord."""


class PersistenceError(ScraperError):
    """Writing a record to the store failed."""


class StorageUnavailable(PersistenceError):
    """The store itself cannot be opened; fatal to the whole run."""


class ExportError(ScraperError):
    """Rendering or writing an export artifact failed."""


__all__ = [
    "AuthError",
    "ExportError",
    "FetchError",
    "PersistenceError",
    "ScraperError",
    "StorageUnavailable",
    "ValidationError",
]
