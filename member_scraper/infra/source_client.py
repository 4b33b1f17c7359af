"""Source clients yielding raw member records for a scrape target."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable
from urllib.parse import quote

import httpx
import structlog
import yaml

from ..config.models import DEFAULT_SEARCH_PATTERNS, LoginCredentials, SourceClientConfig
from ..errors import AuthError, FetchError

RawRecord = Mapping[str, Any]


@runtime_checkable
class SourceClient(Protocol):
    """Capability interface every source client satisfies."""

    def connect(self, credentials: LoginCredentials) -> None:
        """Authenticate against the source; raise ``AuthError`` on failure."""

    def scrape(self, target: str, max_members: int) -> list[RawRecord]:
        """Return up to ``max_members`` raw records; raise ``FetchError`` on failure."""

    def close(self) -> None:
        """Release underlying resources."""


def _member_key(raw: object) -> str | None:
    if not isinstance(raw, Mapping):
        return None
    for key in ("entity_id", "id", "user_id"):
        value = raw.get(key)
        if isinstance(value, (int, str)) and not isinstance(value, bool):
            return str(value)
    return None


class HttpSourceClient:
    """Talk to an HTTP bridge in front of the remote network."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        search_patterns: Iterable[str] = DEFAULT_SEARCH_PATTERNS,
        page_size: int = 50,
        request_delay: float = 0.0,
        transport: httpx.BaseTransport | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.base_url = base_url
        self.search_patterns = tuple(search_patterns) or ("",)
        self.page_size = page_size
        self.request_delay = request_delay
        self.logger = logger or structlog.get_logger("member_scraper.source")
        self._client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)
        self._connected = False

    def connect(self, credentials: LoginCredentials) -> None:
        payload = {
            "api_id": credentials.api_id,
            "api_hash": credentials.api_hash,
            "session": credentials.session_file,
        }
        try:
            response = self._client.post("/auth", json=payload)
        except httpx.HTTPError as exc:
            raise AuthError(f"cannot reach {self.base_url}: {exc}") from exc
        if response.status_code >= 400:
            raise AuthError(f"authentication rejected with HTTP {response.status_code}")
        try:
            token = response.json().get("token")
        except (ValueError, AttributeError) as exc:
            raise AuthError("authentication response is not a JSON object") from exc
        if not token:
            raise AuthError("authentication response carries no token")
        self._client.headers["Authorization"] = f"Bearer {token}"
        self._connected = True
        self.logger.info("source_connected", base_url=self.base_url)

    def scrape(self, target: str, max_members: int) -> list[RawRecord]:
        if not self._connected:
            raise FetchError(target, "client not connected")
        members: list[RawRecord] = []
        seen: set[str] = set()
        attempted = 0
        failures = 0
        for index, pattern in enumerate(self.search_patterns):
            if len(members) >= max_members:
                break
            if index and self.request_delay > 0:
                time.sleep(self.request_delay)
            attempted += 1
            limit = min(self.page_size, max_members - len(members))
            try:
                batch = self._fetch_page(target, pattern, limit)
            except _PageFailed as exc:
                failures += 1
                self.logger.warning("pattern_failed", target=target, pattern=pattern, error=str(exc))
                continue
            for raw in batch:
                key = _member_key(raw)
                if key is not None:
                    if key in seen:
                        continue
                    seen.add(key)
                members.append(raw)
                if len(members) >= max_members:
                    break
        if attempted and failures == attempted:
            raise FetchError(target, "every search pattern failed")
        self.logger.info("target_fetched", target=target, received=len(members))
        return members

    def _fetch_page(self, target: str, pattern: str, limit: int) -> list[RawRecord]:
        path = f"/groups/{quote(target, safe='@')}/members"
        try:
            response = self._client.get(path, params={"q": pattern, "limit": limit})
        except httpx.HTTPError as exc:
            raise _PageFailed(str(exc)) from exc
        if response.status_code == 404:
            raise FetchError(target, "target not found")
        if response.status_code in (401, 403):
            raise FetchError(target, f"not authorised (HTTP {response.status_code})")
        if response.status_code >= 400:
            raise _PageFailed(f"HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise _PageFailed("response is not JSON") from exc
        if isinstance(payload, Mapping):
            payload = payload.get("members", [])
        if not isinstance(payload, list):
            raise _PageFailed("response carries no member list")
        return payload

    def close(self) -> None:
        self._client.close()


class _PageFailed(Exception):
    """One search page failed; the remaining patterns are still tried."""


class FixtureSourceClient:
    """Replay member records from a YAML/JSON fixture.

    The fixture maps targets to record lists::

        auth:
          api_hash: secret        # optional, enforced by connect()
        targets:
          "@python":
            - {id: 1, username: alice}
    """

    def __init__(self, data: Mapping[str, Any]) -> None:
        targets = data.get("targets", {})
        if not isinstance(targets, Mapping):
            raise ValueError("fixture 'targets' must be a mapping")
        self.targets: dict[str, list[RawRecord]] = {str(k): list(v or []) for k, v in targets.items()}
        self.auth: Mapping[str, Any] = data.get("auth") or {}
        self.connected = False
        self.calls: list[tuple[str, int]] = []

    @classmethod
    def from_path(cls, path: Path) -> "FixtureSourceClient":
        text = Path(path).read_text(encoding="utf-8")
        if Path(path).suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text) or {}
        if not isinstance(data, Mapping):
            raise ValueError(f"Fixture file must contain a mapping: {path}")
        return cls(data)

    def connect(self, credentials: LoginCredentials) -> None:
        expected = self.auth.get("api_hash")
        if expected is not None and expected != credentials.api_hash:
            raise AuthError("fixture credentials do not match")
        self.connected = True

    def scrape(self, target: str, max_members: int) -> list[RawRecord]:
        self.calls.append((target, max_members))
        if not self.connected:
            raise FetchError(target, "client not connected")
        if target not in self.targets:
            raise FetchError(target, "target not found")
        return list(self.targets[target][:max_members])

    def close(self) -> None:
        self.connected = False


def build_source_client(
    config: SourceClientConfig,
    fixture_path: Path | None = None,
    logger: structlog.BoundLogger | None = None,
) -> SourceClient:
    """Create the client selected by configuration (or a fixture override)."""

    fixture = fixture_path or (config.fixture_path if config.kind == "fixture" else None)
    if fixture is not None:
        return FixtureSourceClient.from_path(fixture)
    if config.kind == "fixture":
        raise ValueError("fixture source selected but no fixture_path configured")
    return HttpSourceClient(
        config.base_url,
        timeout=config.timeout,
        search_patterns=config.search_patterns,
        page_size=config.page_size,
        request_delay=config.request_delay,
        logger=logger,
    )


__all__ = [
    "DEFAULT_SEARCH_PATTERNS",
    "FixtureSourceClient",
    "HttpSourceClient",
    "RawRecord",
    "SourceClient",
    "build_source_client",
]
