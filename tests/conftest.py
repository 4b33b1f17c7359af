"""Shared fixtures: temporary stores, fake source clients and config repositories."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

import pytest
import yaml

from member_scraper.config import ConfigLocator, ConfigRepository, GlobalConfig
from member_scraper.engine import MemberRecord, MemberStore
from member_scraper.errors import AuthError, FetchError


class StubSourceClient:
    """In-memory client whose targets may return records or raise."""

    def __init__(
        self,
        targets: Mapping[str, Any] | None = None,
        connect_error: Exception | None = None,
    ) -> None:
        self.targets = dict(targets or {})
        self.connect_error = connect_error
        self.connected = False
        self.closed = False
        self.calls: list[tuple[str, int]] = []

    def connect(self, credentials) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def scrape(self, target: str, max_members: int) -> list[Mapping[str, Any]]:
        self.calls.append((target, max_members))
        if target not in self.targets:
            raise FetchError(target, "target not found")
        payload = self.targets[target]
        if isinstance(payload, Exception):
            raise payload
        if callable(payload):
            return payload(max_members)
        return list(payload)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def stub_client() -> Callable[..., StubSourceClient]:
    def _builder(targets: Mapping[str, Any] | None = None, **kwargs: Any) -> StubSourceClient:
        return StubSourceClient(targets, **kwargs)

    return _builder


@pytest.fixture
def auth_failing_client() -> StubSourceClient:
    return StubSourceClient(connect_error=AuthError("bad credentials"))


@pytest.fixture
def store(tmp_path: Path) -> Iterable[MemberStore]:
    member_store = MemberStore.open(tmp_path / "members.db")
    yield member_store
    member_store.close()


@pytest.fixture
def make_record() -> Callable[..., MemberRecord]:
    def _builder(entity_id: int = 1, source_group: str = "@python", **overrides: Any) -> MemberRecord:
        return MemberRecord(entity_id=entity_id, source_group=source_group, **overrides)

    return _builder


@pytest.fixture
def member_fixture(tmp_path: Path) -> Path:
    data = {
        "targets": {
            "@python": [
                {"id": 1, "username": "alice", "first_name": "Alice", "premium": True},
                {"id": 2, "username": "bob", "phone": "+100200"},
                {"username": "no-id"},
            ],
            "@rust": [
                {"id": 1, "username": "alice"},
                {"id": 3, "username": "carol", "last_online": 1700000000},
            ],
        }
    }
    path = tmp_path / "fixture.yaml"
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return path


@pytest.fixture
def sample_global_config(tmp_path: Path) -> GlobalConfig:
    return GlobalConfig.model_validate(
        {
            "ingestion": {"workers": 2, "queue_size": 4},
            "export": {"output_dir": str(tmp_path / "exports")},
            "enable_progress_bar": False,
        }
    )


@pytest.fixture
def temp_config_repository(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterable[ConfigRepository]:
    monkeypatch.setenv("MEMBER_SCRAPER_HOME", str(tmp_path))
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator)
    yield repository
