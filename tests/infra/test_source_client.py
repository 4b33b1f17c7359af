from __future__ import annotations

import json

import httpx
import pytest

from member_scraper.config import LoginCredentials, SourceClientConfig
from member_scraper.errors import AuthError, FetchError
from member_scraper.infra import FixtureSourceClient, HttpSourceClient, SourceClient, build_source_client


def _bridge(pages: dict[str, object], *, auth_status: int = 200, seen: list | None = None):
    """Mock HTTP bridge: ``pages`` maps search pattern to a member list or status code."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth":
            if auth_status != 200:
                return httpx.Response(auth_status, json={"error": "denied"})
            return httpx.Response(200, json={"token": "t0k"})
        if seen is not None:
            seen.append(request)
        if request.url.path != "/groups/@python/members":
            return httpx.Response(404)
        page = pages.get(request.url.params["q"], [])
        if isinstance(page, int):
            return httpx.Response(page)
        limit = int(request.url.params["limit"])
        return httpx.Response(200, json=page[:limit])

    return httpx.MockTransport(handler)


def _client(transport: httpx.MockTransport, **kwargs) -> HttpSourceClient:
    client = HttpSourceClient("http://bridge.test", transport=transport, **kwargs)
    client.connect(LoginCredentials(api_id=1, api_hash="secret"))
    return client


def test_http_client_walks_patterns_and_deduplicates() -> None:
    seen: list[httpx.Request] = []
    pages = {
        "": [{"id": 1}, {"id": 2}],
        "a": [{"id": 2}, {"id": 3}],
        "e": [{"id": 4}, {"id": 5}],
    }
    client = _client(_bridge(pages, seen=seen), search_patterns=["", "a", "e"])

    records = client.scrape("@python", 4)

    assert [r["id"] for r in records] == [1, 2, 3, 4]
    assert all(r.headers["Authorization"] == "Bearer t0k" for r in seen)
    client.close()


def test_http_client_accepts_wrapped_member_lists() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth":
            return httpx.Response(200, json={"token": "t"})
        return httpx.Response(200, json={"members": [{"id": 9}]})

    client = _client(httpx.MockTransport(handler), search_patterns=[""])
    assert client.scrape("@python", 10) == [{"id": 9}]


def test_http_client_unknown_target_is_fetch_error() -> None:
    client = _client(_bridge({}))
    with pytest.raises(FetchError) as excinfo:
        client.scrape("@missing", 10)
    assert excinfo.value.reason == "target not found"


def test_http_client_skips_failing_pattern() -> None:
    client = _client(_bridge({"": 500, "a": [{"id": 1}]}), search_patterns=["", "a"])
    assert client.scrape("@python", 10) == [{"id": 1}]


def test_http_client_fails_when_every_pattern_fails() -> None:
    client = _client(_bridge({"": 500, "a": 502}), search_patterns=["", "a"])
    with pytest.raises(FetchError):
        client.scrape("@python", 10)


def test_http_client_forbidden_target_is_fetch_error() -> None:
    client = _client(_bridge({"": 403}), search_patterns=[""])
    with pytest.raises(FetchError):
        client.scrape("@python", 10)


def test_http_client_rejected_auth() -> None:
    client = HttpSourceClient("http://bridge.test", transport=_bridge({}, auth_status=401))
    with pytest.raises(AuthError):
        client.connect(LoginCredentials())


def test_http_client_requires_connect() -> None:
    client = HttpSourceClient("http://bridge.test", transport=_bridge({}))
    with pytest.raises(FetchError):
        client.scrape("@python", 1)


def test_fixture_client_from_yaml(member_fixture) -> None:
    client = FixtureSourceClient.from_path(member_fixture)
    assert isinstance(client, SourceClient)
    client.connect(LoginCredentials())
    assert [r.get("id") for r in client.scrape("@python", 2)] == [1, 2]
    with pytest.raises(FetchError):
        client.scrape("@nowhere", 5)
    assert client.calls == [("@python", 2), ("@nowhere", 5)]


def test_fixture_client_enforces_credentials(tmp_path) -> None:
    path = tmp_path / "fixture.json"
    path.write_text(json.dumps({"auth": {"api_hash": "secret"}, "targets": {}}), encoding="utf-8")
    client = FixtureSourceClient.from_path(path)
    with pytest.raises(AuthError):
        client.connect(LoginCredentials(api_hash="wrong"))
    client.connect(LoginCredentials(api_hash="secret"))
    assert client.connected


def test_build_source_client_selection(member_fixture) -> None:
    assert isinstance(build_source_client(SourceClientConfig(), fixture_path=member_fixture), FixtureSourceClient)
    fixture_cfg = SourceClientConfig(kind="fixture", fixture_path=str(member_fixture))
    assert isinstance(build_source_client(fixture_cfg), FixtureSourceClient)
    with pytest.raises(ValueError):
        build_source_client(SourceClientConfig(kind="fixture"))
    http_client = build_source_client(SourceClientConfig(base_url="http://bridge.test"))
    assert isinstance(http_client, HttpSourceClient)
    http_client.close()
