from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from git_dumper.cache_store import MemoryCacheStore
from git_dumper.exceptions import RateLimitError, RemoteError
from git_dumper.service import DumpPayload, create_app, watch_disconnect

if TYPE_CHECKING:
    from collections.abc import Callable

    from pytest_mock import MockerFixture

    from conftest import FakeRepositoryClient


@pytest.fixture
def fake(make_client: Callable[..., FakeRepositoryClient]) -> FakeRepositoryClient:
    return make_client({"src/a.py": b"print('a')\n", "README.md": b"# hello\n", "node_modules/x.js": b"x"})


@pytest.mark.unit
def test_health() -> None:
    with TestClient(create_app()) as http:
        response = http.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.unit
def test_payload_accepts_browser_field_names() -> None:
    payload = DumpPayload.model_validate(
        {"owner": "octo", "repo": "hello", "ignoreCommon": False, "maxSizeKB": 2, "extraIgnores": ["docs/"]},
    )

    request = payload.dump_request()

    assert request.ignore_common is False
    assert request.max_bytes == 2048
    assert request.extra_ignores == ("docs/",)


@pytest.mark.unit
def test_dump_returns_plain_text_document(fake: FakeRepositoryClient) -> None:
    with TestClient(create_app(lambda: fake)) as http:
        response = http.post("/api/dump", json={"owner": "octo", "repo": "hello", "regex": r"\.py$"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "# FILE: src/a.py (11 bytes)" in response.text
    assert "README.md" not in response.text
    assert fake.closed


@pytest.mark.unit
def test_missing_owner_is_rejected_without_remote_calls(fake: FakeRepositoryClient) -> None:
    with TestClient(create_app(lambda: fake)) as http:
        response = http.post("/api/dump", json={"repo": "hello"})

    assert response.status_code == 400
    assert response.text == "owner and repo are required"
    assert fake.calls == []


@pytest.mark.unit
def test_invalid_regex_is_a_client_error(fake: FakeRepositoryClient) -> None:
    with TestClient(create_app(lambda: fake)) as http:
        response = http.post("/api/dump", json={"owner": "octo", "repo": "hello", "regex": "("})

    assert response.status_code == 400
    assert response.text.startswith("Invalid regex:")
    assert fake.calls == []


@pytest.mark.unit
def test_rate_limit_maps_to_403(fake: FakeRepositoryClient) -> None:
    fake.tree_error = RateLimitError(message="HTTP 403 Forbidden: API rate limit exceeded.", status_code=403)

    with TestClient(create_app(lambda: fake)) as http:
        response = http.post("/api/dump", json={"owner": "octo", "repo": "hello"})

    assert response.status_code == 403
    assert response.text.startswith("Error: HTTP 403")


@pytest.mark.unit
def test_other_remote_failures_map_to_502(fake: FakeRepositoryClient) -> None:
    fake.tree_error = RemoteError(message="HTTP 500 Internal Server Error: boom", status_code=500)

    with TestClient(create_app(lambda: fake)) as http:
        response = http.post("/api/dump", json={"owner": "octo", "repo": "hello"})

    assert response.status_code == 502
    assert response.text == "Error: HTTP 500 Internal Server Error: boom"
    assert fake.closed


@pytest.mark.unit
def test_shared_store_makes_second_request_incremental(fake: FakeRepositoryClient) -> None:
    store = MemoryCacheStore()
    app = create_app(lambda: fake, store=store)

    with TestClient(app) as http:
        first = http.post("/api/dump", json={"owner": "octo", "repo": "hello"})
        fetched = list(fake.content_calls)
        second = http.post("/api/dump", json={"owner": "octo", "repo": "hello"})

    assert first.status_code == second.status_code == 200
    assert second.text == first.text
    assert fetched == ["src/a.py", "README.md"]
    assert fake.content_calls == fetched
    assert len(store) == 1


@pytest.mark.unit
def test_cors_preflight_allows_any_origin() -> None:
    with TestClient(create_app()) as http:
        response = http.options(
            "/api/dump",
            headers={"Origin": "https://example.org", "Access-Control-Request-Method": "POST"},
        )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


class _Connection:
    def __init__(self, answers: list[bool]) -> None:
        self.answers = answers
        self.polls = 0

    async def is_disconnected(self) -> bool:
        self.polls += 1
        return self.answers.pop(0)


@pytest.mark.unit
def test_watch_disconnect_sets_event_when_client_leaves() -> None:
    connection = _Connection([False, False, True])
    event = asyncio.Event()

    asyncio.run(watch_disconnect(connection, event, interval=0))

    assert event.is_set()
    assert connection.polls == 3


@pytest.mark.unit
def test_watch_disconnect_stops_once_cancelled_elsewhere() -> None:
    connection = _Connection([])

    async def scenario() -> None:
        event = asyncio.Event()
        event.set()
        await watch_disconnect(connection, event, interval=0)

    asyncio.run(scenario())

    assert connection.polls == 0


@pytest.mark.unit
def test_disconnected_client_cancels_dump_with_499(fake: FakeRepositoryClient, mocker: MockerFixture) -> None:
    mocker.patch.object(Request, "is_disconnected", mocker.AsyncMock(return_value=True))
    fake.delays["src/a.py"] = 0.05

    with TestClient(create_app(lambda: fake)) as http:
        response = http.post("/api/dump", json={"owner": "octo", "repo": "hello"})

    assert response.status_code == 499
    assert response.text == "Operation cancelled"
    assert "README.md" not in fake.content_calls
    assert fake.closed
