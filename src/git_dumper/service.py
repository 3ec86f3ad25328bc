"""HTTP endpoint producing a dump as plain text."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Protocol

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from git_dumper import __version__
from git_dumper.config import DumpRequest
from git_dumper.engine import DumpEngine
from git_dumper.exceptions import ConfigurationError, DumpCancelledError, GitDumperError, RateLimitError
from git_dumper.github_client import GitHubClient
from git_dumper.logging import logger
from git_dumper.settings import env_value

if TYPE_CHECKING:
    from collections.abc import Callable

    from git_dumper.cache_store import CacheStore
    from git_dumper.github_client import RepositoryClient

    ClientFactory = Callable[[], RepositoryClient]


class DumpPayload(BaseModel):
    """Body of ``POST /api/dump``; field names follow the browser form."""

    model_config = ConfigDict(populate_by_name=True)

    owner: str = ""
    repo: str = ""
    branch: str | None = None
    regex: str | None = None
    ignore_common: bool = Field(default=True, alias="ignoreCommon")
    max_size_kb: float = Field(default=1024, ge=0, alias="maxSizeKB")
    extra_ignores: list[str] = Field(default_factory=list, alias="extraIgnores")

    def dump_request(self) -> DumpRequest:
        return DumpRequest(
            owner=self.owner,
            repo=self.repo,
            branch=self.branch or None,
            pattern=self.regex or None,
            ignore_common=self.ignore_common,
            extra_ignores=tuple(self.extra_ignores),
            max_bytes=int(self.max_size_kb * 1024),
        )


class HealthResponse(BaseModel):
    status: str


class DisconnectAware(Protocol):
    async def is_disconnected(self) -> bool: ...


DISCONNECT_POLL_SECONDS = 0.5


async def watch_disconnect(
    http_request: DisconnectAware,
    cancel_event: asyncio.Event,
    interval: float = DISCONNECT_POLL_SECONDS,
) -> None:
    """Set ``cancel_event`` once the HTTP client has gone away."""
    while not cancel_event.is_set():
        if await http_request.is_disconnected():
            logger.info("service_client_disconnected")
            cancel_event.set()
            return
        await asyncio.sleep(interval)


def _default_client() -> RepositoryClient:
    return GitHubClient(env_value("GITHUB_TOKEN"))


def create_app(
    client_factory: ClientFactory = _default_client,
    store: CacheStore | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        client_factory: builds one repository client per request; clients with
            an ``aclose`` coroutine are closed after the dump.
        store: optional snapshot cache store shared by all requests.
    """
    app = FastAPI(title="git-dumper", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post("/api/dump", response_class=PlainTextResponse)
    async def dump(payload: DumpPayload, http_request: Request) -> PlainTextResponse:
        if not payload.owner or not payload.repo:
            return PlainTextResponse("owner and repo are required", status_code=400)

        request = payload.dump_request()
        client = client_factory()
        engine = DumpEngine(client)
        cancel_event = asyncio.Event()
        watcher = asyncio.ensure_future(watch_disconnect(http_request, cancel_event))
        try:
            repository = await engine.resolve(request)
            request = request.model_copy(update={"branch": repository.reference})
            cache = store.load(repository.owner, repository.name, repository.reference) if store is not None else None
            result = await engine.dump(request, cache, cancel_event=cancel_event)
        except ConfigurationError as e:
            return PlainTextResponse(str(e), status_code=400)
        except RateLimitError as e:
            return PlainTextResponse(f"Error: {e}", status_code=403)
        except DumpCancelledError as e:
            return PlainTextResponse(str(e), status_code=499)
        except GitDumperError as e:
            logger.warning("service_dump_failed", owner=request.owner, repo=request.repo, error=str(e))
            return PlainTextResponse(f"Error: {e}", status_code=502)
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                await aclose()

        if store is not None and result.cache is not None:
            store.save(result.cache)
        return PlainTextResponse(result.document, media_type="text/plain; charset=utf-8")

    return app


def run_service(host: str = "127.0.0.1", port: int = 8000) -> None:  # pragma: no cover - integration path
    import uvicorn  # noqa: PLC0415

    uvicorn.run(create_app(), host=host, port=port)
