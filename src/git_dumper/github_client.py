"""Client for the GitHub REST API, limited to what a dump needs.

The engine only depends on the :class:`RepositoryClient` protocol; :class:`GitHubClient`
is the ``httpx`` based implementation used by the CLI and the HTTP service.
"""

from __future__ import annotations

import base64
import binascii
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import quote, urlsplit

import httpx

from git_dumper.config import DEFAULT_API_URL, DEFAULT_RAW_URL, FileChange, TreeEntry
from git_dumper.exceptions import (
    RATE_LIMIT_HINT,
    InvalidRepositoryUrlError,
    RateLimitError,
    RemoteError,
    UnexpectedResponseError,
)
from git_dumper.logging import logger

if TYPE_CHECKING:
    from types import TracebackType

_RATE_LIMIT_STATUSES = {403, 429}
_ERROR_BODY_LIMIT = 500


class RepositoryClient(Protocol):
    """What the dump engine needs from a repository hosting API."""

    async def get_default_reference(self, owner: str, repo: str) -> str: ...

    async def list_tree(self, owner: str, repo: str, ref: str) -> list[TreeEntry]: ...

    async def get_latest_revision(self, owner: str, repo: str, ref: str) -> str: ...

    async def get_file_content(self, owner: str, repo: str, path: str, ref: str) -> bytes: ...

    async def diff_revisions(self, owner: str, repo: str, base: str, head: str) -> list[FileChange]: ...


def parse_repo_url(url: str) -> tuple[str, str]:
    """Split a GitHub repository URL into owner and repository name.

    Accepts ``https://github.com/OWNER/REPO`` (with an optional ``.git`` suffix or
    extra path segments such as ``/tree/main``) and the ``OWNER/REPO`` shorthand.

    Args:
        url (str): the URL or shorthand to parse

    Raises:
        InvalidRepositoryUrlError: if the value does not name a GitHub repository.

    Returns:
        tuple[str, str]: owner and repository name
    """
    value = (url or "").strip()
    if "://" in value:
        parts = urlsplit(value)
        if parts.hostname not in {"github.com", "www.github.com"}:
            raise InvalidRepositoryUrlError(
                message="Invalid GitHub repository URL. Expected https://github.com/OWNER/REPO",
                url=url,
            )
        path = parts.path
    else:
        path = value
    segments = [s for s in path.split("/") if s]
    if len(segments) < 2:  # noqa: PLR2004
        raise InvalidRepositoryUrlError(
            message="Invalid GitHub repository URL. Expected https://github.com/OWNER/REPO",
            url=url,
        )
    owner, repo = segments[0], segments[1]
    if repo.lower().endswith(".git"):
        repo = repo[:-4]
    if not repo:
        raise InvalidRepositoryUrlError(message=f"Missing repository name in {url!r}", url=url)
    return owner, repo


class GitHubClient:
    """Asynchronous GitHub REST API client.

    Args:
        token: Optional token sent as a bearer ``Authorization`` header.
        api_url: Base URL of the REST API (GitHub Enterprise installations differ).
        raw_url: Base URL of the raw content host, used when the contents API
            does not return base64 content.
        timeout: Per request timeout in seconds.
        transport: Optional ``httpx`` transport, mostly for tests.
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        api_url: str = DEFAULT_API_URL,
        raw_url: str = DEFAULT_RAW_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/vnd.github+json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.api_url = api_url.rstrip("/")
        self.raw_url = raw_url.rstrip("/")
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _repo_url(self, owner: str, repo: str, *parts: str) -> str:
        return "/".join([f"{self.api_url}/repos/{quote(owner, safe='')}/{quote(repo, safe='')}", *parts])

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        logger.debug("github_request", url=url, params=params)
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as e:
            raise RemoteError(message=f"Request to {url} failed: {e}", url=url) from e
        status = response.status_code
        if status in _RATE_LIMIT_STATUSES:
            raise RateLimitError(
                message=f"HTTP {status} {response.reason_phrase}: {RATE_LIMIT_HINT}",
                url=url,
                status_code=status,
            )
        if not response.is_success:
            body = response.text[:_ERROR_BODY_LIMIT]
            raise RemoteError(
                message=f"HTTP {status} {response.reason_phrase}: {body}",
                url=url,
                status_code=status,
            )
        return response

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:  # noqa: ANN401
        response = await self._get(url, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise UnexpectedResponseError(message=f"Invalid JSON from {url}", url=url) from e

    async def get_default_reference(self, owner: str, repo: str) -> str:
        data = await self._get_json(self._repo_url(owner, repo))
        if not isinstance(data, dict):
            raise UnexpectedResponseError(message="Unexpected repository response", url=self._repo_url(owner, repo))
        return data.get("default_branch") or "main"

    async def list_tree(self, owner: str, repo: str, ref: str) -> list[TreeEntry]:
        url = self._repo_url(owner, repo, "git", "trees", quote(ref, safe=""))
        data = await self._get_json(url, params={"recursive": 1})
        tree = data.get("tree") if isinstance(data, dict) else None
        if not isinstance(tree, list):
            raise UnexpectedResponseError(message="Unexpected tree response", url=url)
        if data.get("truncated"):
            logger.warning("tree_listing_truncated", owner=owner, repo=repo, ref=ref, entries=len(tree))
        return [
            TreeEntry(path=item["path"], kind=item.get("type", "blob"), size=item.get("size"))
            for item in tree
            if isinstance(item, dict) and isinstance(item.get("path"), str)
        ]

    async def get_latest_revision(self, owner: str, repo: str, ref: str) -> str:
        url = self._repo_url(owner, repo, "commits", quote(ref, safe=""))
        data = await self._get_json(url)
        sha = data.get("sha") if isinstance(data, dict) else None
        if not isinstance(sha, str) or not sha:
            raise UnexpectedResponseError(message=f"No commit found for {ref}", url=url)
        return sha

    async def get_file_content(self, owner: str, repo: str, path: str, ref: str) -> bytes:
        """Fetch the raw bytes of one file.

        Uses the contents API and decodes its base64 payload; when the payload
        carries no base64 content (large files) the raw host is used instead.

        Raises:
            UnexpectedResponseError: if ``path`` is a directory or the payload cannot be decoded.
            RemoteError: on transport or HTTP errors.
        """
        url = self._repo_url(owner, repo, "contents", quote(path))
        data = await self._get_json(url, params={"ref": ref})
        if isinstance(data, list):
            raise UnexpectedResponseError(message=f"Path resolved to a directory unexpectedly: {path}", url=url)
        if not isinstance(data, dict):
            raise UnexpectedResponseError(message=f"Unexpected contents response for {path}", url=url)
        content = data.get("content")
        if data.get("encoding") != "base64" or not isinstance(content, str):
            return await self._get_raw(owner, repo, path, ref)
        try:
            return base64.b64decode(content.replace("\n", ""), validate=True)
        except binascii.Error as e:
            raise UnexpectedResponseError(message=f"Cannot decode content of {path}: {e}", url=url) from e

    async def _get_raw(self, owner: str, repo: str, path: str, ref: str) -> bytes:
        url = f"{self.raw_url}/{quote(owner, safe='')}/{quote(repo, safe='')}/{quote(ref, safe='')}/{quote(path)}"
        response = await self._get(url)
        return response.content

    async def diff_revisions(self, owner: str, repo: str, base: str, head: str) -> list[FileChange]:
        url = self._repo_url(owner, repo, "compare", f"{quote(base, safe='')}...{quote(head, safe='')}")
        data = await self._get_json(url)
        files = data.get("files") if isinstance(data, dict) else None
        if not isinstance(files, list):
            raise UnexpectedResponseError(message="Unexpected compare response", url=url)
        return [
            FileChange(
                path=f["filename"],
                change_kind=f.get("status") or "modified",
                previous_path=f.get("previous_filename"),
            )
            for f in files
            if isinstance(f, dict) and isinstance(f.get("filename"), str)
        ]
