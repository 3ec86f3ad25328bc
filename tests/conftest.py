from __future__ import annotations

import asyncio
import base64
import json
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from git_dumper.config import FileChange, TreeEntry

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping


class FakeRepositoryClient:
    """In-memory repository client recording every call."""

    def __init__(
        self,
        files: Mapping[str, bytes],
        *,
        default_branch: str = "main",
        revision: str = "c1",
    ) -> None:
        self.files = dict(files)
        self.default_branch = default_branch
        self.revision = revision
        self.extra_entries: list[TreeEntry] = []
        self.diffs: dict[tuple[str, str], list[FileChange]] = {}
        self.failures: dict[str, Exception] = {}
        self.delays: dict[str, float] = {}
        self.sizes: dict[str, int | None] = {}
        self.diff_error: Exception | None = None
        self.tree_error: Exception | None = None
        self.calls: list[str] = []
        self.content_calls: list[str] = []
        self.diff_calls: list[tuple[str, str]] = []
        self.closed = False

    async def get_default_reference(self, owner: str, repo: str) -> str:
        self.calls.append("get_default_reference")
        return self.default_branch

    async def list_tree(self, owner: str, repo: str, ref: str) -> list[TreeEntry]:
        self.calls.append("list_tree")
        if self.tree_error is not None:
            raise self.tree_error
        entries = [
            TreeEntry(path=path, kind="blob", size=self.sizes.get(path, len(data))) for path, data in self.files.items()
        ]
        return entries + self.extra_entries

    async def get_latest_revision(self, owner: str, repo: str, ref: str) -> str:
        self.calls.append("get_latest_revision")
        return self.revision

    async def get_file_content(self, owner: str, repo: str, path: str, ref: str) -> bytes:
        self.calls.append("get_file_content")
        self.content_calls.append(path)
        if path in self.delays:
            await asyncio.sleep(self.delays[path])
        if path in self.failures:
            raise self.failures[path]
        return self.files[path]

    async def diff_revisions(self, owner: str, repo: str, base: str, head: str) -> list[FileChange]:
        self.calls.append("diff_revisions")
        self.diff_calls.append((base, head))
        if self.diff_error is not None:
            raise self.diff_error
        return self.diffs.get((base, head), [])

    async def aclose(self) -> None:
        self.closed = True


class FakeGitHubApi:
    """Serves the subset of the GitHub REST API a dump uses, for ``httpx.MockTransport``."""

    def __init__(self, owner: str = "octo", repo: str = "hello", branch: str = "main") -> None:
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.revisions: dict[str, dict[str, bytes]] = {}
        self.head: str | None = None
        self.fail_paths: dict[str, int] = {}
        self.requests: list[httpx.Request] = []

    def commit(self, sha: str, files: Mapping[str, bytes]) -> None:
        self.revisions[sha] = dict(files)
        self.head = sha

    @property
    def content_requests(self) -> list[str]:
        return [r.url.path for r in self.requests if "/contents/" in r.url.path]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        prefix = f"/repos/{self.owner}/{self.repo}"
        path = request.url.path
        head_files = self.revisions.get(self.head or "", {})
        if path == prefix:
            return httpx.Response(200, json={"default_branch": self.branch})
        if path.startswith(f"{prefix}/git/trees/"):
            tree: list[dict[str, Any]] = [{"path": p, "type": "blob", "size": len(d)} for p, d in head_files.items()]
            return httpx.Response(200, json={"sha": self.head, "tree": tree, "truncated": False})
        if path.startswith(f"{prefix}/commits/"):
            return httpx.Response(200, json={"sha": self.head})
        if path.startswith(f"{prefix}/compare/"):
            base, head = path.removeprefix(f"{prefix}/compare/").split("...")
            if base not in self.revisions or head not in self.revisions:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json={"files": self._diff(self.revisions[base], self.revisions[head])})
        if path.startswith(f"{prefix}/contents/"):
            file_path = path.removeprefix(f"{prefix}/contents/")
            if file_path in self.fail_paths:
                return httpx.Response(self.fail_paths[file_path], text="boom")
            if file_path not in head_files:
                return httpx.Response(404, json={"message": "Not Found"})
            data = head_files[file_path]
            encoded = base64.encodebytes(data).decode("ascii")
            return httpx.Response(200, json={"size": len(data), "encoding": "base64", "content": encoded})
        return httpx.Response(404, text=json.dumps({"message": "Not Found"}))

    @staticmethod
    def _diff(base: Mapping[str, bytes], head: Mapping[str, bytes]) -> list[dict[str, str]]:
        files: list[dict[str, str]] = []
        for path, data in head.items():
            if path not in base:
                files.append({"filename": path, "status": "added"})
            elif base[path] != data:
                files.append({"filename": path, "status": "modified"})
        files.extend({"filename": path, "status": "removed"} for path in base if path not in head)
        return files


@pytest.fixture
def make_client() -> Callable[..., FakeRepositoryClient]:
    """Build an in-memory repository client from a path -> bytes mapping."""

    def _make(files: Mapping[str, bytes], **kwargs: Any) -> FakeRepositoryClient:  # noqa: ANN401
        return FakeRepositoryClient(files, **kwargs)

    return _make


@pytest.fixture
def github_api() -> FakeGitHubApi:
    return FakeGitHubApi()
