"""Incremental fetch-and-assemble pipeline.

A dump resolves the reference, lists and filters the tree, works out which
cached files can be trusted from the revision diff, fetches the rest, and
renders one document in listing order. Per-file failures become
:class:`~git_dumper.config.Failed` outcomes; only configuration errors, the
metadata/listing/revision calls and cancellation abort a dump.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from git_dumper.config import (
    ChangeKind,
    DumpResult,
    DumpStats,
    Failed,
    Included,
    RepositoryRef,
    SnapshotCache,
    Skipped,
)
from git_dumper.exceptions import ConfigurationError, DumpCancelledError, GitDumperError
from git_dumper.file_manipulation import (
    classify_content,
    classify_declared_size,
    compile_pattern,
    filter_candidates,
    ignore_prefixes,
)
from git_dumper.logging import logger
from git_dumper.output_construction import build_dump_document

if TYPE_CHECKING:
    from collections.abc import Callable

    from git_dumper.config import DumpRequest, FetchOutcome, TreeEntry
    from git_dumper.github_client import RepositoryClient

    ProgressCallback = Callable[[int, int, str], None]


@dataclass
class CachePlan:
    """Which cached entries a dump may reuse.

    Attributes:
        changed: paths changed since the cached revision, or None when nothing
            cached can be trusted.
        removed: paths the diff reports as removed; never written back.
    """

    changed: set[str] | None
    removed: set[str] = field(default_factory=set)

    def can_reuse(self, path: str) -> bool:
        return self.changed is not None and path not in self.changed and path not in self.removed


@dataclass
class _DumpRun:
    request: DumpRequest
    repository: RepositoryRef
    snapshot: SnapshotCache
    plan: CachePlan
    cancel_event: asyncio.Event | None
    fetched: int = 0


def _text_size(entry: TreeEntry, text: str) -> int:
    """Header size of included text: the listing size, else the size of the text as cached.

    Fetched and reused files go through the same rule so repeated dumps render identically.
    """
    return entry.size if entry.size is not None else len(text.encode("utf-8"))


def _check_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise DumpCancelledError


class DumpEngine:
    """Orchestrates one dump against a :class:`~git_dumper.github_client.RepositoryClient`.

    Args:
        client: the remote repository client.
        concurrency: number of files fetched at once. 1 (the default) fetches
            one file at a time in listing order; higher values only change
            throughput, the document order is always the listing order.
    """

    def __init__(self, client: RepositoryClient, *, concurrency: int = 1) -> None:
        if concurrency < 1:
            msg = "concurrency must be at least 1"
            raise ValueError(msg)
        self.client = client
        self.concurrency = concurrency

    async def dump(
        self,
        request: DumpRequest,
        cache: SnapshotCache | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> DumpResult:
        """Dump a repository, reusing ``cache`` where the revision diff allows it.

        ``cache`` is mutated in place (removals, renames, fetched files, revision)
        and returned in the result; persisting it is the caller's business.

        Raises:
            ConfigurationError: on a missing owner/repo or an invalid pattern, before any call.
            RemoteError: if resolving the reference, listing the tree or fetching
                the latest revision fails.
            DumpCancelledError: if ``cancel_event`` is set when a file is about to be fetched.
        """
        pattern = compile_pattern(request.pattern)
        repository = await self.resolve(request)
        owner, repo, ref = repository.owner, repository.name, repository.reference
        prefixes = ignore_prefixes(ignore_common=request.ignore_common, extra_ignores=request.extra_ignores)
        logger.info("dump_started", repository=str(repository), pattern=request.pattern)

        prior = cache
        if prior is not None and not prior.matches(owner, repo, ref):
            logger.warning("cache_ignored", cache_key=prior.key, repository=str(repository))
            prior = None

        entries = await self.client.list_tree(owner, repo, ref)
        candidates = filter_candidates(entries, prefixes, pattern)
        logger.info("candidates_selected", listed=len(entries), candidates=len(candidates))
        if not candidates:
            return DumpResult(
                document="",
                cache=prior,
                stats=DumpStats(cached_count=len(prior.files) if prior is not None else 0),
                repository=repository,
            )

        latest = await self.client.get_latest_revision(owner, repo, ref)
        plan = await self.plan_cache(repository, prior, latest)
        snapshot = prior if prior is not None else SnapshotCache(owner=owner, repo=repo, ref=ref)

        run = _DumpRun(
            request=request,
            repository=repository,
            snapshot=snapshot,
            plan=plan,
            cancel_event=cancel_event,
        )
        outcomes = await self._process_all(run, candidates, progress)

        document = build_dump_document(outcomes, candidates)
        snapshot.commit = latest
        stats = DumpStats(
            included=sum(isinstance(o, Included) for o in outcomes),
            skipped=sum(isinstance(o, Skipped) for o in outcomes),
            failed=sum(isinstance(o, Failed) for o in outcomes),
            total=len(candidates),
            fetched=run.fetched,
            reused=sum(isinstance(o, Included) and o.from_cache for o in outcomes),
            cached_count=len(snapshot.files),
        )
        logger.info("dump_finished", repository=str(repository), revision=latest, **stats.model_dump())
        return DumpResult(
            document=document,
            cache=snapshot,
            stats=stats,
            outcomes=outcomes,
            repository=repository,
            revision=latest,
        )

    async def resolve(self, request: DumpRequest) -> RepositoryRef:
        """Validate the request and pin it to a reference (the default branch if none is given).

        Callers use this to know which snapshot to load before calling :meth:`dump`.

        Raises:
            ConfigurationError: on a missing owner/repo or an invalid pattern, before any call.
            RemoteError: if the repository metadata cannot be fetched.
        """
        owner, repo = request.owner.strip(), request.repo.strip()
        if not owner or not repo:
            raise ConfigurationError(message="owner and repo are required")
        compile_pattern(request.pattern)
        ref = request.branch or await self.client.get_default_reference(owner, repo)
        return RepositoryRef(owner=owner, name=repo, reference=ref)

    async def plan_cache(
        self,
        repository: RepositoryRef,
        prior: SnapshotCache | None,
        latest: str,
    ) -> CachePlan:
        """Compare the cached revision with ``latest`` and prune removed or renamed paths.

        A failing diff call is not fatal: nothing cached is trusted and every
        candidate is fetched again.
        """
        if prior is None or not prior.commit:
            logger.info("cache_untrusted", repository=str(repository), reason="no cached revision")
            return CachePlan(changed=None)
        if prior.commit == latest:
            logger.info("cache_current", repository=str(repository), revision=latest)
            return CachePlan(changed=set())
        try:
            changes = await self.client.diff_revisions(repository.owner, repository.name, prior.commit, latest)
        except GitDumperError as e:
            logger.warning("diff_failed", repository=str(repository), base=prior.commit, head=latest, error=str(e))
            return CachePlan(changed=None)

        plan = CachePlan(changed=set())
        for change in changes:
            if change.change_kind == ChangeKind.REMOVED:
                prior.invalidate(change.path)
                plan.removed.add(change.path)
            elif change.change_kind == ChangeKind.RENAMED and change.previous_path:
                prior.invalidate(change.previous_path)
            if change.invalidates_path:
                plan.changed.add(change.path)
        logger.info(
            "cache_diffed",
            repository=str(repository),
            base=prior.commit,
            head=latest,
            changed=len(plan.changed),
            removed=len(plan.removed),
        )
        return plan

    async def _process_all(
        self,
        run: _DumpRun,
        candidates: list[TreeEntry],
        progress: ProgressCallback | None,
    ) -> list[FetchOutcome]:
        total = len(candidates)
        outcomes: list[FetchOutcome | None] = [None] * total
        done = 0

        async def handle(idx: int, entry: TreeEntry) -> None:
            nonlocal done
            outcomes[idx] = await self._process_one(run, entry)
            done += 1
            if progress is not None:
                progress(done, total, entry.path)

        if self.concurrency == 1:
            for idx, entry in enumerate(candidates):
                await handle(idx, entry)
        else:
            semaphore = asyncio.Semaphore(self.concurrency)

            async def bounded(idx: int, entry: TreeEntry) -> None:
                async with semaphore:
                    await handle(idx, entry)

            tasks = [asyncio.ensure_future(bounded(idx, entry)) for idx, entry in enumerate(candidates)]
            try:
                await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

        return [o for o in outcomes if o is not None]

    async def _process_one(self, run: _DumpRun, entry: TreeEntry) -> FetchOutcome:
        path = entry.path
        if run.plan.can_reuse(path):
            cached = run.snapshot.cached_text(path)
            if cached is not None:
                return Included(path=path, text=cached, byte_size=_text_size(entry, cached), from_cache=True)

        _check_cancelled(run.cancel_event)
        max_bytes = run.request.max_bytes
        early = classify_declared_size(path, entry.size, max_bytes)
        if early is not None:
            logger.info("file_skipped", path=path, reason=early.reason, size=entry.size)
            return early

        repository = run.repository
        run.fetched += 1
        try:
            data = await self.client.get_file_content(repository.owner, repository.name, path, repository.reference)
        except Exception as e:  # noqa: BLE001
            logger.warning("file_failed", path=path, error=str(e))
            return Failed(path=path, error_message=str(e) or type(e).__name__, byte_size=entry.size)

        outcome = classify_content(path, data, max_bytes)
        if isinstance(outcome, Included):
            outcome = outcome.model_copy(update={"byte_size": _text_size(entry, outcome.text)})
            if path in run.plan.removed:
                logger.warning("removed_path_listed", path=path)
            else:
                run.snapshot.store(path, outcome.text)
        else:
            logger.info("file_skipped", path=path, reason=outcome.reason, size=outcome.byte_size)
        return outcome
