"""
git-dumper: dump the text files of a GitHub repository into one document.

Overview
--------
Lists the repository tree through the GitHub REST API, keeps the files that
survive the ignore prefixes and the optional path regex, fetches them and
writes one section per file. A snapshot cache per owner/repo/ref keeps the
fetched texts and the commit they were seen at, so the next run only fetches
the files the compare API reports as changed.

Usage
-----
Run `git-dumper --help` for full options. Common examples:
    - Python files of the default branch, to stdout:
        git-dumper https://github.com/OWNER/REPO --regex '\\.py$'

    - A branch, into a file named after the repository:
        git-dumper OWNER/REPO --branch develop --output dumps/

    - Forget every cached snapshot:
        git-dumper clear-cache
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from git_dumper import __version__
from git_dumper.cache_store import JsonFileCacheStore
from git_dumper.config import SnapshotCache
from git_dumper.engine import DumpEngine
from git_dumper.exceptions import (
    ConfigurationError,
    DumpCancelledError,
    GitDumperError,
    RateLimitError,
)
from git_dumper.github_client import GitHubClient
from git_dumper.logging import logger, setup_logging
from git_dumper.output_construction import dump_file_name
from git_dumper.settings import Settings, default_cache_dir

if TYPE_CHECKING:
    from collections.abc import Sequence

    from git_dumper.cache_store import CacheStore
    from git_dumper.config import DumpResult, RepositoryRef
    from git_dumper.github_client import RepositoryClient

EXIT_OK = 0
EXIT_REMOTE_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="git-dumper",
        description="Dump the text files of a GitHub repository into one document.",
        argument_default=argparse.SUPPRESS,
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("repo_url", nargs="?", help="GitHub repository URL or OWNER/REPO.")
    p.add_argument("--branch", "-b", help="Branch, tag or commit (default branch if omitted).")
    p.add_argument("--regex", "-r", help="Only dump paths matching this regex (searched anywhere in the path).")
    p.add_argument(
        "--no-ignore-common",
        dest="ignore_common",
        action="store_false",
        help="Also dump node_modules/, dist/, build/, .git/ and similar directories.",
    )
    p.add_argument(
        "--ignore",
        dest="extra_ignores",
        action="append",
        help="Extra ignored path prefix (repeatable). End directories with '/'.",
    )
    p.add_argument("--max-size-kb", type=int, help="Skip files above this size in KiB (default 1024).")
    p.add_argument("--token", help="GitHub token (default: GITHUB_TOKEN from the environment or .env).")
    p.add_argument("--output", "-o", type=Path, help="Output file or existing directory (default stdout).")
    p.add_argument("--cache-dir", type=Path, help="Snapshot cache directory.")
    p.add_argument("--no-cache", dest="use_cache", action="store_false", help="Neither load nor save the cache.")
    p.add_argument("--concurrency", type=int, help="Number of files fetched at once (default 1).")
    p.add_argument("--api-url", help="GitHub REST API base URL.")
    p.add_argument("--timeout", type=float, help="Per request timeout in seconds.")
    p.add_argument("--config", type=Path, help="YAML file with default settings.")
    p.add_argument("--log-file", type=str, help="Log file path.")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging.")
    return p


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    """Parse command line arguments into settings.

    Only flags actually given override the config file and the defaults.

    Raises:
        ConfigurationError: if the repository URL or the config file is invalid.
    """
    args = vars(build_parser().parse_args(argv))
    max_size_kb = args.pop("max_size_kb", None)
    if max_size_kb is not None:
        args["max_bytes"] = max_size_kb * 1024
    config = args.pop("config", None)
    try:
        if config is not None:
            return Settings.from_yaml(config, **args)
        return Settings(**args)
    except ValidationError as e:
        raise ConfigurationError(message=f"Invalid settings: {e}") from e


async def run_dump(
    settings: Settings,
    *,
    client: RepositoryClient | None = None,
    store: CacheStore | None = None,
) -> DumpResult:
    """Load the snapshot, dump, and save the updated snapshot.

    SIGINT sets the engine's cancellation event; on cancellation the snapshot
    is saved as mutated so far, then :class:`DumpCancelledError` propagates.
    """
    if store is None and settings.use_cache:
        store = JsonFileCacheStore(settings.cache_dir)
    owned_client = client is None
    if client is None:
        client = GitHubClient(
            settings.token,
            api_url=settings.api_url,
            raw_url=settings.raw_url,
            timeout=settings.timeout,
        )

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    handler_installed = False
    with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        handler_installed = True

    engine = DumpEngine(client, concurrency=settings.concurrency)
    try:
        request = settings.dump_request()
        repository = await engine.resolve(request)
        request = request.model_copy(update={"branch": repository.reference})
        cache = _load_cache(store, repository)
        try:
            result = await engine.dump(request, cache, cancel_event=cancel_event)
        except DumpCancelledError:
            if store is not None:
                store.save(cache)
            raise
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
        if owned_client:
            await client.aclose()

    if store is not None and result.cache is not None and result.stats.total > 0:
        store.save(result.cache)
    return result


def _load_cache(store: CacheStore | None, repository: RepositoryRef) -> SnapshotCache:
    cache = store.load(repository.owner, repository.name, repository.reference) if store is not None else None
    if cache is None:
        cache = SnapshotCache(owner=repository.owner, repo=repository.name, ref=repository.reference)
    return cache


def write_output(result: DumpResult, output: Path | None) -> Path | None:
    """Write the document to ``output`` (a file, or a directory to put a named file in) or stdout."""
    if output is None:
        sys.stdout.write(result.document + "\n")
        return None
    target = output
    if output.is_dir() and result.repository is not None:
        repo = result.repository
        target = output / dump_file_name(repo.owner, repo.name, repo.reference)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(result.document, encoding="utf-8")
    return target


def clear_cache_main(argv: Sequence[str]) -> int:
    p = argparse.ArgumentParser(prog="git-dumper clear-cache", description="Remove every cached snapshot.")
    p.add_argument("--cache-dir", type=Path, default=None, help="Snapshot cache directory.")
    args = p.parse_args(argv)
    store = JsonFileCacheStore(args.cache_dir or default_cache_dir())
    removed = store.clear()
    print(f"Local cache cleared ({removed} entries).", file=sys.stderr)
    return EXIT_OK


def serve_main(argv: Sequence[str]) -> int:  # pragma: no cover - runs a server
    from git_dumper.service import run_service  # noqa: PLC0415

    p = argparse.ArgumentParser(prog="git-dumper serve", description="Serve POST /api/dump over HTTP.")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    args = p.parse_args(argv)
    setup_logging()
    run_service(host=args.host, port=args.port)
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if args and args[0] == "clear-cache":
        return clear_cache_main(args[1:])
    if args and args[0] == "serve":
        return serve_main(args[1:])
    if args and args[0] == "dump":
        args = args[1:]

    try:
        settings = parse_args(args)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    setup_logging(settings.log_file or None, verbose=settings.verbose)

    try:
        result = asyncio.run(run_dump(settings))
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except DumpCancelledError:
        print("Cancelled.", file=sys.stderr)
        return EXIT_CANCELLED
    except RateLimitError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_REMOTE_ERROR
    except GitDumperError as e:
        logger.error("dump_failed", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_REMOTE_ERROR

    stats = result.stats
    if stats.total == 0:
        print("No files matched the criteria.", file=sys.stderr)
        return EXIT_OK
    target = write_output(result, settings.output)
    if target is not None:
        print(f"Wrote {target}", file=sys.stderr)
    print(
        f"Done. Included {stats.included} files out of {stats.total}. (cached: {stats.cached_count})",
        file=sys.stderr,
    )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
