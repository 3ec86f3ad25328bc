"""Persistence of snapshot caches, one entry per (owner, repo, ref)."""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from git_dumper.config import SnapshotCache, cache_key
from git_dumper.logging import logger

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "git-dumper"


class CacheStore(Protocol):
    """Key-value store of serialized :class:`SnapshotCache` objects."""

    def load(self, owner: str, repo: str, ref: str) -> SnapshotCache | None: ...

    def save(self, cache: SnapshotCache) -> None: ...

    def delete(self, owner: str, repo: str, ref: str) -> bool: ...

    def clear(self) -> int: ...


def snapshot_from_payload(payload: object) -> SnapshotCache | None:
    """Rebuild a snapshot from its JSON form, or None if the payload is not one.

    A ``files`` member that is not a mapping is read as an empty mapping.
    """
    if not isinstance(payload, dict):
        return None
    data = dict(payload)
    if not isinstance(data.get("files"), dict):
        data["files"] = {}
    try:
        return SnapshotCache.model_validate(data)
    except ValidationError as e:
        logger.warning("cache_entry_invalid", errors=e.error_count())
        return None


class MemoryCacheStore:
    """In-process store; entries are copied in and out so callers cannot alias them."""

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, object]] = {}

    def load(self, owner: str, repo: str, ref: str) -> SnapshotCache | None:
        payload = self._entries.get(cache_key(owner, repo, ref))
        return snapshot_from_payload(payload)

    def save(self, cache: SnapshotCache) -> None:
        self._entries[cache.key] = cache.model_dump(mode="json")

    def delete(self, owner: str, repo: str, ref: str) -> bool:
        return self._entries.pop(cache_key(owner, repo, ref), None) is not None

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def __len__(self) -> int:
        return len(self._entries)


class JsonFileCacheStore:
    """Stores each snapshot as ``<sha256 of key>.json`` in one directory."""

    def __init__(self, directory: Path | str = DEFAULT_CACHE_DIR) -> None:
        self.directory = Path(directory).expanduser()

    def path_for(self, owner: str, repo: str, ref: str) -> Path:
        digest = hashlib.sha256(cache_key(owner, repo, ref).encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def load(self, owner: str, repo: str, ref: str) -> SnapshotCache | None:
        path = self.path_for(owner, repo, ref)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("cache_entry_unreadable", path=str(path), error=str(e))
            return None
        cache = snapshot_from_payload(payload)
        if cache is not None and not cache.matches(owner, repo, ref):
            logger.warning("cache_entry_mismatch", path=str(path), key=cache.key)
            return None
        return cache

    def save(self, cache: SnapshotCache) -> None:
        """Write the snapshot atomically (temporary file, then rename)."""
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.path_for(cache.owner, cache.repo, cache.ref)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(cache.model_dump(mode="json"), f, ensure_ascii=False)
            Path(tmp_name).replace(target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("cache_saved", key=cache.key, files=len(cache.files), path=str(target))

    def delete(self, owner: str, repo: str, ref: str) -> bool:
        path = self.path_for(owner, repo, ref)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def clear(self) -> int:
        """Remove every entry regardless of key; return how many were removed."""
        if not self.directory.is_dir():
            return 0
        removed = 0
        for path in self.directory.glob("*.json"):
            path.unlink(missing_ok=True)
            if not path.name.startswith(".tmp-"):
                removed += 1
        return removed
