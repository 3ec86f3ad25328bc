from __future__ import annotations

from enum import StrEnum, auto
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

COMMON_IGNORES: tuple[str, ...] = (
    "node_modules/",
    "dist/",
    "build/",
    ".git/",
    ".github/",
    ".next/",
    "out/",
    "coverage/",
    ".venv/",
    "venv/",
    "__pycache__/",
    "target/",
    "vendor/",
    "bin/",
    "obj/",
    ".idea/",
    ".vscode/",
)

DEFAULT_MAX_BYTES = 1024 * 1024
TEXT_SAMPLE_BYTES = 4096
BINARY_CONTROL_RATIO = 0.3

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_RAW_URL = "https://raw.githubusercontent.com"

CACHE_KEY_PREFIX = "git-dumper"


class EntryKind(StrEnum):
    """Kind of an entry in a recursive tree listing."""

    BLOB = auto()
    TREE = auto()
    COMMIT = auto()


class ChangeKind(StrEnum):
    """Per-file status reported by the compare API."""

    ADDED = auto()
    MODIFIED = auto()
    REMOVED = auto()
    RENAMED = auto()
    COPIED = auto()
    CHANGED = auto()
    UNCHANGED = auto()


class RepositoryRef(BaseModel):
    """A repository pinned to the reference one dump operation works against."""

    model_config = ConfigDict(frozen=True)

    owner: str
    name: str
    reference: str

    def __str__(self) -> str:
        return f"{self.owner}/{self.name}@{self.reference}"


class TreeEntry(BaseModel):
    """One entry of a recursive tree listing.

    Attributes:
        path: Slash separated path relative to the repository root.
        kind: ``blob`` for files, ``tree`` for directories (``commit`` for submodules).
        size: Size in bytes as reported by the listing, when known.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    kind: EntryKind | str = EntryKind.BLOB
    size: int | None = Field(default=None, ge=0)

    @property
    def is_blob(self) -> bool:
        return self.kind == EntryKind.BLOB


class FileChange(BaseModel):
    """One file of a revision diff."""

    model_config = ConfigDict(frozen=True)

    path: str
    change_kind: ChangeKind | str
    previous_path: str | None = None

    @property
    def invalidates_path(self) -> bool:
        """Whether the current content of ``path`` may differ from the base revision."""
        return self.change_kind not in {ChangeKind.REMOVED, ChangeKind.UNCHANGED}


class Included(BaseModel):
    """Text content successfully obtained for a candidate."""

    model_config = ConfigDict(frozen=True)

    status: Literal["included"] = "included"
    path: str
    text: str
    byte_size: int | None = None
    from_cache: bool = False


class Skipped(BaseModel):
    """Candidate excluded because of its size or its content."""

    model_config = ConfigDict(frozen=True)

    status: Literal["skipped"] = "skipped"
    path: str
    reason: str
    byte_size: int | None = None


class Failed(BaseModel):
    """Candidate whose content could not be fetched."""

    model_config = ConfigDict(frozen=True)

    status: Literal["failed"] = "failed"
    path: str
    error_message: str
    byte_size: int | None = None


FetchOutcome = Annotated[Included | Skipped | Failed, Field(discriminator="status")]


def cache_key(owner: str, repo: str, ref: str) -> str:
    """Return the persistence key of the snapshot cache of ``owner/repo@ref``."""
    return f"{CACHE_KEY_PREFIX}:{owner}/{repo}@{ref}"


class SnapshotCache(BaseModel):
    """Path to text map plus the last revision it was seen at, for one repository and reference.

    The JSON form is ``{files, owner, repo, ref, commit}``.
    """

    owner: str
    repo: str
    ref: str
    commit: str | None = None
    files: dict[str, str] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        return cache_key(self.owner, self.repo, self.ref)

    def matches(self, owner: str, repo: str, ref: str) -> bool:
        """Check whether this snapshot belongs to ``owner/repo@ref``."""
        return (self.owner, self.repo, self.ref) == (owner, repo, ref)

    def cached_text(self, path: str) -> str | None:
        return self.files.get(path)

    def store(self, path: str, text: str) -> None:
        self.files[path] = text

    def invalidate(self, path: str) -> bool:
        """Delete the entry of ``path``; return whether one existed."""
        return self.files.pop(path, None) is not None


class DumpRequest(BaseModel):
    """What to dump. Defaults belong to :class:`git_dumper.settings.Settings`."""

    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str
    branch: str | None = None
    pattern: str | None = None
    ignore_common: bool
    extra_ignores: tuple[str, ...] = ()
    max_bytes: int = Field(..., ge=0)


class DumpStats(BaseModel):
    """Counters of one dump operation."""

    included: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0
    fetched: int = 0
    reused: int = 0
    cached_count: int = 0


class DumpResult(BaseModel):
    """Document, updated snapshot and statistics of one dump operation."""

    document: str
    cache: SnapshotCache | None
    stats: DumpStats
    outcomes: list[FetchOutcome] = Field(default_factory=list)
    repository: RepositoryRef | None = None
    revision: str | None = None
