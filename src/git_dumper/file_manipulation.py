from __future__ import annotations

import re
from typing import TYPE_CHECKING

from git_dumper.config import (
    BINARY_CONTROL_RATIO,
    COMMON_IGNORES,
    TEXT_SAMPLE_BYTES,
    Included,
    Skipped,
)
from git_dumper.exceptions import InvalidPatternError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from git_dumper.config import TreeEntry

SKIP_TOO_LARGE = "too large"
SKIP_BINARY = "binary file"


def compile_pattern(pattern: str | None) -> re.Pattern[str] | None:
    """Compile the user supplied path pattern.

    Args:
        pattern (str | None): a regular expression, or None / empty for "match everything"

    Raises:
        InvalidPatternError: if the expression does not compile.

    Returns:
        re.Pattern[str] | None: the compiled expression, or None when no pattern was given
    """
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as e:
        raise InvalidPatternError(message=f"Invalid regex: {e}", pattern=pattern) from e


def ignore_prefixes(*, ignore_common: bool, extra_ignores: Iterable[str] = ()) -> tuple[str, ...]:
    """Build the active ignore-prefix set.

    Args:
        ignore_common (bool): include the built-in common directory prefixes
        extra_ignores (Iterable[str]): caller supplied prefixes, kept verbatim apart from
            blank entries being dropped and backslashes normalized to "/"

    Returns:
        tuple[str, ...]: the prefixes, built-in ones first
    """
    extra = tuple(p.replace("\\", "/") for p in extra_ignores if p and p.strip())
    return (COMMON_IGNORES if ignore_common else ()) + extra


def should_ignore_path(path: str, prefixes: Sequence[str]) -> bool:
    """Raw string prefix match, not a glob nor a path segment match."""
    return any(path.startswith(prefix) for prefix in prefixes)


def is_candidate(path: str, prefixes: Sequence[str], pattern: re.Pattern[str] | None) -> bool:
    """Check whether a path survives ignore rules and matches the pattern.

    The pattern is searched anywhere in the full path, so "ends with .py" needs
    an explicit anchor (``\\.py$``).
    """
    if should_ignore_path(path, prefixes):
        return False
    return pattern is None or pattern.search(path) is not None


def filter_candidates(
    entries: Iterable[TreeEntry],
    prefixes: Sequence[str],
    pattern: re.Pattern[str] | None,
) -> list[TreeEntry]:
    """Keep the blob entries that are candidates, in listing order."""
    return [e for e in entries if e.is_blob and is_candidate(e.path, prefixes, pattern)]


def is_probably_text(data: bytes) -> bool:
    """Check if raw bytes are probably text.

    Looks at the first 4 KiB only. Any NUL byte means binary; otherwise the
    share of control bytes outside the whitespace range (below 7, between 13
    and 32 exclusive, or 255) must not exceed 30%. Empty data is text.

    Args:
        data (bytes): the content to inspect

    Returns:
        bool: True if the content is probably text, False otherwise
    """
    if not data:
        return True
    sample = data[:TEXT_SAMPLE_BYTES]
    if 0 in sample:
        return False
    control = sum(1 for b in sample if b < 7 or 13 < b < 32 or b == 255)  # noqa: PLR2004
    return control / len(sample) <= BINARY_CONTROL_RATIO


def classify_declared_size(path: str, size: int | None, max_bytes: int) -> Skipped | None:
    """Skip a file early from its advertised size, before any content inspection."""
    if size is not None and size > max_bytes:
        return Skipped(path=path, reason=SKIP_TOO_LARGE, byte_size=size)
    return None


def classify_content(path: str, data: bytes, max_bytes: int) -> Included | Skipped:
    """Classify fetched bytes as included text or skipped content.

    The size check comes first and does not look at the content. Text is
    decoded as UTF-8, invalid sequences being replaced rather than rejected.

    Args:
        path (str): repository path of the file
        data (bytes): the raw content
        max_bytes (int): size ceiling; a file of exactly this size is kept

    Returns:
        Included | Skipped: the outcome for this file
    """
    size = len(data)
    too_big = classify_declared_size(path, size, max_bytes)
    if too_big is not None:
        return too_big
    if not is_probably_text(data):
        return Skipped(path=path, reason=SKIP_BINARY, byte_size=size)
    return Included(path=path, text=data.decode("utf-8", errors="replace"), byte_size=size)
