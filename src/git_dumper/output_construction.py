from __future__ import annotations

import io
from typing import TYPE_CHECKING

from git_dumper.config import Failed, Included, Skipped

if TYPE_CHECKING:
    from collections.abc import Sequence

    from git_dumper.config import FetchOutcome, TreeEntry

DIVIDER = "-" * 80


def format_section_header(path: str, size: int | None) -> str:
    """Format the three header lines of one file section.

    Args:
        path (str): repository path of the file
        size (int | None): byte size, omitted from the header when unknown

    Returns:
        str: the divider, ``# FILE:`` line and divider, each newline terminated
    """
    size_str = f" ({size} bytes)" if size is not None else ""
    return f"{DIVIDER}\n# FILE: {path}{size_str}\n{DIVIDER}\n"


def section_body(outcome: FetchOutcome) -> str:
    """Return the file text, or the one-line annotation for skipped and failed files."""
    if isinstance(outcome, Included):
        return outcome.text
    if isinstance(outcome, Skipped):
        return f"# Skipped: {outcome.path}"
    if isinstance(outcome, Failed):
        return f"# Error: {outcome.error_message}"
    msg = f"Unknown outcome {outcome!r}"
    raise TypeError(msg)


def header_size(outcome: FetchOutcome, entry: TreeEntry | None = None) -> int | None:
    """Pick the size shown in the header: the outcome's own, else the listing size."""
    if outcome.byte_size is not None:
        return outcome.byte_size
    return entry.size if entry is not None else None


def build_dump_document(
    outcomes: Sequence[FetchOutcome],
    entries: Sequence[TreeEntry] | None = None,
) -> str:
    """Concatenate one section per outcome, in the given order.

    Args:
        outcomes (Sequence[FetchOutcome]): one outcome per candidate, in listing order
        entries (Sequence[TreeEntry] | None): the matching listing entries, used for
            header sizes when an outcome does not carry one

    Returns:
        str: the document, stripped of leading and trailing whitespace
    """
    out = io.StringIO()
    for idx, outcome in enumerate(outcomes):
        entry = entries[idx] if entries is not None else None
        out.write(format_section_header(outcome.path, header_size(outcome, entry)))
        out.write(section_body(outcome))
        out.write("\n\n")
    return out.getvalue().strip()


def dump_file_name(owner: str, repo: str, ref: str) -> str:
    """Name of the file a dump is saved under, e.g. ``octo-hello-main-dump.txt``."""
    safe_ref = ref.replace("/", "-")
    return f"{owner}-{repo}-{safe_ref}-dump.txt"
