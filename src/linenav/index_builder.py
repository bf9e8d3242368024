"""Single-pass builder for the line offset table and bucket index.

Streams the source in binary mode, so every offset is a byte offset and
multi-byte characters are measured in bytes. Nothing is written here;
callers persist the result with ``linenav.line_index.save_line_index``
only after a build succeeds.
"""
from __future__ import annotations

from array import array
from collections.abc import Callable, Iterator
from contextlib import closing
from pathlib import Path
from typing import Literal

from linenav.line_index import (
    BucketOrderError,
    BucketRange,
    EmptySourceError,
    LineIndex,
    SourceUnreadableError,
    bucket_label,
)

RevisitPolicy = Literal["error", "merge", "overwrite"]
REVISIT_POLICIES: tuple[str, ...] = ("error", "merge", "overwrite")


def _close_bucket(
    buckets: dict[str, BucketRange],
    label: str,
    start: int,
    end: int,
    on_revisit: RevisitPolicy,
) -> None:
    previous = buckets.get(label)
    if previous is not None and on_revisit == "merge":
        buckets[label] = BucketRange(
            start=min(previous.start, start),
            end=max(previous.end, end),
        )
    else:
        buckets[label] = BucketRange(start=start, end=end)


def _iter_source_lines(source_path: Path) -> Iterator[bytes]:
    """Raw lines of the source; only open/read failures become SourceUnreadableError."""
    try:
        with open(source_path, "rb") as fh:
            yield from fh
    except OSError as exc:
        raise SourceUnreadableError(
            f"Cannot read source file {source_path}: {exc}"
        ) from exc


def build_index(
    source_path: Path,
    *,
    on_revisit: RevisitPolicy = "error",
    allow_empty: bool = True,
    progress: Callable[[int], None] | None = None,
    progress_every: int = 1_000_000,
) -> LineIndex:
    """Scan ``source_path`` once and return its ``LineIndex``.

    Args:
        source_path: Line-delimited text file, sorted by first letter.
        on_revisit: What to do when a label reappears after another label:
            ``"error"`` raises ``BucketOrderError``, ``"merge"`` widens the
            existing range, ``"overwrite"`` keeps only the latest range.
        allow_empty: When False, a zero-line source raises
            ``EmptySourceError`` instead of yielding an empty index.
        progress: Optional callback receiving the number of lines scanned,
            invoked every ``progress_every`` lines.

    Raises:
        SourceUnreadableError: The file could not be opened or read.
    """
    if on_revisit not in REVISIT_POLICIES:
        raise ValueError(
            f"on_revisit must be one of {', '.join(REVISIT_POLICIES)}, got {on_revisit!r}"
        )

    offsets = array("Q")
    buckets: dict[str, BucketRange] = {}
    current: str | None = None
    current_start = 0
    offset = 0
    line_no = 0

    with closing(_iter_source_lines(source_path)) as lines:
        for raw in lines:
            label = bucket_label(raw)
            if label != current:
                if current is not None:
                    _close_bucket(buckets, current, current_start, line_no - 1, on_revisit)
                if label in buckets and on_revisit == "error":
                    raise BucketOrderError(label, buckets[label], line_no)
                current = label
                current_start = line_no
            offsets.append(offset)
            # raw includes its terminator, except possibly on the last line
            offset += len(raw)
            line_no += 1
            if progress is not None and progress_every > 0 and line_no % progress_every == 0:
                progress(line_no)

    if current is not None:
        _close_bucket(buckets, current, current_start, line_no - 1, on_revisit)

    if line_no == 0 and not allow_empty:
        raise EmptySourceError(f"Source file {source_path} contains no lines")

    return LineIndex.from_parts(offsets, buckets, source_size=offset)
