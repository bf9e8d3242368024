"""Line index model: per-line byte offsets plus first-letter buckets.

A ``LineIndex`` is built once by ``linenav.index_builder`` and persisted
as two JSON artifacts in an index directory:

    line-offsets.json  — array of byte offsets, one per line, in line order
    letter-index.json  — object label -> {"start": int, "end": int}

Bucket ranges are inclusive on both ends. Labels are uppercase ASCII
letters, or ``SENTINEL_LABEL`` for lines that do not start with one.
"""
from __future__ import annotations

from array import array
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import orjson

from linenav.io_utils import atomic_write_many, load_json

SENTINEL_LABEL = "SPECIAL"
TERMINATOR = b"\n"

OFFSETS_FILENAME = "line-offsets.json"
BUCKETS_FILENAME = "letter-index.json"


class SourceUnreadableError(OSError):
    """Raised when the source file cannot be opened or read at build time."""


class EmptySourceError(ValueError):
    """Raised when a source with zero lines is rejected."""


class BucketOrderError(ValueError):
    """Raised when a bucket label recurs after a different label was seen."""

    def __init__(self, label: str, first: BucketRange, line_no: int) -> None:
        super().__init__(
            f"Bucket {label!r} recurs at line {line_no} after its range "
            f"[{first.start}, {first.end}] was closed; source is not "
            f"partitioned by first letter"
        )
        self.label = label
        self.first = first
        self.line_no = line_no


class IndexArtifactError(RuntimeError):
    """Raised when persisted index artifacts are missing, malformed or stale."""


class InvalidQueryError(ValueError):
    """Raised for range queries whose start/limit are not valid integers."""


@dataclass(frozen=True, slots=True)
class BucketRange:
    """Inclusive range of line numbers sharing a bucket label."""

    start: int
    end: int

    @property
    def count(self) -> int:
        return self.end - self.start + 1

    def to_dict(self) -> dict[str, int]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True, slots=True)
class LineIndex:
    """Immutable offset table and bucket index for one source file.

    ``offsets`` is a read-only view over an unsigned 64-bit array so large
    files do not materialize one Python int per line.
    """

    offsets: memoryview
    buckets: Mapping[str, BucketRange] = field(
        default_factory=lambda: MappingProxyType({})
    )
    source_size: int = 0

    @classmethod
    def from_parts(
        cls,
        offsets: Iterable[int],
        buckets: Mapping[str, BucketRange] | None = None,
        *,
        source_size: int = 0,
    ) -> LineIndex:
        """Freeze offsets and buckets into a ``LineIndex``."""
        arr = offsets if isinstance(offsets, array) else array("Q", offsets)
        return cls(
            offsets=memoryview(arr).toreadonly(),
            buckets=MappingProxyType(dict(buckets or {})),
            source_size=source_size,
        )

    @property
    def total_lines(self) -> int:
        return len(self.offsets)

    @property
    def is_empty(self) -> bool:
        return len(self.offsets) == 0

    def bucket(self, label: str) -> BucketRange | None:
        """Look up a bucket by label, case-insensitively."""
        key = label.strip().upper()
        if key == SENTINEL_LABEL or len(key) == 1:
            return self.buckets.get(key)
        return None

    def buckets_as_dict(self) -> dict[str, dict[str, int]]:
        return {label: rng.to_dict() for label, rng in self.buckets.items()}


def bucket_label(raw_line: bytes) -> str:
    """Bucket label for a raw line: its uppercased ASCII first letter or the sentinel."""
    first = raw_line[:1]
    # bytes.isalpha() only accepts ASCII letters
    if first.isalpha():
        return first.upper().decode("ascii")
    return SENTINEL_LABEL


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
def save_line_index(index: LineIndex, out_dir: Path) -> tuple[Path, Path]:
    """Write offset and bucket artifacts into ``out_dir``.

    Both files are staged before either is replaced, so a failed save
    leaves the previous pair intact. Returns (offsets_path, buckets_path).
    """
    offsets_path = out_dir / OFFSETS_FILENAME
    buckets_path = out_dir / BUCKETS_FILENAME
    atomic_write_many({
        offsets_path: orjson.dumps(index.offsets.tolist()),
        buckets_path: orjson.dumps(
            index.buckets_as_dict(),
            option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS,
        ),
    })
    return offsets_path, buckets_path


def _parse_offsets(raw: Any, path: Path) -> array:
    if not isinstance(raw, list):
        raise IndexArtifactError(f"Offsets in {path} must be a JSON array")
    try:
        arr = array("Q", raw)
    except (TypeError, OverflowError) as exc:
        raise IndexArtifactError(
            f"Offsets in {path} must be non-negative integers: {exc}"
        ) from exc
    if arr and arr[0] != 0:
        raise IndexArtifactError(f"First offset in {path} is {arr[0]}, expected 0")
    for i in range(1, len(arr)):
        if arr[i] <= arr[i - 1]:
            raise IndexArtifactError(
                f"Offsets in {path} are not strictly increasing at line {i}"
            )
    return arr


def _parse_buckets(
    raw: Any, path: Path, total_lines: int,
) -> dict[str, BucketRange]:
    if not isinstance(raw, dict):
        raise IndexArtifactError(f"Buckets in {path} must be a JSON object")
    parsed: dict[str, BucketRange] = {}
    for label, span in raw.items():
        if not isinstance(span, dict):
            raise IndexArtifactError(f"Bucket {label!r} in {path} is not an object")
        start = span.get("start")
        end = span.get("end")
        if (
            not isinstance(start, int)
            or not isinstance(end, int)
            or isinstance(start, bool)
            or isinstance(end, bool)
        ):
            raise IndexArtifactError(
                f"Bucket {label!r} in {path} needs integer start/end"
            )
        if not 0 <= start <= end < total_lines:
            raise IndexArtifactError(
                f"Bucket {label!r} in {path} has range [{start}, {end}] "
                f"outside 0..{total_lines - 1}"
            )
        parsed[str(label)] = BucketRange(start=start, end=end)
    # Artifacts are written with sorted keys; restore scan order.
    return dict(sorted(parsed.items(), key=lambda item: item[1].start))


def load_line_index(index_dir: Path, *, source_size: int = 0) -> LineIndex:
    """Load and validate the artifacts written by ``save_line_index``."""
    offsets_path = index_dir / OFFSETS_FILENAME
    buckets_path = index_dir / BUCKETS_FILENAME
    for path in (offsets_path, buckets_path):
        if not path.exists():
            raise IndexArtifactError(f"Index artifact not found: {path}")
    try:
        raw_offsets = load_json(offsets_path)
        raw_buckets = load_json(buckets_path)
    except orjson.JSONDecodeError as exc:
        raise IndexArtifactError(f"Malformed index artifact in {index_dir}: {exc}") from exc

    offsets = _parse_offsets(raw_offsets, offsets_path)
    buckets = _parse_buckets(raw_buckets, buckets_path, len(offsets))
    return LineIndex.from_parts(offsets, buckets, source_size=source_size)
