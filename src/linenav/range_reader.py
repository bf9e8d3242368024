"""Direct-access reads of line ranges using a ``LineIndex``.

Each read resolves a byte span from the offset table, opens its own file
handle, and splits raw bytes on the terminator before decoding, so
multi-byte characters are never cut and no shared mutable state exists
between concurrent reads.
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from contextlib import closing
from itertools import islice
from pathlib import Path
from typing import BinaryIO

from linenav.line_index import (
    TERMINATOR,
    InvalidQueryError,
    LineIndex,
)

DEFAULT_CHUNK_SIZE = 64 * 1024

_UINT_RE = re.compile(r"^[0-9]+$")


class TruncatedReadError(OSError):
    """Raised when the source ends before the indexed byte span does."""


def split_lines(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Split a stream of byte chunks into lines, independent of chunk boundaries.

    Terminators are stripped. A trailing empty fragment (the stream ending on
    a terminator) is not emitted; a final unterminated fragment is.
    """
    pending = b""
    for chunk in chunks:
        if not chunk:
            continue
        if TERMINATOR not in chunk:
            pending += chunk
            continue
        *complete, pending = (pending + chunk).split(TERMINATOR)
        yield from complete
    if pending:
        yield pending


def _read_span(
    fh: BinaryIO,
    length: int | None,
    chunk_size: int,
    *,
    min_length: int = 0,
) -> Iterator[bytes]:
    """Yield chunks of at most ``chunk_size`` bytes, ``length`` bytes in total.

    ``length=None`` reads to end-of-file, which must come no earlier than
    ``min_length`` bytes in.
    """
    remaining = length
    total = 0
    while remaining is None or remaining > 0:
        want = chunk_size if remaining is None else min(chunk_size, remaining)
        chunk = fh.read(want)
        if not chunk:
            if remaining is not None:
                raise TruncatedReadError(
                    f"Source ended {remaining} bytes before the indexed span; "
                    f"rebuild the index"
                )
            if total < min_length:
                raise TruncatedReadError(
                    f"Source ended {min_length - total} bytes before the indexed "
                    f"end of file; rebuild the index"
                )
            return
        total += len(chunk)
        if remaining is not None:
            remaining -= len(chunk)
        yield chunk


def parse_range_query(
    start: int | str | None,
    limit: int | str | None,
    *,
    max_limit: int | None = None,
) -> tuple[int, int]:
    """Validate raw start/limit parameters.

    Accepts ints or plain decimal strings. Raises ``InvalidQueryError`` for
    missing or non-integer values, a negative start, a non-positive limit,
    or a limit above ``max_limit``.
    """

    def _as_int(name: str, value: int | str | None) -> int:
        if value is None:
            raise InvalidQueryError(f"Missing parameter: {name}")
        if isinstance(value, bool):
            raise InvalidQueryError(f"Invalid {name}: {value!r}")
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if not _UINT_RE.match(text):
            raise InvalidQueryError(f"Invalid {name}: {value!r} is not a non-negative integer")
        return int(text)

    start_i = _as_int("start", start)
    limit_i = _as_int("limit", limit)
    if start_i < 0:
        raise InvalidQueryError(f"Invalid start: {start_i} is negative")
    if limit_i <= 0:
        raise InvalidQueryError(f"Invalid limit: {limit_i} must be positive")
    if max_limit is not None and limit_i > max_limit:
        raise InvalidQueryError(f"Invalid limit: {limit_i} exceeds maximum {max_limit}")
    return start_i, limit_i


class RangeReader:
    """Reads ranges of lines from a source file indexed by a ``LineIndex``."""

    def __init__(
        self,
        source_path: Path,
        index: LineIndex,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        encoding: str = "utf-8",
        errors: str = "replace",
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._source_path = source_path
        self._index = index
        self._chunk_size = chunk_size
        self._encoding = encoding
        self._errors = errors

    @property
    def source_path(self) -> Path:
        return self._source_path

    @property
    def index(self) -> LineIndex:
        return self._index

    @property
    def total_lines(self) -> int:
        return self._index.total_lines

    def byte_span(self, start: int, limit: int) -> tuple[int, int | None]:
        """Byte span ``[start_byte, end_byte)`` covering ``limit`` lines from ``start``.

        ``end_byte`` is None when the span runs to end-of-file.
        """
        offsets = self._index.offsets
        stop = start + limit
        end_byte = offsets[stop] if stop < len(offsets) else None
        return offsets[start], end_byte

    def iter_raw_lines(self, start: int, limit: int) -> Iterator[bytes]:
        """Yield up to ``limit`` raw lines (terminators stripped) from ``start``."""
        start, limit = parse_range_query(start, limit)
        if start >= self.total_lines:
            return
        limit = min(limit, self.total_lines - start)
        start_byte, end_byte = self.byte_span(start, limit)
        length = None if end_byte is None else end_byte - start_byte
        # indexed size is 0 for synthetic indexes; skip the EOF check then
        min_length = max(self._index.source_size - start_byte, 0)
        with open(self._source_path, "rb") as fh:
            fh.seek(start_byte)
            chunks = _read_span(fh, length, self._chunk_size, min_length=min_length)
            with closing(split_lines(chunks)) as lines:
                yield from islice(lines, limit)

    def iter_lines(self, start: int, limit: int) -> Iterator[str]:
        """Yield up to ``limit`` decoded lines from ``start``."""
        for raw in self.iter_raw_lines(start, limit):
            yield raw.decode(self._encoding, self._errors)

    def read_range(self, start: int, limit: int) -> list[str]:
        """Return up to ``limit`` lines starting at line ``start``.

        A start at or past the end of the file yields an empty list.
        """
        with closing(self.iter_lines(start, limit)) as lines:
            return list(lines)
