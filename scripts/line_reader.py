#!/usr/bin/env python3
"""Read line ranges from an indexed text file.

Prints the index metadata, the range of one bucket, or a window of lines
as JSON on stdout.

Usage:
    # Metadata (total lines + bucket index)
    python3 scripts/line_reader.py --index-dir line_index --meta

    # 50 lines starting at line 1000
    python3 scripts/line_reader.py --index-dir line_index --start 1000 --limit 50

    # First page of the "M" bucket
    python3 scripts/line_reader.py --index-dir line_index --bucket m --limit 20
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import orjson

from linenav.line_index import IndexArtifactError, InvalidQueryError, load_line_index
from linenav.range_reader import RangeReader, parse_range_query
from linenav.run_manifest import default_manifest_path, load_manifest, source_mismatches


def dump_json(obj: object) -> None:
    sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Read line ranges from an indexed text file."
    )
    parser.add_argument(
        "--index-dir", required=True, type=Path, help="Directory with index artifacts"
    )
    parser.add_argument(
        "--source",
        type=Path,
        default=None,
        help="Source text file. Defaults to the path recorded in the run manifest.",
    )
    parser.add_argument("--start", default="0", help="First line number (default: 0)")
    parser.add_argument("--limit", default="20", help="Number of lines (default: 20)")
    parser.add_argument(
        "--bucket",
        default=None,
        help="Start at the first line of this bucket label instead of --start",
    )
    parser.add_argument(
        "--meta",
        action="store_true",
        help="Print total line count and bucket index instead of lines",
    )
    return parser


def _resolve_source(index_dir: Path, source: Path | None) -> tuple[Path, int]:
    """Source path and indexed byte count, checked against the manifest if present."""
    manifest_path = default_manifest_path(index_dir)
    manifest = load_manifest(manifest_path) if manifest_path.exists() else None
    if source is None:
        if manifest is None:
            raise IndexArtifactError(
                f"No run manifest in {index_dir}; pass --source explicitly"
            )
        source = Path(str(manifest.get("source", {}).get("path", "")))
    if manifest is None:
        return source, 0
    reasons = source_mismatches(manifest, source)
    if reasons:
        raise IndexArtifactError("Index is stale: " + "; ".join(reasons))
    return source, int(manifest.get("indexed_bytes", 0) or 0)


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    try:
        source, indexed_bytes = _resolve_source(args.index_dir, args.source)
        index = load_line_index(args.index_dir, source_size=indexed_bytes)
    except (IndexArtifactError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    if args.meta:
        dump_json({
            "totalItems": index.total_lines,
            "letterIndex": index.buckets_as_dict(),
        })
        return

    reader = RangeReader(source, index)
    start_arg: int | str = args.start
    if args.bucket is not None:
        rng = index.bucket(args.bucket)
        if rng is None:
            print(f"Error: bucket not found: {args.bucket}", file=sys.stderr)
            sys.exit(1)
        start_arg = rng.start

    try:
        start, limit = parse_range_query(start_arg, args.limit)
        lines = reader.read_range(start, limit)
    except InvalidQueryError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    except OSError as exc:
        print(f"Error: reading {source} failed: {exc}", file=sys.stderr)
        sys.exit(1)

    print(
        f"Read {len(lines)} lines from {start} (of {index.total_lines})",
        file=sys.stderr,
    )
    dump_json(lines)


if __name__ == "__main__":
    main()
