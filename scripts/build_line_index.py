#!/usr/bin/env python3
"""Build the line offset table and first-letter bucket index for a text file.

Scans a sorted, newline-delimited text file once and writes into the
output directory:

    line-offsets.json   byte offset of every line
    letter-index.json   label -> {"start", "end"} line ranges
    run_manifest.json   build metadata (+ a run-id-versioned copy)

Nothing is written unless the scan succeeds.

Usage:
    python3 scripts/build_line_index.py \
        --source data/usernames.txt \
        --output-dir line_index

    # Tolerate a source that is not strictly grouped by first letter:
    python3 scripts/build_line_index.py \
        --source data/usernames.txt \
        --output-dir line_index \
        --on-revisit merge --force
"""
from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path
from typing import Any

import orjson

from linenav.index_builder import REVISIT_POLICIES, build_index
from linenav.line_index import (
    BUCKETS_FILENAME,
    OFFSETS_FILENAME,
    BucketOrderError,
    EmptySourceError,
    SourceUnreadableError,
    save_line_index,
)
from linenav.run_manifest import (
    build_manifest,
    compare_manifests,
    default_manifest_path,
    generate_run_id,
    git_commit_hash,
    load_manifest,
    write_manifest,
)


def log(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


def dump_json(obj: object) -> None:
    sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Build line offset and bucket indexes for a sorted text file.",
    )
    parser.add_argument(
        "--source",
        type=Path,
        required=True,
        help="Newline-delimited text file, sorted by first letter",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        required=True,
        help="Directory for the index artifacts",
    )
    parser.add_argument(
        "--on-revisit",
        choices=REVISIT_POLICIES,
        default="error",
        help=(
            "What to do when a first letter reappears after another letter: "
            "fail (error, default), widen its range (merge), or keep only the "
            "last range (overwrite)"
        ),
    )
    parser.add_argument(
        "--require-lines",
        action="store_true",
        help="Fail instead of writing an empty index when the source has no lines",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite existing artifacts in --output-dir",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Print progress to stderr",
    )
    return parser


def run(args: argparse.Namespace) -> dict[str, Any]:
    """Build, persist, and return a summary. Raises on build failure."""
    source: Path = args.source.resolve()
    output_dir: Path = args.output_dir.resolve()
    run_id = generate_run_id()
    t0 = time.time()

    progress = (lambda n: log(f"  Scanned {n:,} lines...")) if args.verbose else None
    index = build_index(
        source,
        on_revisit=args.on_revisit,
        allow_empty=not args.require_lines,
        progress=progress,
    )
    t_scan = time.time() - t0
    if index.is_empty:
        log(f"WARNING: {source} contains no lines; writing an empty index")

    previous: dict[str, Any] | None = None
    previous_path = default_manifest_path(output_dir)
    if previous_path.exists():
        try:
            previous = load_manifest(previous_path)
        except (ValueError, orjson.JSONDecodeError):
            previous = None

    save_line_index(index, output_dir)
    t_total = time.time() - t0

    manifest = build_manifest(
        run_id=run_id,
        source_path=source,
        index=index,
        timings_sec={"scan": round(t_scan, 3), "total": round(t_total, 3)},
        on_revisit=args.on_revisit,
        git_commit=git_commit_hash(search_from=Path(__file__).resolve()),
    )
    canonical, _ = write_manifest(output_dir, manifest)

    summary: dict[str, Any] = {
        "run_id": run_id,
        "source": str(source),
        "output_dir": str(output_dir),
        "manifest": str(canonical),
        "line_count": index.total_lines,
        "indexed_bytes": index.source_size,
        "buckets": index.buckets_as_dict(),
        "timings_sec": manifest["timings_sec"],
    }
    if previous is not None:
        summary["delta"] = compare_manifests(manifest, previous)
    return summary


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    output_dir: Path = args.output_dir.resolve()

    if not args.source.is_file():
        print(f"ERROR: source file not found: {args.source}", file=sys.stderr)
        sys.exit(1)

    existing = [
        p for p in (output_dir / OFFSETS_FILENAME, output_dir / BUCKETS_FILENAME)
        if p.exists()
    ]
    if existing and not args.force:
        print(
            f"ERROR: index already exists in {output_dir}; use --force to overwrite",
            file=sys.stderr,
        )
        sys.exit(1)

    if args.verbose:
        log(f"Indexing {args.source} -> {output_dir} (on_revisit={args.on_revisit})")

    try:
        summary = run(args)
    except (SourceUnreadableError, EmptySourceError, BucketOrderError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    if args.verbose:
        log(
            f"Indexed {summary['line_count']:,} lines into "
            f"{len(summary['buckets'])} buckets in {summary['timings_sec']['total']}s"
        )
    dump_json(summary)


if __name__ == "__main__":
    main()
