"""Run-manifest utilities for line index build reproducibility and staleness checks."""
from __future__ import annotations

import subprocess
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from linenav.io_utils import load_json, save_json
from linenav.line_index import LineIndex

MANIFEST_VERSION = "1.0"
MANIFEST_FILENAME = "run_manifest.json"


def utc_now_iso() -> str:
    """Return current UTC timestamp in ISO-8601 format."""
    return datetime.now(UTC).isoformat()


def generate_run_id(prefix: str = "line_index_build") -> str:
    """Generate a compact run id suitable for artifact naming."""
    ts = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
    return f"{prefix}_{ts}_{uuid4().hex[:8]}"


def default_manifest_path(index_dir: Path) -> Path:
    """Return canonical manifest path inside an index directory."""
    return index_dir / MANIFEST_FILENAME


def versioned_manifest_path(index_dir: Path, run_id: str) -> Path:
    """Return run-id-specific manifest path inside an index directory."""
    return index_dir / f"run_manifest_{run_id}.json"


def git_commit_hash(*, search_from: Path | None = None) -> str | None:
    """Best-effort current git commit hash for reproducibility metadata."""
    cwd = (search_from or Path.cwd())
    if cwd.is_file():
        cwd = cwd.parent
    try:
        proc = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=str(cwd),
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return None
    if proc.returncode != 0:
        return None
    out = proc.stdout.strip()
    return out if out else None


def source_fingerprint(source_path: Path) -> dict[str, Any]:
    """Size and mtime of the source file, as recorded in the manifest."""
    st = source_path.stat()
    return {
        "path": str(source_path),
        "size_bytes": st.st_size,
        "mtime_ns": st.st_mtime_ns,
    }


def build_manifest(
    *,
    run_id: str,
    source_path: Path,
    index: LineIndex,
    timings_sec: dict[str, float],
    on_revisit: str,
    git_commit: str | None = None,
    notes: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build canonical manifest payload for a line index snapshot."""
    return {
        "manifest_version": MANIFEST_VERSION,
        "created_at": utc_now_iso(),
        "run_id": run_id,
        "source": source_fingerprint(source_path),
        "git_commit": git_commit,
        "line_count": index.total_lines,
        "indexed_bytes": index.source_size,
        "bucket_count": len(index.buckets),
        "bucket_line_counts": {
            label: rng.count for label, rng in index.buckets.items()
        },
        "on_revisit": on_revisit,
        "timings_sec": timings_sec,
        "notes": notes or {},
    }


def write_manifest(
    index_dir: Path,
    manifest: dict[str, Any],
) -> tuple[Path, Path]:
    """Write canonical + versioned manifest files into the index directory."""
    canonical = default_manifest_path(index_dir)
    versioned = versioned_manifest_path(index_dir, str(manifest["run_id"]))
    save_json(manifest, canonical, pretty=True)
    save_json(manifest, versioned, pretty=True)
    return canonical, versioned


def load_manifest(path: Path) -> dict[str, Any]:
    """Load a manifest from JSON."""
    data = load_json(path)
    if not isinstance(data, dict):
        raise ValueError(f"Invalid manifest payload in {path}")
    return data


def source_mismatches(manifest: dict[str, Any], source_path: Path) -> list[str]:
    """Reasons ``source_path`` no longer matches the file the manifest indexed.

    An empty list means the index is safe to serve against this file.
    """
    if not source_path.exists():
        return [f"source file not found: {source_path}"]
    recorded = manifest.get("source", {})
    recorded = recorded if isinstance(recorded, dict) else {}
    reasons: list[str] = []

    expected_size = recorded.get("size_bytes")
    actual_size = source_path.stat().st_size
    if expected_size is not None and int(expected_size) != actual_size:
        reasons.append(
            f"source size changed: indexed {expected_size} bytes, found {actual_size}"
        )
    indexed_bytes = manifest.get("indexed_bytes")
    if indexed_bytes is not None and int(indexed_bytes) != actual_size:
        reasons.append(
            f"index covers {indexed_bytes} bytes but source has {actual_size}"
        )
    return reasons


def compare_manifests(
    current: dict[str, Any],
    previous: dict[str, Any],
) -> dict[str, Any]:
    """Compare two manifest payloads and produce deterministic deltas."""
    curr_counts = current.get("bucket_line_counts", {})
    prev_counts = previous.get("bucket_line_counts", {})
    curr_counts = curr_counts if isinstance(curr_counts, dict) else {}
    prev_counts = prev_counts if isinstance(prev_counts, dict) else {}

    keys = sorted(set(curr_counts.keys()) | set(prev_counts.keys()))
    count_delta: dict[str, int] = {}
    for key in keys:
        curr_val = int(curr_counts.get(key, 0) or 0)
        prev_val = int(prev_counts.get(key, 0) or 0)
        count_delta[key] = curr_val - prev_val

    curr_lines = int(current.get("line_count", 0) or 0)
    prev_lines = int(previous.get("line_count", 0) or 0)

    return {
        "current_run_id": current.get("run_id"),
        "previous_run_id": previous.get("run_id"),
        "line_count_delta": curr_lines - prev_lines,
        "bucket_line_count_delta": count_delta,
    }
