"""Tests for linenav.run_manifest utilities."""
from __future__ import annotations

from pathlib import Path

from linenav.index_builder import build_index
from linenav.run_manifest import (
    build_manifest,
    compare_manifests,
    generate_run_id,
    load_manifest,
    source_mismatches,
    write_manifest,
)


def _source(path: Path, lines: list[str]) -> Path:
    path.write_text("\n".join(lines) + "\n")
    return path


def _manifest(source: Path, run_id: str) -> dict:
    return build_manifest(
        run_id=run_id,
        source_path=source,
        index=build_index(source),
        timings_sec={"total": 0.5},
        on_revisit="error",
        git_commit="deadbeef",
    )


def test_write_and_load_manifest(tmp_path: Path) -> None:
    src = _source(tmp_path / "users.txt", ["Apple", "Banana", "banana2", "1zebra"])
    run_id = generate_run_id("test_run")
    assert run_id.startswith("test_run_")

    manifest = _manifest(src, run_id)
    canonical_path, versioned_path = write_manifest(tmp_path / "idx", manifest)
    assert canonical_path.exists()
    assert versioned_path.exists()
    assert run_id in versioned_path.name

    loaded = load_manifest(canonical_path)
    assert loaded["run_id"] == run_id
    assert loaded["line_count"] == 4
    assert loaded["bucket_count"] == 3
    assert loaded["bucket_line_counts"] == {"A": 1, "B": 2, "SPECIAL": 1}
    assert loaded["source"]["size_bytes"] == src.stat().st_size
    assert loaded["indexed_bytes"] == src.stat().st_size
    assert loaded["git_commit"] == "deadbeef"


def test_source_mismatches_clean(tmp_path: Path) -> None:
    src = _source(tmp_path / "users.txt", ["alpha", "bravo"])
    assert source_mismatches(_manifest(src, "r1"), src) == []


def test_source_mismatches_detects_changes(tmp_path: Path) -> None:
    src = _source(tmp_path / "users.txt", ["alpha", "bravo"])
    manifest = _manifest(src, "r1")

    _source(src, ["alpha", "bravo", "charlie"])
    reasons = source_mismatches(manifest, src)
    assert any("size changed" in r for r in reasons)

    src.unlink()
    assert source_mismatches(manifest, src) == [f"source file not found: {src}"]


def test_compare_manifests_deltas(tmp_path: Path) -> None:
    older = _manifest(_source(tmp_path / "a.txt", ["alpha", "bravo"]), "old")
    newer = _manifest(
        _source(tmp_path / "b.txt", ["alpha", "avocado", "bravo", "charlie"]), "new"
    )

    delta = compare_manifests(newer, older)
    assert delta["current_run_id"] == "new"
    assert delta["previous_run_id"] == "old"
    assert delta["line_count_delta"] == 2
    assert delta["bucket_line_count_delta"] == {"A": 1, "B": 0, "C": 1}
