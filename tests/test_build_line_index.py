"""Tests for the build_line_index and line_reader scripts."""
from __future__ import annotations

import importlib.util
import json
from pathlib import Path
from types import ModuleType

import pytest

from linenav.line_index import BUCKETS_FILENAME, OFFSETS_FILENAME


def _load_script(name: str) -> ModuleType:
    root = Path(__file__).resolve().parents[1]
    script_path = root / "scripts" / f"{name}.py"
    spec = importlib.util.spec_from_file_location(name, script_path)
    assert spec is not None
    module = importlib.util.module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)
    return module


def _write_source(path: Path, lines: list[str]) -> Path:
    path.write_bytes(("\n".join(lines) + "\n").encode("utf-8"))
    return path


class TestBuildLineIndex:
    def test_builds_artifacts_and_summary(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        mod = _load_script("build_line_index")
        src = _write_source(tmp_path / "users.txt", ["Apple", "Banana", "banana2", "1zebra"])
        out = tmp_path / "idx"

        mod.main(["--source", str(src), "--output-dir", str(out)])

        summary = json.loads(capsys.readouterr().out)
        assert summary["line_count"] == 4
        assert summary["buckets"]["B"] == {"start": 1, "end": 2}
        assert "delta" not in summary
        assert json.loads((out / OFFSETS_FILENAME).read_text()) == [0, 6, 13, 21]
        assert (out / BUCKETS_FILENAME).exists()
        assert (out / "run_manifest.json").exists()

    def test_refuses_overwrite_without_force(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        mod = _load_script("build_line_index")
        src = _write_source(tmp_path / "users.txt", ["alpha", "bravo"])
        out = tmp_path / "idx"
        mod.main(["--source", str(src), "--output-dir", str(out)])
        capsys.readouterr()

        with pytest.raises(SystemExit) as excinfo:
            mod.main(["--source", str(src), "--output-dir", str(out)])
        assert excinfo.value.code == 1
        assert "--force" in capsys.readouterr().err

    def test_rebuild_with_force_reports_delta(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        mod = _load_script("build_line_index")
        src = _write_source(tmp_path / "users.txt", ["alpha", "bravo"])
        out = tmp_path / "idx"
        mod.main(["--source", str(src), "--output-dir", str(out)])
        capsys.readouterr()

        _write_source(src, ["alpha", "bravo", "charlie"])
        mod.main(["--source", str(src), "--output-dir", str(out), "--force"])
        summary = json.loads(capsys.readouterr().out)
        assert summary["delta"]["line_count_delta"] == 1
        assert summary["delta"]["bucket_line_count_delta"]["C"] == 1

    def test_unsorted_source_fails_without_writing(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        mod = _load_script("build_line_index")
        src = _write_source(tmp_path / "users.txt", ["apple", "banana", "avocado"])
        out = tmp_path / "idx"

        with pytest.raises(SystemExit) as excinfo:
            mod.main(["--source", str(src), "--output-dir", str(out)])
        assert excinfo.value.code == 1
        assert "recurs at line 2" in capsys.readouterr().err
        assert not out.exists()

    def test_unsorted_source_merge_policy(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        mod = _load_script("build_line_index")
        src = _write_source(tmp_path / "users.txt", ["apple", "banana", "avocado"])
        mod.main([
            "--source", str(src),
            "--output-dir", str(tmp_path / "idx"),
            "--on-revisit", "merge",
        ])
        summary = json.loads(capsys.readouterr().out)
        assert summary["buckets"]["A"] == {"start": 0, "end": 2}

    def test_empty_source(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        mod = _load_script("build_line_index")
        src = tmp_path / "empty.txt"
        src.write_bytes(b"")

        mod.main(["--source", str(src), "--output-dir", str(tmp_path / "idx")])
        captured = capsys.readouterr()
        assert json.loads(captured.out)["line_count"] == 0
        assert "no lines" in captured.err

        with pytest.raises(SystemExit) as excinfo:
            mod.main([
                "--source", str(src),
                "--output-dir", str(tmp_path / "idx2"),
                "--require-lines",
            ])
        assert excinfo.value.code == 1

    def test_missing_source(self, tmp_path: Path) -> None:
        mod = _load_script("build_line_index")
        with pytest.raises(SystemExit) as excinfo:
            mod.main([
                "--source", str(tmp_path / "missing.txt"),
                "--output-dir", str(tmp_path / "idx"),
            ])
        assert excinfo.value.code == 1


class TestLineReader:
    @pytest.fixture()
    def index_dir(self, tmp_path: Path) -> Path:
        build = _load_script("build_line_index")
        src = _write_source(
            tmp_path / "users.txt",
            ["Apple", "Avery", "Banana", "banana2", "Mallory", "mike", "1zebra"],
        )
        out = tmp_path / "idx"
        build.main(["--source", str(src), "--output-dir", str(out)])
        return out

    def test_meta(self, index_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
        capsys.readouterr()
        mod = _load_script("line_reader")
        mod.main(["--index-dir", str(index_dir), "--meta"])
        payload = json.loads(capsys.readouterr().out)
        assert payload["totalItems"] == 7
        assert payload["letterIndex"]["M"] == {"start": 4, "end": 5}

    def test_read_window(self, index_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
        capsys.readouterr()
        mod = _load_script("line_reader")
        mod.main(["--index-dir", str(index_dir), "--start", "5", "--limit", "10"])
        assert json.loads(capsys.readouterr().out) == ["mike", "1zebra"]

    def test_jump_to_bucket(self, index_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
        capsys.readouterr()
        mod = _load_script("line_reader")
        mod.main(["--index-dir", str(index_dir), "--bucket", "b", "--limit", "2"])
        assert json.loads(capsys.readouterr().out) == ["Banana", "banana2"]

    def test_unknown_bucket(self, index_dir: Path) -> None:
        mod = _load_script("line_reader")
        with pytest.raises(SystemExit) as excinfo:
            mod.main(["--index-dir", str(index_dir), "--bucket", "Q"])
        assert excinfo.value.code == 1

    def test_invalid_limit(self, index_dir: Path) -> None:
        mod = _load_script("line_reader")
        with pytest.raises(SystemExit) as excinfo:
            mod.main(["--index-dir", str(index_dir), "--limit", "ten"])
        assert excinfo.value.code == 2

    def test_huge_limit_returns_rest_of_file(
        self, index_dir: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        capsys.readouterr()
        mod = _load_script("line_reader")
        mod.main([
            "--index-dir", str(index_dir),
            "--start", "5",
            "--limit", "99999999999999999999",
        ])
        assert json.loads(capsys.readouterr().out) == ["mike", "1zebra"]

    def test_stale_index(self, index_dir: Path, tmp_path: Path) -> None:
        _write_source(tmp_path / "users.txt", ["Apple"])
        mod = _load_script("line_reader")
        with pytest.raises(SystemExit) as excinfo:
            mod.main(["--index-dir", str(index_dir), "--meta"])
        assert excinfo.value.code == 1
