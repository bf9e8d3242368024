"""I/O utilities for JSON artifacts.

orjson-backed load/save. Writes go through a temp file and an atomic
rename so readers never observe a half-written artifact.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import orjson


def load_json(path: Path) -> Any:
    """Load JSON from a file."""
    return orjson.loads(path.read_bytes())


def atomic_write_many(files: Mapping[Path, bytes]) -> None:
    """Stage every file as a sibling temp file, then ``os.replace`` them all.

    No target is replaced unless every temp file was written.
    """
    staged: list[tuple[Path, Path]] = []
    try:
        for path, data in files.items():
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(f".{path.name}.tmp")
            staged.append((tmp, path))
            tmp.write_bytes(data)
        for tmp, path in staged:
            os.replace(tmp, path)
    finally:
        for tmp, _ in staged:
            if tmp.exists():
                tmp.unlink()


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write bytes to ``path`` via a sibling temp file and ``os.replace``."""
    atomic_write_many({path: data})


def save_json(obj: Any, path: Path, *, pretty: bool = True) -> None:
    """Save an object as JSON (sorted keys, indented unless ``pretty=False``)."""
    opts = (
        orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS
        if pretty
        else orjson.OPT_SORT_KEYS
    )
    atomic_write_bytes(path, orjson.dumps(obj, option=opts))
