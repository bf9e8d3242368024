"""FastAPI server for the line browser.

Serves paginated line ranges and the first-letter bucket index of a large
sorted text file, using the artifacts produced by
scripts/build_line_index.py. JSON endpoints feed the virtualized list in
the front-end.

Usage:
    LINENAV_SOURCE=data/usernames.txt LINENAV_INDEX_DIR=line_index \
        uvicorn dashboard.api.server:app --port 8000
"""
from __future__ import annotations

import asyncio
import os
import sys
from collections.abc import Mapping
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field

from linenav.line_index import (
    IndexArtifactError,
    InvalidQueryError,
    load_line_index,
)
from linenav.range_reader import DEFAULT_CHUNK_SIZE, RangeReader, parse_range_query
from linenav.run_manifest import default_manifest_path, load_manifest, source_mismatches

_repo_root = Path(__file__).resolve().parents[2]

_DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
class ServerConfig(BaseModel):
    """Server settings, normally populated from LINENAV_* environment variables."""

    source_path: Path = _repo_root / "data" / "usernames.txt"
    index_dir: Path = _repo_root / "line_index"
    max_limit: int = Field(10_000, ge=1)
    chunk_size: int = Field(DEFAULT_CHUNK_SIZE, ge=1)
    cors_origins: list[str] = Field(default_factory=lambda: list(_DEFAULT_CORS_ORIGINS))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ServerConfig:
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        if env.get("LINENAV_SOURCE"):
            values["source_path"] = Path(env["LINENAV_SOURCE"])
        if env.get("LINENAV_INDEX_DIR"):
            values["index_dir"] = Path(env["LINENAV_INDEX_DIR"])
        if env.get("LINENAV_MAX_LIMIT"):
            values["max_limit"] = env["LINENAV_MAX_LIMIT"]
        if env.get("LINENAV_CHUNK_SIZE"):
            values["chunk_size"] = env["LINENAV_CHUNK_SIZE"]
        if env.get("LINENAV_CORS_ORIGINS"):
            values["cors_origins"] = [
                o.strip() for o in env["LINENAV_CORS_ORIGINS"].split(",") if o.strip()
            ]
        return cls.model_validate(values)


def load_reader(config: ServerConfig) -> RangeReader:
    """Load the persisted index named by ``config`` and wrap it in a reader.

    Raises IndexArtifactError if artifacts are missing, malformed, or were
    built from a different version of the source file.
    """
    source_size = 0
    manifest_path = default_manifest_path(config.index_dir)
    if manifest_path.exists():
        manifest = load_manifest(manifest_path)
        reasons = source_mismatches(manifest, config.source_path)
        if reasons:
            raise IndexArtifactError(
                f"Index in {config.index_dir} is stale: " + "; ".join(reasons)
            )
        source_size = int(manifest.get("indexed_bytes", 0) or 0)
    elif not config.source_path.exists():
        raise IndexArtifactError(f"Source file not found: {config.source_path}")

    index = load_line_index(config.index_dir, source_size=source_size)
    return RangeReader(config.source_path, index, chunk_size=config.chunk_size)


def _get_reader(request: Request) -> RangeReader:
    """Get the range reader, raising 503 if no index is loaded."""
    reader = getattr(request.app.state, "reader", None)
    if reader is None:
        raise HTTPException(
            status_code=503,
            detail="Line index not available. Run build_line_index.py first.",
        )
    return reader


def _get_config(request: Request) -> ServerConfig:
    config = getattr(request.app.state, "config", None)
    return config if config is not None else ServerConfig()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.reader is None:
        config: ServerConfig = app.state.config
        try:
            app.state.reader = load_reader(config)
        except (IndexArtifactError, OSError, ValueError) as e:
            print(f"[linenav] Warning: could not load line index: {e}", file=sys.stderr)
        else:
            index = app.state.reader.index
            print(
                f"[linenav] Line index loaded: {index.total_lines} lines, "
                f"{len(index.buckets)} buckets from {config.index_dir}"
            )
    yield


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
router = APIRouter()


@router.get("/api/health")
async def health(request: Request):
    reader = getattr(request.app.state, "reader", None)
    return {
        "status": "ok",
        "index_loaded": reader is not None,
        "total_lines": reader.total_lines if reader is not None else 0,
    }


@router.get("/api/meta")
async def meta(request: Request):
    """Total line count and the full bucket index for jump-to-letter."""
    reader = _get_reader(request)
    return {
        "totalItems": reader.total_lines,
        "letterIndex": reader.index.buckets_as_dict(),
    }


@router.get("/api/buckets/{label}")
async def bucket_detail(request: Request, label: str):
    """Line range for one bucket label (case-insensitive)."""
    reader = _get_reader(request)
    rng = reader.index.bucket(label)
    if rng is None:
        raise HTTPException(status_code=404, detail=f"Bucket not found: {label}")
    return {
        "label": label.strip().upper(),
        "start": rng.start,
        "end": rng.end,
        "count": rng.count,
    }


@router.get("/api/lines")
@router.get("/api/users")
async def read_lines(
    request: Request,
    start: str | None = Query(None),
    limit: str | None = Query(None),
):
    """Up to ``limit`` lines beginning at line ``start``.

    A start past the end of the file returns an empty list.
    """
    reader = _get_reader(request)
    try:
        start_line, count = parse_range_query(
            start, limit, max_limit=_get_config(request).max_limit,
        )
    except InvalidQueryError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    try:
        return await asyncio.to_thread(reader.read_range, start_line, count)
    except OSError as e:
        print(
            f"[linenav] Error reading lines start={start_line} limit={count}: {e}",
            file=sys.stderr,
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
def create_app(
    reader: RangeReader | None = None,
    *,
    config: ServerConfig | None = None,
) -> FastAPI:
    """Build the API app.

    Pass ``reader`` to serve a prebuilt index; otherwise the index named by
    ``config`` (default: from environment) is loaded at startup.
    """
    config = config if config is not None else ServerConfig.from_env()
    app = FastAPI(
        title="Line Browser API",
        version="0.1.0",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.reader = reader
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
