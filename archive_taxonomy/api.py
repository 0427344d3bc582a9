"""
Archive Taxonomy — FastAPI Application Layer

Endpoints:
  1. GET  /health    — Health check
  2. POST /classify  — Classify one (path, filename) pair
  3. POST /import    — Import a department folder on the server
"""
from __future__ import annotations
import logging
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from archive_taxonomy.config import Settings, get_settings
from archive_taxonomy.errors import InvalidPathStructure
from archive_taxonomy.ingestion import ImportOrchestrator, build_import_orchestrator, open_repository
from archive_taxonomy.logging_setup import configure_logging
from archive_taxonomy.models import ClassificationResult, ImportMode
from archive_taxonomy.repository import TaxonomyRepository

logger = logging.getLogger(__name__)

# ============================================================
# Application State (shared singletons)
# ============================================================

class AppState:
    """Holds all shared service instances."""
    settings: Settings
    repo: TaxonomyRepository
    importer: ImportOrchestrator
    start_time: float
    request_count: int = 0

    def __init__(self):
        self.start_time = time.monotonic()
        self.request_count = 0


_state = AppState()

# ============================================================
# Lifespan: Startup / Shutdown
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup, cleanup on shutdown."""
    settings = get_settings()
    configure_logging(settings)
    logger.info("Starting Archive Taxonomy API...")

    _state.settings = settings
    _state.repo = await open_repository(settings)
    _state.importer = await build_import_orchestrator(_state.repo, settings)
    _state.start_time = time.monotonic()

    logger.info(f"System ready. Repository backend: {settings.repository_backend}")
    yield

    logger.info("Shutting down Archive Taxonomy API...")
    await _state.importer.close()

# ============================================================
# Request / Response Models
# ============================================================

class ClassifyRequest(BaseModel):
    path_segments: list[str] = Field(..., description="Dept/Category/Topic[/Brand[/Model[/tags...]]]")
    file_name: str
    use_ai: bool = False


class ImportRequest(BaseModel):
    target: str = Field(..., description="Department root folder on the server")
    mode: ImportMode = ImportMode.FAST


class HealthResponse(BaseModel):
    status: str
    components: dict[str, Any]
    uptime_seconds: int
    requests_served: int

# ============================================================
# FastAPI App
# ============================================================

app = FastAPI(
    title="Archive Taxonomy API",
    description="Folder-path and filename classification for copier/printer document archives.",
    version="1.0.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    start = time.monotonic()
    _state.request_count += 1
    response = await call_next(request)
    elapsed = int((time.monotonic() - start) * 1000)
    response.headers["X-Response-Time-Ms"] = str(elapsed)
    return response


@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    repo_health = await _state.repo.health_check()
    components = {
        "repository": repo_health,
        "ai_classifier": {"enabled": _state.settings.ai_enabled},
        "storage": {"available": getattr(_state.importer.storage, "available", True)},
    }
    status = "healthy" if repo_health.get("status") == "healthy" else "degraded"
    return HealthResponse(
        status=status,
        components=components,
        uptime_seconds=int(time.monotonic() - _state.start_time),
        requests_served=_state.request_count,
    )


@app.post("/classify", response_model=ClassificationResult, tags=["Classification"])
async def classify(req: ClassifyRequest):
    try:
        return await _state.importer.classifier.classify(
            req.path_segments, req.file_name, use_ai=req.use_ai)
    except InvalidPathStructure as e:
        raise HTTPException(422, e.message)


@app.post("/import", tags=["Ingestion"])
async def import_folder(req: ImportRequest) -> dict[str, Any]:
    try:
        stats = await _state.importer.import_directory(req.target, req.mode)
    except FileNotFoundError as e:
        raise HTTPException(404, str(e))
    return stats.to_dict()


# ============================================================
# Entry Point
# ============================================================

def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
