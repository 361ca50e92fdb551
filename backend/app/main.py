from __future__ import annotations

import time
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Request
from loguru import logger

from . import schemas
from .core.config import settings
from .db import init_db
from .services.status_service import StatusService
from ingestion.engine import IngestionEngine, build_ingestion_engine

app = FastAPI(title="Polymarket Ingestion API", version="0.1.0", debug=settings.debug)

_STARTED_AT = time.monotonic()


@app.on_event("startup")
async def on_startup() -> None:
    """Create tables, build the ingestion engine and start background polling."""

    init_db()
    engine = build_ingestion_engine(settings)
    app.state.ingestion = engine
    if settings.auto_start_polling:
        engine.start_polling()
    else:
        logger.info("Automatic polling disabled; call /init to start it")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    engine: IngestionEngine | None = getattr(app.state, "ingestion", None)
    if engine is not None:
        await engine.shutdown()


def _ingestion_engine(request: Request) -> IngestionEngine:
    """Return the process-wide ingestion engine created at startup."""

    engine = getattr(request.app.state, "ingestion", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Ingestion engine is not initialized")
    return engine


def _status_service(engine: IngestionEngine = Depends(_ingestion_engine)) -> StatusService:
    return StatusService(engine, settings)


@app.get("/healthz", response_model=schemas.HealthStatus, tags=["system"])
def healthcheck() -> schemas.HealthStatus:
    """Liveness probe; answers even while the initial sync is still running."""

    return schemas.HealthStatus(
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=round(time.monotonic() - _STARTED_AT, 3),
    )


@app.get("/init", response_model=schemas.InitResponse, tags=["system"])
async def start_ingestion(engine: IngestionEngine = Depends(_ingestion_engine)):
    """Start polling manually when it was not started at boot."""

    if engine.start_polling():
        return schemas.InitResponse(success=True, message="Initialization started")
    return schemas.InitResponse(success=True, message="Already initialized")


@app.get("/sync/status", response_model=schemas.InitialSyncStatus, tags=["sync"])
def sync_status(service: StatusService = Depends(_status_service)):
    """Report initial sync progress per stream."""

    return service.sync_status()


@app.get("/debug", response_model=schemas.DebugReport, tags=["sync"])
def debug_report(service: StatusService = Depends(_status_service)):
    """Summarize storage, sync and credential state for troubleshooting."""

    try:
        return service.debug_report()
    except Exception as exc:
        logger.exception("Debug report failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
