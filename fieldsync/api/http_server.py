"""
HTTP server for FieldSync.

Thin FastAPI adapter over the sync and queue coordinators. Routes:
- GET  /api/cache/sync                   delta bundle for one user
- POST /api/cache/queue                  apply a batch of client mutations
- GET  /api/cache/outbox/{mutation_id}   recorded outcome of one mutation
- GET  /health

Invariants:
    - No business rules here; every decision lives in fieldsync.sync
    - Request-level errors are 400/422, per-mutation errors are 200 results
    - Unexpected faults surface as 500 with error_code INTERNAL

How to change safely:
    - Keep response shapes backward compatible; clients persist next_since
    - Add new routes under /api/cache
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .._version import __version__
from ..clock import Clock, SystemClock
from ..config import ServerConfig
from ..store.database import Database
from ..store.outbox import OutboxLedger
from ..sync.applier import MutationApplier
from ..sync.cursor import SyncRequestError
from ..sync.delta import SyncCoordinator
from ..sync.mutations import ClientMutation
from ..sync.queue import QueueCoordinator

logger = logging.getLogger(__name__)


class QueueRequest(BaseModel):
    """Batch of queued client mutations."""

    mutations: list[ClientMutation] = Field(default_factory=list)


def create_http_app(
    config: ServerConfig | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Create the FieldSync FastAPI application.

    Args:
        config: Server configuration (defaults to the environment)
        clock: Clock shared by all coordinators

    Returns:
        FastAPI application; the database is opened in its lifespan
    """
    config = config or ServerConfig.from_env()
    clock = clock or SystemClock()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        db = Database(
            config.storage.path,
            wal_mode=config.storage.wal_mode,
            busy_timeout_ms=config.storage.busy_timeout_ms,
            cache_size_pages=config.storage.cache_size_pages,
        )
        db.initialize()

        ledger = OutboxLedger()
        app.state.db = db
        app.state.ledger = ledger
        app.state.sync = SyncCoordinator(db, clock=clock, page_limit=config.sync.page_limit)
        app.state.queue = QueueCoordinator(
            db,
            MutationApplier(clock=clock, ticket_ttl_days=config.sync.ticket_ttl_days),
            ledger=ledger,
            clock=clock,
        )
        logger.info("HTTP app started", extra={"db_path": config.storage.path})

        yield

        logger.info("HTTP app stopped")

    app = FastAPI(
        title="FieldSync",
        description="Offline delta sync and mutation queue",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.http.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(SyncRequestError)
    async def sync_request_error(request: Request, exc: SyncRequestError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc
        )
        return JSONResponse(
            status_code=500,
            content={"error": "internal server error", "error_code": "INTERNAL"},
        )

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "fieldsync", "version": __version__}

    @app.get("/api/cache/sync")
    async def sync(
        request: Request,
        user_id: str | None = None,
        since: str | None = None,
        areas: str | None = None,
        crops: str | None = None,
    ):
        bundle = await request.app.state.sync.sync(user_id, since=since, areas=areas, crops=crops)
        return bundle.to_dict()

    @app.post("/api/cache/queue")
    async def queue(request: Request, body: QueueRequest):
        if not body.mutations:
            raise HTTPException(status_code=400, detail="mutations[] required")
        result = await request.app.state.queue.process_queue(body.mutations)
        return result.to_dict()

    @app.get("/api/cache/outbox/{mutation_id}")
    async def outbox(request: Request, mutation_id: str):
        record = await request.app.state.ledger.get(request.app.state.db, mutation_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Unknown mutation: {mutation_id}")
        return record.to_dict()

    return app
