"""
Readlog - FastAPI Backend
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import socketio

from readlog.config import Settings, get_settings
from readlog.database.db import init_db
from readlog.errors import ConflictError, EntityNotFound, StorageError, ValidationError
from readlog.logging import setup_logging, get_logger
from readlog.realtime import sio
from readlog.routers import admin, library, stats, timeline
from readlog.services.library import LibraryService
from readlog.services.query import TimelineQueryService
from readlog.services.rebuilder import SnapshotRebuilder
from readlog.services.recorder import MutationRecorder
from readlog.services.snapshots import SnapshotLoader
from readlog.services.stats import StatsAggregator
from readlog.services.timeline_store import TimelineStore

logger = get_logger('main')


def _make_lifespan(config: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(debug=config.DEBUG)
        logger.info("Starting Readlog API")

        await init_db(config.DATABASE_PATH)
        logger.info("Database initialized")

        db_path = config.DATABASE_PATH
        store = TimelineStore(db_path=db_path)
        loader = SnapshotLoader()
        app.state.stats_aggregator = StatsAggregator(db_path=db_path)
        app.state.library_service = LibraryService(
            db_path=db_path,
            recorder=MutationRecorder(store),
            loader=loader,
            stats=app.state.stats_aggregator,
        )
        app.state.rebuilder = SnapshotRebuilder(
            db_path=db_path,
            store=store,
            loader=loader,
            batch_size=config.REBUILD_BATCH_SIZE,
            orphan_policy=config.ORPHAN_POLICY,
        )
        app.state.query_service = TimelineQueryService(
            store=store,
            stats=app.state.stats_aggregator,
            default_limit=config.TIMELINE_DEFAULT_LIMIT,
            max_limit=config.TIMELINE_MAX_LIMIT,
            stats_max_age_seconds=config.STATS_MAX_AGE_SECONDS,
        )
        logger.info("Services initialized")

        yield

        logger.info("Shutting down application")

    return lifespan


def create_app(config: Optional[Settings] = None) -> FastAPI:
    config = config or get_settings()
    app = FastAPI(
        title="Readlog API",
        description="Reading tracker with an activity timeline and cached reading stats",
        version="1.0.0",
        lifespan=_make_lifespan(config)
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://localhost:3000",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(timeline.router, prefix="/api/timeline", tags=["Timeline"])
    app.include_router(stats.router, prefix="/api/stats", tags=["Stats"])
    app.include_router(library.router, prefix="/api/library", tags=["Library"])
    app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(EntityNotFound)
    async def not_found_handler(request: Request, exc: EntityNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Storage failure"})

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "readlog",
        }

    @app.get("/")
    async def root():
        return {
            "name": "Readlog API",
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health"
        }

    return app


def create_asgi_app(config: Optional[Settings] = None) -> socketio.ASGIApp:
    """FastAPI app wrapped so ``/socket.io`` serves live timeline notifications."""
    return socketio.ASGIApp(sio, other_asgi_app=create_app(config))
