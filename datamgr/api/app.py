"""
FastAPI application factory for the data manager.

This module creates the FastAPI app with:
- Store lifecycle management (handles flushed and closed on shutdown)
- JSON and SQLite routers under /api/json and /api/sqlite
- Error handlers translating store errors into failure envelopes
- Optional static front-end serving
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from fastapi.staticfiles import StaticFiles

from .._version import __version__
from ..config import Settings
from ..errors import DataManagerError
from ..stores import DocumentStore, RelationalStore
from .json_routes import router as json_router
from .sqlite_routes import router as sqlite_router

logger = logging.getLogger(__name__)

# HTTP status per DataManagerError.code
ERROR_STATUS = {
    "NOT_FOUND": 404,
    "ALREADY_EXISTS": 409,
    "TYPE_MISMATCH": 400,
    "INDEX_OUT_OF_RANGE": 400,
    "DECODE_ERROR": 400,
    "INVALID_NAME": 400,
    "SQL_ERROR": 400,
}

API_ROUTERS = (
    ("/api/json", json_router),
    ("/api/sqlite", sqlite_router),
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage store lifecycle."""
    settings: Settings = app.state.settings
    app.state.document_store = DocumentStore(settings.json_dir)
    app.state.relational_store = RelationalStore(settings.sqlite_dir)
    logger.info(
        "Data manager started",
        extra={"json_dir": settings.json_dir, "sqlite_dir": settings.sqlite_dir},
    )

    yield

    app.state.relational_store.close_all()


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings (loaded from environment if not provided)
    """
    settings = settings or Settings()

    app = FastAPI(
        title="Data Manager",
        description="REST API for managing JSON files and SQLite databases",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DataManagerError)
    async def data_manager_error_handler(request: Request, exc: DataManagerError) -> JSONResponse:
        status_code = ERROR_STATUS.get(exc.code, 500)
        logger.info(
            f"{request.method} {request.url.path} failed: {exc.message}",
            extra={"code": exc.code},
        )
        return _failure(status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        messages = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
        return _failure(422, "; ".join(messages))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"HTTP handler error: {exc}", exc_info=True)
        return _failure(500, str(exc))

    for prefix, router in API_ROUTERS:
        app.include_router(router, prefix=prefix)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "datamgr"}

    @app.get("/api")
    async def api_info():
        """Describe the available endpoints."""
        endpoints = [
            {
                "method": ",".join(sorted(route.methods)),
                "path": prefix + route.path,
                "description": (route.description or route.name).strip().splitlines()[0],
            }
            for prefix, router in API_ROUTERS
            for route in router.routes
            if isinstance(route, APIRoute)
        ]
        return {
            "title": "Data Manager REST API",
            "version": __version__,
            "description": "REST API for managing JSON files and SQLite databases",
            "endpoints": endpoints,
        }

    # Front-end assets go last so they never shadow the API
    if settings.static_dir and Path(settings.static_dir).exists():
        app.mount("/", StaticFiles(directory=settings.static_dir, html=True), name="frontend")

    return app
