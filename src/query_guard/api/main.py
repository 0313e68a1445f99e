"""
FastAPI Application
===================

HTTP embedding of the query safety engine.
"""

import asyncio
import os
from contextlib import asynccontextmanager, suppress
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from query_guard import __version__
from query_guard.api.middleware.telemetry import TelemetryMiddleware
from query_guard.api.routes.audit import router as audit_router
from query_guard.api.routes.health import router as health_router
from query_guard.api.routes.query import router as query_router
from query_guard.api.schemas import ErrorResponse
from query_guard.config import EngineConfig
from query_guard.engine import QuerySafetyEngine
from query_guard.llm.mock import MockLLM
from query_guard.observability.logging_config import get_logger, setup_logging
from query_guard.observability.metrics import metrics_endpoint, setup_metrics
from query_guard.schema_context import SchemaContext
from query_guard.store.sqlite import SQLiteStore

logger = get_logger(__name__)

ROTATION_INTERVAL_SECONDS = 24 * 60 * 60


def create_engine(config: EngineConfig | None = None) -> QuerySafetyEngine:
    """
    Build the engine with the demo collaborators.

    In production, replace the mock oracle and the SQLite store with real
    clients. The audit key must come from QUERY_GUARD_AUDIT_KEY.
    """
    config = config or EngineConfig.from_env()
    schema = SchemaContext()
    return QuerySafetyEngine(llm=MockLLM(), store=SQLiteStore(schema), config=config, schema=schema)


async def _rotate_periodically(engine: QuerySafetyEngine, interval: float) -> None:
    while True:
        await asyncio.to_thread(engine.audit.rotate)
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan handler."""
    if getattr(app.state, "engine", None) is None:
        app.state.engine = create_engine()
    logger.info("api_starting", version=__version__)

    rotation = asyncio.create_task(_rotate_periodically(app.state.engine, ROTATION_INTERVAL_SECONDS))
    yield

    rotation.cancel()
    with suppress(asyncio.CancelledError):
        await rotation
    logger.info("api_stopping")


def create_app(engine: Optional[QuerySafetyEngine] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        engine: Prebuilt engine; built from the environment at startup when omitted
    """
    environment = os.getenv("ENVIRONMENT", "development")
    setup_logging(json_format=environment == "production")

    app = FastAPI(
        title="Query Guard API",
        description=(
            "Answers natural language business questions with tenant-isolated, "
            "read-only SQL, role-based limits and a full audit trail."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(TelemetryMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(query_router)
    app.include_router(audit_router)

    setup_metrics(app, version=__version__, environment=environment)
    app.add_route("/metrics", metrics_endpoint)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Unexpected faults never leak SQL or stack traces."""
        request_id = getattr(request.state, "request_id", None)
        logger.error("unhandled_exception", error_type=type(exc).__name__, request_id=request_id)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="InternalServerError",
                message="An unexpected error occurred",
                request_id=request_id,
            ).model_dump(),
        )

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "query_guard.api.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
    )
