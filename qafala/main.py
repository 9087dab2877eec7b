"""
Main Application - the economy API behind the player gateway.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest
from starlette.concurrency import run_in_threadpool
from starlette.routing import Match

from qafala.api.admin_routes import router as admin_router
from qafala.api.routes import router
from qafala.config import settings
from qafala.db.migration_runner import run_migrations
from qafala.db.session import close_engines, get_write_engine
from qafala.observability import get_logger, metrics, setup_logging, setup_tracing
from qafala.observability.logging import log_context
from qafala.observability.tracing import instrument_fastapi, instrument_sqlalchemy

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Migrate (when enabled) before serving; dispose engines on the way out."""
    logger.info(
        "application_starting",
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        run_migrations=settings.run_migrations_on_startup,
    )

    if settings.run_migrations_on_startup:
        # Alembic's command API is synchronous
        await run_in_threadpool(run_migrations)

    instrument_sqlalchemy(get_write_engine())

    yield

    await close_engines()
    logger.info("application_stopped")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)

setup_tracing()
instrument_fastapi(app)


def _json_safe_error(error: dict[str, Any]) -> dict[str, Any]:
    safe = {key: error.get(key) for key in ("type", "loc", "msg", "input")}
    # ctx may hold exception instances
    if "ctx" in error:
        safe["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
    return safe


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """422 in the same {"code", "message"} shape as economy errors."""
    errors = [_json_safe_error(error) for error in exc.errors()]
    logger.warning("validation_error", path=request.url.path, errors=errors)
    return JSONResponse(
        status_code=422,
        content={
            "detail": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "errors": errors,
            }
        },
    )


def route_template(request: Request) -> str:
    """Path template of the matching route, e.g. "/v1/drops/{drop_id}/buy"."""
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", request.url.path)
    return "unmatched"


@app.middleware("http")
async def observe_requests(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Request log lines, HTTP metrics and a bound request id for engine logs."""
    started = time.perf_counter()
    endpoint = route_template(request)
    method = request.method
    in_progress = metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method)
    request_id = request.headers.get("X-Request-ID") or uuid4().hex

    in_progress.inc()
    with log_context(request_id=request_id, user_id=request.headers.get("X-User-ID")):
        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.perf_counter() - started
            metrics.record_http_request(endpoint, method, 500, duration)
            metrics.record_error(type(e).__name__, "http_request")
            logger.error(
                "request_failed",
                method=method,
                path=request.url.path,
                endpoint=endpoint,
                error=str(e),
                duration_seconds=duration,
                exc_info=True,
            )
            raise
        finally:
            in_progress.dec()

        duration = time.perf_counter() - started
        metrics.record_http_request(endpoint, method, response.status_code, duration)
        logger.info(
            "request_completed",
            method=method,
            path=request.url.path,
            endpoint=endpoint,
            status_code=response.status_code,
            duration_seconds=duration,
        )
        response.headers["X-Request-ID"] = request_id
        return response


app.include_router(router)
app.include_router(admin_router)


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus text exposition."""
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "qafala.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
