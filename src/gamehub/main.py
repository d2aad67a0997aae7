"""GameHub FastAPI application."""

import logging
import secrets
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

import gamehub.metrics  # noqa: F401  (registers collectors)
from gamehub import __version__
from gamehub.api.dependencies import close_hub, init_hub
from gamehub.api.v1 import health_router, instances_router, streams_router
from gamehub.config import get_config
from gamehub.core.errors import GameHubError
from gamehub.infra import close_db, close_docker, get_session_factory, init_db
from gamehub.logging import setup_logging
from gamehub.logging_schema import LogEvent

setup_logging(get_config().logging)
logger = logging.getLogger(__name__)

# Paths reachable without the internal API key
PUBLIC_PATHS = frozenset({"/health", "/metrics"})


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "Starting GameHub", extra={"event": LogEvent.APP_STARTED, "version": __version__}
    )
    await init_db()
    await init_hub(get_session_factory())
    try:
        yield
    finally:
        logger.info("Shutting down GameHub", extra={"event": LogEvent.APP_STOPPED})
        await close_hub()
        await close_docker()
        await close_db()


async def gamehub_error_handler(request: Request, exc: GameHubError) -> JSONResponse:
    logger.warning(
        "Request failed",
        extra={
            "event": LogEvent.GAMEHUB_ERROR,
            "error_code": exc.code.value,
            "error_message": exc.message,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled exception",
        extra={
            "event": LogEvent.UNHANDLED_EXCEPTION,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


async def require_api_key(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Bearer API key check for the internal HTTP API.

    WebSocket upgrades are not HTTP middleware traffic; stream sessions
    authenticate with user session tokens instead.
    """
    api_key = get_config().server.api_key
    if api_key and request.url.path not in PUBLIC_PATHS:
        supplied = request.headers.get("authorization", "").removeprefix("Bearer ")
        if not secrets.compare_digest(supplied.encode(), api_key.encode()):
            return JSONResponse(status_code=401, content={"detail": "Invalid API key"})
    return await call_next(request)


async def metrics() -> Response:
    """Prometheus exposition."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def create_app() -> FastAPI:
    config = get_config()
    application = FastAPI(
        title="GameHub",
        description="Game server provisioning, lifecycle and streaming",
        version=__version__,
        lifespan=lifespan,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.middleware("http")(require_api_key)
    application.add_exception_handler(GameHubError, gamehub_error_handler)
    application.add_exception_handler(Exception, unhandled_error_handler)

    application.include_router(health_router)
    application.add_api_route("/metrics", metrics, include_in_schema=False)
    application.include_router(instances_router, prefix="/api/v1")
    application.include_router(streams_router)
    return application


app = create_app()


def main() -> None:
    """Run the GameHub server."""
    server = get_config().server
    uvicorn.run("gamehub.main:app", host=server.host, port=server.port)


if __name__ == "__main__":
    main()
