"""FastAPI application factory."""
from __future__ import annotations

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.api.routes import download, sns
from src.core.config import Settings, get_settings
from src.core.exceptions import BounceHandlerError
from src.core.rate_limit import create_rate_limiter
from src.services.components import build_record_store, build_verifier
from src.services.record_store import RecordStore
from src.utils.logger import configure_logging, logger
from src.utils.sns import Verifier


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    settings: Settings = app.state.settings
    # A store that cannot be initialized is fatal: the exception aborts startup.
    app.state.store.initialize()
    logger.info(
        "Started %s (%s store, %s verifier, environment=%s)",
        settings.app_name,
        settings.storage_backend,
        app.state.verifier.name,
        settings.environment,
    )
    yield
    logger.info("Shutting down %s", settings.app_name)


async def handle_bounce_handler_error(request: Request, exc: BounceHandlerError) -> JSONResponse:
    content = {"error": exc.error}
    details = exc.details()
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=exc.status_code, content=content)


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


def create_app(
    settings: Settings | None = None,
    store: RecordStore | None = None,
    verifier: Verifier | None = None,
) -> FastAPI:
    """Wire the components for one process; tests pass their own store and verifier."""

    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name, version=settings.api_version, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store or build_record_store(settings)
    app.state.verifier = verifier or build_verifier(settings)
    app.state.rate_limiter = create_rate_limiter(settings.rate_limit_per_minute)

    app.add_exception_handler(BounceHandlerError, handle_bounce_handler_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)

    app.include_router(sns.router)
    app.include_router(download.router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        """Simple uptime check."""

        return {"status": "ok"}

    return app


app = create_app()


def run() -> None:
    """Serve the API on the configured host and port."""

    settings = get_settings()
    uvicorn.run("src.api.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":  # pragma: no cover - manual execution
    run()
