from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import APP_NAME, LOG_LEVEL
from .db import init_db
from .errors import RepositoryUnavailableError
from .routes import router

logger = logging.getLogger(__name__)


def setup_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("%s started", APP_NAME)
    yield


def create_app(*, init_database: bool = True) -> FastAPI:
    setup_logging()
    app = FastAPI(title=APP_NAME, lifespan=lifespan if init_database else None)
    app.include_router(router)

    @app.exception_handler(RepositoryUnavailableError)
    async def repository_unavailable_handler(request: Request, exc: RepositoryUnavailableError):
        logger.error("Repository unavailable on %s: %s", request.url.path, exc)
        return JSONResponse({"error": "Data store unavailable, try again later"}, status_code=503)

    @app.exception_handler(ValueError)
    async def invalid_parameter_handler(request: Request, exc: ValueError):
        return JSONResponse({"error": str(exc)}, status_code=400)

    return app


app = create_app()
