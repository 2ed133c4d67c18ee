"""
Tiffin subscription backend - application entry point

Modules:
- daily meal selection and order generation
- order lifecycle (prepare, dispatch, deliver, skip, cancel)
- order creation logs and retries
- subscription credit accounting

Stack: FastAPI + DuckDB + JWT, served by uvicorn
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .api import api_router
from .config.settings import settings
from .core.database import db_manager
from .core.error_handler import (
    application_error_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from .core.exceptions import BaseApplicationError
from .services import push_sender

logger = logging.getLogger(__name__)

# Most specific first; Exception catches whatever the others do not
EXCEPTION_HANDLERS = (
    (BaseApplicationError, application_error_handler),
    (HTTPException, http_exception_handler),
    (RequestValidationError, validation_exception_handler),
    (Exception, general_exception_handler),
)


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    try:
        db_manager.init_database()
        logger.info("Store ready at %s (business zone %s)", db_manager.db_path, settings.business_timezone)
    except BaseApplicationError as e:
        # keep serving; /health reports the store as unavailable
        logger.error("Store initialization failed: %s", e.message)

    yield

    push_sender.shutdown()
    db_manager.close()
    logger.info("Store closed")


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="Meal subscription order engine",
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    for exc_class, handler in EXCEPTION_HANDLERS:
        app.add_exception_handler(exc_class, handler)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health_check():
        """Liveness plus a round trip to the store"""
        body = {"version": settings.api_version, "business_timezone": settings.business_timezone}
        try:
            db_manager.fetch_one("SELECT 1 AS ok")
        except BaseApplicationError as e:
            return {**body, "status": "unhealthy", "database": f"error: {e.message}"}
        return {**body, "status": "healthy", "database": "connected"}

    @app.get("/")
    async def root():
        return {"name": settings.api_title, "version": settings.api_version, "docs": "/docs"}

    return app


app = create_app()


def main():
    """Console entry point: serve the app with uvicorn"""
    uvicorn.run("tiffin.app:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
