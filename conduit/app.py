"""
FastAPI application entry point for the Conduit backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from conduit.config import get_settings
from conduit.exceptions import StoreError, StoreTimeoutError
from conduit.routes import router

logger = logging.getLogger(__name__)


async def _store_timeout_handler(request: Request, exc: StoreTimeoutError):
    logger.error("Document store timed out on %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=503, content={"detail": "Document store timed out"})


async def _store_error_handler(request: Request, exc: StoreError):
    logger.error("Document store failed on %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Document store error"})


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    app = FastAPI(title="Conduit Backend (FastAPI)", version="0.1.0")
    app.include_router(router, prefix=settings.api_prefix)
    app.add_exception_handler(StoreTimeoutError, _store_timeout_handler)
    app.add_exception_handler(StoreError, _store_error_handler)
    return app


app = create_app()
