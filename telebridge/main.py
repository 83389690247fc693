"""Telebridge FastAPI application."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from telebridge import __version__
from telebridge.api.middleware import RequestLoggingMiddleware
from telebridge.api.routes import credentials, embed, health
from telebridge.config.settings import settings
from telebridge.embed.credentials import close_remote_clients
from telebridge.embed.errors import CredentialConfigError, EmbedError
from telebridge.embed.loader import close_coordinator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    yield
    await close_coordinator()
    await close_remote_clients()


app = FastAPI(
    title="Telebridge",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# --- Route registration ---
app.include_router(health.router)
app.include_router(credentials.router)
app.include_router(embed.router)


# --- Exception handlers ---

@app.exception_handler(CredentialConfigError)
async def credential_error_handler(request: Request, exc: CredentialConfigError) -> JSONResponse:
    logger.error("Credential error on %s: %s", request.url.path, exc.detail)
    return JSONResponse(status_code=500, content={"error": exc.detail})


@app.exception_handler(EmbedError)
async def embed_error_handler(request: Request, exc: EmbedError) -> JSONResponse:
    status_code = 429 if exc.rate_limited else 503
    return JSONResponse(status_code=status_code, content={"error": exc.user_message})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})
