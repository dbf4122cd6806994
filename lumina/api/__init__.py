"""Lumina API."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lumina.api.images import app_images
from lumina.config import get_settings, validate_settings
from lumina.connections import close_lumina_connections, start_lumina_connections
from lumina.storage.errors import (
    BadCredentialsError,
    ConfigurationError,
    MalformedError,
    NotFoundError,
    StorageError,
)

logger = logging.getLogger("lumina.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    for problem in validate_settings():
        logger.error(problem)
    await start_lumina_connections()
    yield
    await close_lumina_connections()


app = FastAPI(
    title="Lumina",
    description=__doc__ if __doc__ else "",
    openapi_tags=[
        dict(name="images", description="Endpoints to upload, list, modify, and delete images"),
    ],
    lifespan=lifespan,
)
app.include_router(app_images)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().allow_origin],
    allow_methods=["GET", "POST", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Upload-Token"],
    max_age=86400,
)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message})


@app.exception_handler(NotFoundError)
async def not_found_exception_handler(request: Request, exc: NotFoundError):
    return _error(404, str(exc))


@app.exception_handler(MalformedError)
async def malformed_exception_handler(request: Request, exc: MalformedError):
    return _error(400, str(exc))


@app.exception_handler(ValueError)
async def value_error_exception_handler(request: Request, exc: ValueError):
    return _error(400, str(exc))


@app.exception_handler(ConfigurationError)
async def configuration_exception_handler(request: Request, exc: ConfigurationError):
    return _error(500, f"Server is not configured: {exc}")


@app.exception_handler(BadCredentialsError)
async def credentials_exception_handler(request: Request, exc: BadCredentialsError):
    return _error(502, "GitHub credentials are invalid. Check LUMINA_GITHUB_TOKEN.")


@app.exception_handler(StorageError)
async def storage_exception_handler(request: Request, exc: StorageError):
    logger.error(f"Storage error on {request.method} {request.url.path}: {exc}")
    return _error(502, str(exc))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc) -> JSONResponse:
    return JSONResponse(
        status_code=422, content={"message": "There was an issue with the data you sent.", "fields_invalid": exc.errors()}
    )
