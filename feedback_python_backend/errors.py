"""Pipeline error kinds and their HTTP translation."""
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class FeedbackPipelineError(Exception):
    """Base error carrying the HTTP status and the ids needed to replay the failing unit."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.context = context or {}


class MissingInputError(FeedbackPipelineError):
    """Input absent or empty; raised before any side effect."""
    status_code = 400


class NotFoundError(MissingInputError):
    status_code = 404


class UpstreamAnalysisError(FeedbackPipelineError):
    """Oracle failed, returned no tool call, or returned a payload that does not validate."""
    status_code = 502


class PersistenceError(FeedbackPipelineError):
    """Final write failed; the transaction was rolled back."""
    status_code = 500


class ConcurrentGenerationError(PersistenceError):
    """Another generation committed first."""
    status_code = 409


async def pipeline_error_handler(request: Request, exc: FeedbackPipelineError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log("[%s] %s %s -> %s context=%s", type(exc).__name__, request.method, request.url.path, exc.message, exc.context)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


def describe_validation_errors(errors) -> str:
    """One line per failing field, e.g. "survey_id: Field required"."""
    parts = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path"))
        parts.append(f"{location}: {error.get('msg', 'invalid')}" if location else error.get("msg", "invalid"))
    return "; ".join(parts) or "Invalid request"


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = describe_validation_errors(exc.errors())
    logger.warning("[RequestValidationError] %s %s -> %s", request.method, request.url.path, message)
    return JSONResponse(status_code=422, content={"error": message})


def parse_uuid(value: Any, field: str) -> uuid.UUID:
    """Parse an identifier from a request, raising MissingInputError (400) when malformed."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise MissingInputError(f"Invalid {field}: {value}", context={field: value})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FeedbackPipelineError, pipeline_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
