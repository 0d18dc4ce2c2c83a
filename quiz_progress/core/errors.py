"""Error taxonomy for progress ingestion and aggregation.

Services raise these; the API layer maps them to HTTP responses in one
place (see ``register_error_handlers``).  A suppressed duplicate write is
NOT an error: it is reported as ``IngestResult.duplicate``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from quiz_progress.core.config import SETTINGS

logger = logging.getLogger(__name__)


class ProgressError(Exception):
    """Base class for every failure the progress subsystem reports."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ProgressValidationError(ProgressError, ValueError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        missing: list[str] | None = None,
        message: str = "",
        *,
        invalid: list[str] | None = None,
    ) -> None:
        self.missing = list(missing or [])
        self.invalid = list(invalid or [])
        if not message:
            parts = []
            if self.missing:
                parts.append("Missing required parameters: " + ", ".join(self.missing))
            if self.invalid:
                parts.append("Invalid parameters: " + ", ".join(self.invalid))
            message = "; ".join(parts) or "Invalid request"
        super().__init__(message)


class ProgressNotFoundError(ProgressError, LookupError):
    status_code = status.HTTP_404_NOT_FOUND


class ProgressPermissionError(ProgressError, PermissionError):
    status_code = status.HTTP_403_FORBIDDEN


class ProgressStoreError(ProgressError):
    """Transaction or connection failure.  The transaction was rolled back."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def _field_path(loc: Iterable[Any]) -> str:
    """``("progress", 1, "questionId")`` -> ``progress[1].questionId``."""
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        elif path:
            path += f".{part}"
        else:
            path = str(part)
    return path or "body"


def validation_error(errors: Iterable[Mapping[str, Any]]) -> ProgressValidationError:
    """Collapse pydantic error dicts into one ``ProgressValidationError``.

    Accepts ``ValidationError.errors()`` or ``RequestValidationError.errors()``;
    a leading ``"body"`` location segment is dropped.
    """
    missing: list[str] = []
    invalid: list[str] = []
    for err in errors:
        loc = tuple(err.get("loc", ()))
        if loc[:1] == ("body",):
            loc = loc[1:]
        if err.get("type") == "json_invalid":
            loc = ()
        name = _field_path(loc)
        bucket = missing if err.get("type") == "missing" else invalid
        if name not in bucket:
            bucket.append(name)
    return ProgressValidationError(missing, invalid=invalid)


def _progress_error_response(exc: ProgressError) -> JSONResponse:
    message = exc.message
    if isinstance(exc, ProgressStoreError):
        logger.error("Store failure: %s", exc, exc_info=exc.__cause__ or exc)
        message = "Failed to process progress request"
        if SETTINGS.is_dev and exc.__cause__ is not None:
            message = f"{message}: {exc.__cause__}"
    else:
        logger.warning("%s: %s", type(exc).__name__, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": message},
    )


async def _handle_progress_error(_request: Request, exc: Exception) -> Response:
    if isinstance(exc, ProgressError):
        return _progress_error_response(exc)
    raise exc


async def _handle_request_validation(request: Request, exc: Exception) -> Response:
    if not isinstance(exc, RequestValidationError):
        raise exc
    errors = exc.errors()
    # Body problems get the progress envelope; bad query/path params keep 422.
    if errors and all(tuple(e.get("loc", ()))[:1] == ("body",) for e in errors):
        return _progress_error_response(validation_error(errors))
    return await request_validation_exception_handler(request, exc)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ProgressError, _handle_progress_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
