"""Page-unload beacon sync.

``navigator.sendBeacon`` fires while the tab closes and the browser throws
the response away, so these endpoints ALWAYS answer 200.  Internal
failures roll back the batch, are logged and counted, and come back as
``{"success": false, "message": ...}``.

Body formats: application/json, text/plain holding JSON, or
application/x-www-form-urlencoded with the JSON in a ``data`` field.
Beacons cannot set headers, so a bearer token may also ride in the body
as ``token``.
"""

from __future__ import annotations

import logging
from urllib.parse import parse_qs

import jwt
from fastapi import APIRouter, Request
from pydantic import ValidationError

from quiz_progress.api.dependencies import bearer_token, principal_from_token
from quiz_progress.api.schemas import CamelModel
from quiz_progress.core.config import SETTINGS
from quiz_progress.core.errors import (
    ProgressError,
    ProgressPermissionError,
    ProgressValidationError,
    validation_error,
)
from quiz_progress.core.metrics import BEACON_FAILURES
from quiz_progress.models.principal import Principal
from quiz_progress.models.requests import BeaconIn
from quiz_progress.services.registry import gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/progress", tags=["progress"])

_FALLBACK_MESSAGE = "Update received but could not be processed"


class BeaconOut(CamelModel):
    success: bool
    message: str | None = None


def beacon_json(raw: bytes, content_type: str) -> str:
    """The JSON text of a beacon body, unwrapping the form ``data`` field."""
    text = raw.decode("utf-8", errors="replace").strip()
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type == "application/x-www-form-urlencoded":
        data = parse_qs(text).get("data")
        if not data:
            raise ProgressValidationError(["data"])
        text = data[0]
    return text


def _beacon_principal(request: Request, payload: BeaconIn) -> Principal | None:
    token = bearer_token(request.headers.get("authorization")) or payload.token
    if token is None:
        if SETTINGS.beacon_require_token:
            raise ProgressPermissionError("Beacon sync requires a token")
        return None
    try:
        return principal_from_token(token)
    except jwt.InvalidTokenError as e:
        raise ProgressPermissionError(f"Invalid beacon token: {e}") from None


def _rejected(exc: ProgressError) -> BeaconOut:
    BEACON_FAILURES.inc()
    logger.warning("Beacon sync rejected: %s", exc.message)
    return BeaconOut(success=False, message=exc.message)


@router.post("/beacon", response_model=BeaconOut, response_model_exclude_none=True)
@router.post(
    "/sync",
    response_model=BeaconOut,
    response_model_exclude_none=True,
    include_in_schema=False,
)
async def sync_via_beacon(request: Request) -> BeaconOut:
    try:
        payload = BeaconIn.model_validate_json(
            beacon_json(await request.body(), request.headers.get("content-type", ""))
        )
        principal = _beacon_principal(request, payload)
        result = await gateway.ingest_beacon(principal, payload)
    except ValidationError as exc:
        return _rejected(validation_error(exc.errors()))
    except ProgressError as exc:
        return _rejected(exc)
    except Exception:
        BEACON_FAILURES.inc()
        logger.exception("Beacon sync failed")
        return BeaconOut(success=False, message=_FALLBACK_MESSAGE)

    logger.debug(
        "Beacon stored summary=%s answers=%d duplicates=%d",
        result.summary.id,
        result.answers_written,
        result.duplicates,
    )
    return BeaconOut(success=True)
