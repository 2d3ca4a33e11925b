"""Device-facing endpoints: reading ingestion and status query.

These are authenticated only by the API key in the request; browser
sessions play no part.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from pydantic import BaseModel, Field, StrictInt
from sqlmodel import Session

from crowdpulse.api.deps import get_now
from crowdpulse.database import get_session
from crowdpulse.errors import CrowdPulseError, InternalError, ValidationError
from crowdpulse.ingest.service import device_status, ingest_reading

logger = logging.getLogger(__name__)

router = APIRouter(tags=["esp32"])

CORS_ALLOW_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    "x-supabase-client-platform",
    "x-supabase-client-platform-version",
    "x-supabase-client-runtime",
    "x-supabase-client-runtime-version",
]

# Answered for any origin regardless of cors_allow_origins
DEVICE_PATHS = frozenset({"/esp32-update", "/esp32-status"})

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": ", ".join(CORS_ALLOW_HEADERS),
}


class ReadingRequest(BaseModel):
    device_id: str = Field(min_length=1)
    people_count: StrictInt = Field(ge=0)
    api_key: str = Field(min_length=1)


def _guarded(session: Session, op: Callable[[], dict[str, Any]]) -> dict[str, Any]:
    """Run ``op``; anything other than a CrowdPulseError becomes an InternalError."""
    try:
        return op()
    except CrowdPulseError:
        raise
    except Exception as e:
        session.rollback()
        logger.exception("Unexpected failure handling device request")
        raise InternalError(str(e)) from e


@router.options("/esp32-update")
@router.options("/esp32-status")
def preflight() -> Response:
    return Response(status_code=200, headers=PREFLIGHT_HEADERS)


@router.post("/esp32-update")
def esp32_update(
    request: ReadingRequest,
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
) -> dict[str, Any]:
    return _guarded(
        session,
        lambda: ingest_reading(
            session,
            device_uid=request.device_id,
            people_count=request.people_count,
            api_key=request.api_key,
            now=now,
        ),
    )


@router.get("/esp32-status")
def esp32_status(
    device_id: str | None = None,
    api_key: str | None = None,
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
) -> dict[str, Any]:
    if not device_id or not api_key:
        raise ValidationError("Missing required params: device_id, api_key")
    return _guarded(
        session,
        lambda: device_status(session, device_uid=device_id, api_key=api_key, now=now),
    )
