"""Device reading ingestion and device status queries.

Both operations authenticate the shared API key first, then resolve the
device under that key's owner. A key that is valid but belongs to another
user therefore yields "not found", never "unauthorized".

Note that ingestion stamps ``last_seen`` with the server's clock, not a
device-supplied time: a device replaying a cached reading after reconnecting
shows as freshly online even though the measurement is old.
"""

import logging
from datetime import datetime
from typing import Any

from sqlmodel import Session

from crowdpulse.accounts.store import authenticate_api_key
from crowdpulse.classification import as_utc, classify_crowd, device_status as liveness
from crowdpulse.errors import ValidationError
from crowdpulse.registry.models import Shop
from crowdpulse.registry.store import record_contact, resolve_device, set_crowd_count

logger = logging.getLogger(__name__)

UNLINKED_MESSAGE = "Device updated but not linked to any shop"


def _iso(dt: datetime | None) -> str | None:
    return as_utc(dt).isoformat() if dt is not None else None


def ingest_reading(
    session: Session,
    device_uid: str,
    people_count: int,
    api_key: str,
    now: datetime,
) -> dict[str, Any]:
    """Accept a people-count reading from a device.

    Raises:
        ValidationError: If ``people_count`` is not a non-negative integer.
        AuthError: If ``api_key`` is unknown.
        NotFoundError: If the key's owner has no device ``device_uid``.
    """
    if isinstance(people_count, bool) or not isinstance(people_count, int) or people_count < 0:
        raise ValidationError("people_count must be a non-negative integer")

    user = authenticate_api_key(session, api_key)
    device = resolve_device(session, user, device_uid)

    record_contact(session, device, now)

    shop = None
    if device.shop_id is not None:
        shop = set_crowd_count(session, device.shop_id, people_count, now)

    result: dict[str, Any] = {
        "success": True,
        "device_id": device_uid,
        "people_count": people_count,
    }
    if shop is not None:
        status = classify_crowd(people_count)
        logger.info(
            "Reading from %s: %d people at shop %s (%s)", device_uid, people_count, shop.id, status
        )
        result["crowd_status"] = status
        result["shop_id"] = shop.id
    else:
        logger.info("Reading from unlinked device %s: %d people", device_uid, people_count)
        result["message"] = UNLINKED_MESSAGE
    result["timestamp"] = now.isoformat()
    return result


def device_status(
    session: Session,
    device_uid: str,
    api_key: str,
    now: datetime,
) -> dict[str, Any]:
    """Report a device's liveness and its shop's current crowd level. Read-only.

    Raises:
        AuthError: If ``api_key`` is unknown.
        NotFoundError: If the key's owner has no device ``device_uid``.
    """
    user = authenticate_api_key(session, api_key)
    device = resolve_device(session, user, device_uid)

    shop_info = None
    if device.shop_id is not None:
        shop = session.get(Shop, device.shop_id)
        if shop is not None:
            shop_info = {
                "id": shop.id,
                "name": shop.name,
                "location": shop.location,
                "crowd_count": shop.crowd_count,
                "crowd_status": classify_crowd(shop.crowd_count),
            }

    return {
        "device_id": device.device_uid,
        "device_name": device.device_name,
        "status": liveness(device.last_seen, now),
        "last_seen": _iso(device.last_seen),
        "shop": shop_info,
        "timestamp": now.isoformat(),
    }
