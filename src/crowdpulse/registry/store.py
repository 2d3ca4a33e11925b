"""Shop and device CRUD, device resolution, and reading bookkeeping.

Every lookup is scoped to the owning user; another user's row behaves as if
it did not exist.
"""

import logging
import math
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from crowdpulse.accounts.models import User
from crowdpulse.classification import as_utc, classify_crowd, is_online
from crowdpulse.errors import ConflictError, NotFoundError
from crowdpulse.registry.models import Device, Shop

logger = logging.getLogger(__name__)

_SHOP_FIELDS = {"name", "location", "is_public"}
_DEVICE_FIELDS = {"device_name", "device_uid", "shop_id"}


# --- Shops ---


def create_shop(
    session: Session, user: User, name: str, location: str, is_public: bool = True
) -> Shop:
    shop = Shop(user_id=user.id, name=name.strip(), location=location.strip(), is_public=is_public)
    session.add(shop)
    session.commit()
    session.refresh(shop)
    logger.info("Created shop: %s (id=%s)", shop.name, shop.id)
    return shop


def list_shops(session: Session, user: User) -> list[Shop]:
    """List the user's shops, newest first."""
    stmt = (
        select(Shop)
        .where(Shop.user_id == user.id)
        .order_by(col(Shop.created_at).desc(), col(Shop.id).desc())
    )
    return list(session.exec(stmt).all())


def get_shop(session: Session, user: User, shop_id: int) -> Shop:
    """Get one of the user's shops.

    Raises:
        NotFoundError: If the shop does not exist or belongs to someone else.
    """
    shop = session.get(Shop, shop_id)
    if shop is None or shop.user_id != user.id:
        raise NotFoundError("Shop not found")
    return shop


def update_shop(session: Session, user: User, shop_id: int, **kwargs: Any) -> Shop:
    shop = get_shop(session, user, shop_id)
    for key, value in kwargs.items():
        if key in _SHOP_FIELDS:
            setattr(shop, key, value.strip() if isinstance(value, str) else value)
    shop.updated_at = datetime.now(UTC)
    session.add(shop)
    session.commit()
    session.refresh(shop)
    return shop


def delete_shop(session: Session, user: User, shop_id: int) -> None:
    """Delete a shop. Devices linked to it are unlinked, not deleted."""
    shop = get_shop(session, user, shop_id)

    linked = session.exec(select(Device).where(Device.shop_id == shop_id)).all()
    for device in linked:
        device.shop_id = None
        session.add(device)

    session.delete(shop)
    session.commit()
    logger.info("Deleted shop: %s (id=%s), unlinked %d device(s)", shop.name, shop_id, len(linked))


def set_crowd_count(session: Session, shop_id: int, count: int, now: datetime) -> Shop | None:
    """Overwrite a shop's crowd count with the latest reading.

    Returns None if the shop no longer exists.
    """
    shop = session.get(Shop, shop_id)
    if shop is None:
        return None
    shop.crowd_count = count
    shop.updated_at = now
    session.add(shop)
    session.commit()
    session.refresh(shop)
    return shop


def search_public_shops(session: Session, query: str, limit: int = 20) -> list[Shop]:
    """Public shops whose name or location contains ``query``, busiest first."""
    needle = query.strip()
    stmt = (
        select(Shop)
        .where(Shop.is_public == True)  # noqa: E712
        .where(
            col(Shop.name).icontains(needle, autoescape=True)
            | col(Shop.location).icontains(needle, autoescape=True)
        )
        .order_by(col(Shop.crowd_count).desc(), col(Shop.id))
        .limit(limit)
    )
    return list(session.exec(stmt).all())


# --- Devices ---


def _check_shop_owned(session: Session, user: User, shop_id: int | None) -> None:
    if shop_id is not None:
        get_shop(session, user, shop_id)


def _commit_device(session: Session, device: Device) -> Device:
    session.add(device)
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        raise ConflictError("Device ID already in use") from e
    session.refresh(device)
    return device


def create_device(
    session: Session,
    user: User,
    device_name: str,
    device_uid: str,
    shop_id: int | None = None,
) -> Device:
    """Register a device.

    Raises:
        NotFoundError: If ``shop_id`` is not one of the user's shops.
        ConflictError: If ``device_uid`` is already registered.
    """
    _check_shop_owned(session, user, shop_id)
    device = Device(
        user_id=user.id,
        device_name=device_name.strip(),
        device_uid=device_uid.strip(),
        shop_id=shop_id,
    )
    device = _commit_device(session, device)
    logger.info("Registered device %s (id=%s)", device.device_uid, device.id)
    return device


def list_devices(session: Session, user: User) -> list[Device]:
    """List the user's devices, newest first."""
    stmt = (
        select(Device)
        .where(Device.user_id == user.id)
        .order_by(col(Device.created_at).desc(), col(Device.id).desc())
    )
    return list(session.exec(stmt).all())


def get_device(session: Session, user: User, device_id: int) -> Device:
    device = session.get(Device, device_id)
    if device is None or device.user_id != user.id:
        raise NotFoundError("Device not found")
    return device


def update_device(session: Session, user: User, device_id: int, **kwargs: Any) -> Device:
    """Update name, external id, or shop link. ``shop_id=None`` unlinks."""
    device = get_device(session, user, device_id)
    if "shop_id" in kwargs:
        _check_shop_owned(session, user, kwargs["shop_id"])
    for key, value in kwargs.items():
        if key in _DEVICE_FIELDS:
            setattr(device, key, value.strip() if isinstance(value, str) else value)
    device.updated_at = datetime.now(UTC)
    return _commit_device(session, device)


def delete_device(session: Session, user: User, device_id: int) -> None:
    device = get_device(session, user, device_id)
    session.delete(device)
    session.commit()
    logger.info("Deleted device %s (id=%s)", device.device_uid, device_id)


def resolve_device(session: Session, user: User, device_uid: str) -> Device:
    """Find the user's device by its external identifier.

    Raises:
        NotFoundError: If no such device is owned by ``user``.
    """
    stmt = select(Device).where(Device.device_uid == device_uid, Device.user_id == user.id)
    device = session.exec(stmt).first()
    if device is None:
        logger.warning("Rejected reading for unknown device %s (user %s)", device_uid, user.id)
        raise NotFoundError("Device not found or not associated with this API key")
    return device


def record_contact(session: Session, device: Device, now: datetime) -> Device:
    """Advance ``last_seen`` to ``now``. Never moves it backward.

    The comparison happens in the UPDATE itself, so overlapping requests from
    one device cannot regress the stored value.
    """
    now = as_utc(now).astimezone(UTC)
    stmt = (
        update(Device)
        .where(col(Device.id) == device.id)
        .where(or_(col(Device.last_seen).is_(None), col(Device.last_seen) < now))
        .values(last_seen=now)
        .execution_options(synchronize_session=False)
    )
    session.exec(stmt)
    session.commit()
    session.refresh(device)
    return device


# --- Dashboard ---


def dashboard_stats(session: Session, user: User, now: datetime) -> dict[str, Any]:
    """Summary numbers for the owner's dashboard."""
    shops = list_shops(session, user)
    devices = list_devices(session, user)

    online = sum(1 for d in devices if is_online(d.last_seen, now))
    # Half-up rounding, not banker's
    avg = math.floor(sum(s.crowd_count for s in shops) / len(shops) + 0.5) if shops else 0

    top_shop = None
    if shops:
        # Oldest shop wins ties
        busiest = max(reversed(shops), key=lambda s: s.crowd_count)
        top_shop = {
            "name": busiest.name,
            "crowd_count": busiest.crowd_count,
            "crowd_status": classify_crowd(busiest.crowd_count),
        }

    return {
        "shop_count": len(shops),
        "device_count": len(devices),
        "online_devices": online,
        "avg_crowd_count": avg,
        "top_shop": top_shop,
    }
