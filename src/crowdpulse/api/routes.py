"""Owner-facing REST API: account, API key, shops, devices, dashboard."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import Session

from crowdpulse.accounts.models import User
from crowdpulse.accounts.store import (
    create_user,
    get_api_key,
    regenerate_api_key,
    update_profile,
)
from crowdpulse.api.deps import get_current_user, get_now
from crowdpulse.classification import as_utc, classify_crowd, crowd_advice, device_status
from crowdpulse.config import settings
from crowdpulse.database import get_session
from crowdpulse.errors import ValidationError
from crowdpulse.ingest.sketch import render_sketch
from crowdpulse.registry.models import Device, Shop
from crowdpulse.registry.store import (
    create_device,
    create_shop,
    dashboard_stats,
    delete_device,
    delete_shop,
    get_device,
    get_shop,
    list_devices,
    list_shops,
    resolve_device,
    search_public_shops,
    update_device,
    update_shop,
)

router = APIRouter(prefix="/api")


# Request models
class _Request(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class SignupRequest(_Request):
    email: str = Field(min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    full_name: str | None = None


class UpdateProfileRequest(_Request):
    full_name: str


class CreateShopRequest(_Request):
    name: str = Field(min_length=1)
    location: str = Field(min_length=1)
    is_public: bool = True


class UpdateShopRequest(_Request):
    name: str | None = Field(default=None, min_length=1)
    location: str | None = Field(default=None, min_length=1)
    is_public: bool | None = None


class CreateDeviceRequest(_Request):
    device_name: str = Field(min_length=1)
    device_uid: str = Field(min_length=1)
    shop_id: int | None = None


class UpdateDeviceRequest(_Request):
    device_name: str | None = Field(default=None, min_length=1)
    device_uid: str | None = Field(default=None, min_length=1)
    shop_id: int | None = None  # explicit null unlinks


def _utc_fields(data: dict[str, Any]) -> dict[str, Any]:
    # SQLite hands datetimes back without tzinfo
    return {k: as_utc(v) if isinstance(v, datetime) else v for k, v in data.items()}


def _user_out(user: User) -> dict[str, Any]:
    return _utc_fields(user.model_dump(exclude={"session_token"}))


def _shop_out(shop: Shop) -> dict[str, Any]:
    return {**_utc_fields(shop.model_dump()), "crowd_status": classify_crowd(shop.crowd_count)}


def _device_out(device: Device, now: datetime) -> dict[str, Any]:
    return {
        **_utc_fields(device.model_dump()),
        "status": device_status(device.last_seen, now),
    }


# --- Account ---


@router.post("/users", status_code=201)
def signup(
    request: SignupRequest,
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    user = create_user(session, request.email, request.full_name)
    key = get_api_key(session, user)
    return {**_user_out(user), "session_token": user.session_token, "api_key": key.api_key}


@router.get("/me")
def me(user: User = Depends(get_current_user)) -> dict[str, Any]:
    return _user_out(user)


@router.patch("/me")
def update_me(
    request: UpdateProfileRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    return _user_out(update_profile(session, user, request.full_name))


@router.get("/api-key")
def current_api_key(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict[str, str]:
    return {"api_key": get_api_key(session, user).api_key}


@router.post("/api-key/regenerate")
def regenerate_key(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict[str, str]:
    return {"api_key": regenerate_api_key(session, user).api_key}


# --- Shops ---


@router.get("/shops")
def list_my_shops(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> list[dict[str, Any]]:
    return [_shop_out(s) for s in list_shops(session, user)]


@router.post("/shops", status_code=201)
def create_new_shop(
    request: CreateShopRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    shop = create_shop(session, user, request.name, request.location, request.is_public)
    return _shop_out(shop)


@router.get("/shops/{shop_id}")
def shop_detail(
    shop_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    return _shop_out(get_shop(session, user, shop_id))


@router.patch("/shops/{shop_id}")
def update_existing_shop(
    shop_id: int,
    request: UpdateShopRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    # Only pass non-None values to update_shop
    updates = {k: v for k, v in request.model_dump().items() if v is not None}
    return _shop_out(update_shop(session, user, shop_id, **updates))


@router.delete("/shops/{shop_id}")
def delete_existing_shop(
    shop_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict[str, str]:
    delete_shop(session, user, shop_id)
    return {"status": "deleted"}


# --- Devices ---


@router.get("/devices")
def list_my_devices(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
) -> list[dict[str, Any]]:
    return [_device_out(d, now) for d in list_devices(session, user)]


@router.post("/devices", status_code=201)
def register_device(
    request: CreateDeviceRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
) -> dict[str, Any]:
    device = create_device(
        session, user, request.device_name, request.device_uid, shop_id=request.shop_id
    )
    return _device_out(device, now)


@router.get("/devices/sketch", response_class=PlainTextResponse)
def device_sketch(
    request: Request,
    device_uid: str | None = None,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> str:
    """Arduino sketch preloaded with the caller's API key."""
    if device_uid is not None:
        device_uid = resolve_device(session, user, device_uid).device_uid
    server_url = str(request.url_for("esp32_update"))
    return render_sketch(get_api_key(session, user).api_key, server_url, device_uid)


@router.get("/devices/{device_id}")
def device_detail(
    device_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
) -> dict[str, Any]:
    return _device_out(get_device(session, user, device_id), now)


@router.patch("/devices/{device_id}")
def update_existing_device(
    device_id: int,
    request: UpdateDeviceRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
) -> dict[str, Any]:
    updates = {
        k: v
        for k, v in request.model_dump(exclude_unset=True).items()
        if v is not None or k == "shop_id"
    }
    return _device_out(update_device(session, user, device_id, **updates), now)


@router.delete("/devices/{device_id}")
def delete_existing_device(
    device_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict[str, str]:
    delete_device(session, user, device_id)
    return {"status": "deleted"}


# --- Dashboard & public crowd check ---


@router.get("/dashboard")
def dashboard(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
) -> dict[str, Any]:
    return dashboard_stats(session, user, now)


@router.get("/crowd-check")
def crowd_check(
    q: str = "",
    session: Session = Depends(get_session),
) -> list[dict[str, Any]]:
    if not q.strip():
        raise ValidationError("Search query must not be empty")
    shops = search_public_shops(session, q, limit=settings.crowd_check_limit)
    return [
        {
            "id": s.id,
            "name": s.name,
            "location": s.location,
            "crowd_count": s.crowd_count,
            "crowd_status": classify_crowd(s.crowd_count),
            "advice": crowd_advice(s.crowd_count),
            "updated_at": as_utc(s.updated_at),
        }
        for s in shops
    ]
