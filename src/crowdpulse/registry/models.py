"""Shop and ESP32 device models."""

from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class Shop(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="user.id")
    name: str
    location: str
    crowd_count: int = Field(default=0, ge=0)  # last reading, not a running total
    is_public: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Device(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="user.id")
    device_uid: str = Field(unique=True, index=True)
    device_name: str
    shop_id: int | None = Field(default=None, foreign_key="shop.id")
    last_seen: datetime | None = None  # None = never reported
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
