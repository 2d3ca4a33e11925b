"""User and device API key models."""

from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    """Dashboard account. ``session_token`` authenticates the owner API only."""

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    full_name: str | None = None
    session_token: str = Field(unique=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ApiKey(SQLModel, table=True):
    """The single shared secret a user's devices present. One row per user."""

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", unique=True)
    api_key: str = Field(unique=True, index=True)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
