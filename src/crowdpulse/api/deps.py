"""Shared FastAPI dependencies."""

from datetime import UTC, datetime

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from crowdpulse.accounts.models import User
from crowdpulse.accounts.store import get_user_by_token
from crowdpulse.database import get_session
from crowdpulse.errors import AuthError

_bearer = HTTPBearer(auto_error=False)


def get_now() -> datetime:
    """Current time for a request. Override in tests to pin the clock."""
    return datetime.now(UTC)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    session: Session = Depends(get_session),
) -> User:
    """Resolve the dashboard user from ``Authorization: Bearer <session_token>``."""
    user = get_user_by_token(session, credentials.credentials) if credentials else None
    if user is None:
        raise AuthError("Not authenticated")
    return user
