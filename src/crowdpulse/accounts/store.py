"""Account sign-up, session lookup, and API key management."""

import logging
import secrets
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from crowdpulse.accounts.models import ApiKey, User
from crowdpulse.errors import AuthError, ConflictError, NotFoundError

logger = logging.getLogger(__name__)


def generate_secret() -> str:
    """64 hex chars from 32 random bytes."""
    return secrets.token_hex(32)


def create_user(session: Session, email: str, full_name: str | None = None) -> User:
    """Create a user together with their first API key.

    Raises:
        ConflictError: If the email is already registered.
    """
    email = email.strip().lower()
    existing = session.exec(select(User).where(User.email == email)).first()
    if existing is not None:
        raise ConflictError("Email already registered")

    user = User(email=email, full_name=full_name, session_token=generate_secret())
    session.add(user)
    try:
        session.flush()
        session.add(ApiKey(user_id=user.id, api_key=generate_secret()))
        session.commit()
    except IntegrityError as e:
        session.rollback()
        raise ConflictError("Email already registered") from e
    session.refresh(user)
    logger.info("Created user %s (id=%s)", email, user.id)
    return user


def get_user_by_token(session: Session, token: str) -> User | None:
    if not token:
        return None
    return session.exec(select(User).where(User.session_token == token)).first()


def update_profile(session: Session, user: User, full_name: str) -> User:
    user.full_name = full_name
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def get_api_key(session: Session, user: User) -> ApiKey:
    """Return the user's current API key row.

    Raises:
        NotFoundError: If the user has no key (should not happen after sign-up).
    """
    key = session.exec(select(ApiKey).where(ApiKey.user_id == user.id)).first()
    if key is None:
        raise NotFoundError("API key not found")
    return key


def regenerate_api_key(session: Session, user: User) -> ApiKey:
    """Replace the user's API key. The old value stops working immediately."""
    key = session.exec(select(ApiKey).where(ApiKey.user_id == user.id)).first()
    if key is None:
        key = ApiKey(user_id=user.id, api_key=generate_secret())
    else:
        key.api_key = generate_secret()
        key.updated_at = datetime.now(UTC)
    session.add(key)
    session.commit()
    session.refresh(key)
    logger.info("Regenerated API key for user %s", user.id)
    return key


def authenticate_api_key(session: Session, api_key: str) -> User:
    """Resolve the user owning ``api_key``.

    Raises:
        AuthError: If the key does not match a stored credential.
    """
    user = None
    if api_key:
        key = session.exec(select(ApiKey).where(ApiKey.api_key == api_key)).first()
        if key is not None:
            user = session.get(User, key.user_id)
    if user is None:
        logger.warning("Rejected device request with unknown API key")
        raise AuthError("Invalid API key")
    return user
