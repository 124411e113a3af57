"""
Identity gate: password hashing, bearer tokens and the FastAPI dependencies
that resolve the calling user.

Tokens are opaque random strings handed to the client once. Only their
SHA-256 digest is stored, together with an expiry; logging out deletes the
row so the token stops working immediately.
"""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from storefront import config, models
from storefront.database import get_db
from storefront.errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def issue_token(db: Session, user: models.User) -> str:
    """Create and persist a new bearer token for ``user``; returns the raw token."""
    token = secrets.token_urlsafe(32)
    db.add(models.AccessToken(
        user_id=user.id,
        token_hash=_digest(token),
        expires_at=_utcnow() + timedelta(minutes=config.TOKEN_TTL_MINUTES),
    ))
    db.commit()
    return token


def resolve_token(db: Session, token: str) -> Optional[models.User]:
    """
    Map a raw bearer token to its user.

    Args:
        db: Database session
        token: The token exactly as the client sent it

    Returns:
        The owning User, or None when the token is unknown, revoked or
        past its expiry

    SQL generated:
        SELECT * FROM access_tokens WHERE token_hash = sha256(token) LIMIT 1
        SELECT * FROM users WHERE id = access_tokens.user_id
    """
    access = (
        db.query(models.AccessToken)
        .filter(models.AccessToken.token_hash == _digest(token))
        .first()
    )
    if access is None:
        return None
    if _as_aware(access.expires_at) <= _utcnow():
        return None
    return access.user


def revoke_token(db: Session, token: str) -> None:
    db.query(models.AccessToken).filter(
        models.AccessToken.token_hash == _digest(token)
    ).delete(synchronize_session=False)
    db.commit()


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    if credentials is None or not credentials.credentials:
        raise Unauthorized()
    return credentials.credentials


def get_current_user(
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
) -> models.User:
    user = resolve_token(db, token)
    if user is None:
        raise Unauthorized()
    return user


def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    """
    Capability check for catalog mutations.

    Declared as a dependency so it runs before the request body is
    validated: a non-admin gets 403 whatever the payload looks like.
    """
    if not user.is_admin():
        logger.warning("User %s denied admin-only operation", user.id)
        raise Forbidden()
    return user
