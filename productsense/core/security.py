"""JWT bearer authentication."""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from productsense.core.config import settings
from productsense.db.sessions import get_db
from productsense.models.user import User

logger = logging.getLogger(__name__)

# JWT bearer token scheme
security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise _unauthorized("Could not validate credentials")


def resolve_user(db: Session, payload: dict) -> User:
    """Map token claims to a user, creating one on first sign-in.

    ``sub`` must be a UUID. An unknown ``sub`` is accepted only when the
    token also carries an ``email`` claim; the user is then created with
    that id and email.
    """
    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise _unauthorized("Invalid authentication credentials")

    user = db.query(User).filter(User.id == user_id).first()
    if user is not None:
        return user

    email = payload.get("email")
    if not email:
        raise _unauthorized("User not found")
    user = User(id=user_id, email=email, display_name=payload.get("name") or email.split("@")[0])
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # concurrent first sign-in, or the email already belongs to another id
        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            raise _unauthorized("Email already registered to another account")
        return user
    db.refresh(user)
    logger.info("Created user %s on first sign-in", user.id)
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Dependency to get the current authenticated user from JWT token.

    Usage:
        @router.get("/protected")
        def protected_route(current_user: User = Depends(get_current_user)):
            return {"user_id": current_user.id}
    """
    payload = decode_token(credentials.credentials)
    if payload.get("sub") is None:
        raise _unauthorized("Invalid authentication credentials")
    return resolve_user(db, payload)
