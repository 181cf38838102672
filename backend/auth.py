"""
Authentication helpers: password hashing, JWT tokens and FastAPI dependencies.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError
from werkzeug.security import check_password_hash, generate_password_hash

from config import settings
from store import PathStore, get_store

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return check_password_hash(hashed, plain)


def create_access_token(user_id: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    return jwt.encode({"sub": user_id, "exp": expire}, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str:
    """Return the user id carried by a token. Raises JWTError subclasses."""
    payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    user_id = payload.get("sub")
    if not user_id:
        raise JWTError("Token has no subject")
    return user_id


def public_user(user: dict) -> dict:
    """User fields safe to return to clients."""
    return {
        "id": user["id"],
        "username": user["username"],
        "email": user["email"],
        "name": user.get("name"),
        "role": user.get("role", "user"),
        "created_at": user.get("created_at"),
    }


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status.HTTP_401_UNAUTHORIZED,
        message,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _resolve_user(token: Optional[str], store: Optional[PathStore]) -> dict:
    if not token:
        raise _unauthorized("Access token is required")
    if store is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Database is not available")

    try:
        user_id = decode_access_token(token)
    except ExpiredSignatureError:
        raise _unauthorized("Token expired. Please log in again.")
    except JWTError:
        raise _unauthorized("Invalid or malformed token. Please log in again.")

    user = await store.get_user(user_id)
    if user is None:
        raise _unauthorized("User not found")
    if user.get("is_active") is False:
        raise _unauthorized("Account is deactivated")
    return user


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    store: Optional[PathStore] = Depends(get_store),
) -> dict:
    return await _resolve_user(token, store)


async def get_optional_user(
    token: Optional[str] = Depends(oauth2_scheme),
    store: Optional[PathStore] = Depends(get_store),
) -> Optional[dict]:
    """Like get_current_user, but anonymous callers get None instead of a 401."""
    if not token or store is None:
        return None
    try:
        return await _resolve_user(token, store)
    except HTTPException as e:
        logger.debug(f"[Auth] Ignoring bad optional token: {e.detail}")
        return None
