from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt

from carebook.config.settings import settings
from carebook.db.models.user import UserModel


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)
    return encoded_jwt


def decode_access_token(token: str) -> dict:
    """Decode and verify a token; raises jose.JWTError when invalid or expired."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])


def create_token_for_user(user: UserModel, expires_delta: Optional[timedelta] = None) -> str:
    return create_access_token({"sub": str(user.id), "role": user.role}, expires_delta)
