"""
Password hashing, bearer tokens and the route guards built on them.

Tokens are HS256 JWTs carrying the user id (``sub``), email and role. Every
verification failure is reported the same way so callers cannot tell a
missing token from an expired or forged one.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from config import Settings
from deps import get_settings
from errors import AuthenticationError, AuthorizationError
from schemas import Role, User
from storage import Storage

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

security = HTTPBearer(auto_error=False)


class TokenSubject(BaseModel):
    id: int
    email: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_access_token(user: User, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=settings.TOKEN_EXPIRE_DAYS))
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role.value,
        "exp": expire,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str, settings: Settings) -> TokenSubject:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        return TokenSubject(id=int(payload["sub"]), email=payload["email"], role=payload["role"])
    except (jwt.PyJWTError, KeyError, ValueError, PydanticValidationError) as e:
        logger.debug(f"Rejected bearer token: {e}")
        raise AuthenticationError() from e


def authenticate(storage: Storage, email: str, password: str) -> User:
    user = storage.get_user_by_email(email)
    if user is None or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid credentials")
    return user


def current_subject(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
) -> TokenSubject:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError()
    return decode_access_token(credentials.credentials, settings)


def optional_subject(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
) -> Optional[TokenSubject]:
    if credentials is None:
        return None
    try:
        return decode_access_token(credentials.credentials, settings)
    except AuthenticationError:
        return None


def require_admin(subject: TokenSubject = Depends(current_subject)) -> TokenSubject:
    if not subject.is_admin:
        raise AuthorizationError()
    return subject
