"""
Password hashing, access tokens and the request principal.
"""
import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Protocol

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from database import utcnow
from errors import AuthenticationError, AuthorizationError

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24

logger = logging.getLogger(__name__)


class PasswordHasher(Protocol):
    def hash(self, password: str) -> str: ...

    def verify(self, password: str, hashed: str) -> bool: ...


class BcryptHasher:
    def __init__(self):
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto")

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, hashed: str) -> bool:
        if not hashed:
            return False
        return self._context.verify(password, hashed)


_hasher: PasswordHasher = BcryptHasher()


def get_hasher() -> PasswordHasher:
    return _hasher


@dataclass(frozen=True)
class Principal:
    user_id: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"


def create_access_token(user_id: str, email: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": user_id, "userId": user_id, "email": email, "role": role, "exp": expire}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Principal:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthenticationError("Could not validate credentials")
    user_id = payload.get("userId") or payload.get("sub")
    role = payload.get("role")
    if not user_id or not role:
        raise AuthenticationError("Could not validate credentials")
    return Principal(user_id=user_id, email=payload.get("email", ""), role=role)


bearer_scheme = HTTPBearer(auto_error=False)


def get_current_principal(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Not authenticated")
    return decode_access_token(credentials.credentials)


def require_role(*roles: str):
    def role_dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            logger.warning("User %s with role %s denied", principal.user_id, principal.role)
            raise AuthorizationError("Insufficient permissions")
        return principal
    return role_dep


require_admin = require_role("ADMIN")
