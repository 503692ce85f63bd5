from __future__ import annotations

"""Authentication utilities: JWT handling for the owning user.

Account registration and token issuance live outside this service; this
module only resolves the caller of a request from its bearer token.

Env vars:
- JWT_SECRET (required in prod; default for dev)
- JWT_EXPIRES_MIN (default 10080, seven days)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import os
import logging
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel


logger = logging.getLogger(__name__)
bearer_scheme = HTTPBearer(auto_error=False)


def _get_env(name: str, default: Optional[str] = None) -> str:
    val = os.getenv(name, default)
    if val is None:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return val


@dataclass
class JwtConfig:
    secret: str
    algorithm: str = "HS256"
    expires_min: int = 10080

    @staticmethod
    def from_env() -> "JwtConfig":
        secret = _get_env("JWT_SECRET", "dev-secret-change-me")
        expires = int(os.getenv("JWT_EXPIRES_MIN", "10080"))
        return JwtConfig(secret=secret, expires_min=expires)


class User(BaseModel):
    user_id: str
    email: str = ""
    name: str = ""


def create_access_token(user: User, cfg: Optional[JwtConfig] = None) -> str:
    cfg = cfg or JwtConfig.from_env()
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=cfg.expires_min)
    payload = {
        "sub": user.user_id,
        "email": user.email,
        "name": user.name,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.algorithm)


def decode_token(token: str, cfg: Optional[JwtConfig] = None) -> User:
    cfg = cfg or JwtConfig.from_env()
    try:
        data = jwt.decode(token, cfg.secret, algorithms=[cfg.algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token")
    sub = data.get("sub")
    if sub is None or str(sub) == "":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token")
    return User(user_id=str(sub), email=str(data.get("email", "")), name=str(data.get("name", "")))


def get_current_user(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> User:
    """Resolve the current user from the ``Authorization: Bearer`` header."""
    if creds is None or not creds.scheme or creds.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return decode_token(creds.credentials)
