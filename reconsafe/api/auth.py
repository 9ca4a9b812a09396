"""
ReconSafe caller identity

Bearer JWTs are issued elsewhere; this module only verifies them (HS256,
RECONSAFE_SECRET_KEY) and resolves the caller's tenant from tenant_users.
"""
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from reconsafe.core.database import get_db
from reconsafe.services.errors import ErrorCode, ForbiddenError, UnauthorizedError

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60
ADMIN_ROLES = {"admin", "owner"}

_FALLBACK_SECRET = secrets.token_urlsafe(32)

security = HTTPBearer(auto_error=False)


def secret_key() -> str:
    return os.getenv("RECONSAFE_SECRET_KEY") or _FALLBACK_SECRET


@dataclass
class Caller:
    user_id: str
    tenant_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """Issue a token for `user_id`; used by tooling and tests."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "exp": now + expires_delta,
        "iat": now,
        "type": "access",
    }
    return jwt.encode(payload, secret_key(), algorithm=ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, secret_key(), algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError(ErrorCode.INVALID_TOKEN, detail="Token has expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError(ErrorCode.INVALID_TOKEN)


def get_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Caller:
    if not credentials or not credentials.credentials:
        raise UnauthorizedError(ErrorCode.NO_AUTH)

    payload = decode_token(credentials.credentials)
    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError(ErrorCode.INVALID_TOKEN, detail="Token has no subject")

    tenant_user = get_db().get_tenant_user(user_id)
    if not tenant_user or not tenant_user.get("tenant_id"):
        raise ForbiddenError("Forbidden - No tenant access", code=ErrorCode.NO_TENANT)

    return Caller(
        user_id=user_id,
        tenant_id=tenant_user["tenant_id"],
        role=tenant_user.get("role") or "user",
    )


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        raise ForbiddenError(f"Role '{caller.role}' not authorized. Required: {sorted(ADMIN_ROLES)}")
    return caller
