"""Bearer token verification and route guards.

Tokens are issued elsewhere; this module only verifies them and exposes the
caller as ``g.user`` for the duration of a request.
"""
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Dict, Optional

import jwt
from quart import g, request

from .config import settings
from .errors import Forbidden, Unauthorized

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    id: Any
    email: Optional[str]
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def verify_bearer_token(token: str) -> Principal:
    try:
        payload: Dict[str, Any] = jwt.decode(
            token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM]
        )
    except jwt.PyJWTError as e:
        _logger.info("Token verification failed | err=%s", e)
        raise Unauthorized("Invalid or expired token")
    if payload.get("id") is None:
        raise Unauthorized("Token has no user id")
    return Principal(id=payload["id"], email=payload.get("email"), role=payload.get("role") or "user")


def _principal_from_request() -> Principal:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        raise Unauthorized("No token provided")
    return verify_bearer_token(header.split(" ", 1)[1].strip())


def require_auth(view):
    @wraps(view)
    async def wrapper(*args, **kwargs):
        g.user = _principal_from_request()
        return await view(*args, **kwargs)

    return wrapper


def require_admin(view):
    @wraps(view)
    async def wrapper(*args, **kwargs):
        user = _principal_from_request()
        if not user.is_admin:
            _logger.warning("Admin route refused | user_id=%s role=%s", user.id, user.role)
            raise Forbidden("Admin access required", {"role": user.role})
        g.user = user
        return await view(*args, **kwargs)

    return wrapper
