"""API authentication (config-based keys; verified user id supplied by the caller)."""

import hmac
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException, Security
from fastapi.security import APIKeyHeader

from ..core.config import get_settings

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """Authentication context for a request.

    ``user_id`` comes from the ``X-User-Id`` header, set by the session
    layer in front of this service after it has verified the user.
    """

    api_key: str = ""
    user_id: Optional[str] = None
    can_admin: bool = False


@lru_cache
def _build_api_keys() -> dict[str, AuthContext]:
    """Build API key map from settings (env: AUTH__API_KEY, AUTH__ADMIN_API_KEY)."""
    auth = get_settings().auth
    keys: dict[str, AuthContext] = {}
    if auth.api_key:
        keys[auth.api_key] = AuthContext(
            api_key=auth.api_key,
            can_admin=(auth.api_key == auth.admin_api_key and bool(auth.admin_api_key)),
        )
    if auth.admin_api_key and auth.admin_api_key != auth.api_key:
        keys[auth.admin_api_key] = AuthContext(api_key=auth.admin_api_key, can_admin=True)
    return keys


async def get_auth_context(
    api_key: Optional[str] = Security(api_key_header),
    x_user_id: Optional[str] = Header(None),
) -> AuthContext:
    """Dependency to get auth context from request headers."""
    if not api_key:
        raise HTTPException(status_code=401, detail="API key required")

    context = None
    for known_key, ctx in _build_api_keys().items():
        if hmac.compare_digest(api_key, known_key):
            context = ctx
            break
    if not context:
        raise HTTPException(status_code=401, detail="Invalid API key")

    user_id = (x_user_id or "").strip() or None
    return replace(context, user_id=user_id)


async def require_user(context: AuthContext = Depends(get_auth_context)) -> AuthContext:
    """Require an authenticated end user."""
    if not context.user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return context


async def require_admin_permission(
    context: AuthContext = Depends(get_auth_context),
) -> AuthContext:
    """Require admin permission."""
    if not context.can_admin:
        raise HTTPException(status_code=403, detail="Admin permission required")
    return context
