"""Shared FastAPI dependencies for API routes.

Re-exports the auth dependencies so route modules can import from a single
place, and exposes the per-process orchestrator built in the lifespan::

    from .dependencies import AuthContext, get_orchestrator, require_user
"""

from typing import Any, TypeVar

from fastapi import Request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import ValidationError
from ..memory.orchestrator import MemoryOrchestrator
from .auth import AuthContext, get_auth_context, require_admin_permission, require_user

ModelT = TypeVar("ModelT", bound=BaseModel)


def get_orchestrator(request: Request) -> MemoryOrchestrator:
    """Get memory orchestrator from app state."""
    return request.app.state.orchestrator


async def parse_body(request: Request, model: type[ModelT]) -> ModelT:
    """Parse and validate a JSON body inside the handler.

    Bodies are read after the auth dependencies have run, so an
    unauthenticated request is rejected before its payload is looked at.
    """
    try:
        raw: Any = await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be valid JSON") from e
    if not isinstance(raw, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(raw)
    except PydanticValidationError as e:
        errors = e.errors()
        if any(err["type"] == "missing" or err.get("input") in (None, "") for err in errors):
            raise ValidationError("Missing required fields") from e
        loc = ".".join(str(p) for p in errors[0].get("loc", ()))
        raise ValidationError(f"Invalid field '{loc}': {errors[0]['msg']}") from e


__all__ = [
    "AuthContext",
    "get_auth_context",
    "get_orchestrator",
    "parse_body",
    "require_admin_permission",
    "require_user",
]
