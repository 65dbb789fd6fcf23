# app/core/security.py
# Owner identity is resolved by the upstream auth layer; this module only reads it.

from typing import Annotated, Optional
from fastapi import Depends, Request

from app.core.config import settings
from app.core.exceptions import AuthenticationRequiredError


def get_current_owner_id(request: Request) -> str:
    """Returns the authenticated owner id or raises AUTHENTICATION_REQUIRED."""
    owner_id: Optional[str] = getattr(request.state, "owner_id", None)
    if not owner_id:
        owner_id = request.headers.get(settings.AUTH_OWNER_HEADER)
    if not owner_id or not owner_id.strip():
        raise AuthenticationRequiredError()
    return owner_id.strip()


CurrentOwnerId = Annotated[str, Depends(get_current_owner_id)]
