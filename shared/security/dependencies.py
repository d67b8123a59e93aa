from typing import AsyncIterator

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, OAuth2PasswordBearer

from shared.config import settings
from .api_key import verify_api_key
from .jwt_handler import verify_access_token

# Admin tokens come from the storefront's identity provider, not from this service
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)

# Print workers and schedulers
api_key_header = APIKeyHeader(name="X-Internal-API-Key", auto_error=False)


async def get_current_admin(request: Request, token: str = Depends(oauth2_scheme)) -> AsyncIterator[str]:
    """
    Validates the admin bearer token and yields the actor for the audit log.
    The actor is bound to log lines only while the request is being handled.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception

    payload = verify_access_token(token)
    if payload is None or not payload.get("sub"):
        raise credentials_exception

    if payload.get("role") not in settings.ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Print and order actions need an admin role",
        )

    actor = payload["sub"]
    request.state.actor = actor
    with structlog.contextvars.bound_contextvars(actor=actor):
        yield actor


async def verify_internal_api_key(api_key: str = Depends(api_key_header)) -> bool:
    if not verify_api_key(api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing X-Internal-API-Key header",
        )
    return True
