from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from .jwt_handler import verify_access_token


def actor_or_ip(request: Request) -> str:
    """
    Rate limit key: admins by token subject, so one operator cannot hog the
    manual triggers from several browsers; workers and schedulers by address.
    """
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() == "bearer" and token:
        payload = verify_access_token(token)
        if payload and payload.get("sub"):
            return f"admin:{payload['sub']}"
    return f"ip:{get_remote_address(request)}"


# Manual queue ticks and reconciliation passes; limits come from settings
limiter = Limiter(key_func=actor_or_ip)
