import warnings
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from shared.config import settings

SECRET_KEY = settings.JWT_SECRET_KEY
if not SECRET_KEY:
    warnings.warn(
        "JWT_SECRET_KEY is not set. Admin tokens are signed with an insecure default.",
        stacklevel=2,
    )
    SECRET_KEY = "insecure-jwt-secret-change-me"

ALGORITHM = settings.JWT_ALGORITHM


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Signs an admin token. `sub` is the operator recorded in the print action
    log; `role` defaults to the first configured admin role. Tokens are
    normally minted by the identity provider sharing JWT_SECRET_KEY; this is
    for scripts and tests.
    """
    to_encode = data.copy()
    to_encode.setdefault("role", settings.ADMIN_ROLES[0] if settings.ADMIN_ROLES else "admin")
    now = datetime.now(timezone.utc)
    to_encode["iat"] = now
    to_encode["exp"] = now + (expires_delta or timedelta(minutes=settings.ADMIN_TOKEN_EXPIRE_MINUTES))
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_access_token(token: str) -> Optional[dict]:
    """Returns the claims of a valid, unexpired token carrying an expiry; None otherwise."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM], options={"require_exp": True})
    except JWTError:
        return None
