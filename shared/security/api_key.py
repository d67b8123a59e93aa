"""
Shared secret for machine callers: print workers reporting job progress and
schedulers hitting the cron endpoints.

INTERNAL_API_KEY may list several comma-separated keys so a new key can be
rolled out to workers before the old one is retired. Outgoing calls (the
job push to the print worker) always present the first one.
"""
import secrets
import warnings
from typing import Optional

from shared.config import settings

_INSECURE_DEFAULT = "insecure-default-change-me"


def _load_keys() -> tuple:
    keys = tuple(k.strip() for k in settings.INTERNAL_API_KEY.split(",") if k.strip())
    if not keys:
        warnings.warn(
            "INTERNAL_API_KEY is not set. Print workers and schedulers "
            "authenticate with an insecure default. Set this env var in production!",
            stacklevel=2,
        )
        keys = (_INSECURE_DEFAULT,)
    return keys


ACCEPTED_KEYS = _load_keys()
INTERNAL_API_KEY: str = ACCEPTED_KEYS[0]


def verify_api_key(provided_key: Optional[str]) -> bool:
    """Constant-time check against every accepted key."""
    if not provided_key:
        return False
    provided = provided_key.encode()
    matched = False
    # No early exit: every key is compared
    for key in ACCEPTED_KEYS:
        matched |= secrets.compare_digest(provided, key.encode())
    return matched
