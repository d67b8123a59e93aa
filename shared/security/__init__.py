from .api_key import INTERNAL_API_KEY, verify_api_key
from .dependencies import get_current_admin, verify_internal_api_key
from .jwt_handler import create_access_token, verify_access_token
from .rate_limiter import actor_or_ip, limiter

__all__ = [
    "INTERNAL_API_KEY",
    "actor_or_ip",
    "create_access_token",
    "get_current_admin",
    "limiter",
    "verify_access_token",
    "verify_api_key",
    "verify_internal_api_key",
]
