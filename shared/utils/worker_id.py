import os
import socket
import uuid

from shared.config import settings

_WORKER_ID: str | None = None


def get_worker_id() -> str:
    """Stable identity of this process, stamped on every job it claims."""
    global _WORKER_ID
    if _WORKER_ID is None:
        _WORKER_ID = settings.WORKER_ID or (
            f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"
        )
    return _WORKER_ID
