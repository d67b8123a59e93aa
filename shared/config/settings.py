import os
from dotenv import load_dotenv

load_dotenv()


def _bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Print queue dispatcher
DISPATCHER_INTERVAL_SECONDS = float(os.getenv("DISPATCHER_INTERVAL_SECONDS", "5"))
DISPATCHER_AUTOSTART = _bool("DISPATCHER_AUTOSTART", "true")
DISPATCHER_BATCH_SIZE = int(os.getenv("DISPATCHER_BATCH_SIZE", "10"))
HEARTBEAT_INTERVAL_SECONDS = float(os.getenv("HEARTBEAT_INTERVAL_SECONDS", "10"))
# A printing job whose heartbeat is older than this is considered abandoned
STALE_AFTER_SECONDS = float(
    os.getenv("STALE_AFTER_SECONDS", str(2 * HEARTBEAT_INTERVAL_SECONDS))
)
PRINT_MAX_RETRIES = int(os.getenv("PRINT_MAX_RETRIES", "3"))
PRINT_WORKER_URL = os.getenv("PRINT_WORKER_URL", "")
PRINT_WORKER_TIMEOUT_SECONDS = float(os.getenv("PRINT_WORKER_TIMEOUT_SECONDS", "5"))
WORKER_ID = os.getenv("WORKER_ID", "")

# Payment reconciliation
RECONCILIATION_INTERVAL_SECONDS = float(os.getenv("RECONCILIATION_INTERVAL_SECONDS", "300"))
RECONCILIATION_AUTOSTART = _bool("RECONCILIATION_AUTOSTART", "true")
RECONCILIATION_MIN_AGE_MINUTES = int(os.getenv("RECONCILIATION_MIN_AGE_MINUTES", "5"))
PAYMENT_EXPIRY_HOURS = int(os.getenv("PAYMENT_EXPIRY_HOURS", "24"))
PAYMENT_REMINDER_AFTER_HOURS = int(os.getenv("PAYMENT_REMINDER_AFTER_HOURS", "2"))

# Payment authority (Razorpay REST API)
GATEWAY_BASE_URL = os.getenv("GATEWAY_BASE_URL", "https://api.razorpay.com/v1")
GATEWAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
GATEWAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
GATEWAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")
# Must stay well below the reconciliation interval
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))

# Notification collaborator
NOTIFICATION_URL = os.getenv("NOTIFICATION_URL", "")
NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "5"))

# Security
# Comma-separated; the first key is used for outgoing calls, all are accepted
INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "")
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ADMIN_TOKEN_EXPIRE_MINUTES = int(os.getenv("ADMIN_TOKEN_EXPIRE_MINUTES", "60"))
ADMIN_ROLES = tuple(r.strip() for r in os.getenv("ADMIN_ROLES", "admin").split(",") if r.strip())
QUEUE_TRIGGER_RATE_LIMIT = os.getenv("QUEUE_TRIGGER_RATE_LIMIT", "30/minute")
RECONCILE_RATE_LIMIT = os.getenv("RECONCILE_RATE_LIMIT", "6/minute")

# Observability
OTEL_ENABLED = _bool("OTEL_ENABLED", "true")
OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT", "http://localhost:4317")
OTEL_SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "printshop-lifecycle")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
