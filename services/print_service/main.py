from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from shared.config.database import engine, create_schema
from shared.observability import setup_observability
from shared.security import limiter

from .models import PrintJob, Printer  # noqa: F401 registers models with Base
from .router import public_router, router, worker_router

print_app = FastAPI(
    title="Print Service",
    version="1.0.0",
    description="Print queue dispatcher, printers and print-delivery worker reporting.",
)

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(print_app, "print_service")

# --- SECURITY SETUP ---
print_app.state.limiter = limiter
print_app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

print_app.include_router(public_router)
print_app.include_router(worker_router)
print_app.include_router(router)


@print_app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        await create_schema(conn)
