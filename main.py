from fastapi import FastAPI
from shared.config import settings
from shared.config.database import engine, create_schema

# IMPORTANT: import models so they register with Base
from services.order_service import models as order_models
from services.print_service import models as print_models

from services.order_service.main import order_app
from services.print_service.main import print_app
from services.payment_service.main import payment_app
from services.print_service.dispatcher import print_dispatcher
from services.payment_service.reconciliation import payment_reconciler

app = FastAPI(title="Print Shop Cluster")

@app.on_event("startup")
async def startup_event():
    # Mounted apps do not run their own startup hooks
    async with engine.begin() as conn:
        await create_schema(conn)

    if settings.DISPATCHER_AUTOSTART:
        print_dispatcher.start()
    if settings.RECONCILIATION_AUTOSTART:
        payment_reconciler.start()

@app.on_event("shutdown")
async def shutdown_event():
    print_dispatcher.stop()
    payment_reconciler.stop()
    await engine.dispose()

app.mount("/orders", order_app)
app.mount("/printing", print_app)
app.mount("/payments", payment_app)
