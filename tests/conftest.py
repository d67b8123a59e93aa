import os
import tempfile

# Must be set before anything under shared/ is imported: the engine and the
# security defaults are read at import time
_DB_DIR = tempfile.mkdtemp(prefix="printshop-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/main.db"
os.environ["OTEL_ENABLED"] = "false"
os.environ["INTERNAL_API_KEY"] = "test-internal-key"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["DISPATCHER_AUTOSTART"] = "false"
os.environ["RECONCILIATION_AUTOSTART"] = "false"
os.environ["NOTIFICATION_URL"] = ""
os.environ["PRINT_WORKER_URL"] = ""
os.environ["RAZORPAY_KEY_ID"] = ""
os.environ["RAZORPAY_KEY_SECRET"] = "test-key-secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "test-webhook-secret"

from datetime import timedelta

import pytest
from sqlalchemy import event

from shared.config.database import AsyncSessionLocal, Base, SERVICE_SCHEMAS, create_schema, engine
from shared.errors import GatewayUnavailable
from shared.security import create_access_token
from shared.utils.clock import utcnow
from services.order_service.models import Order
from services.print_service.delivery import PrintDeliveryClient
from services.print_service.dispatcher import PrintQueueDispatcher
from services.print_service.models import Printer
from services.print_service.service import PrintService
from services.payment_service.gateway import GatewayLookup

INTERNAL_HEADERS = {"X-Internal-API-Key": "test-internal-key"}


@event.listens_for(engine.sync_engine, "connect")
def _attach_service_schemas(dbapi_connection, connection_record):
    # SQLite has no schemas; each one becomes an attached database file
    cursor = dbapi_connection.cursor()
    for schema in SERVICE_SCHEMAS:
        cursor.execute(f"ATTACH DATABASE '{_DB_DIR}/{schema}.db' AS {schema}")
    cursor.close()


@pytest.fixture
async def database():
    async with engine.begin() as conn:
        await create_schema(conn)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def admin_headers():
    token = create_access_token({"sub": "admin@printshop.test"})
    return {"Authorization": f"Bearer {token}"}


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def dispatch(self, kind, snapshot):
        self.sent.append((kind, snapshot["order_id"]))

    def kinds(self, order_id=None):
        return [kind for kind, oid in self.sent if order_id is None or oid == order_id]


class StubDispatcher(PrintQueueDispatcher):
    """A dispatcher whose out-of-band ticks are counted instead of run."""

    def __init__(self, notifier=None):
        super().__init__(worker_id="worker-stub", notifier=notifier,
                         delivery=PrintDeliveryClient(base_url=""))
        self.triggered = 0

    def trigger(self):
        self.triggered += 1


class FakeGateway:
    configured = True

    def __init__(self, answers=None):
        self.answers = answers or {}
        self.calls = []

    async def lookup_order_status(self, gateway_order_id):
        self.calls.append(gateway_order_id)
        answer = self.answers.get(gateway_order_id)
        if answer is None or isinstance(answer, Exception):
            raise answer or GatewayUnavailable(f"no record for {gateway_order_id}")
        return answer

    def set(self, gateway_order_id, status, payment_id=None):
        self.answers[gateway_order_id] = GatewayLookup(status, payment_id)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def stub_dispatcher(notifier):
    return StubDispatcher(notifier)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def dispatcher(notifier):
    return PrintQueueDispatcher(
        worker_id="worker-a",
        notifier=notifier,
        delivery=PrintDeliveryClient(base_url=""),
        stale_after_seconds=20,
    )


async def make_order(
    order_id="ORD-1",
    *,
    paid=True,
    age=timedelta(0),
    gateway_order_id=None,
    printing_options=None,
    file_url="https://files.printshop.test/doc.pdf",
    **fields,
) -> Order:
    order = Order(
        order_id=order_id,
        amount=120.0,
        gateway_order_id=gateway_order_id,
        payment_status="completed" if paid else "pending",
        status="paid" if paid else "pending_payment",
        order_status="pending",
        customer_name="Asha",
        customer_email="asha@example.test",
        file_url=file_url,
        file_name="doc.pdf",
        file_type="application/pdf",
        printing_options=printing_options or {
            "page_size": "A4", "color": "bw", "sided": "single", "copies": 1, "page_count": 4,
        },
        created_at=utcnow() - age,
        **fields,
    )
    async with AsyncSessionLocal() as db:
        db.add(order)
        await db.commit()
        await db.refresh(order)
    return order


async def add_printer(name="printer-1", capabilities=None, status="idle") -> Printer:
    printer = Printer(name=name, capabilities=capabilities or {}, status=status)
    async with AsyncSessionLocal() as db:
        db.add(printer)
        await db.commit()
        await db.refresh(printer)
    return printer


async def queue_order(order_id="ORD-1", **kwargs):
    """A paid order with its print job, ready for the dispatcher."""
    order = await make_order(order_id, **kwargs)
    async with AsyncSessionLocal() as db:
        return await PrintService.enqueue_order(db, order)
