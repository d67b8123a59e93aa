from sqlalchemy import Column, Integer, String, Float, DateTime, JSON, Text
from shared.config.database import Base
from shared.utils.clock import utcnow

class Order(Base):
    __tablename__ = "orders"
    # We use a separate schema to simulate microservice isolation
    __table_args__ = {"schema": "order_schema"}

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(64), unique=True, nullable=False, index=True) # externally visible

    # Payment truth
    payment_status = Column(String(16), nullable=False, default="pending", index=True) # pending, completed, failed
    gateway_order_id = Column(String(64), nullable=True, index=True)
    gateway_payment_id = Column(String(64), nullable=True)
    amount = Column(Float, nullable=False)
    paid_at = Column(DateTime, nullable=True)

    # Derived pair, always written together (see shared.lifecycle.status_fields)
    status = Column(String(24), nullable=False, default="pending_payment", index=True)
    order_status = Column(String(16), nullable=False, default="pending")

    # Print lifecycle; NULL print_status means "not in the print queue"
    print_status = Column(String(16), nullable=True, index=True) # pending, printing, printed, failed
    print_started_at = Column(DateTime, nullable=True)
    print_completed_at = Column(DateTime, nullable=True)
    printing_heartbeat_at = Column(DateTime, nullable=True)
    printer_id = Column(Integer, nullable=True)
    printer_name = Column(String(120), nullable=True)
    printing_by = Column(String(120), nullable=True)
    print_job_id = Column(String(32), nullable=True)
    print_error = Column(Text, nullable=True)

    # Customer + document
    customer_name = Column(String(120), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(32), nullable=True)
    file_url = Column(String(1024), nullable=True)
    file_name = Column(String(255), nullable=True)
    file_type = Column(String(120), nullable=True)
    printing_options = Column(JSON, nullable=True) # page_size, color, sided, copies, page_count

    reminder_sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class PrintActionLog(Base):
    """Append-only audit trail; rows are never updated or deleted."""
    __tablename__ = "print_action_logs"
    __table_args__ = {"schema": "order_schema"}

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(48), nullable=False, index=True) # reprint, force_printed, stale_print_recovered, ...
    order_id = Column(String(64), nullable=False, index=True)
    print_job_id = Column(String(32), nullable=True)
    actor = Column(String(255), nullable=False)
    previous_status = Column(String(24), nullable=True)
    new_status = Column(String(24), nullable=True)
    reason = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
