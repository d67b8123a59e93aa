from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text
from shared.config.database import Base
from shared.utils.clock import utcnow

# Storefront checkout sends named priorities; stored as integers, higher first
PRIORITY_LEVELS = {"low": 0, "normal": 1, "high": 2, "urgent": 3}


class PrintJob(Base):
    __tablename__ = "print_jobs"
    __table_args__ = {"schema": "print_schema"}

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(64), unique=True, nullable=False, index=True) # one job per order
    customer_name = Column(String(120), nullable=True)
    customer_email = Column(String(255), nullable=True)
    file_url = Column(String(1024), nullable=True)
    file_name = Column(String(255), nullable=True)
    file_type = Column(String(120), nullable=True)
    printing_options = Column(JSON, nullable=False, default=dict)
    priority = Column(Integer, nullable=False, default=PRIORITY_LEVELS["normal"], index=True)

    status = Column(String(16), nullable=False, default="pending", index=True) # pending, printing, completed, failed
    printer_id = Column(Integer, nullable=True, index=True)
    printer_name = Column(String(120), nullable=True)
    worker_id = Column(String(120), nullable=True)
    claim_token = Column(String(32), nullable=True) # new on every claim; worker reports must echo it
    heartbeat_at = Column(DateTime, nullable=True)

    estimated_duration = Column(Integer, nullable=True) # minutes
    actual_duration = Column(Integer, nullable=True) # minutes
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Printer(Base):
    __tablename__ = "printers"
    __table_args__ = {"schema": "print_schema"}

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), unique=True, nullable=False)
    connection = Column(String(255), nullable=True) # usb path, ip:port, queue name
    capabilities = Column(JSON, nullable=False, default=dict)

    # Written only by the dispatcher
    status = Column(String(16), nullable=False, default="offline", index=True) # offline, idle, busy
    current_job_id = Column(Integer, nullable=True)
    last_seen_at = Column(DateTime, nullable=True)
    total_jobs_printed = Column(Integer, nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True, index=True) # soft delete
    created_at = Column(DateTime, nullable=False, default=utcnow)
