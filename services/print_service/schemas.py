from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field


class PrinterCapabilities(BaseModel):
    supported_page_sizes: Optional[List[Literal["A4", "A3", "Letter"]]] = None
    max_paper_size: Optional[Literal["A4", "A3", "Letter"]] = None
    supports_color: Optional[bool] = None
    supports_duplex: Optional[bool] = None
    supported_file_types: Optional[List[str]] = None
    max_copies: Optional[int] = Field(None, ge=1)


class PrinterCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    connection: Optional[str] = None
    capabilities: PrinterCapabilities = PrinterCapabilities()


class PrinterUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    connection: Optional[str] = None
    capabilities: Optional[PrinterCapabilities] = None


class PrinterResponse(BaseModel):
    id: int
    name: str
    connection: Optional[str]
    capabilities: Dict[str, Any]
    status: str
    current_job_id: Optional[int]
    last_seen_at: Optional[datetime]
    total_jobs_printed: int
    is_active: bool

    class Config:
        from_attributes = True


class PrintJobResponse(BaseModel):
    id: int
    order_id: str
    file_url: Optional[str]
    file_name: Optional[str]
    file_type: Optional[str]
    printing_options: Dict[str, Any]
    priority: int
    status: str
    printer_id: Optional[int]
    printer_name: Optional[str]
    worker_id: Optional[str]
    claim_token: Optional[str]
    heartbeat_at: Optional[datetime]
    estimated_duration: Optional[int]
    actual_duration: Optional[int]
    retry_count: int
    max_retries: int
    error_message: Optional[str]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class WorkerReport(BaseModel):
    worker_id: Optional[str] = None
    # Handed out with the job; reports from an earlier claim of the same job are refused
    claim_token: str = Field(..., min_length=1, max_length=32)


class WorkerFailure(WorkerReport):
    error: str = Field(..., min_length=1)


class HeartbeatResponse(BaseModel):
    job_id: int
    alive: bool


class QueueStartRequest(BaseModel):
    interval_seconds: Optional[float] = Field(None, gt=0)


class QueueControlResponse(BaseModel):
    running: bool
    changed: bool
    message: str


class TickResponse(BaseModel):
    assigned: int
    skipped: int
    recovered: int
    failed: int
