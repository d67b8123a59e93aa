from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.config.database import get_db
from shared.errors import PrinterNotFound, PrintJobNotFound, TransitionConflict, TransitionRejected
from shared.security import get_current_admin, limiter
from shared.security.dependencies import verify_internal_api_key

from .dispatcher import print_dispatcher
from .schemas import (
    HeartbeatResponse,
    PrinterCreate,
    PrinterResponse,
    PrinterUpdate,
    PrintJobResponse,
    QueueControlResponse,
    QueueStartRequest,
    TickResponse,
    WorkerFailure,
    WorkerReport,
)
from .service import PrinterService, PrintService

# Operators: queue controls and printer administration
router = APIRouter(dependencies=[Depends(get_current_admin)])
# Print-delivery workers and cron callers
worker_router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
public_router = APIRouter()


def get_dispatcher():
    return print_dispatcher


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "printing", "status": "running", "dispatcher_running": print_dispatcher.is_running}


# --- QUEUE ---

@router.get("/queue/status")
async def queue_status(dispatcher=Depends(get_dispatcher)):
    return await dispatcher.get_status()


@router.post("/queue/start", response_model=QueueControlResponse)
async def start_queue(payload: Optional[QueueStartRequest] = None, dispatcher=Depends(get_dispatcher)):
    interval = payload.interval_seconds if payload else None
    changed = dispatcher.start(interval)
    return QueueControlResponse(
        running=dispatcher.is_running,
        changed=changed,
        message="Dispatcher started" if changed else "Dispatcher already running",
    )


@router.post("/queue/stop", response_model=QueueControlResponse)
async def stop_queue(dispatcher=Depends(get_dispatcher)):
    changed = dispatcher.stop()
    return QueueControlResponse(
        running=dispatcher.is_running,
        changed=changed,
        message="Dispatcher stopped" if changed else "Dispatcher was not running",
    )


@router.post("/queue/trigger", response_model=TickResponse)
@limiter.limit(settings.QUEUE_TRIGGER_RATE_LIMIT)
async def trigger_queue(request: Request, dispatcher=Depends(get_dispatcher)):
    return asdict(await dispatcher.process_queue_once())


# --- PRINTERS ---

@router.get("/printers", response_model=List[PrinterResponse])
async def list_printers(include_inactive: bool = False, db: AsyncSession = Depends(get_db)):
    return await PrinterService.list_printers(db, include_inactive)


@router.post("/printers", response_model=PrinterResponse, status_code=status.HTTP_201_CREATED)
async def create_printer(payload: PrinterCreate, db: AsyncSession = Depends(get_db)):
    try:
        return await PrinterService.create_printer(db, payload)
    except TransitionRejected as e:
        raise HTTPException(status_code=400, detail=e.reason)


@router.get("/printers/{printer_id}", response_model=PrinterResponse)
async def get_printer(printer_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await PrinterService.get_printer(db, printer_id)
    except PrinterNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/printers/{printer_id}", response_model=PrinterResponse)
async def update_printer(printer_id: int, payload: PrinterUpdate, db: AsyncSession = Depends(get_db)):
    try:
        return await PrinterService.update_printer(db, printer_id, payload)
    except PrinterNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TransitionRejected as e:
        raise HTTPException(status_code=400, detail=e.reason)


@router.delete("/printers/{printer_id}", response_model=PrinterResponse)
async def deactivate_printer(printer_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await PrinterService.deactivate_printer(db, printer_id)
    except PrinterNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TransitionRejected as e:
        raise HTTPException(status_code=400, detail=e.reason)


@router.get("/jobs", response_model=List[PrintJobResponse])
async def list_jobs(status: Optional[str] = None, limit: int = 100, db: AsyncSession = Depends(get_db)):
    return await PrintService.list_jobs(db, status, min(limit, 500))


@router.get("/jobs/{job_id}", response_model=PrintJobResponse)
async def get_job(job_id: int, db: AsyncSession = Depends(get_db)):
    job = await PrintService.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Print job not found")
    return job


# --- WORKERS ---

@worker_router.post("/printers/{printer_id}/online", response_model=PrinterResponse)
async def printer_online(printer_id: int, dispatcher=Depends(get_dispatcher)):
    try:
        return await dispatcher.printer_online(printer_id)
    except PrinterNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@worker_router.post("/printers/{printer_id}/offline", response_model=PrinterResponse)
async def printer_offline(printer_id: int, dispatcher=Depends(get_dispatcher)):
    try:
        return await dispatcher.printer_offline(printer_id)
    except PrinterNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TransitionRejected as e:
        raise HTTPException(status_code=409, detail=e.reason)


@worker_router.get("/printers/{printer_id}/job", response_model=Optional[PrintJobResponse])
async def assigned_job(printer_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await PrintService.get_assigned_job(db, printer_id)
    except PrinterNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@worker_router.post("/jobs/{job_id}/heartbeat", response_model=HeartbeatResponse)
async def heartbeat(job_id: int, payload: WorkerReport, dispatcher=Depends(get_dispatcher)):
    try:
        alive = await dispatcher.record_heartbeat(job_id, payload.worker_id, payload.claim_token)
    except PrintJobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return HeartbeatResponse(job_id=job_id, alive=alive)


@worker_router.post("/jobs/{job_id}/complete", response_model=PrintJobResponse)
async def complete_job(job_id: int, payload: WorkerReport, dispatcher=Depends(get_dispatcher)):
    try:
        return await dispatcher.report_completed(job_id, payload.worker_id, payload.claim_token)
    except PrintJobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TransitionRejected as e:
        raise HTTPException(status_code=400, detail=e.reason)
    except TransitionConflict as e:
        raise HTTPException(status_code=409, detail=str(e))


@worker_router.post("/jobs/{job_id}/fail", response_model=PrintJobResponse)
async def fail_job(job_id: int, payload: WorkerFailure, dispatcher=Depends(get_dispatcher)):
    try:
        return await dispatcher.report_failed(job_id, payload.error, payload.worker_id, payload.claim_token)
    except PrintJobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TransitionRejected as e:
        raise HTTPException(status_code=400, detail=e.reason)
    except TransitionConflict as e:
        raise HTTPException(status_code=409, detail=str(e))


@worker_router.post("/queue/tick", response_model=TickResponse)
async def cron_tick(dispatcher=Depends(get_dispatcher)):
    """Cron-style entry point for deployments that run the dispatcher from a scheduler."""
    return asdict(await dispatcher.process_queue_once())
