from typing import List, Literal

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.errors import OrderNotFound, TransitionConflict, TransitionRejected
from shared.security import get_current_admin
from shared.security.dependencies import verify_internal_api_key

from .schemas import (
    OrderCreate,
    OrderResponse,
    PrintActionLogResponse,
    PrintActionRequest,
    PrintActionResponse,
    StatusTransitionRequest,
)
from .service import OrderService

# Order intake from the storefront backend
router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
# Operator actions, attributed to the JWT subject
admin_router = APIRouter()
public_router = APIRouter()

PRINT_ACTION_PATHS = {
    "reprint": "reprint",
    "remove-from-queue": "remove_from_queue",
    "reset-printing": "reset_printing",
    "force-printed": "force_printed",
}


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "order", "status": "running"}


@router.post("/", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(order: OrderCreate, db: AsyncSession = Depends(get_db)):
    try:
        return await OrderService.create_order(db, order)
    except TransitionRejected as e:
        raise HTTPException(status_code=409, detail=e.reason)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str, db: AsyncSession = Depends(get_db)):
    try:
        return await OrderService.get_order(db, order_id)
    except OrderNotFound:
        raise HTTPException(status_code=404, detail="Order not found")


@admin_router.post("/{order_id}/status", response_model=OrderResponse)
async def transition_status(
    order_id: str,
    payload: StatusTransitionRequest,
    actor: str = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await OrderService.transition_status(
            db, order_id, payload.status, actor, payload.is_admin_override, payload.reason,
        )
    except OrderNotFound:
        raise HTTPException(status_code=404, detail="Order not found")
    except TransitionRejected as e:
        raise HTTPException(status_code=400, detail=e.reason)
    except TransitionConflict as e:
        raise HTTPException(status_code=409, detail=str(e))


@admin_router.post("/{order_id}/print-actions/{action}", response_model=PrintActionResponse)
async def print_action(
    order_id: str,
    action: Literal["reprint", "remove-from-queue", "reset-printing", "force-printed"],
    payload: PrintActionRequest,
    actor: str = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await OrderService.perform_print_action(
            db, order_id, PRINT_ACTION_PATHS[action], actor, payload.reason, payload.confirmed,
        )
    except OrderNotFound:
        raise HTTPException(status_code=404, detail="Order not found")
    except TransitionRejected as e:
        raise HTTPException(status_code=400, detail=e.reason)
    except TransitionConflict as e:
        raise HTTPException(status_code=409, detail=str(e))


@admin_router.get("/{order_id}/print-log", response_model=List[PrintActionLogResponse])
async def print_log(
    order_id: str,
    actor: str = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await OrderService.list_print_log(db, order_id)
    except OrderNotFound:
        raise HTTPException(status_code=404, detail="Order not found")
