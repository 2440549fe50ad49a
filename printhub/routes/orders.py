import asyncio
import uuid
from typing import List, Optional

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..auth.security import get_current_user, user_from_token
from ..config import settings
from ..db import get_db
from ..errors import WorkflowError, locale_from_header, render_message
from ..models.enums import Department
from ..models.models import User
from ..schemas.orders import (
    AssignmentResponse,
    AssignTaskRequest,
    CommentCreate,
    CommentResponse,
    OrderCreate,
    OrderDetail,
    OrderSummary,
    PaymentRequest,
    TimelineEntryResponse,
    TransitionRequest,
)
from ..services import order_workflow, orders as order_service, task_service
from ..services.order_feed import feed
from ..services.order_views import list_orders_for_viewer, watch_orders

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])
ws_router = APIRouter(tags=["orders"])


def _locale(request: Request) -> str:
    return locale_from_header(request.headers.get("accept-language"), settings.default_locale)


def _error_payload(error: WorkflowError, locale: str) -> dict:
    payload = error.to_dict()
    payload["message"] = render_message(error, locale)
    return payload


@router.get("", response_model=List[OrderSummary])
def list_orders(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return list_orders_for_viewer(db, user, status)


@router.post("", status_code=201)
def create_order(
    request: Request,
    body: OrderCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = order_service.create_order(db, body, user)
    locale = _locale(request)
    return {
        "order": OrderDetail.model_validate(result.order).model_dump(mode="json"),
        "ledger_errors": [_error_payload(e, locale) for e in result.ledger_errors],
    }


@router.get("/{order_id}", response_model=OrderDetail)
def get_order(order_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return order_service.get_order_for_viewer(db, order_id, user)


@router.get("/{order_id}/timeline", response_model=List[TimelineEntryResponse])
def get_timeline(order_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    order_service.get_order_for_viewer(db, order_id, user)
    return order_service.get_timeline(db, order_id)


@router.post("/{order_id}/transition", response_model=OrderDetail)
def transition(
    order_id: uuid.UUID,
    body: TransitionRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return order_workflow.transition_order(db, order_id, body.status, user, body.notes)


@router.post("/{order_id}/approve", response_model=OrderDetail)
def approve(
    order_id: uuid.UUID,
    notes: Optional[str] = Body(default=None, embed=True),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return order_workflow.approve_order(db, order_id, user, notes)


@router.post("/{order_id}/reject", response_model=OrderDetail)
def reject(
    order_id: uuid.UUID,
    reason: str = Body(..., embed=True),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return order_workflow.reject_order(db, order_id, user, reason)


@router.post("/{order_id}/return-to-sales", response_model=OrderDetail)
def return_to_sales(
    order_id: uuid.UUID,
    notes: str = Body(..., embed=True),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return order_workflow.return_to_sales(db, order_id, user, notes)


@router.get("/{order_id}/comments", response_model=List[CommentResponse])
def list_comments(order_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    # Internal comments stay inside the company; sales staff see customer-facing ones only
    order_service.get_order_for_viewer(db, order_id, user)
    include_internal = user.department != Department.sales.value or bool(user.is_head)
    return order_service.list_comments(db, order_id, include_internal=include_internal)


@router.post("/{order_id}/comments", response_model=CommentResponse, status_code=201)
def add_comment(
    order_id: uuid.UUID,
    body: CommentCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order_service.get_order_for_viewer(db, order_id, user)
    return order_service.add_comment(db, order_id, user, body.comment, body.is_internal)


@router.post("/{order_id}/payments", response_model=OrderDetail)
def record_payment(
    order_id: uuid.UUID,
    body: PaymentRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return order_service.record_payment(db, order_id, user, body.amount, body.final_cost)


# ---------- Assignments ----------

def _department(department: str) -> Department:
    try:
        return Department(department)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown department: {department}")


@router.get("/{order_id}/assignments", response_model=List[AssignmentResponse])
def list_assignments(
    order_id: uuid.UUID,
    include_history: bool = True,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order_service.get_order_for_viewer(db, order_id, user)
    return task_service.list_assignments(db, order_id, include_history=include_history)


@router.post("/{order_id}/assignments/{department}", response_model=AssignmentResponse, status_code=201)
def assign(
    order_id: uuid.UUID,
    department: str,
    body: AssignTaskRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return task_service.assign_task(
        db,
        order_id,
        body.assignee_id,
        _department(department),
        user,
        estimated_duration=body.estimated_duration,
        notes=body.notes,
    )


@router.post("/{order_id}/assignments/{department}/start", response_model=AssignmentResponse)
def start(
    order_id: uuid.UUID,
    department: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return task_service.start_task(db, order_id, _department(department), user)


@router.post("/{order_id}/assignments/{department}/complete", response_model=AssignmentResponse)
def complete(
    order_id: uuid.UUID,
    department: str,
    notes: Optional[str] = Body(default=None, embed=True),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return task_service.complete_task(db, order_id, _department(department), user, notes)


# ---------- Live feed ----------

@ws_router.websocket("/ws/orders")
async def ws_orders(websocket: WebSocket, token: Optional[str] = None, status: Optional[str] = None, db: Session = Depends(get_db)):
    if not token:
        await websocket.close(code=4401)
        return
    try:
        viewer = user_from_token(db, token)
    except HTTPException:
        await websocket.close(code=4401)
        return
    finally:
        # Authentication only; the live feed opens its own sessions
        db.close()

    locale = locale_from_header(websocket.headers.get("accept-language"), settings.default_locale)
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    # Feed callbacks arrive on whichever thread committed the change
    def on_snapshot(snapshot: List[OrderSummary]) -> None:
        message = {"event": "orders", "data": [o.model_dump(mode="json") for o in snapshot]}
        loop.call_soon_threadsafe(queue.put_nowait, message)

    def on_error(error: Exception) -> None:
        data = _error_payload(error, locale) if isinstance(error, WorkflowError) else {"code": "workflow_error"}
        loop.call_soon_threadsafe(queue.put_nowait, {"event": "error", "data": data})

    await websocket.accept()
    watch = await run_in_threadpool(watch_orders, feed, viewer, on_snapshot, status, on_error)
    logger.info("order_watch_opened", user_id=str(viewer.id))

    async def pump() -> None:
        while True:
            message = await queue.get()
            await websocket.send_json(message)

    sender = asyncio.create_task(pump())
    try:
        while True:
            data = await websocket.receive_text()
            if data and data.strip().lower() in {"ping", "keepalive"}:
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        watch.close()
        logger.info("order_watch_closed", user_id=str(viewer.id))
