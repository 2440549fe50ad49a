import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..config import settings
from ..db import get_db
from ..errors import locale_from_header, render_message
from ..models.models import User
from ..schemas.inventory import (
    AdjustQuantityRequest,
    AvailabilityResponse,
    InventoryItemCreate,
    InventoryItemResponse,
    InventoryTransactionResponse,
    LedgerErrorResponse,
    LedgerRequest,
    LedgerResponse,
    MaterialLine,
)
from ..services import inventory_ledger

router = APIRouter(prefix="/inventory", tags=["inventory"])


def _ledger_response(request: Request, result: inventory_ledger.LedgerResult) -> LedgerResponse:
    locale = locale_from_header(request.headers.get("accept-language"), settings.default_locale)
    return LedgerResponse(
        success=result.success,
        errors=[
            LedgerErrorResponse(code=e.code, message=render_message(e, locale), context=e.to_dict()["context"])
            for e in result.errors
        ],
    )


@router.get("/items", response_model=List[InventoryItemResponse])
def list_items(
    department: Optional[str] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return inventory_ledger.list_items(db, department=department, status=status)


@router.post("/items", response_model=InventoryItemResponse, status_code=201)
def create_item(body: InventoryItemCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return inventory_ledger.create_item(
        db,
        name=body.name,
        department=body.department,
        unit=body.unit,
        quantity=body.quantity,
        min_quantity=body.min_quantity,
        category=body.category,
        actor=user,
    )


@router.get("/items/{item_id}", response_model=InventoryItemResponse)
def get_item(item_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    return inventory_ledger.get_item(db, item_id)


@router.post("/items/{item_id}/adjust", response_model=InventoryItemResponse)
def adjust_item(
    item_id: uuid.UUID,
    body: AdjustQuantityRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return inventory_ledger.adjust_quantity(db, item_id, body.quantity, user, body.reason)


@router.get("/items/{item_id}/transactions", response_model=List[InventoryTransactionResponse])
def list_transactions(
    item_id: uuid.UUID,
    limit: int = 100,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return inventory_ledger.list_transactions(db, item_id, limit=max(1, min(500, limit)))


@router.post("/availability", response_model=AvailabilityResponse)
def check_availability(lines: List[MaterialLine], db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    result = inventory_ledger.check_availability(db, lines)
    return AvailabilityResponse(available=result.available, missing_materials=result.missing)


@router.post("/consume", response_model=LedgerResponse)
def consume(request: Request, body: LedgerRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    context = inventory_ledger.OrderContext(order_id=body.order_id, order_number=body.order_number)
    return _ledger_response(request, inventory_ledger.consume(db, body.materials, context, user))


@router.post("/return", response_model=LedgerResponse)
def return_materials(request: Request, body: LedgerRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    context = inventory_ledger.OrderContext(order_id=body.order_id, order_number=body.order_number)
    return _ledger_response(request, inventory_ledger.return_materials(db, body.materials, context, user))
