import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.enums import UserRole
from ..models.models import User
from ..schemas.purchase_requests import (
    MarkOrderedRequest,
    PurchaseRequestCreate,
    PurchaseRequestResponse,
    RejectRequest,
)
from ..services import purchase_requests as purchase_service

router = APIRouter(prefix="/purchase-requests", tags=["purchase-requests"])


@router.get("", response_model=List[PurchaseRequestResponse])
def list_requests(
    status: Optional[str] = None,
    mine: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    # Only the CEO browses everybody's requests
    requested_by = user.id if mine or user.role != UserRole.ceo.value else None
    return purchase_service.list_purchase_requests(db, status=status, requested_by=requested_by)


@router.post("", response_model=PurchaseRequestResponse, status_code=201)
def create_request(body: PurchaseRequestCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return purchase_service.create_purchase_request(
        db,
        body.missing_materials,
        user,
        body.reason,
        priority=body.priority,
        notes=body.notes,
        supplier=body.supplier,
        related_order_id=body.related_order_id,
        related_order_number=body.related_order_number,
        estimated_costs=body.estimated_costs,
    )


@router.get("/{request_id}", response_model=PurchaseRequestResponse)
def get_request(request_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    return purchase_service.get_purchase_request(db, request_id)


@router.post("/{request_id}/approve", response_model=PurchaseRequestResponse)
def approve(request_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return purchase_service.approve_purchase_request(db, request_id, user)


@router.post("/{request_id}/reject", response_model=PurchaseRequestResponse)
def reject(request_id: uuid.UUID, body: RejectRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return purchase_service.reject_purchase_request(db, request_id, user, body.reason)


@router.post("/{request_id}/ordered", response_model=PurchaseRequestResponse)
def mark_ordered(
    request_id: uuid.UUID,
    body: Optional[MarkOrderedRequest] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return purchase_service.mark_ordered(db, request_id, user, supplier=body.supplier if body else None)


@router.post("/{request_id}/received", response_model=PurchaseRequestResponse)
def mark_received(request_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return purchase_service.mark_received(db, request_id, user)
