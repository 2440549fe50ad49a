"""
Purchase requests for materials that are not in stock.

pending -> approved | rejected, approved -> ordered -> received. Only the CEO
(or management) reviews and moves a request; the requester is notified of the
decision.
"""
import uuid
from typing import Dict, Iterable, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import (
    DepartmentGateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..models.enums import Department, NotificationType, OrderPriority, PurchaseRequestStatus, UserRole
from ..models.models import PurchaseRequest, utcnow
from ..schemas.inventory import MissingMaterial
from . import notifications
from .sequence import next_purchase_request_number
from .timeline import actor_name

logger = structlog.get_logger(__name__)

P = PurchaseRequestStatus


def _value(v):
    return getattr(v, "value", v)


def _require_reviewer(actor, current: str) -> None:
    if _value(actor.role) == UserRole.ceo.value or _value(actor.department) == Department.management.value:
        return
    raise DepartmentGateError(current=current, department=_value(actor.department))


def _build_items(missing: Iterable, estimated_costs: Optional[Dict[str, float]]) -> List[dict]:
    costs = estimated_costs or {}
    items = []
    for raw in missing:
        entry = raw if isinstance(raw, MissingMaterial) else MissingMaterial.model_validate(raw)
        gap = max(entry.requested_quantity - entry.available_quantity, 0)
        unit_cost = float(costs.get(entry.item_name, 0) or 0)
        items.append({
            "name": entry.item_name,
            "category": entry.category,
            "requested_quantity": gap,
            "unit": entry.unit,
            "estimated_cost": unit_cost,
            "total_estimated_cost": round(gap * unit_cost, 2),
        })
    return items


def create_purchase_request(
    db: Session,
    missing: Iterable,
    actor,
    reason: str,
    priority: str = OrderPriority.medium.value,
    notes: Optional[str] = None,
    supplier: Optional[str] = None,
    related_order_id: Optional[uuid.UUID] = None,
    related_order_number: Optional[str] = None,
    estimated_costs: Optional[Dict[str, float]] = None,
) -> PurchaseRequest:
    """
    Ask management to buy the materials missing for an order.

    Args:
        db: Database session
        missing: Shortfall entries from check_availability
        actor: Requesting employee
        reason: Why the materials are needed (required)
        priority: low|medium|high|urgent
        estimated_costs: Unit cost per item name, when known

    Raises:
        ValidationError: blank reason or nothing missing
        PersistenceError: numbering or the write failed
    """
    if not reason or not reason.strip():
        raise ValidationError(detail="A reason for the purchase request is required")
    items = _build_items(missing, estimated_costs)
    if not items:
        raise ValidationError(detail="No missing materials to request")

    priority = OrderPriority(_value(priority)).value
    total = round(sum(i["total_estimated_cost"] for i in items), 2)
    request_number = next_purchase_request_number(db)

    with transaction(db, operation="create_purchase_request"):
        now = utcnow()
        request = PurchaseRequest(
            request_number=request_number,
            status=P.pending.value,
            items=items,
            total_estimated_cost=total,
            requested_by=actor.id,
            requested_by_name=actor_name(actor),
            department=_value(actor.department),
            priority=priority,
            reason=reason.strip(),
            notes=notes,
            supplier=supplier,
            related_order_id=related_order_id,
            related_order_number=related_order_number,
            created_at=now,
            updated_at=now,
        )
        db.add(request)

    db.refresh(request)
    logger.info("purchase_request_created", request_number=request_number, items=len(items), total=total)
    notifications.notify_purchase_request(db, request_number, actor_name(actor), len(items), total, priority)
    return request


def get_purchase_request(db: Session, request_id: uuid.UUID) -> PurchaseRequest:
    request = db.query(PurchaseRequest).filter(PurchaseRequest.id == request_id).first()
    if not request:
        raise NotFoundError(entity="Purchase request", id=str(request_id))
    return request


def list_purchase_requests(db: Session, status: Optional[str] = None, requested_by: Optional[uuid.UUID] = None) -> List[PurchaseRequest]:
    query = db.query(PurchaseRequest)
    if status:
        query = query.filter(PurchaseRequest.status == _value(status))
    if requested_by:
        query = query.filter(PurchaseRequest.requested_by == requested_by)
    return query.order_by(PurchaseRequest.created_at.desc()).all()


def _move(db: Session, request_id: uuid.UUID, actor, expected: str, target: str, rejected_reason: Optional[str] = None) -> PurchaseRequest:
    with transaction(db, operation=f"purchase_request_{target}"):
        request = db.query(PurchaseRequest).filter(PurchaseRequest.id == request_id).with_for_update().first()
        if not request:
            raise NotFoundError(entity="Purchase request", id=str(request_id))
        _require_reviewer(actor, request.status)
        if request.status != expected:
            raise InvalidTransitionError(current=request.status, target=target)
        now = utcnow()
        request.status = target
        request.updated_at = now
        if target in (P.approved.value, P.rejected.value):
            request.reviewed_by = actor.id
            request.reviewed_by_name = actor_name(actor)
            request.reviewed_at = now
        if rejected_reason:
            request.rejected_reason = rejected_reason
    db.refresh(request)
    logger.info("purchase_request_moved", request_number=request.request_number, status=target)
    return request


def approve_purchase_request(db: Session, request_id: uuid.UUID, actor) -> PurchaseRequest:
    request = _move(db, request_id, actor, P.pending.value, P.approved.value)
    notifications.notify_user(
        db,
        request.requested_by,
        type=NotificationType.material_request_approved.value,
        title="Purchase request approved",
        message=f"Your purchase request {request.request_number} was approved",
        order_id=request.related_order_id,
        order_number=request.related_order_number,
        action_url="/material-requests",
        priority=request.priority,
    )
    return request


def reject_purchase_request(db: Session, request_id: uuid.UUID, actor, reason: str) -> PurchaseRequest:
    if not reason or not reason.strip():
        raise ValidationError(detail="A rejection reason is required")
    request = _move(db, request_id, actor, P.pending.value, P.rejected.value, rejected_reason=reason.strip())
    notifications.notify_user(
        db,
        request.requested_by,
        type=NotificationType.material_request_rejected.value,
        title="Purchase request rejected",
        message=f"Your purchase request {request.request_number} was rejected: {request.rejected_reason}",
        order_id=request.related_order_id,
        order_number=request.related_order_number,
        action_url="/material-requests",
        priority=request.priority,
    )
    return request


def mark_ordered(db: Session, request_id: uuid.UUID, actor, supplier: Optional[str] = None) -> PurchaseRequest:
    request = _move(db, request_id, actor, P.approved.value, P.ordered.value)
    if supplier:
        with transaction(db, operation="purchase_request_supplier"):
            request.supplier = supplier
        db.refresh(request)
    return request


def mark_received(db: Session, request_id: uuid.UUID, actor) -> PurchaseRequest:
    return _move(db, request_id, actor, P.ordered.value, P.received.value)
