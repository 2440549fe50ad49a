"""
Order intake: creation, comments, payments and the read helpers.
"""
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import (
    DepartmentGateError,
    MaterialsUnavailableError,
    NotFoundError,
    ValidationError,
    WorkflowError,
)
from ..models.enums import Department, OrderStatus, PaymentStatus, UserRole
from ..models.models import Order, OrderComment, OrderTimelineEntry, utcnow
from ..schemas.orders import OrderCreate
from . import inventory_ledger, notifications
from .order_feed import feed
from .order_views import can_view_order
from .sequence import next_order_number
from .timeline import actor_name, append_timeline, list_timeline

logger = structlog.get_logger(__name__)


@dataclass
class OrderIntakeResult:
    order: Order
    ledger_errors: List[WorkflowError] = field(default_factory=list)


def _value(v):
    return getattr(v, "value", v)


def _is_ceo(actor) -> bool:
    return _value(actor.role) == UserRole.ceo.value


def get_order(db: Session, order_id: uuid.UUID) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError(entity="Order", id=str(order_id))
    return order


def get_order_for_viewer(db: Session, order_id: uuid.UUID, viewer) -> Order:
    """
    Load an order the viewer is allowed to see.

    Orders outside the viewer's read filter are reported as missing, so their
    existence is not disclosed.

    Raises:
        NotFoundError: order missing or not visible to the viewer
    """
    order = get_order(db, order_id)
    if not can_view_order(viewer, order):
        logger.info("order_read_denied", order_id=str(order_id), viewer_id=str(viewer.id))
        raise NotFoundError(entity="Order", id=str(order_id))
    return order


def get_timeline(db: Session, order_id: uuid.UUID) -> List[OrderTimelineEntry]:
    get_order(db, order_id)
    return list_timeline(db, order_id)


def create_order(db: Session, data: OrderCreate, actor, submit_for_review: Optional[bool] = None) -> OrderIntakeResult:
    """
    Register a new customer order.

    Inventory lines are checked before anything is written. When stock is
    short nothing is created and the shortfall is returned in the error so the
    caller can raise a purchase request. After the order is committed the lines
    are consumed one by one; failures there do not undo the order.

    Args:
        db: Database session
        data: Validated order payload
        actor: Sales employee (or CEO) creating the order
        submit_for_review: Overrides ``data.submit_for_review``

    Returns:
        OrderIntakeResult with the order and any ledger errors

    Raises:
        DepartmentGateError: actor is not in sales and not the CEO
        MaterialsUnavailableError: requested inventory is not in stock
        PersistenceError: numbering or the order write failed
    """
    if not _is_ceo(actor) and _value(actor.department) != Department.sales.value:
        raise DepartmentGateError(current=OrderStatus.draft.value, department=_value(actor.department))
    if not data.customer_name.strip() or not data.customer_phone.strip():
        raise ValidationError(detail="Customer name and phone are required")

    submit = data.submit_for_review if submit_for_review is None else submit_for_review
    lines = list(data.inventory_materials)

    if lines:
        availability = inventory_ledger.check_availability(db, lines)
        if not availability.available:
            raise MaterialsUnavailableError(missing=[m.model_dump() for m in availability.missing])

    order_number = next_order_number(db)
    status = OrderStatus.pending_ceo_review.value if submit else OrderStatus.draft.value

    with transaction(db, operation="create_order"):
        now = utcnow()
        order = Order(
            order_number=order_number,
            status=status,
            priority=_value(data.priority),
            customer_name=data.customer_name.strip(),
            customer_phone=data.customer_phone.strip(),
            customer_email=data.customer_email,
            customer_address=data.customer_address,
            print_type=_value(data.print_type),
            quantity=data.quantity,
            needs_design=data.needs_design,
            design_description=data.design_description,
            materials=[m.model_dump(mode="json") for m in data.materials],
            inventory_materials=[line.model_dump(mode="json") for line in lines],
            inventory_returned=False,
            notes=data.notes,
            estimated_cost=data.estimated_cost,
            paid_amount=0.0,
            payment_status=PaymentStatus.pending.value,
            is_quotation=data.is_quotation,
            is_urgent=data.is_urgent,
            created_by=actor.id,
            created_by_name=actor_name(actor),
            created_at=now,
            updated_at=now,
        )
        db.add(order)
        db.flush()
        action = "Order created and submitted for CEO review" if submit else "Order saved as draft"
        append_timeline(db, order.id, action, actor, status=status)

    order_id = order.id
    logger.info("order_created", order_number=order_number, status=status, lines=len(lines))

    ledger_errors: List[WorkflowError] = []
    if lines:
        result = inventory_ledger.consume(
            db,
            lines,
            inventory_ledger.OrderContext(order_id=order_id, order_number=order_number),
            actor,
        )
        ledger_errors = result.errors
        if not result.success:
            with transaction(db, operation="record_ledger_errors"):
                # Only lines that left stock are returned on cancel
                db.query(Order).filter(Order.id == order_id).update(
                    {Order.inventory_materials: [line.model_dump(mode="json") for line in result.applied]},
                    synchronize_session=False,
                )
                append_timeline(
                    db,
                    order_id,
                    "Some materials could not be taken from inventory",
                    actor,
                    notes="; ".join(f"{e.code}: {e.context.get('item_name', '')}" for e in ledger_errors),
                )

    if submit:
        notifications.notify_order_submitted(db, order_number, order.customer_name, order_id, order.priority)
    feed.publish()

    return OrderIntakeResult(order=get_order(db, order_id), ledger_errors=ledger_errors)


def add_comment(db: Session, order_id: uuid.UUID, actor, text: str, is_internal: bool = False) -> OrderComment:
    if not text or not text.strip():
        raise ValidationError(detail="Comment cannot be empty")
    with transaction(db, operation="add_comment"):
        get_order(db, order_id)
        comment = OrderComment(
            order_id=order_id,
            user_id=actor.id,
            user_name=actor_name(actor),
            user_role=_value(actor.role),
            comment=text.strip(),
            is_internal=is_internal,
            created_at=utcnow(),
        )
        db.add(comment)
    db.refresh(comment)
    return comment


def list_comments(db: Session, order_id: uuid.UUID, include_internal: bool = True) -> List[OrderComment]:
    get_order(db, order_id)
    query = db.query(OrderComment).filter(OrderComment.order_id == order_id)
    if not include_internal:
        query = query.filter(OrderComment.is_internal.is_(False))
    return query.order_by(OrderComment.id.asc()).all()


def record_payment(db: Session, order_id: uuid.UUID, actor, amount: float, final_cost: Optional[float] = None) -> Order:
    """
    Add a customer payment to the order.

    payment_status becomes completed once the paid amount covers the final
    cost (or the estimate when no final cost is set), partial otherwise.

    Raises:
        DepartmentGateError: actor is not in accounting and not the CEO
        ValidationError: non-positive amount
        NotFoundError: order missing
    """
    if not _is_ceo(actor) and _value(actor.department) != Department.accounting.value:
        raise DepartmentGateError(current="payment", department=_value(actor.department))
    if amount is None or amount <= 0:
        raise ValidationError(detail="Payment amount must be positive")

    with transaction(db, operation="record_payment"):
        order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
        if not order:
            raise NotFoundError(entity="Order", id=str(order_id))
        if final_cost is not None:
            order.final_cost = final_cost

        paid = round((order.paid_amount or 0.0) + amount, 2)
        due = order.final_cost if order.final_cost is not None else order.estimated_cost
        order.paid_amount = paid
        if due is not None and paid >= due:
            order.payment_status = PaymentStatus.completed.value
        else:
            order.payment_status = PaymentStatus.partial.value
        order.updated_at = utcnow()
        append_timeline(
            db,
            order.id,
            f"Payment of {amount:,.2f} recorded (total paid {paid:,.2f})",
            actor,
        )
        order_number, payment_status = order.order_number, order.payment_status

    logger.info("payment_recorded", order_number=order_number, amount=amount, payment_status=payment_status)
    feed.publish()
    return get_order(db, order_id)
