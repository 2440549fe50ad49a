"""
Order status state machine.

The transition table is fixed. A move is accepted only when the target is
reachable from the current status and the actor's department owns the current
status (the CEO may move any order; anybody may cancel or hold one). Terminal
statuses never change again.
"""
import uuid
from typing import Dict, FrozenSet, Optional, Set

import structlog
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import (
    DepartmentGateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..models.enums import Department, NotificationType, OrderStatus, UserRole
from ..models.models import Order, utcnow
from . import inventory_ledger, notifications
from .order_feed import feed
from .timeline import append_timeline

logger = structlog.get_logger(__name__)

S = OrderStatus

TERMINAL_STATUSES: FrozenSet[str] = frozenset({
    S.delivered.value,
    S.cancelled.value,
    S.rejected_by_ceo.value,
})

# Reachable from every non-terminal status, whoever the actor is
ESCAPE_STATUSES: FrozenSet[str] = frozenset({S.cancelled.value, S.on_hold.value})

_FORWARD: Dict[OrderStatus, Set[OrderStatus]] = {
    S.draft: {S.pending_ceo_review},
    S.pending_ceo_review: {S.pending_design, S.pending_printing, S.rejected_by_ceo, S.returned_to_sales},
    S.returned_to_sales: {S.pending_ceo_review},
    S.pending_design: {S.in_design},
    S.in_design: {S.design_review},
    S.design_review: {S.design_completed, S.in_design},
    S.design_completed: {S.pending_materials},
    S.pending_materials: {S.materials_in_progress},
    S.materials_in_progress: {S.materials_ready},
    S.materials_ready: {S.pending_printing},
    S.pending_printing: {S.in_printing},
    S.in_printing: {S.printing_completed},
    S.printing_completed: {S.pending_payment},
    S.pending_payment: {S.payment_confirmed},
    S.payment_confirmed: {S.ready_for_dispatch},
    S.ready_for_dispatch: {S.in_dispatch},
    S.in_dispatch: {S.delivered},
    # on_hold may also go back to the status it was held from
    S.on_hold: {S.cancelled},
    S.delivered: set(),
    S.cancelled: set(),
    S.rejected_by_ceo: set(),
}


def _build_transitions() -> Dict[str, FrozenSet[str]]:
    table: Dict[str, FrozenSet[str]] = {}
    for status, targets in _FORWARD.items():
        allowed = {t.value for t in targets}
        if status.value not in TERMINAL_STATUSES and status != S.on_hold:
            allowed |= ESCAPE_STATUSES
        table[status.value] = frozenset(allowed)
    return table


TRANSITIONS: Dict[str, FrozenSet[str]] = _build_transitions()

STATUS_DEPARTMENT: Dict[str, str] = {
    S.draft.value: Department.sales.value,
    S.returned_to_sales.value: Department.sales.value,
    S.pending_ceo_review.value: Department.management.value,
    S.rejected_by_ceo.value: Department.management.value,
    S.pending_design.value: Department.design.value,
    S.in_design.value: Department.design.value,
    S.design_review.value: Department.design.value,
    S.design_completed.value: Department.design.value,
    S.pending_materials.value: Department.dispatch.value,
    S.materials_in_progress.value: Department.dispatch.value,
    S.materials_ready.value: Department.dispatch.value,
    S.pending_printing.value: Department.printing.value,
    S.in_printing.value: Department.printing.value,
    S.printing_completed.value: Department.printing.value,
    S.pending_payment.value: Department.accounting.value,
    S.payment_confirmed.value: Department.accounting.value,
    S.ready_for_dispatch.value: Department.dispatch.value,
    S.in_dispatch.value: Department.dispatch.value,
    S.delivered.value: Department.dispatch.value,
    S.cancelled.value: Department.management.value,
}

STATUS_ACTIONS: Dict[str, str] = {
    S.pending_ceo_review.value: "Submitted for CEO review",
    S.rejected_by_ceo.value: "Rejected by CEO",
    S.returned_to_sales.value: "Returned to sales for changes",
    S.pending_design.value: "Approved, sent to design",
    S.in_design.value: "Design started",
    S.design_review.value: "Design sent for review",
    S.design_completed.value: "Design completed",
    S.pending_materials.value: "Waiting for materials",
    S.materials_in_progress.value: "Preparing materials",
    S.materials_ready.value: "Materials ready",
    S.pending_printing.value: "Sent to printing",
    S.in_printing.value: "Printing started",
    S.printing_completed.value: "Printing completed",
    S.pending_payment.value: "Waiting for payment",
    S.payment_confirmed.value: "Payment confirmed",
    S.ready_for_dispatch.value: "Ready for dispatch",
    S.in_dispatch.value: "Out for delivery",
    S.delivered.value: "Delivered",
    S.cancelled.value: "Order cancelled",
    S.on_hold.value: "Order put on hold",
}


def _value(v):
    return getattr(v, "value", v)


def is_terminal(status) -> bool:
    return _value(status) in TERMINAL_STATUSES


def can_transition(current, target, held_from: Optional[str] = None) -> bool:
    current, target = _value(current), _value(target)
    if target in TRANSITIONS.get(current, frozenset()):
        return True
    return current == S.on_hold.value and held_from is not None and target == _value(held_from)


def owning_department(status, held_from: Optional[str] = None) -> Optional[str]:
    status = _value(status)
    if status == S.on_hold.value:
        return STATUS_DEPARTMENT.get(_value(held_from)) if held_from else None
    return STATUS_DEPARTMENT.get(status)


def may_act(actor, current, target, held_from: Optional[str] = None) -> bool:
    if _value(actor.role) == UserRole.ceo.value:
        return True
    if _value(target) in ESCAPE_STATUSES:
        return True
    return _value(actor.department) == owning_department(current, held_from)


def transition_order(db: Session, order_id: uuid.UUID, new_status, actor, notes: Optional[str] = None) -> Order:
    """
    Move an order to ``new_status`` and log it on the timeline.

    Args:
        db: Database session
        order_id: Order to move
        new_status: Target OrderStatus
        actor: User performing the move
        notes: Optional note stored on the timeline entry

    Returns:
        The updated Order

    Raises:
        NotFoundError: order missing
        InvalidTransitionError: target not reachable from the current status
        DepartmentGateError: actor's department does not own the current status
        PersistenceError: the write failed
    """
    target = OrderStatus(_value(new_status)).value
    with transaction(db, operation="transition_order"):
        order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
        if not order:
            raise NotFoundError(entity="Order", id=str(order_id))

        current = order.status
        if not can_transition(current, target, order.held_from_status):
            raise InvalidTransitionError(current=current, target=target)
        if not may_act(actor, current, target, order.held_from_status):
            raise DepartmentGateError(current=current, department=_value(actor.department))

        if target == S.on_hold.value:
            order.held_from_status = current
        elif current == S.on_hold.value:
            order.held_from_status = None
        order.status = target
        order.updated_at = utcnow()
        action = STATUS_ACTIONS.get(target, target)
        if current == S.on_hold.value and target != S.cancelled.value:
            action = "Order resumed"
        append_timeline(db, order.id, action, actor, status=target, notes=notes)

        return_lines = None
        if target == S.cancelled.value and order.inventory_materials and not order.inventory_returned:
            return_lines = list(order.inventory_materials)
        order_number, customer_name, created_by = order.order_number, order.customer_name, order.created_by

    logger.info("order_transitioned", order_number=order_number, previous=current, status=target, actor_id=str(actor.id))

    if return_lines:
        _return_order_materials(db, order_id, order_number, return_lines, actor)

    notifications.notify_order_status_change(db, order_number, customer_name, target, order_id)
    if created_by != actor.id and target in (S.rejected_by_ceo.value, S.returned_to_sales.value, S.pending_design.value, S.pending_printing.value):
        notifications.notify_user(
            db,
            created_by,
            type=NotificationType.order_status_changed.value,
            title=STATUS_ACTIONS[target],
            message=f"Order {order_number} - {customer_name}: {STATUS_ACTIONS[target]}" + (f" ({notes})" if notes else ""),
            order_id=order_id,
            order_number=order_number,
            action_url=f"/orders/{order_id}",
        )
    feed.publish()

    order = db.query(Order).filter(Order.id == order_id).first()
    return order


def _return_order_materials(db: Session, order_id: uuid.UUID, order_number: str, lines, actor) -> None:
    result = inventory_ledger.return_materials(
        db,
        lines,
        inventory_ledger.OrderContext(order_id=order_id, order_number=order_number),
        actor,
    )
    # Set on partial failure too: a returned line is never returned again
    with transaction(db, operation="mark_inventory_returned"):
        order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
        order.inventory_returned = True
        if result.success:
            append_timeline(db, order_id, "Materials returned to inventory", actor)
        else:
            append_timeline(
                db,
                order_id,
                "Some materials could not be returned to inventory",
                actor,
                notes="; ".join(f"{e.code}: {e.context.get('item_name', '')}" for e in result.errors),
            )


def approve_order(db: Session, order_id: uuid.UUID, actor, notes: Optional[str] = None) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError(entity="Order", id=str(order_id))
    target = S.pending_design if order.needs_design else S.pending_printing
    return transition_order(db, order_id, target, actor, notes)


def reject_order(db: Session, order_id: uuid.UUID, actor, reason: str) -> Order:
    if not reason or not reason.strip():
        raise ValidationError(detail="A rejection reason is required")
    return transition_order(db, order_id, S.rejected_by_ceo, actor, reason.strip())


def return_to_sales(db: Session, order_id: uuid.UUID, actor, notes: str) -> Order:
    if not notes or not notes.strip():
        raise ValidationError(detail="Describe what sales should change")
    return transition_order(db, order_id, S.returned_to_sales, actor, notes.strip())
