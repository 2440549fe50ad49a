"""
Notification fan-out.

Notifications are advisory: every write here is best effort. A failed write is
logged and swallowed so it never fails the business operation that triggered
it. Fan-out to several recipients commits each notification on its own, so an
interruption part way through leaves a subset of recipients notified.
"""
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import NotFoundError
from ..models.enums import NotificationType, OrderPriority, OrderStatus, UserRole
from ..models.models import Notification, User, utcnow

logger = structlog.get_logger(__name__)

ACTION_REQUIRED_PRIORITIES = {OrderPriority.urgent.value, OrderPriority.high.value}

STATUS_CHANGE_LABELS: Dict[str, str] = {
    OrderStatus.printing_completed.value: "Printing completed",
    OrderStatus.design_completed.value: "Design completed",
    OrderStatus.delivered.value: "Delivered",
    OrderStatus.cancelled.value: "Cancelled",
    OrderStatus.payment_confirmed.value: "Payment confirmed",
    OrderStatus.in_design.value: "Design started",
    OrderStatus.in_printing.value: "Printing started",
    OrderStatus.in_dispatch.value: "Delivery started",
}

TASK_LABELS: Dict[str, str] = {
    "design": "design",
    "printing": "printing",
    "dispatch": "delivery",
    "accounting": "financial review",
}


@dataclass
class CeoEvent:
    type: str
    title: str
    message: str
    order_id: Optional[uuid.UUID] = None
    order_number: Optional[str] = None
    action_url: Optional[str] = None
    priority: str = OrderPriority.medium.value
    metadata: Dict[str, Any] = field(default_factory=dict)


def _value(v: Any) -> Any:
    return getattr(v, "value", v)


def create_notification(
    db: Session,
    recipient_id: uuid.UUID,
    type: str,
    title: str,
    message: str,
    recipient_role: Optional[str] = None,
    order_id: Optional[uuid.UUID] = None,
    order_number: Optional[str] = None,
    action_url: Optional[str] = None,
    priority: str = OrderPriority.medium.value,
    is_action_required: Optional[bool] = None,
    metadata: Optional[Dict] = None,
) -> Notification:
    """
    Write a single notification and commit it.

    Args:
        db: Database session
        recipient_id: User receiving the notification
        type: NotificationType value
        title: Short headline
        message: Body text
        priority: low|medium|high|urgent
        is_action_required: Defaults to True for high and urgent priorities

    Returns:
        The persisted Notification
    """
    priority = _value(priority)
    if is_action_required is None:
        is_action_required = priority in ACTION_REQUIRED_PRIORITIES

    notification = Notification(
        recipient_id=recipient_id,
        recipient_role=_value(recipient_role),
        type=_value(type),
        title=title,
        message=message,
        order_id=order_id,
        order_number=order_number,
        action_url=action_url or "/",
        priority=priority,
        is_action_required=is_action_required,
        metadata_json=metadata or None,
        is_read=False,
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def notify_user(db: Session, recipient_id: uuid.UUID, **kwargs: Any) -> Optional[Notification]:
    """Best-effort single notification. Returns None when the write failed."""
    try:
        return create_notification(db, recipient_id, **kwargs)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("notify_user_failed", recipient_id=str(recipient_id), type=_value(kwargs.get("type")), error=str(exc))
        return None


def notify_ceo(db: Session, event: CeoEvent) -> int:
    """
    Send one notification to every active CEO.

    Args:
        db: Database session
        event: What to tell them

    Returns:
        Number of notifications actually written (0 when there is no active CEO)
    """
    try:
        ceos = db.query(User).filter(
            User.role == UserRole.ceo.value,
            User.is_active.is_(True),
        ).all()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("ceo_lookup_failed", type=event.type, error=str(exc))
        return 0

    sent = 0
    for ceo in ceos:
        try:
            create_notification(
                db,
                ceo.id,
                type=event.type,
                title=event.title,
                message=event.message,
                recipient_role=UserRole.ceo.value,
                order_id=event.order_id,
                order_number=event.order_number,
                action_url=event.action_url,
                priority=event.priority,
                metadata=event.metadata,
            )
            sent += 1
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("ceo_notify_failed", recipient_id=str(ceo.id), type=event.type, error=str(exc))

    logger.info("ceo_notified", type=event.type, recipients=sent, title=event.title)
    return sent


def notify_order_status_change(db: Session, order_number: str, customer_name: str, status: str, order_id: uuid.UUID) -> int:
    status = _value(status)
    label = STATUS_CHANGE_LABELS.get(status, status)
    return notify_ceo(db, CeoEvent(
        type=NotificationType.order_status_changed.value,
        title=label,
        message=f"Order {order_number} - {customer_name}: {label}",
        order_id=order_id,
        order_number=order_number,
        action_url=f"/orders/{order_id}",
        priority=OrderPriority.low.value if status == OrderStatus.delivered.value else OrderPriority.medium.value,
        metadata={"status": status},
    ))


def notify_task_completed(
    db: Session,
    employee_name: str,
    department: str,
    order_number: str,
    order_id: uuid.UUID,
    duration: Optional[float] = None,
) -> int:
    department = _value(department)
    label = TASK_LABELS.get(department, department)
    duration_text = f" in {duration:.1f} hours" if duration else ""
    return notify_ceo(db, CeoEvent(
        type=NotificationType.task_completed.value,
        title=f"{label.capitalize()} task completed",
        message=f"{employee_name} completed {label} for order {order_number}{duration_text}",
        order_id=order_id,
        order_number=order_number,
        action_url=f"/orders/{order_id}",
        priority=OrderPriority.low.value,
        metadata={"department": department, "duration": duration},
    ))


def notify_inventory_out_of_stock(db: Session, item_name: str, department: str) -> int:
    return notify_ceo(db, CeoEvent(
        type=NotificationType.inventory_out_of_stock.value,
        title="Material out of stock",
        message=f"{item_name} is out of stock in {_value(department)} - needs an immediate order",
        action_url="/ceo-dashboard/inventory",
        priority=OrderPriority.high.value,
    ))


def notify_inventory_low_stock(db: Session, item_name: str, quantity: float, unit: str, department: str) -> int:
    return notify_ceo(db, CeoEvent(
        type=NotificationType.inventory_low_stock.value,
        title="Material running low",
        message=f"{item_name} is low in {_value(department)} ({quantity:g} {unit} left)",
        action_url="/ceo-dashboard/inventory",
        priority=OrderPriority.medium.value,
    ))


def notify_purchase_request(
    db: Session,
    request_number: str,
    requester_name: str,
    item_count: int,
    total_estimated_cost: float,
    priority: str,
) -> int:
    return notify_ceo(db, CeoEvent(
        type=NotificationType.purchase_request.value,
        title="New purchase request",
        message=f"Purchase request {request_number} from {requester_name} - {item_count} item(s) - {total_estimated_cost:,.2f}",
        action_url="/ceo-dashboard/material-requests",
        priority=_value(priority),
        metadata={"request_number": request_number},
    ))


def notify_order_submitted(db: Session, order_number: str, customer_name: str, order_id: uuid.UUID, priority: str) -> int:
    return notify_ceo(db, CeoEvent(
        type=NotificationType.order_created.value,
        title="New order awaiting review",
        message=f"Order {order_number} for {customer_name} is waiting for approval",
        order_id=order_id,
        order_number=order_number,
        action_url=f"/orders/{order_id}",
        priority=_value(priority),
    ))


# ---------- READ SIDE ----------

def list_notifications(db: Session, recipient_id: uuid.UUID, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = db.query(Notification).filter(Notification.recipient_id == recipient_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def unread_count(db: Session, recipient_id: uuid.UUID) -> int:
    return db.query(Notification).filter(
        Notification.recipient_id == recipient_id,
        Notification.is_read.is_(False),
    ).count()


def mark_read(db: Session, notification_id: uuid.UUID, recipient_id: uuid.UUID) -> Notification:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.recipient_id == recipient_id,
    ).first()
    if not notification:
        raise NotFoundError(entity="Notification", id=str(notification_id))
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_read(db: Session, recipient_id: uuid.UUID) -> int:
    now = utcnow()
    updated = db.query(Notification).filter(
        Notification.recipient_id == recipient_id,
        Notification.is_read.is_(False),
    ).update({Notification.is_read: True, Notification.read_at: now}, synchronize_session=False)
    db.commit()
    return updated
