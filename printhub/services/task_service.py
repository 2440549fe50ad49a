import uuid
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import (
    AlreadyCompletedError,
    InactiveActorError,
    NotFoundError,
    NotStartedError,
)
from ..models.enums import Department, NotificationType, OrderPriority
from ..models.models import Order, OrderAssignment, User, utcnow
from . import notifications
from .order_feed import feed
from .timeline import actor_name, append_timeline

logger = structlog.get_logger(__name__)

DEPARTMENT_LABELS = {
    Department.design.value: "design",
    Department.printing.value: "printing",
    Department.accounting.value: "accounting",
    Department.dispatch.value: "delivery",
    Department.sales.value: "sales",
    Department.management.value: "management",
}


def _department(value) -> str:
    return Department(getattr(value, "value", value)).value


def _get_order(db: Session, order_id: uuid.UUID) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError(entity="Order", id=str(order_id))
    return order


def _current_assignment(db: Session, order_id: uuid.UUID, department: str, lock: bool = False) -> Optional[OrderAssignment]:
    query = db.query(OrderAssignment).filter(
        OrderAssignment.order_id == order_id,
        OrderAssignment.department == department,
        OrderAssignment.superseded_at.is_(None),
    )
    if lock:
        query = query.with_for_update()
    return query.order_by(OrderAssignment.assigned_at.desc()).first()


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def elapsed_hours(started_at: datetime, completed_at: datetime) -> float:
    return round((_naive_utc(completed_at) - _naive_utc(started_at)).total_seconds() / 3600, 2)


def get_assignment(db: Session, order_id: uuid.UUID, department) -> Optional[OrderAssignment]:
    return _current_assignment(db, order_id, _department(department))


def list_assignments(db: Session, order_id: uuid.UUID, department=None, include_history: bool = True) -> List[OrderAssignment]:
    query = db.query(OrderAssignment).filter(OrderAssignment.order_id == order_id)
    if department is not None:
        query = query.filter(OrderAssignment.department == _department(department))
    if not include_history:
        query = query.filter(OrderAssignment.superseded_at.is_(None))
    return query.order_by(OrderAssignment.assigned_at.asc()).all()


def assign_task(
    db: Session,
    order_id: uuid.UUID,
    assignee_id: uuid.UUID,
    department,
    actor,
    estimated_duration: Optional[float] = None,
    notes: Optional[str] = None,
) -> OrderAssignment:
    """
    Assign the department's task on an order to an employee.

    Any current assignment of that department is superseded (kept as history).

    Raises:
        NotFoundError: order or assignee missing
        InactiveActorError: assignee is deactivated
        PersistenceError: the write failed
    """
    department = _department(department)
    with transaction(db, operation="assign_task"):
        order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
        if not order:
            raise NotFoundError(entity="Order", id=str(order_id))
        assignee = db.query(User).filter(User.id == assignee_id).first()
        if not assignee:
            raise NotFoundError(entity="User", id=str(assignee_id))
        if not assignee.is_active:
            raise InactiveActorError(name=assignee.display_name, id=str(assignee.id))

        now = utcnow()
        previous = _current_assignment(db, order.id, department, lock=True)
        if previous is not None:
            previous.superseded_at = now

        assignment = OrderAssignment(
            order_id=order.id,
            department=department,
            assignee_id=assignee.id,
            assignee_name=assignee.display_name,
            assigned_by_id=getattr(actor, "id", None),
            assigned_by_name=actor_name(actor),
            assigned_at=now,
            estimated_duration=estimated_duration,
            notes=notes,
        )
        db.add(assignment)
        label = DEPARTMENT_LABELS.get(department, department)
        append_timeline(db, order.id, f"Assigned {label} task to {assignee.display_name}", actor, notes=notes)
        order.updated_at = now
        order_number, order_priority = order.order_number, order.priority

    db.refresh(assignment)
    logger.info(
        "task_assigned",
        order_number=order_number,
        department=department,
        assignee_id=str(assignee_id),
        reassigned=previous is not None,
    )

    notifications.notify_user(
        db,
        assignee_id,
        type=NotificationType.task_assigned.value,
        title="New task assigned",
        message=f"You were assigned the {DEPARTMENT_LABELS.get(department, department)} task for order {order_number}",
        order_id=order_id,
        order_number=order_number,
        action_url=f"/orders/{order_id}",
        priority=order_priority or OrderPriority.medium.value,
    )
    feed.publish()
    return assignment


def start_task(db: Session, order_id: uuid.UUID, department, actor=None) -> OrderAssignment:
    """
    Record that work on the current assignment began.

    Starting an already started (not yet completed) task keeps the original
    started_at and writes nothing.

    Raises:
        NotFoundError: no current assignment for the department
        AlreadyCompletedError: the task is already completed
    """
    department = _department(department)
    with transaction(db, operation="start_task"):
        _get_order(db, order_id)
        assignment = _current_assignment(db, order_id, department, lock=True)
        if not assignment:
            raise NotFoundError(entity="Assignment", order_id=str(order_id), department=department)
        if assignment.completed_at is not None:
            raise AlreadyCompletedError(order_id=str(order_id), department=department)
        if assignment.started_at is not None:
            return assignment

        assignment.started_at = utcnow()
        label = DEPARTMENT_LABELS.get(department, department)
        append_timeline(db, order_id, f"Started {label} task", actor or _assignee_actor(db, assignment))

    db.refresh(assignment)
    logger.info("task_started", order_id=str(order_id), department=department)
    feed.publish()
    return assignment


def _assignee_actor(db: Session, assignment: OrderAssignment) -> Optional[User]:
    return db.query(User).filter(User.id == assignment.assignee_id).first()


def complete_task(db: Session, order_id: uuid.UUID, department, actor=None, notes: Optional[str] = None) -> OrderAssignment:
    """
    Complete the current assignment and record how long it took.

    Nothing is written when the task was never started.

    Raises:
        NotFoundError: order or current assignment missing
        NotStartedError: start_task was never called
        AlreadyCompletedError: completed before
    """
    department = _department(department)
    with transaction(db, operation="complete_task"):
        order = _get_order(db, order_id)
        assignment = _current_assignment(db, order_id, department, lock=True)
        if not assignment:
            raise NotFoundError(entity="Assignment", order_id=str(order_id), department=department)
        if assignment.started_at is None:
            raise NotStartedError(order_id=str(order_id), department=department)
        if assignment.completed_at is not None:
            raise AlreadyCompletedError(order_id=str(order_id), department=department)

        now = utcnow()
        duration = elapsed_hours(assignment.started_at, now)
        assignment.completed_at = now
        assignment.actual_duration = duration
        if notes:
            assignment.notes = notes

        completer = actor or _assignee_actor(db, assignment)
        label = DEPARTMENT_LABELS.get(department, department)
        append_timeline(
            db,
            order_id,
            f"Completed {label} task in {duration:.2f} hours",
            completer,
            notes=notes,
        )
        order.updated_at = now
        order_number = order.order_number
        assigned_by_id = assignment.assigned_by_id
        employee_name = actor_name(completer) or assignment.assignee_name

    db.refresh(assignment)
    logger.info("task_completed", order_number=order_number, department=department, duration_hours=duration)

    if assigned_by_id:
        notifications.notify_user(
            db,
            assigned_by_id,
            type=NotificationType.task_completed.value,
            title="Task completed",
            message=f"{employee_name} completed the {label} task for order {order_number}",
            order_id=order_id,
            order_number=order_number,
            action_url=f"/orders/{order_id}",
        )
    notifications.notify_task_completed(db, employee_name, department, order_number, order_id, duration)
    feed.publish()
    return assignment
