"""
Order timeline.
Append-only: entries are inserted, never updated or deleted.
"""
import uuid
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from ..models.models import OrderTimelineEntry, utcnow


def _value(v: Any) -> Any:
    return getattr(v, "value", v)


def actor_name(actor) -> Optional[str]:
    if actor is None:
        return None
    return getattr(actor, "display_name", None) or getattr(actor, "email", None)


def append_timeline(
    db: Session,
    order_id: uuid.UUID,
    action: str,
    actor=None,
    status: Optional[str] = None,
    notes: Optional[str] = None,
) -> OrderTimelineEntry:
    """
    Stage one timeline entry on the session. The caller owns the commit.

    Args:
        db: Database session
        order_id: Order the entry belongs to
        action: Human readable description of what happened
        actor: User who performed the action (None for system actions)
        status: Order status after the action, when it changed
        notes: Free text supplied by the actor
    """
    entry = OrderTimelineEntry(
        order_id=order_id,
        status=_value(status),
        action=action,
        user_id=getattr(actor, "id", None),
        user_name=actor_name(actor),
        user_role=_value(getattr(actor, "role", None)),
        notes=notes,
        timestamp=utcnow(),
    )
    db.add(entry)
    return entry


def list_timeline(db: Session, order_id: uuid.UUID) -> List[OrderTimelineEntry]:
    return (
        db.query(OrderTimelineEntry)
        .filter(OrderTimelineEntry.order_id == order_id)
        .order_by(OrderTimelineEntry.id.asc())
        .all()
    )
