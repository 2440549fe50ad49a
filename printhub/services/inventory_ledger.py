"""
Inventory ledger.

Every quantity change goes through here and leaves one immutable
InventoryTransaction row with the before/after quantities. Multi-line
operations are NOT atomic as a whole: each line runs in its own database
transaction, failures are collected per line and the remaining lines are still
attempted. Callers inspect ``LedgerResult.errors`` to see what did not apply.

Stock status rules:

- consuming (and manual counts) re-derive the status from the thresholds
- returning only clears a shortage once the quantity is above min_quantity,
  otherwise the previous status is kept (an item returned to exactly its
  minimum stays low_stock; one returned from zero to below minimum stays
  out_of_stock)
"""
import uuid
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import (
    InsufficientStockError,
    NotFoundError,
    PersistenceError,
    ValidationError,
    WorkflowError,
)
from ..models.enums import StockStatus, TransactionType
from ..models.models import InventoryItem, InventoryTransaction, utcnow
from ..schemas.inventory import MaterialLine, MissingMaterial
from . import notifications
from .timeline import actor_name

logger = structlog.get_logger(__name__)

_ALERT_STATUSES = {StockStatus.low_stock.value, StockStatus.out_of_stock.value}


@dataclass
class AvailabilityResult:
    available: bool
    missing: List[MissingMaterial] = field(default_factory=list)


@dataclass
class LedgerResult:
    success: bool
    errors: List[WorkflowError] = field(default_factory=list)
    applied: List[MaterialLine] = field(default_factory=list)


@dataclass
class OrderContext:
    """Order a ledger operation is performed for, copied onto the transaction rows"""
    order_id: Optional[uuid.UUID] = None
    order_number: Optional[str] = None


def derive_stock_status(quantity: float, min_quantity: float) -> str:
    if quantity <= 0:
        return StockStatus.out_of_stock.value
    if quantity <= min_quantity:
        return StockStatus.low_stock.value
    return StockStatus.in_stock.value


def _as_line(line) -> MaterialLine:
    if isinstance(line, MaterialLine):
        return line
    return MaterialLine.model_validate(line)


def _notify_threshold(db: Session, item_name: str, department: str, unit: str,
                      quantity: float, previous_status: str, new_status: str) -> None:
    if new_status == previous_status or new_status not in _ALERT_STATUSES:
        return
    if new_status == StockStatus.out_of_stock.value:
        notifications.notify_inventory_out_of_stock(db, item_name, department)
    else:
        notifications.notify_inventory_low_stock(db, item_name, quantity, unit, department)


def check_availability(db: Session, lines: Iterable) -> AvailabilityResult:
    """
    Compare each requested quantity with the stock on hand. Read only.

    A missing item, or one that cannot be read, counts as zero available.
    """
    missing: List[MissingMaterial] = []
    for raw in lines:
        line = _as_line(raw)
        try:
            item = db.query(InventoryItem).filter(InventoryItem.id == line.inventory_item_id).first()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("inventory_read_failed", item_id=str(line.inventory_item_id), error=str(exc))
            item = None

        available = float(item.quantity or 0) if item else 0.0
        if available < line.quantity_used:
            missing.append(MissingMaterial(
                item_name=line.item_name,
                category=line.category,
                requested_quantity=line.quantity_used,
                available_quantity=available,
                unit=line.unit,
            ))
    return AvailabilityResult(available=not missing, missing=missing)


def _apply_line(
    db: Session,
    line: MaterialLine,
    direction: str,
    order_context: OrderContext,
    actor,
) -> Optional[WorkflowError]:
    """Apply one line in its own transaction. Returns the error instead of raising it."""
    try:
        item = (
            db.query(InventoryItem)
            .filter(InventoryItem.id == line.inventory_item_id)
            .with_for_update()
            .first()
        )
        if not item:
            db.rollback()
            return NotFoundError(entity="Inventory item", id=str(line.inventory_item_id), item_name=line.item_name)

        previous = float(item.quantity or 0)
        previous_status = item.status
        if direction == TransactionType.stock_out.value:
            if previous < line.quantity_used:
                db.rollback()
                return InsufficientStockError(
                    item_name=item.name,
                    item_id=str(item.id),
                    available=previous,
                    requested=line.quantity_used,
                )
            new_quantity = previous - line.quantity_used
            new_status = derive_stock_status(new_quantity, item.min_quantity or 0)
            reason = f"Used for order {order_context.order_number}" if order_context.order_number else "Consumed"
        else:
            new_quantity = previous + line.quantity_used
            if new_quantity > (item.min_quantity or 0):
                new_status = StockStatus.in_stock.value
            else:
                new_status = previous_status
            reason = f"Returned from order {order_context.order_number}" if order_context.order_number else "Returned"

        item.quantity = new_quantity
        item.status = new_status
        item.updated_at = utcnow()
        db.add(InventoryTransaction(
            inventory_item_id=item.id,
            type=direction,
            quantity=line.quantity_used,
            previous_quantity=previous,
            new_quantity=new_quantity,
            reason=reason,
            related_order_id=order_context.order_id,
            performed_by=getattr(actor, "id", None),
            performed_by_name=actor_name(actor),
            notes=line.notes,
        ))
        item_name, department, unit = item.name, item.department, item.unit
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("inventory_line_failed", item_id=str(line.inventory_item_id), direction=direction, error=str(exc))
        return PersistenceError(operation=f"inventory_{direction}", item_name=line.item_name, detail=str(exc))

    logger.info(
        "inventory_consumed" if direction == TransactionType.stock_out.value else "inventory_returned",
        item=item_name,
        previous=previous,
        new=new_quantity,
        status=new_status,
        order_number=order_context.order_number,
    )
    _notify_threshold(db, item_name, department, unit, new_quantity, previous_status, new_status)
    return None


def _run(db: Session, lines: Iterable, direction: str, order_context: Optional[OrderContext], actor) -> LedgerResult:
    order_context = order_context or OrderContext()
    errors: List[WorkflowError] = []
    applied: List[MaterialLine] = []
    for raw in lines:
        line = _as_line(raw)
        error = _apply_line(db, line, direction, order_context, actor)
        if error is not None:
            errors.append(error)
        else:
            applied.append(line)
    if errors:
        logger.warning(
            "inventory_ledger_partial_failure",
            direction=direction,
            order_number=order_context.order_number,
            errors=[e.to_dict() for e in errors],
        )
    return LedgerResult(success=not errors, errors=errors, applied=applied)


def consume(db: Session, lines: Iterable, order_context: Optional[OrderContext] = None, actor=None) -> LedgerResult:
    """
    Take the requested quantities out of stock, one transaction per line.

    Args:
        db: Database session
        lines: MaterialLine objects (or dicts of the same shape)
        order_context: Order the materials are used for
        actor: User performing the operation

    Returns:
        LedgerResult; errors holds NotFoundError, InsufficientStockError or
        PersistenceError for every line that was skipped, applied holds the
        lines that were taken out of stock
    """
    return _run(db, lines, TransactionType.stock_out.value, order_context, actor)


def return_materials(db: Session, lines: Iterable, order_context: Optional[OrderContext] = None, actor=None) -> LedgerResult:
    """Put quantities back into stock. Same per-line policy as consume."""
    return _run(db, lines, TransactionType.stock_in.value, order_context, actor)


def adjust_quantity(db: Session, item_id: uuid.UUID, new_quantity: float, actor=None, reason: Optional[str] = None) -> InventoryItem:
    """
    Set the counted quantity of an item (restock or correction).

    Raises:
        ValidationError: negative quantity
        NotFoundError: unknown item
        PersistenceError: the write failed
    """
    if new_quantity is None or new_quantity < 0:
        raise ValidationError(detail="Quantity cannot be negative")

    with transaction(db, operation="adjust_inventory"):
        item = db.query(InventoryItem).filter(InventoryItem.id == item_id).with_for_update().first()
        if not item:
            raise NotFoundError(entity="Inventory item", id=str(item_id))

        previous = float(item.quantity or 0)
        previous_status = item.status
        delta = new_quantity - previous
        if delta > 0:
            tx_type = TransactionType.stock_in.value
            item.last_restocked_at = utcnow()
        elif delta < 0:
            tx_type = TransactionType.stock_out.value
        else:
            tx_type = TransactionType.adjustment.value

        new_status = derive_stock_status(new_quantity, item.min_quantity or 0)
        item.quantity = new_quantity
        item.status = new_status
        item.updated_at = utcnow()
        db.add(InventoryTransaction(
            inventory_item_id=item.id,
            type=tx_type,
            quantity=abs(delta),
            previous_quantity=previous,
            new_quantity=new_quantity,
            reason=reason or "Manual stock count",
            performed_by=getattr(actor, "id", None),
            performed_by_name=actor_name(actor),
        ))

    db.refresh(item)
    logger.info("inventory_adjusted", item=item.name, previous=previous, new=new_quantity, status=new_status)
    _notify_threshold(db, item.name, item.department, item.unit, new_quantity, previous_status, new_status)
    return item


def create_item(
    db: Session,
    name: str,
    department: str,
    unit: str = "unit",
    quantity: float = 0,
    min_quantity: float = 0,
    category: Optional[str] = None,
    actor=None,
) -> InventoryItem:
    if not name or not name.strip():
        raise ValidationError(detail="Item name is required")
    if quantity < 0 or min_quantity < 0:
        raise ValidationError(detail="Quantities cannot be negative")

    with transaction(db, operation="create_inventory_item"):
        now = utcnow()
        item = InventoryItem(
            name=name.strip(),
            category=category,
            department=getattr(department, "value", department),
            unit=unit or "unit",
            quantity=quantity,
            min_quantity=min_quantity,
            status=derive_stock_status(quantity, min_quantity),
            last_restocked_at=now if quantity > 0 else None,
            created_at=now,
            updated_at=now,
        )
        db.add(item)
        db.flush()
        if quantity > 0:
            db.add(InventoryTransaction(
                inventory_item_id=item.id,
                type=TransactionType.stock_in.value,
                quantity=quantity,
                previous_quantity=0,
                new_quantity=quantity,
                reason="Initial stock",
                performed_by=getattr(actor, "id", None),
                performed_by_name=actor_name(actor),
            ))

    db.refresh(item)
    logger.info("inventory_item_created", item=item.name, quantity=quantity, department=item.department)
    return item


def get_item(db: Session, item_id: uuid.UUID) -> InventoryItem:
    item = db.query(InventoryItem).filter(InventoryItem.id == item_id).first()
    if not item:
        raise NotFoundError(entity="Inventory item", id=str(item_id))
    return item


def list_items(db: Session, department: Optional[str] = None, status: Optional[str] = None) -> List[InventoryItem]:
    query = db.query(InventoryItem)
    if department:
        query = query.filter(InventoryItem.department == getattr(department, "value", department))
    if status:
        query = query.filter(InventoryItem.status == getattr(status, "value", status))
    return query.order_by(InventoryItem.name.asc()).all()


def list_transactions(db: Session, item_id: uuid.UUID, limit: int = 100) -> List[InventoryTransaction]:
    get_item(db, item_id)
    return (
        db.query(InventoryTransaction)
        .filter(InventoryTransaction.inventory_item_id == item_id)
        .order_by(InventoryTransaction.created_at.desc())
        .limit(limit)
        .all()
    )
