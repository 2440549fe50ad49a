import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Integer,
    Float,
    JSON,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base
from .enums import (
    OrderPriority,
    OrderStatus,
    PaymentStatus,
    PrintType,
    PurchaseRequestStatus,
    StockStatus,
)


def utcnow() -> datetime:
    # Naive UTC everywhere; SQLite drops tzinfo on the way back anyway
    return datetime.now(timezone.utc).replace(tzinfo=None)


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class User(Base):
    """Actor record owned by the authentication collaborator."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # UserRole
    department: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # Department
    is_head: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Counter(Base):
    __tablename__ = "counters"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# =====================
# Order domain
# =====================

class Order(Base):
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = uuid_pk()
    order_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(50), default=OrderStatus.draft.value, index=True)
    held_from_status: Mapped[Optional[str]] = mapped_column(String(50))  # status before on_hold
    priority: Mapped[str] = mapped_column(String(20), default=OrderPriority.medium.value)

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255))
    customer_address: Mapped[Optional[str]] = mapped_column(String(500))

    print_type: Mapped[str] = mapped_column(String(20), default=PrintType.digital.value)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    needs_design: Mapped[bool] = mapped_column(Boolean, default=False)
    design_description: Mapped[Optional[str]] = mapped_column(Text)
    materials: Mapped[Optional[list]] = mapped_column(JSON, default=list)  # [{type, description, quantity, notes}]
    inventory_materials: Mapped[Optional[list]] = mapped_column(JSON, default=list)  # ledger lines consumed at intake
    inventory_returned: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    estimated_cost: Mapped[Optional[float]] = mapped_column(Float)
    final_cost: Mapped[Optional[float]] = mapped_column(Float)
    paid_amount: Mapped[float] = mapped_column(Float, default=0.0)
    payment_status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.pending.value)

    is_quotation: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    is_urgent: Mapped[bool] = mapped_column(Boolean, default=False)

    created_by: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    created_by_name: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    timeline = relationship(
        "OrderTimelineEntry",
        back_populates="order",
        order_by="OrderTimelineEntry.id",
        viewonly=True,
    )
    comments = relationship(
        "OrderComment",
        back_populates="order",
        order_by="OrderComment.id",
        viewonly=True,
    )
    assignments = relationship(
        "OrderAssignment",
        back_populates="order",
        order_by="OrderAssignment.assigned_at",
        viewonly=True,
    )


class OrderTimelineEntry(Base):
    """Append-only: one row per action, insertion order given by the autoincrement id"""
    __tablename__ = "order_timeline"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    status: Mapped[Optional[str]] = mapped_column(String(50))
    action: Mapped[str] = mapped_column(String(500), nullable=False)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    user_name: Mapped[Optional[str]] = mapped_column(String(255))
    user_role: Mapped[Optional[str]] = mapped_column(String(50))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    order = relationship("Order", back_populates="timeline")


class OrderComment(Base):
    __tablename__ = "order_comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    user_name: Mapped[Optional[str]] = mapped_column(String(255))
    user_role: Mapped[Optional[str]] = mapped_column(String(50))
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    order = relationship("Order", back_populates="comments")


class OrderAssignment(Base):
    """Per-department assignment. The current one has superseded_at IS NULL; older rows are history."""
    __tablename__ = "order_assignments"

    id: Mapped[uuid.UUID] = uuid_pk()
    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    department: Mapped[str] = mapped_column(String(50), nullable=False)  # Department

    assignee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    assignee_name: Mapped[Optional[str]] = mapped_column(String(255))
    assigned_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    assigned_by_name: Mapped[Optional[str]] = mapped_column(String(255))

    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    estimated_duration: Mapped[Optional[float]] = mapped_column(Float)  # hours
    actual_duration: Mapped[Optional[float]] = mapped_column(Float)  # hours, derived on completion
    notes: Mapped[Optional[str]] = mapped_column(Text)
    superseded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    order = relationship("Order", back_populates="assignments")

    __table_args__ = (
        Index('idx_assignment_order_department', 'order_id', 'department'),
    )


# =====================
# Inventory domain
# =====================

class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    department: Mapped[str] = mapped_column(String(50), nullable=False)  # owning Department
    unit: Mapped[str] = mapped_column(String(50), default="unit")
    quantity: Mapped[float] = mapped_column(Float, default=0.0)
    min_quantity: Mapped[float] = mapped_column(Float, default=0.0)
    status: Mapped[str] = mapped_column(String(20), default=StockStatus.out_of_stock.value, index=True)
    last_restocked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class InventoryTransaction(Base):
    """Immutable audit record of one quantity change"""
    __tablename__ = "inventory_transactions"

    id: Mapped[uuid.UUID] = uuid_pk()
    inventory_item_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # in|out|adjustment
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    previous_quantity: Mapped[float] = mapped_column(Float, nullable=False)
    new_quantity: Mapped[float] = mapped_column(Float, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(500))
    related_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="SET NULL"), index=True)
    performed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    performed_by_name: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)


# =====================
# Notifications & purchasing
# =====================

class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    recipient_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_role: Mapped[Optional[str]] = mapped_column(String(50))
    type: Mapped[str] = mapped_column(String(50), nullable=False)  # NotificationType
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="SET NULL"))
    order_number: Mapped[Optional[str]] = mapped_column(String(50))
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    is_action_required: Mapped[bool] = mapped_column(Boolean, default=False)
    priority: Mapped[str] = mapped_column(String(20), default=OrderPriority.medium.value)
    action_url: Mapped[Optional[str]] = mapped_column(String(500))
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index('idx_notifications_recipient_read', 'recipient_id', 'is_read'),
        Index('idx_notifications_created', 'created_at'),
    )


class PurchaseRequest(Base):
    __tablename__ = "purchase_requests"

    id: Mapped[uuid.UUID] = uuid_pk()
    request_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=PurchaseRequestStatus.pending.value, index=True)
    items: Mapped[list] = mapped_column(JSON, default=list)  # [{name, category, requested_quantity, unit, estimated_cost, total_estimated_cost}]
    total_estimated_cost: Mapped[float] = mapped_column(Float, default=0.0)
    requested_by: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    requested_by_name: Mapped[Optional[str]] = mapped_column(String(255))
    department: Mapped[str] = mapped_column(String(50), default="sales")
    priority: Mapped[str] = mapped_column(String(20), default=OrderPriority.medium.value)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    supplier: Mapped[Optional[str]] = mapped_column(String(255))
    related_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="SET NULL"))
    related_order_number: Mapped[Optional[str]] = mapped_column(String(50))
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    reviewed_by_name: Mapped[Optional[str]] = mapped_column(String(255))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejected_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
