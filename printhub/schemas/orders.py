import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models.enums import Department, OrderPriority, OrderStatus, PrintType
from .inventory import MaterialLine


class PrintMaterial(BaseModel):
    type: str  # plates|molds|paper
    description: str
    quantity: Optional[float] = None
    notes: Optional[str] = None


class OrderCreate(BaseModel):
    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None
    priority: OrderPriority = OrderPriority.medium
    print_type: PrintType = PrintType.digital
    quantity: int = Field(default=0, ge=0)
    needs_design: bool = False
    design_description: Optional[str] = None
    materials: List[PrintMaterial] = []
    inventory_materials: List[MaterialLine] = []
    notes: Optional[str] = None
    estimated_cost: Optional[float] = Field(default=None, ge=0)
    is_quotation: bool = False
    is_urgent: bool = False
    submit_for_review: bool = True

    @field_validator("customer_email", "customer_address", "design_description", "notes", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class OrderSummary(BaseModel):
    id: uuid.UUID
    order_number: str
    status: OrderStatus
    priority: OrderPriority
    customer_name: str
    customer_phone: str
    print_type: PrintType
    quantity: int
    needs_design: bool
    is_quotation: bool
    is_urgent: bool
    estimated_cost: Optional[float] = None
    final_cost: Optional[float] = None
    paid_amount: Optional[float] = None
    payment_status: str
    created_by: uuid.UUID
    created_by_name: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TimelineEntryResponse(BaseModel):
    id: int
    status: Optional[str] = None
    action: str
    user_id: Optional[uuid.UUID] = None
    user_name: Optional[str] = None
    user_role: Optional[str] = None
    notes: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class CommentCreate(BaseModel):
    comment: str = Field(min_length=1)
    is_internal: bool = False


class CommentResponse(BaseModel):
    id: int
    user_id: Optional[uuid.UUID] = None
    user_name: Optional[str] = None
    user_role: Optional[str] = None
    comment: str
    is_internal: bool
    created_at: datetime

    class Config:
        from_attributes = True


class AssignmentResponse(BaseModel):
    id: uuid.UUID
    department: Department
    assignee_id: uuid.UUID
    assignee_name: Optional[str] = None
    assigned_by_id: Optional[uuid.UUID] = None
    assigned_by_name: Optional[str] = None
    assigned_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    estimated_duration: Optional[float] = None
    actual_duration: Optional[float] = None
    notes: Optional[str] = None
    superseded_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderDetail(OrderSummary):
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None
    held_from_status: Optional[str] = None
    design_description: Optional[str] = None
    materials: Optional[list] = None
    inventory_materials: Optional[list] = None
    inventory_returned: bool = False
    notes: Optional[str] = None
    timeline: List[TimelineEntryResponse] = []
    comments: List[CommentResponse] = []
    assignments: List[AssignmentResponse] = []


class TransitionRequest(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None


class AssignTaskRequest(BaseModel):
    assignee_id: uuid.UUID
    estimated_duration: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None


class PaymentRequest(BaseModel):
    amount: float = Field(gt=0)
    final_cost: Optional[float] = Field(default=None, ge=0)
