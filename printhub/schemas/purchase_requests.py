import uuid
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.enums import OrderPriority, PurchaseRequestStatus
from .inventory import MissingMaterial


class PurchaseRequestCreate(BaseModel):
    missing_materials: List[MissingMaterial] = Field(min_length=1)
    reason: str
    priority: OrderPriority = OrderPriority.medium
    notes: Optional[str] = None
    supplier: Optional[str] = None
    related_order_id: Optional[uuid.UUID] = None
    related_order_number: Optional[str] = None
    estimated_costs: Optional[Dict[str, float]] = None


class PurchaseRequestItem(BaseModel):
    name: str
    category: Optional[str] = None
    requested_quantity: float
    unit: str
    estimated_cost: float = 0
    total_estimated_cost: float = 0


class PurchaseRequestResponse(BaseModel):
    id: uuid.UUID
    request_number: str
    status: PurchaseRequestStatus
    items: List[PurchaseRequestItem]
    total_estimated_cost: float
    requested_by: uuid.UUID
    requested_by_name: Optional[str] = None
    department: str
    priority: str
    reason: str
    notes: Optional[str] = None
    supplier: Optional[str] = None
    related_order_id: Optional[uuid.UUID] = None
    related_order_number: Optional[str] = None
    reviewed_by_name: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    rejected_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RejectRequest(BaseModel):
    reason: str


class MarkOrderedRequest(BaseModel):
    supplier: Optional[str] = None
