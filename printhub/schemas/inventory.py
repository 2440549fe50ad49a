import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models.enums import Department, StockStatus


class MaterialLine(BaseModel):
    """One requested inventory line: which item, how much"""
    inventory_item_id: uuid.UUID
    item_name: str
    category: Optional[str] = None
    department: Optional[str] = None
    quantity_used: float = Field(gt=0)
    unit: str = "unit"
    notes: Optional[str] = None


class MissingMaterial(BaseModel):
    item_name: str
    category: Optional[str] = None
    requested_quantity: float
    available_quantity: float
    unit: str = "unit"


class AvailabilityResponse(BaseModel):
    available: bool
    missing_materials: List[MissingMaterial]


class LedgerErrorResponse(BaseModel):
    code: str
    message: str
    context: dict = {}


class LedgerResponse(BaseModel):
    success: bool
    errors: List[LedgerErrorResponse] = []


class InventoryItemCreate(BaseModel):
    name: str
    category: Optional[str] = None
    department: Department
    unit: str = "unit"
    quantity: float = Field(default=0, ge=0)
    min_quantity: float = Field(default=0, ge=0)

    @field_validator("category", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class InventoryItemResponse(BaseModel):
    id: uuid.UUID
    name: str
    category: Optional[str] = None
    department: str
    unit: str
    quantity: float
    min_quantity: float
    status: StockStatus
    last_restocked_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InventoryTransactionResponse(BaseModel):
    id: uuid.UUID
    inventory_item_id: uuid.UUID
    type: str
    quantity: float
    previous_quantity: float
    new_quantity: float
    reason: Optional[str] = None
    related_order_id: Optional[uuid.UUID] = None
    performed_by: Optional[uuid.UUID] = None
    performed_by_name: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LedgerRequest(BaseModel):
    materials: List[MaterialLine]
    order_id: Optional[uuid.UUID] = None
    order_number: Optional[str] = None


class AdjustQuantityRequest(BaseModel):
    quantity: float = Field(ge=0)
    reason: Optional[str] = None
