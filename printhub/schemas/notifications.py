import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class NotificationResponse(BaseModel):
    id: uuid.UUID
    type: str
    title: str
    message: str
    order_id: Optional[uuid.UUID] = None
    order_number: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    is_action_required: bool
    priority: str
    action_url: Optional[str] = None
    metadata: Optional[dict] = Field(default=None, validation_alias="metadata_json")
    created_at: datetime

    class Config:
        from_attributes = True


class UnreadCountResponse(BaseModel):
    count: int
