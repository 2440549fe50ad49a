import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import User
from ..schemas.notifications import NotificationResponse, UnreadCountResponse
from ..services import notifications as notification_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=List[NotificationResponse])
def list_notifications(
    limit: int = 50,
    unread_only: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Notifications of the current user, newest first."""
    return notification_service.list_notifications(db, user.id, unread_only=unread_only, limit=max(1, min(200, limit)))


@router.get("/unread-count", response_model=UnreadCountResponse)
def unread_count(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return UnreadCountResponse(count=notification_service.unread_count(db, user.id))


@router.post("/read-all")
def mark_all_read(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    updated = notification_service.mark_all_read(db, user.id)
    return {"status": "ok", "updated": updated}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(notification_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return notification_service.mark_read(db, notification_id, user.id)
