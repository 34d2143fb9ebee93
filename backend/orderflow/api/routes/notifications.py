from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from orderflow.api.deps import CurrentUser, get_current_user, get_db
from orderflow.schemas.notifications import MarkAllReadResult, NotificationRead, UnreadCount
from orderflow.services import notifications

router = APIRouter(prefix="/notifications", tags=["notifications"])

_DB_DEP = Depends(get_db)
_USER_DEP = Depends(get_current_user)


@router.get("", response_model=List[NotificationRead])
def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    db: Session = _DB_DEP,
    user: CurrentUser = _USER_DEP,
):
    return notifications.list_notifications(
        db=db, user_id=user.id, unread_only=unread_only, limit=limit
    )


@router.get("/unread-count", response_model=UnreadCount)
def unread_count(db: Session = _DB_DEP, user: CurrentUser = _USER_DEP):
    return UnreadCount(unread=notifications.get_unread_count(db=db, user_id=user.id))


@router.post("/read-all", response_model=MarkAllReadResult)
def mark_all_read(db: Session = _DB_DEP, user: CurrentUser = _USER_DEP):
    return MarkAllReadResult(updated=notifications.mark_all_read(db=db, user_id=user.id))


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_read(notification_id: str, db: Session = _DB_DEP, user: CurrentUser = _USER_DEP):
    return notifications.mark_notification_read(
        db=db, notification_id=notification_id, user_id=user.id
    )
