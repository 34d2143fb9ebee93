from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from orderflow.models.domain import NotificationType


class NotificationRead(BaseModel):
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    is_read: bool
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None
    # Stored in the "metadata" column.
    metadata: Optional[dict[str, Any]] = Field(None, validation_alias="meta")
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UnreadCount(BaseModel):
    unread: int


class MarkAllReadResult(BaseModel):
    updated: int
