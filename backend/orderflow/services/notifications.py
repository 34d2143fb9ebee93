"""Notification trigger dispatcher.

Lifecycle services collect `NotificationIntent`s while they mutate state and
hand them to `dispatch` once their own commit has succeeded. Dispatch writes
each row in its own short transaction, keyed by a deterministic `dedupe_key`,
so a retried transition never produces a second row and a failed insert never
undoes the transition that triggered it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from orderflow import models
from orderflow.config import settings
from orderflow.core.errors import NotFound
from orderflow.models.domain import NotificationType

logger = logging.getLogger("orderflow.notifications")


@dataclass(frozen=True)
class NotificationIntent:
    user_id: str
    type: NotificationType
    title: str
    message: str
    entity_type: str | None = None
    entity_id: str | None = None
    # Distinguishes repeated events of the same type on one entity, e.g. "created->deposit_paid".
    discriminator: str | None = None
    meta: dict[str, Any] | None = field(default=None)


@dataclass(frozen=True)
class DispatchResult:
    notification: models.Notification
    created: bool


def build_dedupe_key(intent: NotificationIntent) -> str:
    parts = [
        str(intent.user_id),
        intent.entity_type or "-",
        str(intent.entity_id or "-"),
        intent.type.value,
        intent.discriminator or "-",
    ]
    return ":".join(parts)[:255]


def _find_existing(db: Session, dedupe_key: str) -> models.Notification | None:
    return (
        db.query(models.Notification)
        .filter(models.Notification.dedupe_key == dedupe_key)
        .first()
    )


def dispatch_one(*, db: Session, intent: NotificationIntent) -> DispatchResult:
    """Insert one notification, returning the existing row on a dedupe hit."""

    dedupe_key = build_dedupe_key(intent)
    existing = _find_existing(db, dedupe_key)
    if existing is not None:
        return DispatchResult(notification=existing, created=False)

    row = models.Notification(
        user_id=str(intent.user_id),
        type=intent.type,
        title=intent.title,
        message=intent.message,
        entity_type=intent.entity_type,
        entity_id=intent.entity_id,
        meta=intent.meta or None,
        dedupe_key=dedupe_key,
        is_read=False,
    )
    db.add(row)
    try:
        db.commit()
        db.refresh(row)
        return DispatchResult(notification=row, created=True)
    except IntegrityError:
        db.rollback()
        existing = _find_existing(db, dedupe_key)
        if existing is None:
            raise
        return DispatchResult(notification=existing, created=False)


def dispatch(*, db: Session, intents: Iterable[NotificationIntent]) -> list[DispatchResult]:
    """Best-effort fan-out. Call only after the originating change is committed."""

    results: list[DispatchResult] = []
    if not settings.notifications_enabled:
        return results

    for intent in intents:
        try:
            results.append(dispatch_one(db=db, intent=intent))
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "notification_dispatch_failed",
                extra={
                    "user_id": intent.user_id,
                    "type": intent.type.value,
                    "entity_type": intent.entity_type,
                    "entity_id": intent.entity_id,
                },
            )
    return results


def list_notifications(
    *, db: Session, user_id: str, unread_only: bool = False, limit: int = 50
) -> list[models.Notification]:
    q = db.query(models.Notification).filter(models.Notification.user_id == str(user_id))
    if unread_only:
        q = q.filter(models.Notification.is_read.is_(False))
    return q.order_by(models.Notification.created_at.desc()).limit(int(limit)).all()


def get_unread_count(*, db: Session, user_id: str) -> int:
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == str(user_id))
        .filter(models.Notification.is_read.is_(False))
        .count()
    )


def mark_notification_read(
    *, db: Session, notification_id: str, user_id: str | None = None
) -> models.Notification:
    """Idempotent: marking an already-read notification returns it unchanged."""

    row = db.get(models.Notification, str(notification_id))
    if row is None or (user_id is not None and row.user_id != str(user_id)):
        raise NotFound("Notification", notification_id)
    if not row.is_read:
        row.is_read = True
        db.commit()
        db.refresh(row)
    return row


def mark_all_read(*, db: Session, user_id: str) -> int:
    updated = (
        db.query(models.Notification)
        .filter(models.Notification.user_id == str(user_id))
        .filter(models.Notification.is_read.is_(False))
        .update({"is_read": True}, synchronize_session=False)
    )
    db.commit()
    return int(updated or 0)
