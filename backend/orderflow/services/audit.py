import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from orderflow import models

logger = logging.getLogger("orderflow.audit")


def audit_event(
    action: str,
    actor_id: Optional[str],
    payload: Dict[str, Any],
    *,
    db: Session,
    entity_type: str,
    entity_id: str,
    idempotency_key: str | None = None,
    request_id: str | None = None,
) -> models.AuditLog:
    """
    Stage an audit row in the caller's transaction.

    The row commits (or rolls back) with the business change it describes.
    With an `idempotency_key`, a replay returns the row already written.
    """
    if idempotency_key:
        existing = (
            db.query(models.AuditLog)
            .filter(models.AuditLog.idempotency_key == idempotency_key)
            .first()
        )
        if existing is not None:
            return existing

    log = models.AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_id=actor_id,
        payload=payload or None,
        idempotency_key=idempotency_key,
        request_id=request_id,
    )
    db.add(log)
    logger.info(
        "audit_event",
        extra={
            "action": action,
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "actor_id": actor_id,
        },
    )
    return log
