from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, TypeVar

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from orderflow.core.errors import ConcurrentModification, InvalidTransition, NotFound

logger = logging.getLogger("orderflow.transitions")

M = TypeVar("M")


@dataclass(frozen=True)
class TransitionResult:
    updated: bool
    rowcount: int


def atomic_transition_status(
    *,
    db: Session,
    model: type,
    entity_id: str,
    to_status: Any,
    allowed_from: Iterable[Any],
    expected_version: int | None = None,
    updates: dict[str, Any] | None = None,
) -> TransitionResult:
    """Apply a status transition with an atomic DB guard.

    Performs a single conditional UPDATE:

        UPDATE <table>
        SET status = :to_status, version = version + 1, ...
        WHERE id = :id AND status IN (:allowed_from) [AND version = :expected_version]

    Notes:
    - Callers control commit/rollback.
    - A zero rowcount means the guard did not hold; see `classify_failed_transition`.
    """

    update_values: dict[str, Any] = {"status": to_status, "version": model.version + 1}
    if updates:
        update_values.update(updates)

    q = (
        db.query(model)
        .filter(model.id == str(entity_id))
        .filter(model.status.in_(set(allowed_from)))
    )
    if expected_version is not None:
        q = q.filter(model.version == int(expected_version))

    rowcount = q.update(update_values, synchronize_session=False)
    return TransitionResult(updated=rowcount > 0, rowcount=int(rowcount or 0))


def classify_failed_transition(
    *,
    db: Session,
    model: type,
    entity: str,
    entity_id: str,
    to_status: Any,
    allowed_from: Iterable[Any],
    expected_version: int | None,
) -> Exception:
    """Re-read the row after a guard miss and return the error to raise."""

    current = db.get(model, str(entity_id), populate_existing=True)
    if current is None:
        return NotFound(entity, entity_id)
    if current.status not in set(allowed_from):
        return InvalidTransition(entity, current.status, to_status, "status changed concurrently")
    return ConcurrentModification(entity, entity_id, expected_version)


def apply_guarded_transition(
    *,
    db: Session,
    model: type[M],
    entity: str,
    entity_id: str,
    to_status: Any,
    allowed_from: Iterable[Any],
    expected_version: int | None,
    updates: dict[str, Any] | None = None,
) -> M:
    """Run the conditional UPDATE and return the refreshed row, or raise the classified error."""

    allowed = set(allowed_from)
    result = atomic_transition_status(
        db=db,
        model=model,
        entity_id=entity_id,
        to_status=to_status,
        allowed_from=allowed,
        expected_version=expected_version,
        updates=updates,
    )
    if not result.updated:
        err = classify_failed_transition(
            db=db,
            model=model,
            entity=entity,
            entity_id=entity_id,
            to_status=to_status,
            allowed_from=allowed,
            expected_version=expected_version,
        )
        logger.info(
            "status_transition_rejected",
            extra={
                "entity": entity,
                "entity_id": str(entity_id),
                "to_status": getattr(to_status, "value", to_status),
                "error": type(err).__name__,
            },
        )
        raise err

    row = db.get(model, str(entity_id), populate_existing=True)
    if row is None:
        raise NotFound(entity, entity_id)
    return row


def check_expected_version(entity: str, row: Any, expected_version: int | None) -> None:
    if expected_version is not None and int(row.version) != int(expected_version):
        raise ConcurrentModification(entity, row.id, expected_version)


def commit_versioned(
    db: Session, *, entity: str, entity_id: str, expected_version: int | None = None
) -> None:
    """Commit ORM changes on a `version_id_col` mapped row; a lost race becomes ConcurrentModification."""

    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        logger.info(
            "versioned_write_conflict",
            extra={"entity": entity, "entity_id": str(entity_id)},
        )
        raise ConcurrentModification(entity, entity_id, expected_version)


def coalesce_datetime(existing_column, value):
    """SQL-side set-once for timestamps."""

    return func.coalesce(existing_column, value)
