from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderflow import models


@dataclass(frozen=True)
class DocumentNumber:
    doc_type: str
    year: int
    seq: int
    formatted: str


def format_document_number(*, prefix: str, seq: int, year: int) -> str:
    """Format: PREFIX-2026-000042 (sequence resets each year, 1-based)."""

    return f"{prefix}-{year}-{seq:06d}"


def next_document_number(
    db: Session,
    *,
    doc_type: str,
    prefix: str,
    now: datetime | None = None,
    max_retries: int = 5,
) -> DocumentNumber:
    """Allocate the next yearly number for `doc_type` inside the caller's transaction.

    Call before staging other writes: a lost race on the first row of the year
    rolls the session back.
    """

    now = now or datetime.utcnow()
    year = int(now.year)

    dialect_name = getattr(getattr(db.get_bind(), "dialect", None), "name", None)

    for _ in range(max_retries):
        q = db.query(models.DocumentSequence).filter(
            models.DocumentSequence.doc_type == str(doc_type),
            models.DocumentSequence.year == year,
        )

        # SQLite doesn't support FOR UPDATE; other DBs benefit from row locking.
        if dialect_name and str(dialect_name).lower() != "sqlite":
            q = q.with_for_update()

        row = q.first()

        if row is None:
            row = models.DocumentSequence(doc_type=str(doc_type), year=year, last_seq=0)
            db.add(row)
            try:
                db.flush()
            except IntegrityError:
                db.rollback()
                continue

        row.last_seq = int(row.last_seq or 0) + 1
        db.flush()

        seq = int(row.last_seq)
        return DocumentNumber(
            doc_type=str(doc_type),
            year=year,
            seq=seq,
            formatted=format_document_number(prefix=str(prefix), seq=seq, year=year),
        )

    raise RuntimeError(f"Could not allocate document number for doc_type={doc_type} year={year}")
