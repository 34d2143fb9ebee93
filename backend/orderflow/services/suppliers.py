"""Supplier profiles and their verification tier.

Suppliers are identified by the opaque id carried in `X-User-Id`; a profile
row is created the first time an admin grades one. Moving a supplier onto a
verified tier notifies them.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderflow import models
from orderflow.core.errors import NotFound, ValidationError
from orderflow.models.domain import NotificationType, SupplierVerification
from orderflow.services.audit import audit_event
from orderflow.services.notifications import NotificationIntent, dispatch
from orderflow.services.status_transitions import check_expected_version, commit_versioned

logger = logging.getLogger("orderflow.suppliers")


def get_supplier_profile(*, db: Session, supplier_id: str) -> models.SupplierProfile:
    profile = db.get(models.SupplierProfile, str(supplier_id))
    if profile is None:
        raise NotFound("SupplierProfile", supplier_id)
    return profile


def list_supplier_profiles(
    *, db: Session, verified_only: bool = False
) -> list[models.SupplierProfile]:
    q = db.query(models.SupplierProfile)
    if verified_only:
        q = q.filter(models.SupplierProfile.verified_status != SupplierVerification.unverified)
    return q.order_by(models.SupplierProfile.supplier_id.asc()).all()


def _get_or_create(db: Session, supplier_id: str, company_name: str | None) -> models.SupplierProfile:
    profile = db.get(models.SupplierProfile, supplier_id)
    if profile is not None:
        return profile

    db.add(models.SupplierProfile(supplier_id=supplier_id, company_name=company_name))
    try:
        db.commit()
    except IntegrityError:
        # Another admin created it first.
        db.rollback()
    return db.get(models.SupplierProfile, supplier_id, populate_existing=True)


def set_supplier_verification(
    *,
    db: Session,
    supplier_id: str,
    verified_status: SupplierVerification,
    actor_id: str | None = None,
    company_name: str | None = None,
    expected_version: int | None = None,
) -> models.SupplierProfile:
    """Grade a supplier. Setting the current tier again returns the profile unchanged."""

    supplier_id = str(supplier_id or "").strip()
    if not supplier_id:
        raise ValidationError("supplier_id is required", {"field": "supplier_id"})

    profile = _get_or_create(db, supplier_id, company_name)
    check_expected_version("SupplierProfile", profile, expected_version)

    from_status = profile.verified_status
    if from_status == verified_status:
        return profile

    profile.verified_status = verified_status
    if verified_status == SupplierVerification.unverified:
        profile.verified_by = None
        profile.verified_at = None
    else:
        profile.verified_by = actor_id
        profile.verified_at = datetime.utcnow()
    if company_name:
        profile.company_name = company_name

    version = profile.version
    audit_event(
        "supplier.verification_changed",
        actor_id,
        {"from": from_status.value, "to": verified_status.value},
        db=db,
        entity_type="supplier",
        entity_id=supplier_id,
        idempotency_key=f"supplier:{supplier_id}:{version}:{verified_status.value}",
    )
    commit_versioned(db, entity="SupplierProfile", entity_id=supplier_id, expected_version=version)
    db.refresh(profile)
    logger.info(
        "supplier_verification_changed",
        extra={"supplier_id": supplier_id, "from": from_status.value, "to": verified_status.value},
    )

    if verified_status != SupplierVerification.unverified:
        dispatch(
            db=db,
            intents=[
                NotificationIntent(
                    user_id=supplier_id,
                    type=NotificationType.supplier_verified,
                    title="Supplier verification updated",
                    message=f"Your supplier profile is now verified at {verified_status.value} level.",
                    entity_type="supplier",
                    entity_id=supplier_id,
                    discriminator=f"v{profile.version}:{verified_status.value}",
                    meta={"from": from_status.value, "to": verified_status.value},
                )
            ],
        )
    return profile
