from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from orderflow import models
from orderflow.config import settings
from orderflow.core.errors import InvalidTransition, NotFound, ValidationError
from orderflow.core.money import ZERO, normalize_currency, to_money
from orderflow.models.domain import NotificationType, OfferStatus, RfqStatus
from orderflow.services.audit import audit_event
from orderflow.services.notifications import NotificationIntent, dispatch
from orderflow.services.status_transitions import apply_guarded_transition, check_expected_version

logger = logging.getLogger("orderflow.offers")

# RFQ statuses in which an admin may still curate offers.
_CURATION_OPEN = {RfqStatus.under_review, RfqStatus.invited, RfqStatus.offers_published}


def _naive_utc(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; compare everything as naive UTC.
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def is_offer_expired(offer: models.CuratedOffer, now: datetime | None = None) -> bool:
    now = _naive_utc(now) or datetime.utcnow()
    expires_at = _naive_utc(offer.expires_at)
    return expires_at is not None and expires_at <= now


def get_offer(*, db: Session, offer_id: str) -> models.CuratedOffer:
    offer = db.get(models.CuratedOffer, str(offer_id))
    if offer is None:
        raise NotFound("CuratedOffer", offer_id)
    return offer


def active_offers(
    *, db: Session, rfq_id: str, now: datetime | None = None
) -> list[models.CuratedOffer]:
    """Published, unexpired offers for the RFQ. Healthy data has at most one."""

    published = (
        db.query(models.CuratedOffer)
        .filter(models.CuratedOffer.rfq_id == str(rfq_id))
        .filter(models.CuratedOffer.status == OfferStatus.published)
        .order_by(models.CuratedOffer.published_at.desc())
        .all()
    )
    return [o for o in published if not is_offer_expired(o, now)]


def split_advance(
    total: Decimal, advance: Any | None, final: Any | None
) -> tuple[Decimal, Decimal]:
    """Resolve (advance, final) so that advance + final == total."""

    if advance is None and final is None:
        advance_amt = to_money(total * settings.deposit_fraction)
    elif advance is None:
        advance_amt = to_money(total - to_money(final, field="final_amount"))
    else:
        advance_amt = to_money(advance, field="advance_amount")

    if advance_amt < ZERO or advance_amt > total:
        raise ValidationError(
            "advance_amount must be between 0 and total_price",
            {"advance_amount": str(advance_amt), "total_price": str(total)},
        )

    final_amt = to_money(total - advance_amt)
    if final is not None and to_money(final, field="final_amount") != final_amt:
        raise ValidationError(
            "advance_amount + final_amount must equal total_price",
            {"advance_amount": str(advance_amt), "final_amount": str(final)},
        )
    return advance_amt, final_amt


def create_curated_offer(
    *,
    db: Session,
    rfq_id: str,
    admin_id: str,
    title: str,
    total_price: Any,
    currency: str,
    advance_amount: Any | None = None,
    final_amount: Any | None = None,
    details: dict | None = None,
    payment_link: str | None = None,
    payment_deadline: datetime | None = None,
    expires_at: datetime | None = None,
    source_quote_ids: list[str] | None = None,
) -> models.CuratedOffer:
    rfq = db.get(models.Rfq, str(rfq_id))
    if rfq is None:
        raise NotFound("Rfq", rfq_id)
    if rfq.status not in _CURATION_OPEN:
        raise InvalidTransition("Rfq", rfq.status, RfqStatus.offers_published, "not open for offers")

    if not str(title or "").strip():
        raise ValidationError("title is required", {"field": "title"})

    total = to_money(total_price, field="total_price")
    if total <= ZERO:
        raise ValidationError("total_price must be positive", {"total_price": str(total)})
    ccy = normalize_currency(currency)
    advance_amt, final_amt = split_advance(total, advance_amount, final_amount)

    quote_ids = [str(q) for q in (source_quote_ids or [])]
    if quote_ids:
        found = (
            db.query(models.Quote)
            .filter(models.Quote.id.in_(quote_ids))
            .filter(models.Quote.rfq_id == rfq.id)
            .count()
        )
        if found != len(set(quote_ids)):
            raise ValidationError(
                "source_quote_ids must reference quotes of this RFQ",
                {"source_quote_ids": quote_ids},
            )

    offer = models.CuratedOffer(
        rfq_id=rfq.id,
        admin_id=str(admin_id),
        title=str(title).strip(),
        details=details,
        total_price=total,
        currency=ccy,
        advance_amount=advance_amt,
        final_amount=final_amt,
        payment_link=payment_link,
        payment_deadline=payment_deadline,
        expires_at=expires_at,
        source_quote_ids=quote_ids or None,
        status=OfferStatus.draft,
    )
    db.add(offer)
    db.flush()
    audit_event(
        "offer.created",
        str(admin_id),
        {"rfq_id": rfq.id, "total_price": str(total), "currency": ccy},
        db=db,
        entity_type="offer",
        entity_id=offer.id,
    )
    db.commit()
    db.refresh(offer)
    logger.info("offer_created", extra={"offer_id": offer.id, "rfq_id": rfq.id})
    return offer


def publish_offer(
    *,
    db: Session,
    offer_id: str,
    actor_id: str | None = None,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> models.CuratedOffer:
    """Publish a draft offer, superseding whatever was published before it."""

    now = now or datetime.utcnow()
    offer = get_offer(db=db, offer_id=offer_id)
    check_expected_version("CuratedOffer", offer, expected_version)

    if offer.status == OfferStatus.published:
        return offer
    if offer.status != OfferStatus.draft:
        raise InvalidTransition("CuratedOffer", offer.status, OfferStatus.published)
    if is_offer_expired(offer, now):
        raise InvalidTransition("CuratedOffer", offer.status, OfferStatus.published, "offer expired")

    rfq = db.get(models.Rfq, offer.rfq_id)
    if rfq is None:
        raise NotFound("Rfq", offer.rfq_id)

    rfq_from = rfq.status
    if rfq.status not in {RfqStatus.invited, RfqStatus.offers_published}:
        raise InvalidTransition("Rfq", rfq.status, RfqStatus.offers_published)

    superseded = (
        db.query(models.CuratedOffer)
        .filter(models.CuratedOffer.rfq_id == rfq.id)
        .filter(models.CuratedOffer.status == OfferStatus.published)
        .filter(models.CuratedOffer.id != offer.id)
        .all()
    )
    for prev in superseded:
        apply_guarded_transition(
            db=db,
            model=models.CuratedOffer,
            entity="CuratedOffer",
            entity_id=prev.id,
            to_status=OfferStatus.superseded,
            allowed_from={OfferStatus.published},
            expected_version=prev.version,
        )

    offer = apply_guarded_transition(
        db=db,
        model=models.CuratedOffer,
        entity="CuratedOffer",
        entity_id=offer.id,
        to_status=OfferStatus.published,
        allowed_from={OfferStatus.draft},
        expected_version=offer.version,
        updates={"published_at": now},
    )

    if rfq_from == RfqStatus.invited:
        apply_guarded_transition(
            db=db,
            model=models.Rfq,
            entity="Rfq",
            entity_id=rfq.id,
            to_status=RfqStatus.offers_published,
            allowed_from={RfqStatus.invited},
            expected_version=rfq.version,
        )

    audit_event(
        "offer.published",
        actor_id,
        {"rfq_id": rfq.id, "superseded": [p.id for p in superseded]},
        db=db,
        entity_type="offer",
        entity_id=offer.id,
        idempotency_key=f"offer:{offer.id}:published",
    )
    db.commit()
    db.refresh(offer)

    logger.info(
        "offer_published",
        extra={"offer_id": offer.id, "rfq_id": rfq.id, "superseded_count": len(superseded)},
    )

    intents = []
    if rfq_from != RfqStatus.offers_published:
        intents.append(
            NotificationIntent(
                user_id=rfq.buyer_id,
                type=NotificationType.rfq_status_change,
                title="Offer ready for review",
                message=f"A curated offer is available for {rfq.rfq_number}.",
                entity_type="rfq",
                entity_id=rfq.id,
                discriminator=f"{rfq_from.value}->{RfqStatus.offers_published.value}",
                meta={"offer_id": offer.id},
            )
        )
    else:
        intents.append(
            NotificationIntent(
                user_id=rfq.buyer_id,
                type=NotificationType.general,
                title="Offer updated",
                message=f"The curated offer for {rfq.rfq_number} was revised.",
                entity_type="offer",
                entity_id=offer.id,
                discriminator="published",
                meta={"rfq_id": rfq.id},
            )
        )
    dispatch(db=db, intents=intents)
    return offer


def withdraw_offer(
    *, db: Session, offer_id: str, actor_id: str | None = None, expected_version: int | None = None
) -> models.CuratedOffer:
    offer = get_offer(db=db, offer_id=offer_id)
    check_expected_version("CuratedOffer", offer, expected_version)
    if offer.status == OfferStatus.withdrawn:
        return offer
    if offer.status not in {OfferStatus.draft, OfferStatus.published}:
        raise InvalidTransition("CuratedOffer", offer.status, OfferStatus.withdrawn)

    offer = apply_guarded_transition(
        db=db,
        model=models.CuratedOffer,
        entity="CuratedOffer",
        entity_id=offer.id,
        to_status=OfferStatus.withdrawn,
        allowed_from={offer.status},
        expected_version=offer.version,
    )
    audit_event(
        "offer.withdrawn", actor_id, {"rfq_id": offer.rfq_id}, db=db, entity_type="offer", entity_id=offer.id
    )
    db.commit()
    db.refresh(offer)
    return offer
