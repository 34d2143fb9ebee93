from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderflow import models
from orderflow.config import settings
from orderflow.core.errors import InvalidTransition, NotFound, ValidationError
from orderflow.core.money import ZERO, normalize_currency, to_money
from orderflow.models.domain import (
    InviteStatus,
    NotificationType,
    QuoteStatus,
    RfqStatus,
)
from orderflow.services import lifecycle_rules as rules
from orderflow.services import order_lifecycle
from orderflow.services.audit import audit_event
from orderflow.services.document_numbering import next_document_number
from orderflow.services.notifications import NotificationIntent, dispatch
from orderflow.services.offers import active_offers
from orderflow.services.status_transitions import apply_guarded_transition, check_expected_version

logger = logging.getLogger("orderflow.rfqs")

# RFQ statuses in which suppliers may still be invited / quote.
_INVITES_OPEN = {RfqStatus.under_review, RfqStatus.invited}
_QUOTES_OPEN = {RfqStatus.invited, RfqStatus.offers_published}


@dataclass(frozen=True)
class RfqDraft:
    buyer_id: str
    title: str
    details: dict = field(default_factory=dict)
    files: list | None = None
    budget_range: dict | None = None
    nda_required: bool = False
    confidential: bool = False
    save_as_draft: bool = False


def get_rfq(*, db: Session, rfq_id: str) -> models.Rfq:
    rfq = db.get(models.Rfq, str(rfq_id))
    if rfq is None:
        raise NotFound("Rfq", rfq_id)
    return rfq


def _admin_intents(**kwargs) -> list[NotificationIntent]:
    return [NotificationIntent(user_id=admin_id, **kwargs) for admin_id in settings.admin_user_ids]


def submit_rfq(*, db: Session, draft: RfqDraft, now: datetime | None = None) -> models.Rfq:
    title = str(draft.title or "").strip()
    if not title:
        raise ValidationError("title is required", {"field": "title"})
    if not isinstance(draft.details, dict) or not draft.details:
        raise ValidationError("details must describe the requested items", {"field": "details"})
    if draft.budget_range is not None:
        lo = draft.budget_range.get("min")
        hi = draft.budget_range.get("max")
        if lo is not None and hi is not None and to_money(lo) > to_money(hi):
            raise ValidationError("budget_range.min exceeds budget_range.max", {"budget_range": draft.budget_range})

    number = next_document_number(db, doc_type="rfq", prefix="RFQ", now=now)
    status = RfqStatus.draft if draft.save_as_draft else RfqStatus.submitted

    rfq = models.Rfq(
        rfq_number=number.formatted,
        buyer_id=str(draft.buyer_id),
        title=title,
        status=status,
        details=draft.details,
        files=draft.files,
        budget_range=draft.budget_range,
        nda_required=bool(draft.nda_required),
        confidential=bool(draft.confidential),
    )
    db.add(rfq)
    db.flush()
    audit_event(
        "rfq.created",
        str(draft.buyer_id),
        {"rfq_number": rfq.rfq_number, "status": status.value},
        db=db,
        entity_type="rfq",
        entity_id=rfq.id,
    )
    db.commit()
    db.refresh(rfq)
    logger.info("rfq_created", extra={"rfq_id": rfq.id, "rfq_number": rfq.rfq_number, "status": status.value})

    if status == RfqStatus.submitted:
        _notify_submitted(db, rfq)
    return rfq


def _notify_submitted(db: Session, rfq: models.Rfq) -> None:
    dispatch(
        db=db,
        intents=_admin_intents(
            type=NotificationType.rfq_submitted,
            title="New RFQ submitted",
            message=f"{rfq.rfq_number}: {rfq.title}",
            entity_type="rfq",
            entity_id=rfq.id,
            meta={"buyer_id": rfq.buyer_id},
        ),
    )


def _order_for_rfq(db: Session, rfq_id: str) -> models.Order | None:
    return db.query(models.Order).filter(models.Order.rfq_id == str(rfq_id)).first()


def _guard_cancellation(db: Session, rfq: models.Rfq) -> None:
    live = (
        db.query(models.Order)
        .filter(models.Order.rfq_id == rfq.id)
        .filter(models.Order.status.notin_(list(rules.ORDER_TERMINAL)))
        .first()
    )
    if live is not None:
        raise InvalidTransition(
            "Rfq", rfq.status, RfqStatus.cancelled, f"order {live.order_number} is still active"
        )


def transition_rfq_status(
    *,
    db: Session,
    rfq_id: str,
    to_status: RfqStatus,
    expected_version: int | None = None,
    actor_id: str | None = None,
) -> models.Rfq:
    """Move an RFQ one step along its lifecycle.

    Re-entering the current status returns the RFQ unchanged. Moving to
    `accepted` accepts the single active offer and creates its Order; the
    production-to-closed statuses are reached by moving that Order.
    """

    rfq = get_rfq(db=db, rfq_id=rfq_id)
    check_expected_version("Rfq", rfq, expected_version)

    from_status = rfq.status
    if from_status == to_status:
        return rfq
    rules.ensure_transition(rules.RFQ_TRANSITIONS, entity="Rfq", current=from_status, target=to_status)

    if to_status == RfqStatus.accepted:
        offers = active_offers(db=db, rfq_id=rfq.id)
        if len(offers) != 1:
            raise InvalidTransition(
                "Rfq", from_status, to_status, f"expected exactly one active offer, found {len(offers)}"
            )
        order_lifecycle.accept_offer(db=db, offer_id=offers[0].id, buyer_id=None)
        return get_rfq(db=db, rfq_id=rfq_id)

    order_target = rules.RFQ_TO_ORDER_STATUS.get(to_status)
    if order_target is not None:
        order = _order_for_rfq(db, rfq.id)
        if order is None:
            raise InvalidTransition("Rfq", from_status, to_status, "no order for this RFQ")
        if order.status != order_target:
            # The order move carries its own gates and mirrors back onto the RFQ.
            order_lifecycle.transition_order_status(
                db=db, order_id=order.id, to_status=order_target, actor_id=actor_id
            )
            return db.get(models.Rfq, rfq.id, populate_existing=True)

    if to_status == RfqStatus.cancelled:
        _guard_cancellation(db, rfq)

    rfq = apply_guarded_transition(
        db=db,
        model=models.Rfq,
        entity="Rfq",
        entity_id=rfq.id,
        to_status=to_status,
        allowed_from={from_status},
        expected_version=rfq.version,
    )
    transition = f"{from_status.value}->{to_status.value}"
    audit_event(
        "rfq.status_changed",
        actor_id,
        {"from": from_status.value, "to": to_status.value},
        db=db,
        entity_type="rfq",
        entity_id=rfq.id,
        idempotency_key=f"rfq:{rfq.id}:{transition}",
    )
    db.commit()
    db.refresh(rfq)
    logger.info("rfq_status_changed", extra={"rfq_id": rfq.id, "from": from_status.value, "to": to_status.value})

    intents = []
    if to_status == RfqStatus.under_review:
        intents.append(
            NotificationIntent(
                user_id=rfq.buyer_id,
                type=NotificationType.rfq_approved,
                title="RFQ approved",
                message=f"{rfq.rfq_number} is under review and will be sent to suppliers.",
                entity_type="rfq",
                entity_id=rfq.id,
                discriminator=transition,
            )
        )
    else:
        intents.append(
            NotificationIntent(
                user_id=rfq.buyer_id,
                type=NotificationType.rfq_status_change,
                title="RFQ status updated",
                message=f"{rfq.rfq_number} moved to {to_status.value}.",
                entity_type="rfq",
                entity_id=rfq.id,
                discriminator=transition,
                meta={"from": from_status.value, "to": to_status.value},
            )
        )
    if to_status == RfqStatus.submitted:
        intents.extend(
            _admin_intents(
                type=NotificationType.rfq_submitted,
                title="New RFQ submitted",
                message=f"{rfq.rfq_number}: {rfq.title}",
                entity_type="rfq",
                entity_id=rfq.id,
                meta={"buyer_id": rfq.buyer_id},
            )
        )
    dispatch(db=db, intents=intents)
    return rfq


def _invite_for(db: Session, rfq_id: str, supplier_id: str) -> models.SupplierInvite | None:
    return (
        db.query(models.SupplierInvite)
        .filter(models.SupplierInvite.rfq_id == str(rfq_id))
        .filter(models.SupplierInvite.supplier_id == str(supplier_id))
        .first()
    )


def invite_supplier(
    *,
    db: Session,
    rfq_id: str,
    supplier_id: str,
    invited_by: str,
    response_deadline: datetime | None = None,
) -> models.SupplierInvite:
    """Invite a supplier to quote. One invite per (rfq, supplier); repeats return the first."""

    rfq = get_rfq(db=db, rfq_id=rfq_id)
    existing = _invite_for(db, rfq.id, supplier_id)
    if existing is not None:
        return existing
    if rfq.status not in _INVITES_OPEN:
        raise InvalidTransition("Rfq", rfq.status, RfqStatus.invited, "not open for invitations")

    from_status = rfq.status
    invite = models.SupplierInvite(
        rfq_id=rfq.id,
        supplier_id=str(supplier_id),
        invited_by=str(invited_by),
        status=InviteStatus.invited,
        response_deadline=response_deadline,
    )
    db.add(invite)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        existing = _invite_for(db, rfq_id, supplier_id)
        if existing is None:
            raise
        return existing

    if from_status == RfqStatus.under_review:
        apply_guarded_transition(
            db=db,
            model=models.Rfq,
            entity="Rfq",
            entity_id=rfq.id,
            to_status=RfqStatus.invited,
            allowed_from={RfqStatus.under_review},
            expected_version=rfq.version,
        )

    audit_event(
        "rfq.supplier_invited",
        str(invited_by),
        {"supplier_id": str(supplier_id), "invite_id": invite.id},
        db=db,
        entity_type="rfq",
        entity_id=rfq.id,
        idempotency_key=f"rfq:{rfq.id}:invite:{supplier_id}",
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = _invite_for(db, rfq_id, supplier_id)
        if existing is None:
            raise
        return existing
    db.refresh(invite)
    logger.info("supplier_invited", extra={"rfq_id": invite.rfq_id, "supplier_id": invite.supplier_id})

    intents = [
        NotificationIntent(
            user_id=invite.supplier_id,
            type=NotificationType.supplier_invitation,
            title="New RFQ invitation",
            message=f"You are invited to quote on {rfq.rfq_number}.",
            entity_type="rfq",
            entity_id=invite.rfq_id,
            meta={"invite_id": invite.id},
        )
    ]
    if from_status == RfqStatus.under_review:
        intents.append(
            NotificationIntent(
                user_id=rfq.buyer_id,
                type=NotificationType.rfq_status_change,
                title="RFQ status updated",
                message=f"{rfq.rfq_number} was sent to suppliers.",
                entity_type="rfq",
                entity_id=rfq.id,
                discriminator=f"{from_status.value}->{RfqStatus.invited.value}",
            )
        )
    dispatch(db=db, intents=intents)
    return invite


def get_invite(*, db: Session, invite_id: str) -> models.SupplierInvite:
    invite = db.get(models.SupplierInvite, str(invite_id))
    if invite is None:
        raise NotFound("SupplierInvite", invite_id)
    return invite


def decline_invite(
    *, db: Session, invite_id: str, supplier_id: str | None = None
) -> models.SupplierInvite:
    invite = get_invite(db=db, invite_id=invite_id)
    if supplier_id is not None and invite.supplier_id != str(supplier_id):
        raise NotFound("SupplierInvite", invite_id)
    if invite.status == InviteStatus.declined:
        return invite
    if invite.status != InviteStatus.invited:
        raise InvalidTransition("SupplierInvite", invite.status, InviteStatus.declined)

    invite.status = InviteStatus.declined
    audit_event(
        "rfq.invite_declined",
        invite.supplier_id,
        {"invite_id": invite.id},
        db=db,
        entity_type="rfq",
        entity_id=invite.rfq_id,
    )
    db.commit()
    db.refresh(invite)
    return invite


def submit_quote(
    *,
    db: Session,
    invite_id: str,
    price: Any,
    currency: str,
    lead_time_days: int,
    terms: dict | None = None,
    supplier_id: str | None = None,
    max_retries: int = 3,
) -> models.Quote:
    """Insert a new quote version for the invite. Earlier versions stay untouched."""

    amount = to_money(price, field="price")
    if amount <= ZERO:
        raise ValidationError("price must be positive", {"price": str(amount)})
    if int(lead_time_days) <= 0:
        raise ValidationError("lead_time_days must be positive", {"lead_time_days": lead_time_days})
    ccy = normalize_currency(currency)

    for _ in range(max_retries):
        invite = get_invite(db=db, invite_id=invite_id)
        if supplier_id is not None and invite.supplier_id != str(supplier_id):
            raise NotFound("SupplierInvite", invite_id)
        if invite.status == InviteStatus.declined:
            raise InvalidTransition("SupplierInvite", invite.status, InviteStatus.responded, "invite declined")
        rfq = get_rfq(db=db, rfq_id=invite.rfq_id)
        if rfq.status not in _QUOTES_OPEN:
            raise InvalidTransition("Rfq", rfq.status, rfq.status, "not accepting quotes")

        last_version = (
            db.query(func.max(models.Quote.quote_version))
            .filter(models.Quote.invite_id == invite.id)
            .scalar()
        )
        quote = models.Quote(
            invite_id=invite.id,
            rfq_id=rfq.id,
            supplier_id=invite.supplier_id,
            quote_version=int(last_version or 0) + 1,
            price=amount,
            currency=ccy,
            lead_time_days=int(lead_time_days),
            terms=terms,
            status=QuoteStatus.submitted,
        )
        db.add(quote)
        if invite.status == InviteStatus.invited:
            invite.status = InviteStatus.responded
        try:
            db.flush()
        except IntegrityError:
            # Concurrent resubmission took this version number.
            db.rollback()
            continue

        audit_event(
            "rfq.quote_submitted",
            invite.supplier_id,
            {"quote_id": quote.id, "quote_version": quote.quote_version, "price": str(amount), "currency": ccy},
            db=db,
            entity_type="rfq",
            entity_id=rfq.id,
        )
        db.commit()
        db.refresh(quote)
        logger.info(
            "quote_submitted",
            extra={"quote_id": quote.id, "rfq_id": quote.rfq_id, "quote_version": quote.quote_version},
        )
        dispatch(
            db=db,
            intents=_admin_intents(
                type=NotificationType.quote_received,
                title="Quote received",
                message=f"New quote for {rfq.rfq_number}: {ccy} {amount}, {quote.lead_time_days} days.",
                entity_type="quote",
                entity_id=quote.id,
                meta={"rfq_id": rfq.id, "supplier_id": quote.supplier_id},
            ),
        )
        return quote

    raise ValidationError("Could not allocate a quote version; retry", {"invite_id": invite_id})


def set_quote_decision(
    *, db: Session, quote_id: str, decision: QuoteStatus, actor_id: str | None = None
) -> models.Quote:
    """Stamp a submitted quote accepted or rejected. Commercial terms are never touched."""

    if decision not in {QuoteStatus.accepted, QuoteStatus.rejected}:
        raise ValidationError("decision must be accepted or rejected", {"decision": str(decision)})

    quote = db.get(models.Quote, str(quote_id))
    if quote is None:
        raise NotFound("Quote", quote_id)
    if quote.status == decision:
        return quote
    if quote.status != QuoteStatus.submitted:
        raise InvalidTransition("Quote", quote.status, decision)

    rowcount = (
        db.query(models.Quote)
        .filter(models.Quote.id == quote.id)
        .filter(models.Quote.status == QuoteStatus.submitted)
        .update({"status": decision}, synchronize_session=False)
    )
    if not rowcount:
        db.rollback()
        current = db.get(models.Quote, str(quote_id), populate_existing=True)
        raise InvalidTransition("Quote", current.status if current else None, decision, "decided concurrently")

    audit_event(
        f"rfq.quote_{decision.value}",
        actor_id,
        {"quote_id": quote.id},
        db=db,
        entity_type="rfq",
        entity_id=quote.rfq_id,
        idempotency_key=f"quote:{quote.id}:decision",
    )
    db.commit()
    quote = db.get(models.Quote, str(quote_id), populate_existing=True)

    ntype = NotificationType.quote_accepted if decision == QuoteStatus.accepted else NotificationType.quote_rejected
    dispatch(
        db=db,
        intents=[
            NotificationIntent(
                user_id=quote.supplier_id,
                type=ntype,
                title=f"Quote {decision.value}",
                message=f"Your quote v{quote.quote_version} was {decision.value}.",
                entity_type="quote",
                entity_id=quote.id,
                meta={"rfq_id": quote.rfq_id},
            )
        ],
    )
    return quote


def list_quotes(*, db: Session, rfq_id: str) -> list[models.Quote]:
    rfq = get_rfq(db=db, rfq_id=rfq_id)
    return (
        db.query(models.Quote)
        .filter(models.Quote.rfq_id == rfq.id)
        .order_by(models.Quote.created_at.asc(), models.Quote.quote_version.asc())
        .all()
    )

