from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderflow import models
from orderflow.config import settings
from orderflow.core.errors import InvalidTransition, NotFound, ValidationError
from orderflow.core.money import ZERO, to_money
from orderflow.models.domain import (
    NotificationType,
    OfferStatus,
    OrderStatus,
    RfqStatus,
)
from orderflow.services import lifecycle_rules as rules
from orderflow.services.audit import audit_event
from orderflow.services.document_numbering import next_document_number
from orderflow.services.notifications import NotificationIntent, dispatch
from orderflow.services.offers import active_offers, get_offer, is_offer_expired
from orderflow.services.payment_reconciliation import (
    get_order,
    get_order_balance,
    refresh_deposit_flag,
)
from orderflow.services.status_transitions import (
    apply_guarded_transition,
    check_expected_version,
    coalesce_datetime,
    commit_versioned,
)

logger = logging.getLogger("orderflow.orders")


def _order_for_offer(db: Session, offer_id: str) -> models.Order | None:
    return db.query(models.Order).filter(models.Order.curated_offer_id == str(offer_id)).first()


def _supplier_for_offer(db: Session, offer: models.CuratedOffer) -> str | None:
    """The supplier behind an offer: an accepted source quote first, else the first source quote."""

    quote_ids = list(offer.source_quote_ids or [])
    if not quote_ids:
        return None
    quotes = db.query(models.Quote).filter(models.Quote.id.in_(quote_ids)).all()
    if not quotes:
        return None
    by_id = {q.id: q for q in quotes}
    ordered = [by_id[qid] for qid in quote_ids if qid in by_id]
    for q in ordered:
        if q.status == models.QuoteStatus.accepted:
            return q.supplier_id
    return ordered[0].supplier_id


def _deposit_percent(total: Decimal, advance: Decimal) -> int:
    if total <= ZERO:
        return settings.default_deposit_percent
    return int((advance / total * 100).to_integral_value())


def accept_offer(
    *,
    db: Session,
    offer_id: str,
    buyer_id: str | None = None,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> models.Order:
    """Accept the RFQ's active offer and create its Order.

    Replaying acceptance of an already accepted offer returns the existing Order.
    """

    now = now or datetime.utcnow()
    offer = get_offer(db=db, offer_id=offer_id)
    rfq = db.get(models.Rfq, offer.rfq_id)
    if rfq is None:
        raise NotFound("Rfq", offer.rfq_id)
    if buyer_id is not None and rfq.buyer_id != str(buyer_id):
        raise ValidationError("Offer belongs to another buyer", {"offer_id": offer.id})

    existing = _order_for_offer(db, offer.id)
    if existing is not None:
        return existing

    check_expected_version("CuratedOffer", offer, expected_version)
    if offer.status != OfferStatus.published:
        raise InvalidTransition("CuratedOffer", offer.status, OfferStatus.accepted)
    if is_offer_expired(offer, now):
        raise InvalidTransition("CuratedOffer", offer.status, OfferStatus.accepted, "offer expired")

    active = active_offers(db=db, rfq_id=rfq.id, now=now)
    if len(active) != 1 or active[0].id != offer.id:
        raise InvalidTransition(
            "Rfq",
            rfq.status,
            RfqStatus.accepted,
            f"expected exactly one active offer, found {len(active)}",
        )
    rules.ensure_transition(
        rules.RFQ_TRANSITIONS, entity="Rfq", current=rfq.status, target=RfqStatus.accepted
    )

    # Allocated first: a lost race on the year's first number rolls the session back.
    number = next_document_number(db, doc_type="order", prefix="ORD", now=now)

    rfq_id, rfq_version, rfq_from = rfq.id, rfq.version, rfq.status
    offer_version = offer.version
    total = to_money(offer.total_price)
    advance = to_money(
        offer.advance_amount
        if offer.advance_amount is not None
        else total * settings.deposit_fraction
    )
    supplier_id = _supplier_for_offer(db, offer)

    apply_guarded_transition(
        db=db,
        model=models.Rfq,
        entity="Rfq",
        entity_id=rfq_id,
        to_status=RfqStatus.accepted,
        allowed_from={rfq_from},
        expected_version=rfq_version,
    )
    offer = apply_guarded_transition(
        db=db,
        model=models.CuratedOffer,
        entity="CuratedOffer",
        entity_id=offer.id,
        to_status=OfferStatus.accepted,
        allowed_from={OfferStatus.published},
        expected_version=offer_version,
    )

    order = models.Order(
        order_number=number.formatted,
        rfq_id=rfq_id,
        curated_offer_id=offer.id,
        buyer_id=rfq.buyer_id,
        supplier_id=supplier_id,
        admin_id=offer.admin_id,
        status=OrderStatus.created,
        total_amount=total,
        currency=offer.currency,
        advance_amount=advance,
        deposit_percent=_deposit_percent(total, advance),
        deposit_paid=False,
    )
    db.add(order)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        existing = _order_for_offer(db, offer_id)
        if existing is None:
            raise
        return existing

    backfilled = (
        db.query(models.PaymentTransaction)
        .filter(models.PaymentTransaction.curated_offer_id == offer.id)
        .filter(models.PaymentTransaction.order_id.is_(None))
        .update({"order_id": order.id}, synchronize_session=False)
    )

    audit_event(
        "order.created",
        buyer_id,
        {
            "order_number": order.order_number,
            "rfq_id": rfq_id,
            "curated_offer_id": offer.id,
            "total_amount": str(total),
            "currency": order.currency,
            "backfilled_transactions": int(backfilled or 0),
        },
        db=db,
        entity_type="order",
        entity_id=order.id,
        idempotency_key=f"order:offer:{offer.id}:created",
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = _order_for_offer(db, offer_id)
        if existing is None:
            raise
        return existing
    db.refresh(order)

    logger.info(
        "order_created",
        extra={
            "order_id": order.id,
            "order_number": order.order_number,
            "curated_offer_id": offer.id,
            "backfilled_transactions": int(backfilled or 0),
        },
    )

    if backfilled:
        refresh_deposit_flag(db=db, order_id=order.id)
        db.refresh(order)

    intents = [
        NotificationIntent(
            user_id=uid,
            type=NotificationType.order_created,
            title="Order created",
            message=f"Order {order.order_number} was created from the accepted offer.",
            entity_type="order",
            entity_id=order.id,
            meta={"rfq_id": rfq_id, "curated_offer_id": offer.id},
        )
        for uid in (order.buyer_id, order.supplier_id)
        if uid
    ]
    dispatch(db=db, intents=intents)
    return order


def _check_gates(db: Session, order: models.Order, target: OrderStatus) -> None:
    if target == OrderStatus.deposit_paid:
        balance = get_order_balance(db=db, order_id=order.id)
        if balance.paid_amount < to_money(order.advance_amount):
            raise InvalidTransition(
                "Order",
                order.status,
                target,
                f"deposit outstanding: paid {balance.paid_amount} of {order.advance_amount}",
            )
    elif target == OrderStatus.closed:
        balance = get_order_balance(db=db, order_id=order.id)
        if balance.remaining_amount != ZERO:
            raise InvalidTransition(
                "Order",
                order.status,
                target,
                f"balance outstanding: {balance.remaining_amount} {balance.currency}",
            )


def _mirror_rfq(db: Session, order: models.Order, target: OrderStatus) -> RfqStatus | None:
    """Carry an order move onto its RFQ when the RFQ move is one step away."""

    rfq_target = rules.ORDER_TO_RFQ_STATUS.get(target)
    if rfq_target is None:
        return None
    rfq = db.get(models.Rfq, order.rfq_id, populate_existing=True)
    if rfq is None or rfq.status == rfq_target:
        return None
    if not rules.can_transition(rules.RFQ_TRANSITIONS, rfq.status, rfq_target):
        logger.info(
            "rfq_mirror_skipped",
            extra={
                "order_id": order.id,
                "rfq_id": rfq.id,
                "rfq_status": rfq.status.value,
                "target": rfq_target.value,
            },
        )
        return None
    apply_guarded_transition(
        db=db,
        model=models.Rfq,
        entity="Rfq",
        entity_id=rfq.id,
        to_status=rfq_target,
        allowed_from={rfq.status},
        expected_version=rfq.version,
    )
    return rfq_target


def transition_order_status(
    *,
    db: Session,
    order_id: str,
    to_status: OrderStatus,
    expected_version: int | None = None,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> models.Order:
    now = now or datetime.utcnow()
    order = get_order(db=db, order_id=order_id)
    check_expected_version("Order", order, expected_version)

    from_status = order.status
    if from_status == to_status:
        return order
    rules.ensure_transition(
        rules.ORDER_TRANSITIONS, entity="Order", current=from_status, target=to_status
    )
    _check_gates(db, order, to_status)

    updates: dict = {}
    if to_status == OrderStatus.deposit_paid:
        updates["deposit_paid"] = True
    if to_status == OrderStatus.delivered:
        updates["delivered_at"] = coalesce_datetime(models.Order.delivered_at, now)

    order = apply_guarded_transition(
        db=db,
        model=models.Order,
        entity="Order",
        entity_id=order.id,
        to_status=to_status,
        allowed_from={from_status},
        expected_version=order.version,
        updates=updates,
    )
    rfq_status = _mirror_rfq(db, order, to_status)

    transition = f"{from_status.value}->{to_status.value}"
    audit_event(
        "order.status_changed",
        actor_id,
        {"from": from_status.value, "to": to_status.value, "rfq_status": getattr(rfq_status, "value", None)},
        db=db,
        entity_type="order",
        entity_id=order.id,
        idempotency_key=f"order:{order.id}:{transition}",
    )
    db.commit()
    db.refresh(order)

    logger.info(
        "order_status_changed",
        extra={"order_id": order.id, "from": from_status.value, "to": to_status.value},
    )

    if from_status == OrderStatus.inspection:
        ntype = NotificationType.inspection_completed
        title = "Inspection completed"
    else:
        ntype = NotificationType.order_status_change
        title = "Order status updated"
    intents = [
        NotificationIntent(
            user_id=uid,
            type=ntype,
            title=title,
            message=f"Order {order.order_number} moved to {to_status.value}.",
            entity_type="order",
            entity_id=order.id,
            discriminator=transition,
            meta={"from": from_status.value, "to": to_status.value},
        )
        for uid in (order.buyer_id, order.supplier_id)
        if uid
    ]
    dispatch(db=db, intents=intents)
    return order


def append_production_update(
    *,
    db: Session,
    order_id: str,
    stage: str,
    updated_by: str,
    detail: str | None = None,
) -> models.OrderProductionUpdate:
    """Append a progress note. The order's status is untouched."""

    order = get_order(db=db, order_id=order_id)
    if order.status in rules.ORDER_TERMINAL:
        raise InvalidTransition("Order", order.status, order.status, "order is closed to updates")
    if not str(stage or "").strip():
        raise ValidationError("stage is required", {"field": "stage"})

    update = models.OrderProductionUpdate(
        order_id=order.id,
        stage=str(stage).strip(),
        detail=detail,
        updated_by=str(updated_by),
        created_at=datetime.utcnow(),
    )
    db.add(update)
    db.flush()
    audit_event(
        "order.production_update",
        str(updated_by),
        {"stage": update.stage},
        db=db,
        entity_type="order",
        entity_id=order.id,
    )
    db.commit()
    db.refresh(update)

    dispatch(
        db=db,
        intents=[
            NotificationIntent(
                user_id=order.buyer_id,
                type=NotificationType.production_update,
                title="Production update",
                message=f"{update.stage} on order {order.order_number}.",
                entity_type="order",
                entity_id=order.id,
                discriminator=update.id,
                meta={"stage": update.stage},
            )
        ],
    )
    return update


def list_production_updates(*, db: Session, order_id: str) -> list[models.OrderProductionUpdate]:
    order = get_order(db=db, order_id=order_id)
    return (
        db.query(models.OrderProductionUpdate)
        .filter(models.OrderProductionUpdate.order_id == order.id)
        .order_by(models.OrderProductionUpdate.created_at.asc())
        .all()
    )


def approve_invoice(
    *,
    db: Session,
    order_id: str,
    buyer_id: str | None = None,
    expected_version: int | None = None,
) -> models.Order:
    """Record the buyer's invoice approval on a delivered order (idempotent)."""

    order = get_order(db=db, order_id=order_id)
    if buyer_id is not None and order.buyer_id != str(buyer_id):
        raise ValidationError("Order belongs to another buyer", {"order_id": order.id})
    check_expected_version("Order", order, expected_version)
    if order.buyer_invoice_approved:
        return order
    if order.status not in {OrderStatus.delivered, OrderStatus.closed}:
        raise InvalidTransition("Order", order.status, order.status, "invoice approval needs delivery")

    order.buyer_invoice_approved = True
    audit_event(
        "order.invoice_approved",
        buyer_id,
        {},
        db=db,
        entity_type="order",
        entity_id=order.id,
        idempotency_key=f"order:{order.id}:invoice_approved",
    )
    commit_versioned(db, entity="Order", entity_id=order.id, expected_version=expected_version)
    db.refresh(order)
    logger.info("order_invoice_approved", extra={"order_id": order.id})
    return order
