"""EarlyPay: supplier requests to be paid ahead of the buyer's settlement.

A request is only eligible once delivery is confirmed and the buyer has
approved the invoice. The platform keeps a flat discount for advancing the
money; the supplier receives the rest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from orderflow import models
from orderflow.core.errors import (
    CurrencyMismatch,
    IneligibleEarlyPay,
    NotFound,
    ValidationError,
)
from orderflow.core.money import ZERO, normalize_currency, to_money
from orderflow.models.domain import EarlyPayStatus, NotificationType, OrderStatus
from orderflow.services import lifecycle_rules as rules
from orderflow.services.audit import audit_event
from orderflow.services.notifications import NotificationIntent, dispatch
from orderflow.services.status_transitions import apply_guarded_transition, check_expected_version

logger = logging.getLogger("orderflow.earlypay")

EARLY_PAY_DISCOUNT_RATE = Decimal("0.03")
MIN_EXPECTED_DAYS = 2
MAX_EXPECTED_DAYS = 5


@dataclass(frozen=True)
class EarlyPayDraft:
    supplier_id: str
    invoice_number: str
    amount: Any
    currency: str
    delivered_confirmed: bool
    buyer_invoice_approved: bool
    expected_days: int
    order_id: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class EarlyPayDecision:
    eligible: bool
    failed_precondition: str | None = None
    message: str | None = None
    discount_rate: Decimal = EARLY_PAY_DISCOUNT_RATE
    discount_amount: Decimal = ZERO
    net_payout: Decimal = ZERO


def _reject(precondition: str, message: str) -> EarlyPayDecision:
    return EarlyPayDecision(eligible=False, failed_precondition=precondition, message=message)


def evaluate(draft: EarlyPayDraft) -> EarlyPayDecision:
    """Check the preconditions in a fixed order and price the advance.

    The first failing precondition is reported; nothing is persisted.
    """

    if not draft.delivered_confirmed:
        return _reject("delivered_confirmed", "Delivery has not been confirmed")
    if not draft.buyer_invoice_approved:
        return _reject("buyer_invoice_approved", "The buyer has not approved the invoice")

    amount = to_money(draft.amount, field="amount")
    if amount <= ZERO:
        return _reject("amount", "Amount must be positive")

    days = int(draft.expected_days)
    if days < MIN_EXPECTED_DAYS or days > MAX_EXPECTED_DAYS:
        return _reject(
            "expected_days",
            f"Expected days must be between {MIN_EXPECTED_DAYS} and {MAX_EXPECTED_DAYS}",
        )

    discount = to_money(amount * EARLY_PAY_DISCOUNT_RATE)
    return EarlyPayDecision(
        eligible=True,
        discount_rate=EARLY_PAY_DISCOUNT_RATE,
        discount_amount=discount,
        net_payout=to_money(amount - discount),
    )


def _check_order(db: Session, draft: EarlyPayDraft, currency: str) -> None:
    order = db.get(models.Order, str(draft.order_id))
    if order is None:
        raise NotFound("Order", draft.order_id)
    if order.supplier_id != str(draft.supplier_id):
        raise ValidationError(
            "Order belongs to another supplier",
            {"order_id": order.id, "supplier_id": draft.supplier_id},
        )
    if order.status not in {OrderStatus.delivered, OrderStatus.closed} or order.delivered_at is None:
        raise IneligibleEarlyPay("delivered_confirmed", "Order has not been delivered")
    if not order.buyer_invoice_approved:
        raise IneligibleEarlyPay("buyer_invoice_approved", "Order invoice is not approved")
    if order.currency != currency:
        raise CurrencyMismatch(order.currency, currency)


def submit_early_pay_request(*, db: Session, draft: EarlyPayDraft) -> models.EarlyPayRequest:
    """Persist an eligible request as `submitted`. Orders and the payment ledger are never touched."""

    if not str(draft.invoice_number or "").strip():
        raise ValidationError("invoice_number is required", {"field": "invoice_number"})
    currency = normalize_currency(draft.currency)

    decision = evaluate(draft)
    if not decision.eligible:
        logger.info(
            "earlypay_rejected",
            extra={
                "supplier_id": draft.supplier_id,
                "precondition": decision.failed_precondition,
            },
        )
        raise IneligibleEarlyPay(decision.failed_precondition or "unknown", decision.message)

    if draft.order_id:
        _check_order(db, draft, currency)

    req = models.EarlyPayRequest(
        supplier_id=str(draft.supplier_id),
        order_id=str(draft.order_id) if draft.order_id else None,
        invoice_number=str(draft.invoice_number).strip(),
        amount=to_money(draft.amount),
        currency=currency,
        delivered_confirmed=True,
        buyer_invoice_approved=True,
        expected_days=int(draft.expected_days),
        discount_rate=decision.discount_rate,
        discount_amount=decision.discount_amount,
        net_payout=decision.net_payout,
        status=EarlyPayStatus.submitted,
        notes=draft.notes,
    )
    db.add(req)
    db.flush()
    audit_event(
        "earlypay.submitted",
        str(draft.supplier_id),
        {
            "invoice_number": req.invoice_number,
            "amount": str(req.amount),
            "discount_amount": str(req.discount_amount),
            "net_payout": str(req.net_payout),
        },
        db=db,
        entity_type="earlypay",
        entity_id=req.id,
    )
    db.commit()
    db.refresh(req)
    logger.info(
        "earlypay_submitted",
        extra={"earlypay_id": req.id, "supplier_id": req.supplier_id, "net_payout": str(req.net_payout)},
    )
    return req


def get_early_pay_request(*, db: Session, request_id: str) -> models.EarlyPayRequest:
    req = db.get(models.EarlyPayRequest, str(request_id))
    if req is None:
        raise NotFound("EarlyPayRequest", request_id)
    return req


def list_early_pay_requests(
    *, db: Session, supplier_id: str | None = None, status: EarlyPayStatus | None = None
) -> list[models.EarlyPayRequest]:
    q = db.query(models.EarlyPayRequest)
    if supplier_id is not None:
        q = q.filter(models.EarlyPayRequest.supplier_id == str(supplier_id))
    if status is not None:
        q = q.filter(models.EarlyPayRequest.status == status)
    return q.order_by(models.EarlyPayRequest.created_at.desc()).all()


def set_early_pay_status(
    *,
    db: Session,
    request_id: str,
    to_status: EarlyPayStatus,
    actor_id: str | None = None,
    notes: str | None = None,
    expected_version: int | None = None,
) -> models.EarlyPayRequest:
    req = get_early_pay_request(db=db, request_id=request_id)
    check_expected_version("EarlyPayRequest", req, expected_version)

    from_status = req.status
    if from_status == to_status:
        return req
    rules.ensure_transition(
        rules.EARLY_PAY_TRANSITIONS, entity="EarlyPayRequest", current=from_status, target=to_status
    )

    updates = {"notes": notes} if notes is not None else None
    req = apply_guarded_transition(
        db=db,
        model=models.EarlyPayRequest,
        entity="EarlyPayRequest",
        entity_id=req.id,
        to_status=to_status,
        allowed_from={from_status},
        expected_version=req.version,
        updates=updates,
    )
    audit_event(
        "earlypay.status_changed",
        actor_id,
        {"from": from_status.value, "to": to_status.value},
        db=db,
        entity_type="earlypay",
        entity_id=req.id,
        idempotency_key=f"earlypay:{req.id}:{to_status.value}",
    )
    db.commit()
    db.refresh(req)

    if to_status == EarlyPayStatus.paid:
        dispatch(
            db=db,
            intents=[
                NotificationIntent(
                    user_id=req.supplier_id,
                    type=NotificationType.payout_processed,
                    title="EarlyPay payout processed",
                    message=f"{req.currency} {req.net_payout} paid for invoice {req.invoice_number}.",
                    entity_type="earlypay",
                    entity_id=req.id,
                    meta={"net_payout": str(req.net_payout), "discount_amount": str(req.discount_amount)},
                )
            ],
        )
    return req
