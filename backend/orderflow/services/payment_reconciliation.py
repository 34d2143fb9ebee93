"""Payment reconciliation engine.

Every money movement for an order is a `PaymentTransaction` keyed by its
gateway/settlement `transaction_ref`. Balances are never stored: they are
recomputed from the completed transactions each time they are asked for.

Counting rules:
- completed payments add their `net_amount` (amount minus fees);
- completed `refund` transactions subtract their `net_amount`;
- `commission` transactions are platform revenue and never count;
- rows in any other status count for nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderflow import models
from orderflow.core.errors import (
    ConcurrentModification,
    CurrencyMismatch,
    ImmutableTransaction,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from orderflow.core.money import ZERO, normalize_currency, to_money
from orderflow.models.domain import (
    NotificationType,
    TransactionSource,
    TransactionStatus,
    TransactionType,
)
from orderflow.services import lifecycle_rules as rules
from orderflow.services.audit import audit_event
from orderflow.services.notifications import NotificationIntent, dispatch
from orderflow.services.status_transitions import (
    apply_guarded_transition,
    coalesce_datetime,
    commit_versioned,
)

logger = logging.getLogger("orderflow.payments")

PaymentStatus = Literal["not_started", "partial", "completed"]

_DEPOSIT_REFRESH_ATTEMPTS = 3


@dataclass(frozen=True)
class TransactionEvent:
    transaction_ref: str
    amount: Any
    currency: str
    status: TransactionStatus
    transaction_type: TransactionType
    fees: Any = Decimal("0")
    order_id: str | None = None
    curated_offer_id: str | None = None
    source: TransactionSource = TransactionSource.gateway
    gateway_payload: dict | None = field(default=None)
    failure_reason: str | None = None
    actor_id: str | None = None


@dataclass(frozen=True)
class OrderBalance:
    order_id: str
    currency: str
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    is_fully_paid: bool


@dataclass(frozen=True)
class _NormalizedEvent:
    amount: Decimal
    fees: Decimal
    net_amount: Decimal
    currency: str


def _normalize_event(event: TransactionEvent) -> _NormalizedEvent:
    if not str(event.transaction_ref or "").strip():
        raise ValidationError("transaction_ref is required", {"field": "transaction_ref"})

    amount = to_money(event.amount, field="amount")
    fees = to_money(event.fees if event.fees is not None else 0, field="fees")
    if amount <= ZERO:
        raise ValidationError("amount must be positive", {"amount": str(amount)})
    if fees < ZERO:
        raise ValidationError("fees must not be negative", {"fees": str(fees)})
    if fees > amount:
        raise ValidationError(
            "fees must not exceed amount", {"amount": str(amount), "fees": str(fees)}
        )
    return _NormalizedEvent(
        amount=amount,
        fees=fees,
        net_amount=to_money(amount - fees),
        currency=normalize_currency(event.currency),
    )


def _get_by_ref(db: Session, transaction_ref: str) -> models.PaymentTransaction | None:
    return (
        db.query(models.PaymentTransaction)
        .filter(models.PaymentTransaction.transaction_ref == str(transaction_ref))
        .populate_existing()
        .first()
    )


def _resolve_target(
    db: Session, event: TransactionEvent
) -> tuple[models.Order | None, models.CuratedOffer | None]:
    """Find the order (and offer) a new transaction belongs to."""

    if not event.order_id and not event.curated_offer_id:
        raise ValidationError(
            "order_id or curated_offer_id is required",
            {"transaction_ref": event.transaction_ref},
        )

    order = None
    offer = None
    if event.order_id:
        order = db.get(models.Order, str(event.order_id))
        if order is None:
            raise NotFound("Order", event.order_id)
    if event.curated_offer_id:
        offer = db.get(models.CuratedOffer, str(event.curated_offer_id))
        if offer is None:
            raise NotFound("CuratedOffer", event.curated_offer_id)
        if order is not None and order.curated_offer_id != offer.id:
            raise ValidationError(
                "curated_offer_id does not belong to order",
                {"order_id": order.id, "curated_offer_id": offer.id},
            )
        if order is None:
            order = (
                db.query(models.Order)
                .filter(models.Order.curated_offer_id == offer.id)
                .first()
            )
    return order, offer


def _check_replay_consistency(
    existing: models.PaymentTransaction, normalized: _NormalizedEvent
) -> None:
    mismatched = {}
    if to_money(existing.amount) != normalized.amount:
        mismatched["amount"] = (str(existing.amount), str(normalized.amount))
    if to_money(existing.fees) != normalized.fees:
        mismatched["fees"] = (str(existing.fees), str(normalized.fees))
    if existing.currency != normalized.currency:
        mismatched["currency"] = (existing.currency, normalized.currency)
    if mismatched:
        raise ValidationError(
            f"Replay of {existing.transaction_ref} does not match the recorded transaction",
            {"transaction_ref": existing.transaction_ref, "mismatched": mismatched},
        )


def _apply_status_change(
    db: Session, existing: models.PaymentTransaction, event: TransactionEvent
) -> tuple[models.PaymentTransaction, bool]:
    """Move an existing record to `event.status`. Returns (row, changed)."""

    current = existing.status
    target = event.status

    if current == target:
        return existing, False
    if current in rules.TRANSACTION_IMMUTABLE:
        raise ImmutableTransaction(existing.transaction_ref, current, target)
    if current in rules.TRANSACTION_TERMINAL:
        raise InvalidTransition(
            "PaymentTransaction", current, target, "transaction already closed"
        )
    if rules.is_stale_transaction_status(current, target):
        logger.info(
            "payment_stale_status_ignored",
            extra={
                "transaction_ref": existing.transaction_ref,
                "current": current.value,
                "incoming": target.value,
            },
        )
        return existing, False

    rules.ensure_transition(
        rules.TRANSACTION_TRANSITIONS, entity="PaymentTransaction", current=current, target=target
    )

    updates: dict[str, Any] = {}
    if target == TransactionStatus.completed:
        updates["completed_at"] = coalesce_datetime(
            models.PaymentTransaction.completed_at, datetime.utcnow()
        )
    if event.failure_reason:
        updates["failure_reason"] = event.failure_reason
    if event.gateway_payload:
        updates["gateway_payload"] = event.gateway_payload

    try:
        row = apply_guarded_transition(
            db=db,
            model=models.PaymentTransaction,
            entity="PaymentTransaction",
            entity_id=existing.id,
            to_status=target,
            allowed_from={current},
            expected_version=existing.version,
            updates=updates,
        )
    except (InvalidTransition, ConcurrentModification):
        db.rollback()
        fresh = db.get(models.PaymentTransaction, existing.id, populate_existing=True)
        if fresh is None or fresh.status == current:
            raise
        # A concurrent delivery moved the row first; judge this event against its status.
        return _apply_status_change(db, fresh, event)
    audit_event(
        "payment.status_changed",
        event.actor_id,
        {"from": current.value, "to": target.value, "transaction_ref": row.transaction_ref},
        db=db,
        entity_type="payment",
        entity_id=row.id,
        idempotency_key=f"payment:{row.transaction_ref}:{target.value}",
    )
    db.commit()
    db.refresh(row)
    return row, True


def _insert(
    db: Session, event: TransactionEvent, normalized: _NormalizedEvent
) -> models.PaymentTransaction | None:
    """Insert a new record, or return None when a concurrent insert won the ref."""

    order, offer = _resolve_target(db, event)
    expected_ccy = order.currency if order is not None else offer.currency
    if normalized.currency != expected_ccy:
        raise CurrencyMismatch(expected_ccy, normalized.currency)

    row = models.PaymentTransaction(
        transaction_ref=str(event.transaction_ref).strip(),
        order_id=order.id if order is not None else None,
        curated_offer_id=(
            offer.id if offer is not None else (order.curated_offer_id if order else None)
        ),
        amount=normalized.amount,
        fees=normalized.fees,
        net_amount=normalized.net_amount,
        currency=normalized.currency,
        status=event.status,
        transaction_type=event.transaction_type,
        source=event.source,
        gateway_payload=event.gateway_payload,
        failure_reason=event.failure_reason,
        completed_at=datetime.utcnow() if event.status == TransactionStatus.completed else None,
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        return None

    audit_event(
        "payment.recorded",
        event.actor_id,
        {
            "transaction_ref": row.transaction_ref,
            "status": row.status.value,
            "type": row.transaction_type.value,
            "amount": str(row.amount),
            "fees": str(row.fees),
            "source": row.source.value,
        },
        db=db,
        entity_type="payment",
        entity_id=row.id,
        idempotency_key=f"payment:{row.transaction_ref}:{row.status.value}",
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return None
    db.refresh(row)
    return row


def record_transaction(*, db: Session, event: TransactionEvent) -> models.PaymentTransaction:
    """Record a gateway or admin payment event idempotently.

    - Unknown ref: a new row is inserted.
    - Known ref, same status: the stored row is returned unchanged.
    - Known ref, new status: a forward move is applied; settled rows refuse
      change, late non-terminal statuses are absorbed.
    """

    normalized = _normalize_event(event)

    created = False
    changed = False
    existing = _get_by_ref(db, event.transaction_ref)
    if existing is None:
        row = _insert(db, event, normalized)
        if row is None:
            # Lost the insert race: treat our event as a replay of the winner.
            existing = _get_by_ref(db, event.transaction_ref)
            if existing is None:
                raise ConcurrentModification("PaymentTransaction", event.transaction_ref)
        else:
            created = True
            changed = True
            existing = row

    if not created:
        _check_replay_consistency(existing, normalized)
        existing, changed = _apply_status_change(db, existing, event)

    logger.info(
        "payment_recorded",
        extra={
            "transaction_ref": existing.transaction_ref,
            "status": existing.status.value,
            "inserted": created,
            "changed": changed,
            "order_id": existing.order_id,
        },
    )

    if changed and existing.status == TransactionStatus.completed:
        _after_completion(db, existing)
    return existing


record_payment_transaction = record_transaction


def _after_completion(db: Session, txn: models.PaymentTransaction) -> None:
    order = _order_for_transaction(db, txn)
    if order is None:
        # Paid against an offer that has not been accepted yet; picked up on acceptance.
        return

    try:
        refresh_deposit_flag(db=db, order_id=order.id)
    except ConcurrentModification:
        # The transaction itself is committed; the flag is recomputed on the next completion.
        logger.warning("order_deposit_flag_refresh_failed", extra={"order_id": order.id})
    detect_overpayment(db=db, order_id=order.id)

    intents = []
    for user_id in {order.buyer_id, order.supplier_id}:
        if not user_id:
            continue
        intents.append(
            NotificationIntent(
                user_id=user_id,
                type=NotificationType.general,
                title="Payment received",
                message=f"{txn.currency} {txn.net_amount} recorded for order {order.order_number}.",
                entity_type="order",
                entity_id=order.id,
                discriminator=f"payment:{txn.transaction_ref}",
                meta={
                    "transaction_ref": txn.transaction_ref,
                    "transaction_type": txn.transaction_type.value,
                    "amount": str(txn.amount),
                    "net_amount": str(txn.net_amount),
                    "currency": txn.currency,
                },
            )
        )
    dispatch(db=db, intents=intents)


def _order_for_transaction(db: Session, txn: models.PaymentTransaction) -> models.Order | None:
    if txn.order_id:
        return db.get(models.Order, txn.order_id)
    if txn.curated_offer_id:
        return (
            db.query(models.Order)
            .filter(models.Order.curated_offer_id == txn.curated_offer_id)
            .first()
        )
    return None


def _order_transactions(db: Session, order: models.Order) -> list[models.PaymentTransaction]:
    return (
        db.query(models.PaymentTransaction)
        .filter(
            or_(
                models.PaymentTransaction.order_id == order.id,
                models.PaymentTransaction.curated_offer_id == order.curated_offer_id,
            )
        )
        .order_by(models.PaymentTransaction.created_at.asc())
        .all()
    )


def compute_paid_amount(transactions: list[models.PaymentTransaction]) -> Decimal:
    paid = ZERO
    for txn in transactions:
        if txn.status != TransactionStatus.completed:
            continue
        if txn.transaction_type == TransactionType.commission:
            continue
        if txn.transaction_type == TransactionType.refund:
            paid -= to_money(txn.net_amount)
        else:
            paid += to_money(txn.net_amount)
    return to_money(paid)


def get_order(*, db: Session, order_id: str) -> models.Order:
    order = db.get(models.Order, str(order_id))
    if order is None:
        raise NotFound("Order", order_id)
    return order


def get_order_balance(*, db: Session, order_id: str) -> OrderBalance:
    order = get_order(db=db, order_id=order_id)
    total = to_money(order.total_amount)
    paid = compute_paid_amount(_order_transactions(db, order))
    remaining = max(to_money(total - paid), ZERO)
    return OrderBalance(
        order_id=order.id,
        currency=order.currency,
        total_amount=total,
        paid_amount=paid,
        remaining_amount=remaining,
        is_fully_paid=remaining == ZERO and paid > ZERO,
    )


def get_payment_status(*, db: Session, order_id: str) -> PaymentStatus:
    order = get_order(db=db, order_id=order_id)
    settled = [
        txn
        for txn in _order_transactions(db, order)
        if txn.status == TransactionStatus.completed
        and txn.transaction_type != TransactionType.commission
    ]
    if not settled:
        return "not_started"
    if get_order_balance(db=db, order_id=order.id).is_fully_paid:
        return "completed"
    return "partial"


def detect_overpayment(*, db: Session, order_id: str) -> Decimal:
    """Amount paid beyond the order total (0 when none). Logged as an anomaly."""

    balance = get_order_balance(db=db, order_id=order_id)
    excess = to_money(balance.paid_amount - balance.total_amount)
    if excess <= ZERO:
        return ZERO
    logger.warning(
        "payment_overpayment_detected",
        extra={
            "order_id": balance.order_id,
            "total_amount": str(balance.total_amount),
            "paid_amount": str(balance.paid_amount),
            "excess": str(excess),
        },
    )
    return excess


def list_order_transactions(*, db: Session, order_id: str) -> list[models.PaymentTransaction]:
    return _order_transactions(db, get_order(db=db, order_id=order_id))


def refresh_deposit_flag(*, db: Session, order_id: str) -> bool:
    """Recompute `Order.deposit_paid` from the ledger with a version-checked write."""

    for _ in range(_DEPOSIT_REFRESH_ATTEMPTS):
        order = db.get(models.Order, str(order_id), populate_existing=True)
        if order is None:
            raise NotFound("Order", order_id)
        balance = get_order_balance(db=db, order_id=order.id)
        flag = balance.paid_amount >= to_money(order.advance_amount)
        if bool(order.deposit_paid) == flag:
            return flag
        order.deposit_paid = flag
        try:
            commit_versioned(db, entity="Order", entity_id=order.id, expected_version=order.version)
        except ConcurrentModification:
            continue
        logger.info("order_deposit_flag_refreshed", extra={"order_id": order.id, "deposit_paid": flag})
        return flag

    raise ConcurrentModification("Order", order_id)
