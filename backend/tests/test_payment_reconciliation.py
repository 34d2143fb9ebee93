import logging
from decimal import Decimal

import pytest

from orderflow import models
from orderflow.core.errors import (
    CurrencyMismatch,
    ImmutableTransaction,
    InvalidTransition,
    ValidationError,
)
from orderflow.models import NotificationType, TransactionStatus, TransactionType
from orderflow.services import order_lifecycle, payment_reconciliation
from orderflow.services.payment_reconciliation import (
    TransactionEvent,
    detect_overpayment,
    get_order_balance,
    get_payment_status,
    record_transaction,
)

from conftest import TestingSessionLocal


def _event(
    order,
    ref,
    amount,
    fees="0",
    status=TransactionStatus.completed,
    transaction_type=TransactionType.advance_payment,
    currency="INR",
):
    return TransactionEvent(
        transaction_ref=ref,
        order_id=order.id,
        amount=Decimal(amount),
        fees=Decimal(fees),
        currency=currency,
        status=status,
        transaction_type=transaction_type,
    )


def _count_transactions(db):
    return db.query(models.PaymentTransaction).count()


def test_partial_then_full_payment(db_session, order):
    record_transaction(db=db_session, event=_event(order, "T1", "30000", fees="900"))

    balance = get_order_balance(db=db_session, order_id=order.id)
    assert balance.total_amount == Decimal("100000.00")
    assert balance.paid_amount == Decimal("29100.00")
    assert balance.remaining_amount == Decimal("70900.00")
    assert balance.is_fully_paid is False
    assert get_payment_status(db=db_session, order_id=order.id) == "partial"

    record_transaction(
        db=db_session,
        event=_event(order, "T2", "70900", transaction_type=TransactionType.final_payment),
    )

    balance = get_order_balance(db=db_session, order_id=order.id)
    assert balance.paid_amount == Decimal("100000.00")
    assert balance.remaining_amount == Decimal("0.00")
    assert balance.is_fully_paid is True
    assert get_payment_status(db=db_session, order_id=order.id) == "completed"

    # Replaying T1 changes nothing.
    first = db_session.query(models.PaymentTransaction).filter_by(transaction_ref="T1").one()
    replay = record_transaction(db=db_session, event=_event(order, "T1", "30000", fees="900"))
    assert replay.id == first.id
    assert replay.version == first.version
    assert _count_transactions(db_session) == 2
    assert get_order_balance(db=db_session, order_id=order.id) == balance


def test_no_payments_means_not_started(db_session, order):
    balance = get_order_balance(db=db_session, order_id=order.id)
    assert balance.paid_amount == Decimal("0.00")
    assert balance.remaining_amount == Decimal("100000.00")
    assert balance.is_fully_paid is False
    assert get_payment_status(db=db_session, order_id=order.id) == "not_started"


def test_forward_progression_counts_only_when_completed(db_session, order):
    txn = record_transaction(
        db=db_session, event=_event(order, "GW-1", "30000", status=TransactionStatus.pending)
    )
    assert txn.completed_at is None
    assert get_order_balance(db=db_session, order_id=order.id).paid_amount == Decimal("0.00")

    txn = record_transaction(
        db=db_session, event=_event(order, "GW-1", "30000", status=TransactionStatus.processing)
    )
    assert txn.status == TransactionStatus.processing
    assert get_order_balance(db=db_session, order_id=order.id).paid_amount == Decimal("0.00")

    txn = record_transaction(db=db_session, event=_event(order, "GW-1", "30000"))
    assert txn.status == TransactionStatus.completed
    assert txn.completed_at is not None
    assert get_order_balance(db=db_session, order_id=order.id).paid_amount == Decimal("30000.00")
    assert _count_transactions(db_session) == 1


def test_pending_can_skip_straight_to_completed(db_session, order):
    record_transaction(
        db=db_session, event=_event(order, "GW-2", "1000", status=TransactionStatus.pending)
    )
    txn = record_transaction(db=db_session, event=_event(order, "GW-2", "1000"))
    assert txn.status == TransactionStatus.completed


def test_late_pending_after_processing_is_absorbed(db_session, order):
    record_transaction(
        db=db_session, event=_event(order, "GW-3", "1000", status=TransactionStatus.processing)
    )
    txn = record_transaction(
        db=db_session, event=_event(order, "GW-3", "1000", status=TransactionStatus.pending)
    )
    assert txn.status == TransactionStatus.processing


def test_completed_transaction_is_immutable(db_session, order):
    record_transaction(db=db_session, event=_event(order, "T1", "30000"))

    with pytest.raises(ImmutableTransaction):
        record_transaction(
            db=db_session, event=_event(order, "T1", "30000", status=TransactionStatus.failed)
        )
    with pytest.raises(ImmutableTransaction):
        record_transaction(
            db=db_session, event=_event(order, "T1", "30000", status=TransactionStatus.pending)
        )

    stored = db_session.query(models.PaymentTransaction).filter_by(transaction_ref="T1").one()
    assert stored.status == TransactionStatus.completed
    assert stored.net_amount == Decimal("30000.00")


def test_failed_transaction_rejects_later_status(db_session, order):
    record_transaction(
        db=db_session, event=_event(order, "GW-4", "500", status=TransactionStatus.failed)
    )
    with pytest.raises(InvalidTransition):
        record_transaction(db=db_session, event=_event(order, "GW-4", "500"))
    assert get_order_balance(db=db_session, order_id=order.id).paid_amount == Decimal("0.00")


def test_replay_with_different_amount_is_rejected(db_session, order):
    record_transaction(db=db_session, event=_event(order, "T1", "30000", fees="900"))

    with pytest.raises(ValidationError):
        record_transaction(db=db_session, event=_event(order, "T1", "31000", fees="900"))
    with pytest.raises(ValidationError):
        record_transaction(db=db_session, event=_event(order, "T1", "30000", fees="0"))


def test_currency_mismatch_is_rejected(db_session, order):
    with pytest.raises(CurrencyMismatch) as exc:
        record_transaction(db=db_session, event=_event(order, "T-USD", "100", currency="USD"))
    assert exc.value.expected == "INR"
    assert exc.value.received == "USD"
    assert _count_transactions(db_session) == 0


@pytest.mark.parametrize(
    "amount,fees",
    [("0", "0"), ("-10", "0"), ("100", "101"), ("100", "-1")],
)
def test_invalid_amounts_are_rejected(db_session, order, amount, fees):
    with pytest.raises(ValidationError):
        record_transaction(db=db_session, event=_event(order, "BAD", amount, fees=fees))
    assert _count_transactions(db_session) == 0


def test_refunds_subtract_and_commissions_do_not_count(db_session, order):
    record_transaction(db=db_session, event=_event(order, "P1", "50000"))
    record_transaction(
        db=db_session,
        event=_event(order, "C1", "2000", transaction_type=TransactionType.commission),
    )
    assert get_order_balance(db=db_session, order_id=order.id).paid_amount == Decimal("50000.00")

    record_transaction(
        db=db_session,
        event=_event(order, "R1", "10000", transaction_type=TransactionType.refund),
    )
    balance = get_order_balance(db=db_session, order_id=order.id)
    assert balance.paid_amount == Decimal("40000.00")
    assert balance.remaining_amount == Decimal("60000.00")


def test_overpayment_is_logged_never_negative(db_session, order, caplog):
    record_transaction(
        db=db_session,
        event=_event(order, "P1", "100000", transaction_type=TransactionType.full_payment),
    )
    with caplog.at_level(logging.WARNING, logger="orderflow.payments"):
        record_transaction(
            db=db_session,
            event=_event(order, "P2", "5000", transaction_type=TransactionType.final_payment),
        )

    balance = get_order_balance(db=db_session, order_id=order.id)
    assert balance.remaining_amount == Decimal("0.00")
    assert balance.is_fully_paid is True
    assert detect_overpayment(db=db_session, order_id=order.id) == Decimal("5000.00")
    assert any(r.getMessage() == "payment_overpayment_detected" for r in caplog.records)


def test_completion_refreshes_deposit_flag_and_notifies_once(db_session, order):
    record_transaction(db=db_session, event=_event(order, "DEP", "30000"))
    record_transaction(db=db_session, event=_event(order, "DEP", "30000"))

    refreshed = db_session.get(models.Order, order.id, populate_existing=True)
    assert refreshed.deposit_paid is True

    payment_notes = (
        db_session.query(models.Notification)
        .filter(models.Notification.type == NotificationType.general)
        .filter(models.Notification.entity_id == order.id)
        .all()
    )
    assert sorted(n.user_id for n in payment_notes) == ["buyer-1", "supplier-1"]


def test_payment_against_offer_is_backfilled_on_acceptance(db_session, make_offer):
    _rfq, offer = make_offer()
    txn = record_transaction(
        db=db_session,
        event=TransactionEvent(
            transaction_ref="LINK-1",
            curated_offer_id=offer.id,
            amount=Decimal("30000"),
            currency="INR",
            status=TransactionStatus.completed,
            transaction_type=TransactionType.advance_payment,
        ),
    )
    assert txn.order_id is None

    order = order_lifecycle.accept_offer(db=db_session, offer_id=offer.id)

    stored = db_session.get(models.PaymentTransaction, txn.id, populate_existing=True)
    assert stored.order_id == order.id
    assert order.deposit_paid is True
    assert get_order_balance(db=db_session, order_id=order.id).paid_amount == Decimal("30000.00")


def test_concurrent_insert_of_same_ref_keeps_one_row(db_session, order, monkeypatch):
    record_transaction(db=db_session, event=_event(order, "RACE", "1000"))

    real_lookup = payment_reconciliation._get_by_ref
    calls = {"n": 0}

    def first_lookup_misses(db, ref):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return real_lookup(db, ref)

    monkeypatch.setattr(payment_reconciliation, "_get_by_ref", first_lookup_misses)

    txn = record_transaction(db=db_session, event=_event(order, "RACE", "1000"))
    assert txn.transaction_ref == "RACE"
    assert _count_transactions(db_session) == 1
    assert get_order_balance(db=db_session, order_id=order.id).paid_amount == Decimal("1000.00")


def test_recording_logs_at_info_level(db_session, order, caplog):
    caplog.set_level(logging.INFO, logger="orderflow.payments")

    record_transaction(db=db_session, event=_event(order, "DEP", "30000"))
    record_transaction(db=db_session, event=_event(order, "DEP", "30000"))

    recorded = [r for r in caplog.records if r.getMessage() == "payment_recorded"]
    assert [(r.inserted, r.changed) for r in recorded] == [(True, True), (False, False)]
    assert db_session.get(models.Order, order.id, populate_existing=True).deposit_paid is True


def test_duplicate_delivery_racing_a_completion_is_absorbed(db_session, order, monkeypatch):
    record_transaction(
        db=db_session, event=_event(order, "DUP-1", "30000", status=TransactionStatus.pending)
    )

    db_a = TestingSessionLocal()
    db_b = TestingSessionLocal()
    real_lookup = payment_reconciliation._get_by_ref
    raced = []

    def lookup_then_lose_race(db, ref):
        row = real_lookup(db, ref)
        if db is db_a and not raced:
            # The other delivery completes the row after A has read it as pending.
            raced.append(record_transaction(db=db_b, event=_event(order, "DUP-1", "30000")))
        return row

    monkeypatch.setattr(payment_reconciliation, "_get_by_ref", lookup_then_lose_race)
    try:
        txn = record_transaction(db=db_a, event=_event(order, "DUP-1", "30000"))
        assert txn.status == TransactionStatus.completed
        assert txn.version == raced[0].version
    finally:
        db_a.close()
        db_b.close()

    assert _count_transactions(db_session) == 1
    payment_notes = (
        db_session.query(models.Notification)
        .filter(models.Notification.type == NotificationType.general)
        .count()
    )
    assert payment_notes == 2


def test_payment_status_follows_completed_transactions(db_session, order):
    record_transaction(
        db=db_session, event=_event(order, "PEND", "70000", status=TransactionStatus.pending)
    )
    assert get_payment_status(db=db_session, order_id=order.id) == "not_started"

    record_transaction(db=db_session, event=_event(order, "P1", "30000"))
    assert get_payment_status(db=db_session, order_id=order.id) == "partial"

    record_transaction(
        db=db_session,
        event=_event(order, "R1", "30000", transaction_type=TransactionType.refund),
    )
    assert get_order_balance(db=db_session, order_id=order.id).paid_amount == Decimal("0.00")
    assert get_payment_status(db=db_session, order_id=order.id) == "partial"


def test_commission_alone_does_not_start_payment(db_session, order):
    record_transaction(
        db=db_session,
        event=_event(order, "C1", "2000", transaction_type=TransactionType.commission),
    )
    assert get_payment_status(db=db_session, order_id=order.id) == "not_started"
