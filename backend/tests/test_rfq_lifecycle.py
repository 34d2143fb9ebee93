from datetime import datetime
from decimal import Decimal

import pytest

from orderflow import models
from orderflow.core.errors import ConcurrentModification, InvalidTransition, ValidationError
from orderflow.models import (
    InviteStatus,
    NotificationType,
    OfferStatus,
    OrderStatus,
    QuoteStatus,
    RfqStatus,
    TransactionStatus,
    TransactionType,
)
from orderflow.services import offers, order_lifecycle, rfq_lifecycle
from orderflow.services.payment_reconciliation import TransactionEvent, record_transaction
from orderflow.services.rfq_lifecycle import RfqDraft


def _draft(**overrides):
    data = dict(
        buyer_id="buyer-1",
        title="Injection moulded housings",
        details={"items": [{"sku": "HSG-2", "qty": 1200}]},
    )
    data.update(overrides)
    return RfqDraft(**data)


def _notifications(db, user_id, ntype=None):
    q = db.query(models.Notification).filter(models.Notification.user_id == user_id)
    if ntype is not None:
        q = q.filter(models.Notification.type == ntype)
    return q.all()


def test_submit_rfq_numbers_and_notifies_admins(db_session):
    rfq = rfq_lifecycle.submit_rfq(db=db_session, draft=_draft())

    assert rfq.status == RfqStatus.submitted
    assert rfq.rfq_number == f"RFQ-{datetime.utcnow().year}-000001"
    assert rfq.version == 1

    second = rfq_lifecycle.submit_rfq(db=db_session, draft=_draft(title="Second"))
    assert second.rfq_number.endswith("-000002")

    admin_notes = _notifications(db_session, "admin-1", NotificationType.rfq_submitted)
    assert {n.entity_id for n in admin_notes} == {rfq.id, second.id}


def test_draft_rfq_is_silent_until_submitted(db_session):
    rfq = rfq_lifecycle.submit_rfq(db=db_session, draft=_draft(save_as_draft=True))
    assert rfq.status == RfqStatus.draft
    assert _notifications(db_session, "admin-1") == []

    rfq = rfq_lifecycle.transition_rfq_status(
        db=db_session, rfq_id=rfq.id, to_status=RfqStatus.submitted, actor_id="buyer-1"
    )
    assert rfq.status == RfqStatus.submitted
    assert len(_notifications(db_session, "admin-1", NotificationType.rfq_submitted)) == 1


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": "  "},
        {"details": {}},
        {"budget_range": {"min": 5000, "max": 1000}},
    ],
)
def test_submit_rfq_validates_input(db_session, overrides):
    with pytest.raises(ValidationError):
        rfq_lifecycle.submit_rfq(db=db_session, draft=_draft(**overrides))
    assert db_session.query(models.Rfq).count() == 0


def test_reentering_current_status_is_a_noop(db_session):
    rfq = rfq_lifecycle.submit_rfq(db=db_session, draft=_draft())
    version = rfq.version

    same = rfq_lifecycle.transition_rfq_status(
        db=db_session, rfq_id=rfq.id, to_status=RfqStatus.submitted
    )
    assert same.status == RfqStatus.submitted
    assert same.version == version


def test_skipping_a_step_is_rejected(db_session):
    rfq = rfq_lifecycle.submit_rfq(db=db_session, draft=_draft())

    with pytest.raises(InvalidTransition) as exc:
        rfq_lifecycle.transition_rfq_status(
            db=db_session, rfq_id=rfq.id, to_status=RfqStatus.offers_published
        )
    assert exc.value.from_status == "submitted"
    assert exc.value.to_status == "offers_published"
    assert rfq_lifecycle.get_rfq(db=db_session, rfq_id=rfq.id).status == RfqStatus.submitted


def test_closed_rfq_accepts_no_moves(db_session):
    rfq = rfq_lifecycle.submit_rfq(db=db_session, draft=_draft())
    rfq.status = RfqStatus.closed
    db_session.commit()

    for target in RfqStatus:
        if target == RfqStatus.closed:
            continue
        with pytest.raises(InvalidTransition):
            rfq_lifecycle.transition_rfq_status(db=db_session, rfq_id=rfq.id, to_status=target)


def test_stale_expected_version_is_rejected(db_session):
    rfq = rfq_lifecycle.submit_rfq(db=db_session, draft=_draft())
    stale = rfq.version
    rfq_lifecycle.transition_rfq_status(
        db=db_session, rfq_id=rfq.id, to_status=RfqStatus.under_review, expected_version=stale
    )

    with pytest.raises(ConcurrentModification):
        rfq_lifecycle.transition_rfq_status(
            db=db_session, rfq_id=rfq.id, to_status=RfqStatus.cancelled, expected_version=stale
        )


def test_review_notifies_buyer_once(db_session):
    rfq = rfq_lifecycle.submit_rfq(db=db_session, draft=_draft())
    rfq = rfq_lifecycle.transition_rfq_status(
        db=db_session, rfq_id=rfq.id, to_status=RfqStatus.under_review, actor_id="admin-1"
    )
    assert rfq.status == RfqStatus.under_review
    assert rfq.version == 2
    rfq_lifecycle.transition_rfq_status(
        db=db_session, rfq_id=rfq.id, to_status=RfqStatus.under_review, actor_id="admin-1"
    )

    approvals = _notifications(db_session, "buyer-1", NotificationType.rfq_approved)
    assert len(approvals) == 1

    audit = (
        db_session.query(models.AuditLog)
        .filter(models.AuditLog.action == "rfq.status_changed")
        .filter(models.AuditLog.entity_id == rfq.id)
        .all()
    )
    assert len(audit) == 1


def test_cancel_before_order(db_session, make_rfq):
    rfq, _invite = make_rfq()
    rfq = rfq_lifecycle.transition_rfq_status(
        db=db_session, rfq_id=rfq.id, to_status=RfqStatus.cancelled
    )
    assert rfq.status == RfqStatus.cancelled

    with pytest.raises(InvalidTransition):
        rfq_lifecycle.transition_rfq_status(
            db=db_session, rfq_id=rfq.id, to_status=RfqStatus.under_review
        )


def test_invite_supplier_is_idempotent(db_session):
    rfq = rfq_lifecycle.submit_rfq(db=db_session, draft=_draft())

    with pytest.raises(InvalidTransition):
        rfq_lifecycle.invite_supplier(
            db=db_session, rfq_id=rfq.id, supplier_id="supplier-1", invited_by="admin-1"
        )

    rfq_lifecycle.transition_rfq_status(
        db=db_session, rfq_id=rfq.id, to_status=RfqStatus.under_review
    )
    first = rfq_lifecycle.invite_supplier(
        db=db_session, rfq_id=rfq.id, supplier_id="supplier-1", invited_by="admin-1"
    )
    again = rfq_lifecycle.invite_supplier(
        db=db_session, rfq_id=rfq.id, supplier_id="supplier-1", invited_by="admin-1"
    )
    other = rfq_lifecycle.invite_supplier(
        db=db_session, rfq_id=rfq.id, supplier_id="supplier-2", invited_by="admin-1"
    )

    assert first.id == again.id
    assert other.id != first.id
    assert rfq_lifecycle.get_rfq(db=db_session, rfq_id=rfq.id).status == RfqStatus.invited
    assert len(_notifications(db_session, "supplier-1", NotificationType.supplier_invitation)) == 1
    assert len(_notifications(db_session, "supplier-2", NotificationType.supplier_invitation)) == 1


def test_resubmitted_quote_adds_a_version(db_session, make_rfq):
    rfq, invite = make_rfq()

    v1 = rfq_lifecycle.submit_quote(
        db=db_session, invite_id=invite.id, price="90000", currency="inr", lead_time_days=30
    )
    v2 = rfq_lifecycle.submit_quote(
        db=db_session, invite_id=invite.id, price="87500.50", currency="INR", lead_time_days=25
    )

    assert (v1.quote_version, v2.quote_version) == (1, 2)
    assert v1.currency == "INR"
    assert v2.price == Decimal("87500.50")

    stored_v1 = db_session.get(models.Quote, v1.id, populate_existing=True)
    assert stored_v1.price == Decimal("90000.00")
    assert stored_v1.lead_time_days == 30

    assert rfq_lifecycle.get_invite(db=db_session, invite_id=invite.id).status == InviteStatus.responded
    assert [q.quote_version for q in rfq_lifecycle.list_quotes(db=db_session, rfq_id=rfq.id)] == [1, 2]
    assert len(_notifications(db_session, "admin-1", NotificationType.quote_received)) == 2


def test_quote_terms_cannot_be_edited(db_session, make_rfq):
    _rfq, invite = make_rfq()
    quote = rfq_lifecycle.submit_quote(
        db=db_session, invite_id=invite.id, price="90000", currency="INR", lead_time_days=30
    )

    quote.price = Decimal("1")
    with pytest.raises(ValueError):
        db_session.commit()
    db_session.rollback()

    assert db_session.get(models.Quote, quote.id, populate_existing=True).price == Decimal("90000.00")


def test_quote_input_is_validated(db_session, make_rfq):
    _rfq, invite = make_rfq()
    with pytest.raises(ValidationError):
        rfq_lifecycle.submit_quote(
            db=db_session, invite_id=invite.id, price="0", currency="INR", lead_time_days=30
        )
    with pytest.raises(ValidationError):
        rfq_lifecycle.submit_quote(
            db=db_session, invite_id=invite.id, price="10", currency="INR", lead_time_days=0
        )
    with pytest.raises(ValidationError):
        rfq_lifecycle.submit_quote(
            db=db_session, invite_id=invite.id, price="10", currency="rupees", lead_time_days=3
        )


def test_declined_invite_cannot_quote(db_session, make_rfq):
    _rfq, invite = make_rfq()
    declined = rfq_lifecycle.decline_invite(db=db_session, invite_id=invite.id, supplier_id="supplier-1")
    assert declined.status == InviteStatus.declined

    with pytest.raises(InvalidTransition):
        rfq_lifecycle.submit_quote(
            db=db_session, invite_id=invite.id, price="100", currency="INR", lead_time_days=3
        )


def test_quote_decision_is_stamped_once(db_session, make_rfq):
    _rfq, invite = make_rfq()
    quote = rfq_lifecycle.submit_quote(
        db=db_session, invite_id=invite.id, price="90000", currency="INR", lead_time_days=30
    )

    accepted = rfq_lifecycle.set_quote_decision(
        db=db_session, quote_id=quote.id, decision=QuoteStatus.accepted, actor_id="admin-1"
    )
    assert accepted.status == QuoteStatus.accepted
    assert accepted.price == Decimal("90000.00")

    again = rfq_lifecycle.set_quote_decision(
        db=db_session, quote_id=quote.id, decision=QuoteStatus.accepted
    )
    assert again.status == QuoteStatus.accepted

    with pytest.raises(InvalidTransition):
        rfq_lifecycle.set_quote_decision(
            db=db_session, quote_id=quote.id, decision=QuoteStatus.rejected
        )
    with pytest.raises(ValidationError):
        rfq_lifecycle.set_quote_decision(
            db=db_session, quote_id=quote.id, decision=QuoteStatus.submitted
        )

    assert len(_notifications(db_session, "supplier-1", NotificationType.quote_accepted)) == 1


def test_accepting_rfq_creates_order_from_active_offer(db_session, make_offer):
    rfq, offer = make_offer()

    rfq = rfq_lifecycle.transition_rfq_status(
        db=db_session, rfq_id=rfq.id, to_status=RfqStatus.accepted, actor_id="buyer-1"
    )
    assert rfq.status == RfqStatus.accepted

    order = db_session.query(models.Order).filter(models.Order.rfq_id == rfq.id).one()
    assert order.curated_offer_id == offer.id

    with pytest.raises(InvalidTransition):
        rfq_lifecycle.transition_rfq_status(
            db=db_session, rfq_id=rfq.id, to_status=RfqStatus.cancelled
        )


def test_accepting_rfq_without_active_offer_is_rejected(db_session, make_offer):
    rfq, offer = make_offer()
    offers.withdraw_offer(db=db_session, offer_id=offer.id, actor_id="admin-1")
    assert offers.get_offer(db=db_session, offer_id=offer.id).status == OfferStatus.withdrawn

    with pytest.raises(InvalidTransition) as exc:
        rfq_lifecycle.transition_rfq_status(
            db=db_session, rfq_id=rfq.id, to_status=RfqStatus.accepted
        )
    assert "found 0" in exc.value.message
    assert db_session.query(models.Order).count() == 0


def test_production_and_later_statuses_move_the_order(db_session, make_offer):
    rfq, _offer = make_offer()
    rfq = rfq_lifecycle.transition_rfq_status(
        db=db_session, rfq_id=rfq.id, to_status=RfqStatus.accepted
    )
    order = db_session.query(models.Order).filter(models.Order.rfq_id == rfq.id).one()

    # The order is still waiting for its deposit, so production cannot start.
    with pytest.raises(InvalidTransition) as exc:
        rfq_lifecycle.transition_rfq_status(
            db=db_session, rfq_id=rfq.id, to_status=RfqStatus.in_production
        )
    assert exc.value.entity == "Order"
    assert rfq_lifecycle.get_rfq(db=db_session, rfq_id=rfq.id).status == RfqStatus.accepted

    record_transaction(
        db=db_session,
        event=TransactionEvent(
            transaction_ref="DEP-RFQ",
            order_id=order.id,
            amount=Decimal("30000"),
            currency="INR",
            status=TransactionStatus.completed,
            transaction_type=TransactionType.advance_payment,
        ),
    )
    order_lifecycle.transition_order_status(
        db=db_session, order_id=order.id, to_status=OrderStatus.deposit_paid
    )

    rfq = rfq_lifecycle.transition_rfq_status(
        db=db_session, rfq_id=rfq.id, to_status=RfqStatus.in_production
    )
    assert rfq.status == RfqStatus.in_production
    assert db_session.get(models.Order, order.id, populate_existing=True).status == OrderStatus.production

    for target in (RfqStatus.inspection, RfqStatus.shipped, RfqStatus.delivered):
        rfq = rfq_lifecycle.transition_rfq_status(db=db_session, rfq_id=rfq.id, to_status=target)
        assert rfq.status == target

    # Closing needs the order's balance settled.
    with pytest.raises(InvalidTransition):
        rfq_lifecycle.transition_rfq_status(
            db=db_session, rfq_id=rfq.id, to_status=RfqStatus.closed
        )
    assert rfq_lifecycle.get_rfq(db=db_session, rfq_id=rfq.id).status == RfqStatus.delivered
    assert db_session.get(models.Order, order.id, populate_existing=True).status == OrderStatus.delivered
