import logging

import pytest
from sqlalchemy.exc import OperationalError

from orderflow import models
from orderflow.config import settings
from orderflow.core.errors import NotFound
from orderflow.models import NotificationType, OrderStatus
from orderflow.services import notifications, order_lifecycle
from orderflow.services.notifications import NotificationIntent, build_dedupe_key, dispatch


def _intent(**overrides):
    data = dict(
        user_id="buyer-1",
        type=NotificationType.order_status_change,
        title="Order status updated",
        message="Order moved",
        entity_type="order",
        entity_id="ord-1",
        discriminator="created->cancelled",
    )
    data.update(overrides)
    return NotificationIntent(**data)


def test_dedupe_key_shape():
    assert build_dedupe_key(_intent()) == "buyer-1:order:ord-1:order_status_change:created->cancelled"
    assert build_dedupe_key(_intent(entity_type=None, entity_id=None, discriminator=None)) == (
        "buyer-1:-:-:order_status_change:-"
    )
    assert len(build_dedupe_key(_intent(discriminator="x" * 400))) == 255


def test_same_event_is_stored_once(db_session):
    first = dispatch(db=db_session, intents=[_intent()])
    second = dispatch(db=db_session, intents=[_intent()])

    assert first[0].created is True
    assert second[0].created is False
    assert second[0].notification.id == first[0].notification.id
    assert db_session.query(models.Notification).count() == 1


def test_distinct_events_are_stored_separately(db_session):
    dispatch(
        db=db_session,
        intents=[
            _intent(),
            _intent(discriminator="created->deposit_paid"),
            _intent(user_id="supplier-1"),
        ],
    )
    assert db_session.query(models.Notification).count() == 3


def test_read_state(db_session):
    dispatch(
        db=db_session,
        intents=[_intent(discriminator=f"step-{i}") for i in range(3)]
        + [_intent(user_id="buyer-2", discriminator="other")],
    )
    assert notifications.get_unread_count(db=db_session, user_id="buyer-1") == 3

    target = notifications.list_notifications(db=db_session, user_id="buyer-1")[0]
    notifications.mark_notification_read(db=db_session, notification_id=target.id, user_id="buyer-1")
    notifications.mark_notification_read(db=db_session, notification_id=target.id, user_id="buyer-1")
    assert notifications.get_unread_count(db=db_session, user_id="buyer-1") == 2
    assert len(notifications.list_notifications(db=db_session, user_id="buyer-1", unread_only=True)) == 2

    with pytest.raises(NotFound):
        notifications.mark_notification_read(db=db_session, notification_id=target.id, user_id="buyer-2")

    assert notifications.mark_all_read(db=db_session, user_id="buyer-1") == 2
    assert notifications.mark_all_read(db=db_session, user_id="buyer-1") == 0
    assert notifications.get_unread_count(db=db_session, user_id="buyer-1") == 0
    assert notifications.get_unread_count(db=db_session, user_id="buyer-2") == 1


def test_failed_dispatch_is_logged_not_raised(db_session, monkeypatch, caplog):
    def broken(*, db, intent):
        raise OperationalError("INSERT INTO notifications", {}, Exception("database is locked"))

    monkeypatch.setattr(notifications, "dispatch_one", broken)

    with caplog.at_level(logging.ERROR, logger="orderflow.notifications"):
        results = dispatch(db=db_session, intents=[_intent()])

    assert results == []
    assert any(r.getMessage() == "notification_dispatch_failed" for r in caplog.records)


def test_failed_dispatch_keeps_the_state_change(db_session, order, monkeypatch):
    def broken(*, db, intent):
        raise OperationalError("INSERT INTO notifications", {}, Exception("disk I/O error"))

    monkeypatch.setattr(notifications, "dispatch_one", broken)

    moved = order_lifecycle.transition_order_status(
        db=db_session, order_id=order.id, to_status=OrderStatus.cancelled
    )
    assert moved.status == OrderStatus.cancelled
    assert db_session.get(models.Order, order.id, populate_existing=True).status == OrderStatus.cancelled


def test_dispatch_can_be_disabled(db_session, monkeypatch):
    monkeypatch.setattr(settings, "notifications_enabled", False)
    assert dispatch(db=db_session, intents=[_intent()]) == []
    assert db_session.query(models.Notification).count() == 0
