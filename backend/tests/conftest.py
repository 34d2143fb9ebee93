import os
import tempfile

# CRITICAL: Set environment variables BEFORE any orderflow imports.
# orderflow.config.settings is built at import time.
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), "test_orderflow.db")
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{_TEST_DB_PATH}"
os.environ["ENVIRONMENT"] = "test"
os.environ["API_V1_STR"] = "/api"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["ADMIN_USER_IDS"] = "admin-1"
os.environ["NOTIFICATIONS_ENABLED"] = "true"

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from orderflow.database import Base, get_db  # noqa: E402
from orderflow.database import engine as app_engine  # noqa: E402
from orderflow.main import app  # noqa: E402
from orderflow.models import RfqStatus  # noqa: E402
from orderflow.services import offers, order_lifecycle, rfq_lifecycle  # noqa: E402
from orderflow.services.rfq_lifecycle import RfqDraft  # noqa: E402

TEST_ENGINE = app_engine

TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=TEST_ENGINE, future=True
)

BUYER = "buyer-1"
SUPPLIER = "supplier-1"
ADMIN = "admin-1"


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope="function", autouse=True)
def setup_test_database():
    """Fresh schema for every test."""
    original_overrides = dict(app.dependency_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)

    yield

    app.dependency_overrides.clear()
    app.dependency_overrides.update(original_overrides)
    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client():
    return TestClient(app)


def _create_rfq_with_invite(db, *, buyer_id: str = BUYER, supplier_id: str = SUPPLIER):
    """RFQ submitted, approved and sent to one supplier (status `invited`)."""

    rfq = rfq_lifecycle.submit_rfq(
        db=db,
        draft=RfqDraft(
            buyer_id=buyer_id,
            title="CNC machined aluminium brackets",
            details={"industry": "automotive", "items": [{"sku": "BRK-7", "qty": 500}]},
        ),
    )
    rfq_lifecycle.transition_rfq_status(
        db=db, rfq_id=rfq.id, to_status=RfqStatus.under_review, actor_id=ADMIN
    )
    invite = rfq_lifecycle.invite_supplier(
        db=db, rfq_id=rfq.id, supplier_id=supplier_id, invited_by=ADMIN
    )
    return rfq_lifecycle.get_rfq(db=db, rfq_id=rfq.id), invite


def _create_published_offer(
    db,
    *,
    total: str = "100000",
    currency: str = "INR",
    advance: str | None = "30000",
    buyer_id: str = BUYER,
    supplier_id: str = SUPPLIER,
):
    rfq, invite = _create_rfq_with_invite(db, buyer_id=buyer_id, supplier_id=supplier_id)
    quote = rfq_lifecycle.submit_quote(
        db=db,
        invite_id=invite.id,
        price=Decimal("95000"),
        currency=currency,
        lead_time_days=21,
    )
    offer = offers.create_curated_offer(
        db=db,
        rfq_id=rfq.id,
        admin_id=ADMIN,
        title="Curated offer",
        total_price=Decimal(total),
        currency=currency,
        advance_amount=Decimal(advance) if advance is not None else None,
        source_quote_ids=[quote.id],
    )
    offer = offers.publish_offer(db=db, offer_id=offer.id, actor_id=ADMIN)
    return rfq, offer


def _create_order(db, **kwargs):
    _rfq, offer = _create_published_offer(db, **kwargs)
    return order_lifecycle.accept_offer(db=db, offer_id=offer.id, buyer_id=kwargs.get("buyer_id", BUYER))


@pytest.fixture
def make_rfq(db_session):
    """Factory: RFQ in `invited` with one supplier invite. Returns (rfq, invite)."""

    def _make(**kwargs):
        return _create_rfq_with_invite(db_session, **kwargs)

    return _make


@pytest.fixture
def make_offer(db_session):
    """Factory: published curated offer. Returns (rfq, offer)."""

    def _make(**kwargs):
        return _create_published_offer(db_session, **kwargs)

    return _make


@pytest.fixture
def make_order(db_session):
    """Factory: order created from an accepted offer (100000 INR, 30000 advance by default)."""

    def _make(**kwargs):
        return _create_order(db_session, **kwargs)

    return _make


@pytest.fixture
def order(make_order):
    return make_order()


@pytest.fixture
def auth_headers():
    def _headers(user_id: str, role: str) -> dict:
        return {"X-User-Id": user_id, "X-User-Role": role}

    return _headers
