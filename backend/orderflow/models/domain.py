# ruff: noqa: E501
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orderflow.database import Base

MONEY = Numeric(14, 2, asdecimal=True)


def _uuid() -> str:
    return str(uuid.uuid4())


class RoleName(PyEnum):
    buyer = "buyer"
    supplier = "supplier"
    admin = "admin"


class RfqStatus(PyEnum):
    draft = "draft"
    submitted = "submitted"
    under_review = "under_review"
    invited = "invited"
    offers_published = "offers_published"
    accepted = "accepted"
    in_production = "in_production"
    inspection = "inspection"
    shipped = "shipped"
    delivered = "delivered"
    closed = "closed"
    cancelled = "cancelled"


class InviteStatus(PyEnum):
    invited = "invited"
    responded = "responded"
    declined = "declined"


class QuoteStatus(PyEnum):
    submitted = "submitted"
    accepted = "accepted"
    rejected = "rejected"


class OfferStatus(PyEnum):
    draft = "draft"
    published = "published"
    superseded = "superseded"
    accepted = "accepted"
    expired = "expired"
    withdrawn = "withdrawn"


class OrderStatus(PyEnum):
    created = "created"
    deposit_paid = "deposit_paid"
    production = "production"
    inspection = "inspection"
    shipped = "shipped"
    delivered = "delivered"
    closed = "closed"
    cancelled = "cancelled"


class TransactionStatus(PyEnum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"
    refunded = "refunded"


class TransactionType(PyEnum):
    advance_payment = "advance_payment"
    final_payment = "final_payment"
    full_payment = "full_payment"
    refund = "refund"
    commission = "commission"


class TransactionSource(PyEnum):
    gateway = "gateway"
    admin = "admin"


class EarlyPayStatus(PyEnum):
    submitted = "submitted"
    approved = "approved"
    paid = "paid"
    rejected = "rejected"


class SupplierVerification(PyEnum):
    unverified = "unverified"
    bronze = "bronze"
    silver = "silver"
    gold = "gold"


class NotificationType(PyEnum):
    rfq_submitted = "rfq_submitted"
    rfq_approved = "rfq_approved"
    rfq_status_change = "rfq_status_change"
    quote_received = "quote_received"
    quote_accepted = "quote_accepted"
    quote_rejected = "quote_rejected"
    supplier_invitation = "supplier_invitation"
    supplier_verified = "supplier_verified"
    order_created = "order_created"
    order_status_change = "order_status_change"
    production_update = "production_update"
    inspection_completed = "inspection_completed"
    payout_processed = "payout_processed"
    general = "general"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    idempotency_key: Mapped[str | None] = mapped_column(
        String(160), nullable=True, unique=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class DocumentSequence(Base):
    __tablename__ = "document_sequences"
    __table_args__ = (UniqueConstraint("doc_type", "year", name="uq_document_sequences_doc_type_year"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doc_type: Mapped[str] = mapped_column(String(16), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    last_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class Rfq(Base):
    __tablename__ = "rfqs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    rfq_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[RfqStatus] = mapped_column(
        Enum(RfqStatus, native_enum=False, length=32),
        default=RfqStatus.draft,
        nullable=False,
        index=True,
    )
    # Industry, process/SKU selection and line items; opaque to the lifecycle engine.
    details: Mapped[dict] = mapped_column(JSON, nullable=False)
    files: Mapped[list | None] = mapped_column(JSON, nullable=True)
    budget_range: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    nda_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    confidential: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    invites = relationship("SupplierInvite", back_populates="rfq", cascade="all, delete-orphan")
    offers = relationship("CuratedOffer", back_populates="rfq", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}


class SupplierProfile(Base):
    __tablename__ = "supplier_profiles"

    supplier_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    verified_status: Mapped[SupplierVerification] = mapped_column(
        Enum(SupplierVerification, native_enum=False, length=16),
        default=SupplierVerification.unverified,
        nullable=False,
        index=True,
    )
    verified_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __mapper_args__ = {"version_id_col": version}


class SupplierInvite(Base):
    __tablename__ = "supplier_invites"
    __table_args__ = (UniqueConstraint("rfq_id", "supplier_id", name="uq_supplier_invites_rfq_supplier"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    rfq_id: Mapped[str] = mapped_column(ForeignKey("rfqs.id"), nullable=False, index=True)
    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    invited_by: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[InviteStatus] = mapped_column(
        Enum(InviteStatus, native_enum=False, length=16), default=InviteStatus.invited, nullable=False
    )
    response_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    invited_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    rfq = relationship("Rfq", back_populates="invites")
    quotes = relationship("Quote", back_populates="invite", order_by="Quote.quote_version")


class Quote(Base):
    """A supplier's bid. Commercial terms never change after insert; resubmitting adds a new version."""

    __tablename__ = "quotes"
    __table_args__ = (UniqueConstraint("invite_id", "quote_version", name="uq_quotes_invite_version"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    invite_id: Mapped[str] = mapped_column(ForeignKey("supplier_invites.id"), nullable=False, index=True)
    rfq_id: Mapped[str] = mapped_column(ForeignKey("rfqs.id"), nullable=False, index=True)
    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    quote_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    lead_time_days: Mapped[int] = mapped_column(Integer, nullable=False)
    terms: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    status: Mapped[QuoteStatus] = mapped_column(
        Enum(QuoteStatus, native_enum=False, length=16), default=QuoteStatus.submitted, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    invite = relationship("SupplierInvite", back_populates="quotes")


class CuratedOffer(Base):
    __tablename__ = "curated_offers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    rfq_id: Mapped[str] = mapped_column(ForeignKey("rfqs.id"), nullable=False, index=True)
    admin_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    total_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    advance_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    final_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    payment_link: Mapped[str | None] = mapped_column(String(512), nullable=True)
    payment_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # Supplier quote ids this offer was blended from.
    source_quote_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    status: Mapped[OfferStatus] = mapped_column(
        Enum(OfferStatus, native_enum=False, length=16), default=OfferStatus.draft, nullable=False, index=True
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    rfq = relationship("Rfq", back_populates="offers")

    __mapper_args__ = {"version_id_col": version}


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    rfq_id: Mapped[str] = mapped_column(ForeignKey("rfqs.id"), nullable=False, index=True)
    curated_offer_id: Mapped[str] = mapped_column(
        ForeignKey("curated_offers.id"), nullable=False, unique=True
    )
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    supplier_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    admin_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, native_enum=False, length=16), default=OrderStatus.created, nullable=False, index=True
    )
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    advance_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    deposit_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    deposit_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    buyer_invoice_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    rfq = relationship("Rfq", viewonly=True)
    curated_offer = relationship("CuratedOffer", viewonly=True)
    production_updates = relationship(
        "OrderProductionUpdate",
        order_by="OrderProductionUpdate.created_at",
        viewonly=True,
    )

    __mapper_args__ = {"version_id_col": version}


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    # Gateway/settlement reference; the idempotency key for replays.
    transaction_ref: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    order_id: Mapped[str | None] = mapped_column(ForeignKey("orders.id"), nullable=True, index=True)
    curated_offer_id: Mapped[str | None] = mapped_column(
        ForeignKey("curated_offers.id"), nullable=True, index=True
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    fees: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    net_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus, native_enum=False, length=16), nullable=False, index=True
    )
    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, native_enum=False, length=24), nullable=False
    )
    source: Mapped[TransactionSource] = mapped_column(
        Enum(TransactionSource, native_enum=False, length=16),
        default=TransactionSource.gateway,
        nullable=False,
    )
    gateway_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __mapper_args__ = {"version_id_col": version}


class OrderProductionUpdate(Base):
    __tablename__ = "order_production_updates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    stage: Mapped[str] = mapped_column(String(64), nullable=False)
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), default=datetime.utcnow
    )

    order = relationship("Order", viewonly=True)


class EarlyPayRequest(Base):
    __tablename__ = "early_pay_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    order_id: Mapped[str | None] = mapped_column(ForeignKey("orders.id"), nullable=True, index=True)
    invoice_number: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    delivered_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    buyer_invoice_approved: Mapped[bool] = mapped_column(Boolean, nullable=False)
    expected_days: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    net_payout: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[EarlyPayStatus] = mapped_column(
        Enum(EarlyPayStatus, native_enum=False, length=16),
        default=EarlyPayStatus.submitted,
        nullable=False,
        index=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __mapper_args__ = {"version_id_col": version}


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_id_is_read", "user_id", "is_read"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, native_enum=False, length=32), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    # "metadata" is reserved on declarative classes.
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    dedupe_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


@event.listens_for(Quote, "before_update")
def _quote_before_update(_mapper, _connection, target: Quote):
    state = inspect(target)
    for attr in ("price", "currency", "lead_time_days", "terms", "quote_version", "invite_id"):
        if state.attrs[attr].history.has_changes():
            raise ValueError(f"Quote.{attr} is immutable; submit a new quote version")


@event.listens_for(OrderProductionUpdate, "before_update")
def _production_update_before_update(_mapper, _connection, target: OrderProductionUpdate):
    raise ValueError("OrderProductionUpdate rows are append-only")


@event.listens_for(OrderProductionUpdate, "before_delete")
def _production_update_before_delete(_mapper, _connection, target: OrderProductionUpdate):
    raise ValueError("OrderProductionUpdate rows are append-only")
