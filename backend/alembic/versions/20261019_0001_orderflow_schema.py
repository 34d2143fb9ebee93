"""orderflow schema: rfqs, quotes, offers, orders, payments, earlypay, notifications

Revision ID: 20261019_0001_orderflow_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001_orderflow_schema"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(14, 2)


def _timestamps(with_updated: bool = True) -> list:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())]
    if with_updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()))
    return cols


def upgrade() -> None:
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("idempotency_key", sa.String(length=160), nullable=True),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_request_id", "audit_logs", ["request_id"])
    op.create_index("ix_audit_logs_idempotency_key", "audit_logs", ["idempotency_key"], unique=True)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("doc_type", sa.String(length=16), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("last_seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("doc_type", "year", name="uq_document_sequences_doc_type_year"),
    )

    op.create_table(
        "rfqs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("rfq_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("buyer_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("files", sa.JSON(), nullable=True),
        sa.Column("budget_range", sa.JSON(), nullable=True),
        sa.Column("nda_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("confidential", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_rfqs_buyer_id", "rfqs", ["buyer_id"])
    op.create_index("ix_rfqs_status", "rfqs", ["status"])

    op.create_table(
        "supplier_invites",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("rfq_id", sa.String(length=36), sa.ForeignKey("rfqs.id"), nullable=False),
        sa.Column("supplier_id", sa.String(length=64), nullable=False),
        sa.Column("invited_by", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("response_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invited_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("rfq_id", "supplier_id", name="uq_supplier_invites_rfq_supplier"),
    )
    op.create_index("ix_supplier_invites_rfq_id", "supplier_invites", ["rfq_id"])
    op.create_index("ix_supplier_invites_supplier_id", "supplier_invites", ["supplier_id"])

    op.create_table(
        "quotes",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("invite_id", sa.String(length=36), sa.ForeignKey("supplier_invites.id"), nullable=False),
        sa.Column("rfq_id", sa.String(length=36), sa.ForeignKey("rfqs.id"), nullable=False),
        sa.Column("supplier_id", sa.String(length=64), nullable=False),
        sa.Column("quote_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("price", MONEY, nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("lead_time_days", sa.Integer(), nullable=False),
        sa.Column("terms", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        *_timestamps(with_updated=False),
        sa.UniqueConstraint("invite_id", "quote_version", name="uq_quotes_invite_version"),
    )
    op.create_index("ix_quotes_invite_id", "quotes", ["invite_id"])
    op.create_index("ix_quotes_rfq_id", "quotes", ["rfq_id"])
    op.create_index("ix_quotes_supplier_id", "quotes", ["supplier_id"])

    op.create_table(
        "curated_offers",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("rfq_id", sa.String(length=36), sa.ForeignKey("rfqs.id"), nullable=False),
        sa.Column("admin_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("total_price", MONEY, nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("advance_amount", MONEY, nullable=True),
        sa.Column("final_amount", MONEY, nullable=True),
        sa.Column("payment_link", sa.String(length=512), nullable=True),
        sa.Column("payment_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_quote_ids", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_curated_offers_rfq_id", "curated_offers", ["rfq_id"])
    op.create_index("ix_curated_offers_status", "curated_offers", ["status"])

    op.create_table(
        "orders",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("order_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("rfq_id", sa.String(length=36), sa.ForeignKey("rfqs.id"), nullable=False),
        sa.Column(
            "curated_offer_id",
            sa.String(length=36),
            sa.ForeignKey("curated_offers.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("buyer_id", sa.String(length=64), nullable=False),
        sa.Column("supplier_id", sa.String(length=64), nullable=True),
        sa.Column("admin_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("advance_amount", MONEY, nullable=False),
        sa.Column("deposit_percent", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("deposit_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("buyer_invoice_approved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_orders_rfq_id", "orders", ["rfq_id"])
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
    op.create_index("ix_orders_supplier_id", "orders", ["supplier_id"])
    op.create_index("ix_orders_status", "orders", ["status"])

    op.create_table(
        "payment_transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("transaction_ref", sa.String(length=128), nullable=False),
        sa.Column("order_id", sa.String(length=36), sa.ForeignKey("orders.id"), nullable=True),
        sa.Column("curated_offer_id", sa.String(length=36), sa.ForeignKey("curated_offers.id"), nullable=True),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("fees", MONEY, nullable=False, server_default="0"),
        sa.Column("net_amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("transaction_type", sa.String(length=24), nullable=False),
        sa.Column("source", sa.String(length=16), nullable=False),
        sa.Column("gateway_payload", sa.JSON(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index(
        "ix_payment_transactions_transaction_ref", "payment_transactions", ["transaction_ref"], unique=True
    )
    op.create_index("ix_payment_transactions_order_id", "payment_transactions", ["order_id"])
    op.create_index("ix_payment_transactions_curated_offer_id", "payment_transactions", ["curated_offer_id"])
    op.create_index("ix_payment_transactions_status", "payment_transactions", ["status"])

    op.create_table(
        "order_production_updates",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("order_id", sa.String(length=36), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("stage", sa.String(length=64), nullable=False),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("updated_by", sa.String(length=64), nullable=False),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_order_production_updates_order_id", "order_production_updates", ["order_id"])

    op.create_table(
        "early_pay_requests",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("supplier_id", sa.String(length=64), nullable=False),
        sa.Column("order_id", sa.String(length=36), sa.ForeignKey("orders.id"), nullable=True),
        sa.Column("invoice_number", sa.String(length=64), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("delivered_confirmed", sa.Boolean(), nullable=False),
        sa.Column("buyer_invoice_approved", sa.Boolean(), nullable=False),
        sa.Column("expected_days", sa.Integer(), nullable=False),
        sa.Column("discount_rate", sa.Numeric(5, 4), nullable=False),
        sa.Column("discount_amount", MONEY, nullable=False),
        sa.Column("net_payout", MONEY, nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_early_pay_requests_supplier_id", "early_pay_requests", ["supplier_id"])
    op.create_index("ix_early_pay_requests_order_id", "early_pay_requests", ["order_id"])
    op.create_index("ix_early_pay_requests_status", "early_pay_requests", ["status"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("entity_id", sa.String(length=36), nullable=True),
        sa.Column("entity_type", sa.String(length=32), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("dedupe_key", sa.String(length=255), nullable=False, unique=True),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_notifications_user_id_is_read", "notifications", ["user_id", "is_read"])


def downgrade() -> None:
    op.drop_index("ix_notifications_user_id_is_read", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("early_pay_requests")
    op.drop_table("order_production_updates")
    op.drop_table("payment_transactions")
    op.drop_table("orders")
    op.drop_table("curated_offers")
    op.drop_table("quotes")
    op.drop_table("supplier_invites")
    op.drop_table("rfqs")
    op.drop_table("document_sequences")
    op.drop_table("audit_logs")
