"""add supplier_profiles (verification tier)

Revision ID: 20261019_0002_add_supplier_profiles
Revises: 20261019_0001_orderflow_schema
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0002_add_supplier_profiles"
down_revision = "20261019_0001_orderflow_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "supplier_profiles",
        sa.Column("supplier_id", sa.String(length=64), primary_key=True),
        sa.Column("company_name", sa.String(length=255), nullable=True),
        sa.Column(
            "verified_status", sa.String(length=16), nullable=False, server_default="unverified"
        ),
        sa.Column("verified_by", sa.String(length=64), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_supplier_profiles_verified_status", "supplier_profiles", ["verified_status"]
    )

    # Supplier ids are user ids (up to 64 chars), not UUIDs.
    for table in ("audit_logs", "notifications"):
        with op.batch_alter_table(table) as batch:
            batch.alter_column(
                "entity_id",
                existing_type=sa.String(length=36),
                type_=sa.String(length=64),
                existing_nullable=table == "notifications",
            )


def downgrade() -> None:
    for table in ("audit_logs", "notifications"):
        with op.batch_alter_table(table) as batch:
            batch.alter_column(
                "entity_id",
                existing_type=sa.String(length=64),
                type_=sa.String(length=36),
                existing_nullable=table == "notifications",
            )

    op.drop_index("ix_supplier_profiles_verified_status", table_name="supplier_profiles")
    op.drop_table("supplier_profiles")
