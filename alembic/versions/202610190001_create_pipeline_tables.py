"""create pipeline tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _item_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("parent_id", sa.Uuid(), nullable=False),
        sa.Column("parent_type", sa.String(length=16), nullable=False),
        sa.Column("pipeline_ref", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="tl"),
        *_timestamps(),
    ]


def _priced_columns() -> list[sa.Column]:
    return [
        sa.Column("catalog_id", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("erp_id", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("qty", sa.Numeric(18, 6), nullable=False, server_default="1"),
        sa.Column("unit", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("purchase_price", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("price", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("vat_rate", sa.Numeric(9, 4), nullable=False, server_default="0"),
        sa.Column("discount_rate", sa.Numeric(9, 4), nullable=False, server_default="0"),
        sa.Column("sub_total", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("discount_total", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("tax_total", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("grand_total", sa.Numeric(18, 6), nullable=False, server_default="0"),
    ]


def upgrade() -> None:
    op.create_table(
        "pipeline_counter",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "pipeline_lead",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("pipeline_ref", sa.String(length=32), nullable=False),
        sa.Column("customer_id", sa.String(length=64), nullable=True),
        sa.Column("contact_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("contact_phone", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("contact_email", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("company_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("source", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("assigned_user_id", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("assigned_user_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="new"),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="medium"),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("estimated_value", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="tl"),
        sa.Column("expected_close_date", sa.Date(), nullable=True),
        sa.Column("labels", sa.JSON(), nullable=False),
        sa.Column("stage_history", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pipeline_lead_pipeline_ref", "pipeline_lead", ["pipeline_ref"])
    op.create_index("ix_pipeline_lead_status_updated", "pipeline_lead", ["status", "updated_at"])

    op.create_table(
        "pipeline_offer",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("no", sa.Integer(), nullable=False),
        sa.Column("pipeline_ref", sa.String(length=32), nullable=False),
        sa.Column("lead_id", sa.Uuid(), nullable=True),
        sa.Column("customer_id", sa.String(length=64), nullable=True),
        sa.Column("customer_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("seller_id", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("seller_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("offer_date", sa.Date(), nullable=True),
        sa.Column("valid_until", sa.Date(), nullable=True),
        sa.Column("usd_rate", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("eur_rate", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column("conversion_info", sa.JSON(), nullable=True),
        sa.Column("offer_note", sa.Text(), nullable=False, server_default=""),
        sa.Column("internal_firm", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("labels", sa.JSON(), nullable=False),
        sa.Column("totals", sa.JSON(), nullable=True),
        sa.Column("stage_history", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("no", name="uq_pipeline_offer_no"),
    )
    op.create_index("ix_pipeline_offer_lead_id", "pipeline_offer", ["lead_id"])
    op.create_index("ix_pipeline_offer_pipeline_ref", "pipeline_offer", ["pipeline_ref"])
    op.create_index("ix_pipeline_offer_status_updated", "pipeline_offer", ["status", "updated_at"])

    op.create_table(
        "pipeline_sale",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("no", sa.Integer(), nullable=False),
        sa.Column("pipeline_ref", sa.String(length=32), nullable=False),
        sa.Column("offer_id", sa.Uuid(), nullable=True),
        sa.Column("lead_id", sa.Uuid(), nullable=True),
        sa.Column("customer_id", sa.String(length=64), nullable=True),
        sa.Column("customer_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("seller_id", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("seller_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("sale_date", sa.Date(), nullable=True),
        sa.Column("implement_date", sa.Date(), nullable=True),
        sa.Column("usd_rate", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("eur_rate", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("approved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("approved_by", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("approved_by_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("internal_firm", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("labels", sa.JSON(), nullable=False),
        sa.Column("totals", sa.JSON(), nullable=True),
        sa.Column("stage_history", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("no", name="uq_pipeline_sale_no"),
    )
    op.create_index("ix_pipeline_sale_offer_id", "pipeline_sale", ["offer_id"])
    op.create_index("ix_pipeline_sale_pipeline_ref", "pipeline_sale", ["pipeline_ref"])

    op.create_table(
        "pipeline_product",
        *_item_columns(),
        *_priced_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pipeline_product_parent", "pipeline_product", ["parent_id", "parent_type"])

    op.create_table(
        "pipeline_license",
        *_item_columns(),
        *_priced_columns(),
        sa.Column("pid", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("type", sa.String(length=64), nullable=False, server_default=""),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pipeline_license_parent", "pipeline_license", ["parent_id", "parent_type"])

    op.create_table(
        "pipeline_rental",
        *_item_columns(),
        *_priced_columns(),
        sa.Column("pid", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("type", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("yearly", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rent_period", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pipeline_rental_parent", "pipeline_rental", ["parent_id", "parent_type"])

    op.create_table(
        "pipeline_payment",
        *_item_columns(),
        sa.Column("amount", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("payment_date", sa.Date(), nullable=True),
        sa.Column("method", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("invoice_no", sa.String(length=64), nullable=False, server_default=""),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pipeline_payment_parent", "pipeline_payment", ["parent_id", "parent_type"])

    op.create_table(
        "pipeline_prospect",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False, server_default="prospect"),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("company_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("phone", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("email", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("pipeline_prospect")
    op.drop_index("ix_pipeline_payment_parent", table_name="pipeline_payment")
    op.drop_table("pipeline_payment")
    op.drop_index("ix_pipeline_rental_parent", table_name="pipeline_rental")
    op.drop_table("pipeline_rental")
    op.drop_index("ix_pipeline_license_parent", table_name="pipeline_license")
    op.drop_table("pipeline_license")
    op.drop_index("ix_pipeline_product_parent", table_name="pipeline_product")
    op.drop_table("pipeline_product")
    op.drop_index("ix_pipeline_sale_pipeline_ref", table_name="pipeline_sale")
    op.drop_index("ix_pipeline_sale_offer_id", table_name="pipeline_sale")
    op.drop_table("pipeline_sale")
    op.drop_index("ix_pipeline_offer_status_updated", table_name="pipeline_offer")
    op.drop_index("ix_pipeline_offer_pipeline_ref", table_name="pipeline_offer")
    op.drop_index("ix_pipeline_offer_lead_id", table_name="pipeline_offer")
    op.drop_table("pipeline_offer")
    op.drop_index("ix_pipeline_lead_status_updated", table_name="pipeline_lead")
    op.drop_index("ix_pipeline_lead_pipeline_ref", table_name="pipeline_lead")
    op.drop_table("pipeline_lead")
    op.drop_table("pipeline_counter")
