from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    false,
)
from sqlalchemy.orm import Mapped, mapped_column

from salespipe.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PipelineCounter(Base):
    __tablename__ = "pipeline_counter"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")


class PipelineLead(Base):
    __tablename__ = "pipeline_lead"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    pipeline_ref: Mapped[str] = mapped_column(String(32), nullable=False)
    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    contact_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    contact_phone: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    contact_email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    company_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    source: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    assigned_user_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    assigned_user_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="new", server_default="new")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium", server_default="medium")
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    estimated_value: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="tl", server_default="tl")
    expected_close_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    labels: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    stage_history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    activities: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_pipeline_lead_pipeline_ref", "pipeline_ref"),
        Index("ix_pipeline_lead_status_updated", "status", "updated_at"),
    )


class PipelineOffer(Base):
    __tablename__ = "pipeline_offer"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    no: Mapped[int] = mapped_column(Integer, nullable=False)
    pipeline_ref: Mapped[str] = mapped_column(String(32), nullable=False)
    lead_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    seller_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    offer_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    valid_until: Mapped[date | None] = mapped_column(Date(), nullable=True)
    usd_rate: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    eur_rate: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft", server_default="draft")
    conversion_info: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    offer_note: Mapped[str] = mapped_column(Text, nullable=False, default="")
    internal_firm: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    labels: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    totals: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    stage_history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("no", name="uq_pipeline_offer_no"),
        Index("ix_pipeline_offer_lead_id", "lead_id"),
        Index("ix_pipeline_offer_pipeline_ref", "pipeline_ref"),
        Index("ix_pipeline_offer_status_updated", "status", "updated_at"),
    )


class PipelineSale(Base):
    __tablename__ = "pipeline_sale"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    no: Mapped[int] = mapped_column(Integer, nullable=False)
    pipeline_ref: Mapped[str] = mapped_column(String(32), nullable=False)
    offer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    lead_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    seller_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    sale_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    implement_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    usd_rate: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    eur_rate: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending", server_default="pending")
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    approved_by: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    approved_by_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    internal_firm: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    labels: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    totals: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    stage_history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("no", name="uq_pipeline_sale_no"),
        Index("ix_pipeline_sale_offer_id", "offer_id"),
        Index("ix_pipeline_sale_pipeline_ref", "pipeline_ref"),
    )


class LineItemColumns:
    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    parent_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    parent_type: Mapped[str] = mapped_column(String(16), nullable=False)
    pipeline_ref: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="tl", server_default="tl")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class PricedItemColumns(LineItemColumns):
    catalog_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    erp_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    qty: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=Decimal("1"))
    unit: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    purchase_price: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    price: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    vat_rate: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False, default=Decimal("0"))
    discount_rate: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False, default=Decimal("0"))
    sub_total: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    discount_total: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    tax_total: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    grand_total: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=Decimal("0"))


class PipelineProduct(PricedItemColumns, Base):
    __tablename__ = "pipeline_product"

    __table_args__ = (Index("ix_pipeline_product_parent", "parent_id", "parent_type"),)


class PipelineLicense(PricedItemColumns, Base):
    __tablename__ = "pipeline_license"

    pid: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    type: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    __table_args__ = (Index("ix_pipeline_license_parent", "parent_id", "parent_type"),)


class PipelineRental(PricedItemColumns, Base):
    __tablename__ = "pipeline_rental"

    pid: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    type: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    yearly: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rent_period: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (Index("ix_pipeline_rental_parent", "parent_id", "parent_type"),)


class PipelinePayment(LineItemColumns, Base):
    __tablename__ = "pipeline_payment"

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    payment_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    method: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    invoice_no: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    __table_args__ = (Index("ix_pipeline_payment_parent", "parent_id", "parent_type"),)


class PipelineProspect(Base):
    __tablename__ = "pipeline_prospect"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="prospect")
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    company_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    phone: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class PipelineStaleNotice(Base):
    __tablename__ = "pipeline_stale_notice"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    context_type: Mapped[str] = mapped_column(String(16), nullable=False)
    context_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    notified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("ix_pipeline_stale_notice_context", "context_type", "context_id", "notified_at"),)
