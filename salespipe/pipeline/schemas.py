from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Generic, Literal, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


ParentType = Literal["offer", "sale"]
Currency = Literal["tl", "usd", "eur"]
ItemType = Literal["products", "licenses", "rentals", "payments"]
LeadStatus = Literal["new", "contacted", "qualified", "unqualified", "converted", "lost"]
LeadPriority = Literal["low", "medium", "high"]
StatsPeriod = Literal["daily", "weekly", "monthly", "quarterly", "yearly"]
OfferStatus = Literal["draft", "sent", "revised", "waiting", "approved", "rejected", "won", "lost", "converted"]
SaleStatus = Literal[
    "pending",
    "collection-waiting",
    "setup-waiting",
    "training-waiting",
    "active",
    "completed",
    "cancelled",
]

ITEM_KEYS: tuple[str, ...] = ("products", "licenses", "rentals", "payments")

T = TypeVar("T")


class ItemWriteBase(BaseModel):
    """Line item as sent by a client.

    ``id`` is accepted because clients echo placeholder ids from optimistic UI
    state; batch writes drop it. The parent fields are only honoured by
    single-item creation.
    """

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    parent_id: UUID | None = None
    parent_type: ParentType | None = None
    pipeline_ref: str | None = None
    currency: Currency | None = None


class PricedItemWrite(ItemWriteBase):
    catalog_id: str | None = None
    erp_id: str | None = None
    name: str | None = None
    description: str | None = None
    qty: Decimal | None = Field(default=None, ge=Decimal("0"))
    unit: str | None = None
    purchase_price: Decimal | None = None
    price: Decimal | None = None
    vat_rate: Decimal | None = Field(default=None, ge=Decimal("0"))
    discount_rate: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("100"))
    sub_total: Decimal | None = None
    discount_total: Decimal | None = None
    tax_total: Decimal | None = None
    grand_total: Decimal | None = None


class ProductWrite(PricedItemWrite):
    pass


class LicenseWrite(PricedItemWrite):
    pid: str | None = None
    type: str | None = None


class RentalWrite(PricedItemWrite):
    pid: str | None = None
    type: str | None = None
    yearly: bool | None = None
    rent_period: int | None = Field(default=None, ge=0)


class PaymentWrite(ItemWriteBase):
    amount: Decimal | None = None
    payment_date: date | None = None
    method: str | None = None
    description: str | None = None
    is_paid: bool | None = None
    invoice_no: str | None = None


class ItemReadBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    parent_id: UUID
    parent_type: ParentType | str
    pipeline_ref: str
    currency: Currency | str
    created_at: datetime
    updated_at: datetime


class PricedItemRead(ItemReadBase):
    catalog_id: str
    erp_id: str
    name: str
    description: str
    qty: Decimal
    unit: str
    purchase_price: Decimal
    price: Decimal
    vat_rate: Decimal
    discount_rate: Decimal
    sub_total: Decimal
    discount_total: Decimal
    tax_total: Decimal
    grand_total: Decimal


class ProductRead(PricedItemRead):
    pass


class LicenseRead(PricedItemRead):
    pid: str
    type: str


class RentalRead(PricedItemRead):
    pid: str
    type: str
    yearly: bool
    rent_period: int | None


class PaymentRead(ItemReadBase):
    amount: Decimal
    payment_date: date | None
    method: str
    description: str
    is_paid: bool
    invoice_no: str


class PipelineItemsPayload(BaseModel):
    """Item arrays carried by a parent write.

    A key that was sent, even as ``[]`` or ``null``, replaces that item set; a
    key that was not sent leaves it untouched. Use ``model_fields_set`` to tell
    the two apart.
    """

    products: list[ProductWrite] | None = None
    licenses: list[LicenseWrite] | None = None
    rentals: list[RentalWrite] | None = None
    payments: list[PaymentWrite] | None = None


class PipelineItems(BaseModel):
    products: list[ProductRead] = Field(default_factory=list)
    licenses: list[LicenseRead] = Field(default_factory=list)
    rentals: list[RentalRead] = Field(default_factory=list)
    payments: list[PaymentRead] = Field(default_factory=list)


class DeletedItems(BaseModel):
    deleted_products: int = 0
    deleted_licenses: int = 0
    deleted_rentals: int = 0
    deleted_payments: int = 0


class SaleItemTotals(BaseModel):
    products: Decimal = Decimal("0")
    licenses: Decimal = Decimal("0")
    rentals: Decimal = Decimal("0")
    payments: Decimal = Decimal("0")


class CurrencyTotals(BaseModel):
    currency: str
    sub_total: Decimal = Decimal("0")
    discount_total: Decimal = Decimal("0")
    tax_total: Decimal = Decimal("0")
    grand_total: Decimal = Decimal("0")


class PipelineTotals(BaseModel):
    currencies: list[CurrencyTotals] = Field(default_factory=list)
    overall_sub_total: Decimal = Decimal("0")
    overall_discount_total: Decimal = Decimal("0")
    overall_tax_total: Decimal = Decimal("0")
    overall_grand_total: Decimal = Decimal("0")


class StageHistoryEntry(BaseModel):
    from_status: str
    to_status: str
    changed_by: str
    changed_at: datetime
    duration_in_stage: int


class ConversionInfo(BaseModel):
    sale_id: UUID | None = None
    converted: bool = False
    converted_by: str = ""
    converted_by_name: str = ""
    converted_at: datetime | None = None


class LeadActivityCreate(BaseModel):
    type: str = Field(min_length=1, max_length=32)
    description: str = ""


class LeadActivity(LeadActivityCreate):
    user_id: str
    user_name: str
    created_at: datetime


class LeadCreate(BaseModel):
    customer_id: str | None = None
    contact_name: str = ""
    contact_phone: str = ""
    contact_email: str = ""
    company_name: str = ""
    source: str = ""
    assigned_user_id: str = ""
    assigned_user_name: str = ""
    status: LeadStatus = "new"
    priority: LeadPriority = "medium"
    notes: str = ""
    estimated_value: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    currency: Currency = "tl"
    expected_close_date: date | None = None
    labels: list[str] = Field(default_factory=list)


class LeadUpdate(BaseModel):
    customer_id: str | None = None
    contact_name: str | None = None
    contact_phone: str | None = None
    contact_email: str | None = None
    company_name: str | None = None
    source: str | None = None
    assigned_user_id: str | None = None
    assigned_user_name: str | None = None
    status: LeadStatus | None = None
    priority: LeadPriority | None = None
    notes: str | None = None
    estimated_value: Decimal | None = Field(default=None, ge=Decimal("0"))
    currency: Currency | None = None
    expected_close_date: date | None = None
    labels: list[str] | None = None


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    pipeline_ref: str
    customer_id: str | None
    contact_name: str
    contact_phone: str
    contact_email: str
    company_name: str
    source: str
    assigned_user_id: str
    assigned_user_name: str
    status: LeadStatus | str
    priority: LeadPriority | str
    notes: str
    estimated_value: Decimal
    currency: Currency | str
    expected_close_date: date | None
    labels: list[str]
    stage_history: list[StageHistoryEntry]
    activities: list[LeadActivity]
    created_at: datetime
    updated_at: datetime


class LeadStats(BaseModel):
    total: int
    by_status: dict[str, int]
    open_value: Decimal
    weighted_value: Decimal


class OfferCreate(PipelineItemsPayload):
    pipeline_ref: str | None = None
    lead_id: UUID | None = None
    customer_id: str | None = None
    customer_name: str = ""
    seller_id: str = ""
    seller_name: str = ""
    offer_date: date | None = None
    valid_until: date | None = None
    usd_rate: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    eur_rate: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    status: OfferStatus = "draft"
    offer_note: str = ""
    internal_firm: str = ""
    labels: list[str] = Field(default_factory=list)


class OfferUpdate(PipelineItemsPayload):
    customer_id: str | None = None
    customer_name: str | None = None
    seller_id: str | None = None
    seller_name: str | None = None
    offer_date: date | None = None
    valid_until: date | None = None
    usd_rate: Decimal | None = Field(default=None, ge=Decimal("0"))
    eur_rate: Decimal | None = Field(default=None, ge=Decimal("0"))
    status: OfferStatus | None = None
    offer_note: str | None = None
    internal_firm: str | None = None
    labels: list[str] | None = None


class OfferRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    no: int
    pipeline_ref: str
    lead_id: UUID | None
    customer_id: str | None
    customer_name: str
    seller_id: str
    seller_name: str
    offer_date: date | None
    valid_until: date | None
    usd_rate: Decimal
    eur_rate: Decimal
    status: OfferStatus | str
    conversion_info: ConversionInfo | None
    offer_note: str
    internal_firm: str
    labels: list[str]
    totals: PipelineTotals | None
    stage_history: list[StageHistoryEntry]
    created_at: datetime
    updated_at: datetime


class OfferDetail(OfferRead, PipelineItems):
    pass


class SaleCreate(PipelineItemsPayload):
    pipeline_ref: str | None = None
    offer_id: UUID | None = None
    lead_id: UUID | None = None
    customer_id: str | None = None
    customer_name: str = ""
    seller_id: str = ""
    seller_name: str = ""
    sale_date: date | None = None
    implement_date: date | None = None
    usd_rate: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    eur_rate: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    status: SaleStatus = "pending"
    notes: str = ""
    internal_firm: str = ""
    labels: list[str] = Field(default_factory=list)


class SaleUpdate(PipelineItemsPayload):
    customer_id: str | None = None
    customer_name: str | None = None
    seller_id: str | None = None
    seller_name: str | None = None
    sale_date: date | None = None
    implement_date: date | None = None
    usd_rate: Decimal | None = Field(default=None, ge=Decimal("0"))
    eur_rate: Decimal | None = Field(default=None, ge=Decimal("0"))
    status: SaleStatus | None = None
    notes: str | None = None
    internal_firm: str | None = None
    labels: list[str] | None = None


class SaleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    no: int
    pipeline_ref: str
    offer_id: UUID | None
    lead_id: UUID | None
    customer_id: str | None
    customer_name: str
    seller_id: str
    seller_name: str
    sale_date: date | None
    implement_date: date | None
    usd_rate: Decimal
    eur_rate: Decimal
    status: SaleStatus | str
    approved: bool
    approved_by: str
    approved_by_name: str
    approved_at: datetime | None
    notes: str
    internal_firm: str
    labels: list[str]
    totals: PipelineTotals | None
    stage_history: list[StageHistoryEntry]
    created_at: datetime
    updated_at: datetime


class SaleDetail(SaleRead, PipelineItems):
    pass


class SaleStats(BaseModel):
    total: int
    by_status: dict[str, int]
    start_date: date | None = None
    end_date: date | None = None
    total_sales_amount: Decimal = Decimal("0")
    item_totals: SaleItemTotals = Field(default_factory=SaleItemTotals)
    top_sales: list[SaleRead] = Field(default_factory=list)


class StatusUpdate(BaseModel):
    status: str = Field(min_length=1)


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int


class StalePipelineRecord(BaseModel):
    kind: Literal["lead", "offer"]
    id: UUID
    pipeline_ref: str
    status: str
    updated_at: datetime
