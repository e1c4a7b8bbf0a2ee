from __future__ import annotations

import uuid
from datetime import date
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Response, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from salespipe.core.auth import AuthUser, get_current_user
from salespipe.core.database import get_db
from salespipe.pipeline.conversion import conversion_engine
from salespipe.pipeline.leads import lead_service
from salespipe.pipeline.offers import offer_service
from salespipe.pipeline.parents import DEFAULT_PAGE_LIMIT, ParentService
from salespipe.pipeline.sales import sale_service
from salespipe.pipeline.schemas import (
    DeletedItems,
    ItemType,
    LeadActivityCreate,
    LeadCreate,
    LeadRead,
    LeadStats,
    LeadUpdate,
    LicenseRead,
    LicenseWrite,
    OfferCreate,
    OfferDetail,
    OfferRead,
    OfferUpdate,
    Page,
    ParentType,
    PaymentRead,
    PaymentWrite,
    PipelineItems,
    PipelineItemsPayload,
    PipelineTotals,
    ProductRead,
    ProductWrite,
    RentalRead,
    RentalWrite,
    SaleCreate,
    SaleDetail,
    SaleItemTotals,
    SaleRead,
    SaleStats,
    SaleUpdate,
    StatsPeriod,
    StatusUpdate,
)
from salespipe.pipeline.sync import pipeline_sync_service


leads_router = APIRouter(prefix="/pipeline/leads", tags=["pipeline-leads"])
offers_router = APIRouter(prefix="/pipeline/offers", tags=["pipeline-offers"])
sales_router = APIRouter(prefix="/pipeline/sales", tags=["pipeline-sales"])
items_router = APIRouter(prefix="/pipeline/items", tags=["pipeline-items"])

_ITEM_SCHEMAS: dict[str, tuple[type[BaseModel], type[BaseModel]]] = {
    "products": (ProductWrite, ProductRead),
    "licenses": (LicenseWrite, LicenseRead),
    "rentals": (RentalWrite, RentalRead),
    "payments": (PaymentWrite, PaymentRead),
}

_PARENT_SERVICES: dict[str, ParentService] = {"offer": offer_service, "sale": sale_service}


def _validate_item(item_type: str, payload: dict[str, Any]) -> BaseModel:
    write_schema, _ = _ITEM_SCHEMAS[item_type]
    try:
        return write_schema.model_validate(payload)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc


# leads


@leads_router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(payload: LeadCreate, db: Session = Depends(get_db)) -> LeadRead:
    return lead_service.create(db, payload)


@leads_router.get("", response_model=Page[LeadRead])
def list_leads(
    status_value: str | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_LIMIT, ge=1, le=500),
    db: Session = Depends(get_db),
) -> Page[LeadRead]:
    return lead_service.list_records(db, status_value=status_value, search=search, page=page, limit=limit)


@leads_router.get("/stats", response_model=LeadStats)
def lead_stats(db: Session = Depends(get_db)) -> LeadStats:
    return lead_service.stats(db)


@leads_router.get("/{lead_id}", response_model=LeadRead)
def get_lead(lead_id: uuid.UUID, db: Session = Depends(get_db)) -> LeadRead:
    return lead_service.get(db, lead_id)


@leads_router.patch("/{lead_id}", response_model=LeadRead)
def update_lead(
    lead_id: uuid.UUID,
    payload: LeadUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> LeadRead:
    return lead_service.update(db, user, lead_id, payload)


@leads_router.delete("/{lead_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_lead(lead_id: uuid.UUID, db: Session = Depends(get_db)) -> Response:
    lead_service.remove(db, lead_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@leads_router.post("/{lead_id}/activities", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def add_lead_activity(
    lead_id: uuid.UUID,
    payload: LeadActivityCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> LeadRead:
    return lead_service.add_activity(db, user, lead_id, payload)


@leads_router.post("/{lead_id}/convert", response_model=OfferDetail, status_code=status.HTTP_201_CREATED)
def convert_lead(
    lead_id: uuid.UUID,
    payload: OfferUpdate | None = Body(default=None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> OfferDetail:
    return conversion_engine.convert_from_lead(db, user, lead_id, payload)


@leads_router.post("/{lead_id}/revert", response_model=LeadRead)
def revert_lead(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> LeadRead:
    return conversion_engine.revert_from_lead(db, user, lead_id)


# offers


@offers_router.post("", response_model=OfferDetail, status_code=status.HTTP_201_CREATED)
def create_offer(payload: OfferCreate, db: Session = Depends(get_db)) -> OfferDetail:
    return offer_service.create(db, payload)


@offers_router.get("", response_model=Page[OfferRead])
def list_offers(
    status_value: str | None = Query(default=None, alias="status"),
    customer_id: str | None = Query(default=None),
    seller_id: str | None = Query(default=None),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_LIMIT, ge=1, le=500),
    db: Session = Depends(get_db),
) -> Page[OfferRead]:
    return offer_service.list_records(
        db,
        status_value=status_value,
        customer_id=customer_id,
        seller_id=seller_id,
        search=search,
        page=page,
        limit=limit,
    )


@offers_router.get("/{offer_id}", response_model=OfferDetail)
def get_offer(offer_id: uuid.UUID, db: Session = Depends(get_db)) -> OfferDetail:
    return offer_service.get(db, offer_id)


@offers_router.patch("/{offer_id}", response_model=OfferDetail)
def update_offer(
    offer_id: uuid.UUID,
    payload: OfferUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> OfferDetail:
    return offer_service.update(db, user, offer_id, payload)


@offers_router.patch("/{offer_id}/status", response_model=OfferRead)
def update_offer_status(
    offer_id: uuid.UUID,
    payload: StatusUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> OfferRead:
    return offer_service.update_status(db, user, offer_id, payload.status)


@offers_router.delete("/{offer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_offer(offer_id: uuid.UUID, db: Session = Depends(get_db)) -> Response:
    offer_service.remove(db, offer_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@offers_router.post("/{offer_id}/calculate", response_model=PipelineTotals)
def calculate_offer(offer_id: uuid.UUID, db: Session = Depends(get_db)) -> PipelineTotals:
    return offer_service.calculate(db, offer_id)


@offers_router.post("/{offer_id}/convert", response_model=SaleDetail, status_code=status.HTTP_201_CREATED)
def convert_offer(
    offer_id: uuid.UUID,
    payload: SaleUpdate | None = Body(default=None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> SaleDetail:
    return conversion_engine.convert_from_offer(db, user, offer_id, payload)


@offers_router.post("/{offer_id}/revert", response_model=OfferDetail)
def revert_offer(
    offer_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> OfferDetail:
    return conversion_engine.revert_conversion(db, user, offer_id)


# sales


@sales_router.post("", response_model=SaleDetail, status_code=status.HTTP_201_CREATED)
def create_sale(payload: SaleCreate, db: Session = Depends(get_db)) -> SaleDetail:
    return sale_service.create(db, payload)


@sales_router.get("", response_model=Page[SaleRead])
def list_sales(
    status_value: str | None = Query(default=None, alias="status"),
    customer_id: str | None = Query(default=None),
    seller_id: str | None = Query(default=None),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_LIMIT, ge=1, le=500),
    db: Session = Depends(get_db),
) -> Page[SaleRead]:
    return sale_service.list_records(
        db,
        status_value=status_value,
        customer_id=customer_id,
        seller_id=seller_id,
        search=search,
        page=page,
        limit=limit,
    )


@sales_router.get("/stats", response_model=SaleStats)
def sale_stats(
    period: StatsPeriod | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
) -> SaleStats:
    return sale_service.stats(db, period=period, start_date=start_date, end_date=end_date)


@sales_router.get("/item-totals", response_model=SaleItemTotals)
def sale_item_totals(
    sale_id: list[uuid.UUID] = Query(default=[]),
    db: Session = Depends(get_db),
) -> SaleItemTotals:
    return pipeline_sync_service.aggregate_sale_totals(db, sale_id)


@sales_router.get("/{sale_id}", response_model=SaleDetail)
def get_sale(sale_id: uuid.UUID, db: Session = Depends(get_db)) -> SaleDetail:
    return sale_service.get(db, sale_id)


@sales_router.patch("/{sale_id}", response_model=SaleDetail)
def update_sale(
    sale_id: uuid.UUID,
    payload: SaleUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> SaleDetail:
    return sale_service.update(db, user, sale_id, payload)


@sales_router.patch("/{sale_id}/status", response_model=SaleRead)
def update_sale_status(
    sale_id: uuid.UUID,
    payload: StatusUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> SaleRead:
    return sale_service.update_status(db, user, sale_id, payload.status)


@sales_router.delete("/{sale_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_sale(sale_id: uuid.UUID, db: Session = Depends(get_db)) -> Response:
    sale_service.remove(db, sale_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@sales_router.post("/{sale_id}/calculate", response_model=PipelineTotals)
def calculate_sale(sale_id: uuid.UUID, db: Session = Depends(get_db)) -> PipelineTotals:
    return sale_service.calculate(db, sale_id)


@sales_router.post("/{sale_id}/approve", response_model=SaleRead)
def approve_sale(
    sale_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> SaleRead:
    return sale_service.approve(db, user, sale_id)


@sales_router.post("/{sale_id}/revert", response_model=OfferDetail)
def revert_sale(
    sale_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> OfferDetail:
    return conversion_engine.revert_from_offer(db, user, sale_id)


# items


@items_router.get("/by-parent/{parent_type}/{parent_id}", response_model=PipelineItems)
def get_parent_items(parent_type: ParentType, parent_id: uuid.UUID, db: Session = Depends(get_db)) -> PipelineItems:
    return pipeline_sync_service.get_all_items(db, parent_id, parent_type)


@items_router.put("/by-parent/{parent_type}/{parent_id}", response_model=PipelineItems)
def sync_parent_items(
    parent_type: ParentType,
    parent_id: uuid.UUID,
    payload: PipelineItemsPayload,
    db: Session = Depends(get_db),
) -> PipelineItems:
    parent = _PARENT_SERVICES[parent_type].get_record(db, parent_id)
    pipeline_sync_service.sync_items(db, parent_id, parent_type, parent.pipeline_ref, payload)
    db.commit()
    return pipeline_sync_service.get_all_items(db, parent_id, parent_type)


@items_router.delete("/by-parent/{parent_type}/{parent_id}", response_model=DeletedItems)
def delete_parent_items(parent_type: ParentType, parent_id: uuid.UUID, db: Session = Depends(get_db)) -> DeletedItems:
    deleted = pipeline_sync_service.delete_all_items(db, parent_id, parent_type)
    db.commit()
    return deleted


@items_router.post("/{item_type}", status_code=status.HTTP_201_CREATED)
def create_item(item_type: ItemType, payload: dict[str, Any] = Body(...), db: Session = Depends(get_db)) -> Any:
    row = pipeline_sync_service.create_item(db, item_type, _validate_item(item_type, payload))
    return _ITEM_SCHEMAS[item_type][1].model_validate(row)


@items_router.get("/{item_type}/{item_id}")
def get_item(item_type: ItemType, item_id: uuid.UUID, db: Session = Depends(get_db)) -> Any:
    row = pipeline_sync_service.store_for(item_type).get(db, item_id)
    return _ITEM_SCHEMAS[item_type][1].model_validate(row)


@items_router.patch("/{item_type}/{item_id}")
def update_item(
    item_type: ItemType,
    item_id: uuid.UUID,
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
) -> Any:
    row = pipeline_sync_service.update_item(db, item_type, item_id, _validate_item(item_type, payload))
    return _ITEM_SCHEMAS[item_type][1].model_validate(row)


@items_router.delete("/{item_type}/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_item(item_type: ItemType, item_id: uuid.UUID, db: Session = Depends(get_db)) -> Response:
    pipeline_sync_service.remove_item(db, item_type, item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
