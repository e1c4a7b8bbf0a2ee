from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace
from sqlalchemy.orm import Session

from salespipe import events
from salespipe.core.auth import AuthUser
from salespipe.metrics import observe_conversion
from salespipe.pipeline.customers import CustomerClient, StubCustomerClient
from salespipe.pipeline.errors import InvalidStateError
from salespipe.pipeline.leads import LeadService, lead_service
from salespipe.pipeline.offers import OfferService, is_converted, offer_service
from salespipe.pipeline.sales import SaleService, sale_service
from salespipe.pipeline.schemas import (
    ITEM_KEYS,
    LeadRead,
    OfferCreate,
    OfferDetail,
    OfferUpdate,
    SaleCreate,
    SaleDetail,
    SaleUpdate,
)


logger = logging.getLogger("salespipe.pipeline")
tracer = trace.get_tracer(__name__)


@contextmanager
def _atomic(session: Session) -> Iterator[None]:
    try:
        yield
        session.commit()
    except Exception:
        session.rollback()
        raise


@dataclass(slots=True)
class ConversionEngine:
    """Lead → Offer → Sale promotion and its reversal.

    Each operation validates the source record, writes the downstream record
    with its items, and stamps the source, all in one transaction. Events and
    metrics are emitted only after the commit succeeds.
    """

    leads: LeadService = field(default_factory=lambda: lead_service)
    offers: OfferService = field(default_factory=lambda: offer_service)
    sales: SaleService = field(default_factory=lambda: sale_service)
    customers: CustomerClient = field(default_factory=StubCustomerClient)

    def _emit(self, kind: str, event_type: str, actor: AuthUser, payload: dict[str, Any]) -> None:
        observe_conversion(kind)
        events.publish(event_type, payload, actor_user_id=actor.sub)
        logger.info(
            f"conversion.{kind}",
            extra={
                "event_type": event_type,
                "parent_id": payload.get("target_id"),
                "pipeline_ref": payload.get("pipeline_ref"),
            },
        )

    def convert_from_lead(
        self,
        session: Session,
        actor: AuthUser,
        lead_id: uuid.UUID,
        extra: OfferUpdate | None = None,
    ) -> OfferDetail:
        with tracer.start_as_current_span("pipeline.convert_from_lead") as span:
            span.set_attribute("pipeline.lead_id", str(lead_id))
            with _atomic(session):
                lead = self.leads.get_for_conversion(session, lead_id)
                customer_id = lead.customer_id
                customer_name = lead.company_name or lead.contact_name
                if not customer_id:
                    prospect = self.customers.create(
                        session,
                        {
                            "type": "prospect",
                            "name": lead.contact_name,
                            "company_name": lead.company_name,
                            "phone": lead.contact_phone,
                            "email": lead.contact_email,
                        },
                    )
                    customer_id = prospect.id
                    customer_name = prospect.display_name

                offer_data: dict[str, Any] = {
                    "pipeline_ref": lead.pipeline_ref,
                    "lead_id": lead.id,
                    "customer_id": customer_id,
                    "customer_name": customer_name,
                    "offer_note": lead.notes or "",
                }
                if extra is not None:
                    offer_data.update(
                        (key, value)
                        for key, value in extra.model_dump(exclude_unset=True).items()
                        if value is not None or key in ITEM_KEYS
                    )
                offer = self.offers.create_record(session, OfferCreate.model_validate(offer_data))
                self.leads.mark_as_converted(session, lead, customer_id)
            span.set_attribute("pipeline.offer_id", str(offer.id))

        self._emit(
            "lead_to_offer",
            "pipeline.lead_converted",
            actor,
            {"source_id": str(lead_id), "target_id": str(offer.id), "pipeline_ref": offer.pipeline_ref},
        )
        session.refresh(offer)
        return self.offers.to_detail(session, offer)

    def revert_from_lead(self, session: Session, actor: AuthUser, lead_id: uuid.UUID) -> LeadRead:
        with tracer.start_as_current_span("pipeline.revert_from_lead") as span:
            span.set_attribute("pipeline.lead_id", str(lead_id))
            with _atomic(session):
                lead = self.leads.get_record(session, lead_id)
                if lead.status != "converted":
                    raise InvalidStateError(f"lead {lead_id} has not been converted")
                offer = self.offers.latest_for_lead(session, lead_id)
                offer_id = None
                if offer is not None:
                    if is_converted(offer):
                        raise InvalidStateError(f"offer {offer.id} has already been converted to a sale")
                    offer_id = offer.id
                    self.offers.delete_record(session, offer)
                self.leads.revert_to_qualified(session, lead)

        self._emit(
            "lead_revert",
            "pipeline.lead_conversion_reverted",
            actor,
            {
                "source_id": str(offer_id) if offer_id else None,
                "target_id": str(lead_id),
                "pipeline_ref": lead.pipeline_ref,
            },
        )
        session.refresh(lead)
        return LeadRead.model_validate(lead)

    def convert_from_offer(
        self,
        session: Session,
        actor: AuthUser,
        offer_id: uuid.UUID,
        extra: SaleUpdate | None = None,
    ) -> SaleDetail:
        with tracer.start_as_current_span("pipeline.convert_from_offer") as span:
            span.set_attribute("pipeline.offer_id", str(offer_id))
            with _atomic(session):
                offer = self.offers.get_for_conversion(session, offer_id)
                sale_data: dict[str, Any] = {
                    "pipeline_ref": offer.pipeline_ref,
                    "offer_id": offer.id,
                    "lead_id": offer.lead_id,
                    "customer_id": offer.customer_id,
                    "customer_name": offer.customer_name,
                    "seller_id": offer.seller_id,
                    "seller_name": offer.seller_name,
                    "usd_rate": offer.usd_rate,
                    "eur_rate": offer.eur_rate,
                    "internal_firm": offer.internal_firm,
                    "notes": offer.offer_note or "",
                }
                if extra is not None:
                    # items always come from the offer
                    sale_data.update(
                        (key, value)
                        for key, value in extra.model_dump(exclude_unset=True, exclude=set(ITEM_KEYS)).items()
                        if value is not None
                    )
                sale = self.sales.create_record(session, SaleCreate.model_validate(sale_data))
                self.sales.sync.clone_all_items(session, offer.id, "offer", sale.id, "sale", sale.pipeline_ref)
                self.sales.store_totals(session, sale)
                self.offers.mark_as_converted(session, offer, sale.id, actor)
            span.set_attribute("pipeline.sale_id", str(sale.id))

        self._emit(
            "offer_to_sale",
            "pipeline.offer_converted",
            actor,
            {"source_id": str(offer_id), "target_id": str(sale.id), "pipeline_ref": sale.pipeline_ref},
        )
        session.refresh(sale)
        return self.sales.to_detail(session, sale)

    def revert_conversion(self, session: Session, actor: AuthUser, offer_id: uuid.UUID) -> OfferDetail:
        with tracer.start_as_current_span("pipeline.revert_conversion") as span:
            span.set_attribute("pipeline.offer_id", str(offer_id))
            with _atomic(session):
                offer = self.offers.get_record(session, offer_id)
                self.offers.revert_conversion_record(session, offer, actor.display_name)

        self._emit(
            "offer_revert",
            "pipeline.offer_conversion_reverted",
            actor,
            {"source_id": None, "target_id": str(offer_id), "pipeline_ref": offer.pipeline_ref},
        )
        session.refresh(offer)
        return self.offers.to_detail(session, offer)

    def revert_from_offer(self, session: Session, actor: AuthUser, sale_id: uuid.UUID) -> OfferDetail:
        with tracer.start_as_current_span("pipeline.revert_from_offer") as span:
            span.set_attribute("pipeline.sale_id", str(sale_id))
            with _atomic(session):
                sale = self.sales.get_record(session, sale_id)
                if sale.offer_id is None:
                    raise InvalidStateError(f"sale {sale_id} was not converted from an offer")
                offer = self.offers.get_record(session, sale.offer_id)
                self.sales.delete_record(session, sale)
                self.offers.revert_conversion_record(session, offer, actor.display_name)

        self._emit(
            "sale_revert",
            "pipeline.sale_conversion_reverted",
            actor,
            {"source_id": str(sale_id), "target_id": str(offer.id), "pipeline_ref": offer.pipeline_ref},
        )
        session.refresh(offer)
        return self.offers.to_detail(session, offer)


conversion_engine = ConversionEngine()
