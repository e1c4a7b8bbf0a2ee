from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from salespipe.core.auth import AuthUser
from salespipe.pipeline.counter import OFFER_NO_KEY
from salespipe.pipeline.errors import InvalidStateError
from salespipe.pipeline.history import change_status, utcnow
from salespipe.pipeline.models import PipelineOffer
from salespipe.pipeline.parents import ParentService
from salespipe.pipeline.schemas import ConversionInfo, OfferDetail, OfferRead


OFFER_STATUSES = frozenset({"draft", "sent", "revised", "waiting", "approved", "rejected", "won", "lost", "converted"})


def is_converted(offer: PipelineOffer) -> bool:
    return offer.status == "converted" or bool((offer.conversion_info or {}).get("converted"))


@dataclass(slots=True)
class OfferService(ParentService):
    model = PipelineOffer
    parent_type = "offer"
    counter_key = OFFER_NO_KEY
    statuses = OFFER_STATUSES
    read_schema = OfferRead
    detail_schema = OfferDetail
    search_columns = ("customer_name", "pipeline_ref", "seller_name", "offer_note")

    def latest_for_lead(self, session: Session, lead_id: uuid.UUID) -> PipelineOffer | None:
        return session.scalars(
            select(PipelineOffer)
            .where(PipelineOffer.lead_id == lead_id)
            .order_by(PipelineOffer.created_at.desc(), PipelineOffer.no.desc())
            .limit(1)
        ).first()

    def get_for_conversion(self, session: Session, offer_id: uuid.UUID) -> PipelineOffer:
        offer = self.get_record(session, offer_id)
        if is_converted(offer):
            raise InvalidStateError(f"offer {offer_id} is already converted to a sale")
        return offer

    def mark_as_converted(self, session: Session, offer: PipelineOffer, sale_id: uuid.UUID, actor: AuthUser) -> None:
        change_status(offer, "converted", actor.display_name)
        offer.conversion_info = ConversionInfo(
            sale_id=sale_id,
            converted=True,
            converted_by=actor.sub,
            converted_by_name=actor.display_name,
            converted_at=utcnow(),
        ).model_dump(mode="json")
        session.flush()

    def revert_conversion_record(self, session: Session, offer: PipelineOffer, changed_by: str) -> None:
        if not is_converted(offer):
            raise InvalidStateError(f"offer {offer.id} has not been converted")
        change_status(offer, "approved", changed_by)
        offer.conversion_info = None
        session.flush()


offer_service = OfferService()
