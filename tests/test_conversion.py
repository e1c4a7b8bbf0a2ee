from __future__ import annotations

import uuid
from collections.abc import Generator
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salespipe import events
from salespipe.core.auth import AuthUser
from salespipe.core.config import get_settings
from salespipe.core.database import Base, build_engine
from salespipe.pipeline.conversion import conversion_engine
from salespipe.pipeline.errors import InvalidStateError, NotFoundError
from salespipe.pipeline.leads import LeadService, lead_service
from salespipe.pipeline.models import (
    PipelineLead,
    PipelineOffer,
    PipelinePayment,
    PipelineProduct,
    PipelineProspect,
    PipelineSale,
)
from salespipe.pipeline.offers import OfferService, offer_service
from salespipe.pipeline.sales import sale_service
from salespipe.pipeline.schemas import LeadCreate, OfferCreate, OfferUpdate, SaleCreate, SaleUpdate


ACTOR = AuthUser(sub="user-7", roles=["user"], name="Deniz Kaya")


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = build_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    events.published_events.clear()
    get_settings.cache_clear()


def _lead(session: Session, **fields: Any) -> uuid.UUID:
    data: dict[str, Any] = {
        "contact_name": "Ece Demir",
        "contact_email": "ece@example.com",
        "company_name": "Demir Lojistik",
        "assigned_user_name": "Lead Owner",
        "status": "qualified",
        "notes": "wants a quote for 20 seats",
    }
    data.update(fields)
    return lead_service.create(session, LeadCreate(**data)).id


def _offer(session: Session, **fields: Any) -> uuid.UUID:
    data: dict[str, Any] = {
        "customer_id": "cust-1",
        "customer_name": "Acme",
        "seller_id": "seller-1",
        "seller_name": "Seller One",
        "usd_rate": Decimal("32.5"),
        "status": "approved",
        "offer_note": "annual renewal",
        "products": [
            {"name": "Router", "qty": "2", "price": "100", "discount_rate": "10", "vat_rate": "20", "currency": "usd"}
        ],
        "rentals": [{"name": "Server", "price": "200", "discount_rate": "10", "vat_rate": "20", "rent_period": 6}],
        "payments": [{"amount": "500", "is_paid": True}],
    }
    data.update(fields)
    return offer_service.create(session, OfferCreate.model_validate(data)).id


def _event_types() -> list[str]:
    return [envelope["event_type"] for envelope in events.published_events]


def _count(session: Session, model: type) -> int:
    return session.scalar(select(func.count()).select_from(model)) or 0


# lead -> offer


def test_convert_lead_without_customer_creates_prospect(db_session: Session) -> None:
    lead_id = _lead(db_session)

    offer = conversion_engine.convert_from_lead(db_session, ACTOR, lead_id)

    prospect = db_session.scalars(select(PipelineProspect)).one()
    assert prospect.type == "prospect"
    assert prospect.name == "Ece Demir"
    assert prospect.company_name == "Demir Lojistik"
    assert prospect.email == "ece@example.com"

    lead = db_session.get(PipelineLead, lead_id)
    assert lead.status == "converted"
    assert lead.customer_id == str(prospect.id)

    assert offer.customer_id == str(prospect.id)
    assert offer.customer_name == "Demir Lojistik"
    assert offer.lead_id == lead_id
    assert offer.pipeline_ref == lead.pipeline_ref
    assert offer.offer_note == "wants a quote for 20 seats"
    assert offer.status == "draft"
    assert offer.no == 1


def test_convert_lead_with_customer_skips_prospect(db_session: Session) -> None:
    lead_id = _lead(db_session, customer_id="cust-42")

    offer = conversion_engine.convert_from_lead(db_session, ACTOR, lead_id)

    assert offer.customer_id == "cust-42"
    assert _count(db_session, PipelineProspect) == 0


def test_convert_lead_applies_extra_fields_and_items(db_session: Session) -> None:
    lead_id = _lead(db_session, customer_id="cust-42")
    extra = OfferUpdate.model_validate(
        {
            "seller_name": "Seller One",
            "offer_note": None,
            "products": [{"name": "Router", "price": "100"}],
        }
    )

    offer = conversion_engine.convert_from_lead(db_session, ACTOR, lead_id, extra)

    assert offer.seller_name == "Seller One"
    assert offer.offer_note == "wants a quote for 20 seats"
    assert [item.name for item in offer.products] == ["Router"]
    assert offer.products[0].pipeline_ref == offer.pipeline_ref


def test_convert_lead_records_stage_history(db_session: Session) -> None:
    lead_id = _lead(db_session, customer_id="cust-42")

    conversion_engine.convert_from_lead(db_session, ACTOR, lead_id)

    lead = db_session.get(PipelineLead, lead_id)
    assert lead.stage_history[-1]["from_status"] == "qualified"
    assert lead.stage_history[-1]["to_status"] == "converted"
    assert lead.stage_history[-1]["changed_by"] == "Lead Owner"
    assert lead.stage_history[-1]["duration_in_stage"] >= 0


def test_lost_lead_cannot_be_converted(db_session: Session) -> None:
    lead_id = _lead(db_session, status="lost")

    with pytest.raises(InvalidStateError):
        conversion_engine.convert_from_lead(db_session, ACTOR, lead_id)

    assert _count(db_session, PipelineOffer) == 0
    assert events.published_events == []


def test_lead_cannot_be_converted_twice(db_session: Session) -> None:
    lead_id = _lead(db_session, customer_id="cust-42")
    conversion_engine.convert_from_lead(db_session, ACTOR, lead_id)

    with pytest.raises(InvalidStateError):
        conversion_engine.convert_from_lead(db_session, ACTOR, lead_id)

    assert _count(db_session, PipelineOffer) == 1


def test_convert_unknown_lead_raises_not_found(db_session: Session) -> None:
    with pytest.raises(NotFoundError):
        conversion_engine.convert_from_lead(db_session, ACTOR, uuid.uuid4())


def test_convert_lead_publishes_event(db_session: Session) -> None:
    lead_id = _lead(db_session, customer_id="cust-42")

    offer = conversion_engine.convert_from_lead(db_session, ACTOR, lead_id)

    assert _event_types() == ["pipeline.lead_converted"]
    envelope = events.published_events[0]
    assert envelope["actor_user_id"] == "user-7"
    assert envelope["payload"] == {
        "source_id": str(lead_id),
        "target_id": str(offer.id),
        "pipeline_ref": offer.pipeline_ref,
    }


def test_failed_lead_conversion_rolls_everything_back(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    lead_id = _lead(db_session)

    def fail(self: LeadService, session: Session, lead: PipelineLead, customer_id: str | None = None) -> None:
        raise RuntimeError("lead write failed")

    monkeypatch.setattr(LeadService, "mark_as_converted", fail)

    with pytest.raises(RuntimeError):
        conversion_engine.convert_from_lead(db_session, ACTOR, lead_id, OfferUpdate(products=[{"name": "Router"}]))

    assert _count(db_session, PipelineOffer) == 0
    assert _count(db_session, PipelineProduct) == 0
    assert _count(db_session, PipelineProspect) == 0
    assert db_session.get(PipelineLead, lead_id).status == "qualified"
    assert events.published_events == []

    monkeypatch.undo()
    offer = conversion_engine.convert_from_lead(db_session, ACTOR, lead_id)
    assert offer.no == 1


def test_revert_from_lead_removes_offer_and_items(db_session: Session) -> None:
    lead_id = _lead(db_session, customer_id="cust-42")
    offer = conversion_engine.convert_from_lead(
        db_session, ACTOR, lead_id, OfferUpdate(products=[{"name": "Router"}])
    )

    lead = conversion_engine.revert_from_lead(db_session, ACTOR, lead_id)

    assert lead.status == "qualified"
    assert [entry.to_status for entry in lead.stage_history][-2:] == ["converted", "qualified"]
    assert db_session.get(PipelineOffer, offer.id) is None
    assert _count(db_session, PipelineProduct) == 0
    assert _event_types()[-1] == "pipeline.lead_conversion_reverted"


def test_revert_from_lead_without_offer_restores_lead(db_session: Session) -> None:
    lead_id = _lead(db_session, customer_id="cust-42")
    offer = conversion_engine.convert_from_lead(db_session, ACTOR, lead_id)
    offer_service.remove(db_session, offer.id)

    lead = conversion_engine.revert_from_lead(db_session, ACTOR, lead_id)

    assert lead.status == "qualified"


def test_revert_from_unconverted_lead_is_rejected(db_session: Session) -> None:
    lead_id = _lead(db_session)

    with pytest.raises(InvalidStateError):
        conversion_engine.revert_from_lead(db_session, ACTOR, lead_id)


def test_revert_from_lead_blocked_once_offer_became_sale(db_session: Session) -> None:
    lead_id = _lead(db_session, customer_id="cust-42")
    offer = conversion_engine.convert_from_lead(db_session, ACTOR, lead_id)
    conversion_engine.convert_from_offer(db_session, ACTOR, offer.id)

    with pytest.raises(InvalidStateError):
        conversion_engine.revert_from_lead(db_session, ACTOR, lead_id)

    assert db_session.get(PipelineOffer, offer.id) is not None
    assert db_session.get(PipelineLead, lead_id).status == "converted"


# offer -> sale


def test_convert_offer_clones_items_and_stamps_offer(db_session: Session) -> None:
    offer_id = _offer(db_session)

    sale = conversion_engine.convert_from_offer(db_session, ACTOR, offer_id)

    assert sale.offer_id == offer_id
    assert sale.customer_id == "cust-1"
    assert sale.seller_name == "Seller One"
    assert sale.usd_rate == Decimal("32.5")
    assert sale.notes == "annual renewal"
    assert sale.status == "pending"
    assert sale.approved is False
    assert [item.name for item in sale.products] == ["Router"]
    assert [item.name for item in sale.rentals] == ["Server"]
    assert sale.payments[0].is_paid is False
    assert all(item.parent_type == "sale" for item in [*sale.products, *sale.rentals, *sale.payments])

    assert sale.totals is not None
    by_currency = {bucket.currency: bucket for bucket in sale.totals.currencies}
    assert by_currency["usd"].grand_total == Decimal("216")
    assert by_currency["tl"].grand_total == Decimal("1296")

    offer = db_session.get(PipelineOffer, offer_id)
    assert offer.status == "converted"
    assert offer.conversion_info["converted"] is True
    assert offer.conversion_info["sale_id"] == str(sale.id)
    assert offer.conversion_info["converted_by"] == "user-7"
    assert offer.conversion_info["converted_by_name"] == "Deniz Kaya"
    assert offer.stage_history[-1]["to_status"] == "converted"
    assert offer.stage_history[-1]["changed_by"] == "Deniz Kaya"

    offer_items = db_session.scalars(select(PipelinePayment).where(PipelinePayment.parent_type == "offer")).all()
    assert [item.is_paid for item in offer_items] == [True]


def test_convert_offer_keeps_pipeline_ref_from_lead(db_session: Session) -> None:
    lead_id = _lead(db_session, customer_id="cust-42")
    offer = conversion_engine.convert_from_lead(db_session, ACTOR, lead_id)

    sale = conversion_engine.convert_from_offer(db_session, ACTOR, offer.id)

    assert sale.pipeline_ref == offer.pipeline_ref
    assert sale.lead_id == lead_id


def test_convert_offer_extra_fields_cannot_replace_items(db_session: Session) -> None:
    offer_id = _offer(db_session)
    extra = SaleUpdate.model_validate({"implement_date": "2026-11-01", "products": [], "notes": "rush"})

    sale = conversion_engine.convert_from_offer(db_session, ACTOR, offer_id, extra)

    assert str(sale.implement_date) == "2026-11-01"
    assert sale.notes == "rush"
    assert len(sale.products) == 1


def test_offer_cannot_be_converted_twice(db_session: Session) -> None:
    offer_id = _offer(db_session)
    conversion_engine.convert_from_offer(db_session, ACTOR, offer_id)

    with pytest.raises(InvalidStateError):
        conversion_engine.convert_from_offer(db_session, ACTOR, offer_id)

    assert _count(db_session, PipelineSale) == 1


def test_offer_with_converted_status_is_not_converted_again(db_session: Session) -> None:
    offer_id = _offer(db_session)
    offer = db_session.get(PipelineOffer, offer_id)
    offer.status = "converted"
    db_session.commit()
    assert offer.conversion_info is None

    with pytest.raises(InvalidStateError):
        conversion_engine.convert_from_offer(db_session, ACTOR, offer_id)

    assert _count(db_session, PipelineSale) == 0


def test_failed_offer_conversion_leaves_no_sale(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    offer_id = _offer(db_session)

    def fail(self: OfferService, session: Session, offer: PipelineOffer, sale_id: uuid.UUID, actor: AuthUser) -> None:
        raise RuntimeError("offer write failed")

    monkeypatch.setattr(OfferService, "mark_as_converted", fail)

    with pytest.raises(RuntimeError):
        conversion_engine.convert_from_offer(db_session, ACTOR, offer_id)

    assert _count(db_session, PipelineSale) == 0
    assert db_session.scalars(select(PipelineProduct).where(PipelineProduct.parent_type == "sale")).all() == []
    offer = db_session.get(PipelineOffer, offer_id)
    assert offer.status == "approved"
    assert offer.conversion_info is None
    assert events.published_events == []


def test_revert_conversion_restores_offer_and_keeps_sale(db_session: Session) -> None:
    offer_id = _offer(db_session)
    sale = conversion_engine.convert_from_offer(db_session, ACTOR, offer_id)

    offer = conversion_engine.revert_conversion(db_session, ACTOR, offer_id)

    assert offer.status == "approved"
    assert offer.conversion_info is None
    assert db_session.get(PipelineSale, sale.id) is not None
    assert _event_types()[-1] == "pipeline.offer_conversion_reverted"


def test_revert_conversion_requires_converted_offer(db_session: Session) -> None:
    offer_id = _offer(db_session)

    with pytest.raises(InvalidStateError):
        conversion_engine.revert_conversion(db_session, ACTOR, offer_id)


def test_revert_from_offer_deletes_sale_and_items(db_session: Session) -> None:
    offer_id = _offer(db_session)
    sale = conversion_engine.convert_from_offer(db_session, ACTOR, offer_id)

    offer = conversion_engine.revert_from_offer(db_session, ACTOR, sale.id)

    assert offer.id == offer_id
    assert offer.status == "approved"
    assert offer.conversion_info is None
    assert len(offer.products) == 1
    assert db_session.get(PipelineSale, sale.id) is None
    assert db_session.scalars(select(PipelineProduct).where(PipelineProduct.parent_type == "sale")).all() == []
    assert _event_types() == ["pipeline.offer_converted", "pipeline.sale_conversion_reverted"]


def test_offer_can_be_converted_again_after_revert(db_session: Session) -> None:
    offer_id = _offer(db_session)
    first = conversion_engine.convert_from_offer(db_session, ACTOR, offer_id)
    conversion_engine.revert_from_offer(db_session, ACTOR, first.id)

    second = conversion_engine.convert_from_offer(db_session, ACTOR, offer_id)

    assert second.id != first.id
    assert second.no == 2


def test_revert_from_offer_requires_source_offer(db_session: Session) -> None:
    sale = sale_service.create(db_session, SaleCreate(customer_name="Direct"))

    with pytest.raises(InvalidStateError):
        conversion_engine.revert_from_offer(db_session, ACTOR, sale.id)
