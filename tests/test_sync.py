from __future__ import annotations

import uuid
from collections.abc import Generator
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salespipe.core.config import get_settings
from salespipe.core.database import Base, build_engine
from salespipe.pipeline.errors import InvalidStateError, NotFoundError
from salespipe.pipeline.models import PipelineOffer, PipelineProduct
from salespipe.pipeline.schemas import OfferUpdate, ProductWrite, SaleUpdate
from salespipe.pipeline.sync import pipeline_sync_service


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
def clear_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def seeded_offer(db_session: Session) -> uuid.UUID:
    parent_id = uuid.uuid4()
    pipeline_sync_service.sync_items(
        db_session,
        parent_id,
        "offer",
        "PL-2026-00001",
        OfferUpdate.model_validate(
            {
                "products": [{"name": "Router"}],
                "licenses": [{"name": "Seat"}],
                "rentals": [{"name": "Server"}],
                "payments": [{"amount": "10"}],
            }
        ),
    )
    db_session.commit()
    return parent_id


def _counts(db_session: Session, parent_id: uuid.UUID) -> dict[str, int]:
    items = pipeline_sync_service.get_all_items(db_session, parent_id, "offer")
    return {key: len(value) for key, value in items.model_dump().items()}


def test_only_sent_keys_are_replaced(db_session: Session, seeded_offer: uuid.UUID) -> None:
    result = pipeline_sync_service.sync_items(
        db_session,
        seeded_offer,
        "offer",
        "PL-2026-00001",
        OfferUpdate.model_validate({"products": [{"name": "Switch"}, {"name": "Firewall"}]}),
    )

    assert list(result) == ["products"]
    assert _counts(db_session, seeded_offer) == {"products": 2, "licenses": 1, "rentals": 1, "payments": 1}


def test_explicit_null_and_empty_list_clear(db_session: Session, seeded_offer: uuid.UUID) -> None:
    pipeline_sync_service.sync_items(
        db_session,
        seeded_offer,
        "offer",
        "PL-2026-00001",
        OfferUpdate.model_validate({"licenses": None, "rentals": []}),
    )

    assert _counts(db_session, seeded_offer) == {"products": 1, "licenses": 0, "rentals": 0, "payments": 1}


def test_payload_without_item_keys_touches_nothing(db_session: Session, seeded_offer: uuid.UUID) -> None:
    result = pipeline_sync_service.sync_items(
        db_session,
        seeded_offer,
        "offer",
        "PL-2026-00001",
        OfferUpdate.model_validate({"offer_note": "no item changes"}),
    )

    assert result == {}
    assert _counts(db_session, seeded_offer) == {"products": 1, "licenses": 1, "rentals": 1, "payments": 1}


def test_delete_all_items_reports_per_type(db_session: Session, seeded_offer: uuid.UUID) -> None:
    deleted = pipeline_sync_service.delete_all_items(db_session, seeded_offer, "offer")

    assert deleted.model_dump() == {
        "deleted_products": 1,
        "deleted_licenses": 1,
        "deleted_rentals": 1,
        "deleted_payments": 1,
    }
    assert _counts(db_session, seeded_offer) == {"products": 0, "licenses": 0, "rentals": 0, "payments": 0}


def test_clone_all_items_moves_every_type(db_session: Session, seeded_offer: uuid.UUID) -> None:
    sale_id = uuid.uuid4()

    cloned = pipeline_sync_service.clone_all_items(db_session, seeded_offer, "offer", sale_id, "sale", "PL-2026-00001")

    assert {key: len(value) for key, value in cloned.model_dump().items()} == {
        "products": 1,
        "licenses": 1,
        "rentals": 1,
        "payments": 1,
    }
    assert all(row.parent_id == sale_id for row in cloned.products)


def test_aggregate_sale_totals_per_item_type(db_session: Session) -> None:
    sale_id = uuid.uuid4()
    pipeline_sync_service.sync_items(
        db_session,
        sale_id,
        "sale",
        "PL-2026-00002",
        SaleUpdate.model_validate(
            {
                "products": [{"name": "Router", "grand_total": "120"}],
                "payments": [{"amount": "80"}, {"amount": "20"}],
            }
        ),
    )

    totals = pipeline_sync_service.aggregate_sale_totals(db_session, [sale_id])

    assert totals.products == Decimal("120")
    assert totals.licenses == Decimal("0")
    assert totals.payments == Decimal("100")


def test_unknown_item_type_is_rejected() -> None:
    with pytest.raises(InvalidStateError):
        pipeline_sync_service.store_for("widgets")


def test_create_item_takes_the_parent_ref(db_session: Session) -> None:
    offer = PipelineOffer(no=1, pipeline_ref="PL-2026-00007")
    db_session.add(offer)
    db_session.commit()

    row = pipeline_sync_service.create_item(
        db_session,
        "products",
        ProductWrite(parent_id=offer.id, parent_type="offer", pipeline_ref="PL-1999-99999", name="Router"),
    )

    assert row.parent_id == offer.id
    assert row.pipeline_ref == "PL-2026-00007"


def test_create_item_rejects_a_missing_parent(db_session: Session) -> None:
    with pytest.raises(NotFoundError):
        pipeline_sync_service.create_item(
            db_session,
            "products",
            ProductWrite(parent_id=uuid.uuid4(), parent_type="offer", name="Orphan"),
        )

    assert db_session.query(PipelineProduct).count() == 0


def test_create_item_requires_parent_fields(db_session: Session) -> None:
    with pytest.raises(InvalidStateError):
        pipeline_sync_service.create_item(db_session, "products", ProductWrite(name="Orphan"))
