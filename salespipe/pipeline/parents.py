from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, ClassVar

from pydantic import BaseModel
from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session

from salespipe.core.auth import AuthUser
from salespipe.pipeline.calculator import TotalsCalculator, totals_calculator
from salespipe.pipeline.counter import generate_pipeline_ref, insert_with_sequence
from salespipe.pipeline.errors import InvalidStateError, NotFoundError
from salespipe.pipeline.history import change_status
from salespipe.pipeline.schemas import ITEM_KEYS, Page, PipelineItemsPayload, PipelineTotals
from salespipe.pipeline.sync import PipelineSyncService, pipeline_sync_service


logger = logging.getLogger("salespipe.pipeline")

DEFAULT_PAGE_LIMIT = 50


@dataclass(slots=True)
class ParentService:
    """Offer and sale documents together with their line items.

    Every public method that writes commits exactly once, so the parent row and
    its item sets land or roll back together.
    """

    sync: PipelineSyncService = field(default_factory=lambda: pipeline_sync_service)
    calculator: TotalsCalculator = field(default_factory=lambda: totals_calculator)

    model: ClassVar[Any] = None
    parent_type: ClassVar[str] = ""
    counter_key: ClassVar[str] = ""
    statuses: ClassVar[frozenset[str]] = frozenset()
    read_schema: ClassVar[Any] = None
    detail_schema: ClassVar[Any] = None
    search_columns: ClassVar[tuple[str, ...]] = ()

    def get_record(self, session: Session, parent_id: uuid.UUID) -> Any:
        record = session.get(self.model, parent_id)
        if record is None:
            raise NotFoundError(f"{self.parent_type} {parent_id} not found")
        return record

    def _check_status(self, status_value: str, current: str | None = None) -> None:
        if status_value not in self.statuses:
            raise InvalidStateError(f"unknown {self.parent_type} status {status_value!r}")
        if status_value == "converted" and current != "converted":
            raise InvalidStateError(f"{self.parent_type} can only become converted through a conversion")

    def _parent_fields(self, payload: BaseModel, **dump: Any) -> dict[str, Any]:
        return payload.model_dump(exclude=set(ITEM_KEYS), **dump)

    def _insert(self, session: Session, data: dict[str, Any]) -> Any:
        pipeline_ref = data.pop("pipeline_ref", None)

        def build(no: int) -> Any:
            return self.model(**data, no=no, pipeline_ref=pipeline_ref or generate_pipeline_ref(session))

        return insert_with_sequence(session, self.model, self.counter_key, build)

    def create_record(self, session: Session, payload: BaseModel) -> Any:
        """Insert the parent and sync any item arrays it carries; flushes only."""
        data = self._parent_fields(payload)
        self._check_status(data["status"])
        record = self._insert(session, data)
        if isinstance(payload, PipelineItemsPayload):
            self.sync.sync_items(session, record.id, self.parent_type, record.pipeline_ref, payload)
        logger.info(
            f"{self.parent_type}.created",
            extra={"parent_id": str(record.id), "parent_type": self.parent_type, "pipeline_ref": record.pipeline_ref},
        )
        return record

    def store_totals(self, session: Session, record: Any) -> PipelineTotals:
        totals = self.calculator.calculate_totals(session, record.id, self.parent_type)
        record.totals = totals.model_dump(mode="json")
        session.flush()
        return totals

    def delete_record(self, session: Session, record: Any) -> None:
        """Delete items first, then the parent; flushes only."""
        deleted = self.sync.delete_all_items(session, record.id, self.parent_type)
        session.delete(record)
        session.flush()
        logger.info(
            f"{self.parent_type}.removed",
            extra={
                "parent_id": str(record.id),
                "parent_type": self.parent_type,
                "pipeline_ref": record.pipeline_ref,
                "count": sum(deleted.model_dump().values()),
            },
        )

    def to_detail(self, session: Session, record: Any) -> Any:
        read = self.read_schema.model_validate(record)
        items = self.sync.get_all_items(session, record.id, self.parent_type)
        return self.detail_schema.model_validate({**read.model_dump(), **items.model_dump()})

    def create(self, session: Session, payload: BaseModel) -> Any:
        record = self.create_record(session, payload)
        session.commit()
        session.refresh(record)
        return self.to_detail(session, record)

    def get(self, session: Session, parent_id: uuid.UUID) -> Any:
        return self.to_detail(session, self.get_record(session, parent_id))

    def _filtered(
        self,
        stmt: Select[Any],
        *,
        status_value: str | None,
        customer_id: str | None,
        seller_id: str | None,
        search: str | None,
    ) -> Select[Any]:
        if status_value and status_value != "all":
            stmt = stmt.where(self.model.status == status_value)
        if customer_id:
            stmt = stmt.where(self.model.customer_id == customer_id)
        if seller_id:
            stmt = stmt.where(self.model.seller_id == seller_id)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(*(getattr(self.model, column).ilike(pattern) for column in self.search_columns)))
        return stmt

    def list_records(
        self,
        session: Session,
        *,
        status_value: str | None = None,
        customer_id: str | None = None,
        seller_id: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> Page[Any]:
        filters = {"status_value": status_value, "customer_id": customer_id, "seller_id": seller_id, "search": search}
        total = session.scalar(self._filtered(select(func.count()).select_from(self.model), **filters)) or 0
        rows = session.scalars(
            self._filtered(select(self.model), **filters)
            .order_by(self.model.created_at.desc(), self.model.no.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return Page[self.read_schema](
            items=[self.read_schema.model_validate(row) for row in rows],
            total=int(total),
            page=page,
            limit=limit,
        )

    def update(self, session: Session, actor: AuthUser, parent_id: uuid.UUID, payload: BaseModel) -> Any:
        record = self.get_record(session, parent_id)
        data = self._parent_fields(payload, exclude_unset=True)
        new_status = data.pop("status", None)
        if new_status is not None:
            self._check_status(new_status, record.status)

        columns = self.model.__table__.c
        for key, value in data.items():
            if value is None and not columns[key].nullable:
                continue
            setattr(record, key, value)
        # status history must be written with the status, in the same flush
        if new_status is not None:
            change_status(record, new_status, actor.display_name)

        if isinstance(payload, PipelineItemsPayload):
            self.sync.sync_items(session, record.id, self.parent_type, record.pipeline_ref, payload)
        session.commit()
        session.refresh(record)
        return self.to_detail(session, record)

    def update_status(self, session: Session, actor: AuthUser, parent_id: uuid.UUID, status_value: str) -> Any:
        record = self.get_record(session, parent_id)
        self._check_status(status_value, record.status)
        change_status(record, status_value, actor.display_name)
        session.commit()
        session.refresh(record)
        return self.read_schema.model_validate(record)

    def remove(self, session: Session, parent_id: uuid.UUID) -> None:
        self.delete_record(session, self.get_record(session, parent_id))
        session.commit()

    def calculate(self, session: Session, parent_id: uuid.UUID) -> PipelineTotals:
        totals = self.store_totals(session, self.get_record(session, parent_id))
        session.commit()
        return totals
