from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import Any

from pydantic import BaseModel
from sqlalchemy import delete, func, inspect, select
from sqlalchemy.orm import Session

from salespipe.core.config import get_settings
from salespipe.metrics import observe_items_synced
from salespipe.pipeline.errors import NotFoundError
from salespipe.pipeline.models import PipelineLicense, PipelinePayment, PipelineProduct, PipelineRental


_IDENTITY_FIELDS = frozenset({"id", "parent_id", "parent_type", "pipeline_ref", "created_at", "updated_at"})

ItemInput = BaseModel | dict[str, Any]


class LineItemStore:
    """Rows of one item type keyed by ``(parent_id, parent_type)``.

    Stores flush but never commit; the calling service owns the transaction.
    """

    model: Any = None
    item_type = ""
    total_column = "grand_total"

    def _column_names(self) -> set[str]:
        return {attr.key for attr in inspect(self.model).column_attrs}

    def _clean(self, item: ItemInput) -> dict[str, Any]:
        raw = item.model_dump(exclude_none=True) if isinstance(item, BaseModel) else dict(item)
        columns = self._column_names()
        return {key: value for key, value in raw.items() if key in columns and key not in _IDENTITY_FIELDS and value is not None}

    def _copy(self, row: Any) -> dict[str, Any]:
        return {key: getattr(row, key) for key in self._column_names() if key not in _IDENTITY_FIELDS}

    def _prepare_clone(self, data: dict[str, Any]) -> dict[str, Any]:
        return data

    def _build(self, data: dict[str, Any], parent_id: uuid.UUID, parent_type: str, pipeline_ref: str) -> Any:
        data.setdefault("currency", get_settings().default_currency)
        return self.model(**data, parent_id=parent_id, parent_type=parent_type, pipeline_ref=pipeline_ref)

    def find_by_parent(self, session: Session, parent_id: uuid.UUID, parent_type: str) -> list[Any]:
        stmt = (
            select(self.model)
            .where(self.model.parent_id == parent_id, self.model.parent_type == parent_type)
            .order_by(self.model.created_at, self.model.id)
        )
        return list(session.scalars(stmt))

    def get(self, session: Session, item_id: uuid.UUID) -> Any:
        row = session.get(self.model, item_id)
        if row is None:
            raise NotFoundError(f"{self.item_type} item {item_id} not found")
        return row

    def create(
        self,
        session: Session,
        parent_id: uuid.UUID,
        parent_type: str,
        pipeline_ref: str,
        item: ItemInput,
    ) -> Any:
        row = self._build(self._clean(item), parent_id, parent_type, pipeline_ref)
        session.add(row)
        session.flush()
        return row

    def update(self, session: Session, item_id: uuid.UUID, patch: ItemInput) -> Any:
        row = self.get(session, item_id)
        for key, value in self._clean(patch).items():
            setattr(row, key, value)
        session.flush()
        return row

    def remove(self, session: Session, item_id: uuid.UUID) -> None:
        row = self.get(session, item_id)
        session.delete(row)
        session.flush()

    def batch_upsert(
        self,
        session: Session,
        parent_id: uuid.UUID,
        parent_type: str,
        pipeline_ref: str,
        items: Sequence[ItemInput] | None,
    ) -> list[Any]:
        """Replace the parent's item set with ``items``; ``None`` or ``[]`` clears it."""
        self.delete_by_parent(session, parent_id, parent_type)
        rows = [self._build(self._clean(item), parent_id, parent_type, pipeline_ref) for item in items or []]
        session.add_all(rows)
        session.flush()
        observe_items_synced(self.item_type, len(rows))
        return rows

    def clone_for_parent(
        self,
        session: Session,
        source_parent_id: uuid.UUID,
        source_type: str,
        target_parent_id: uuid.UUID,
        target_type: str,
        pipeline_ref: str | None = None,
    ) -> list[Any]:
        rows = []
        for source in self.find_by_parent(session, source_parent_id, source_type):
            data = self._prepare_clone(self._copy(source))
            rows.append(self._build(data, target_parent_id, target_type, pipeline_ref or source.pipeline_ref))
        session.add_all(rows)
        session.flush()
        observe_items_synced(self.item_type, len(rows))
        return rows

    def delete_by_parent(self, session: Session, parent_id: uuid.UUID, parent_type: str) -> int:
        result = session.execute(
            delete(self.model).where(self.model.parent_id == parent_id, self.model.parent_type == parent_type)
        )
        return int(result.rowcount or 0)

    def aggregate_total(self, session: Session, parent_ids: Iterable[uuid.UUID]) -> Decimal:
        """Sum of the item total over sale parents only; reporting use."""
        ids = list(parent_ids)
        if not ids:
            return Decimal("0")
        column = getattr(self.model, self.total_column)
        total = session.scalar(
            select(func.coalesce(func.sum(column), 0)).where(
                self.model.parent_type == "sale",
                self.model.parent_id.in_(ids),
            )
        )
        return Decimal(str(total or 0))


class ProductStore(LineItemStore):
    model = PipelineProduct
    item_type = "products"


class LicenseStore(LineItemStore):
    model = PipelineLicense
    item_type = "licenses"


class RentalStore(LineItemStore):
    model = PipelineRental
    item_type = "rentals"


class PaymentStore(LineItemStore):
    model = PipelinePayment
    item_type = "payments"
    total_column = "amount"

    def _prepare_clone(self, data: dict[str, Any]) -> dict[str, Any]:
        # clones start unpaid
        data["is_paid"] = False
        return data


product_store = ProductStore()
license_store = LicenseStore()
rental_store = RentalStore()
payment_store = PaymentStore()

STORES: dict[str, LineItemStore] = {
    "products": product_store,
    "licenses": license_store,
    "rentals": rental_store,
    "payments": payment_store,
}
