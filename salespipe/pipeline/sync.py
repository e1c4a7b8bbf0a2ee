from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel
from sqlalchemy.orm import Session

from salespipe.pipeline.errors import InvalidStateError, NotFoundError
from salespipe.pipeline.items import (
    STORES,
    ItemInput,
    LineItemStore,
    license_store,
    payment_store,
    product_store,
    rental_store,
)
from salespipe.pipeline.models import PipelineOffer, PipelineSale
from salespipe.pipeline.schemas import (
    ITEM_KEYS,
    DeletedItems,
    PipelineItems,
    PipelineItemsPayload,
    SaleItemTotals,
)


_PARENT_MODELS: dict[str, Any] = {"offer": PipelineOffer, "sale": PipelineSale}


@dataclass(slots=True)
class PipelineSyncService:
    """The four item stores handled as one unit for a parent.

    Calls run in sequence on the caller's session; the caller's transaction
    makes each fan-out all-or-nothing.
    """

    products: LineItemStore = product_store
    licenses: LineItemStore = license_store
    rentals: LineItemStore = rental_store
    payments: LineItemStore = payment_store

    def _stores(self) -> dict[str, LineItemStore]:
        return {
            "products": self.products,
            "licenses": self.licenses,
            "rentals": self.rentals,
            "payments": self.payments,
        }

    def store_for(self, item_type: str) -> LineItemStore:
        store = self._stores().get(item_type)
        if store is None:
            raise InvalidStateError(f"unknown item type {item_type!r}; expected one of {', '.join(STORES)}")
        return store

    def get_all_items(self, session: Session, parent_id: uuid.UUID, parent_type: str) -> PipelineItems:
        return PipelineItems.model_validate(
            {key: store.find_by_parent(session, parent_id, parent_type) for key, store in self._stores().items()},
            from_attributes=True,
        )

    def delete_all_items(self, session: Session, parent_id: uuid.UUID, parent_type: str) -> DeletedItems:
        return DeletedItems(
            **{
                f"deleted_{key}": store.delete_by_parent(session, parent_id, parent_type)
                for key, store in self._stores().items()
            }
        )

    def clone_all_items(
        self,
        session: Session,
        source_parent_id: uuid.UUID,
        source_type: str,
        target_parent_id: uuid.UUID,
        target_type: str,
        pipeline_ref: str | None = None,
    ) -> PipelineItems:
        return PipelineItems.model_validate(
            {
                key: store.clone_for_parent(
                    session, source_parent_id, source_type, target_parent_id, target_type, pipeline_ref
                )
                for key, store in self._stores().items()
            },
            from_attributes=True,
        )

    def sync_items(
        self,
        session: Session,
        parent_id: uuid.UUID,
        parent_type: str,
        pipeline_ref: str,
        payload: PipelineItemsPayload,
    ) -> dict[str, list[Any]]:
        """Replace every item set whose key was sent; leave the others alone.

        ``products=[]`` or ``products=None`` clears the products; omitting
        ``products`` does not touch them.
        """
        results: dict[str, list[Any]] = {}
        for key in ITEM_KEYS:
            if key not in payload.model_fields_set:
                continue
            results[key] = self.store_for(key).batch_upsert(
                session, parent_id, parent_type, pipeline_ref, getattr(payload, key)
            )
        return results

    def get_parent(self, session: Session, parent_id: uuid.UUID, parent_type: str) -> Any:
        model = _PARENT_MODELS.get(parent_type)
        if model is None:
            raise InvalidStateError(f"unknown parent type {parent_type!r}; expected offer or sale")
        parent = session.get(model, parent_id)
        if parent is None:
            raise NotFoundError(f"{parent_type} {parent_id} not found")
        return parent

    def create_item(self, session: Session, item_type: str, item: ItemInput) -> Any:
        """Add one item under an existing offer or sale; the item takes the parent's ``pipeline_ref``."""
        store = self.store_for(item_type)
        raw = item.model_dump() if isinstance(item, BaseModel) else dict(item)
        parent_id = raw.get("parent_id")
        parent_type = raw.get("parent_type")
        if parent_id is None or parent_type is None:
            raise InvalidStateError("parent_id and parent_type are required to create an item")
        if not isinstance(parent_id, uuid.UUID):
            parent_id = uuid.UUID(str(parent_id))
        parent = self.get_parent(session, parent_id, parent_type)
        row = store.create(session, parent.id, parent_type, parent.pipeline_ref, item)
        session.commit()
        session.refresh(row)
        return row

    def update_item(self, session: Session, item_type: str, item_id: uuid.UUID, patch: ItemInput) -> Any:
        row = self.store_for(item_type).update(session, item_id, patch)
        session.commit()
        session.refresh(row)
        return row

    def remove_item(self, session: Session, item_type: str, item_id: uuid.UUID) -> None:
        self.store_for(item_type).remove(session, item_id)
        session.commit()

    def aggregate_sale_totals(self, session: Session, parent_ids: list[uuid.UUID]) -> SaleItemTotals:
        return SaleItemTotals(
            **{key: store.aggregate_total(session, parent_ids) for key, store in self._stores().items()}
        )


pipeline_sync_service = PipelineSyncService()
