from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from opentelemetry import trace
from sqlalchemy.orm import Session

from salespipe.context import get_correlation_id
from salespipe.pipeline.models import PipelineProspect


tracer = trace.get_tracer("salespipe.pipeline.customers")


@dataclass(slots=True)
class CustomerRef:
    id: str
    company_name: str
    name: str

    @property
    def display_name(self) -> str:
        return self.company_name or self.name


class CustomerClient(Protocol):
    def create(self, session: Session, payload: dict[str, Any]) -> CustomerRef: ...


class StubCustomerClient:
    """Writes prospects into the local ``pipeline_prospect`` table."""

    def create(self, session: Session, payload: dict[str, Any]) -> CustomerRef:
        with tracer.start_as_current_span("customers.create_prospect") as span:
            span.set_attribute("correlation_id", get_correlation_id())
            prospect = PipelineProspect(
                type=payload.get("type") or "prospect",
                name=payload.get("name") or "",
                company_name=payload.get("company_name") or "",
                phone=payload.get("phone") or "",
                email=payload.get("email") or "",
            )
            session.add(prospect)
            session.flush()
            span.set_attribute("customer_id", str(prospect.id))
            return CustomerRef(id=str(prospect.id), company_name=prospect.company_name, name=prospect.name)
