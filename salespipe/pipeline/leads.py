from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session

from salespipe.core.auth import AuthUser
from salespipe.pipeline.counter import generate_pipeline_ref
from salespipe.pipeline.errors import InvalidStateError, NotFoundError
from salespipe.pipeline.history import change_status, utcnow
from salespipe.pipeline.models import PipelineLead
from salespipe.pipeline.schemas import LeadActivity, LeadActivityCreate, LeadCreate, LeadRead, LeadStats, LeadUpdate, Page


logger = logging.getLogger("salespipe.pipeline")

LEAD_STATUSES = ("new", "contacted", "qualified", "unqualified", "converted", "lost")
OPEN_LEAD_STATUSES = ("new", "contacted", "qualified")
LEAD_WEIGHTS: dict[str, Decimal] = {
    "new": Decimal("0.1"),
    "contacted": Decimal("0.2"),
    "qualified": Decimal("0.4"),
}
NON_CONVERTIBLE_LEAD_STATUSES = frozenset({"converted", "lost"})


def _owner(lead: PipelineLead) -> str:
    return lead.assigned_user_name or lead.assigned_user_id


@dataclass(slots=True)
class LeadService:
    def get_record(self, session: Session, lead_id: uuid.UUID) -> PipelineLead:
        lead = session.get(PipelineLead, lead_id)
        if lead is None:
            raise NotFoundError(f"lead {lead_id} not found")
        return lead

    def create(self, session: Session, payload: LeadCreate) -> LeadRead:
        if payload.status == "converted":
            raise InvalidStateError("lead can only become converted through a conversion")
        lead = PipelineLead(**payload.model_dump(), pipeline_ref=generate_pipeline_ref(session))
        session.add(lead)
        session.commit()
        session.refresh(lead)
        logger.info("lead.created", extra={"parent_id": str(lead.id), "pipeline_ref": lead.pipeline_ref})
        return LeadRead.model_validate(lead)

    def get(self, session: Session, lead_id: uuid.UUID) -> LeadRead:
        return LeadRead.model_validate(self.get_record(session, lead_id))

    def _filtered(self, stmt: Select, status_value: str | None, search: str | None) -> Select:
        if status_value and status_value != "all":
            stmt = stmt.where(PipelineLead.status == status_value)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    PipelineLead.contact_name.ilike(pattern),
                    PipelineLead.company_name.ilike(pattern),
                    PipelineLead.contact_email.ilike(pattern),
                    PipelineLead.pipeline_ref.ilike(pattern),
                )
            )
        return stmt

    def list_records(
        self,
        session: Session,
        *,
        status_value: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> Page[LeadRead]:
        total = session.scalar(self._filtered(select(func.count()).select_from(PipelineLead), status_value, search))
        rows = session.scalars(
            self._filtered(select(PipelineLead), status_value, search)
            .order_by(PipelineLead.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return Page[LeadRead](
            items=[LeadRead.model_validate(row) for row in rows],
            total=int(total or 0),
            page=page,
            limit=limit,
        )

    def update(self, session: Session, actor: AuthUser, lead_id: uuid.UUID, payload: LeadUpdate) -> LeadRead:
        lead = self.get_record(session, lead_id)
        data = payload.model_dump(exclude_unset=True)
        new_status = data.pop("status", None)
        if new_status == "converted" and lead.status != "converted":
            raise InvalidStateError("lead can only become converted through a conversion")

        columns = PipelineLead.__table__.c
        for key, value in data.items():
            if value is None and not columns[key].nullable:
                continue
            setattr(lead, key, value)
        if new_status is not None:
            change_status(lead, new_status, actor.display_name)

        session.commit()
        session.refresh(lead)
        return LeadRead.model_validate(lead)

    def add_activity(
        self, session: Session, actor: AuthUser, lead_id: uuid.UUID, payload: LeadActivityCreate
    ) -> LeadRead:
        lead = self.get_record(session, lead_id)
        activity = LeadActivity(
            **payload.model_dump(),
            user_id=actor.sub,
            user_name=actor.display_name,
            created_at=utcnow(),
        )
        # reassign so the JSON column is flagged dirty
        lead.activities = [*(lead.activities or []), activity.model_dump(mode="json")]
        session.commit()
        session.refresh(lead)
        logger.info("lead.activity_added", extra={"parent_id": str(lead.id), "pipeline_ref": lead.pipeline_ref})
        return LeadRead.model_validate(lead)

    def remove(self, session: Session, lead_id: uuid.UUID) -> None:
        session.delete(self.get_record(session, lead_id))
        session.commit()

    def stats(self, session: Session) -> LeadStats:
        by_status = {status_value: 0 for status_value in LEAD_STATUSES}
        for status_value, count in session.execute(
            select(PipelineLead.status, func.count()).group_by(PipelineLead.status)
        ):
            by_status[status_value] = int(count)

        open_value = Decimal("0")
        weighted_value = Decimal("0")
        for status_value, value in session.execute(
            select(PipelineLead.status, func.coalesce(func.sum(PipelineLead.estimated_value), 0))
            .where(PipelineLead.status.in_(OPEN_LEAD_STATUSES))
            .group_by(PipelineLead.status)
        ):
            amount = Decimal(str(value))
            open_value += amount
            weighted_value += amount * LEAD_WEIGHTS[status_value]

        return LeadStats(
            total=sum(by_status.values()),
            by_status=by_status,
            open_value=open_value.quantize(Decimal("0.000001")),
            weighted_value=weighted_value.quantize(Decimal("0.000001")),
        )

    def get_for_conversion(self, session: Session, lead_id: uuid.UUID) -> PipelineLead:
        lead = self.get_record(session, lead_id)
        if lead.status in NON_CONVERTIBLE_LEAD_STATUSES:
            raise InvalidStateError(f"lead {lead_id} is {lead.status} and cannot be converted")
        return lead

    def mark_as_converted(self, session: Session, lead: PipelineLead, customer_id: str | None = None) -> None:
        if customer_id:
            lead.customer_id = customer_id
        change_status(lead, "converted", _owner(lead))
        session.flush()

    def revert_to_qualified(self, session: Session, lead: PipelineLead) -> None:
        change_status(lead, "qualified", _owner(lead))
        session.flush()


lead_service = LeadService()
