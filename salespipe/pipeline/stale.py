from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from salespipe import events
from salespipe.core.auth import SYSTEM_USER
from salespipe.core.config import get_settings
from salespipe.pipeline.history import utcnow
from salespipe.pipeline.models import PipelineLead, PipelineOffer, PipelineStaleNotice
from salespipe.pipeline.schemas import StalePipelineRecord


logger = logging.getLogger("salespipe.pipeline")

STALE_LEAD_STATUSES = ("new", "contacted", "qualified")
STALE_OFFER_STATUSES = ("draft", "sent", "revised", "waiting", "approved")


@dataclass(slots=True)
class StalePipelineScanner:
    def find_stale(self, session: Session, now: datetime | None = None) -> list[StalePipelineRecord]:
        """Open leads and offers whose last update is older than ``stale_pipeline_days``."""
        cutoff = (now or utcnow()) - timedelta(days=get_settings().stale_pipeline_days)
        records: list[StalePipelineRecord] = []
        for kind, model, statuses in (
            ("lead", PipelineLead, STALE_LEAD_STATUSES),
            ("offer", PipelineOffer, STALE_OFFER_STATUSES),
        ):
            rows = session.scalars(
                select(model)
                .where(model.status.in_(statuses), model.updated_at < cutoff)
                .order_by(model.updated_at)
            )
            records.extend(
                StalePipelineRecord(
                    kind=kind,
                    id=row.id,
                    pipeline_ref=row.pipeline_ref,
                    status=row.status,
                    updated_at=row.updated_at,
                )
                for row in rows
            )
        return records

    def _recently_notified(
        self, session: Session, records: list[StalePipelineRecord], since: datetime
    ) -> set[tuple[str, uuid.UUID]]:
        if not records:
            return set()
        rows = session.execute(
            select(PipelineStaleNotice.context_type, PipelineStaleNotice.context_id).where(
                PipelineStaleNotice.context_id.in_([record.id for record in records]),
                PipelineStaleNotice.notified_at >= since,
            )
        )
        return {(context_type, context_id) for context_type, context_id in rows}

    def scan(self, session: Session, now: datetime | None = None) -> list[StalePipelineRecord]:
        """Publish ``pipeline.stale_detected`` once per stale record and window.

        A record notified within the last ``stale_pipeline_days`` is skipped;
        returns the records notified by this run.
        """
        now = now or utcnow()
        records = self.find_stale(session, now)
        notified = self._recently_notified(
            session, records, now - timedelta(days=get_settings().stale_pipeline_days)
        )
        records = [record for record in records if (record.kind, record.id) not in notified]
        session.add_all(
            PipelineStaleNotice(context_type=record.kind, context_id=record.id, notified_at=now) for record in records
        )
        session.commit()
        for record in records:
            events.publish(
                "pipeline.stale_detected",
                record.model_dump(mode="json"),
                actor_user_id=SYSTEM_USER.sub,
            )
        logger.info(
            "stale_scan.completed",
            extra={"event_type": "pipeline.stale_detected", "count": len(records), "skipped": len(notified)},
        )
        return records


stale_pipeline_scanner = StalePipelineScanner()
