from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TypeVar

from opentelemetry import trace
from sqlalchemy import case, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from salespipe.core.config import get_settings
from salespipe.metrics import observe_sequence_conflict
from salespipe.pipeline.errors import CreationFailedError, StoreUnavailableError
from salespipe.pipeline.models import PipelineCounter

logger = logging.getLogger("salespipe.pipeline")
tracer = trace.get_tracer(__name__)

OFFER_NO_KEY = "offer-no"
SALE_NO_KEY = "sale-no"

ModelT = TypeVar("ModelT")


def _insert_for(session: Session):  # type: ignore[no-untyped-def]
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"sequence counter does not support dialect {dialect!r}")


def next_value(session: Session, key: str) -> int:
    """Increment ``key`` and return the new value in one statement, creating it at 1."""
    insert = _insert_for(session)
    stmt = (
        insert(PipelineCounter)
        .values(id=key, seq=1)
        .on_conflict_do_update(index_elements=[PipelineCounter.id], set_={"seq": PipelineCounter.seq + 1})
        .returning(PipelineCounter.seq)
    )
    try:
        return int(session.execute(stmt).scalar_one())
    except OperationalError as exc:
        raise StoreUnavailableError("sequence counter unavailable") from exc


def sync_counter(session: Session, key: str, minimum: int) -> None:
    """Raise the counter for ``key`` to at least ``minimum``; never lowers it."""
    insert = _insert_for(session)
    stmt = (
        insert(PipelineCounter)
        .values(id=key, seq=minimum)
        .on_conflict_do_update(
            index_elements=[PipelineCounter.id],
            set_={"seq": case((PipelineCounter.seq < minimum, minimum), else_=PipelineCounter.seq)},
        )
    )
    try:
        session.execute(stmt)
    except OperationalError as exc:
        raise StoreUnavailableError("sequence counter unavailable") from exc


def generate_pipeline_ref(session: Session, now: datetime | None = None) -> str:
    year = (now or datetime.now(timezone.utc)).year
    seq = next_value(session, f"pipeline-{year}")
    return f"{get_settings().pipeline_ref_prefix}-{year}-{seq:05d}"


def generate_offer_no(session: Session) -> int:
    return next_value(session, OFFER_NO_KEY)


def generate_sale_no(session: Session) -> int:
    return next_value(session, SALE_NO_KEY)


def _is_no_conflict(exc: IntegrityError, table: str) -> bool:
    return re.search(rf"\b(?:{table}\.no|uq_{table}_no)\b", str(exc.orig)) is not None


def insert_with_sequence(
    session: Session,
    model: type[ModelT],
    key: str,
    build: Callable[[int], ModelT],
) -> ModelT:
    """Insert a row numbered from ``key``, recovering from duplicate numbers.

    Each attempt allocates a number and inserts inside a savepoint. A unique
    violation on ``no`` rolls the savepoint back, raises the counter to the
    table's current ``max(no)`` and tries again. ``build`` runs once per
    attempt, so anything else it allocates is rolled back with the attempt.
    """
    table = model.__tablename__  # type: ignore[attr-defined]
    max_attempts = get_settings().sequence_max_attempts

    for attempt in range(1, max_attempts + 1):
        with tracer.start_as_current_span("pipeline.sequence.insert") as span:
            span.set_attribute("pipeline.counter_key", key)
            span.set_attribute("pipeline.attempt", attempt)
            try:
                with session.begin_nested():
                    instance = build(next_value(session, key))
                    session.add(instance)
                    session.flush()
                return instance
            except IntegrityError as exc:
                if not _is_no_conflict(exc, table):
                    raise
                observe_sequence_conflict(key)
                logger.warning("sequence.conflict", extra={"counter_key": key, "attempt": attempt})
                max_no = session.scalar(select(func.max(model.no))) or 0  # type: ignore[attr-defined]
                sync_counter(session, key, int(max_no))

    logger.error("sequence.exhausted", extra={"counter_key": key, "attempt": max_attempts})
    raise CreationFailedError(f"could not allocate a unique number for {table}")
