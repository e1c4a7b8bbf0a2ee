from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from salespipe.core.auth import AuthUser
from salespipe.pipeline.counter import SALE_NO_KEY
from salespipe.pipeline.errors import InvalidStateError
from salespipe.pipeline.history import utcnow
from salespipe.pipeline.models import PipelineSale
from salespipe.pipeline.parents import ParentService
from salespipe.pipeline.schemas import SaleDetail, SaleRead, SaleStats


SALE_STATUSES = frozenset(
    {
        "pending",
        "collection-waiting",
        "setup-waiting",
        "training-waiting",
        "active",
        "completed",
        "cancelled",
    }
)
TOP_SALES_LIMIT = 10


def period_start(period: str, today: date) -> date:
    if period == "daily":
        return today
    if period == "weekly":
        return today - timedelta(days=today.weekday())
    if period == "monthly":
        return today.replace(day=1)
    if period == "quarterly":
        return today.replace(month=(today.month - 1) // 3 * 3 + 1, day=1)
    if period == "yearly":
        return today.replace(month=1, day=1)
    raise InvalidStateError(f"unknown stats period {period!r}")


def _grand_total(sale: PipelineSale) -> Decimal:
    return Decimal(str((sale.totals or {}).get("overall_grand_total") or 0))


@dataclass(slots=True)
class SaleService(ParentService):
    model = PipelineSale
    parent_type = "sale"
    counter_key = SALE_NO_KEY
    statuses = SALE_STATUSES
    read_schema = SaleRead
    detail_schema = SaleDetail
    search_columns = ("customer_name", "pipeline_ref", "seller_name", "notes")

    def approve(self, session: Session, actor: AuthUser, sale_id: uuid.UUID) -> SaleRead:
        sale = self.get_record(session, sale_id)
        sale.approved = True
        sale.approved_by = actor.sub
        sale.approved_by_name = actor.display_name
        sale.approved_at = utcnow()
        session.commit()
        session.refresh(sale)
        return SaleRead.model_validate(sale)

    def stats(
        self,
        session: Session,
        *,
        period: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        today: date | None = None,
    ) -> SaleStats:
        """Sale counts per status and amounts per item type, optionally limited to a ``sale_date`` window.

        ``period`` fills in a missing start (start of today, this week from
        Monday, month, quarter or year) and a missing end (today).
        """
        if period:
            today = today or utcnow().date()
            end_date = end_date or today
            start_date = start_date or period_start(period, today)

        conditions = []
        if start_date is not None:
            conditions.append(PipelineSale.sale_date >= start_date)
        if end_date is not None:
            conditions.append(PipelineSale.sale_date <= end_date)

        by_status = {status_value: 0 for status_value in sorted(SALE_STATUSES)}
        for status_value, count in session.execute(
            select(PipelineSale.status, func.count()).where(*conditions).group_by(PipelineSale.status)
        ):
            by_status[status_value] = int(count)

        sales = list(session.scalars(select(PipelineSale).where(*conditions)))
        grand_totals = {sale.id: _grand_total(sale) for sale in sales}
        top_sales = sorted(sales, key=lambda sale: grand_totals[sale.id], reverse=True)[:TOP_SALES_LIMIT]

        return SaleStats(
            total=sum(by_status.values()),
            by_status=by_status,
            start_date=start_date,
            end_date=end_date,
            total_sales_amount=sum(grand_totals.values(), Decimal("0")),
            item_totals=self.sync.aggregate_sale_totals(session, list(grand_totals)),
            top_sales=[SaleRead.model_validate(sale) for sale in top_sales],
        )


sale_service = SaleService()
