# Overview: Reading aggregate provider; sums nozzle-reading sales for a station and time window.

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import NozzleReading
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)


class AggregateUnavailableError(Exception):
    """The reading aggregate could not be fetched. Surfaced as an internal error."""


@dataclass(frozen=True)
class ReadingAggregate:
    cash_cents: int = 0
    online_cents: int = 0
    credit_cents: int = 0
    total_sales_cents: int = 0
    litres: Decimal = Decimal("0")
    readings_count: int = 0


def _sum_readings(station_id: int, start: datetime, end: datetime) -> ReadingAggregate:
    row = (
        db.session.query(
            func.coalesce(func.sum(NozzleReading.cash_amount_cents), 0),
            func.coalesce(func.sum(NozzleReading.online_amount_cents), 0),
            func.coalesce(func.sum(NozzleReading.credit_amount_cents), 0),
            func.coalesce(func.sum(NozzleReading.total_amount_cents), 0),
            func.coalesce(func.sum(NozzleReading.litres_sold), 0),
            func.count(NozzleReading.id),
        )
        .filter(
            NozzleReading.station_id == station_id,
            NozzleReading.is_initial_reading.is_(False),
            NozzleReading.recorded_at >= start,
            NozzleReading.recorded_at <= end,
        )
        .one()
    )
    cash, online, credit, total, litres, count = row
    return ReadingAggregate(
        cash_cents=int(cash),
        online_cents=int(online),
        credit_cents=int(credit),
        total_sales_cents=int(total),
        litres=Decimal(str(litres)),
        readings_count=int(count),
    )


def get_reading_cash_aggregate(station_id: int, start: datetime, end: datetime) -> ReadingAggregate:
    """
    Cash/online/credit totals of non-initial readings recorded at
    `station_id` with start <= recorded_at <= end.

    A deployment can plug in an external provider by setting
    READING_AGGREGATE_PROVIDER to a callable with this signature. Any
    provider failure is logged and raised as AggregateUnavailableError.
    """
    provider = current_app.config.get("READING_AGGREGATE_PROVIDER")
    try:
        if provider is not None:
            return provider(station_id, start, end)
        return run_with_retry(lambda: _sum_readings(station_id, start, end))
    except Exception as exc:
        logger.exception("Reading aggregate failed for station %s [%s, %s]", station_id, start, end)
        raise AggregateUnavailableError("Reading aggregate unavailable") from exc
