"""Time-based parking fees with overtime surcharge."""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from backend.domain.models import FeeBreakdown, VehicleRate


CENT = Decimal("0.01")
DEFAULT_LATE_FEE_MULTIPLIER = Decimal("1.5")
_MICROSECONDS_PER_HOUR = Decimal(3_600_000_000)


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def hours_between(start: datetime, end: datetime) -> Decimal:
    """Fractional hours from ``start`` to ``end`` without float drift."""
    return Decimal((end - start) // timedelta(microseconds=1)) / _MICROSECONDS_PER_HOUR


def base_fee(rate: VehicleRate, duration_hours: Decimal) -> Decimal:
    """First hour flat, then pro-rated additional hours, capped at the daily cap."""
    fee = rate.first_hour
    if duration_hours > 1:
        fee += rate.additional_hour * (duration_hours - 1)
    return min(fee, rate.daily_cap)


def compute_fee(
    rate: VehicleRate,
    start_time: datetime,
    end_time: datetime,
    max_end_time: Optional[datetime] = None,
    late_fee_multiplier: Decimal = DEFAULT_LATE_FEE_MULTIPLIER,
) -> FeeBreakdown:
    if end_time < start_time:
        raise ValueError("end_time must not precede start_time")

    duration_hours = hours_between(start_time, end_time)
    capped = base_fee(rate, duration_hours)

    late_fee = Decimal(0)
    is_late = max_end_time is not None and end_time > max_end_time
    if is_late:
        overtime_hours = hours_between(max_end_time, end_time)
        late_fee = rate.additional_hour * overtime_hours * late_fee_multiplier

    return FeeBreakdown(
        duration_hours=round_money(duration_hours),
        base_fee=round_money(capped),
        late_fee=round_money(late_fee),
        total_fee=round_money(capped + late_fee),
        is_late=is_late,
    )
