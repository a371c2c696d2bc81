"""Sales and reservation reports by period.

Read-only: works on the snapshots handed in by the controller and never
touches a ledger directly.
"""
from datetime import datetime, timedelta, tzinfo
from typing import Dict, List, Tuple

from errors import ValidationError
from schemas import Reservation, ReportSummary, Sale
from stores import money

PERIODS = ("current-week", "previous-week", "current-month", "previous-month")
END_OF_DAY = dict(hour=23, minute=59, second=59, microsecond=999999)
START_OF_DAY = dict(hour=0, minute=0, second=0, microsecond=0)


def period_bounds(period: str, now: datetime, tz: tzinfo) -> Tuple[datetime, datetime]:
    """Return the inclusive ``(start, end)`` window for a period.

    Weeks start on Sunday. The "previous" periods end at 23:59:59.999999 of
    their last day; the "current" ones end at ``now``.
    """
    local_now = now.astimezone(tz)
    days_since_sunday = (local_now.weekday() + 1) % 7
    week_start = (local_now - timedelta(days=days_since_sunday)).replace(**START_OF_DAY)
    month_start = local_now.replace(day=1, **START_OF_DAY)

    if period == "current-week":
        return week_start, local_now
    if period == "previous-week":
        end = (week_start - timedelta(days=1)).replace(**END_OF_DAY)
        return (end - timedelta(days=6)).replace(**START_OF_DAY), end
    if period == "current-month":
        return month_start, local_now
    if period == "previous-month":
        # Last day of the previous month, i.e. day 0 of this one
        end = (month_start - timedelta(days=1)).replace(**END_OF_DAY)
        return end.replace(day=1, **START_OF_DAY), end
    raise ValidationError(f"Unknown report period '{period}'", details={"allowed": list(PERIODS)})


def top_payment_method(sales: List[Sale]) -> str:
    # Ties keep the method counted first
    counts: Dict[str, int] = {}
    for sale in sales:
        counts[sale.method] = counts.get(sale.method, 0) + 1
    if not counts:
        return ""
    return max(counts, key=counts.get)


def build_report(
    sales: List[Sale],
    reservations: List[Reservation],
    period: str,
    now: datetime,
    tz: tzinfo,
) -> ReportSummary:
    start, end = period_bounds(period, now, tz)
    period_sales = [s for s in sales if start <= s.created_at <= end]
    period_reservations = [r for r in reservations if start <= r.created_at <= end]

    return ReportSummary(
        period=period,
        start=start,
        end=end,
        total_billed=money(sum(s.total for s in period_sales)),
        total_deposits=money(sum(r.deposit for r in period_reservations)),
        sales_count=len(period_sales),
        reservations_count=len(period_reservations),
        top_payment_method=top_payment_method(period_sales),
        sales=sorted(period_sales, key=lambda s: s.created_at, reverse=True),
        reservations=sorted(period_reservations, key=lambda r: r.created_at, reverse=True),
    )
