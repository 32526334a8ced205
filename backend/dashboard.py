"""Aggregations behind the admin dashboard.

Month bucketing happens here rather than in an aggregation pipeline so the
same code runs against any pymongo-compatible store.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .errors import ValidationError

ORDER_STATUSES = ("pending", "processing", "completed", "cancelled")
DEFAULT_MONTHS = 7
MAX_MONTHS = 24


def parse_months(raw_value: Optional[str]) -> int:
    if raw_value is None or not str(raw_value).strip():
        return DEFAULT_MONTHS
    candidate = str(raw_value).strip()
    if not (candidate.isascii() and candidate.isdigit()):
        raise ValidationError('"months" must be a positive integer')
    months = int(candidate)
    if months < 1 or months > MAX_MONTHS:
        raise ValidationError(f'"months" must be between 1 and {MAX_MONTHS}')
    return months


def month_buckets(months: int, now: Optional[datetime] = None) -> List[Tuple[int, int]]:
    """Return ``(year, month)`` pairs for the last ``months`` months, oldest first."""
    now = now or datetime.utcnow()
    buckets = []
    year, month = now.year, now.month
    for _ in range(months):
        buckets.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    buckets.reverse()
    return buckets


def _window_start(buckets: List[Tuple[int, int]]) -> datetime:
    year, month = buckets[0]
    return datetime(year, month, 1)


def _revenue_query(extra: Optional[Dict] = None) -> Dict:
    query = {"status": {"$ne": "cancelled"}}
    if extra:
        query.update(extra)
    return query


def _order_total(order_document) -> float:
    try:
        return float(order_document.get("totalAmount") or 0)
    except (TypeError, ValueError):
        return 0.0


def build_stats(db) -> Dict:
    total_revenue = sum(
        _order_total(order)
        for order in db.orders.find(_revenue_query(), {"totalAmount": 1})
    )
    return {
        "totalCustomers": db.users.count_documents({"role": "customer"}),
        "totalProducts": db.products.count_documents({}),
        "totalOrders": db.orders.count_documents({}),
        "totalRevenue": round(total_revenue, 2),
    }


def new_customers_by_month(db, months: int, now: Optional[datetime] = None) -> List[Dict]:
    buckets = month_buckets(months, now)
    counts = {bucket: 0 for bucket in buckets}
    cursor = db.users.find(
        {"role": "customer", "created_at": {"$gte": _window_start(buckets)}},
        {"created_at": 1},
    )
    for user in cursor:
        created_at = user.get("created_at")
        if not isinstance(created_at, datetime):
            continue
        key = (created_at.year, created_at.month)
        if key in counts:
            counts[key] += 1
    return [
        {"year": year, "month": month, "count": counts[(year, month)]}
        for year, month in buckets
    ]


def revenue_by_month(db, months: int, now: Optional[datetime] = None) -> List[Dict]:
    buckets = month_buckets(months, now)
    totals = {bucket: 0.0 for bucket in buckets}
    cursor = db.orders.find(
        _revenue_query({"created_at": {"$gte": _window_start(buckets)}}),
        {"created_at": 1, "totalAmount": 1},
    )
    for order in cursor:
        created_at = order.get("created_at")
        if not isinstance(created_at, datetime):
            continue
        key = (created_at.year, created_at.month)
        if key in totals:
            totals[key] += _order_total(order)
    return [
        {"year": year, "month": month, "total": round(totals[(year, month)], 2)}
        for year, month in buckets
    ]
