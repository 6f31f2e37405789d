import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from . import baas
from .errors import ActionRejected, reported
import logging

logger = logging.getLogger(__name__)

# response key -> backend RPC
REPORTS = {
    "revenue": "get_revenue_analytics",
    "bookings": "get_booking_analytics",
    "drivers": "get_driver_performance_analytics",
    "customers": "get_customer_analytics",
    "service": "get_service_performance_analytics",
}


def _first_row(result: Any) -> Optional[dict]:
    if isinstance(result, list):
        return result[0] if result else None
    return result or None


def _utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


async def fetch_analytics(start: datetime, end: datetime) -> Dict[str, Optional[dict]]:
    """Run the five report RPCs concurrently over one date range."""
    start, end = _utc(start), _utc(end)
    if end < start:
        raise ActionRejected("End date must not be before start date")
    params = {"start_date": start.isoformat(), "end_date": end.isoformat()}
    with reported("Failed to fetch analytics data"):
        results = await asyncio.gather(*(baas.client.rpc(name, params) for name in REPORTS.values()))
    logger.info("analytics_fetched: start=%s end=%s", params["start_date"], params["end_date"])
    return {key: _first_row(result) for key, result in zip(REPORTS, results)}
