#!/usr/bin/env python3
"""
Read-side queries over the visits collection for the analytics dashboard.

Every call recomputes from the store; there is no cache. Counts are exact
at query time.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sentinel.models import utcnow

logger = logging.getLogger(__name__)

TIME_RANGES: Dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_TIME_RANGE = "24h"
REAL_TIME_MINUTES = 5


def range_start(time_range: str, now: Optional[datetime] = None) -> datetime:
    """Start of a named range; unknown names fall back to 24h"""
    now = now or utcnow()
    return now - TIME_RANGES.get(time_range, TIME_RANGES[DEFAULT_TIME_RANGE])


def safe_ratio(numerator: int, denominator: int) -> float:
    if not denominator:
        return 0
    return round(numerator / denominator, 2)


def _breakdown(start: datetime, field: str, label: str, limit: int,
               extra_match: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    match = {"timestamp": {"$gte": start}}
    if extra_match:
        match.update(extra_match)
    return [
        {"$match": match},
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
        {"$sort": {"count": -1, "_id": 1}},
        {"$limit": limit},
        {"$project": {"_id": 0, label: "$_id", "count": 1}},
    ]


class AnalyticsAggregator:

    def __init__(self, visits, threats=None):
        self.visits = visits
        self.threats = threats

    async def _aggregate(self, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return await self.visits.aggregate(pipeline).to_list(length=None)

    async def _distinct_sources(self, start: datetime) -> int:
        result = await self._aggregate([
            {"$match": {"timestamp": {"$gte": start}}},
            {"$group": {"_id": "$ip"}},
            {"$count": "count"},
        ])
        return result[0]["count"] if result else 0

    async def summarize(self, time_range: str = DEFAULT_TIME_RANGE,
                        now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Build the dashboard snapshot for one of 1h / 24h / 7d / 30d.

        Returns:
            Dict with totals, uniques, ranked breakdowns, an hourly
            histogram and the latest threat records in range.
        """
        if time_range not in TIME_RANGES:
            time_range = DEFAULT_TIME_RANGE
        start = range_start(time_range, now)

        total_visits = await self.visits.count_documents({"timestamp": {"$gte": start}})
        unique_visitors = await self._distinct_sources(start)

        top_pages = await self._aggregate(_breakdown(start, "path", "path", 10))
        by_browser = await self._aggregate(_breakdown(start, "browser", "browser", 5))
        by_device = await self._aggregate(_breakdown(start, "device", "device", 3))
        by_os = await self._aggregate(_breakdown(start, "os", "os", 5))
        by_referer = await self._aggregate(
            _breakdown(start, "referer", "referer", 10, {"referer": {"$nin": [None, ""]}})
        )
        by_hour = await self._aggregate([
            {"$match": {"timestamp": {"$gte": start}}},
            {"$group": {
                "_id": {
                    "year": {"$year": "$timestamp"},
                    "month": {"$month": "$timestamp"},
                    "day": {"$dayOfMonth": "$timestamp"},
                    "hour": {"$hour": "$timestamp"},
                },
                "count": {"$sum": 1},
            }},
            {"$sort": {"_id.year": 1, "_id.month": 1, "_id.day": 1, "_id.hour": 1}},
            {"$project": {
                "_id": 0,
                "date": {"$dateFromParts": {
                    "year": "$_id.year", "month": "$_id.month",
                    "day": "$_id.day", "hour": "$_id.hour",
                }},
                "count": 1,
            }},
        ])

        ddos_attempts: List[Dict[str, Any]] = []
        if self.threats is not None:
            cursor = self.threats.find({"timestamp": {"$gte": start}}, {"_id": 0}).sort("timestamp", -1).limit(50)
            ddos_attempts = await cursor.to_list(length=50)

        return {
            "totalVisits": total_visits,
            "uniqueVisitors": unique_visitors,
            "averageVisitsPerVisitor": safe_ratio(total_visits, unique_visitors),
            "topPages": top_pages,
            "visitsByBrowser": by_browser,
            "visitsByDevice": by_device,
            "visitsByOS": by_os,
            "visitsByReferer": by_referer,
            "visitsByHour": by_hour,
            "ddosAttempts": ddos_attempts,
            "timeRange": time_range,
        }

    async def real_time(self, last_minutes: int = REAL_TIME_MINUTES,
                        now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Active sources in the trailing window, and the pages they are on:
        each source counts once, for the path of its most recent visit.
        """
        now = now or utcnow()
        start = now - timedelta(minutes=last_minutes)

        active_visitors = await self._distinct_sources(start)
        current_pages = await self._aggregate([
            {"$match": {"timestamp": {"$gte": start}}},
            {"$sort": {"timestamp": -1}},
            {"$group": {"_id": "$ip", "lastView": {"$first": "$path"}}},
            {"$group": {"_id": "$lastView", "count": {"$sum": 1}}},
            {"$sort": {"count": -1, "_id": 1}},
            {"$limit": 5},
            {"$project": {"_id": 0, "path": "$_id", "count": 1}},
        ])

        return {
            "activeVisitors": active_visitors,
            "currentPages": current_pages,
            "timestamp": now,
        }
