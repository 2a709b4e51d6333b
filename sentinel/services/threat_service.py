import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sentinel.models import BlacklistEntry, utcnow

logger = logging.getLogger(__name__)

SECURITY_TIME_RANGES: Dict[str, timedelta] = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_SECURITY_RANGE = "24h"


def _start(time_range: str, now: Optional[datetime]) -> datetime:
    now = now or utcnow()
    return now - SECURITY_TIME_RANGES.get(time_range, SECURITY_TIME_RANGES[DEFAULT_SECURITY_RANGE])


class ThreatAggregator:
    """Read-side queries over the threats collection"""

    def __init__(self, threats):
        self.threats = threats

    async def _ranked_sources(self, start: datetime, limit: int) -> List[Dict[str, Any]]:
        # Ties on attempt count keep the source that was seen first ahead
        pipeline = [
            {"$match": {"timestamp": {"$gte": start}}},
            {"$group": {
                "_id": "$ip",
                "attemptCount": {"$sum": 1},
                "firstSeen": {"$min": "$timestamp"},
                "lastSeen": {"$max": "$timestamp"},
            }},
            {"$sort": {"attemptCount": -1, "firstSeen": 1}},
            {"$limit": limit},
            {"$project": {"_id": 0, "ip": "$_id", "attemptCount": 1, "firstSeen": 1, "lastSeen": 1}},
        ]
        return await self.threats.aggregate(pipeline).to_list(length=None)

    async def top_attackers(self, time_range: str = "30d", limit: int = 1000,
                            now: Optional[datetime] = None) -> List[BlacklistEntry]:
        rows = await self._ranked_sources(_start(time_range, now), limit)
        return [
            BlacklistEntry(ip=row["ip"], attempt_count=row["attemptCount"], last_seen=row.get("lastSeen"))
            for row in rows
            if row.get("ip")
        ]

    async def overview(self, time_range: str = DEFAULT_SECURITY_RANGE,
                       now: Optional[datetime] = None) -> Dict[str, Any]:
        if time_range not in SECURITY_TIME_RANGES:
            time_range = DEFAULT_SECURITY_RANGE
        start = _start(time_range, now)

        total_attempts = await self.threats.count_documents({"timestamp": {"$gte": start}})

        blocked = await self.threats.aggregate([
            {"$match": {"timestamp": {"$gte": start}, "blocked": True}},
            {"$group": {"_id": "$ip"}},
            {"$count": "count"},
        ]).to_list(length=None)
        blocked_ips = blocked[0]["count"] if blocked else 0

        cursor = self.threats.find({"timestamp": {"$gte": start}}).sort("timestamp", -1).limit(10)
        recent = await cursor.to_list(length=10)

        top = await self._ranked_sources(start, 5)

        return {
            "totalAttempts": total_attempts,
            "blockedIPs": blocked_ips,
            "recentAttempts": [
                {
                    "ip": attempt.get("ip"),
                    "timestamp": attempt.get("timestamp"),
                    "requestCount": attempt.get("requestCount"),
                    "paths": attempt.get("paths", []),
                    "blocked": attempt.get("blocked", False),
                    "kind": attempt.get("kind", "burst"),
                }
                for attempt in recent
            ],
            "topAttackerIPs": [{"ip": row["ip"], "attemptCount": row["attemptCount"]} for row in top],
            "timeRange": time_range,
        }
