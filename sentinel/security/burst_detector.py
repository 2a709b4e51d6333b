#!/usr/bin/env python3
"""
💥 Burst (naive DDoS) detector

Counts a source's stored visits inside a trailing window and writes a
ThreatRecord when the count reaches the threshold. It re-queries the visit
store on every call, so a source that stays above threshold produces one
record per qualifying request until its rate drops back below it.
"""

from datetime import datetime, timedelta
from typing import Optional

import structlog

from sentinel.models import ThreatRecord, utcnow
from sentinel.services.threat_recorder import ThreatRecorder

logger = structlog.get_logger(__name__)

DEFAULT_REQUEST_THRESHOLD = 100
DEFAULT_TIME_WINDOW_SECONDS = 60


class BurstDetector:

    def __init__(self, visits, threat_recorder: ThreatRecorder,
                 request_threshold: int = DEFAULT_REQUEST_THRESHOLD,
                 time_window_seconds: int = DEFAULT_TIME_WINDOW_SECONDS):
        self.visits = visits
        self.threat_recorder = threat_recorder
        self.request_threshold = request_threshold
        self.time_window_seconds = time_window_seconds

    async def inspect(self, source_address: str, now: Optional[datetime] = None) -> Optional[ThreatRecord]:
        """Return the ThreatRecord written for this call, or None below threshold"""
        now = now or utcnow()
        window_start = now - timedelta(seconds=self.time_window_seconds)
        window_filter = {"ip": source_address, "timestamp": {"$gte": window_start}}

        request_count = await self.visits.count_documents(window_filter)
        if request_count < self.request_threshold:
            return None

        paths = await self.visits.distinct("path", window_filter)
        threat = ThreatRecord(
            source_address=source_address,
            request_count=request_count,
            time_window_seconds=self.time_window_seconds,
            paths=sorted(paths),
            blocked=True,
            kind="burst",
            timestamp=now,
        )
        logger.warning(
            f"Potential DDoS detected from IP: {source_address}, "
            f"{request_count} requests in {self.time_window_seconds} seconds"
        )
        await self.threat_recorder.record(threat)
        return threat
