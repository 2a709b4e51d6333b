from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from sentinel.core.config import Settings
from sentinel.security.burst_detector import BurstDetector
from sentinel.services.analytics_service import AnalyticsAggregator
from sentinel.services.threat_recorder import ThreatRecorder
from sentinel.services.threat_service import ThreatAggregator
from sentinel.services.visit_recorder import VisitRecorder


@dataclass
class SentinelServices:
    visit_recorder: VisitRecorder
    threat_recorder: ThreatRecorder
    burst_detector: BurstDetector
    analytics: AnalyticsAggregator
    threats: ThreatAggregator


def build_services(database, settings: Settings) -> SentinelServices:
    """Wire recorders and aggregators to a database exposing .visits and .threats"""
    threat_recorder = ThreatRecorder(database.threats)
    burst_detector = BurstDetector(
        database.visits,
        threat_recorder,
        request_threshold=settings.burst_request_threshold,
        time_window_seconds=settings.burst_time_window_seconds,
    )
    return SentinelServices(
        visit_recorder=VisitRecorder(database.visits, burst_detector),
        threat_recorder=threat_recorder,
        burst_detector=burst_detector,
        analytics=AnalyticsAggregator(database.visits, database.threats),
        threats=ThreatAggregator(database.threats),
    )


def get_services(request: Request) -> SentinelServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database service unavailable")
    return services
