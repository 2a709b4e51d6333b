import logging
from typing import Optional

from sentinel.models import VisitRecord, utcnow
from sentinel.security.burst_detector import BurstDetector
from sentinel.security.metrics import store_write_failures, visits_recorded
from sentinel.utils.user_agent import derive_browser, derive_device, derive_os

logger = logging.getLogger(__name__)


class VisitRecorder:
    """
    Persists one document per accepted request, then hands the source
    address to the burst detector.

    Visit logging must never break the user-facing request: storage errors
    are logged and swallowed here.
    """

    def __init__(self, collection, burst_detector: Optional[BurstDetector] = None):
        self.collection = collection
        self.burst_detector = burst_detector

    async def record(self, visit: VisitRecord) -> None:
        visit.timestamp = utcnow()

        try:
            visit.derived_device = derive_device(visit.user_agent)
            visit.derived_browser = derive_browser(visit.user_agent)
            visit.derived_os = derive_os(visit.user_agent)
            await self.collection.insert_one(visit.to_document())
            visits_recorded.inc()
        except Exception as e:
            store_write_failures.labels(collection="visits").inc()
            logger.error(f"❌ Failed to log visit {visit.method} {visit.path} from {visit.source_address}: {e}")
            return

        if self.burst_detector is None:
            return
        try:
            await self.burst_detector.inspect(visit.source_address, now=visit.timestamp)
        except Exception as e:
            logger.error(f"❌ Failed to check {visit.source_address} for DDoS: {e}")
