import logging

from sentinel.models import ThreatRecord, utcnow
from sentinel.security.metrics import store_write_failures, threats_recorded

logger = logging.getLogger(__name__)


class ThreatRecorder:
    """Appends one document per detected burst or signature hit"""

    def __init__(self, collection):
        self.collection = collection

    async def record(self, threat: ThreatRecord) -> None:
        # No warn-only path at write time: every stored threat is marked blocked
        threat.blocked = True
        if threat.timestamp is None:
            threat.timestamp = utcnow()

        try:
            await self.collection.insert_one(threat.to_document())
            threats_recorded.labels(kind=threat.kind).inc()
            logger.warning(
                f"🚨 Threat recorded ({threat.kind}) from {threat.source_address}: "
                f"{threat.request_count} requests in {threat.time_window_seconds}s"
            )
        except Exception as e:
            store_write_failures.labels(collection="threats").inc()
            logger.error(f"❌ Failed to record threat from {threat.source_address}: {e}")
