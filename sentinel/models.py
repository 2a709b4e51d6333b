"""
Record shapes shared by the recorders, aggregators and the request gate.

Visit and threat records are append-only: the recorders insert them once and
nothing in this package updates or deletes them.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

UNKNOWN = "unknown"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class VisitRecord:
    """One accepted request"""
    source_address: str
    path: str
    method: str
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    derived_device: str = UNKNOWN
    derived_browser: str = UNKNOWN
    derived_os: str = UNKNOWN
    timestamp: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "ip": self.source_address,
            "path": self.path,
            "method": self.method,
            "userAgent": self.user_agent,
            "referer": self.referer,
            "device": self.derived_device,
            "browser": self.derived_browser,
            "os": self.derived_os,
            "timestamp": self.timestamp,
        }


@dataclass
class ThreatRecord:
    """One detected burst or signature hit"""
    source_address: str
    request_count: int
    time_window_seconds: int
    paths: List[str] = field(default_factory=list)
    blocked: bool = True
    kind: str = "burst"  # "burst" | "signature"
    reason: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        document = {
            "ip": self.source_address,
            "timestamp": self.timestamp,
            "requestCount": self.request_count,
            "timeWindow": self.time_window_seconds,
            "paths": list(dict.fromkeys(self.paths)),
            "blocked": self.blocked,
            "kind": self.kind,
        }
        if self.reason:
            document["reason"] = self.reason
        return document


@dataclass
class BlacklistEntry:
    ip: str
    attempt_count: int
    last_seen: Optional[datetime] = None


@dataclass
class RateLimitResult:
    """Rate limit check result"""
    limited: bool
    retry_after_seconds: int
    limit: int
    remaining: int
    reset_at_ms: int

    @property
    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at_ms / 1000)),
        }
        if self.limited:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers
