#!/usr/bin/env python3
"""
🚧 Request Gate
Entry point every request passes through before reaching a route:

    START -> CLASSIFIED -> DENIED                       (attack signature)
                        -> RATE_CHECKED -> DENIED       (gate quota exceeded)
                                        -> ALLOWED      (handler runs)

Visit and threat writes are detached background tasks with a short deadline,
so a slow store never delays the response.
"""

import time
from enum import Enum
from typing import Optional

import structlog
from fastapi import status
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from sentinel.core.auth import verify_session_token
from sentinel.core.config import Settings
from sentinel.models import ThreatRecord, VisitRecord
from sentinel.security.classifier import RequestClassifier, default_rules
from sentinel.security.metrics import gate_decisions, gate_latency
from sentinel.security.rate_limiter import get_client_ip
from sentinel.utils.background import fire_and_forget

logger = structlog.get_logger(__name__)

FORBIDDEN_PAGE = "/forbidden"
LOGIN_PAGE = "/login"
ADMIN_ROOT = "/admin"

CONTENT_SECURITY_POLICY = "; ".join([
    "default-src 'self'",
    "script-src 'self' 'unsafe-inline' 'unsafe-eval' https://cdn.jsdelivr.net https://analytics.google.com https://www.googletagmanager.com",
    "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com https://cdn.jsdelivr.net",
    "img-src 'self' data: https: blob:",
    "font-src 'self' https://fonts.gstatic.com https://cdn.jsdelivr.net",
    "connect-src 'self' https://api.cloudinary.com https://analytics.google.com",
    "frame-src 'self' https://www.youtube.com",
    "object-src 'none'",
    "base-uri 'self'",
])


class GateDecision(Enum):
    ALLOWED = "allowed"
    DENIED_SIGNATURE = "denied_signature"
    DENIED_RATE_LIMIT = "denied_rate_limit"
    ADMIN_REDIRECT = "admin_redirect"


def apply_security_headers(response: Response) -> Response:
    response.headers["Content-Security-Policy"] = CONTENT_SECURITY_POLICY
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["X-Frame-Options"] = "SAMEORIGIN"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains; preload"
    return response


def is_api_request(request: Request) -> bool:
    if request.url.path.startswith("/api/"):
        return True
    accept = request.headers.get("accept", "")
    return "application/json" in accept and "text/html" not in accept


def should_log_visit(path: str) -> bool:
    """Page navigations only: no assets, API calls, robots.txt or favicon"""
    return (
        "." not in path
        and not path.startswith("/api/")
        and path not in ("/robots.txt", "/favicon.ico")
    )


class RequestGateMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, settings: Settings, classifier: Optional[RequestClassifier] = None):
        super().__init__(app)
        self.settings = settings
        self.classifier = classifier or RequestClassifier(default_rules(settings.extra_scanner_agents))

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        path = request.url.path
        ip = get_client_ip(request)
        user_agent = request.headers.get("user-agent")

        # CLASSIFIED
        label = self.classifier.match(str(request.url), user_agent)
        if label is not None:
            # The hop onto the denial page was already recorded at the original path
            if path != FORBIDDEN_PAGE:
                self._log_threat(request, ip, label)
            gate_decisions.labels(decision=GateDecision.DENIED_SIGNATURE.value).inc()
            gate_latency.observe(time.perf_counter() - started)
            logger.warning(f"Blocked {request.method} {path} from {ip}: {label}")
            return apply_security_headers(self._deny(request))

        # Visit logging does not depend on the rate check outcome
        if should_log_visit(path):
            self._log_visit(request, ip, user_agent)

        # RATE_CHECKED
        if self.settings.gate_rate_limit > 0:
            limiter = request.app.state.rate_limiter
            result = await limiter.check(ip, self.settings.gate_rate_limit,
                                         self.settings.gate_rate_window_ms, bucket="gate")
            if result.limited:
                gate_decisions.labels(decision=GateDecision.DENIED_RATE_LIMIT.value).inc()
                gate_latency.observe(time.perf_counter() - started)
                response = JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content={"error": "Too many requests, please try again later"},
                    headers=result.headers,
                )
                return apply_security_headers(response)

        redirect = self._guard_admin(request)
        if redirect is not None:
            gate_decisions.labels(decision=GateDecision.ADMIN_REDIRECT.value).inc()
            gate_latency.observe(time.perf_counter() - started)
            return redirect

        # ALLOWED
        gate_decisions.labels(decision=GateDecision.ALLOWED.value).inc()
        gate_latency.observe(time.perf_counter() - started)
        response = await call_next(request)
        return apply_security_headers(response)

    def _deny(self, request: Request) -> Response:
        # Already on the denial page: answer 403 here or the redirect never ends
        if is_api_request(request) or request.url.path == FORBIDDEN_PAGE:
            return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"error": "Forbidden"})
        return RedirectResponse(url=FORBIDDEN_PAGE, status_code=status.HTTP_307_TEMPORARY_REDIRECT)

    def _guard_admin(self, request: Request) -> Optional[Response]:
        path = request.url.path
        if path != ADMIN_ROOT and not path.startswith(ADMIN_ROOT + "/"):
            return None

        token = request.cookies.get(self.settings.session_cookie)
        if not token:
            target = LOGIN_PAGE if path in (ADMIN_ROOT, ADMIN_ROOT + "/") else ADMIN_ROOT
            return RedirectResponse(url=target, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
        if verify_session_token(token, self.settings) is None:
            return RedirectResponse(url=LOGIN_PAGE, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
        return None

    def _services(self, request: Request):
        return getattr(request.app.state, "services", None)

    def _log_visit(self, request: Request, ip: str, user_agent: Optional[str]):
        services = self._services(request)
        if services is None:
            return
        visit = VisitRecord(
            source_address=ip,
            path=request.url.path,
            method=request.method,
            user_agent=user_agent,
            referer=request.headers.get("referer"),
        )
        fire_and_forget(
            services.visit_recorder.record(visit),
            timeout=self.settings.background_timeout_seconds,
            label="visit logging",
        )

    def _log_threat(self, request: Request, ip: str, label: str):
        services = self._services(request)
        if services is None:
            return
        threat = ThreatRecord(
            source_address=ip,
            request_count=1,
            time_window_seconds=0,
            paths=[request.url.path],
            blocked=True,
            kind="signature",
            reason=label,
        )
        fire_and_forget(
            services.threat_recorder.record(threat),
            timeout=self.settings.background_timeout_seconds,
            label="threat logging",
        )
