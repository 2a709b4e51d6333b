#!/usr/bin/env python3
"""
📊 Analytics Router

Dashboard snapshot and live view for the admin, plus the visit logging
endpoint used by client-side trackers.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from sentinel.core.auth import get_current_admin
from sentinel.core.config import Settings, get_settings
from sentinel.models import VisitRecord
from sentinel.security.rate_limiter import get_client_ip
from sentinel.services.analytics_service import DEFAULT_TIME_RANGE, TIME_RANGES
from sentinel.services.container import SentinelServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def get_analytics(
    time_range: str = Query(DEFAULT_TIME_RANGE, alias="timeRange"),
    admin: Dict[str, Any] = Depends(get_current_admin),
    services: SentinelServices = Depends(get_services),
):
    """Aggregated visit statistics for 1h / 24h / 7d / 30d"""
    if time_range not in TIME_RANGES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid timeRange. Use one of: {', '.join(TIME_RANGES)}",
        )
    try:
        return await services.analytics.summarize(time_range)
    except Exception as e:
        logger.error(f"❌ Error fetching analytics: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to fetch analytics")


@router.get("/real-time")
async def get_real_time(
    admin: Dict[str, Any] = Depends(get_current_admin),
    services: SentinelServices = Depends(get_services),
):
    try:
        return await services.analytics.real_time()
    except Exception as e:
        logger.error(f"❌ Error fetching real-time analytics: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to fetch real-time analytics")


def _failure(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


class VisitLogRequest(BaseModel):
    path: str = Field(min_length=1)
    method: str = Field(min_length=1)
    ip: Optional[str] = None
    user_agent: Optional[str] = Field(None, alias="userAgent")
    referer: Optional[str] = None


async def _read_capped(request: Request, limit: int) -> Optional[bytes]:
    """Read the body chunk by chunk; None as soon as it grows past ``limit``"""
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            return None
    return bytes(body)


def _visit_source(request: Request, reported_ip: Optional[str], settings: Settings) -> str:
    peer = request.client.host if request.client else None
    if reported_ip and peer in settings.trusted_log_sources:
        return reported_ip
    return get_client_ip(request)


@router.post("/log")
async def log_visit(
    request: Request,
    settings: Settings = Depends(get_settings),
    services: SentinelServices = Depends(get_services),
):
    """
    Record a visit reported by a tracker.

    Body: {path, method, ip?, userAgent?, referer?}. Oversized bodies are
    rejected with 413 from the declared length or the bytes actually read.
    ``ip`` is honoured only from trusted peers.
    """
    declared = request.headers.get("content-length", "0")
    if declared.isdigit() and int(declared) > settings.max_log_body_bytes:
        logger.warning(f"⚠️ Analytics request too large: {declared} bytes")
        return _failure(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "Request body too large")

    try:
        body = await asyncio.wait_for(
            _read_capped(request, settings.max_log_body_bytes),
            timeout=settings.log_body_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning("⚠️ Timed out reading analytics request body")
        return _failure(status.HTTP_400_BAD_REQUEST, "Request body timeout")

    if body is None:
        logger.warning(f"⚠️ Analytics request over {settings.max_log_body_bytes} bytes")
        return _failure(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "Request body too large")

    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error(f"❌ Failed to parse analytics JSON: {e}")
        return _failure(status.HTTP_400_BAD_REQUEST, "Invalid JSON")

    try:
        payload = VisitLogRequest.model_validate(data)
    except ValidationError as e:
        logger.warning(f"⚠️ Rejected analytics payload: {e.error_count()} invalid fields")
        return _failure(status.HTTP_400_BAD_REQUEST, "Missing required analytics data")

    visit = VisitRecord(
        source_address=_visit_source(request, payload.ip, settings),
        path=payload.path,
        method=payload.method,
        user_agent=payload.user_agent or request.headers.get("user-agent"),
        referer=payload.referer or request.headers.get("referer"),
    )
    await services.visit_recorder.record(visit)
    return {"success": True}


@router.get("/log")
async def log_visit_pixel(request: Request, services: SentinelServices = Depends(get_services)):
    """Compatibility endpoint: logs this request itself as the visit"""
    visit = VisitRecord(
        source_address=get_client_ip(request),
        path=request.url.path,
        method="GET",
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
    )
    await services.visit_recorder.record(visit)
    return {"success": True}
