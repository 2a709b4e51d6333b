#!/usr/bin/env python3
"""
🛡️ Security Router

Threat overview for the admin dashboard and the public IP blacklist download.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response

from sentinel.core.auth import get_current_admin
from sentinel.services import blacklist_export
from sentinel.services.container import SentinelServices, get_services
from sentinel.services.threat_service import DEFAULT_SECURITY_RANGE, SECURITY_TIME_RANGES

logger = logging.getLogger(__name__)

router = APIRouter()

BLACKLIST_LIMIT = 1000


def _validate_range(time_range: str) -> str:
    if time_range not in SECURITY_TIME_RANGES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid timeRange. Use one of: {', '.join(SECURITY_TIME_RANGES)}",
        )
    return time_range


@router.get("")
async def get_security_overview(
    time_range: str = Query(DEFAULT_SECURITY_RANGE, alias="timeRange"),
    admin: Dict[str, Any] = Depends(get_current_admin),
    services: SentinelServices = Depends(get_services),
):
    _validate_range(time_range)
    try:
        return await services.threats.overview(time_range)
    except Exception as e:
        logger.error(f"❌ Error fetching security overview: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to fetch security data")


@router.get("/blacklist")
async def download_blacklist(
    format: str = Query("txt"),
    time_range: str = Query("30d", alias="timeRange"),
    services: SentinelServices = Depends(get_services),
):
    """
    Ranked deny list of sources seen in the threats collection.

    Formats: txt, json, csv, apache, nginx. The document is rendered in
    full before the response starts, so a failure never yields a partial
    download.
    """
    _validate_range(time_range)
    if format not in blacklist_export.FORMATS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(blacklist_export.UnsupportedFormatError(format)),
        )

    try:
        entries = await services.threats.top_attackers(time_range, limit=BLACKLIST_LIMIT)
    except Exception as e:
        logger.error(f"❌ Error building blacklist: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to generate blacklist")

    rendered = blacklist_export.render(entries, format)
    logger.info(f"📥 Blacklist exported: {len(entries)} entries as {format}")
    return Response(
        content=rendered.body,
        media_type=rendered.media_type,
        headers={"Content-Disposition": f'attachment; filename="{rendered.filename}"'},
    )
