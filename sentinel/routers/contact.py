#!/usr/bin/env python3
"""
📧 Contact Router

Delivers the portfolio contact form by e-mail. Limited to one message per
minute per sender address and five per ten minutes per client address.
"""

import logging
import re

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from sentinel.core.config import Settings, get_settings
from sentinel.security.rate_limiter import RateLimiter, rate_limit
from sentinel.services.email_service import ContactMessage, send_contact_email

logger = logging.getLogger(__name__)

router = APIRouter()

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PER_EMAIL_WINDOW_MS = 60 * 1000


class ContactRequest(BaseModel):
    name: str = ""
    email: str = ""
    subject: str = ""
    message: str = ""


@router.post("", dependencies=[Depends(rate_limit(
    "contact_ip", limit=5, window_ms=10 * 60 * 1000,
    message="Too many messages, please try again later",
))])
async def submit_contact(body: ContactRequest, request: Request, settings: Settings = Depends(get_settings)):
    if not all(value.strip() for value in (body.name, body.email, body.subject, body.message)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="All fields are required")
    if not EMAIL_PATTERN.match(body.email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email address")

    limiter: RateLimiter = request.app.state.rate_limiter
    result = await limiter.check(body.email.lower(), 1, PER_EMAIL_WINDOW_MS, bucket="contact_email")
    if result.limited:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Please wait a minute before sending another message",
            headers=result.headers,
        )

    sent = await send_contact_email(
        ContactMessage(name=body.name, email=body.email, subject=body.subject, message=body.message),
        settings,
    )
    if not sent.success:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=sent.error or "Failed to send email")

    return {"success": True}
