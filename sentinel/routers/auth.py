# 🔐 Admin session endpoints: login, session check, PIN check, logout

import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel

from sentinel.core.auth import (
    create_session_token,
    credentials_match,
    extract_token,
    verify_session_token,
)
from sentinel.core.config import Settings, get_settings
from sentinel.security.rate_limiter import rate_limit

logger = logging.getLogger(__name__)

router = APIRouter()

PIN_CHECK_TYPE = "cloudinary_test_pin"


class LoginRequest(BaseModel):
    username: str
    password: str


class PinCheckRequest(BaseModel):
    type: str
    pin: str = ""


@router.post("/login", dependencies=[Depends(rate_limit(
    "login", limit=5, window_ms=15 * 60 * 1000,
    message="Too many login attempts, please try again later",
))])
async def login(body: LoginRequest, response: Response, settings: Settings = Depends(get_settings)):
    if not credentials_match(body.username, body.password, settings):
        logger.warning(f"⚠️ Failed admin login for {body.username!r}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    token = create_session_token(body.username, settings)
    response.set_cookie(
        key=settings.session_cookie,
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        max_age=settings.session_hours * 3600,
    )
    logger.info(f"✅ Admin {body.username} logged in")
    return {"success": True}


@router.get("/check")
async def check_session(request: Request, settings: Settings = Depends(get_settings)):
    token = extract_token(request, settings)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No authentication token found")

    payload = verify_session_token(token, settings)
    if payload is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication token")

    return {"authenticated": True, "username": payload.get("username", "admin")}


@router.post("/check", dependencies=[Depends(rate_limit(
    "pin_check", limit=5, window_ms=60 * 1000,
    message="Too many PIN attempts, please try again later",
))])
async def check_pin(body: PinCheckRequest, settings: Settings = Depends(get_settings)):
    """Verify the test-page PIN against TEST_PIN"""
    if body.type != PIN_CHECK_TYPE:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported check type")
    if not settings.test_pin:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="PIN check is not configured")

    if not hmac.compare_digest(body.pin.encode(), settings.test_pin.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid PIN")
    return {"valid": True}


@router.post("/logout")
async def logout(response: Response, settings: Settings = Depends(get_settings)):
    response.delete_cookie(settings.session_cookie)
    return {"success": True}
