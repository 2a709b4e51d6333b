# 🔐 Authentication Module for the admin dashboards
# HS256 session tokens carried in the auth-token cookie or a bearer header

import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status

from sentinel.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


def create_session_token(username: str, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": username,
        "username": username,
        "iat": now,
        "exp": now + timedelta(hours=settings.session_hours),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_session_token(token: str, settings: Settings) -> Optional[Dict[str, Any]]:
    """Decode a session token; None when it is expired, tampered or malformed"""
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        logger.info("Session token expired")
        return None
    except jwt.InvalidTokenError:
        return None


def extract_token(request: Request, settings: Settings) -> Optional[str]:
    token = request.cookies.get(settings.session_cookie)
    if token:
        return token
    authorization = request.headers.get("authorization", "")
    if authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


def credentials_match(username: str, password: str, settings: Settings) -> bool:
    if not settings.admin_username or not settings.admin_password:
        return False
    username_ok = hmac.compare_digest(username.encode(), settings.admin_username.encode())
    password_ok = hmac.compare_digest(password.encode(), settings.admin_password.encode())
    return username_ok and password_ok


async def get_current_admin(request: Request, settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    """
    FastAPI dependency guarding the dashboard endpoints
    """
    token = extract_token(request, settings)
    payload = verify_session_token(token, settings) if token else None
    if payload is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return payload
