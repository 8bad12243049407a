import hmac
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request

from . import config
from .session_store import get_session_store

logger = logging.getLogger(__name__)


def verify_admin_password(password: str) -> bool:
    """Constant-time comparison against ADMIN_PASSWORD"""
    return hmac.compare_digest(password.encode(), config.ADMIN_PASSWORD.encode())


def is_session_valid(token: Optional[str], store) -> bool:
    """
    Check an admin session token.

    In development any non-empty cookie is accepted; elsewhere the token must
    be live in the session store.
    """
    if not token:
        return False

    if config.is_development():
        logger.debug("[Auth] Dev mode: session cookie found, treating as authenticated")
        return True

    return store.exists(token)


def get_session_token(request: Request) -> Optional[str]:
    return request.cookies.get(config.SESSION_COOKIE_NAME)


async def require_admin(request: Request, store=Depends(get_session_store)) -> str:
    """Dependency for admin-only routes; returns the session token"""
    token = get_session_token(request)
    if not is_session_valid(token, store):
        logger.warning(f"Unauthorized admin request to {request.url.path}")
        raise HTTPException(status_code=401, detail="Unauthorized")
    return token


async def require_cron_or_admin(request: Request, store=Depends(get_session_store)) -> str:
    """
    Accepts ``Authorization: Bearer <CRON_SECRET>`` or an admin session.
    Returns which one matched: "cron" or "admin".
    """
    auth_header = request.headers.get("authorization")
    if config.CRON_SECRET and auth_header:
        if hmac.compare_digest(auth_header.encode(), f"Bearer {config.CRON_SECRET}".encode()):
            return "cron"

    if is_session_valid(get_session_token(request), store):
        return "admin"

    logger.warning(f"Unauthorized cron request to {request.url.path}")
    raise HTTPException(status_code=401, detail="Unauthorized")
