"""
Admin authentication
Password login that issues an httpOnly session cookie checked by the admin routes
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from .. import config
from ..auth import get_session_token, is_session_valid, verify_admin_password
from ..rate_limiter import create_rate_limiter
from ..schemas import AdminLoginRequest
from ..session_store import get_session_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/auth", tags=["Admin Auth"])

# 10 login attempts per 5 minutes per IP
login_rate_limit = create_rate_limiter(limit=10, window_seconds=300, key_prefix="admin_login")


@router.get("")
async def check_auth(request: Request, store=Depends(get_session_store)):
    """Is the caller's session cookie valid"""
    if is_session_valid(get_session_token(request), store):
        return {"authenticated": True}
    return JSONResponse(status_code=401, content={"authenticated": False})


@router.post("")
async def login(
    data: AdminLoginRequest,
    response: Response,
    store=Depends(get_session_store),
    _: None = Depends(login_rate_limit),
):
    if not data.password:
        raise HTTPException(status_code=400, detail="Password is required")

    if not verify_admin_password(data.password):
        logger.warning("❌ Admin login failed: invalid password")
        raise HTTPException(status_code=401, detail="Invalid password")

    token = store.create(config.SESSION_MAX_AGE)
    response.set_cookie(
        key=config.SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=config.is_production(),
        samesite="lax",
        max_age=config.SESSION_MAX_AGE,
        path="/",
    )
    logger.info("✅ Admin logged in")
    return {"success": True, "message": "Authentication successful"}


@router.delete("")
async def logout(request: Request, response: Response, store=Depends(get_session_store)):
    token = get_session_token(request)
    if token:
        store.revoke(token)

    response.delete_cookie(key=config.SESSION_COOKIE_NAME, path="/")
    return {"success": True, "message": "Logged out successfully"}
