# auth.py
import logging
import os
import time
from datetime import datetime, timezone
from typing import Iterable, Literal, Optional, Tuple

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.sessions import SessionMiddleware

from mailadmin.errors import AuthError
from mailadmin.logging_setup import log_operation
from mailadmin.service import MailService
from mailadmin.types import Identity

from webapp.context import get_service, run_blocking
from webapp.schemas import LoginBody

logger = logging.getLogger(__name__)

AUTH_MODE = os.getenv("AUTH_MODE", "required").lower()
SESSION_SECRET = os.getenv("SESSION_SECRET", "")
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", "3600"))

COOKIE_SECURE = os.getenv("COOKIE_SECURE", "true").lower() in ("1", "true", "yes", "on")
COOKIE_SAMESITE = os.getenv(
    "COOKIE_SAMESITE", "lax"
)  # "lax" is usually correct for SPA + same-site API

AUTH_ENABLED = AUTH_MODE == "required"

if AUTH_ENABLED and not SESSION_SECRET:
    raise RuntimeError("Set SESSION_SECRET in .env (long random string)")


def session_email(request: Request) -> Optional[str]:
    if not AUTH_ENABLED:
        return None
    return request.session.get("email")


def require_same_user(request: Request, email: str) -> None:
    """The email in the request body must be the one that logged in."""
    if not AUTH_ENABLED:
        return
    current = session_email(request)
    if current is None or current != email.strip().lower():
        raise HTTPException(status_code=403, detail="Email does not match the logged-in user")


router = APIRouter(prefix="/api/auth", tags=["auth"])


class AuthStatus(BaseModel):
    mode: Literal["open", "required"]
    authed: Optional[bool] = None
    email: Optional[str] = None


@router.get("/status", response_model=AuthStatus)
async def auth_status(request: Request):
    if not AUTH_ENABLED:
        return {"mode": "open"}
    email = request.session.get("email")
    return {"mode": "required", "authed": email is not None, "email": email}


@router.post("/login")
async def login(body: LoginBody, request: Request, service: MailService = Depends(get_service)):
    identity = body.identity()
    try:
        await run_blocking(service.authenticate, identity)
    except AuthError:
        logger.info("Failed login for %s", identity.key)
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if AUTH_ENABLED:
        request.session["email"] = identity.key
        request.session["login_at"] = int(time.time())
    return {"success": True, "message": "Login successful", "user": {"email": identity.key}}


def _live_session(request: Request) -> Tuple[str, int]:
    """(email, login_at) of a logged-in, unexpired session, else 401."""
    if not AUTH_ENABLED:
        raise HTTPException(status_code=400, detail="Sessions are disabled (AUTH_MODE=open)")
    email = request.session.get("email")
    login_at = request.session.get("login_at") or 0
    if email is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if time.time() - login_at > SESSION_MAX_AGE:
        request.session.clear()
        raise HTTPException(status_code=401, detail="Session expired")
    return email, login_at


def _iso(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@router.get("/profile")
async def auth_profile(request: Request):
    email, login_at = _live_session(request)
    age = int(time.time()) - login_at
    return {
        "success": True,
        "user": {
            "email": email,
            "authenticatedAt": _iso(login_at),
            "sessionAge": age,
            "remainingTime": max(0, SESSION_MAX_AGE - age),
        },
    }


@router.post("/refresh")
async def refresh(request: Request):
    email, _ = _live_session(request)
    login_at = int(time.time())
    request.session["login_at"] = login_at
    log_operation(email, "session_refresh")
    return {
        "success": True,
        "message": "Session refreshed",
        "user": {"email": email, "authenticatedAt": _iso(login_at)},
    }


@router.post("/validate")
async def validate(body: LoginBody, service: MailService = Depends(get_service)):
    valid = await run_blocking(service.validate_credentials, body.identity())
    if valid:
        return {"success": True, "valid": True, "message": "Credentials are valid"}
    return {"success": True, "valid": False, "error": "Invalid email or password"}


@router.post("/logout")
async def logout(request: Request, service: MailService = Depends(get_service)):
    email = session_email(request)
    if email:
        await run_blocking(service.logout, Identity(email=email, password=""))
    if AUTH_ENABLED:
        request.session.clear()
    return {"success": True, "message": "Logged out"}


class SessionAuthGateMiddleware(BaseHTTPMiddleware):
    """
    Protect the mail and profile API using the session cookie.
    """

    def __init__(
        self,
        app,
        protected_prefixes: Iterable[str] = ("/api/emails", "/api/profile"),
        max_age: int = SESSION_MAX_AGE,
    ):
        super().__init__(app)
        self.protected_prefixes = tuple(protected_prefixes)
        self.max_age = max_age

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith(self.protected_prefixes):
            return await call_next(request)

        email = request.session.get("email")
        login_at = request.session.get("login_at") or 0
        if email is None:
            return JSONResponse({"success": False, "error": "Not authenticated"}, status_code=401)
        if time.time() - login_at > self.max_age:
            request.session.clear()
            return JSONResponse({"success": False, "error": "Session expired"}, status_code=401)
        return await call_next(request)


def setup_auth(app: FastAPI) -> None:
    app.include_router(router)

    if not AUTH_ENABLED:
        return

    app.add_middleware(SessionAuthGateMiddleware)
    app.add_middleware(
        SessionMiddleware,
        secret_key=SESSION_SECRET,
        max_age=SESSION_MAX_AGE,
        same_site=COOKIE_SAMESITE,
        https_only=COOKIE_SECURE,  # set COOKIE_SECURE=false on localhost http
    )
