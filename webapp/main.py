import asyncio
import logging
import os
import signal
import time
from contextlib import asynccontextmanager
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from mailadmin.errors import MailAdminError
from mailadmin.logging_setup import setup_logging
from mailadmin.service import MailService

from webapp.auth import require_same_user, setup_auth
from webapp.context import get_service, run_blocking, shutdown_service
from webapp.schemas import (
    AIResponseBody,
    Credentials,
    DraftBody,
    MoveBody,
    ProfileBody,
    ReplyBody,
    SendBody,
    SignatureBody,
)

logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()
REAP_INTERVAL_SECONDS = 60.0

TRANSIENT_LOOP_ERRORS = (ConnectionError, TimeoutError, asyncio.CancelledError)


async def _reap_idle_sessions(service: MailService, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            closed = await run_blocking(service.reap_idle)
        except Exception:
            logger.exception("Idle session reaper failed")
            continue
        if closed:
            logger.debug("Reaper closed %d idle session(s)", closed)


def _on_loop_exception(loop, context) -> None:
    exc = context.get("exception")
    if exc is None or isinstance(exc, TRANSIENT_LOOP_ERRORS):
        # Client disconnects and abandoned tasks; the server stays up.
        logger.warning("Event loop: %s", context.get("message"), exc_info=exc)
        return

    # Errors here escaped every request; stop cleanly through the lifespan.
    logger.critical(
        "Unhandled error outside request scope: %s",
        context.get("message"),
        exc_info=context.get("exception"),
    )
    os.kill(os.getpid(), signal.SIGTERM)


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = get_service()
    setup_logging(service.settings.log_level, service.settings.log_dir)
    asyncio.get_running_loop().set_exception_handler(_on_loop_exception)

    interval = min(REAP_INTERVAL_SECONDS, service.settings.connection_idle_timeout)
    reaper = asyncio.create_task(_reap_idle_sessions(service, interval))
    logger.info("mailadmin started")
    try:
        yield
    finally:
        reaper.cancel()
        try:
            await reaper
        except asyncio.CancelledError:
            pass
        await run_blocking(shutdown_service)
        logger.info("mailadmin stopped")


app = FastAPI(title="mailadmin", lifespan=lifespan)
setup_auth(app)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
if CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def access_log(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s -> %d (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


# -----------------------
# Error translation
# -----------------------


@app.exception_handler(MailAdminError)
async def mail_error_handler(request: Request, exc: MailAdminError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s: %s", request.method, request.url.path, type(exc).__name__, exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse({"success": False, "error": str(exc)}, status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"success": False, "error": exc.detail}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse({"success": False, "error": message}, status_code=400)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"success": False, "error": "Internal server error"}, status_code=500)


# -----------------------
# Health
# -----------------------


@app.get("/api/health")
async def health(service: MailService = Depends(get_service)) -> dict:
    return {
        "status": "ok",
        "uptime": round(time.monotonic() - STARTED_AT, 1),
        "cached_partitions": len(service.cache),
        "open_sessions": len(service.pool),
    }


# -----------------------
# Emails
# -----------------------
# Fixed paths are declared before the /{folder} catch-alls.


@app.get("/api/emails/folders")
async def get_folders(service: MailService = Depends(get_service)) -> dict:
    return {"success": True, "folders": service.resolver.as_dict()}


@app.post("/api/emails/send")
async def send_email(body: SendBody, request: Request, service: MailService = Depends(get_service)) -> dict:
    require_same_user(request, body.email)
    result = await run_blocking(service.mutations.send_message, body.identity(), body.to_outgoing())
    return {"success": True, "message": "Email sent successfully", **result.to_dict()}


@app.post("/api/emails/save-draft")
async def save_draft(body: DraftBody, request: Request, service: MailService = Depends(get_service)) -> dict:
    require_same_user(request, body.email)
    await run_blocking(service.mutations.save_draft, body.identity(), body.to_outgoing())
    return {"success": True, "message": "Draft saved"}


@app.post("/api/emails/reply")
async def reply_email(body: ReplyBody, request: Request, service: MailService = Depends(get_service)) -> dict:
    require_same_user(request, body.email)
    result = await run_blocking(
        service.mutations.reply_to_message,
        body.identity(),
        body.folder,
        body.uid,
        body.reply_text,
    )
    return {"success": True, "message": "Reply sent", "messageId": result.message_id}


@app.post("/api/emails/move")
async def move_email(body: MoveBody, request: Request, service: MailService = Depends(get_service)) -> dict:
    require_same_user(request, body.email)
    await run_blocking(
        service.mutations.move_message,
        body.identity(),
        body.uid,
        body.source_folder,
        body.target_folder,
    )
    return {"success": True, "message": f"Email moved to {body.target_folder}"}


@app.post("/api/emails/clear-cache")
async def clear_cache(body: Credentials, request: Request, service: MailService = Depends(get_service)) -> dict:
    require_same_user(request, body.email)
    dropped = await run_blocking(service.clear_cache, body.identity())
    return {"success": True, "message": f"Cache cleared ({dropped} folder(s))"}


@app.post("/api/emails/stats")
async def email_stats(body: Credentials, request: Request, service: MailService = Depends(get_service)) -> dict:
    require_same_user(request, body.email)
    stats = await run_blocking(service.hydration.folder_stats, body.identity())
    return {"success": True, "stats": stats}


@app.post("/api/emails/ai-response")
async def ai_response(body: AIResponseBody, request: Request, service: MailService = Depends(get_service)):
    require_same_user(request, body.email)
    if not service.assistant.is_configured():
        return JSONResponse(
            {"success": False, "error": "AI replies are not configured", "fallback": True},
            status_code=400,
        )
    suggestion = await run_blocking(service.suggest_reply, body.identity(), body.folder, body.uid, body.style)
    return {"success": True, **suggestion.to_dict()}


@app.post("/api/emails/{folder}/{uid}/attachment/{index}")
async def download_attachment(
    folder: str,
    uid: int,
    index: int,
    body: Credentials,
    request: Request,
    service: MailService = Depends(get_service),
):
    require_same_user(request, body.email)
    att = await run_blocking(service.hydration.download_attachment, body.identity(), folder, uid, index)
    return Response(
        content=att.data,
        media_type=att.content_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(att.filename)}"},
    )


@app.post("/api/emails/{folder}/{uid}")
async def open_email(
    folder: str,
    uid: int,
    body: Credentials,
    request: Request,
    service: MailService = Depends(get_service),
) -> dict:
    require_same_user(request, body.email)
    detail = await run_blocking(service.hydration.open_message, body.identity(), folder, uid)
    return {"success": True, "email": detail.to_dict()}


@app.delete("/api/emails/{folder}/{uid}")
async def delete_email(
    folder: str,
    uid: int,
    body: Credentials,
    request: Request,
    service: MailService = Depends(get_service),
) -> dict:
    require_same_user(request, body.email)
    permanent = await run_blocking(service.mutations.delete_message, body.identity(), uid, folder)
    message = "Email permanently deleted" if permanent else "Email moved to trash"
    return {"success": True, "message": message}


@app.post("/api/emails/{folder}")
async def list_emails(
    folder: str,
    body: Credentials,
    request: Request,
    limit: int = Query(default=50, ge=1),
    page: int = Query(default=1, ge=1),
    service: MailService = Depends(get_service),
) -> dict:
    require_same_user(request, body.email)
    limit = min(limit, service.settings.max_emails_per_folder)
    entries, total = await run_blocking(
        service.hydration.list_folder,
        body.identity(),
        folder,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return {
        "success": True,
        "folder": folder,
        "emails": [e.to_dict() for e in entries],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "returned": len(entries),
        },
    }


# -----------------------
# Profile
# -----------------------


@app.get("/api/profile")
async def get_profile(request: Request, email: str = Query(...), service: MailService = Depends(get_service)) -> dict:
    require_same_user(request, email)
    profile = await run_blocking(service.profiles.get_profile, email)
    return {"success": True, "profile": profile}


@app.post("/api/profile")
async def save_profile(body: ProfileBody, request: Request, service: MailService = Depends(get_service)) -> dict:
    require_same_user(request, body.email)
    profile = await run_blocking(service.profiles.save_profile, body.email, body.profile)
    return {"success": True, "profile": profile}


@app.post("/api/profile/signature")
async def upload_signature(body: SignatureBody, request: Request, service: MailService = Depends(get_service)) -> dict:
    require_same_user(request, body.email)
    try:
        path = await run_blocking(service.profiles.save_signature_image, body.email, body.image_data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "filename": path.name}


@app.get("/api/profile/signature/{email}")
async def get_signature(email: str, request: Request, service: MailService = Depends(get_service)):
    require_same_user(request, email)
    path = await run_blocking(service.profiles.signature_image_path, email)
    if path is None:
        raise HTTPException(status_code=404, detail="No signature image")
    return FileResponse(path)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "webapp.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
    )
