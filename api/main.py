import json
import time
import os
import secrets
import hashlib
import hmac
import uuid
from datetime import datetime, timezone, timedelta
from typing import Any, Optional

import redis
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware

import assistant
import estate
import onboarding
from activity import record_activity
from alerts import send_alert
from db import init_db, health_check
from db import get_profile, upsert_profile, plan_counts, list_activity
from db import create_owned, list_owned, get_owned, update_owned, delete_owned, list_notes_for_executor
from db import get_will, upsert_will
from db import (
    create_executor,
    delete_executor,
    find_active_executors_by_email,
    get_executor,
    list_executors,
    set_executor_status,
)
from db import (
    create_invitation,
    delete_invitation,
    delete_invitations_for_executor,
    get_invitation_by_token,
)
from db import create_trigger_event, get_death_trigger_state
from db import (
    create_executor_session,
    create_planner_session,
    get_executor_session,
    get_planner_session,
    touch_executor_session,
    update_executor_session,
    update_planner_session,
)
from db import list_outreach, record_outreach
from db import create_verification_job, get_verification_job, mark_verification_job
from events import log_event, text_fingerprint, utc_ts
from llm_client import chat_completion, health_llm, LLMUnavailable
from schemas import (
    AssetBody,
    AssetPatch,
    ChatBody,
    DeathNotificationBody,
    DocumentBody,
    DocumentPatch,
    ExecutorBody,
    InvitationChatBody,
    NoteBody,
    NoteDraftBody,
    NotePatch,
    OutreachBody,
    ProfileBody,
    StepCompleteBody,
    WillBody,
    WishBody,
    WishPatch,
)
from storage.s3_client import configured_bucket, health_s3_env, head_bucket_if_debug
from storage.s3_client import presign_get, upload_bytes

app = FastAPI(title="EverEase API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        o.strip() for o in (os.environ.get("CORS_ALLOW_ORIGINS") or "*").split(",") if o.strip()
    ] or ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

MAX_STORED_HISTORY = 200
DOWNLOAD_URL_TTL_SEC = 600


# ============================================================================
# Shared helpers
# ============================================================================

def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _is_debug_enabled() -> bool:
    return _env_bool("DEBUG", False)


def _env_int(name: str, default: int) -> int:
    try:
        return int((os.environ.get(name) or "").strip() or default)
    except ValueError:
        return default


def get_request_id_from_request(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def compute_duration_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 2)


def _api_error(code: str, message: str, status_code: int) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def _not_found(what: str) -> HTTPException:
    return _api_error("not_found", f"{what} not found", 404)


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _redis_client() -> redis.Redis:
    url = (os.environ.get("REDIS_URL") or "").strip() or "redis://localhost:6379/0"
    return redis.Redis.from_url(url, decode_responses=True)


VERIFICATION_QUEUE_NAME = (os.environ.get("VERIFICATION_QUEUE") or "verification_jobs").strip() or "verification_jobs"


# ============================================================================
# Identity: signed bearer tokens (plus mock tokens for local runs)
# ============================================================================

def _auth_token_secret() -> str:
    v = (os.environ.get("AUTH_TOKEN_SECRET") or "").strip()
    return v or "token:insecure-default"


def _auth_token_max_age() -> int:
    return _env_int("AUTH_TOKEN_MAX_AGE_SEC", 30 * 24 * 3600)


def _auth_token_sig(user_id: str, issued_at: int) -> str:
    msg = f"{user_id}.{issued_at}".encode("utf-8")
    return hmac.new(_auth_token_secret().encode("utf-8"), msg, hashlib.sha256).hexdigest()


def make_auth_token(user_id: str, issued_at: Optional[int] = None) -> str:
    ts = int(issued_at or int(time.time()))
    return f"{user_id}.{ts}.{_auth_token_sig(user_id, ts)}"


def _parse_auth_token(token: str) -> str:
    """Return user_id or raise 401 if malformed, badly signed or expired."""
    parts = (token or "").rsplit(".", 2)
    if len(parts) != 3 or not all(parts):
        raise _api_error("invalid_token", "Malformed token", 401)
    user_id, ts_raw, sig = parts
    try:
        ts = int(ts_raw)
    except ValueError:
        raise _api_error("invalid_token", "Malformed token", 401)

    if not hmac.compare_digest(_auth_token_sig(user_id, ts), sig):
        raise _api_error("invalid_token", "Bad token signature", 401)

    age = int(time.time()) - ts
    if age < 0 or age > _auth_token_max_age():
        raise _api_error("expired_token", "Token expired", 401)
    return user_id


def _require_user_id(request: Request) -> str:
    """Resolve the caller. Priority: bearer token, then X-User-Id in DEBUG."""
    auth = (request.headers.get("Authorization") or "").strip()
    if auth.lower().startswith("bearer "):
        token = auth.split(" ", 1)[1].strip()
        if token.startswith("mock:") and len(token) > 5 and _env_bool("AUTH_ALLOW_MOCK_TOKENS", True):
            return token[5:]
        return _parse_auth_token(token)

    if _is_debug_enabled():
        raw = (request.headers.get("X-User-Id") or "").strip()
        if raw:
            return raw

    raise _api_error("unauthorized", "Unauthorized", 401)


# ============================================================================
# Middleware / startup
# ============================================================================

@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    request.state.request_id = request_id
    start_time = time.perf_counter()
    log_event(
        "request_received",
        request_id=request_id,
        route=str(request.url.path),
        method=request.method,
        content_length=request.headers.get("content-length"),
    )
    try:
        response = await call_next(request)
    except Exception as exc:
        log_event(
            "request_error",
            level="error",
            request_id=request_id,
            route=str(request.url.path),
            method=request.method,
            duration_ms=compute_duration_ms(start_time),
            error=str(exc),
        )
        raise
    log_event(
        "request_finished",
        request_id=request_id,
        route=str(request.url.path),
        method=request.method,
        status_code=response.status_code,
        duration_ms=compute_duration_ms(start_time),
    )
    response.headers["X-Request-Id"] = request_id
    return response


# Initialize database on startup
try:
    init_db()
except Exception as e:
    log_event(
        "db_error",
        level="error",
        route="startup",
        method="system",
        error=str(e),
    )


# ============================================================================
# Health / debug
# ============================================================================

@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/health/db")
def health_db(request: Request):
    ok = health_check(request_id=get_request_id_from_request(request))
    return {"ok": ok}


@app.get("/health/llm")
def health_llm_endpoint():
    return health_llm()


@app.get("/health/s3")
def health_s3():
    payload = health_s3_env()
    if payload.get("bucket"):
        payload["head_bucket_ok"] = head_bucket_if_debug(payload["bucket"])
    return payload


@app.get("/health/redis")
def health_redis(request: Request):
    try:
        ok = bool(_redis_client().ping())
        return {"ok": ok}
    except Exception as e:
        log_event(
            "redis_error",
            level="error",
            request_id=get_request_id_from_request(request),
            error=str(e),
        )
        return {"ok": False}


@app.get("/debug/token")
def debug_token(user_id: str):
    if not _is_debug_enabled():
        raise _not_found("Route")
    uid = (user_id or "").strip()
    if not uid:
        raise _api_error("invalid_input", "user_id is required", 400)
    return {"ok": True, "token": make_auth_token(uid)}


# ============================================================================
# Profile / plan overview / activity
# ============================================================================

@app.get("/me/profile")
def me_profile(request: Request):
    user_id = _require_user_id(request)
    profile = get_profile(user_id, request_id=get_request_id_from_request(request))
    if not profile:
        raise _not_found("Profile")
    return {"ok": True, "profile": profile}


@app.put("/me/profile")
def me_profile_update(body: ProfileBody, request: Request):
    user_id = _require_user_id(request)
    profile = upsert_profile(
        user_id,
        email=body.email,
        full_name=body.full_name,
        role=body.role,
        request_id=get_request_id_from_request(request),
    )
    return {"ok": True, "profile": profile}


@app.get("/me/plan")
def me_plan(request: Request):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    counts = plan_counts(user_id, request_id=request_id)
    will = get_will(user_id, request_id=request_id)
    has_will = bool(will and ((will.get("content") or "").strip() or will.get("object_key")))
    session = get_planner_session(user_id, request_id=request_id)
    return {
        "ok": True,
        "counts": counts,
        "has_will": has_will,
        "onboarding": {
            "has_session": session is not None,
            "completed": bool(session) and onboarding.is_finished(onboarding.PLANNER, session),
            "current_step_id": onboarding.current_step_id(onboarding.PLANNER, session) if session else None,
        },
        "completeness": estate.plan_completeness(counts, has_will),
    }


@app.get("/me/activity")
def me_activity(request: Request, limit: int = 50):
    user_id = _require_user_id(request)
    items = list_activity(user_id, limit=limit, request_id=get_request_id_from_request(request))
    return {"ok": True, "items": items}


# ============================================================================
# Planner records
# ============================================================================

def _get_record_or_404(kind: str, what: str, owner_id: str, row_id: str, request_id: str) -> dict:
    row = get_owned(kind, owner_id, row_id, request_id=request_id)
    if not row:
        raise _not_found(what)
    return row


def _patch_record(
    kind: str,
    what: str,
    owner_id: str,
    row_id: str,
    patch: dict,
    required: tuple,
    request_id: str,
) -> dict:
    for key in required:
        if key in patch and patch[key] is None:
            patch.pop(key)
    row = update_owned(kind, owner_id, row_id, patch, request_id=request_id)
    if not row:
        raise _not_found(what)
    return row


def _delete_record(kind: str, what: str, owner_id: str, row_id: str, request_id: str) -> dict:
    if not delete_owned(kind, owner_id, row_id, request_id=request_id):
        raise _not_found(what)
    return {"ok": True, "deleted": row_id}


@app.post("/assets")
def assets_create(body: AssetBody, request: Request):
    user_id = _require_user_id(request)
    row = create_owned("asset", user_id, body.model_dump(exclude_none=True), request_id=get_request_id_from_request(request))
    return {"ok": True, "asset": row}


@app.get("/assets")
def assets_list(request: Request, type: Optional[str] = None):
    user_id = _require_user_id(request)
    rows = list_owned("asset", user_id, {"type": type}, request_id=get_request_id_from_request(request))
    return {"ok": True, "assets": rows}


@app.get("/assets/{asset_id}")
def assets_get(asset_id: str, request: Request):
    user_id = _require_user_id(request)
    row = _get_record_or_404("asset", "Asset", user_id, asset_id, get_request_id_from_request(request))
    return {"ok": True, "asset": row}


@app.patch("/assets/{asset_id}")
def assets_update(asset_id: str, body: AssetPatch, request: Request):
    user_id = _require_user_id(request)
    row = _patch_record(
        "asset",
        "Asset",
        user_id,
        asset_id,
        body.model_dump(exclude_unset=True),
        ("type", "name"),
        get_request_id_from_request(request),
    )
    return {"ok": True, "asset": row}


@app.delete("/assets/{asset_id}")
def assets_delete(asset_id: str, request: Request):
    user_id = _require_user_id(request)
    return _delete_record("asset", "Asset", user_id, asset_id, get_request_id_from_request(request))


@app.post("/documents")
def documents_create(body: DocumentBody, request: Request):
    user_id = _require_user_id(request)
    row = create_owned(
        "document", user_id, body.model_dump(exclude_none=True), request_id=get_request_id_from_request(request)
    )
    return {"ok": True, "document": row}


@app.get("/documents")
def documents_list(request: Request, category: Optional[str] = None):
    user_id = _require_user_id(request)
    rows = list_owned("document", user_id, {"category": category}, request_id=get_request_id_from_request(request))
    return {"ok": True, "documents": rows}


@app.get("/documents/{document_id}")
def documents_get(document_id: str, request: Request):
    user_id = _require_user_id(request)
    row = _get_record_or_404("document", "Document", user_id, document_id, get_request_id_from_request(request))
    return {"ok": True, "document": row}


@app.patch("/documents/{document_id}")
def documents_update(document_id: str, body: DocumentPatch, request: Request):
    user_id = _require_user_id(request)
    row = _patch_record(
        "document",
        "Document",
        user_id,
        document_id,
        body.model_dump(exclude_unset=True),
        ("name", "category"),
        get_request_id_from_request(request),
    )
    return {"ok": True, "document": row}


@app.delete("/documents/{document_id}")
def documents_delete(document_id: str, request: Request):
    user_id = _require_user_id(request)
    return _delete_record("document", "Document", user_id, document_id, get_request_id_from_request(request))


def _require_bucket() -> str:
    bucket = configured_bucket()
    if not bucket:
        raise _api_error("storage_unavailable", "File storage is not configured", 503)
    return bucket


async def _read_upload(request: Request, allowed: Optional[set] = None) -> tuple[bytes, str]:
    content_type = (request.headers.get("content-type") or "application/octet-stream").split(";", 1)[0]
    content_type = content_type.strip().lower() or "application/octet-stream"
    if allowed and content_type not in allowed:
        raise _api_error("invalid_input", f"Unsupported content type: {content_type}", 415)
    max_bytes = _env_int("UPLOAD_MAX_BYTES", 20 * 1024 * 1024)
    too_large = _api_error("invalid_input", f"Upload exceeds {max_bytes} bytes", 413)
    try:
        declared = int(request.headers.get("content-length") or 0)
    except ValueError:
        declared = 0
    if declared > max_bytes:
        raise too_large
    data = bytearray()
    async for chunk in request.stream():
        data.extend(chunk)
        if len(data) > max_bytes:
            raise too_large
    if not data:
        raise _api_error("invalid_input", "Empty upload", 400)
    return bytes(data), content_type


def _store_upload(bucket: str, key: str, data: bytes, content_type: str, request_id: str) -> dict:
    try:
        return upload_bytes(bucket=bucket, key=key, data=data, content_type=content_type, request_id=request_id)
    except Exception:
        raise _api_error("storage_unavailable", "Failed to store the file", 502)


def _presign_or_502(bucket: str, key: str, request_id: str) -> str:
    try:
        return presign_get(bucket=bucket, key=key, expires_sec=DOWNLOAD_URL_TTL_SEC, request_id=request_id)
    except Exception:
        raise _api_error("storage_unavailable", "Failed to create a download link", 502)


@app.post("/documents/{document_id}/file")
async def documents_upload_file(document_id: str, request: Request):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    _get_record_or_404("document", "Document", user_id, document_id, request_id)
    data, content_type = await _read_upload(request)
    bucket = _require_bucket()
    object_key = f"documents/{user_id}/{document_id}/{uuid.uuid4()}"
    up = _store_upload(bucket, object_key, data, content_type, request_id)
    row = update_owned(
        "document",
        user_id,
        document_id,
        {
            "bucket": bucket,
            "object_key": object_key,
            "content_type": content_type,
            "size_bytes": up.get("size_bytes"),
        },
        request_id=request_id,
    )
    return {"ok": True, "document": row}


@app.get("/documents/{document_id}/download")
def documents_download(document_id: str, request: Request):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    doc = _get_record_or_404("document", "Document", user_id, document_id, request_id)
    if not doc.get("object_key"):
        raise _not_found("Document file")
    url = _presign_or_502(doc["bucket"], doc["object_key"], request_id)
    return {"ok": True, "url": url, "expires_in_sec": DOWNLOAD_URL_TTL_SEC}


@app.post("/wishes")
def wishes_create(body: WishBody, request: Request):
    user_id = _require_user_id(request)
    row = create_owned("wish", user_id, body.model_dump(exclude_none=True), request_id=get_request_id_from_request(request))
    return {"ok": True, "wish": row}


@app.get("/wishes")
def wishes_list(request: Request):
    user_id = _require_user_id(request)
    return {"ok": True, "wishes": list_owned("wish", user_id, request_id=get_request_id_from_request(request))}


@app.patch("/wishes/{wish_id}")
def wishes_update(wish_id: str, body: WishPatch, request: Request):
    user_id = _require_user_id(request)
    row = _patch_record(
        "wish",
        "Wish",
        user_id,
        wish_id,
        body.model_dump(exclude_unset=True),
        ("category", "content"),
        get_request_id_from_request(request),
    )
    return {"ok": True, "wish": row}


@app.delete("/wishes/{wish_id}")
def wishes_delete(wish_id: str, request: Request):
    user_id = _require_user_id(request)
    return _delete_record("wish", "Wish", user_id, wish_id, get_request_id_from_request(request))


@app.get("/will")
def will_get(request: Request):
    user_id = _require_user_id(request)
    return {"ok": True, "will": get_will(user_id, request_id=get_request_id_from_request(request))}


@app.put("/will")
def will_put(body: WillBody, request: Request):
    user_id = _require_user_id(request)
    row = upsert_will(user_id, body.model_dump(exclude_none=True), request_id=get_request_id_from_request(request))
    return {"ok": True, "will": row}


@app.post("/will/file")
async def will_upload_file(request: Request, file_name: Optional[str] = None):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    data, content_type = await _read_upload(request)
    bucket = _require_bucket()
    object_key = f"wills/{user_id}/{uuid.uuid4()}"
    up = _store_upload(bucket, object_key, data, content_type, request_id)
    row = upsert_will(
        user_id,
        {
            "source": "upload",
            "file_name": (file_name or "").strip() or None,
            "bucket": bucket,
            "object_key": object_key,
            "content_type": content_type,
            "size_bytes": up.get("size_bytes"),
        },
        request_id=request_id,
    )
    return {"ok": True, "will": row}


def _check_note_executor(user_id: str, executor_id: Optional[str], request_id: str) -> None:
    if not executor_id:
        return
    executor = get_executor(executor_id, request_id=request_id)
    if not executor or executor.get("planner_id") != user_id:
        raise _api_error("invalid_input", "executor_id does not belong to this plan", 400)


@app.post("/notes")
def notes_create(body: NoteBody, request: Request):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    _check_note_executor(user_id, body.executor_id, request_id)
    row = create_owned("note", user_id, body.model_dump(exclude_none=True), request_id=request_id)
    return {"ok": True, "note": row}


@app.get("/notes")
def notes_list(request: Request):
    user_id = _require_user_id(request)
    return {"ok": True, "notes": list_owned("note", user_id, request_id=get_request_id_from_request(request))}


@app.patch("/notes/{note_id}")
def notes_update(note_id: str, body: NotePatch, request: Request):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    patch = body.model_dump(exclude_unset=True)
    _check_note_executor(user_id, patch.get("executor_id"), request_id)
    row = _patch_record("note", "Note", user_id, note_id, patch, ("recipient_name", "content"), request_id)
    return {"ok": True, "note": row}


@app.delete("/notes/{note_id}")
def notes_delete(note_id: str, request: Request):
    user_id = _require_user_id(request)
    return _delete_record("note", "Note", user_id, note_id, get_request_id_from_request(request))


# ============================================================================
# Executors and invitations
# ============================================================================

def _planner_name(planner_id: str, request_id: str) -> str:
    return estate.planner_display_name(planner_id, get_profile(planner_id, request_id=request_id))


def _invitation_link(token: str) -> str:
    base = (os.environ.get("APP_BASE_URL") or "http://localhost:5173").strip().rstrip("/")
    return f"{base}/executor-invitation?token={token}"


def _issue_invitation(executor: dict, planner_name: str, request_id: str) -> dict:
    token = secrets.token_urlsafe(32)
    expires_at = datetime.now(timezone.utc) + timedelta(days=_env_int("INVITATION_TTL_DAYS", 7))
    create_invitation(str(executor["id"]), token, expires_at, request_id=request_id)
    link = _invitation_link(token)
    return {
        "token": token,
        "link": link,
        "expires_at": expires_at.isoformat(),
        "message": estate.invitation_message(
            executor.get("name") or "there", planner_name, link, expires_at.date().isoformat()
        ),
    }


@app.post("/executors")
def executors_create(body: ExecutorBody, request: Request):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    profile = get_profile(user_id, request_id=request_id) or {}
    executor = create_executor(
        user_id,
        name=body.name,
        email=body.email,
        phone=body.phone,
        relationship=body.relationship,
        is_primary=body.is_primary,
        request_id=request_id,
    )
    create_trigger_event(user_id, str(executor["id"]), "professional", request_id=request_id)

    planner_name = estate.planner_display_name(user_id, profile)
    invitation = _issue_invitation(executor, planner_name, request_id)
    self_invite = (profile.get("email") or "").strip().lower() == body.email
    if self_invite:
        invitation["message"] = None
    record_activity(
        user_id,
        "executor_invited",
        details=f"Invited executor {body.name}",
        payload={"executor_id": executor["id"], "self_invite": self_invite},
        request_id=request_id,
    )
    return {"ok": True, "executor": executor, "invitation": invitation, "self_invite": self_invite}


@app.get("/executors")
def executors_list(request: Request):
    user_id = _require_user_id(request)
    return {"ok": True, "executors": list_executors(user_id, request_id=get_request_id_from_request(request))}


@app.delete("/executors/{executor_id}")
def executors_delete(executor_id: str, request: Request):
    user_id = _require_user_id(request)
    if not delete_executor(user_id, executor_id, request_id=get_request_id_from_request(request)):
        raise _not_found("Executor")
    return {"ok": True, "deleted": executor_id}


@app.post("/executors/{executor_id}/invitation")
def executors_reissue_invitation(executor_id: str, request: Request):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    executor = get_executor(executor_id, request_id=request_id)
    if not executor or executor.get("planner_id") != user_id:
        raise _not_found("Executor")
    if executor.get("status") == "active":
        raise _api_error("invalid_input", "Executor has already accepted", 409)
    delete_invitations_for_executor(executor_id, request_id=request_id)
    if executor.get("status") == "declined":
        executor = set_executor_status(executor_id, "pending", request_id=request_id) or executor
    invitation = _issue_invitation(executor, _planner_name(user_id, request_id), request_id)
    return {"ok": True, "executor": executor, "invitation": invitation}


def _load_invitation(token: str, request_id: str) -> tuple[dict, dict]:
    """Return (invitation, executor) or raise invalid / expired."""
    invitation = get_invitation_by_token(token, request_id=request_id)
    if not invitation:
        raise _api_error("invitation_invalid", "Invalid or expired invitation link", 404)
    executor = get_executor(str(invitation["executor_id"]), request_id=request_id)
    if not executor:
        raise _api_error("invitation_invalid", "Invalid or expired invitation link", 404)
    expires_at = _as_datetime(invitation.get("expires_at"))
    if expires_at is None or expires_at <= datetime.now(timezone.utc):
        raise _api_error(
            "invitation_expired",
            "This invitation has expired. Please ask the planner to send a new invitation.",
            410,
        )
    return invitation, executor


@app.get("/invitations/{token}")
def invitations_verify(token: str, request: Request):
    request_id = get_request_id_from_request(request)
    _, executor = _load_invitation(token, request_id)
    planner_name = _planner_name(str(executor["planner_id"]), request_id)
    if executor.get("status") == "active":
        return {"ok": True, "status": "accepted", "planner_name": planner_name}
    return {
        "ok": True,
        "status": "pending",
        "executor": {"name": executor.get("name"), "email": executor.get("email")},
        "planner_name": planner_name,
        "welcome_message": assistant.greeting(
            assistant.EXECUTOR_INVITATION, executor.get("name") or "", planner_name
        ),
    }


@app.post("/invitations/{token}/accept")
def invitations_accept(token: str, request: Request):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    _, executor = _load_invitation(token, request_id)
    executor_email = (executor.get("email") or "").strip().lower()

    profile = get_profile(user_id, request_id=request_id)
    if not profile or not profile.get("email"):
        upsert_profile(
            user_id,
            email=executor_email,
            full_name=(profile or {}).get("full_name") or executor.get("name"),
            role=(profile or {}).get("role") or "executor",
            request_id=request_id,
        )
    elif profile["email"].strip().lower() != executor_email:
        raise _api_error("email_mismatch", "This invitation was sent to a different email address", 403)

    executor = set_executor_status(str(executor["id"]), "active", request_id=request_id) or executor
    delete_invitation(token, request_id=request_id)
    record_activity(
        str(executor["planner_id"]),
        "invitation_accepted",
        details=f"{executor.get('name')} accepted the executor invitation",
        payload={"executor_id": executor["id"]},
        request_id=request_id,
    )
    return {"ok": True, "status": "accepted", "executor": executor}


@app.post("/invitations/{token}/decline")
def invitations_decline(token: str, request: Request):
    request_id = get_request_id_from_request(request)
    _, executor = _load_invitation(token, request_id)
    if executor.get("status") == "active":
        raise _api_error("invalid_input", "Invitation was already accepted", 409)
    set_executor_status(str(executor["id"]), "declined", request_id=request_id)
    delete_invitation(token, request_id=request_id)
    record_activity(
        str(executor["planner_id"]),
        "invitation_declined",
        details=f"{executor.get('name')} declined the executor invitation",
        payload={"executor_id": executor["id"]},
        request_id=request_id,
    )
    return {"ok": True, "status": "declined"}


# ============================================================================
# Assistant plumbing
# ============================================================================

def _llm_text(
    messages: list,
    fallback: str,
    request_id: str,
    session_id: Optional[str],
    flow: str,
    step: Optional[str] = None,
) -> tuple[str, bool]:
    """(text, used_fallback). 503 only when the LLM is required but unavailable."""
    try:
        return chat_completion(messages, request_id=request_id, session_id=session_id, flow=flow, step=step), False
    except LLMUnavailable as e:
        raise _api_error("llm_unavailable", f"LLM unavailable: {e.reason}", 503)
    except Exception as e:
        log_event(
            "assistant_fallback",
            level="warning",
            request_id=request_id,
            session_id=session_id,
            flow=flow,
            error=str(e),
        )
        return fallback, True


def _reply_payload(persona: str, reply: str, fallback: bool, step: Optional[str]) -> dict:
    return {
        "ok": True,
        "reply": reply,
        "mood": assistant.detect_mood(persona, reply),
        "suggest_step_complete": (not fallback) and assistant.suggests_next_step(persona, reply),
        "fallback": fallback,
        "step": step,
    }


@app.post("/invitations/{token}/chat")
def invitations_chat(token: str, body: InvitationChatBody, request: Request):
    request_id = get_request_id_from_request(request)
    _, executor = _load_invitation(token, request_id)
    planner_name = _planner_name(str(executor["planner_id"]), request_id)
    persona = assistant.EXECUTOR_INVITATION
    messages = assistant.build_messages(
        persona,
        [item.model_dump() for item in body.history],
        body.message,
        context={"planner_name": planner_name, "executor_name": executor.get("name")},
    )
    reply, fallback = _llm_text(
        messages, assistant.FALLBACKS[persona], request_id, str(executor["id"]), "invitation_chat"
    )
    return _reply_payload(persona, reply, fallback, None)


# ============================================================================
# Planner onboarding
# ============================================================================

def _apply_step(flow: str, session: dict, step_id: str, data: dict) -> tuple[dict, str]:
    try:
        return onboarding.complete_step(flow, session, step_id, data, now_iso=utc_ts())
    except onboarding.StepError as e:
        raise _api_error(e.code, e.message, e.http_status)


def _ensure_planner_session(user_id: str, request_id: str) -> dict:
    session = get_planner_session(user_id, request_id=request_id)
    if session:
        return session
    return create_planner_session(user_id, onboarding.new_planner_state(), request_id=request_id)


@app.get("/onboarding/planner")
def onboarding_planner_get(request: Request):
    user_id = _require_user_id(request)
    session = _ensure_planner_session(user_id, get_request_id_from_request(request))
    return {
        "ok": True,
        "session": onboarding.session_view(onboarding.PLANNER, session),
        "greeting": assistant.greeting(assistant.PLANNER),
    }


@app.post("/onboarding/planner/steps/{step_id}/complete")
def onboarding_planner_complete(step_id: str, body: StepCompleteBody, request: Request):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    session = _ensure_planner_session(user_id, request_id)
    patch, outcome = _apply_step(onboarding.PLANNER, session, step_id, body.data)
    if patch:
        session = update_planner_session(user_id, patch, request_id=request_id) or {**session, **patch}
        record_activity(
            user_id,
            "onboarding_completed" if outcome == "finished" else "onboarding_step_completed",
            details=f"Planner step {step_id} completed",
            payload={"flow": onboarding.PLANNER, "step_id": step_id},
            request_id=request_id,
        )
    resp = {"ok": True, "outcome": outcome, "session": onboarding.session_view(onboarding.PLANNER, session)}
    if outcome == "finished":
        resp["message"] = onboarding.PLANNER_COMPLETION_MESSAGE
    return resp


@app.post("/onboarding/planner/back")
def onboarding_planner_back(request: Request):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    session = _ensure_planner_session(user_id, request_id)
    patch = onboarding.step_back(onboarding.PLANNER, session)
    if patch:
        session = update_planner_session(user_id, patch, request_id=request_id) or {**session, **patch}
    return {"ok": True, "session": onboarding.session_view(onboarding.PLANNER, session)}


# ============================================================================
# Executor onboarding
# ============================================================================

def _resolve_executor(user_id: str, planner_id: Optional[str], request_id: str) -> dict:
    """Active executor row for the caller (matched by profile email)."""
    profile = get_profile(user_id, request_id=request_id) or {}
    email = (profile.get("email") or "").strip()
    if not email:
        raise _api_error("not_an_executor", "You are not an active executor", 403)
    rows = find_active_executors_by_email(email, request_id=request_id)
    if planner_id:
        rows = [r for r in rows if str(r.get("planner_id")) == planner_id]
    if not rows:
        raise _api_error("not_an_executor", "You are not an active executor", 403)
    if len(rows) > 1:
        raise _api_error(
            "executor_choice_required",
            "You are an executor for several plans; pass planner_id",
            409,
        )
    return rows[0]


def _ensure_executor_session(executor: dict, request_id: str) -> tuple[dict, bool]:
    """(session, created)."""
    session = get_executor_session(str(executor["id"]), request_id=request_id)
    if session:
        return session, False
    planner_id = str(executor["planner_id"])
    death_state = get_death_trigger_state(planner_id, request_id=request_id)
    state = onboarding.new_executor_state(death_state, now_iso=utc_ts())
    return create_executor_session(str(executor["id"]), planner_id, state, request_id=request_id), True


def _executor_context(user_id: str, planner_id: Optional[str], request_id: str) -> tuple[dict, dict]:
    executor = _resolve_executor(user_id, planner_id, request_id)
    session, _ = _ensure_executor_session(executor, request_id)
    return executor, session


def _save_executor_patch(executor: dict, session: dict, patch: dict, request_id: str) -> dict:
    if not patch:
        return session
    return update_executor_session(str(executor["id"]), patch, request_id=request_id) or {**session, **patch}


def _complete_executor_step_if_current(
    executor: dict,
    session: dict,
    step_id: str,
    data: dict,
    extra_patch: dict,
    request_id: str,
) -> tuple[dict, Optional[str]]:
    """Merge a completion of `step_id` into extra_patch when it is the current step."""
    patch = dict(extra_patch)
    outcome = None
    if onboarding.current_step_id(onboarding.EXECUTOR, session) == step_id:
        step_patch, outcome = _apply_step(onboarding.EXECUTOR, session, step_id, data)
        patch.update(step_patch)
    session = _save_executor_patch(executor, session, patch, request_id)
    if outcome:
        _record_executor_step(executor, step_id, outcome, request_id)
    return session, outcome


def _record_executor_step(executor: dict, step_id: str, outcome: str, request_id: str) -> None:
    record_activity(
        str(executor["planner_id"]),
        "onboarding_completed" if outcome == "finished" else "onboarding_step_completed",
        details=f"Executor {executor.get('name')} completed step {step_id}",
        payload={"flow": onboarding.EXECUTOR, "step_id": step_id, "executor_id": executor["id"]},
        request_id=request_id,
    )


@app.get("/onboarding/executor")
def onboarding_executor_get(request: Request, planner_id: Optional[str] = None):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    executor = _resolve_executor(user_id, planner_id, request_id)
    planner_name = _planner_name(str(executor["planner_id"]), request_id)

    session, created = _ensure_executor_session(executor, request_id)
    returning = False
    resume = None
    if not created:
        previous_count = int(session.get("session_count") or 1)
        session = touch_executor_session(str(executor["id"]), request_id=request_id) or session
        if previous_count > 1:
            returning = True
            resume = onboarding.resume_view(session, planner_name)

    return {
        "ok": True,
        "executor": executor,
        "planner_name": planner_name,
        "returning": returning,
        "resume": resume,
        "session": onboarding.session_view(onboarding.EXECUTOR, session),
        "greeting": assistant.greeting(assistant.EXECUTOR_ONBOARDING, executor.get("name") or "", planner_name),
    }


@app.post("/onboarding/executor/steps/{step_id}/complete")
def onboarding_executor_complete(
    step_id: str,
    body: StepCompleteBody,
    request: Request,
    planner_id: Optional[str] = None,
):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    executor, session = _executor_context(user_id, planner_id, request_id)
    patch, outcome = _apply_step(onboarding.EXECUTOR, session, step_id, body.data)
    session = _save_executor_patch(executor, session, patch, request_id)
    if patch:
        _record_executor_step(executor, step_id, outcome, request_id)
    resp = {"ok": True, "outcome": outcome, "session": onboarding.session_view(onboarding.EXECUTOR, session)}
    if outcome == "finished":
        resp["message"] = onboarding.EXECUTOR_COMPLETION_SUMMARY
    return resp


@app.post("/onboarding/executor/back")
def onboarding_executor_back(request: Request, planner_id: Optional[str] = None):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    executor, session = _executor_context(user_id, planner_id, request_id)
    session = _save_executor_patch(executor, session, onboarding.step_back(onboarding.EXECUTOR, session), request_id)
    return {"ok": True, "session": onboarding.session_view(onboarding.EXECUTOR, session)}


# ============================================================================
# Death notification and certificate verification
# ============================================================================

@app.post("/executor/death-notification")
def executor_death_notification(body: DeathNotificationBody, request: Request):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    executor, session = _executor_context(user_id, body.planner_id, request_id)
    planner_id = str(executor["planner_id"])

    details = f"Reported by {executor.get('email')} on {utc_ts()}. Date of death: {body.date_of_death.isoformat()}"
    if body.place_of_death:
        details += f". Place of death: {body.place_of_death}"
    trigger = create_trigger_event(
        planner_id,
        str(executor["id"]),
        "manual",
        verification_details=details,
        reported=True,
        request_id=request_id,
    )
    record_activity(
        planner_id,
        "death_reported",
        details=f"Death reported by executor {executor.get('name')}",
        payload={"trigger_event_id": trigger.get("id"), "executor_id": executor["id"]},
        request_id=request_id,
    )
    session, outcome = _complete_executor_step_if_current(
        executor,
        session,
        "notification",
        {
            "dateOfDeath": body.date_of_death.isoformat(),
            "placeOfDeath": body.place_of_death,
            "relationship": body.relationship,
            "additionalInfo": body.additional_info,
        },
        {},
        request_id,
    )
    return {
        "ok": True,
        "trigger_event_id": trigger.get("id"),
        "step_completed": outcome is not None,
        "session": onboarding.session_view(onboarding.EXECUTOR, session),
    }


@app.post("/executor/death-certificate")
async def executor_death_certificate(request: Request, planner_id: Optional[str] = None):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    executor, session = _executor_context(user_id, planner_id, request_id)
    planner_id = str(executor["planner_id"])

    data, content_type = await _read_upload(request, allowed=estate.CERTIFICATE_CONTENT_TYPES)
    bucket = _require_bucket()
    object_key = f"certificates/{planner_id}/{uuid.uuid4()}"
    up = _store_upload(bucket, object_key, data, content_type, request_id)

    job = create_verification_job(
        planner_id,
        str(executor["id"]),
        bucket,
        object_key,
        content_type,
        int(up.get("size_bytes") or len(data)),
        request_id=request_id,
    )
    job_id = str(job["id"])
    try:
        _redis_client().rpush(VERIFICATION_QUEUE_NAME, json.dumps({"job_id": job_id}))
    except Exception as e:
        mark_verification_job(job_id, "failed", last_error="enqueue_failed", request_id=request_id)
        log_event("verification_enqueue_error", level="error", request_id=request_id, verification_job_id=job_id, error=str(e))
        send_alert(
            severity="error",
            event="verification_enqueue_error",
            request_id=request_id,
            user_id=planner_id,
            context={"verification_job_id": job_id, "error": str(e)},
        )
        raise _api_error("queue_unavailable", "Failed to queue the certificate for verification", 503)

    record_activity(
        planner_id,
        "death_certificate_uploaded",
        details=f"Death certificate uploaded by executor {executor.get('name')}",
        payload={"verification_job_id": job_id, "executor_id": executor["id"]},
        request_id=request_id,
    )
    session, outcome = _complete_executor_step_if_current(
        executor,
        session,
        "verification",
        {
            "deathCertificateUploaded": True,
            "verificationMethod": "document_upload",
            "verificationJobId": job_id,
        },
        {"death_certificate_uploaded": True},
        request_id,
    )
    return {
        "ok": True,
        "verification_job": {"id": job_id, "status": job.get("status") or "queued"},
        "step_completed": outcome is not None,
        "session": onboarding.session_view(onboarding.EXECUTOR, session),
    }


@app.get("/executor/verification/{job_id}")
def executor_verification_status(job_id: str, request: Request, planner_id: Optional[str] = None):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    executor = _resolve_executor(user_id, planner_id, request_id)
    job = get_verification_job(job_id, request_id=request_id)
    if not job or str(job.get("executor_id")) != str(executor["id"]):
        raise _not_found("Verification job")
    return {
        "ok": True,
        "job": {
            "id": job["id"],
            "status": job.get("status"),
            "attempts": job.get("attempts"),
            "last_error": job.get("last_error"),
            "updated_at": job.get("updated_at"),
        },
    }


# ============================================================================
# Executor views of the planner's plan
# ============================================================================

def _require_executor_access(user_id: str, planner_id: Optional[str], request_id: str) -> tuple[dict, dict]:
    executor, session = _executor_context(user_id, planner_id, request_id)
    if not estate.executor_can_view(session):
        raise _api_error("access_locked", "Upload the death certificate to unlock the plan", 403)
    return executor, session


def _planner_contacts(executor: dict, request_id: str) -> list:
    planner_id = str(executor["planner_id"])
    documents = list_owned("document", planner_id, request_id=request_id)
    assets = list_owned("asset", planner_id, request_id=request_id)
    sent = [row["contact_key"] for row in list_outreach(str(executor["id"]), planner_id, request_id=request_id)]
    return estate.derive_contacts(documents, assets, sent)


@app.get("/executor/plan")
def executor_plan(request: Request, planner_id: Optional[str] = None):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    executor, _ = _require_executor_access(user_id, planner_id, request_id)
    pid = str(executor["planner_id"])
    planner_name = _planner_name(pid, request_id)
    wishes = list_owned("wish", pid, request_id=request_id)
    will = get_will(pid, request_id=request_id)
    documents = list_owned("document", pid, request_id=request_id)
    assets = list_owned("asset", pid, request_id=request_id)
    sent = [row["contact_key"] for row in list_outreach(str(executor["id"]), pid, request_id=request_id)]
    return {
        "ok": True,
        "planner_name": planner_name,
        "will": estate.will_text(will, wishes, planner_name),
        "will_file_available": bool(will and will.get("object_key")),
        "wishes": wishes,
        "assets": assets,
        "documents": documents,
        "notes": list_notes_for_executor(pid, str(executor["id"]), executor.get("email") or "", request_id=request_id),
        "contacts": estate.derive_contacts(documents, assets, sent),
    }


@app.get("/executor/assets")
def executor_assets(request: Request, planner_id: Optional[str] = None, type: Optional[str] = None):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    executor, _ = _require_executor_access(user_id, planner_id, request_id)
    assets = list_owned("asset", str(executor["planner_id"]), request_id=request_id)
    return {
        "ok": True,
        "categories": estate.asset_categories(assets),
        "assets": estate.filter_assets(assets, type),
    }


@app.get("/executor/documents/{document_id}/download")
def executor_document_download(document_id: str, request: Request, planner_id: Optional[str] = None):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    executor, _ = _require_executor_access(user_id, planner_id, request_id)
    doc = _get_record_or_404("document", "Document", str(executor["planner_id"]), document_id, request_id)
    if not doc.get("object_key"):
        raise _not_found("Document file")
    url = _presign_or_502(doc["bucket"], doc["object_key"], request_id)
    return {"ok": True, "url": url, "expires_in_sec": DOWNLOAD_URL_TTL_SEC}


@app.get("/executor/contacts")
def executor_contacts(request: Request, planner_id: Optional[str] = None):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    executor, _ = _require_executor_access(user_id, planner_id, request_id)
    contacts = _planner_contacts(executor, request_id)
    return {
        "ok": True,
        "contacts": contacts,
        "groups": estate.group_contacts(contacts),
        "all_contacted": estate.all_contacted(contacts),
    }


@app.post("/executor/contacts/{contact_id}/notify")
def executor_contact_notify(contact_id: str, body: OutreachBody, request: Request):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    executor, _ = _require_executor_access(user_id, body.planner_id, request_id)
    contacts = _planner_contacts(executor, request_id)
    contact = next((c for c in contacts if c["id"] == contact_id), None)
    if contact is None:
        raise _not_found("Contact")

    planner_id = str(executor["planner_id"])
    message = estate.outreach_message(contact, _planner_name(planner_id, request_id), executor.get("name"))
    subject = (body.subject or "").strip() or message["subject"]
    text = (body.body or "").strip() or message["body"]
    record_outreach(
        str(executor["id"]),
        planner_id,
        contact["id"],
        contact.get("email"),
        subject,
        text,
        request_id=request_id,
    )
    record_activity(
        planner_id,
        "contact_notified",
        details=f"Notification prepared for {contact.get('organization') or contact.get('category')}",
        payload={"executor_id": executor["id"], "contact_category": contact.get("category")},
        request_id=request_id,
    )
    contact = {**contact, "status": "sent"}
    all_sent = estate.all_contacted([contact if c["id"] == contact["id"] else c for c in contacts])
    return {
        "ok": True,
        "contact": contact,
        "message": {"subject": subject, "body": text},
        "all_contacted": all_sent,
    }


# ============================================================================
# Chat with Emma
# ============================================================================

def _append_history(history: list, user_text: str, reply: str, mood: str) -> list:
    out = list(history) + assistant.chat_turn(user_text, reply, mood, utc_ts())
    return out[-MAX_STORED_HISTORY:]


@app.post("/chat/planner")
def chat_planner(body: ChatBody, request: Request):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    session = _ensure_planner_session(user_id, request_id)
    persona = assistant.PLANNER

    history = list(session.get("conversation_history") or [])
    if not history:
        history.append({"role": "assistant", "content": assistant.greeting(persona), "ts": utc_ts()})
    step = body.step or onboarding.current_step_id(onboarding.PLANNER, session)
    messages = assistant.build_messages(persona, history, body.message, body.context, step)
    log_event(
        "chat_message",
        request_id=request_id,
        flow="planner_chat",
        step=step,
        message=text_fingerprint(body.message),
    )
    reply, fallback = _llm_text(
        messages, assistant.FALLBACKS[persona], request_id, str(session.get("id")), "planner_chat", step
    )
    payload = _reply_payload(persona, reply, fallback, step)
    update_planner_session(
        user_id,
        {"conversation_history": _append_history(history, body.message, reply, payload["mood"])},
        request_id=request_id,
    )
    return payload


@app.post("/chat/executor")
def chat_executor(body: ChatBody, request: Request):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    executor, session = _executor_context(user_id, body.planner_id, request_id)
    planner_name = _planner_name(str(executor["planner_id"]), request_id)
    persona = assistant.EXECUTOR_ONBOARDING

    history = list(session.get("conversation_history") or [])
    if not history:
        history.append(
            {
                "role": "assistant",
                "content": assistant.greeting(persona, executor.get("name") or "", planner_name),
                "ts": utc_ts(),
            }
        )
    step = body.step or onboarding.current_step_id(onboarding.EXECUTOR, session)
    context = {**body.context, "planner_name": planner_name, "executor_name": executor.get("name"), "step": step}
    messages = assistant.build_messages(persona, history, body.message, context, step)
    log_event(
        "chat_message",
        request_id=request_id,
        flow="executor_chat",
        step=step,
        message=text_fingerprint(body.message),
    )
    reply, fallback = _llm_text(
        messages, assistant.FALLBACKS[persona], request_id, str(session.get("id")), "executor_chat", step
    )
    payload = _reply_payload(persona, reply, fallback, step)
    _save_executor_patch(
        executor,
        session,
        {"conversation_history": _append_history(history, body.message, reply, payload["mood"])},
        request_id,
    )
    return payload


# ============================================================================
# Drafting helpers
# ============================================================================

def _draft(task: str, request: Request, user_id: str, extra: str = "", **params: Any) -> tuple[str, bool]:
    messages = assistant.draft_messages(task, **params)
    if extra:
        messages[-1]["content"] += extra
    return _llm_text(
        messages,
        assistant.draft_fallback(task, **params),
        get_request_id_from_request(request),
        user_id,
        task,
    )


@app.post("/assistant/will/analyze")
def assistant_will_analyze(request: Request):
    user_id = _require_user_id(request)
    request_id = get_request_id_from_request(request)
    will = get_will(user_id, request_id=request_id)
    if not will or not ((will.get("content") or "").strip() or will.get("object_key")):
        raise _not_found("Will")
    extra = ""
    if will.get("file_name"):
        extra += f"\n\nDocument name: {will['file_name']}"
    if (will.get("content") or "").strip():
        extra += f"\n\nWill text:\n{will['content']}"
    text, fallback = _draft("will_analysis", request, user_id, extra)
    upsert_will(user_id, {"analysis": {"text": text, "fallback": fallback, "created_at": utc_ts()}}, request_id=request_id)
    return {"ok": True, "analysis": text, "fallback": fallback}


@app.post("/assistant/will/template")
def assistant_will_template(request: Request):
    user_id = _require_user_id(request)
    text, fallback = _draft("will_template", request, user_id)
    return {"ok": True, "template": text, "fallback": fallback}


@app.post("/assistant/notes/draft")
def assistant_note_draft(body: NoteDraftBody, request: Request):
    user_id = _require_user_id(request)
    name = (body.executor_name or "").strip() or "my executor"
    text, fallback = _draft("personal_note", request, user_id, executor_name=name)
    return {"ok": True, "draft": text, "fallback": fallback}


@app.post("/assistant/executors/advice")
def assistant_executor_advice(request: Request):
    user_id = _require_user_id(request)
    executors = list_executors(user_id, request_id=get_request_id_from_request(request))
    text, fallback = _draft(
        "executor_advice", request, user_id, executors=assistant.describe_executors(executors)
    )
    return {"ok": True, "advice": text, "fallback": fallback}
