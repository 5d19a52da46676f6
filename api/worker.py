import json
import os
import time
import uuid
from typing import Any, Dict

import redis

from activity import record_activity
from alerts import send_alert
from db import init_db
from db import (
    get_verification_job,
    increment_verification_job_attempt,
    mark_death_triggered,
    mark_sessions_death_verified,
    mark_verification_job,
    try_mark_verification_job_checking,
)
from estate import CERTIFICATE_CONTENT_TYPES
from events import log_event
from storage.s3_client import head_object


def _redis_client() -> redis.Redis:
    url = (os.environ.get("REDIS_URL") or "").strip() or "redis://localhost:6379/0"
    return redis.Redis.from_url(url, decode_responses=True)


QUEUE_NAME = (os.environ.get("VERIFICATION_QUEUE") or "verification_jobs").strip() or "verification_jobs"


class CertificateRejected(Exception):
    """The stored certificate can never pass; retrying will not help."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def _backoff_seconds(attempts: int) -> float:
    # attempts is already incremented in DB; start with 1s.
    base = 2 ** max(0, attempts - 1)
    return float(min(60, max(1, base)))


def inspect_certificate(job: Dict[str, Any], request_id: str) -> Dict[str, Any]:
    meta = head_object(str(job.get("bucket")), str(job.get("object_key")), request_id=request_id)
    if meta is None:
        raise CertificateRejected("certificate_missing")
    if int(meta.get("size_bytes") or 0) <= 0:
        raise CertificateRejected("certificate_empty")
    content_type = (meta.get("content_type") or job.get("content_type") or "").split(";", 1)[0].strip().lower()
    if content_type not in CERTIFICATE_CONTENT_TYPES:
        raise CertificateRejected("certificate_unsupported_type")
    return meta


def _update_job(fn, job_id: str, *args: Any, request_id: str, **kwargs: Any) -> Any:
    """Run a job status write; a failed write is logged and yields None."""
    try:
        return fn(job_id, *args, request_id=request_id, **kwargs)
    except Exception as e:
        log_event(
            "verification_job_update_error",
            level="error",
            request_id=request_id,
            verification_job_id=job_id,
            error=str(e),
        )
        return None


def process_message(msg: str) -> None:
    request_id = str(uuid.uuid4())
    try:
        payload = json.loads(msg)
    except Exception:
        log_event("verification_error", level="error", request_id=request_id, error="invalid_queue_payload")
        return

    job_id = str((payload or {}).get("job_id") or "").strip() if isinstance(payload, dict) else ""
    if not job_id:
        log_event("verification_error", level="error", request_id=request_id, error="missing_job_id")
        return

    job = get_verification_job(job_id, request_id=request_id)
    if not job:
        log_event(
            "verification_error",
            level="error",
            request_id=request_id,
            verification_job_id=job_id,
            error="job_not_found",
        )
        return

    if not try_mark_verification_job_checking(job_id, request_id=request_id):
        # Another worker has it, or it's not queued anymore.
        return

    planner_id = str(job.get("planner_id"))
    executor_id = str(job.get("executor_id"))
    log_event("verification_start", request_id=request_id, verification_job_id=job_id, executor_id=executor_id)

    try:
        meta = inspect_certificate(job, request_id)
        triggered = mark_death_triggered(planner_id, request_id=request_id)
        sessions = mark_sessions_death_verified(planner_id, request_id=request_id)
        mark_verification_job(job_id, "verified", request_id=request_id)
        record_activity(
            planner_id,
            "death_verified",
            details="Death certificate verified",
            payload={"verification_job_id": job_id, "executor_id": executor_id},
            request_id=request_id,
        )
        log_event(
            "verification_ok",
            request_id=request_id,
            verification_job_id=job_id,
            size_bytes=meta.get("size_bytes"),
            trigger_events=triggered,
            sessions=sessions,
        )

    except CertificateRejected as e:
        _update_job(mark_verification_job, job_id, "rejected", last_error=e.reason, request_id=request_id)
        record_activity(
            planner_id,
            "death_certificate_rejected",
            details=f"Death certificate rejected: {e.reason}",
            payload={"verification_job_id": job_id, "executor_id": executor_id},
            request_id=request_id,
        )
        log_event(
            "verification_rejected",
            level="warning",
            request_id=request_id,
            verification_job_id=job_id,
            error=e.reason,
        )
        send_alert(
            severity="warning",
            event="death_certificate_rejected",
            request_id=request_id,
            user_id=planner_id,
            context={"verification_job_id": job_id, "reason": e.reason},
        )

    except Exception as e:
        err = str(e)
        updated = _update_job(increment_verification_job_attempt, job_id, last_error=err, request_id=request_id)
        if not updated:
            return
        attempts = int(updated.get("attempts") or 0)
        max_attempts = int(updated.get("max_attempts") or 0)

        if attempts >= max_attempts:
            _update_job(mark_verification_job, job_id, "failed", last_error=err, request_id=request_id)
            log_event(
                "verification_error",
                level="error",
                request_id=request_id,
                verification_job_id=job_id,
                attempts=attempts,
                max_attempts=max_attempts,
                error=err,
            )
            send_alert(
                severity="error",
                event="verification_job_failed",
                request_id=request_id,
                user_id=planner_id,
                context={
                    "verification_job_id": job_id,
                    "attempts": attempts,
                    "max_attempts": max_attempts,
                    "error": err,
                },
            )
            return

        delay = _backoff_seconds(attempts)
        log_event(
            "verification_retry_scheduled",
            request_id=request_id,
            verification_job_id=job_id,
            attempts=attempts,
            max_attempts=max_attempts,
            delay_sec=delay,
            error=err,
        )
        time.sleep(delay)
        _redis_client().rpush(QUEUE_NAME, msg)


def handle_message(msg: str) -> None:
    """process_message for the worker loop: an unexpected error never stops the loop."""
    try:
        process_message(msg)
    except Exception as e:
        log_event("verification_error", level="error", error=str(e), message=msg[:200])
        send_alert(
            severity="error",
            event="verification_worker_error",
            request_id="worker",
            context={"error": str(e)},
        )


def main() -> None:
    init_db()
    r = _redis_client()
    log_event("worker_start", queue=QUEUE_NAME)

    while True:
        item = r.blpop(QUEUE_NAME, timeout=5)
        if not item:
            continue
        _, msg = item
        handle_message(msg)


if __name__ == "__main__":
    main()
