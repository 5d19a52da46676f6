import json
import os
import time
import urllib.request
from typing import Any, Dict, Optional

from db import create_activity
from events import log_event, utc_ts


def send_alert(
    severity: str,
    event: str,
    context: Optional[Dict[str, Any]] = None,
    request_id: str = "unknown",
    user_id: Optional[str] = None,
) -> bool:
    """Record an alert in the activity log and post it to the webhook.

    Uses env `ALERT_WEBHOOK_URL`. If not set, only the activity record is
    written. Never logs the webhook URL. Returns True when the webhook
    accepted the alert.
    """
    payload = {
        "severity": severity,
        "event": event,
        "request_id": request_id,
        "ts": utc_ts(),
        "context": context or {},
    }

    try:
        create_activity(
            user_id=user_id,
            action_type="alert_event",
            details=f"{severity}: {event}",
            payload_json=payload,
            meta={"acked_at": None},
            request_id=request_id,
        )
        log_event("alert_recorded", request_id=request_id, alert_event=event, severity=severity)
    except Exception as e:
        log_event(
            "alert_record_error",
            level="error",
            request_id=request_id,
            alert_event=event,
            severity=severity,
            error=str(e),
        )

    webhook_url = (os.environ.get("ALERT_WEBHOOK_URL") or "").strip()
    if not webhook_url:
        return False

    start = time.perf_counter()
    try:
        req = urllib.request.Request(
            webhook_url,
            data=json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(req, timeout=2.0) as resp:
            log_event(
                "alert_sent",
                request_id=request_id,
                alert_event=event,
                severity=severity,
                status=getattr(resp, "status", None),
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            return True
    except Exception as e:
        log_event(
            "alert_send_error",
            level="error",
            request_id=request_id,
            alert_event=event,
            severity=severity,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
            error=str(e),
        )
        return False
