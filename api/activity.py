from typing import Any, Dict, Optional

from db import create_activity
from events import log_event


def record_activity(
    user_id: Optional[str],
    action_type: str,
    details: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
    meta: Optional[Dict[str, Any]] = None,
    request_id: str = "unknown",
) -> Optional[str]:
    """Best-effort activity log write. Returns the row id or None."""
    try:
        row = create_activity(
            user_id=user_id,
            action_type=action_type,
            details=details,
            payload_json=payload,
            meta=meta,
            request_id=request_id,
        )
        return str(row.get("id")) if row.get("id") else None
    except Exception as e:
        log_event(
            "activity_record_error",
            level="error",
            request_id=request_id,
            action_type=action_type,
            error=str(e),
        )
        return None
