import hashlib
import json
from datetime import date, datetime, timezone
from typing import Any, Dict


def utc_ts() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def log_event(event: str, level: str = "info", **fields: Any) -> None:
    """Print one structured JSON log line. None fields are dropped."""
    payload: Dict[str, Any] = {
        "event": event,
        "level": level,
        "ts": utc_ts(),
    }
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, (datetime, date)):
            payload[key] = value.isoformat()
        else:
            payload[key] = value
    print(json.dumps(payload, ensure_ascii=False, default=str))


def text_fingerprint(text: str | None, limit: int = 0) -> Dict[str, Any]:
    """Describe user text without logging it.

    `limit` > 0 keeps a preview of that many characters (never used for
    chat messages or email addresses).
    """
    raw = text or ""
    out: Dict[str, Any] = {
        "full_length": len(raw),
        "sha256": hashlib.sha256(raw.encode("utf-8", errors="ignore")).hexdigest(),
    }
    if limit > 0:
        out["preview"] = raw[:limit]
        out["preview_length"] = min(limit, len(raw))
        out["truncated"] = len(raw) > limit
    return out
