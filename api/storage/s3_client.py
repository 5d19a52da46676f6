import os
import time
from urllib.parse import urlparse
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from alerts import send_alert
from events import log_event

MISSING_OBJECT_CODES = {"404", "NoSuchKey", "NotFound"}


def _endpoint(name: str, default_scheme: str) -> Optional[str]:
    v = (os.environ.get(name) or "").strip()
    if not v:
        return None
    return v if "://" in v else f"{default_scheme}://{v}"


def _host(endpoint: Optional[str]) -> Optional[str]:
    if not endpoint:
        return None
    return urlparse(endpoint).netloc.strip() or None


def _s3_settings() -> Dict[str, Any]:
    return {
        "endpoint": _endpoint("S3_ENDPOINT", "http"),
        "presign_endpoint": _endpoint("S3_PRESIGN_ENDPOINT", "https"),
        "region": (os.environ.get("S3_REGION") or "us-east-1").strip(),
        "access_key": (os.environ.get("S3_ACCESS_KEY") or "").strip() or None,
        "secret_key": (os.environ.get("S3_SECRET_KEY") or "").strip() or None,
    }


def configured_bucket() -> str:
    return (os.environ.get("S3_BUCKET") or "").strip()


_client_cache: Dict[str, Any] = {}


def _client(presign: bool = False):
    """Path-style s3v4 client; presigned URLs may use a public endpoint."""
    s = _s3_settings()
    endpoint = (s["presign_endpoint"] or s["endpoint"]) if presign else s["endpoint"]
    cache_key = endpoint or "<aws>"
    if cache_key not in _client_cache:
        # SSL follows the endpoint scheme; plain AWS is always https.
        _client_cache[cache_key] = boto3.client(
            "s3",
            endpoint_url=endpoint,
            region_name=s["region"],
            aws_access_key_id=s["access_key"],
            aws_secret_access_key=s["secret_key"],
            use_ssl=not (endpoint or "").lower().startswith("http://"),
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )
    return _client_cache[cache_key]


def _ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def _storage_failed(event: str, error: Exception, start: float, request_id: str, **context: Any) -> None:
    log_event(event, level="error", request_id=request_id, duration_ms=_ms(start), error=str(error), **context)
    send_alert(severity="error", event=event, request_id=request_id, context={**context, "error": str(error)})


def upload_bytes(
    bucket: str,
    key: str,
    data: bytes,
    content_type: str,
    request_id: str = "unknown",
) -> Dict[str, Any]:
    start = time.perf_counter()
    ctx = {"bucket": bucket, "object_key": key, "size_bytes": len(data)}
    log_event("s3_upload_start", request_id=request_id, content_type=content_type, **ctx)
    try:
        resp = _client().put_object(Bucket=bucket, Key=key, Body=data, ContentType=content_type)
    except Exception as e:
        _storage_failed("s3_upload_error", e, start, request_id, **ctx)
        raise
    etag = resp.get("ETag")
    log_event("s3_upload_ok", request_id=request_id, etag=etag, duration_ms=_ms(start), **ctx)
    return {"etag": etag, "size_bytes": len(data)}


def presign_get(
    bucket: str,
    key: str,
    expires_sec: int = 600,
    request_id: str = "unknown",
) -> str:
    """Presigned GET url. The url itself is never logged."""
    start = time.perf_counter()
    ctx = {"bucket": bucket, "object_key": key, "expires_sec": expires_sec}
    try:
        url = _client(presign=True).generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=expires_sec,
        )
    except Exception as e:
        _storage_failed("s3_presign_error", e, start, request_id, **ctx)
        raise
    log_event("s3_presign_ok", request_id=request_id, duration_ms=_ms(start), **ctx)
    return url


def head_object(bucket: str, key: str, request_id: str = "unknown") -> Optional[Dict[str, Any]]:
    """Object metadata, or None when the object does not exist.

    Other storage errors propagate so callers can retry.
    """
    start = time.perf_counter()
    ctx = {"bucket": bucket, "object_key": key}
    try:
        resp = _client().head_object(Bucket=bucket, Key=key)
    except ClientError as e:
        if str(e.response.get("Error", {}).get("Code") or "") in MISSING_OBJECT_CODES:
            log_event("s3_head_missing", request_id=request_id, **ctx)
            return None
        log_event("s3_head_error", level="error", request_id=request_id, duration_ms=_ms(start), error=str(e), **ctx)
        raise
    log_event("s3_head_ok", request_id=request_id, duration_ms=_ms(start), **ctx)
    return {
        "size_bytes": int(resp.get("ContentLength") or 0),
        "content_type": resp.get("ContentType"),
        "etag": resp.get("ETag"),
    }


def health_s3_env() -> Dict[str, Any]:
    """Storage health from env only; no network calls."""
    bucket = configured_bucket() or None
    s = _s3_settings()
    return {
        "ok": bool(bucket) and bool(s["endpoint"]),
        "provider": "s3",
        "endpoint": s["endpoint"],
        "s3_endpoint_host": _host(s["endpoint"]),
        "s3_presign_host": _host(s["presign_endpoint"]),
        "bucket": bucket,
        "has_credentials": bool(s["access_key"]) and bool(s["secret_key"]),
    }


def head_bucket_if_debug(bucket: str) -> Optional[bool]:
    """Bucket reachability, checked only when DEBUG is on."""
    if (os.environ.get("DEBUG") or "").strip().lower() not in {"1", "true", "yes", "y", "on"}:
        return None
    try:
        _client().head_bucket(Bucket=bucket)
        return True
    except Exception:
        return False
