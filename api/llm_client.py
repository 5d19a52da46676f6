import json
import os
import time
import urllib.request
import urllib.error
import urllib.parse
from typing import Any, Mapping, Optional, TypedDict

from events import log_event as _log_event
from events import text_fingerprint

JSONDict = dict[str, Any]
Message = dict[str, Any]

DEFAULT_MODEL = "gpt-4o"


class LLMUnavailable(RuntimeError):
    def __init__(self, reason: str, message: str = "LLM unavailable"):
        super().__init__(message)
        self.reason = reason


class LLMError(RuntimeError):
    """The provider answered but the call failed (HTTP error, bad payload, empty reply)."""


class LLMSettings(TypedDict):
    provider: str
    provider_raw: str
    provider_effective: str
    reason: str
    require_key: bool
    base_url: str
    api_key: str
    key_present: bool
    key_source: str
    model: str
    max_tokens: int
    timeout_sec: float
    deployment: str


def _deployment_env() -> str:
    """Return deployment environment selector.

    - "dev" / "prod" activate DEV_LLM_* / PROD_LLM_* resolution.
    - empty/other keeps the local env names (LLM_*, OPENAI_*).
    """
    return (os.environ.get("EVE_ENV") or "").strip().lower()


def _int_env(name: str, default: int) -> int:
    try:
        return int((os.environ.get(name) or "").strip() or default)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float((os.environ.get(name) or "").strip() or default)
    except ValueError:
        return default


def _llm_settings() -> LLMSettings:
    provider_raw = (os.environ.get("LLM_PROVIDER") or "").strip().lower()

    def _bool_env(name: str) -> bool:
        return (os.environ.get(name) or "").strip().lower() in {"1", "true", "yes", "on"}

    require_key = _bool_env("LLM_REQUIRE_KEY")
    deployment = _deployment_env()

    api_key = ""
    key_source = "none"

    if deployment in {"dev", "prod"}:
        prefix = "DEV_LLM_" if deployment == "dev" else "PROD_LLM_"
        base_url = (os.environ.get(prefix + "BASE_URL") or "").strip()
        model = (os.environ.get(prefix + "MODEL") or "").strip() or DEFAULT_MODEL
        api_key = (os.environ.get(prefix + "API_KEY") or "").strip()
        if api_key:
            key_source = prefix + "API_KEY"
    else:
        if (os.environ.get("LLM_API_KEY") or "").strip():
            api_key = (os.environ.get("LLM_API_KEY") or "").strip()
            key_source = "LLM_API_KEY"
        elif (os.environ.get("OPENAI_API_KEY") or "").strip():
            api_key = (os.environ.get("OPENAI_API_KEY") or "").strip()
            key_source = "OPENAI_API_KEY"
        base_url = (os.environ.get("LLM_BASE_URL") or "").strip() or (os.environ.get("OPENAI_BASE_URL") or "").strip()
        model = (os.environ.get("LLM_MODEL") or DEFAULT_MODEL).strip() or DEFAULT_MODEL

    key_present = bool(api_key)

    if provider_raw == "mock":
        provider_effective = "mock"
        reason = "provider_forced_mock"
    elif provider_raw == "openai_compat":
        provider_effective = "openai_compat"
        reason = "provider_forced_openai_compat"
    elif require_key or (key_present and base_url):
        provider_effective = "openai_compat"
        reason = "provider_auto_openai_compat"
    else:
        provider_effective = "mock"
        reason = "missing_api_key" if not key_present else "missing_base_url"

    return {
        "provider": provider_effective,
        "provider_raw": provider_raw,
        "provider_effective": provider_effective,
        "reason": reason,
        "require_key": require_key,
        "base_url": base_url,
        "api_key": api_key,
        "key_present": key_present,
        "key_source": key_source,
        "model": model,
        "max_tokens": _int_env("LLM_MAX_TOKENS", 1000),
        "timeout_sec": _float_env("LLM_TIMEOUT_SEC", 30.0),
        "deployment": deployment,
    }


def current_llm_provider() -> str:
    return str(_llm_settings().get("provider") or "mock")


def _require_llm_configured(s: Mapping[str, Any]) -> None:
    if not s.get("require_key"):
        return
    if s.get("provider_effective") == "mock":
        # Only allowed if forced explicitly.
        if (s.get("provider_raw") or "") == "mock":
            return
        raise LLMUnavailable("provider_forced_mock", "LLM is required but provider_effective is mock")
    if not s.get("key_present"):
        raise LLMUnavailable("missing_api_key", "LLM is not configured: missing_api_key")
    if not (s.get("base_url") or ""):
        raise LLMUnavailable("missing_base_url", "LLM is not configured: missing_base_url")


def _last_user_text(messages: list[Message]) -> str:
    for m in reversed(messages or []):
        if m.get("role") == "user":
            return str(m.get("content") or "")
    return ""


def chat_completion_mock(messages: list[Message], step: Optional[str] = None) -> str:
    """Scripted reply for local runs without a provider."""
    user_text = _last_user_text(messages).strip()
    opener = "Thanks for sharing that." if user_text else "I'm here whenever you're ready."
    if step:
        return f"{opener} We're working on {step} right now. Tell me when you're ready for the next step."
    return f"{opener} Let me know what you'd like to do next."


def chat_completion_openai_compat(messages: list[Message], s: Mapping[str, Any]) -> tuple[str, int]:
    """POST to <base_url>/chat/completions; returns (text, raw response length)."""
    if not s["base_url"] or not s["api_key"]:
        raise LLMError("missing_api_key")
    url = str(s["base_url"]).rstrip("/") + "/chat/completions"
    body: JSONDict = {
        "model": s["model"],
        "messages": [{"role": m.get("role"), "content": m.get("content")} for m in messages],
        "max_tokens": s["max_tokens"],
    }
    data = json.dumps(body, ensure_ascii=False).encode("utf-8")
    req = urllib.request.Request(url, data=data, method="POST")
    req.add_header("Content-Type", "application/json")
    req.add_header("Authorization", f"Bearer {s['api_key']}")
    try:
        with urllib.request.urlopen(req, timeout=float(s["timeout_sec"])) as resp:
            raw = resp.read().decode("utf-8")
    except urllib.error.HTTPError as e:
        raise LLMError(f"http_error {e.code} {e.reason}")
    except Exception as e:
        raise LLMError(str(e))

    try:
        parsed = json.loads(raw)
    except Exception as e:
        raise LLMError(f"invalid_json {e}")
    content = None
    try:
        content = parsed["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        pass
    if not isinstance(content, str) or not content.strip():
        raise LLMError("empty_content")
    return content.strip(), len(raw)


def chat_completion(
    messages: list[Message],
    request_id: str = "unknown",
    session_id: Optional[str] = None,
    flow: str = "chat",
    step: Optional[str] = None,
) -> str:
    """Return the assistant text for `messages`.

    Raises LLMUnavailable (misconfigured while required) or LLMError.
    """
    s = _llm_settings()
    _require_llm_configured(s)
    provider = s["provider_effective"]
    prompt_chars = sum(len(str(m.get("content") or "")) for m in messages or [])
    _log_event(
        "llm_request",
        provider=provider,
        model=s["model"],
        request_id=request_id,
        session_id=session_id,
        flow=flow,
        prompt_chars=prompt_chars,
        messages=len(messages or []),
    )
    start = time.perf_counter()
    try:
        if provider == "mock":
            text = chat_completion_mock(messages, step=step)
            raw_len = len(text)
        else:
            text, raw_len = chat_completion_openai_compat(messages, s)
    except Exception as e:
        _log_event(
            "llm_error",
            level="error",
            provider=provider,
            model=s["model"],
            request_id=request_id,
            session_id=session_id,
            flow=flow,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
            error=str(e),
        )
        raise
    fp = text_fingerprint(text)
    _log_event(
        "llm_response",
        provider=provider,
        model=s["model"],
        request_id=request_id,
        session_id=session_id,
        flow=flow,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
        prompt_chars=prompt_chars,
        llm_response_chars=raw_len,
        response_chars=fp["full_length"],
        response_sha256=fp["sha256"],
    )
    return text


def health_llm() -> JSONDict:
    s = _llm_settings()

    provider_effective = s.get("provider_effective") or "mock"
    provider_raw = s.get("provider_raw") or ""
    key_present = bool(s.get("key_present"))

    base_url_raw = (s.get("base_url") or "").strip()
    base_url_safe = ""
    if base_url_raw:
        parsed = urllib.parse.urlparse(base_url_raw)
        base_url_safe = urllib.parse.urlunparse((parsed.scheme or "https", parsed.netloc, parsed.path, "", "", ""))

    ok = True
    reason = "ok"
    if provider_effective == "openai_compat":
        if not key_present:
            ok = False
            reason = "missing_api_key"
        elif not base_url_raw:
            ok = False
            reason = "missing_base_url"
    elif provider_raw == "mock":
        reason = "provider_forced_mock"
    else:
        # If mock is effective, always explain why.
        reason = s.get("reason") or "unknown"

    return {
        "ok": ok,
        "provider": provider_effective,
        "provider_effective": provider_effective,
        "model": s.get("model"),
        "max_tokens": s.get("max_tokens"),
        "base_url": base_url_safe,
        "key_present": key_present,
        "key_source": s.get("key_source") or "none",
        "reason": reason,
        "llm_require_key": bool(s.get("require_key")),
    }
