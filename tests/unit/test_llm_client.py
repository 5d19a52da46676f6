"""LLM client: provider resolution, mock replies and the openai-compatible call."""

from __future__ import annotations

import io
import json
import os
import sys
import urllib.error

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "api")))

import llm_client  # noqa: E402

LLM_ENV = [
    "LLM_PROVIDER",
    "LLM_REQUIRE_KEY",
    "LLM_API_KEY",
    "OPENAI_API_KEY",
    "LLM_BASE_URL",
    "OPENAI_BASE_URL",
    "LLM_MODEL",
    "LLM_MAX_TOKENS",
    "EVE_ENV",
    "DEV_LLM_API_KEY",
    "DEV_LLM_BASE_URL",
    "DEV_LLM_MODEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in LLM_ENV:
        monkeypatch.delenv(name, raising=False)


class FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def test_auto_provider_is_mock_without_key():
    s = llm_client._llm_settings()
    assert s["provider_effective"] == "mock"
    assert s["reason"] == "missing_api_key"
    assert s["model"] == "gpt-4o"
    assert llm_client.health_llm()["ok"] is True


def test_auto_provider_switches_with_key_and_base_url(monkeypatch):
    monkeypatch.setenv("LLM_API_KEY", "k")
    monkeypatch.setenv("LLM_BASE_URL", "https://llm.example/v1")
    assert llm_client.current_llm_provider() == "openai_compat"


def test_dev_deployment_reads_prefixed_vars(monkeypatch):
    monkeypatch.setenv("EVE_ENV", "dev")
    monkeypatch.setenv("DEV_LLM_API_KEY", "dk")
    monkeypatch.setenv("DEV_LLM_BASE_URL", "https://dev.example/v1")
    monkeypatch.setenv("DEV_LLM_MODEL", "small")
    s = llm_client._llm_settings()
    assert s["key_source"] == "DEV_LLM_API_KEY"
    assert s["model"] == "small"
    assert s["provider_effective"] == "openai_compat"


def test_required_but_missing_key_raises_unavailable(monkeypatch):
    monkeypatch.setenv("LLM_REQUIRE_KEY", "1")
    with pytest.raises(llm_client.LLMUnavailable) as exc:
        llm_client.chat_completion([{"role": "user", "content": "hi"}])
    assert exc.value.reason == "missing_api_key"


def test_forced_openai_compat_without_key_is_plain_error(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "openai_compat")
    monkeypatch.setenv("LLM_BASE_URL", "https://llm.example/v1")
    with pytest.raises(llm_client.LLMError) as exc:
        llm_client.chat_completion([{"role": "user", "content": "hi"}])
    assert not isinstance(exc.value, llm_client.LLMUnavailable)
    assert str(exc.value) == "missing_api_key"


def test_mock_reply_mentions_step():
    text = llm_client.chat_completion([{"role": "user", "content": "hello"}], flow="planner_chat", step="will")
    assert text.startswith("Thanks for sharing that.")
    assert "will" in text


def test_openai_compat_posts_chat_completion(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "openai_compat")
    monkeypatch.setenv("LLM_API_KEY", "secret")
    monkeypatch.setenv("LLM_BASE_URL", "https://llm.example/v1/")
    monkeypatch.setenv("LLM_MAX_TOKENS", "256")
    seen = {}

    def fake_urlopen(req, timeout=None):
        seen["url"] = req.full_url
        seen["auth"] = req.get_header("Authorization")
        seen["body"] = json.loads(req.data.decode("utf-8"))
        payload = {"choices": [{"message": {"content": "  Hello there  "}}]}
        return FakeResponse(json.dumps(payload).encode("utf-8"))

    monkeypatch.setattr(llm_client.urllib.request, "urlopen", fake_urlopen)
    text = llm_client.chat_completion([{"role": "system", "content": "s"}, {"role": "user", "content": "u"}])

    assert text == "Hello there"
    assert seen["url"] == "https://llm.example/v1/chat/completions"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"]["max_tokens"] == 256
    assert seen["body"]["model"] == "gpt-4o"
    assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]


def test_openai_compat_empty_content_is_error(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "openai_compat")
    monkeypatch.setenv("LLM_API_KEY", "secret")
    monkeypatch.setenv("LLM_BASE_URL", "https://llm.example/v1")
    monkeypatch.setattr(
        llm_client.urllib.request,
        "urlopen",
        lambda req, timeout=None: FakeResponse(b'{"choices": [{"message": {"content": ""}}]}'),
    )
    with pytest.raises(llm_client.LLMError):
        llm_client.chat_completion([{"role": "user", "content": "u"}])


def test_openai_compat_http_error(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "openai_compat")
    monkeypatch.setenv("LLM_API_KEY", "secret")
    monkeypatch.setenv("LLM_BASE_URL", "https://llm.example/v1")

    def boom(req, timeout=None):
        raise urllib.error.HTTPError(req.full_url, 500, "Server Error", {}, None)

    monkeypatch.setattr(llm_client.urllib.request, "urlopen", boom)
    with pytest.raises(llm_client.LLMError) as exc:
        llm_client.chat_completion([{"role": "user", "content": "u"}])
    assert "http_error 500" in str(exc.value)
