"""Death certificate verification worker with storage and DB stubbed out."""

from __future__ import annotations

import json
import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "api")))

import worker  # noqa: E402


class FakeRedis:
    def __init__(self):
        self.pushed = []

    def rpush(self, name, value):
        self.pushed.append((name, value))
        return len(self.pushed)


@pytest.fixture
def env(monkeypatch):
    job = {
        "id": "job-1",
        "planner_id": "planner-1",
        "executor_id": "exec-1",
        "bucket": "b",
        "object_key": "certificates/planner-1/x",
        "content_type": "application/pdf",
        "status": "queued",
        "attempts": 0,
        "max_attempts": 3,
    }
    calls = {"marks": [], "activity": [], "alerts": [], "triggered": 0, "sessions": 0, "sleeps": []}
    redis_stub = FakeRedis()

    def mark(job_id, status, last_error=None, request_id="unknown"):
        calls["marks"].append((status, last_error))

    def incr(job_id, last_error, request_id="unknown"):
        job["attempts"] += 1
        return dict(job)

    def triggered(planner_id, request_id="unknown"):
        calls["triggered"] += 1
        return 1

    def sessions(planner_id, request_id="unknown"):
        calls["sessions"] += 1
        return 1

    monkeypatch.setattr(worker, "get_verification_job", lambda job_id, request_id="unknown": dict(job))
    monkeypatch.setattr(worker, "try_mark_verification_job_checking", lambda job_id, request_id="unknown": True)
    monkeypatch.setattr(worker, "mark_verification_job", mark)
    monkeypatch.setattr(worker, "increment_verification_job_attempt", incr)
    monkeypatch.setattr(worker, "mark_death_triggered", triggered)
    monkeypatch.setattr(worker, "mark_sessions_death_verified", sessions)
    monkeypatch.setattr(worker, "record_activity", lambda *a, **kw: calls["activity"].append(a[1]))
    monkeypatch.setattr(worker, "send_alert", lambda **kw: calls["alerts"].append(kw["event"]))
    monkeypatch.setattr(worker, "_redis_client", lambda: redis_stub)
    monkeypatch.setattr(worker.time, "sleep", lambda s: calls["sleeps"].append(s))
    return job, calls, redis_stub


def _msg(job_id="job-1"):
    return json.dumps({"job_id": job_id})


def test_valid_certificate_verifies_death(env, monkeypatch):
    job, calls, _ = env
    monkeypatch.setattr(
        worker,
        "head_object",
        lambda bucket, key, request_id="unknown": {"size_bytes": 1234, "content_type": "application/pdf"},
    )
    worker.process_message(_msg())
    assert calls["marks"] == [("verified", None)]
    assert calls["triggered"] == 1
    assert calls["sessions"] == 1
    assert calls["activity"] == ["death_verified"]


@pytest.mark.parametrize(
    "meta,reason",
    [
        (None, "certificate_missing"),
        ({"size_bytes": 0, "content_type": "application/pdf"}, "certificate_empty"),
        ({"size_bytes": 10, "content_type": "text/plain"}, "certificate_unsupported_type"),
    ],
)
def test_bad_certificate_is_rejected_without_retry(env, monkeypatch, meta, reason):
    _, calls, redis_stub = env
    monkeypatch.setattr(worker, "head_object", lambda bucket, key, request_id="unknown": meta)
    worker.process_message(_msg())
    assert calls["marks"] == [("rejected", reason)]
    assert calls["triggered"] == 0
    assert calls["activity"] == ["death_certificate_rejected"]
    assert calls["alerts"] == ["death_certificate_rejected"]
    assert redis_stub.pushed == []


def test_storage_error_requeues_with_backoff(env, monkeypatch):
    _, calls, redis_stub = env

    def flaky(bucket, key, request_id="unknown"):
        raise RuntimeError("s3 down")

    monkeypatch.setattr(worker, "head_object", flaky)
    worker.process_message(_msg())
    assert calls["sleeps"] == [1.0]
    assert redis_stub.pushed == [(worker.QUEUE_NAME, _msg())]
    assert calls["marks"] == []


def test_storage_error_fails_job_after_max_attempts(env, monkeypatch):
    job, calls, redis_stub = env
    job["attempts"] = 2

    def flaky(bucket, key, request_id="unknown"):
        raise RuntimeError("s3 down")

    monkeypatch.setattr(worker, "head_object", flaky)
    worker.process_message(_msg())
    assert calls["marks"] == [("failed", "s3 down")]
    assert calls["alerts"] == ["verification_job_failed"]
    assert redis_stub.pushed == []


def test_skips_job_already_taken(env, monkeypatch):
    _, calls, _ = env
    monkeypatch.setattr(worker, "try_mark_verification_job_checking", lambda job_id, request_id="unknown": False)
    monkeypatch.setattr(worker, "head_object", lambda *a, **kw: pytest.fail("must not inspect"))
    worker.process_message(_msg())
    assert calls["marks"] == []


def test_invalid_payload_is_dropped(env):
    _, calls, _ = env
    worker.process_message("not json")
    worker.process_message(json.dumps({"nope": 1}))
    assert calls["marks"] == []


def test_status_write_failure_does_not_escape(env, monkeypatch):
    _, calls, redis_stub = env

    def db_down(*a, **kw):
        raise RuntimeError("db down")

    monkeypatch.setattr(worker, "head_object", lambda bucket, key, request_id="unknown": None)
    monkeypatch.setattr(worker, "mark_verification_job", db_down)
    worker.process_message(_msg())
    assert calls["activity"] == ["death_certificate_rejected"]
    assert calls["alerts"] == ["death_certificate_rejected"]
    assert redis_stub.pushed == []


def test_attempt_write_failure_drops_retry(env, monkeypatch):
    _, calls, redis_stub = env

    def flaky(bucket, key, request_id="unknown"):
        raise RuntimeError("s3 down")

    def db_down(*a, **kw):
        raise RuntimeError("db down")

    monkeypatch.setattr(worker, "head_object", flaky)
    monkeypatch.setattr(worker, "increment_verification_job_attempt", db_down)
    worker.process_message(_msg())
    assert calls["sleeps"] == []
    assert redis_stub.pushed == []


def test_loop_survives_unexpected_errors(env, monkeypatch):
    _, calls, _ = env

    def db_down(job_id, request_id="unknown"):
        raise RuntimeError("db down")

    monkeypatch.setattr(worker, "get_verification_job", db_down)
    worker.handle_message(_msg())
    assert calls["alerts"] == ["verification_worker_error"]


def test_backoff_is_capped():
    assert worker._backoff_seconds(1) == 1.0
    assert worker._backoff_seconds(3) == 4.0
    assert worker._backoff_seconds(10) == 60.0
