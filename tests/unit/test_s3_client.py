"""Object storage wrapper with the boto3 client stubbed out."""

from __future__ import annotations

import os
import sys

import pytest
from botocore.exceptions import ClientError

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "api")))

from storage import s3_client  # noqa: E402


class FakeS3:
    def __init__(self, head_error=None, put_error=None):
        self.head_error = head_error
        self.put_error = put_error
        self.puts = []

    def put_object(self, **kw):
        if self.put_error:
            raise self.put_error
        self.puts.append(kw)
        return {"ETag": '"abc"'}

    def head_object(self, Bucket, Key):
        if self.head_error:
            raise self.head_error
        return {"ContentLength": 12, "ContentType": "application/pdf", "ETag": '"abc"'}


@pytest.fixture
def alerts(monkeypatch):
    sent = []
    monkeypatch.setattr(s3_client, "send_alert", lambda **kw: sent.append(kw))
    return sent


def _client_error(code):
    return ClientError({"Error": {"Code": code, "Message": "x"}}, "HeadObject")


def test_upload_returns_etag_and_size(monkeypatch, alerts):
    fake = FakeS3()
    monkeypatch.setattr(s3_client, "_client", lambda presign=False: fake)
    out = s3_client.upload_bytes("b", "k", b"hello", "text/plain")
    assert out == {"etag": '"abc"', "size_bytes": 5}
    assert fake.puts[0]["ContentType"] == "text/plain"
    assert alerts == []


def test_upload_failure_alerts_and_raises(monkeypatch, alerts):
    fake = FakeS3(put_error=RuntimeError("boom"))
    monkeypatch.setattr(s3_client, "_client", lambda presign=False: fake)
    with pytest.raises(RuntimeError):
        s3_client.upload_bytes("b", "k", b"hello", "text/plain")
    assert alerts[0]["event"] == "s3_upload_error"
    assert alerts[0]["context"] == {"bucket": "b", "object_key": "k", "size_bytes": 5, "error": "boom"}


def test_head_object_missing_is_none(monkeypatch):
    monkeypatch.setattr(s3_client, "_client", lambda presign=False: FakeS3(head_error=_client_error("404")))
    assert s3_client.head_object("b", "k") is None


def test_head_object_other_errors_propagate(monkeypatch):
    monkeypatch.setattr(s3_client, "_client", lambda presign=False: FakeS3(head_error=_client_error("AccessDenied")))
    with pytest.raises(ClientError):
        s3_client.head_object("b", "k")


def test_head_object_metadata(monkeypatch):
    monkeypatch.setattr(s3_client, "_client", lambda presign=False: FakeS3())
    meta = s3_client.head_object("b", "k")
    assert meta["size_bytes"] == 12
    assert meta["content_type"] == "application/pdf"


def test_health_reads_env_only(monkeypatch):
    monkeypatch.setenv("S3_ENDPOINT", "minio:9000")
    monkeypatch.setenv("S3_PRESIGN_ENDPOINT", "files.example.com")
    monkeypatch.setenv("S3_BUCKET", "eve")
    monkeypatch.delenv("S3_ACCESS_KEY", raising=False)
    health = s3_client.health_s3_env()
    assert health["ok"] is True
    assert health["endpoint"] == "http://minio:9000"
    assert health["s3_endpoint_host"] == "minio:9000"
    assert health["s3_presign_host"] == "files.example.com"
    assert health["has_credentials"] is False
