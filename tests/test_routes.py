import json

import pytest

from backend.app import create_app
from core.otp_core import hotp

from .helpers import PAIRING_KEY, WINDOW_START

N = WINDOW_START // 30


@pytest.fixture
def app(service, db_path):
    app = create_app({"TESTING": True, "DEVICE_DB": db_path, "STREAM_KEEPALIVE": 0.1}, service=service)
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


def test_index_lists_endpoints(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert "POST /api/device" in resp.get_json()["endpoints"]


def test_sanitize(client):
    resp = client.post("/api/sanitize", json={"key": "ab12-cd34"})
    assert resp.get_json() == {"key": "AB12CD34", "complete": False}

    resp = client.post("/api/sanitize", json={"key": "ab12cd34ef56gh78xyz"})
    assert resp.get_json() == {"key": "AB12CD34EF56GH78", "complete": True}


def test_pair_and_read_device(client):
    resp = client.post("/api/device", json={"key": PAIRING_KEY})
    assert resp.status_code == 201
    assert resp.get_json()["secret"] == PAIRING_KEY

    resp = client.get("/api/device")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["paired"] is True
    assert body["createdAt"].startswith("2024-03-09T16:00:00")


@pytest.mark.parametrize("key,kind", [("AB12", "LengthError"), ("ab12cd34ef56gh78", "CharsetError")])
def test_pair_rejects_invalid_key(client, key, kind):
    resp = client.post("/api/device", json={"key": key})
    assert resp.status_code == 400
    assert resp.get_json()["type"] == kind
    assert client.get("/api/device").status_code == 404


def test_pair_requires_key(client):
    assert client.post("/api/device", json={}).status_code == 400


def test_otp_requires_pairing(client):
    assert client.get("/api/otp").status_code == 404
    assert client.get("/api/otp/stream").status_code == 404


def test_current_otp(client):
    client.post("/api/device", json={"key": PAIRING_KEY})
    body = client.get("/api/otp").get_json()
    assert body == {"code": hotp(PAIRING_KEY, N), "remaining": 30, "timeStep": N, "refreshed": False}


def test_reset_is_idempotent(client):
    client.post("/api/device", json={"key": PAIRING_KEY})
    assert client.delete("/api/device").status_code == 200
    assert client.delete("/api/device").status_code == 200
    assert client.get("/api/device").status_code == 404


def test_storage_failure_is_reported(client, service, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    service.store.path = str(blocker / "device.db")

    resp = client.post("/api/device", json={"key": PAIRING_KEY})
    assert resp.status_code == 500
    assert "error" in resp.get_json()


def test_stream_sends_ticks_until_reset(client):
    client.post("/api/device", json={"key": PAIRING_KEY})
    resp = client.get("/api/otp/stream", buffered=False)
    assert resp.status_code == 200
    assert resp.mimetype == "text/event-stream"

    chunks = iter(resp.response)
    first = next(chunks)
    first = first.decode() if isinstance(first, bytes) else first
    assert first.startswith("data: ")
    tick = json.loads(first[len("data: "):])
    assert tick["code"] == hotp(PAIRING_KEY, N)
    assert tick["remaining"] == 30

    client.delete("/api/device")
    last = next(chunks)
    last = last.decode() if isinstance(last, bytes) else last
    assert last.startswith("event: end")
    resp.close()


def test_sanitize_treats_null_as_empty(client):
    resp = client.post("/api/sanitize", json={"key": None})
    assert resp.get_json() == {"key": "", "complete": False}


@pytest.mark.parametrize("value", [1234, ["AB12"], {"key": "AB12"}])
def test_sanitize_rejects_non_string_key(client, value):
    assert client.post("/api/sanitize", json={"key": value}).status_code == 400


def test_body_that_is_not_an_object(client):
    assert client.post("/api/sanitize", json=["ab12"]).get_json() == {"key": "", "complete": False}
    assert client.post("/api/device", json=[PAIRING_KEY]).status_code == 400
