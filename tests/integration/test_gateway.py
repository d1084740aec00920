"""WebSocket gateway smoke tests with the generation backend replaced by a fake transport."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from chat_stream.app import create_app
from chat_stream.application.exceptions import AppError
from tests.conftest import SSE_DONE, FakeChannel, FakeTransport, sse_delta

FRAME_LIMIT = 200


@pytest.fixture
def client():
    with TestClient(create_app(), raise_server_exceptions=False) as client:
        yield client


def _receive_until(ws, frame_type: str) -> list[dict]:
    frames = []
    for _ in range(FRAME_LIMIT):
        frame = ws.receive_json()
        frames.append(frame)
        if frame["type"] == frame_type:
            return frames
    raise AssertionError(f"no {frame_type!r} frame within {FRAME_LIMIT} frames")


def _of_type(frames: list[dict], frame_type: str) -> list[dict]:
    return [f["data"] for f in frames if f["type"] == frame_type]


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_app_errors_surface_as_ws_frames_only(client):
    handled = [k for k in client.app.exception_handlers if isinstance(k, type)]
    assert not any(issubclass(k, AppError) for k in handled)
    assert {r.path for r in client.app.routes} >= {"/healthz", "/ws/chat"}


def test_ping_pong(client):
    with client.websocket_connect("/ws/chat?device_id=gw-ping") as ws:
        ws.send_json({"type": "ping"})
        frames = _receive_until(ws, "pong")

    assert frames[-1] == {"type": "pong", "data": {}}


def test_invalid_token_closes_with_4001(client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws/chat?token=not-a-jwt") as ws:
            ws.receive_json()

    assert exc_info.value.code == 4001


def test_unknown_type_and_bad_payload(client):
    with client.websocket_connect("/ws/chat?device_id=gw-errors") as ws:
        ws.send_json({"type": "bogus"})
        unknown = _receive_until(ws, "error")[-1]
        ws.send_text("not json")
        invalid = _receive_until(ws, "error")[-1]

    assert unknown["data"] == {"code": "unknown_type", "type": "bogus"}
    assert invalid["data"] == {"code": "invalid_payload"}


def test_invalid_send_reports_error(client):
    with client.websocket_connect("/ws/chat?device_id=gw-empty") as ws:
        ws.send_json({"type": "message.send", "data": {"content": "   "}})
        error = _receive_until(ws, "error")[-1]

    assert error["data"]["code"] == "invalid_data"
    assert error["data"]["type"] == "message.send"


def test_guest_message_streams_reply(client):
    transport = FakeTransport(FakeChannel([sse_delta("Apple "), sse_delta("Inc."), SSE_DONE]))
    client.app.state.backend = transport

    with client.websocket_connect("/ws/chat?device_id=gw-stream") as ws:
        ws.send_json({"type": "message.send", "data": {"content": "What is AAPL?"}})
        frames = _receive_until(ws, "stream.finished")

    added = _of_type(frames, "message.added")
    assert [m["role"] for m in added] == ["user", "assistant"]
    assert added[0]["content"] == "What is AAPL?"
    assert added[0]["conversation_id"].startswith("guest-")
    assert _of_type(frames, "message.submitted") == [{"result": "sent"}]
    finalized = _of_type(frames, "message.finalized")
    assert finalized[-1]["content"] == "Apple Inc."
    assert finalized[-1]["cancelled"] is False
    assert _of_type(frames, "stream.finished")[-1]["outcome"] == "completed"

    (request,) = transport.requests
    assert request.message == "What is AAPL?"
    assert request.conversation_id is None
    assert transport.tokens == [None]


def test_attachment_upload_retry_and_send(client):
    transport = FakeTransport(FakeChannel([sse_delta("Read it."), SSE_DONE]))
    client.app.state.backend = transport

    with client.websocket_connect("/ws/chat?device_id=gw-files") as ws:
        ws.send_json({"type": "attachment.add", "data": {"name": "q1.pdf", "type": "application/pdf"}})
        pending = _receive_until(ws, "attachment.updated")[-1]["data"]
        handle = pending["handle"]
        ws.send_json({"type": "attachment.failed", "data": {"handle": handle, "error": "timeout"}})
        failed = _receive_until(ws, "attachment.updated")[-1]["data"]
        ws.send_json({"type": "attachment.retry", "data": {"handle": handle}})
        retried = _receive_until(ws, "attachment.updated")[-1]["data"]
        ws.send_json({
            "type": "attachment.uploaded",
            "data": {"handle": handle, "url": "https://files.test/q1.pdf"},
        })
        attached = _receive_until(ws, "attachment.updated")[-1]["data"]
        ws.send_json({"type": "message.send", "data": {"content": "Summarise this"}})
        frames = _receive_until(ws, "stream.finished")

    assert pending["status"] == "pending"
    assert (failed["status"], failed["error"]) == ("failed", "timeout")
    assert retried["status"] == "pending"
    assert (attached["status"], attached["url"]) == ("attached", "https://files.test/q1.pdf")
    assert _of_type(frames, "attachment.updated")[0]["status"] == "detached"
    user = _of_type(frames, "message.added")[0]
    assert [a["url"] for a in user["attachments"]] == ["https://files.test/q1.pdf"]
    assert transport.requests[0].files == ("https://files.test/q1.pdf",)
