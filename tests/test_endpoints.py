"""
tests.test_endpoints
~~~~~~~~~~~~~~~~~~~~

HTTP / WebSocket 接口集成测试。每个用例创建全新的应用实例，房间状态互不影响。
"""
from __future__ import annotations

import asyncio
from collections.abc import Iterator
from typing import Any
from unittest.mock import AsyncMock

import pytest
from fastapi import WebSocket, WebSocketDisconnect
from fastapi.testclient import TestClient

from karaoke.api.party_ws import websocket_party_endpoint
from karaoke.core.rate_limit import limiter
from karaoke.main import create_app
from karaoke.services.gateway import PartyGateway
from karaoke.services.media_search import MediaResult
from karaoke.services.room_directory import RoomDirectory
from tests.helpers import frame, song


class FakeSearch:
    def __init__(self, results: list[MediaResult] | None = None, error: Exception | None = None) -> None:
        self.results = results or []
        self.error = error
        self.calls: list[tuple[str, int]] = []

    async def search(self, query: str, limit: int) -> list[MediaResult]:
        self.calls.append((query, limit))
        if self.error is not None:
            raise self.error
        return self.results


@pytest.fixture()
def client() -> Iterator[TestClient]:
    with TestClient(create_app()) as c:
        yield c


def receive_until_ack(ws: Any) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    """读取消息直到收到回执，返回 (回执之前的事件, 回执)。"""
    events = []
    while True:
        message = ws.receive_json()
        if message["type"] == "ack":
            return events, message
        events.append(message)


# ── 系统 / 房间查询 ────────────────────────────────────────────────────

def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["room_count"] == 0
    assert body["voice_presence"] is False


def test_unknown_room_returns_404_envelope(client: TestClient) -> None:
    response = client.get("/api/rooms/ZZZZ")

    assert response.status_code == 404
    assert response.json() == {"code": 404, "data": None, "msg": "Room not found"}


def test_room_created_over_ws_is_visible_over_http(client: TestClient) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text(frame("room:create", request_id="c1"))
        _, ack = receive_until_ack(ws)
        assert ack["success"] is True
        assert ack["request_id"] == "c1"
        code = ack["data"]["room"]["code"]

        snapshot = client.get(f"/api/rooms/{code.lower()}").json()
        assert snapshot["code"] == 200
        assert snapshot["data"]["code"] == code
        assert snapshot["data"]["client_count"] == 1

        rooms = client.get("/api/rooms").json()["data"]
        assert [r["code"] for r in rooms] == [code]


def test_invalid_frame_gets_error_ack(client: TestClient) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text("definitely not json")
        _, ack = receive_until_ack(ws)

        assert ack["success"] is False
        assert ack["error"] == "Invalid message"
        assert ack["request_id"] is None


# ── WebSocket 派对流程 ────────────────────────────────────────────────

def test_host_and_controller_flow(client: TestClient) -> None:
    with client.websocket_connect("/ws") as host, client.websocket_connect("/ws") as phone:
        host.send_text(frame("room:create"))
        _, ack = receive_until_ack(host)
        code = ack["data"]["room"]["code"]

        phone.send_text(frame("room:join", request_id="j", code=code.lower()))
        events, ack = receive_until_ack(phone)
        assert ack["success"] is True
        assert [e["type"] for e in events] == ["room:client-joined"]
        assert host.receive_json()["data"]["client_count"] == 2

        phone.send_text(frame("character:select", participant_id="alice", seat_id="char_3"))
        events, ack = receive_until_ack(phone)
        assert ack["success"] is True
        assert events[0]["data"]["seats"][2]["assigned_to"] == "alice"
        assert host.receive_json()["type"] == "character:updated"

        phone.send_text(frame("queue:add", request_id="q", **song("Song A")))
        events, ack = receive_until_ack(phone)
        assert [e["type"] for e in events] == ["queue:updated", "player:song-changed"]
        assert ack["data"]["song"]["title"] == "Song A"
        assert host.receive_json()["type"] == "queue:updated"
        changed = host.receive_json()
        assert changed["type"] == "player:song-changed"
        assert changed["data"]["song"]["id"] == ack["data"]["song"]["id"]

        host.send_text(frame("player:state", is_playing=True, position_seconds=3.0))
        sync = phone.receive_json()
        assert sync == {"type": "player:state-sync", "data": {"is_playing": True, "position_seconds": 3.0}}

        snapshot = client.get(f"/api/rooms/{code}").json()["data"]
        assert snapshot["now_playing"]["title"] == "Song A"
        assert snapshot["playback_state"]["position_seconds"] == 3.0


# ── 语音在线状态推送 ──────────────────────────────────────────────────

def test_presence_push_flow(client: TestClient) -> None:
    directory: RoomDirectory = client.app.state.directory
    room = directory.create_room()

    linked = client.post("/api/presence/g-1/link", json={"code": room.code.lower()})
    assert linked.status_code == 200
    assert linked.json()["data"] == {"group_id": "g-1", "code": room.code}

    members = client.post("/api/presence/g-1/members", json=[
        {"participant_id": "u1", "display_name": "Alice"},
        {"participant_id": "u2", "display_name": "Bob"},
    ])
    assert members.json()["data"] == {"count": 2}

    speaking = client.post("/api/presence/g-1/speaking", json={"participant_id": "u2", "is_speaking": True})
    assert speaking.status_code == 200

    snapshot = client.get(f"/api/rooms/{room.code}").json()["data"]
    assert [(m["participant_id"], m["is_speaking"]) for m in snapshot["members"]] == [("u1", False), ("u2", True)]


def test_presence_push_unknown_targets(client: TestClient) -> None:
    assert client.post("/api/presence/g-1/link", json={"code": "ZZZZ"}).status_code == 404

    response = client.post("/api/presence/g-9/members", json=[])
    assert response.status_code == 404
    assert response.json()["msg"] == "No room linked to this group"

    bad_body = client.post("/api/presence/g-9/speaking", json={"is_speaking": True})
    assert bad_body.status_code == 422
    assert bad_body.json()["msg"] == "Invalid request"


def test_presence_push_is_rate_limited(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """推送接口与其他 HTTP 接口共用限流规则，超出后返回 429。"""
    monkeypatch.setattr(limiter, "enabled", True)
    limiter.reset()
    try:
        statuses = [client.post("/api/presence/g-1/link", json={"code": "ZZZZ"}).status_code for _ in range(25)]
    finally:
        limiter.reset()

    assert statuses[0] == 404
    assert 429 in statuses


# ── 歌曲搜索 ──────────────────────────────────────────────────────────

def test_search_not_configured(client: TestClient) -> None:
    assert client.get("/api/search", params={"q": "  "}).status_code == 400
    response = client.get("/api/search", params={"q": "bohemian"})
    assert response.status_code == 503
    assert response.json()["msg"] == "Search is not configured"


def test_search_results() -> None:
    provider = FakeSearch([MediaResult(media_ref="abc123", title="Bohemian Rhapsody", artist="Queen")])

    with TestClient(create_app(media_search=provider)) as c:
        response = c.get("/api/search", params={"q": " bohemian "})

    assert response.status_code == 200
    assert response.json()["data"][0]["media_ref"] == "abc123"
    assert provider.calls == [("bohemian", 10)]


def test_search_provider_failure() -> None:
    provider = FakeSearch(error=RuntimeError("quota exceeded"))

    with TestClient(create_app(media_search=provider)) as c:
        response = c.get("/api/search", params={"q": "anything"})

    assert response.status_code == 502
    assert response.json()["msg"] == "Failed to search videos"


# ── 端点单元测试：使用 mock WebSocket ─────────────────────────────────

@pytest.mark.asyncio
async def test_ws_endpoint_disconnect_tears_down_hosted_room() -> None:
    """主持端连接断开时，端点会交给网关完成离开与销毁。"""
    directory = RoomDirectory()
    gateway = PartyGateway(directory)

    mock_ws = AsyncMock(spec=WebSocket)
    mock_ws.app.state.gateway = gateway
    mock_ws.receive_text.side_effect = [frame("room:create"), WebSocketDisconnect()]

    await websocket_party_endpoint(websocket=mock_ws)

    mock_ws.accept.assert_awaited_once()
    mock_ws.send_text.assert_awaited()
    assert len(directory) == 0


@pytest.mark.asyncio
async def test_ws_endpoint_cleans_up_when_cancelled() -> None:
    directory = RoomDirectory()
    gateway = PartyGateway(directory)

    mock_ws = AsyncMock(spec=WebSocket)
    mock_ws.app.state.gateway = gateway
    mock_ws.receive_text.side_effect = [frame("room:create"), asyncio.CancelledError()]

    with pytest.raises(asyncio.CancelledError):
        await websocket_party_endpoint(websocket=mock_ws)

    # finally 分支仍然执行了断线清理
    assert len(directory) == 0
