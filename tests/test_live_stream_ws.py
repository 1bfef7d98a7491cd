"""
tests.test_live_stream_ws
~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 网关测试：事件分发用 mock 连接直接调用 ``dispatch_event``，
端到端流程使用 ``TestClient.websocket_connect``。
"""
from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from app.api.live_stream_ws import dispatch_event
from app.core.rate_limit import WebSocketRateLimiter, limiter
from app.main import app
from app.schemas.live_interactions import WsEnvelope
from app.services.live_system import LiveSystem


def _env(event: str, **data: object) -> WsEnvelope:
    return WsEnvelope(event=event, data=data)


def _errors(frames: list[dict]) -> list[str]:
    return [f["data"]["code"] for f in frames if f["event"] == "error"]


# ── 事件分发 ──────────────────────────────────────────────────────────

class TestDispatchEvent:
    """测试单条入站事件的处理。"""

    @pytest.mark.asyncio
    async def test_join_like_comment_flow(self, system: LiveSystem, connection_factory, frames) -> None:
        session_id = await system.registry.open_session("alice")
        ws = connection_factory()
        throttle = WebSocketRateLimiter(interval_seconds=0)

        await dispatch_event(system, ws, _env("joinLive", sessionId=session_id, userId="bob"), throttle)
        await dispatch_event(system, ws, _env("like", sessionId=session_id), throttle)
        await dispatch_event(
            system, ws, _env("comment", sessionId=session_id, username="bob", text="Hi!"), throttle,
        )

        events = [f["event"] for f in frames(ws)]
        assert events == ["viewsUpdate", "likesUpdate", "newComment"]
        assert frames(ws)[-1]["data"]["comment"] == "Hi!"

    @pytest.mark.asyncio
    async def test_leave_stops_broadcasts(self, system: LiveSystem, connection_factory, frames) -> None:
        session_id = await system.registry.open_session("alice")
        ws = connection_factory()
        throttle = WebSocketRateLimiter()

        await dispatch_event(system, ws, _env("joinLive", sessionId=session_id, userId="bob"), throttle)
        await dispatch_event(system, ws, _env("leaveLive", sessionId=session_id), throttle)
        await system.coordinator.record_like(session_id)

        assert [f["event"] for f in frames(ws)] == ["viewsUpdate"]
        assert system.get_session(session_id).view_count == 1

    @pytest.mark.asyncio
    async def test_unknown_session_error_goes_to_requester_only(
        self, system: LiveSystem, connection_factory, frames,
    ) -> None:
        session_id = await system.registry.open_session("alice")
        viewer, requester = connection_factory(), connection_factory()
        await system.coordinator.record_join(session_id, viewer, "viewer")
        before = len(frames(viewer))

        await dispatch_event(system, requester, _env("like", sessionId="missing"), WebSocketRateLimiter())

        assert _errors(frames(requester)) == ["E_NOT_FOUND"]
        assert len(frames(viewer)) == before

    @pytest.mark.asyncio
    async def test_closed_session_error(self, system: LiveSystem, connection_factory, frames) -> None:
        session_id = await system.registry.open_session("alice")
        await system.registry.close_session(session_id)
        ws = connection_factory()

        await dispatch_event(
            system, ws, _env("comment", sessionId=session_id, username="bob", text="late"),
            WebSocketRateLimiter(),
        )

        assert _errors(frames(ws)) == ["E_SESSION_CLOSED"]
        assert system.get_session(session_id).comment_count == 0

    @pytest.mark.asyncio
    async def test_invalid_payload(self, system: LiveSystem, connection_factory, frames) -> None:
        ws = connection_factory()

        await dispatch_event(system, ws, _env("joinLive", sessionId="s1"), WebSocketRateLimiter())

        assert _errors(frames(ws)) == ["E_INVALID_PAYLOAD"]

    @pytest.mark.asyncio
    async def test_unknown_event(self, system: LiveSystem, connection_factory, frames) -> None:
        ws = connection_factory()

        await dispatch_event(system, ws, _env("dance", sessionId="s1"), WebSocketRateLimiter())

        assert _errors(frames(ws)) == ["E_UNKNOWN_EVENT"]

    @pytest.mark.asyncio
    async def test_comment_throttled_per_connection(self, system: LiveSystem, connection_factory, frames) -> None:
        """评论过快被拒绝，点赞不受限。"""
        session_id = await system.registry.open_session("alice")
        ws = connection_factory()
        throttle = WebSocketRateLimiter(interval_seconds=60)
        comment = _env("comment", sessionId=session_id, username="bob", text="spam")

        await dispatch_event(system, ws, comment, throttle)
        await dispatch_event(system, ws, comment, throttle)
        await dispatch_event(system, ws, _env("like", sessionId=session_id), throttle)
        await dispatch_event(system, ws, _env("like", sessionId=session_id), throttle)

        assert _errors(frames(ws)) == ["E_RATE_LIMITED"]
        info = system.get_session(session_id)
        assert info.comment_count == 1
        assert info.like_count == 2


# ── 端到端 ────────────────────────────────────────────────────────────

@pytest.fixture()
def client(system: LiveSystem) -> Iterator[TestClient]:
    app.state.live_system = system
    limiter.enabled = False
    yield TestClient(app)
    limiter.enabled = True
    del app.state.live_system


class TestLiveSocket:
    """测试 ``/ws/live`` 端点。"""

    def test_socket_flow_and_disconnect_cleanup(self, client: TestClient, system: LiveSystem) -> None:
        session_id = client.post("/api/live/start", json={"host_username": "alice"}).json()["data"]["session_id"]

        with client.websocket_connect("/ws/live") as ws:
            ws.send_json({"event": "joinLive", "data": {"sessionId": session_id, "userId": "bob"}})
            assert ws.receive_json() == {"event": "viewsUpdate", "data": {"count": 1}}

            ws.send_json({"event": "like", "data": {"sessionId": session_id}})
            assert ws.receive_json() == {"event": "likesUpdate", "data": {"count": 1}}

            ws.send_json({"event": "comment", "data": {"sessionId": session_id, "username": "bob", "text": "Hi!"}})
            msg = ws.receive_json()
            assert msg["event"] == "newComment"
            assert msg["data"]["username"] == "bob"

            ws.send_text("not json")
            assert ws.receive_json()["data"]["code"] == "E_INVALID_PAYLOAD"

        assert system.tracker.member_count(session_id) == 0
        info = client.get(f"/api/live/{session_id}").json()["data"]
        assert (info["view_count"], info["like_count"], info["comment_count"]) == (1, 1, 1)
