"""
app.api.live_stream_ws
~~~~~~~~~~~~~~~~~~~~~~

WebSocket 实时互动网关 —— 把客户端事件翻译为协调器调用。

提供 ``/ws/live`` 端点，一条连接可以加入一个或多个直播会话。

消息协议（JSON 帧 ``{"event": ..., "data": {...}}``）:
  - 入站: ``joinLive{sessionId,userId}`` / ``leaveLive{sessionId}`` /
    ``like{sessionId}`` / ``comment{sessionId,username,text}``
  - 出站: ``viewsUpdate{count}`` / ``likesUpdate{count}`` /
    ``newComment{username,comment,time}`` / ``liveEnded{}``
  - 仅回送给请求方: ``error{code,msg}``
"""
from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.core.config import settings
from app.core.errors import LiveError
from app.core.logging import get_logger, request_id_ctx_var
from app.core.rate_limit import WebSocketRateLimiter
from app.schemas.live_interactions import (
    CommentPayload,
    JoinLivePayload,
    LeaveLivePayload,
    LikePayload,
    LiveEvent,
    WsEnvelope,
)
from app.services.live_system import LiveSystem
from app.services.room_broadcaster import build_event

logger = get_logger(__name__)

router: APIRouter = APIRouter()


async def _send_error(websocket: WebSocket, code: str, msg: str) -> None:
    """只向当前连接回送错误，连接已断开时忽略。"""
    try:
        await websocket.send_json(build_event(LiveEvent.ERROR, {"code": code, "msg": msg}))
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("错误回送失败: %s", e)


async def dispatch_event(
    system: LiveSystem,
    websocket: WebSocket,
    envelope: WsEnvelope,
    comment_limiter: WebSocketRateLimiter,
) -> None:
    """处理一条入站事件。业务异常与负载校验失败只回送给当前连接。"""
    data: dict[str, Any] = envelope.data
    try:
        if envelope.event == LiveEvent.JOIN_LIVE.value:
            join = JoinLivePayload.model_validate(data)
            await system.coordinator.record_join(join.session_id, websocket, join.user_id)

        elif envelope.event == LiveEvent.LEAVE_LIVE.value:
            leave = LeaveLivePayload.model_validate(data)
            system.coordinator.record_leave(leave.session_id, websocket)

        elif envelope.event == LiveEvent.LIKE.value:
            like = LikePayload.model_validate(data)
            await system.coordinator.record_like(like.session_id)

        elif envelope.event == LiveEvent.COMMENT.value:
            comment = CommentPayload.model_validate(data)
            if not comment_limiter.is_allowed(id(websocket)):
                await _send_error(websocket, "E_RATE_LIMITED", "评论太快啦，请慢一点~")
                return
            await system.coordinator.record_comment(
                comment.session_id, comment.username, comment.text,
            )

        else:
            await _send_error(websocket, "E_UNKNOWN_EVENT", f"未知事件: {envelope.event}")

    except ValidationError as e:
        await _send_error(websocket, "E_INVALID_PAYLOAD", str(e))
    except LiveError as e:
        logger.info("事件被拒绝 | event=%s | code=%s | msg=%s", envelope.event, e.code, e.msg)
        await _send_error(websocket, e.code, e.msg)


@router.websocket("/ws/live")
async def live_socket_endpoint(websocket: WebSocket) -> None:
    """WebSocket 直播互动端点。

    同一连接上的事件按到达顺序依次处理；不同连接之间完全并发。
    连接断开后，它在所有会话中的成员记录都会被移除。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    ws_req_id = f"ws-{uuid.uuid4().hex[:8]}"
    token = request_id_ctx_var.set(ws_req_id)

    system: LiveSystem = websocket.app.state.live_system
    comment_limiter = WebSocketRateLimiter(interval_seconds=settings.WS_COMMENT_INTERVAL)

    try:
        await websocket.accept()
        logger.info("连接建立")
        while True:
            raw: str = await websocket.receive_text()
            try:
                envelope = WsEnvelope.model_validate_json(raw)
            except ValidationError as e:
                await _send_error(websocket, "E_INVALID_PAYLOAD", str(e))
                continue
            await dispatch_event(system, websocket, envelope, comment_limiter)
    except WebSocketDisconnect:
        pass  # 正常断开
    except Exception as e:
        logger.error("WebSocket 处理异常: %s", e, exc_info=True)
    finally:
        for session_id in system.tracker.sessions_of(websocket):
            system.coordinator.record_leave(session_id, websocket)
        comment_limiter.remove_client(id(websocket))
        logger.info("连接断开")
        request_id_ctx_var.reset(token)
