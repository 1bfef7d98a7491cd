"""
app.services.room_broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

事件广播器 —— 把一条事件推送给会话当前的全部在线连接。

推送是尽力而为、每连接每次至多一次：没有重试、没有离线队列。
单个连接的发送受 ``BROADCAST_SEND_TIMEOUT`` 约束，慢连接只会错过本条事件；
发送异常的连接（已断开）会被移出会话。任何单连接失败都不会抛给调用方。
"""
from __future__ import annotations

import asyncio
from typing import Any, Protocol

from app.core.config import settings
from app.core.logging import get_logger
from app.schemas.live_interactions import LiveEvent
from app.services.membership import MembershipTracker

logger = get_logger(__name__)


class Connection(Protocol):
    """可接收 JSON 事件的连接（FastAPI ``WebSocket`` 即满足）。"""

    async def send_json(self, data: Any) -> None: ...


def build_event(event: LiveEvent | str, payload: dict[str, Any]) -> dict[str, Any]:
    """组装出站帧 ``{"event": ..., "data": ...}``。"""
    name = event.value if isinstance(event, LiveEvent) else event
    return {"event": name, "data": payload}


class EventBroadcaster:
    """会话级事件广播器。

    Attributes:
        tracker: 观众管理器，提供广播瞬间的成员快照。
        send_timeout: 单连接发送超时（秒）。
    """

    def __init__(self, tracker: MembershipTracker, send_timeout: float | None = None) -> None:
        self.tracker = tracker
        self.send_timeout = (
            settings.BROADCAST_SEND_TIMEOUT if send_timeout is None else send_timeout
        )

    async def broadcast(
        self,
        session_id: str,
        event: LiveEvent | str,
        payload: dict[str, Any],
    ) -> int:
        """向会话当前全部成员广播事件。

        Returns:
            成功送达的连接数。
        """
        members = list(self.tracker.members_of(session_id))
        if not members:
            return 0

        message = build_event(event, payload)
        results = await asyncio.gather(
            *(self._send(conn, message) for conn in members),
            return_exceptions=True,
        )

        delivered = 0
        for conn, result in zip(members, results):
            if result is None:
                delivered += 1
            elif isinstance(result, asyncio.TimeoutError):
                logger.warning(
                    "推送超时，跳过慢连接 | session=%s | event=%s", session_id, message["event"],
                )
            else:
                logger.warning(
                    "推送失败，移除断开的连接 | session=%s | event=%s | err=%r",
                    session_id, message["event"], result,
                )
                self.tracker.leave(session_id, conn)
        return delivered

    async def _send(self, conn: Connection, message: dict[str, Any]) -> None:
        await asyncio.wait_for(conn.send_json(message), timeout=self.send_timeout)
