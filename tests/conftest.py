"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用内存仓库替换 MongoDB，用 AsyncMock 替换 WebSocket 连接，
使单元测试无需数据库与网络即可快速运行。
"""
from __future__ import annotations

import os

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PERSIST_RETRY_MIN_WAIT", "0")
os.environ.setdefault("PERSIST_RETRY_MAX_WAIT", "0")
os.environ.setdefault("PERSIST_MAX_ATTEMPTS", "3")

import asyncio  # noqa: E402
from collections.abc import Callable  # noqa: E402
from datetime import datetime  # noqa: E402
from typing import Any  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402

from app.core.errors import PersistenceError  # noqa: E402
from app.schemas.live_interactions import CommentData, SessionInfoData  # noqa: E402
from app.services.live_system import LiveSystem  # noqa: E402
from app.services.notification import NotificationDispatcher  # noqa: E402
from app.services.rtc_token import RtcTokenProvider  # noqa: E402


# ── 内存仓库 ──────────────────────────────────────────────────────────

class FakeLiveRepository:
    """与 ``LiveRepository`` 接口一致的内存实现。

    - ``fail_ops``: 操作名 -> 剩余失败次数（-1 表示一直失败）
    - ``delays``:   操作名 -> 每次调用前的等待秒数，或按调用返回等待秒数的函数
    - ``calls``:    按调用顺序记录的操作名
    """

    def __init__(self) -> None:
        self.sessions: dict[str, dict[str, Any]] = {}
        self.comments: dict[str, CommentData] = {}
        self.viewers: dict[tuple[str, str], datetime] = {}
        self.calls: list[str] = []
        self.fail_ops: dict[str, int] = {}
        self.delays: dict[str, float | Callable[[dict[str, Any]], float]] = {}

    async def _enter(self, op: str, args: dict[str, Any] | None = None) -> None:
        self.calls.append(op)
        delay = self.delays.get(op)
        if callable(delay):
            delay = delay(args or {})
        if delay:
            await asyncio.sleep(delay)
        remaining = self.fail_ops.get(op, 0)
        if remaining:
            if remaining > 0:
                self.fail_ops[op] = remaining - 1
            raise PersistenceError(f"{op} 失败")

    async def create_session(self, session: SessionInfoData) -> None:
        await self._enter("create_session")
        self.sessions[session.session_id] = session.model_dump()

    async def update_session(self, session_id: str, fields: dict[str, Any]) -> None:
        await self._enter("update_session")
        self.sessions[session_id].update(fields)

    async def bump_counters(self, session_id: str, counters: dict[str, int]) -> None:
        await self._enter("bump_counters", {"session_id": session_id, **counters})
        doc = self.sessions[session_id]
        mapping = {"views": "view_count", "likes": "like_count", "comment_count": "comment_count"}
        for field, value in counters.items():
            key = mapping[field]
            doc[key] = max(doc[key], value)

    async def get_session(self, session_id: str) -> SessionInfoData | None:
        await self._enter("get_session")
        doc = self.sessions.get(session_id)
        return SessionInfoData(**doc) if doc else None

    async def list_live(self) -> list[SessionInfoData]:
        await self._enter("list_live")
        live = [SessionInfoData(**d) for d in self.sessions.values() if d["is_live"]]
        return sorted(live, key=lambda s: s.live_since, reverse=True)

    async def append_comment(self, comment: CommentData) -> None:
        await self._enter("append_comment")
        self.comments.setdefault(comment.comment_id, comment)

    async def list_comments(
        self,
        session_id: str,
        skip: int = 0,
        limit: int = 100,
    ) -> list[CommentData]:
        await self._enter("list_comments")
        rows = [c for c in self.comments.values() if c.session_id == session_id]
        rows.sort(key=lambda c: c.created_at)
        return rows[skip:skip + limit]

    async def upsert_membership(self, session_id: str, user_id: str, joined_at: datetime) -> None:
        await self._enter("upsert_membership")
        self.viewers.setdefault((session_id, user_id), joined_at)

    async def list_viewer_ids(self, session_id: str) -> set[str]:
        await self._enter("list_viewer_ids")
        return {uid for sid, uid in self.viewers if sid == session_id}


def make_connection() -> MagicMock:
    """一个可接收广播的假连接，``send_json`` 记录收到的全部帧。"""
    conn = MagicMock()
    conn.send_json = AsyncMock()
    return conn


def received(conn: MagicMock) -> list[dict[str, Any]]:
    """取出假连接收到的全部帧。"""
    return [c.args[0] for c in conn.send_json.await_args_list]


# ── Fixtures ──────────────────────────────────────────────────────────

@pytest.fixture()
def repo() -> FakeLiveRepository:
    return FakeLiveRepository()


@pytest.fixture()
def system(repo: FakeLiveRepository) -> LiveSystem:
    """未配置 RTC 凭证与推送网关的直播系统。"""
    return LiveSystem(
        repo,  # type: ignore[arg-type]
        tokens=RtcTokenProvider(api_key="", api_secret=""),
        notifier=NotificationDispatcher(gateway_url=""),
    )


@pytest.fixture()
def connection_factory() -> Callable[[], MagicMock]:
    return make_connection


@pytest.fixture()
def frames() -> Callable[[MagicMock], list[dict[str, Any]]]:
    return received
