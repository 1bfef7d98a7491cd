"""
app.services.live_session
~~~~~~~~~~~~~~~~~~~~~~~~~

直播会话领域模型 —— 注册中心内部持有的可变会话记录。

每个 ``LiveSession`` 拥有独立的计数器锁和事件排序器，会话之间互不争用。
对外只通过 ``snapshot()`` 暴露只读快照。
"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from app.schemas.live_interactions import SessionInfoData


class EventSequencer:
    """单个会话的广播排序器（取号-叫号）。

    计数器变更在锁内取号，持久化可以并发进行，但广播必须按号依次放行，
    保证观众看到的计数顺序与提交顺序一致。无论持久化成败，
    持号者都必须经过 ``turn()``，否则后面的号会一直等待。
    """

    def __init__(self) -> None:
        self._next_ticket = 0
        self._serving = 0
        self._finished: set[int] = set()
        self._waiters: dict[int, asyncio.Event] = {}

    def take(self) -> int:
        """取号。必须在会话锁内调用，号码顺序即提交顺序。"""
        ticket = self._next_ticket
        self._next_ticket += 1
        return ticket

    @asynccontextmanager
    async def turn(self, ticket: int) -> AsyncIterator[None]:
        """等待轮到 ``ticket``，退出时放行下一个号。"""
        try:
            if ticket != self._serving:
                waiter = self._waiters.setdefault(ticket, asyncio.Event())
                await waiter.wait()
            yield
        finally:
            self._waiters.pop(ticket, None)
            self._release(ticket)

    def _release(self, ticket: int) -> None:
        # 等待中被取消的号也会走到这里，叫号时直接跳过
        self._finished.add(ticket)
        while self._serving in self._finished:
            self._finished.discard(self._serving)
            self._serving += 1
        waiter = self._waiters.get(self._serving)
        if waiter is not None:
            waiter.set()

    @property
    def pending(self) -> int:
        """已取号但尚未放行的数量。"""
        return self._next_ticket - self._serving


class LiveSession:
    """一个直播会话的内部可变记录。

    Attributes:
        session_id: 会话唯一标识。
        host_username: 主播用户名。
        live_since: 开播时间（UTC）。
        order: 开播序号，同一时间戳下用于排序。
        is_live: 是否直播中，只会从 True 变为 False 一次。
        view_count: 累计去重观众数。
        like_count: 累计点赞数。
        comment_count: 累计评论数。
        ended_at: 下播时间。
        viewers_seen: 曾经加入过的用户 ID，用于判断是否首次加入。
        lock: 保护计数器与直播状态的会话级锁，不跨 I/O 持有。
        sequencer: 广播排序器。
    """

    def __init__(
        self,
        session_id: str,
        host_username: str,
        live_since: datetime,
        order: int,
    ) -> None:
        self.session_id = session_id
        self.host_username = host_username
        self.live_since = live_since
        self.order = order
        self.is_live = True
        self.view_count = 0
        self.like_count = 0
        self.comment_count = 0
        self.ended_at: datetime | None = None
        self.viewers_seen: set[str] = set()
        self.lock = asyncio.Lock()
        self.sequencer = EventSequencer()

    @classmethod
    def from_snapshot(
        cls,
        info: SessionInfoData,
        order: int,
        viewers_seen: set[str] | None = None,
    ) -> LiveSession:
        """从持久化快照恢复会话（进程重启后使用）。"""
        session = cls(info.session_id, info.host_username, info.live_since, order)
        session.is_live = info.is_live
        session.view_count = info.view_count
        session.like_count = info.like_count
        session.comment_count = info.comment_count
        session.ended_at = info.ended_at
        session.viewers_seen = set(viewers_seen or ())
        return session

    def snapshot(self) -> SessionInfoData:
        """返回当前状态的只读快照。"""
        return SessionInfoData(
            session_id=self.session_id,
            host_username=self.host_username,
            live_since=self.live_since,
            is_live=self.is_live,
            view_count=self.view_count,
            like_count=self.like_count,
            comment_count=self.comment_count,
            ended_at=self.ended_at,
        )
