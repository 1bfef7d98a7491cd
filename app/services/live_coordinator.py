"""
app.services.live_coordinator
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

计数器 / 评论协调器 —— 观众加入、点赞、评论的唯一变更入口。

每个操作分三步：
  1. 在会话锁内校验直播状态、修改计数器、取广播序号（不做任何 I/O）
  2. 释放锁后持久化（带超时与有界重试）
  3. 按序号依次广播最新值

评论例外：评论正文先落库，再进入第 1 步。
持久化成功才广播；持久化失败时抛出 ``PersistenceError``，
内存计数保持已提交的值，下一次成功写入会把它一并带上（计数器以 ``$max`` 写入）。
"""
from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from app.core.errors import SessionClosed
from app.core.logging import get_logger
from app.db.live_repository import LiveRepository
from app.schemas.live_interactions import CommentData, LiveEvent
from app.services.live_session import LiveSession
from app.services.membership import MembershipTracker
from app.services.persistence import persist_with_retry
from app.services.room_broadcaster import EventBroadcaster
from app.services.session_registry import SessionRegistry

logger = get_logger(__name__)

Write = tuple[str, Callable[[], Awaitable[None]]]


class LiveCoordinator:
    """直播互动协调器。

    Attributes:
        registry: 会话注册中心。
        tracker: 观众管理器。
        broadcaster: 事件广播器。
        repo: 持久化仓库。
    """

    def __init__(
        self,
        registry: SessionRegistry,
        tracker: MembershipTracker,
        broadcaster: EventBroadcaster,
        repo: LiveRepository,
    ) -> None:
        self.registry = registry
        self.tracker = tracker
        self.broadcaster = broadcaster
        self.repo = repo

    async def record_join(self, session_id: str, connection: Any, user_id: str) -> int:
        """观众加入直播间。

        同一用户首次加入才累加观看数，断线重连不重复计数；
        但每次加入都会广播当前观看数，保证新连接拿到一致的数值。

        Returns:
            最新观看数。
        """
        session = self.registry.live_record(session_id)
        async with session.lock:
            self._ensure_live(session)
            online = self.tracker.join(session_id, connection, user_id)
            first_time = user_id not in session.viewers_seen
            if first_time:
                session.viewers_seen.add(user_id)
                session.view_count += 1
            views = session.view_count
            joined_at = datetime.now(timezone.utc)
            ticket = session.sequencer.take()

        logger.info(
            "观众加入 | session=%s | user=%s | first=%s | views=%d | online=%d",
            session_id, user_id, first_time, views, online,
        )
        # 每次加入都写观看数：上一次写入失败时由重连补齐（$max 不会写小）
        writes: list[Write] = [
            ("upsert_membership", lambda: self.repo.upsert_membership(session_id, user_id, joined_at)),
            ("bump_views", lambda: self.repo.bump_counters(session_id, {"views": views})),
        ]

        await self._commit(session, ticket, writes, LiveEvent.VIEWS_UPDATE, {"count": views})
        return views

    def record_leave(self, session_id: str, connection: Any) -> bool:
        """观众离开。重复或迟到的离开信号是无害的空操作，观看数不回退。"""
        removed = self.tracker.leave(session_id, connection)
        if removed:
            logger.info(
                "观众离开 | session=%s | online=%d",
                session_id, self.tracker.member_count(session_id),
            )
        return removed

    async def record_like(self, session_id: str) -> int:
        """点赞，每次调用都 +1（不按用户去重）。

        Returns:
            最新点赞数。
        """
        session = self.registry.live_record(session_id)
        async with session.lock:
            self._ensure_live(session)
            session.like_count += 1
            likes = session.like_count
            ticket = session.sequencer.take()

        await self._commit(
            session,
            ticket,
            [("bump_likes", lambda: self.repo.bump_counters(session_id, {"likes": likes}))],
            LiveEvent.LIKES_UPDATE,
            {"count": likes},
        )
        return likes

    async def record_comment(self, session_id: str, username: str, text: str) -> CommentData:
        """追加一条评论并累加评论数。评论内容原样保存。

        评论先落库，成功后才在锁内累加评论数，评论数始终与评论日志一致。
        落库期间会话被下播时，已写入的评论仍然计数，只是没有观众可以接收广播。

        Returns:
            已保存的评论。
        """
        session = self.registry.live_record(session_id)
        comment = CommentData(
            comment_id=uuid.uuid4().hex,
            session_id=session_id,
            username=username,
            comment=text,
            created_at=datetime.now(timezone.utc),
        )
        # 以 comment_id 为主键，重试不会重复写入
        await persist_with_retry("append_comment", lambda: self.repo.append_comment(comment))

        async with session.lock:
            session.comment_count += 1
            comments = session.comment_count
            ticket = session.sequencer.take()

        await self._commit(
            session,
            ticket,
            [("bump_comments", lambda: self.repo.bump_counters(session_id, {"comment_count": comments}))],
            LiveEvent.NEW_COMMENT,
            {
                "username": comment.username,
                "comment": comment.comment,
                "time": comment.created_at.isoformat(),
            },
        )
        return comment

    # ── 内部 ─────────────────────────────────────────────────────────

    @staticmethod
    def _ensure_live(session: LiveSession) -> None:
        # 取锁期间会话可能已被下播
        if not session.is_live:
            raise SessionClosed(session.session_id)

    async def _commit(
        self,
        session: LiveSession,
        ticket: int,
        writes: list[Write],
        event: LiveEvent,
        payload: dict[str, Any],
    ) -> None:
        """先持久化、再按序广播。无论成败都会交还广播序号。"""
        persisted = False
        try:
            for op, write in writes:
                await persist_with_retry(op, write)
            persisted = True
        finally:
            async with session.sequencer.turn(ticket):
                if persisted:
                    await self.broadcaster.broadcast(session.session_id, event, payload)
                else:
                    logger.error(
                        "持久化失败，取消广播 | session=%s | event=%s",
                        session.session_id, event.value,
                    )
