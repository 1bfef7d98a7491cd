"""
app.services.session_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

会话注册中心 —— 进程内"哪些会话正在直播"的唯一权威来源。

注册表按 session_id 分片：每个 ``LiveSession`` 自带锁，不存在全局锁，
不同会话的操作完全独立。字典本身只在同步代码段内增删，对协程是原子的。
"""
from __future__ import annotations

import itertools
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from app.core.errors import PersistenceError, SessionClosed, SessionNotFound, StartFailed
from app.core.logging import get_logger
from app.db.live_repository import LiveRepository
from app.schemas.live_interactions import LiveEvent, SessionInfoData
from app.services.live_session import LiveSession
from app.services.persistence import persist_with_retry

if TYPE_CHECKING:
    from app.services.membership import MembershipTracker
    from app.services.room_broadcaster import EventBroadcaster

logger = get_logger(__name__)


class SessionRegistry:
    """直播会话注册中心。

    - ``open_session(host)``    → 开播，返回新会话 ID
    - ``close_session(id)``     → 下播（幂等），先广播 ``liveEnded`` 再清空观众
    - ``list_live()``           → 直播中的会话快照，最新开播的在前
    - ``get(id)``               → 单个会话快照

    Attributes:
        repo: 持久化仓库。
    """

    def __init__(self, repo: LiveRepository) -> None:
        self.repo = repo
        self._sessions: dict[str, LiveSession] = {}
        self._order = itertools.count()
        self._tracker: MembershipTracker | None = None
        self._broadcaster: EventBroadcaster | None = None

    def bind_fanout(self, tracker: MembershipTracker, broadcaster: EventBroadcaster) -> None:
        """注入下播时需要的观众管理器与广播器（二者都依赖注册中心，需后绑定）。"""
        self._tracker = tracker
        self._broadcaster = broadcaster

    # ── 生命周期 ─────────────────────────────────────────────────────

    async def open_session(self, host_username: str) -> str:
        """开播：创建计数器全为 0 的直播会话并持久化。

        会话记录落库成功后才登记到注册表，写入期间对列表与加入均不可见。

        Raises:
            StartFailed: 持久化失败，会话从未对外可见。
        """
        session_id = str(uuid.uuid4())
        session = LiveSession(
            session_id=session_id,
            host_username=host_username,
            live_since=datetime.now(timezone.utc),
            order=next(self._order),
        )

        try:
            await persist_with_retry(
                "create_session", lambda: self.repo.create_session(session.snapshot()),
            )
        except PersistenceError as e:
            logger.error("开播失败 | host=%s | err=%s", host_username, e)
            raise StartFailed(f"开播失败: {e.msg}") from e

        self._sessions[session_id] = session
        logger.info("开播 | session=%s | host=%s", session_id, host_username)
        return session_id

    async def close_session(self, session_id: str) -> bool:
        """下播。重复调用是无副作用的成功。

        内存状态先切换为已结束（此后 ``list_live`` 不再包含该会话），
        然后持久化、按顺序广播 ``liveEnded``、最后清空观众。
        持久化失败时广播与清理照常完成，再抛出 ``PersistenceError``。

        Returns:
            本次调用是否真正结束了会话（重复调用返回 False）。

        Raises:
            SessionNotFound: 会话不存在。
        """
        session = self._require(session_id)
        async with session.lock:
            if not session.is_live:
                logger.debug("重复下播，忽略 | session=%s", session_id)
                return False
            session.is_live = False
            session.ended_at = datetime.now(timezone.utc)
            ended_at = session.ended_at
            ticket = session.sequencer.take()

        try:
            await persist_with_retry(
                "end_session",
                lambda: self.repo.update_session(
                    session_id, {"is_live": False, "ended_at": ended_at},
                ),
            )
        finally:
            async with session.sequencer.turn(ticket):
                if self._broadcaster is not None:
                    await self._broadcaster.broadcast(session_id, LiveEvent.LIVE_ENDED, {})
            if self._tracker is not None:
                self._tracker.detach_all(session_id)
            logger.info(
                "下播 | session=%s | views=%d | likes=%d | comments=%d",
                session_id, session.view_count, session.like_count, session.comment_count,
            )
        return True

    # ── 查询 ─────────────────────────────────────────────────────────

    def list_live(self) -> list[SessionInfoData]:
        """列出所有直播中的会话快照（最新开播的在前）。"""
        live = [s for s in self._sessions.values() if s.is_live]
        live.sort(key=lambda s: (s.live_since, s.order), reverse=True)
        return [s.snapshot() for s in live]

    def get(self, session_id: str) -> SessionInfoData:
        """获取会话快照。

        Raises:
            SessionNotFound: 会话不存在。
        """
        return self._require(session_id).snapshot()

    def contains(self, session_id: str) -> bool:
        return session_id in self._sessions

    # ── 内部访问（仅供协调器与观众管理器）──────────────────────────────

    def live_record(self, session_id: str) -> LiveSession:
        """返回直播中的内部会话记录，用于在会话锁内做变更。

        Raises:
            SessionNotFound: 会话不存在。
            SessionClosed: 会话已结束。
        """
        session = self._require(session_id)
        if not session.is_live:
            raise SessionClosed(session_id)
        return session

    def _require(self, session_id: str) -> LiveSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    # ── 重启恢复 ─────────────────────────────────────────────────────

    async def restore(self) -> int:
        """从持久化存储恢复直播中的会话及其历史观众集合。

        Returns:
            恢复的会话数。
        """
        stored = await persist_with_retry("list_live", self.repo.list_live)
        restored = 0
        # 存储按开播时间倒序返回，逆序恢复以保持开播序号递增
        for info in reversed(stored):
            if info.session_id in self._sessions:
                continue
            viewers = await persist_with_retry(
                "list_viewer_ids", lambda sid=info.session_id: self.repo.list_viewer_ids(sid),
            )
            session = LiveSession.from_snapshot(info, order=next(self._order), viewers_seen=viewers)
            # 观众记录先于观看数落库，观看数写入失败时以观众记录为准
            session.view_count = max(session.view_count, len(viewers))
            self._sessions[info.session_id] = session
            restored += 1
        if restored:
            logger.info("已恢复 %d 个直播中的会话", restored)
        return restored
