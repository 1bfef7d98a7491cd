"""
app.services.live_system
~~~~~~~~~~~~~~~~~~~~~~~~

直播系统 —— 组装注册中心、观众管理器、广播器与协调器，
并向 REST 控制面提供开播 / 下播 / 列表 / 详情 / 评论历史 / Token 签发。

在 FastAPI lifespan 中初始化并挂载于 ``app.state.live_system``。
"""
from __future__ import annotations

from app.core.errors import SessionNotFound
from app.core.logging import get_logger
from app.db.live_repository import LiveRepository
from app.schemas.live_interactions import (
    CommentData,
    RtcTokenData,
    SessionInfoData,
    StartLiveResponseData,
    TokenRole,
)
from app.services.live_coordinator import LiveCoordinator
from app.services.membership import MembershipTracker
from app.services.notification import NotificationDispatcher
from app.services.persistence import persist_with_retry
from app.services.room_broadcaster import EventBroadcaster
from app.services.rtc_token import RtcTokenProvider
from app.services.session_registry import SessionRegistry

logger = get_logger(__name__)


class LiveSystem:
    """直播系统（每个进程一个实例）。

    Attributes:
        repo: 持久化仓库。
        registry: 会话注册中心。
        tracker: 观众管理器。
        broadcaster: 事件广播器。
        coordinator: 互动协调器（加入 / 点赞 / 评论）。
        tokens: RTC Token 签发器。
        notifier: 开播推送分发器。
    """

    def __init__(
        self,
        repo: LiveRepository,
        tokens: RtcTokenProvider | None = None,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self.repo = repo
        self.registry = SessionRegistry(repo)
        self.tracker = MembershipTracker(self.registry)
        self.broadcaster = EventBroadcaster(self.tracker)
        self.registry.bind_fanout(self.tracker, self.broadcaster)
        self.coordinator = LiveCoordinator(self.registry, self.tracker, self.broadcaster, repo)
        self.tokens = tokens or RtcTokenProvider()
        self.notifier = notifier or NotificationDispatcher()

    async def start_live(
        self,
        host_username: str,
        notify_device_tokens: list[str] | None = None,
    ) -> StartLiveResponseData:
        """开播，返回会话 ID 及主播推流 Token。"""
        session_id = await self.registry.open_session(host_username)

        rtc_token: str | None = None
        if self.tokens.configured:
            rtc_token = self.tokens.issue_token(session_id, host_username, role="publisher")

        if notify_device_tokens:
            self.notifier.notify(
                notify_device_tokens,
                title=f"{host_username} 开播了",
                body="快来直播间看看吧",
                data={"session_id": session_id},
            )
        return StartLiveResponseData(session_id=session_id, rtc_token=rtc_token)

    async def end_live(self, session_id: str) -> bool:
        """下播。重复下播返回 False 但不报错。"""
        # 未校验调用方是否为主播本人，鉴权由网关层负责
        return await self.registry.close_session(session_id)

    def list_live(self) -> list[SessionInfoData]:
        return self.registry.list_live()

    def get_session(self, session_id: str) -> SessionInfoData:
        return self.registry.get(session_id)

    async def list_comments(
        self,
        session_id: str,
        skip: int = 0,
        limit: int = 100,
    ) -> list[CommentData]:
        """评论历史。已归档（不在内存中）的会话从存储中确认存在。"""
        if not self.registry.contains(session_id):
            stored = await persist_with_retry(
                "get_session", lambda: self.repo.get_session(session_id),
            )
            if stored is None:
                raise SessionNotFound(session_id)
        return await persist_with_retry(
            "list_comments", lambda: self.repo.list_comments(session_id, skip=skip, limit=limit),
        )

    def issue_rtc_token(self, channel: str, uid: str, role: TokenRole) -> RtcTokenData:
        token = self.tokens.issue_token(channel, uid, role=role)
        return RtcTokenData(
            token=token,
            channel=channel,
            uid=uid,
            role=role,
            expires_in=self.tokens.default_ttl,
        )

    async def restore(self) -> int:
        """进程启动时恢复直播中的会话。"""
        return await self.registry.restore()

    async def aclose(self) -> None:
        await self.notifier.aclose()
