"""
app.schemas.live_interactions
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

直播间相关的 Pydantic 请求/响应模型，以及 WebSocket 事件协议。

WebSocket 帧统一为 ``{"event": <事件名>, "data": {...}}``，
入站事件字段沿用客户端的 camelCase 命名（``sessionId`` / ``userId``）。
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

TokenRole = Literal["publisher", "subscriber"]


class LiveEvent(str, Enum):
    """WebSocket 事件名。"""

    # 入站
    JOIN_LIVE = "joinLive"
    LEAVE_LIVE = "leaveLive"
    LIKE = "like"
    COMMENT = "comment"
    # 出站
    VIEWS_UPDATE = "viewsUpdate"
    LIKES_UPDATE = "likesUpdate"
    NEW_COMMENT = "newComment"
    LIVE_ENDED = "liveEnded"
    ERROR = "error"


# ── 会话快照 ──────────────────────────────────────────────────────────

class SessionInfoData(BaseModel):
    """直播会话的只读快照。

    注册中心对外只返回此快照，调用方无法借此修改内存中的会话状态。
    """

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(..., description="会话唯一标识")
    host_username: str = Field(..., description="主播用户名")
    live_since: datetime = Field(..., description="开播时间（UTC）")
    is_live: bool = Field(..., description="是否直播中")
    view_count: int = Field(..., ge=0, description="累计观看人数（去重用户）")
    like_count: int = Field(..., ge=0, description="累计点赞数")
    comment_count: int = Field(..., ge=0, description="累计评论数")
    ended_at: datetime | None = Field(default=None, description="下播时间（UTC）")


class CommentData(BaseModel):
    """单条评论。"""

    comment_id: str = Field(..., description="评论唯一标识（重试写入时去重）")
    session_id: str = Field(..., description="所属会话")
    username: str = Field(..., description="评论作者")
    comment: str = Field(..., description="评论原文")
    created_at: datetime = Field(..., description="服务端接收时间（UTC）")


# ── REST 控制面 ───────────────────────────────────────────────────────

class StartLiveRequest(BaseModel):
    """开播请求体。"""

    host_username: str = Field(..., min_length=1, description="主播用户名")
    notify_device_tokens: list[str] = Field(
        default_factory=list, description="需要推送开播提醒的设备 Token",
    )


class StartLiveResponseData(BaseModel):
    """开播响应数据。"""

    session_id: str = Field(..., description="新会话 ID，同时作为 RTC 频道名")
    rtc_token: str | None = Field(
        default=None, description="主播推流 Token（未配置 RTC 凭证时为空）",
    )


class EndLiveRequest(BaseModel):
    """下播请求体。"""

    session_id: str = Field(..., min_length=1, description="会话 ID")


class EndLiveResponseData(BaseModel):
    """下播响应数据。"""

    session_id: str = Field(..., description="会话 ID")
    success: bool = Field(default=True, description="是否成功")


class CommentHistoryData(BaseModel):
    """评论历史响应数据。"""

    session_id: str = Field(..., description="会话 ID")
    comments: list[CommentData] = Field(..., description="评论列表（按时间正序）")
    total: int = Field(..., description="本次返回条数")


class RtcTokenData(BaseModel):
    """RTC Token 响应数据。"""

    token: str = Field(..., description="签名后的 Token")
    channel: str = Field(..., description="频道名")
    uid: str = Field(..., description="用户标识")
    role: TokenRole = Field(..., description="角色")
    expires_in: int = Field(..., description="有效期（秒）")


# ── WebSocket 协议 ────────────────────────────────────────────────────

class WsEnvelope(BaseModel):
    """入站 WebSocket 帧。"""

    event: str = Field(..., description="事件名")
    data: dict[str, Any] = Field(default_factory=dict, description="事件负载")


class _WsPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId", min_length=1)


class JoinLivePayload(_WsPayload):
    user_id: str = Field(..., alias="userId", min_length=1)


class LeaveLivePayload(_WsPayload):
    pass


class LikePayload(_WsPayload):
    pass


class CommentPayload(_WsPayload):
    username: str = Field(..., min_length=1)
    # 原样保存，不做长度限制或过滤
    text: str
