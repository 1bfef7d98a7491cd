"""
app.api.live_endpoints
~~~~~~~~~~~~~~~~~~~~~~

直播控制面 REST 接口 —— 开播 / 下播 / 列表 / 详情 / 评论历史 / RTC Token。

端点:
  - ``POST /live/start``                   → 开播，返回会话 ID 与主播 Token
  - ``POST /live/end``                     → 下播（幂等）
  - ``GET  /live/list``                    → 直播中的会话（最新在前）
  - ``GET  /live/{session_id}``            → 会话详情
  - ``GET  /live/{session_id}/comments``   → 评论历史（分页）
  - ``GET  /rtc-token``                    → 签发 RTC Token
"""
from fastapi import APIRouter, Depends, Query, Request

from app.api.deps import get_live_system
from app.core.logging import get_logger
from app.core.rate_limit import limiter
from app.schemas.api_response import ApiResponse
from app.schemas.live_interactions import (
    CommentHistoryData,
    EndLiveRequest,
    EndLiveResponseData,
    RtcTokenData,
    SessionInfoData,
    StartLiveRequest,
    StartLiveResponseData,
    TokenRole,
)
from app.services.live_system import LiveSystem

logger = get_logger(__name__)

router: APIRouter = APIRouter()


# ── 会话生命周期 ──────────────────────────────────────────────────────

@router.post("/live/start", summary="开播", response_model=ApiResponse[StartLiveResponseData])
@limiter.limit("5/second")
async def start_live(
    request: Request,
    body: StartLiveRequest,
    system: LiveSystem = Depends(get_live_system),
):
    """创建新的直播会话。会话 ID 同时作为 RTC 频道名。"""
    data = await system.start_live(body.host_username, body.notify_device_tokens)
    return ApiResponse.ok(data=data, msg="Live stream started")


@router.post("/live/end", summary="下播", response_model=ApiResponse[EndLiveResponseData])
@limiter.limit("5/second")
async def end_live(
    request: Request,
    body: EndLiveRequest,
    system: LiveSystem = Depends(get_live_system),
):
    """结束直播。已结束的会话再次调用同样返回成功。"""
    ended = await system.end_live(body.session_id)
    if not ended:
        logger.info("会话已结束，忽略重复下播 | session=%s", body.session_id)
    return ApiResponse.ok(data=EndLiveResponseData(session_id=body.session_id))


# ── 查询 ──────────────────────────────────────────────────────────────

@router.get("/live/list", summary="直播列表", response_model=ApiResponse[list[SessionInfoData]])
@limiter.limit("10/second")
async def list_live(request: Request, system: LiveSystem = Depends(get_live_system)):
    """返回所有直播中的会话，最新开播的在前。"""
    return ApiResponse.ok(data=system.list_live())


@router.get("/live/{session_id}", summary="会话详情", response_model=ApiResponse[SessionInfoData])
@limiter.limit("10/second")
async def session_info(
    request: Request,
    session_id: str,
    system: LiveSystem = Depends(get_live_system),
):
    return ApiResponse.ok(data=system.get_session(session_id))


@router.get(
    "/live/{session_id}/comments",
    summary="评论历史",
    response_model=ApiResponse[CommentHistoryData],
)
@limiter.limit("5/second")
async def comment_history(
    request: Request,
    session_id: str,
    skip: int = Query(0, ge=0, description="跳过条数（分页偏移）"),
    limit: int = Query(100, ge=1, le=500, description="每页最大条数"),
    system: LiveSystem = Depends(get_live_system),
):
    """获取指定会话的评论历史（按时间正序）。"""
    comments = await system.list_comments(session_id, skip=skip, limit=limit)
    return ApiResponse.ok(
        data=CommentHistoryData(session_id=session_id, comments=comments, total=len(comments)),
    )


# ── RTC Token ─────────────────────────────────────────────────────────

@router.get("/rtc-token", summary="签发 RTC Token", response_model=ApiResponse[RtcTokenData])
@limiter.limit("10/second")
async def rtc_token(
    request: Request,
    channel: str = Query(..., min_length=1, description="频道名（会话 ID）"),
    uid: str = Query("0", description="用户标识"),
    role: TokenRole = Query("subscriber", description="publisher / subscriber"),
    system: LiveSystem = Depends(get_live_system),
):
    """签发加入频道的 Token。未配置签名凭证时返回 500。"""
    return ApiResponse.ok(data=system.issue_rtc_token(channel, uid, role))
