"""
app.db.live_repository
~~~~~~~~~~~~~~~~~~~~~~

直播数据持久化仓库 —— 封装 MongoDB 中三个集合的读写：

- ``live_streams``  : 会话记录（计数器、直播状态）
- ``live_comments`` : 评论日志（只追加）
- ``live_viewers``  : 观众加入记录（按 session_id + user_id 唯一）

每个操作都受 ``PERSIST_TIMEOUT_SECONDS`` 约束，超时或驱动异常统一转换为
``PersistenceError``；重试策略由上层协调器负责。所有写操作按主键幂等：
计数器用 ``$max`` 写入，观众记录用 ``$setOnInsert`` upsert。
"""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from datetime import datetime
from typing import Any, TypeVar

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.config import settings
from app.core.errors import PersistenceError
from app.core.logging import get_logger
from app.schemas.live_interactions import CommentData, SessionInfoData

logger = get_logger(__name__)

_STREAMS = "live_streams"
_COMMENTS = "live_comments"
_VIEWERS = "live_viewers"

R = TypeVar("R")


def _session_to_doc(session: SessionInfoData) -> dict[str, Any]:
    return {
        "session_id": session.session_id,
        "host_username": session.host_username,
        "views": session.view_count,
        "likes": session.like_count,
        "comment_count": session.comment_count,
        "is_live": session.is_live,
        "created_at": session.live_since,
        "ended_at": session.ended_at,
    }


def _doc_to_session(doc: dict[str, Any]) -> SessionInfoData:
    return SessionInfoData(
        session_id=doc["session_id"],
        host_username=doc["host_username"],
        live_since=doc["created_at"],
        is_live=bool(doc.get("is_live", False)),
        view_count=doc.get("views", 0),
        like_count=doc.get("likes", 0),
        comment_count=doc.get("comment_count", 0),
        ended_at=doc.get("ended_at"),
    )


class LiveRepository:
    """直播数据持久化仓库。

    Attributes:
        db: MongoDB 数据库实例。
        timeout: 单次操作超时（秒）。
    """

    def __init__(self, db: AsyncIOMotorDatabase, timeout: float | None = None) -> None:
        self.db = db
        self.timeout = settings.PERSIST_TIMEOUT_SECONDS if timeout is None else timeout
        self._streams = db[_STREAMS]
        self._comments = db[_COMMENTS]
        self._viewers = db[_VIEWERS]
        self._indexes_created = False

    async def _guard(self, op: str, awaitable: Awaitable[R]) -> R:
        """执行一次数据库调用，超时或驱动异常转换为 ``PersistenceError``。"""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning("持久化超时 | op=%s | timeout=%.1fs", op, self.timeout)
            raise PersistenceError(f"{op} 超时") from e
        except PyMongoError as e:
            logger.warning("持久化失败 | op=%s | err=%s", op, e)
            raise PersistenceError(f"{op} 失败: {e}") from e

    async def ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        await self._guard("ensure_indexes", self._create_indexes())
        self._indexes_created = True
        logger.debug("live_* 索引已就绪")

    async def _create_indexes(self) -> None:
        await self._streams.create_index("session_id", unique=True, name="uq_session")
        await self._streams.create_index(
            [("is_live", ASCENDING), ("created_at", DESCENDING)],
            name="idx_live_time",
        )
        await self._comments.create_index(
            [("session_id", ASCENDING), ("created_at", ASCENDING)],
            name="idx_session_time",
        )
        await self._viewers.create_index(
            [("session_id", ASCENDING), ("user_id", ASCENDING)],
            unique=True,
            name="uq_session_user",
        )

    # ── 会话 ─────────────────────────────────────────────────────────

    async def create_session(self, session: SessionInfoData) -> None:
        """写入一条新的会话记录。"""
        await self.ensure_indexes()
        await self._guard("create_session", self._streams.insert_one(_session_to_doc(session)))

    async def update_session(self, session_id: str, fields: dict[str, Any]) -> None:
        """按字段覆盖更新会话记录（如 ``is_live`` / ``ended_at``）。"""
        await self.ensure_indexes()
        await self._guard(
            "update_session",
            self._streams.update_one({"session_id": session_id}, {"$set": fields}),
        )

    async def bump_counters(self, session_id: str, counters: dict[str, int]) -> None:
        """写入计数器最新值。

        使用 ``$max``，并发写入乱序到达时也不会把计数器写小。

        Args:
            session_id: 会话 ID。
            counters: 字段名到新值的映射，如 ``{"likes": 3}``。
        """
        await self.ensure_indexes()
        await self._guard(
            "bump_counters",
            self._streams.update_one({"session_id": session_id}, {"$max": counters}),
        )

    async def get_session(self, session_id: str) -> SessionInfoData | None:
        await self.ensure_indexes()
        doc = await self._guard(
            "get_session",
            self._streams.find_one({"session_id": session_id}, {"_id": 0}),
        )
        return _doc_to_session(doc) if doc else None

    async def list_live(self) -> list[SessionInfoData]:
        """列出所有直播中的会话（按开播时间倒序）。"""
        await self.ensure_indexes()
        cursor = self._streams.find({"is_live": True}, {"_id": 0}).sort("created_at", DESCENDING)
        docs = await self._guard("list_live", cursor.to_list(length=None))
        return [_doc_to_session(doc) for doc in docs]

    # ── 评论 ─────────────────────────────────────────────────────────

    async def append_comment(self, comment: CommentData) -> None:
        """追加评论。以 ``comment_id`` 作为主键，超时后重试不会写出重复评论。"""
        await self.ensure_indexes()
        doc = {"_id": comment.comment_id, **comment.model_dump()}
        try:
            await self._guard("append_comment", self._comments.insert_one(doc))
        except PersistenceError as e:
            if isinstance(e.__cause__, DuplicateKeyError):
                return
            raise

    async def list_comments(
        self,
        session_id: str,
        skip: int = 0,
        limit: int = 100,
    ) -> list[CommentData]:
        """获取指定会话的评论（分页，按时间正序）。"""
        await self.ensure_indexes()
        cursor = (
            self._comments
            .find({"session_id": session_id}, {"_id": 0})
            .sort("created_at", ASCENDING)
            .skip(skip)
            .limit(limit)
        )
        docs = await self._guard("list_comments", cursor.to_list(length=limit))
        return [CommentData(**doc) for doc in docs]

    # ── 观众 ─────────────────────────────────────────────────────────

    async def upsert_membership(self, session_id: str, user_id: str, joined_at: datetime) -> None:
        """记录观众加入（幂等：重复插入不报错，也不覆盖首次加入时间）。"""
        await self.ensure_indexes()
        try:
            await self._guard(
                "upsert_membership",
                self._viewers.update_one(
                    {"session_id": session_id, "user_id": user_id},
                    {"$setOnInsert": {"joined_at": joined_at}},
                    upsert=True,
                ),
            )
        except PersistenceError as e:
            # 并发 upsert 撞上唯一索引，说明记录已存在
            if isinstance(e.__cause__, DuplicateKeyError):
                return
            raise

    async def list_viewer_ids(self, session_id: str) -> set[str]:
        """返回曾经加入过该会话的全部用户 ID。"""
        await self.ensure_indexes()
        cursor = self._viewers.find({"session_id": session_id}, {"_id": 0, "user_id": 1})
        docs = await self._guard("list_viewer_ids", cursor.to_list(length=None))
        return {doc["user_id"] for doc in docs}
