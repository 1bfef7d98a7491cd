"""
app.services.membership
~~~~~~~~~~~~~~~~~~~~~~~

观众管理器 —— 维护每个会话当前在线的连接集合。

同一会话内每个用户最多一条有效成员记录：同一用户从新连接重新加入时，
旧连接被静默替换（不再接收广播，也不会收到任何错误）。
所有变更都在不含 ``await`` 的同步代码段内完成，对其他协程是原子的。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from app.core.logging import get_logger
from app.services.session_registry import SessionRegistry

logger = get_logger(__name__)


@dataclass(frozen=True)
class Membership:
    """一条在线成员记录。"""

    session_id: str
    connection: Any
    user_id: str
    joined_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class MembershipTracker:
    """按会话分组的在线连接管理器。

    Attributes:
        registry: 会话注册中心，用于校验会话存在且直播中。
    """

    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry
        # session_id -> user_id -> Membership
        self._by_user: dict[str, dict[str, Membership]] = {}
        # session_id -> connection -> user_id
        self._by_conn: dict[str, dict[Any, str]] = {}
        # connection -> session_id 集合（断线清理用）
        self._sessions_by_conn: dict[Any, set[str]] = {}

    def join(self, session_id: str, connection: Any, user_id: str) -> int:
        """连接以 ``user_id`` 身份加入会话。

        Returns:
            当前去重后的在线成员数。

        Raises:
            SessionNotFound: 会话不存在。
            SessionClosed: 会话已结束。
        """
        self.registry.live_record(session_id)

        users = self._by_user.setdefault(session_id, {})
        conns = self._by_conn.setdefault(session_id, {})

        current = users.get(user_id)
        if current is not None and current.connection is connection:
            return len(users)

        # 同一连接换了身份：先释放旧身份
        previous_user = conns.get(connection)
        if previous_user is not None and previous_user != user_id:
            users.pop(previous_user, None)

        # 同一用户换了连接：旧连接退出广播
        if current is not None:
            conns.pop(current.connection, None)
            self._unindex(current.connection, session_id)
            logger.info("用户重连，替换旧连接 | session=%s | user=%s", session_id, user_id)

        users[user_id] = Membership(session_id, connection, user_id)
        conns[connection] = user_id
        self._sessions_by_conn.setdefault(connection, set()).add(session_id)
        return len(users)

    def leave(self, session_id: str, connection: Any) -> bool:
        """移除连接的成员记录。不存在时什么也不做。

        Returns:
            是否真的移除了记录。
        """
        conns = self._by_conn.get(session_id)
        if not conns or connection not in conns:
            return False
        user_id = conns.pop(connection)
        self._unindex(connection, session_id)
        users = self._by_user.get(session_id, {})
        member = users.get(user_id)
        if member is not None and member.connection is connection:
            users.pop(user_id)
        return True

    def members_of(self, session_id: str) -> set[Any]:
        """返回当前在线连接的副本，遍历期间不受并发 join/leave 影响。"""
        return set(self._by_conn.get(session_id, {}))

    def member_count(self, session_id: str) -> int:
        return len(self._by_user.get(session_id, {}))

    def user_of(self, session_id: str, connection: Any) -> str | None:
        return self._by_conn.get(session_id, {}).get(connection)

    def sessions_of(self, connection: Any) -> list[str]:
        """返回连接当前加入的所有会话 ID（断线清理用）。"""
        return list(self._sessions_by_conn.get(connection, ()))

    def detach_all(self, session_id: str) -> int:
        """清空会话的全部成员（下播时调用）。

        Returns:
            被移除的连接数。
        """
        conns = self._by_conn.pop(session_id, {})
        self._by_user.pop(session_id, None)
        for connection in conns:
            self._unindex(connection, session_id)
        return len(conns)

    def _unindex(self, connection: Any, session_id: str) -> None:
        sessions = self._sessions_by_conn.get(connection)
        if sessions is None:
            return
        sessions.discard(session_id)
        if not sessions:
            del self._sessions_by_conn[connection]
