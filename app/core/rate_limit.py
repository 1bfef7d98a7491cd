"""
app.core.rate_limit
~~~~~~~~~~~~~~~~~~~

REST 控制面与 WebSocket 评论的限流配置。
"""
from __future__ import annotations

import time

from slowapi import Limiter
from slowapi.util import get_remote_address

# --------- HTTP 接口限流器 ---------
# 基于客户端 IP 地址进行限流
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)


# --------- WebSocket 限流器 ---------
class WebSocketRateLimiter:
    """基于内存的 WebSocket 评论限流器。

    记录每个连接上一次被放行的时间，间隔不足 ``interval_seconds`` 的请求被拒绝。
    点赞不经过此限流器（允许连续点赞）。
    """

    def __init__(self, interval_seconds: float = 0.5) -> None:
        self.interval_seconds = interval_seconds
        # key 为连接标识，通常是 id(websocket)
        self._last_allowed: dict[int, float] = {}

    def is_allowed(self, client_id: int) -> bool:
        """检查客户端是否允许发送评论。

        Args:
            client_id: 客户端唯一标识（如 ``id(websocket)``）。

        Returns:
            是否允许发送。如果允许，则同时更新上次放行时间。
        """
        now = time.monotonic()
        last_time = self._last_allowed.get(client_id)

        if last_time is None or now - last_time >= self.interval_seconds:
            self._last_allowed[client_id] = now
            return True
        return False

    def remove_client(self, client_id: int) -> None:
        """清理断开连接的客户端记录。"""
        self._last_allowed.pop(client_id, None)
