"""
app.core.errors
~~~~~~~~~~~~~~~

直播核心的业务异常体系。

所有异常继承自 ``LiveError``，携带业务错误码 ``code`` 与对应的 HTTP 状态码，
REST 层通过统一的异常处理器转换为 ``ApiResponse.fail()``，
WebSocket 层则作为 ``error`` 事件只回送给发起请求的连接。
"""
from __future__ import annotations


class LiveError(Exception):
    """直播业务异常基类。

    Attributes:
        code: 业务错误码（字符串，供客户端区分错误类型）。
        status_code: REST 接口返回的 HTTP 状态码。
        msg: 人类可读的错误描述。
    """

    code: str = "E_LIVE"
    status_code: int = 500

    def __init__(self, msg: str) -> None:
        super().__init__(msg)
        self.msg = msg


class SessionNotFound(LiveError):
    """会话不存在。"""

    code = "E_NOT_FOUND"
    status_code = 404

    def __init__(self, session_id: str) -> None:
        super().__init__(f"直播会话不存在: {session_id}")
        self.session_id = session_id


class SessionClosed(LiveError):
    """会话已结束，拒绝任何变更。"""

    code = "E_SESSION_CLOSED"
    status_code = 409

    def __init__(self, session_id: str) -> None:
        super().__init__(f"直播会话已结束: {session_id}")
        self.session_id = session_id


class PersistenceError(LiveError):
    """持久化存储不可用（超时、驱动异常或重试耗尽）。"""

    code = "E_PERSISTENCE"
    status_code = 503


class StartFailed(LiveError):
    """开播失败，内存中的会话记录已回滚。"""

    code = "E_START_FAILED"
    status_code = 503


class ConfigError(LiveError):
    """签名凭证等必要配置缺失。"""

    code = "E_CONFIG"
    status_code = 500
