"""
app.services.persistence
~~~~~~~~~~~~~~~~~~~~~~~~

协调器边界的持久化重试策略。

仓库层只负责"单次调用 + 超时"，这里用 tenacity 做有界指数退避重试，
重试耗尽后把最后一次的 ``PersistenceError`` 原样抛给调用方。
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings
from app.core.errors import PersistenceError
from app.core.logging import get_logger

logger = get_logger(__name__)

R = TypeVar("R")


def _log_retry(op: str) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "持久化重试 | op=%s | attempt=%d/%d | wait=%.2fs | err=%s",
            op,
            retry_state.attempt_number,
            settings.PERSIST_MAX_ATTEMPTS,
            wait,
            exc,
        )

    return _before_sleep


async def persist_with_retry(op: str, write: Callable[[], Awaitable[R]]) -> R:
    """执行一次持久化写入，``PersistenceError`` 时按配置退避重试。

    Args:
        op: 操作名，仅用于日志。
        write: 无参协程工厂，每次重试都会重新调用以创建新的协程。

    Raises:
        PersistenceError: 重试耗尽仍失败。
    """
    retrying = AsyncRetrying(
        retry=retry_if_exception_type(PersistenceError),
        wait=wait_exponential(
            multiplier=settings.PERSIST_RETRY_MIN_WAIT,
            min=settings.PERSIST_RETRY_MIN_WAIT,
            max=settings.PERSIST_RETRY_MAX_WAIT,
        ),
        stop=stop_after_attempt(settings.PERSIST_MAX_ATTEMPTS),
        before_sleep=_log_retry(op),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await write()
    raise AssertionError("unreachable")  # pragma: no cover
