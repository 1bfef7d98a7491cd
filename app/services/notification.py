"""
app.services.notification
~~~~~~~~~~~~~~~~~~~~~~~~~

离线推送分发 —— 开播时向关注者设备发送提醒。

推送是"发出即忘"：``notify()`` 立即返回，实际请求在后台任务中完成，
失败只记日志，不影响开播流程。未配置 ``PUSH_GATEWAY_URL`` 时直接跳过。
"""
from __future__ import annotations

import asyncio
from typing import Any

import httpx

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class NotificationDispatcher:
    """基于 HTTP 推送网关的通知分发器。

    Attributes:
        gateway_url: 推送网关地址，为空时不推送。
    """

    def __init__(
        self,
        gateway_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.gateway_url = gateway_url if gateway_url is not None else settings.PUSH_GATEWAY_URL
        self._timeout = settings.PUSH_TIMEOUT_SECONDS if timeout is None else timeout
        self._client = client
        self._owns_client = client is None
        self._pending: set[asyncio.Task[None]] = set()

    def notify(
        self,
        device_tokens: list[str],
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> asyncio.Task[None] | None:
        """在后台发送推送。

        Returns:
            后台任务；跳过推送时返回 None。
        """
        if not self.gateway_url or not device_tokens:
            logger.debug("跳过推送 | gateway=%s | tokens=%d", self.gateway_url, len(device_tokens))
            return None

        task = asyncio.create_task(self._send(list(device_tokens), title, body, data or {}))
        # 持有引用，防止后台任务被回收
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _send(
        self,
        device_tokens: list[str],
        title: str,
        body: str,
        data: dict[str, Any],
    ) -> None:
        payload = {"tokens": device_tokens, "title": title, "body": body, "data": data}
        try:
            response = await self._get_client().post(
                self.gateway_url, json=payload, timeout=self._timeout,
            )
            response.raise_for_status()
            logger.info("推送已发送 | devices=%d | title=%s", len(device_tokens), title)
        except httpx.HTTPError as e:
            logger.warning("推送失败 | devices=%d | err=%s", len(device_tokens), e)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def aclose(self) -> None:
        """等待进行中的推送结束并关闭 HTTP 客户端。"""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
