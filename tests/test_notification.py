"""
tests.test_notification
~~~~~~~~~~~~~~~~~~~~~~~

NotificationDispatcher 推送分发测试（使用 ``httpx.MockTransport``，不发真实请求）。
"""
from __future__ import annotations

import json

import httpx
import pytest

from app.services.notification import NotificationDispatcher


class TestNotificationDispatcher:
    """测试开播推送。"""

    @pytest.mark.asyncio
    async def test_skipped_without_gateway(self) -> None:
        dispatcher = NotificationDispatcher(gateway_url="")

        assert dispatcher.notify(["t1"], "title", "body") is None
        await dispatcher.aclose()

    @pytest.mark.asyncio
    async def test_skipped_without_tokens(self) -> None:
        dispatcher = NotificationDispatcher(gateway_url="http://push.local/send")

        assert dispatcher.notify([], "title", "body") is None
        await dispatcher.aclose()

    @pytest.mark.asyncio
    async def test_sends_payload(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"ok": True})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        dispatcher = NotificationDispatcher(gateway_url="http://push.local/send", client=client)

        task = dispatcher.notify(["t1", "t2"], "alice 开播了", "快来", {"session_id": "s1"})
        assert task is not None
        await task

        assert seen == [{
            "tokens": ["t1", "t2"],
            "title": "alice 开播了",
            "body": "快来",
            "data": {"session_id": "s1"},
        }]
        await dispatcher.aclose()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_gateway_failure_is_logged_not_raised(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        dispatcher = NotificationDispatcher(gateway_url="http://push.local/send", client=client)

        task = dispatcher.notify(["t1"], "title", "body")
        assert task is not None
        await task

        assert task.exception() is None
        await dispatcher.aclose()
        await client.aclose()
