"""
tests.test_live_system
~~~~~~~~~~~~~~~~~~~~~~

LiveSystem 组装层测试：开播推送、Token 签发、评论历史与关闭。
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.errors import ConfigError, SessionNotFound
from app.services.live_system import LiveSystem
from app.services.rtc_token import RtcTokenProvider


class TestStartLive:
    """测试开播编排。"""

    @pytest.mark.asyncio
    async def test_notifies_followers(self, repo) -> None:
        notifier = MagicMock()
        notifier.aclose = AsyncMock()
        system = LiveSystem(repo, tokens=RtcTokenProvider(api_key="", api_secret=""), notifier=notifier)

        data = await system.start_live("alice", ["device-1"])

        notifier.notify.assert_called_once()
        args, kwargs = notifier.notify.call_args
        assert args[0] == ["device-1"]
        assert kwargs["data"] == {"session_id": data.session_id}
        assert data.rtc_token is None

    @pytest.mark.asyncio
    async def test_no_notification_without_devices(self, repo) -> None:
        notifier = MagicMock()
        system = LiveSystem(repo, tokens=RtcTokenProvider(api_key="", api_secret=""), notifier=notifier)

        await system.start_live("alice")

        notifier.notify.assert_not_called()

    @pytest.mark.asyncio
    async def test_publisher_token_when_configured(self, repo) -> None:
        tokens = MagicMock()
        tokens.configured = True
        tokens.issue_token.return_value = "jwt"
        system = LiveSystem(repo, tokens=tokens, notifier=MagicMock())

        data = await system.start_live("alice")

        tokens.issue_token.assert_called_once_with(data.session_id, "alice", role="publisher")
        assert data.rtc_token == "jwt"


class TestRtcToken:
    """测试 Token 签发编排。"""

    def test_issue_without_credentials(self, system: LiveSystem) -> None:
        with pytest.raises(ConfigError):
            system.issue_rtc_token("room-1", "bob", "subscriber")

    def test_issue_returns_metadata(self, repo) -> None:
        tokens = MagicMock()
        tokens.issue_token.return_value = "jwt"
        tokens.default_ttl = 3600
        system = LiveSystem(repo, tokens=tokens, notifier=MagicMock())

        data = system.issue_rtc_token("room-1", "bob", "subscriber")

        assert (data.token, data.channel, data.uid, data.expires_in) == ("jwt", "room-1", "bob", 3600)


class TestCommentHistory:
    """测试评论历史。"""

    @pytest.mark.asyncio
    async def test_history_in_order_with_paging(self, system: LiveSystem) -> None:
        session_id = await system.registry.open_session("alice")
        for text in ("one", "two", "three"):
            await system.coordinator.record_comment(session_id, "bob", text)

        page = await system.list_comments(session_id, skip=1, limit=1)
        everything = await system.list_comments(session_id)

        assert [c.comment for c in page] == ["two"]
        assert [c.comment for c in everything] == ["one", "two", "three"]

    @pytest.mark.asyncio
    async def test_history_of_archived_session(self, system: LiveSystem, repo) -> None:
        """不在内存中的已结束会话从存储中确认存在。"""
        session_id = await system.registry.open_session("alice")
        await system.coordinator.record_comment(session_id, "bob", "hi")
        fresh = LiveSystem(repo, tokens=system.tokens, notifier=system.notifier)

        history = await fresh.list_comments(session_id)

        assert [c.comment for c in history] == ["hi"]

    @pytest.mark.asyncio
    async def test_history_of_unknown_session(self, system: LiveSystem) -> None:
        with pytest.raises(SessionNotFound):
            await system.list_comments("missing")


@pytest.mark.asyncio
async def test_end_live_ends_once(system: LiveSystem) -> None:
    session_id = await system.registry.open_session("alice")

    assert await system.end_live(session_id) is True
    assert await system.end_live(session_id) is False
    assert system.list_live() == []
    await system.aclose()
