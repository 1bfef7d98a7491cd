"""
app.services.rtc_token
~~~~~~~~~~~~~~~~~~~~~~

RTC 媒体通道的 Token 签发 —— 基于 ``livekit-api`` 的 ``AccessToken``。

核心逻辑只把 Token 当作不透明字符串：频道名即会话 ID，
主播以 ``publisher`` 身份推流，观众以 ``subscriber`` 身份拉流。
缺少签名凭证时签发会抛出 ``ConfigError``，但不影响进程内其他功能。
"""
from __future__ import annotations

from datetime import timedelta

from livekit import api

from app.core.config import settings
from app.core.errors import ConfigError
from app.core.logging import get_logger
from app.schemas.live_interactions import TokenRole

logger = get_logger(__name__)


class RtcTokenProvider:
    """RTC Token 签发器。

    Attributes:
        default_ttl: 默认有效期（秒）。
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_secret: str | None = None,
        default_ttl: int | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.RTC_API_KEY
        self._api_secret = api_secret if api_secret is not None else settings.RTC_API_SECRET
        self.default_ttl: int = settings.RTC_TOKEN_TTL if default_ttl is None else default_ttl
        if not self.configured:
            logger.warning("RTC 签名凭证未配置，Token 签发不可用")

    @property
    def configured(self) -> bool:
        """签名凭证是否齐全。"""
        return bool(self._api_key and self._api_secret)

    def issue_token(
        self,
        channel: str,
        subject_id: str,
        role: TokenRole = "subscriber",
        ttl_seconds: int | None = None,
    ) -> str:
        """签发一个加入 ``channel`` 的 Token。

        Args:
            channel: 频道名（会话 ID）。
            subject_id: 用户标识。
            role: ``publisher`` 可推流，``subscriber`` 只能订阅。
            ttl_seconds: 有效期，默认 ``RTC_TOKEN_TTL``。

        Returns:
            签名后的 JWT 字符串。

        Raises:
            ConfigError: 未配置 ``RTC_API_KEY`` / ``RTC_API_SECRET``。
        """
        if not self.configured:
            raise ConfigError("RTC 签名凭证未配置，请设置 RTC_API_KEY 与 RTC_API_SECRET")

        is_publisher = role == "publisher"
        grants = api.VideoGrants(
            room_join=True,
            room=channel,
            can_publish=is_publisher,
            can_subscribe=True,
            can_publish_data=is_publisher,
        )
        token = (
            api.AccessToken(self._api_key, self._api_secret)
            .with_identity(subject_id)
            .with_grants(grants)
            .with_ttl(timedelta(seconds=self.default_ttl if ttl_seconds is None else ttl_seconds))
        )
        logger.debug("签发 RTC Token | channel=%s | uid=%s | role=%s", channel, subject_id, role)
        return token.to_jwt()
