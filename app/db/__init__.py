"""
app.db.__init__
~~~~~~~~~~~~~~~

MongoDB 异步连接管理。

使用 ``motor`` 提供的 ``AsyncIOMotorClient``，在应用生命周期内维护一个
全局连接池。启动时调用 ``connect_mongo()``，关闭时调用 ``close_mongo()``。
"""
from __future__ import annotations

from urllib.parse import urlparse, urlunparse

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_client: AsyncIOMotorClient | None = None


def _mask_uri(uri: str) -> str:
    """将 MongoDB URI 中的密码替换为 ``***``，防止日志泄漏凭证。"""
    parsed = urlparse(uri)
    if parsed.password:
        netloc = f"{parsed.username}:***@{parsed.hostname}"
        if parsed.port:
            netloc += f":{parsed.port}"
        return urlunparse(parsed._replace(netloc=netloc))
    return uri


async def connect_mongo() -> AsyncIOMotorDatabase:
    """初始化 MongoDB 连接池并返回默认数据库。应在 lifespan startup 中调用。

    服务器选择超时与持久化超时保持一致，数据库不可达时启动会快速失败，
    而不是把第一次开播请求挂起。
    """
    global _client
    timeout_ms = int(settings.PERSIST_TIMEOUT_SECONDS * 1000)
    _client = AsyncIOMotorClient(
        settings.MONGO_URI,
        serverSelectionTimeoutMS=timeout_ms,
        tz_aware=True,
    )

    db = _client[settings.MONGO_DB_NAME]
    try:
        await db.command("ping")
    except Exception as e:
        logger.error("MongoDB 连接失败: %s", e, exc_info=True)
        raise
    logger.info(
        "MongoDB 已连接 | uri=%s | db=%s",
        _mask_uri(settings.MONGO_URI),
        settings.MONGO_DB_NAME,
    )
    return db


async def close_mongo() -> None:
    """关闭 MongoDB 连接池。应在 lifespan shutdown 中调用。"""
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("MongoDB 连接已关闭")
