"""
账本数据库引擎与会话工厂
"""
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from core.config import settings
from core.logging_config import get_logger
from infrastructure.models import Base


logger = get_logger(__name__)

_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def _build_async_url(database_url: str) -> str:
    """把同步驱动 URL 改写为对应的异步驱动"""
    url = make_url(database_url)
    if "+" in url.drivername:
        return database_url
    if url.drivername not in _ASYNC_DRIVERS:
        raise ValueError(f"不支持的数据库驱动: {url.drivername}. 请使用 async 驱动或更新 DATABASE__URL")
    return url.set(drivername=_ASYNC_DRIVERS[url.drivername]).render_as_string(hide_password=False)


def _create_engine(database_url: str, echo: bool) -> AsyncEngine:
    url = _build_async_url(database_url)
    if make_url(url).get_backend_name() == "sqlite":
        return create_async_engine(url, echo=echo)
    # 服务端数据库的连接可能被空闲回收
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


engine = _create_engine(settings.database.url, settings.database.echo)

# 会话工厂：提交后不过期，便于在 UoW 外读取已加载的实体
AsyncSessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)


async def create_tables():
    """按 ORM 模型建表（orders / transactions / payment_methods / idempotency_keys），已存在的表跳过"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_schema_created", tables=sorted(Base.metadata.tables))


async def dispose_engine():
    await engine.dispose()
