"""数据库连接配置

两个引擎：
- 普通引擎：请求范围内的读操作，查询始终按当前用户过滤
- 管理引擎：用量计数等写操作，使用更高权限的连接（ADMIN_DATABASE_URL）
"""

from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from wallcraft.core.config import get_settings


class Base(DeclarativeBase):
    pass


_engine: Optional[AsyncEngine] = None
_admin_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None
_admin_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """获取普通引擎"""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(settings.database_url, echo=settings.debug)
    return _engine


def get_admin_engine() -> AsyncEngine:
    """获取管理引擎"""
    global _admin_engine
    if _admin_engine is None:
        settings = get_settings()
        if settings.admin_database_url:
            _admin_engine = create_async_engine(settings.admin_database_url, echo=settings.debug)
        else:
            _admin_engine = get_engine()
    return _admin_engine


def async_session_maker() -> AsyncSession:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_maker()


def admin_session_maker() -> AsyncSession:
    global _admin_session_maker
    if _admin_session_maker is None:
        _admin_session_maker = async_sessionmaker(get_admin_engine(), expire_on_commit=False)
    return _admin_session_maker()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI 依赖：请求范围的数据库会话"""
    async with async_session_maker() as session:
        yield session


async def get_admin_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI 依赖：高权限数据库会话"""
    async with admin_session_maker() as session:
        yield session


async def init_db() -> None:
    """创建所有表（本地开发用，生产环境使用 alembic）"""
    # 注册模型
    import wallcraft.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """关闭数据库连接"""
    global _engine, _admin_engine, _session_maker, _admin_session_maker
    if _admin_engine is not None and _admin_engine is not _engine:
        await _admin_engine.dispose()
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _admin_engine = None
    _session_maker = None
    _admin_session_maker = None
