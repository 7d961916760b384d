"""Shared fixtures: SQLite-backed sessions, JWT helper, fake clock."""

import os

# 导入 wallcraft 之前设置，get_settings() 有缓存
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("DASHSCOPE_API_KEY", "sk-test-dashscope-key")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")

import asyncio
import time
from typing import List

import jwt
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import wallcraft.models  # noqa: F401
from wallcraft.core.database import Base

JWT_SECRET = os.environ["JWT_SECRET_KEY"]


# -- Helpers ------------------------------------------------------------------


def make_token(user_id: str = "user-1", *, secret: str = JWT_SECRET, expires_in: int = 3600) -> str:
    """Sign a bearer token the way the auth service does."""
    payload = {"sub": user_id, "exp": int(time.time()) + expires_in}
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user_id: str = "user-1") -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


class FakeClock:
    """Monotonic clock driven by FakeSleep."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """asyncio.sleep replacement that advances a FakeClock instantly."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        self.clock.advance(delay)
        # 让出一次事件循环，模拟真实的挂起点
        await asyncio.sleep(0)


# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite so concurrent sessions see each other's writes."""
    db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'wallcraft.db'}")
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep(clock):
    return FakeSleep(clock)
