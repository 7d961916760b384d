"""生成配额账本

读路径（check_quota）使用请求会话，查询始终限定在当前用户；
写路径（consume_quota / set_tier）使用高权限会话，以单条原子 upsert 完成递增，
并发调用不会丢失计数。
"""

import logging
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wallcraft.core.errors import QuotaExceededError
from wallcraft.models.usage import Tier, UsageRecord, UserTier

logger = logging.getLogger(__name__)

UNLIMITED = -1


class QuotaStatus(BaseModel):
    """配额状态，序列化为 camelCase"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    tier: Tier
    allowed: bool
    used_today: int
    limit: int
    remaining: int


def _insert_for(db: AsyncSession):
    """按方言选择支持 ON CONFLICT 的 insert 构造"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Unsupported database dialect for atomic upsert: {dialect}")
    return insert


class QuotaLedger:
    """每日配额账本"""

    def __init__(self, free_daily_limit: int = 1):
        self.free_daily_limit = free_daily_limit

    def evaluate(self, tier: Tier, used_today: int) -> QuotaStatus:
        """根据等级和已用次数计算配额状态（纯函数）"""
        if tier == Tier.PREMIUM:
            return QuotaStatus(
                tier=tier,
                allowed=True,
                used_today=used_today,
                limit=UNLIMITED,
                remaining=UNLIMITED,
            )
        return QuotaStatus(
            tier=tier,
            allowed=used_today < self.free_daily_limit,
            used_today=used_today,
            limit=self.free_daily_limit,
            remaining=max(0, self.free_daily_limit - used_today),
        )

    async def get_tier(self, db: AsyncSession, user_id: str) -> Tier:
        """读取用户等级，没有记录时为 free"""
        result = await db.execute(
            select(UserTier.tier).where(UserTier.user_id == user_id)
        )
        value = result.scalar_one_or_none()
        try:
            return Tier(value) if value else Tier.FREE
        except ValueError:
            logger.warning(f"Unknown tier {value!r} for user {user_id}, using free")
            return Tier.FREE

    async def get_used_today(
        self,
        db: AsyncSession,
        user_id: str,
        today: Optional[date] = None,
    ) -> int:
        today = today or date.today()
        result = await db.execute(
            select(UsageRecord.call_count).where(
                UsageRecord.user_id == user_id,
                UsageRecord.usage_date == today,
            )
        )
        return result.scalar_one_or_none() or 0

    async def check_quota(
        self,
        db: AsyncSession,
        user_id: str,
        tier: Optional[Tier] = None,
        today: Optional[date] = None,
    ) -> QuotaStatus:
        """
        查询用户今天是否还能生成（不增加计数）

        Args:
            db: 请求范围的数据库会话
            user_id: 用户 ID
            tier: 已知的用户等级，为空时从数据库读取
            today: 配额日，默认服务器本地日期

        Returns:
            QuotaStatus: premium 用户 limit/remaining 为 -1 且总是允许
        """
        if tier is None:
            tier = await self.get_tier(db, user_id)
        used = await self.get_used_today(db, user_id, today)
        return self.evaluate(tier, used)

    async def ensure_allowed(
        self,
        db: AsyncSession,
        user_id: str,
        today: Optional[date] = None,
    ) -> QuotaStatus:
        """检查配额，用完时抛出 QuotaExceededError"""
        status = await self.check_quota(db, user_id, today=today)
        if not status.allowed:
            raise QuotaExceededError(
                quota=status.model_dump(by_alias=True, mode="json", exclude={"allowed"}),
            )
        return status

    async def consume_quota(
        self,
        admin_db: AsyncSession,
        user_id: str,
        today: Optional[date] = None,
        tier: Optional[Tier] = None,
    ) -> QuotaStatus:
        """
        今日计数 +1 并返回最新配额

        不检查上限，调用方需先 check_quota。递增由数据库原子完成：
        INSERT ... ON CONFLICT (user_id, usage_date) DO UPDATE SET count = count + 1
        """
        today = today or date.today()
        now = datetime.utcnow()
        table = UsageRecord.__table__
        insert = _insert_for(admin_db)

        stmt = insert(table).values(
            user_id=user_id,
            usage_date=today,
            count=1,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.usage_date],
            set_={"count": table.c["count"] + 1, "updated_at": now},
        ).returning(table.c["count"])

        result = await admin_db.execute(stmt)
        used = result.scalar_one()
        await admin_db.commit()

        if tier is None:
            tier = await self.get_tier(admin_db, user_id)
        logger.info(f"Quota consumed for user {user_id} on {today}: {used}")
        return self.evaluate(tier, used)

    async def set_tier(self, admin_db: AsyncSession, user_id: str, tier: Tier) -> UserTier:
        """管理操作：设置用户等级（upsert）"""
        table = UserTier.__table__
        insert = _insert_for(admin_db)
        now = datetime.utcnow()

        stmt = insert(table).values(user_id=user_id, tier=tier.value, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id],
            set_={"tier": tier.value, "updated_at": now},
        )
        await admin_db.execute(stmt)
        await admin_db.commit()

        result = await admin_db.execute(
            select(UserTier)
            .where(UserTier.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        logger.info(f"Tier for user {user_id} set to {tier.value}")
        return result.scalar_one()
