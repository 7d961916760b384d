"""用量与用户等级模型"""

from datetime import date, datetime
from enum import Enum

from sqlalchemy import Column, Date, DateTime, Integer, String
from wallcraft.core.database import Base


class Tier(str, Enum):
    """账户等级"""
    FREE = "free"
    PREMIUM = "premium"


class UsageRecord(Base):
    """每用户每日生成次数

    (user_id, usage_date) 为联合主键，计数只通过原子 upsert 递增。
    """

    __tablename__ = "usage_records"

    user_id = Column(String(64), primary_key=True)
    usage_date = Column(Date, primary_key=True, default=date.today)  # 服务器本地日期
    call_count = Column("count", Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class UserTier(Base):
    """用户等级，缺省视为 free"""

    __tablename__ = "user_tiers"

    user_id = Column(String(64), primary_key=True)
    tier = Column(String(20), nullable=False, default=Tier.FREE.value)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
