"""数据模型模块"""

from wallcraft.models.usage import Tier, UsageRecord, UserTier

__all__ = [
    "Tier",
    "UsageRecord",
    "UserTier",
]
