"""用量查询与扣减 API"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from wallcraft.api.deps import get_quota_ledger
from wallcraft.core.auth_deps import get_current_user_id
from wallcraft.core.database import get_admin_db, get_db
from wallcraft.services.quota import QuotaLedger, QuotaStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/usage", tags=["usage"])


@router.get(
    "",
    response_model=QuotaStatus,
    response_model_exclude={"allowed"},
)
async def get_usage(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    ledger: QuotaLedger = Depends(get_quota_ledger),
):
    """查询今日用量：tier / usedToday / limit / remaining"""
    return await ledger.check_quota(db, user_id)


@router.post(
    "/consume",
    response_model=QuotaStatus,
    response_model_exclude={"allowed"},
)
async def consume_usage(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    admin_db: AsyncSession = Depends(get_admin_db),
    ledger: QuotaLedger = Depends(get_quota_ledger),
):
    """
    扣减一次配额

    free 用户用完时返回 429；计数写入使用高权限会话
    """
    status = await ledger.ensure_allowed(db, user_id)
    return await ledger.consume_quota(admin_db, user_id, tier=status.tier)
