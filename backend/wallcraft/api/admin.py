"""管理员 API"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from wallcraft.api.deps import get_quota_ledger
from wallcraft.core.config import Settings, get_settings
from wallcraft.core.database import get_admin_db
from wallcraft.core.errors import ValidationError, WallcraftError
from wallcraft.models.usage import Tier
from wallcraft.services.quota import QuotaLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class SetTierResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    user_id: str
    tier: Tier


def verify_admin_secret(
    x_admin_secret: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """校验 X-Admin-Secret"""
    if (
        not settings.admin_secret
        or not x_admin_secret
        or not hmac.compare_digest(x_admin_secret, settings.admin_secret)
    ):
        raise WallcraftError("未授权", status_code=403, code="forbidden")


@router.post(
    "/set-tier",
    response_model=SetTierResponse,
    dependencies=[Depends(verify_admin_secret)],
)
async def set_tier(
    request: Request,
    admin_db: AsyncSession = Depends(get_admin_db),
    ledger: QuotaLedger = Depends(get_quota_ledger),
):
    """设置用户等级（free / premium）"""
    try:
        data = await request.json()
    except ValueError:
        raise ValidationError("请求体必须是 JSON")
    if not isinstance(data, dict):
        raise ValidationError("请求体必须是 JSON 对象")

    user_id = data.get("userId")
    tier = data.get("tier")
    if not user_id or not tier:
        raise ValidationError("缺少 userId 或 tier 参数")
    try:
        tier = Tier(tier)
    except ValueError:
        raise ValidationError("tier 必须为 free 或 premium")

    record = await ledger.set_tier(admin_db, str(user_id), tier)
    logger.info(f"Admin set tier: user={record.user_id} tier={record.tier}")
    return SetTierResponse(user_id=record.user_id, tier=Tier(record.tier))
