"""服务依赖（测试中通过 app.dependency_overrides 替换）"""

from fastapi import Depends

from wallcraft.core.config import Settings, get_settings
from wallcraft.services.dashscope import DashScopeClient, create_dashscope_client
from wallcraft.services.job_submitter import JobSubmitter
from wallcraft.services.quota import QuotaLedger
from wallcraft.services.uploader import UploadAdapter


def get_quota_ledger(settings: Settings = Depends(get_settings)) -> QuotaLedger:
    return QuotaLedger(free_daily_limit=settings.free_daily_limit)


def get_dashscope_client(settings: Settings = Depends(get_settings)) -> DashScopeClient:
    return create_dashscope_client(settings)


def get_job_submitter(client: DashScopeClient = Depends(get_dashscope_client)) -> JobSubmitter:
    return JobSubmitter(client)


def get_upload_adapter(
    client: DashScopeClient = Depends(get_dashscope_client),
    settings: Settings = Depends(get_settings),
) -> UploadAdapter:
    return UploadAdapter(client, max_bytes=settings.max_upload_bytes)
