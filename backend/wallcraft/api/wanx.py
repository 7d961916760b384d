"""通义万相图生视频 API

- POST /api/wanx/upload        上传图片，返回公网 URL
- POST /api/wanx/generate      创建生成任务（配额预检查）
- GET  /api/wanx/status/{id}   查询任务状态
- GET  /api/wanx/templates     特效模板目录
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from wallcraft.api.deps import get_job_submitter, get_quota_ledger, get_upload_adapter
from wallcraft.core.auth_deps import get_current_user_id
from wallcraft.core.database import get_db
from wallcraft.core.errors import ValidationError
from wallcraft.services.job_submitter import JobStatus, JobSubmitter, SubmitResult
from wallcraft.services.quota import QuotaLedger
from wallcraft.services.templates import (
    EFFECT_CATEGORY_LABELS,
    TEMPLATES,
    Template,
    default_model,
)
from wallcraft.services.uploader import UploadAdapter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/wanx", tags=["wanx"])


class GenerateRequest(BaseModel):
    """创建任务请求（字段均可缺省，由服务层返回 400）"""
    img_url: Optional[str] = None
    template: Optional[str] = None
    model: Optional[str] = None
    resolution: Optional[str] = None


class UploadResponse(BaseModel):
    url: str


class TemplateItem(Template):
    default_model: str


class TemplateCatalog(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    categories: dict
    templates: List[TemplateItem]


@router.post("/upload", response_model=UploadResponse)
async def upload_image(
    file: Optional[UploadFile] = File(None),
    model: Optional[str] = Form(None),
    user_id: str = Depends(get_current_user_id),
    adapter: UploadAdapter = Depends(get_upload_adapter),
):
    """
    上传待生成的图片

    支持 JPEG / PNG / WebP / BMP，最大 10MB
    """
    if file is None:
        raise ValidationError("未提供文件")

    content = await file.read()
    url = await adapter.upload(
        user_id,
        content,
        file.filename,
        file.content_type,
        model=model,
    )
    return UploadResponse(url=url)


async def _parse_generate_body(request: Request) -> GenerateRequest:
    try:
        data = await request.json()
    except ValueError:
        raise ValidationError("请求体必须是 JSON")
    if not isinstance(data, dict):
        raise ValidationError("请求体必须是 JSON 对象")
    return GenerateRequest(
        img_url=data.get("img_url") or None,
        template=data.get("template") or None,
        model=data.get("model") or None,
        resolution=data.get("resolution") or None,
    )


@router.post("/generate", response_model=SubmitResult)
async def generate(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    submitter: JobSubmitter = Depends(get_job_submitter),
    ledger: QuotaLedger = Depends(get_quota_ledger),
    db: AsyncSession = Depends(get_db),
):
    """
    创建图生视频任务

    401 未登录；500 未配置 API Key；400 缺少 img_url / template；
    429 今日配额用完；远程错误按原状态码返回
    """
    body = await _parse_generate_body(request)
    if not body.img_url or not body.template:
        raise ValidationError("缺少 img_url 或 template 参数")

    # 配额预检查（只读，不扣减）
    await ledger.ensure_allowed(db, user_id)

    return await submitter.submit(
        body.img_url,
        body.template,
        model=body.model,
        resolution=body.resolution,
    )


@router.get("/status/{task_id}", response_model=JobStatus)
async def get_status(
    task_id: str,
    user_id: str = Depends(get_current_user_id),
    submitter: JobSubmitter = Depends(get_job_submitter),
):
    """查询任务状态"""
    return await submitter.get_status(task_id)


@router.get("/templates", response_model=TemplateCatalog)
async def list_templates():
    """特效模板目录"""
    return TemplateCatalog(
        categories={category.value: label for category, label in EFFECT_CATEGORY_LABELS.items()},
        templates=[
            TemplateItem(**t.model_dump(), default_model=default_model(t))
            for t in TEMPLATES
        ],
    )
