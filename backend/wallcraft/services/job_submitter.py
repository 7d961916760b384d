"""视频生成任务提交与状态查询"""

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from wallcraft.core.errors import PollError, SubmissionError, ValidationError
from wallcraft.services.dashscope import DashScopeClient, DashScopeError, TaskStatus
from wallcraft.services.templates import normalize_resolution, resolve_model

logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SubmitResult(_CamelModel):
    """任务创建结果"""
    task_id: str
    task_status: TaskStatus
    request_id: Optional[str] = None


class JobStatus(_CamelModel):
    """归一化的任务状态"""
    task_id: str
    task_status: TaskStatus
    video_url: Optional[str] = None
    submit_time: Optional[str] = None
    end_time: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None

    @classmethod
    def from_remote(cls, data: Dict[str, Any], task_id: str) -> "JobStatus":
        """从 DashScope 响应解析，格式不符抛出 PollError"""
        output = data.get("output")
        if not isinstance(output, dict):
            raise PollError("任务状态响应格式错误")
        return cls(
            task_id=output.get("task_id") or task_id,
            task_status=TaskStatus.parse(output.get("task_status")),
            video_url=output.get("video_url") or None,
            submit_time=output.get("submit_time") or None,
            end_time=output.get("end_time") or None,
            error_code=output.get("code") or None,
            error_message=output.get("message") or None,
            usage=data.get("usage") or None,
        )


class JobSubmitter:
    """把 (图片 URL, 模板, 模型, 分辨率) 转成远程异步任务"""

    def __init__(self, client: DashScopeClient):
        self.client = client

    async def submit(
        self,
        image_url: Optional[str],
        template: Optional[str],
        model: Optional[str] = None,
        resolution: Optional[str] = None,
    ) -> SubmitResult:
        """
        创建任务，不等待完成

        Raises:
            ValidationError: 缺少 image_url 或 template（不发起网络请求）
            SubmissionError: 远程返回非成功响应，带远程 code/message；网络失败时 code 为 network_error
        """
        if not image_url or not template:
            raise ValidationError("缺少 img_url 或 template 参数")

        selected_model = resolve_model(template, model)
        selected_resolution = normalize_resolution(resolution)

        try:
            data = await self.client.create_video_synthesis(
                model=selected_model,
                img_url=image_url,
                template=template,
                resolution=selected_resolution,
            )
        except DashScopeError as e:
            raise SubmissionError(
                e.message,
                status_code=e.status_code,
                code=e.code,
                request_id=e.request_id,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Submit transport error: {type(e).__name__}")
            raise SubmissionError("无法连接视频生成服务", code="network_error") from e

        output = data.get("output") or {}
        task_id = output.get("task_id")
        if not task_id:
            raise SubmissionError("远程服务未返回任务 ID", request_id=data.get("request_id"))

        logger.info(
            f"Submitted task {task_id} template={template} model={selected_model} "
            f"resolution={selected_resolution}"
        )
        return SubmitResult(
            task_id=task_id,
            task_status=TaskStatus.parse(output.get("task_status")),
            request_id=data.get("request_id"),
        )

    async def get_status(self, task_id: str) -> JobStatus:
        """查询并归一化任务状态"""
        if not task_id:
            raise ValidationError("缺少任务 ID")
        try:
            data = await self.client.get_task(task_id)
        except DashScopeError as e:
            raise PollError(
                e.message or "查询任务状态失败",
                status_code=e.status_code,
                code=e.code,
            ) from e
        except httpx.HTTPError as e:
            logger.warning(f"Status query transport error for task {task_id}: {type(e).__name__}")
            raise PollError() from e
        return JobStatus.from_remote(data, task_id)
