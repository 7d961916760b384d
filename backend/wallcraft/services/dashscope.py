"""DashScope（通义万相）REST 客户端

- 视频合成任务提交（异步模式）
- 任务状态查询
- 临时上传凭证获取与 OSS 直传

httpx.AsyncClient 通过构造参数注入，未注入时每次请求临时创建。
API Key 只出现在请求头中，不会写入日志或异常。
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from wallcraft.core.config import Settings
from wallcraft.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

VIDEO_SYNTHESIS_PATH = "/services/aigc/video-generation/video-synthesis"


class TaskStatus(str, Enum):
    """远程任务状态"""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    UNKNOWN = "UNKNOWN"  # 任务不存在或已过期

    @classmethod
    def parse(cls, value: Optional[str]) -> "TaskStatus":
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.CANCELED, TaskStatus.UNKNOWN)


class DashScopeError(Exception):
    """DashScope 返回非成功响应"""

    def __init__(
        self,
        status_code: int,
        message: Optional[str] = None,
        code: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        self.status_code = status_code
        self.message = message
        self.code = code
        self.request_id = request_id
        super().__init__(f"DashScope error {status_code}: {code} {message}")


@dataclass
class UploadPolicy:
    """OSS 直传凭证"""
    policy: str
    signature: str
    upload_dir: str
    upload_host: str
    oss_access_key_id: str
    x_oss_object_acl: str
    x_oss_forbid_overwrite: str


class DashScopeClient:
    """DashScope API 客户端"""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://dashscope.aliyuncs.com/api/v1",
        timeout: float = 30.0,
        http: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ConfigurationError("服务端未配置 DASHSCOPE_API_KEY")
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = http

    def __repr__(self) -> str:
        return f"DashScopeClient(base_url={self.base_url!r})"

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._http is not None:
            return await self._http.request(method, url, timeout=self.timeout, **kwargs)
        async with httpx.AsyncClient() as client:
            return await client.request(method, url, timeout=self.timeout, **kwargs)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """发送 API 请求，非 2xx 抛出 DashScopeError"""
        request_headers = {"Authorization": f"Bearer {self._api_key}"}
        if headers:
            request_headers.update(headers)

        response = await self._send(
            method,
            f"{self.base_url}{path}",
            json=json,
            params=params,
            headers=request_headers,
        )
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.is_error:
            logger.error(
                f"DashScope {method} {path} failed: status={response.status_code} "
                f"code={data.get('code')} message={data.get('message')}"
            )
            raise DashScopeError(
                response.status_code,
                message=data.get("message"),
                code=data.get("code"),
                request_id=data.get("request_id"),
            )
        return data

    async def create_video_synthesis(
        self,
        model: str,
        img_url: str,
        template: str,
        resolution: str,
    ) -> Dict[str, Any]:
        """创建图生视频任务（异步）"""
        body = {
            "model": model,
            "input": {"img_url": img_url, "template": template},
            "parameters": {"resolution": resolution},
        }
        return await self._request(
            "POST",
            VIDEO_SYNTHESIS_PATH,
            json=body,
            headers={"X-DashScope-Async": "enable"},
        )

    async def get_task(self, task_id: str) -> Dict[str, Any]:
        """查询任务状态"""
        return await self._request("GET", f"/tasks/{task_id}")

    async def get_upload_policy(self, model: str) -> UploadPolicy:
        """获取 OSS 临时上传凭证"""
        data = await self._request(
            "GET",
            "/uploads",
            params={"action": "getPolicy", "model": model},
        )
        policy = data.get("data") or {}
        try:
            return UploadPolicy(
                policy=policy["policy"],
                signature=policy["signature"],
                upload_dir=policy["upload_dir"],
                upload_host=policy["upload_host"].rstrip("/"),
                oss_access_key_id=policy["oss_access_key_id"],
                x_oss_object_acl=policy["x_oss_object_acl"],
                x_oss_forbid_overwrite=policy["x_oss_forbid_overwrite"],
            )
        except KeyError as e:
            raise DashScopeError(200, message=f"上传凭证缺少字段 {e}") from e

    async def upload_object(
        self,
        policy: UploadPolicy,
        key: str,
        data: bytes,
        filename: str,
        content_type: str,
    ) -> None:
        """使用凭证直传 OSS（不携带 API Key）"""
        form = {
            "OSSAccessKeyId": policy.oss_access_key_id,
            "Signature": policy.signature,
            "policy": policy.policy,
            "key": key,
            "x-oss-object-acl": policy.x_oss_object_acl,
            "x-oss-forbid-overwrite": policy.x_oss_forbid_overwrite,
            "success_action_status": "200",
        }
        response = await self._send(
            "POST",
            policy.upload_host,
            data=form,
            files={"file": (filename, data, content_type)},
        )
        if response.is_error:
            logger.error(f"OSS upload failed: status={response.status_code} body={response.text[:200]}")
            raise DashScopeError(response.status_code, message="OSS upload failed")


def create_dashscope_client(settings: Settings, http: Optional[httpx.AsyncClient] = None) -> DashScopeClient:
    """创建 DashScope 客户端，未配置 API Key 时抛出 ConfigurationError"""
    if not settings.dashscope_api_key:
        logger.error("DASHSCOPE_API_KEY is not configured")
        raise ConfigurationError("服务端未配置 DASHSCOPE_API_KEY")
    return DashScopeClient(
        api_key=settings.dashscope_api_key,
        base_url=settings.dashscope_base_url,
        timeout=settings.dashscope_timeout_seconds,
        http=http,
    )
