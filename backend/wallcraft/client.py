"""Wallcraft 后端 HTTP 客户端

实现 GenerationBackend，供编排器（CLI 或其他前端）调用本服务的 API。
"""

import logging
from typing import Any, Dict, Optional

import httpx

from wallcraft.core.errors import (
    AuthError,
    PollError,
    QuotaExceededError,
    SubmissionError,
    UploadError,
    WallcraftError,
)
from wallcraft.services.job_submitter import JobStatus, SubmitResult
from wallcraft.services.quota import QuotaStatus

logger = logging.getLogger(__name__)


def _payload(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _quota_from(data: Dict[str, Any]) -> QuotaStatus:
    # premium 的 remaining 为 -1
    remaining = data.get("remaining", 0)
    return QuotaStatus(
        tier=data.get("tier", "free"),
        allowed=remaining != 0,
        used_today=data.get("usedToday", 0),
        limit=data.get("limit", 0),
        remaining=remaining,
    )


class HttpGenerationBackend:
    """通过 HTTP 调用 /api/usage 和 /api/wanx 接口"""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 60.0,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"}
        self.timeout = timeout
        self._http = http or httpx.AsyncClient()
        self._owns_http = http is None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "HttpGenerationBackend":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        return await self._http.request(
            method,
            f"{self.base_url}{path}",
            headers=self._headers,
            timeout=self.timeout,
            **kwargs,
        )

    @staticmethod
    def _raise_common(response: httpx.Response, data: Dict[str, Any]) -> None:
        if response.status_code == 401:
            raise AuthError(data.get("error"))
        if response.status_code == 429:
            raise QuotaExceededError(data.get("error"), quota={
                k: v for k, v in data.items() if k in ("tier", "usedToday", "limit", "remaining")
            })

    async def check_quota(self) -> QuotaStatus:
        response = await self._request("GET", "/api/usage")
        data = _payload(response)
        if response.is_error:
            self._raise_common(response, data)
            raise WallcraftError(data.get("error") or "查询失败", status_code=response.status_code)
        return _quota_from(data)

    async def consume_quota(self) -> QuotaStatus:
        response = await self._request("POST", "/api/usage/consume")
        data = _payload(response)
        if response.is_error:
            self._raise_common(response, data)
            raise WallcraftError(data.get("error") or "操作失败", status_code=response.status_code)
        return _quota_from(data)

    async def upload(self, data: bytes, filename: str, content_type: str, model: str) -> str:
        response = await self._request(
            "POST",
            "/api/wanx/upload",
            files={"file": (filename, data, content_type)},
            data={"model": model},
        )
        body = _payload(response)
        if response.is_error or not body.get("url"):
            self._raise_common(response, body)
            raise UploadError(body.get("error"), status_code=response.status_code)
        return body["url"]

    async def submit(self, image_url: str, template: str, model: str, resolution: str) -> SubmitResult:
        response = await self._request(
            "POST",
            "/api/wanx/generate",
            json={
                "img_url": image_url,
                "template": template,
                "model": model,
                "resolution": resolution,
            },
        )
        body = _payload(response)
        if response.is_error:
            self._raise_common(response, body)
            raise SubmissionError(
                body.get("error"),
                status_code=response.status_code,
                code=body.get("code"),
                request_id=body.get("requestId"),
            )
        return SubmitResult.model_validate(body)

    async def fetch_status(self, task_id: str) -> JobStatus:
        response = await self._request("GET", f"/api/wanx/status/{task_id}")
        body = _payload(response)
        if response.is_error:
            self._raise_common(response, body)
            raise PollError(body.get("error") or "查询状态失败", status_code=response.status_code)
        try:
            return JobStatus.model_validate(body)
        except ValueError as e:
            raise PollError("任务状态响应格式错误") from e
