"""错误类型

所有业务错误都继承自 WallcraftError，携带面向用户的消息和 HTTP 状态码，
由 main.py 中注册的异常处理器统一渲染为 {"error": ..., "code": ...}。
"""

from typing import Any, Dict, Optional


class WallcraftError(Exception):
    """业务错误基类"""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "操作失败"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


class AuthError(WallcraftError):
    """未登录或凭证无效"""
    status_code = 401
    code = "unauthorized"
    default_message = "未登录"


class ValidationError(WallcraftError):
    """输入缺失或格式不正确"""
    status_code = 400
    code = "invalid_request"
    default_message = "请求参数错误"


class QuotaExceededError(WallcraftError):
    """今日配额已用完"""
    status_code = 429
    code = "quota_exceeded"
    default_message = "今日免费次数已用完，请升级高级版"

    def __init__(self, message: Optional[str] = None, *, quota: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.quota = quota or {}

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload.update(self.quota)
        return payload


class ConfigurationError(WallcraftError):
    """服务端配置缺失（不向客户端暴露细节）"""
    status_code = 500
    code = "server_misconfigured"
    default_message = "服务端配置错误"


class UploadError(WallcraftError):
    """存储写入失败"""
    status_code = 500
    code = "upload_failed"
    default_message = "图片上传失败"


class SubmissionError(WallcraftError):
    """远程任务创建失败，透传远程错误码和消息"""
    status_code = 502
    code = "submission_failed"
    default_message = "视频生成任务创建失败"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message, status_code=status_code, code=code)
        self.request_id = request_id

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        if self.request_id:
            payload["requestId"] = self.request_id
        return payload


class PollError(WallcraftError):
    """轮询任务状态时的网络或解析错误"""
    status_code = 502
    code = "poll_failed"
    default_message = "网络错误"


class JobTimeoutError(WallcraftError):
    """超过最长等待时间"""
    status_code = 504
    code = "timeout"
    default_message = "生成超时（超过5分钟），请稍后重试"


class RemoteJobFailure(WallcraftError):
    """远程任务以 FAILED / CANCELED 结束"""
    status_code = 502
    code = "job_failed"
    default_message = "视频生成失败"


class InvalidStateTransitionError(WallcraftError):
    """无效状态转换错误"""
    status_code = 409
    code = "invalid_state"

    def __init__(self, current_status: str, event: str):
        self.current_status = current_status
        self.event = event
        super().__init__(f"Invalid state transition from {current_status} on {event}")
