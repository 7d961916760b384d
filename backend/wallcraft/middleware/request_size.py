"""请求大小限制中间件 - 上传图片不超过 10MB"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from typing import Callable


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """根据 Content-Length 限制请求体大小"""

    def __init__(self, app, max_size: int = 10 * 1024 * 1024):
        super().__init__(app)
        self.max_size = max_size

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length")

        if content_length and content_length.isdigit() and int(content_length) > self.max_size:
            return JSONResponse(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                content={
                    "error": f"请求体过大。最大允许: {self.max_size / 1024 / 1024:.1f}MB",
                    "code": "payload_too_large",
                },
            )

        return await call_next(request)
