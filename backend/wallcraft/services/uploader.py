"""图片上传适配器

把用户图片存入 DashScope 提供的临时 OSS 空间，返回生成服务可直接拉取的 HTTPS 地址。
"""

import logging
import re
import time
from typing import Callable, Optional

import httpx

from wallcraft.core.errors import UploadError, ValidationError
from wallcraft.services.dashscope import DashScopeClient, DashScopeError
from wallcraft.services.templates import MODEL_I2V_TURBO

logger = logging.getLogger(__name__)

ACCEPTED_IMAGE_TYPES = (
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/bmp",
)
MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10MB

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_filename(filename: Optional[str]) -> str:
    """只保留 [A-Za-z0-9._-]，防止路径注入"""
    cleaned = _UNSAFE_CHARS.sub("", filename or "")
    cleaned = cleaned.lstrip(".")
    return cleaned or "image"


def validate_image(
    data: Optional[bytes],
    content_type: Optional[str],
    max_bytes: int = MAX_UPLOAD_BYTES,
) -> None:
    """校验上传图片，失败抛出 ValidationError"""
    if not data:
        raise ValidationError("未提供文件")
    if content_type not in ACCEPTED_IMAGE_TYPES:
        raise ValidationError(
            f"不支持的文件类型: {content_type}。支持 JPEG、PNG、WebP、BMP 图片。"
        )
    if len(data) > max_bytes:
        raise ValidationError(f"文件大小不能超过 {max_bytes // (1024 * 1024)}MB")


class UploadAdapter:
    """上传适配器"""

    def __init__(
        self,
        client: DashScopeClient,
        max_bytes: int = MAX_UPLOAD_BYTES,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.max_bytes = max_bytes
        self.clock = clock

    def build_key(self, upload_dir: str, user_id: str, filename: Optional[str]) -> str:
        """对象 key：{upload_dir}{user_id}/{毫秒时间戳}_{安全文件名}"""
        timestamp_ms = int(self.clock() * 1000)
        safe_user = sanitize_filename(user_id)
        return f"{upload_dir}{safe_user}/{timestamp_ms}_{sanitize_filename(filename)}"

    async def upload(
        self,
        user_id: str,
        data: Optional[bytes],
        filename: Optional[str],
        content_type: Optional[str],
        model: Optional[str] = None,
    ) -> str:
        """
        上传图片并返回公网 URL

        Raises:
            ValidationError: 文件缺失、类型或大小不符
            UploadError: 获取凭证或写入存储失败
        """
        validate_image(data, content_type, self.max_bytes)
        model = model or MODEL_I2V_TURBO

        try:
            policy = await self.client.get_upload_policy(model)
        except DashScopeError as e:
            logger.error(f"Get upload policy failed: {e.code} {e.message}")
            raise UploadError("获取上传凭证失败") from e
        except httpx.HTTPError as e:
            logger.error(f"Get upload policy failed: {type(e).__name__}")
            raise UploadError("获取上传凭证失败") from e

        key = self.build_key(policy.upload_dir, user_id, filename)
        try:
            await self.client.upload_object(
                policy,
                key=key,
                data=data,
                filename=sanitize_filename(filename),
                content_type=content_type,
            )
        except (DashScopeError, httpx.HTTPError) as e:
            logger.error(f"OSS upload failed: {type(e).__name__}")
            raise UploadError("图片上传失败") from e

        public_url = f"{policy.upload_host}/{key}"
        logger.info(f"Uploaded image for user {user_id}: {public_url}")
        return public_url
