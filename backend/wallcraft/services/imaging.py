"""上传前的图片压缩

长边不超过 2048px，以 JPEG 85% 质量重新编码，减小上传体积和远程处理成本。
属于尽力而为的优化：无法解码的图片原样返回。
"""

import io
import logging
import os
from typing import Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)


def compress_image(
    data: bytes,
    filename: str,
    content_type: str,
    max_dimension: int = 2048,
    quality: int = 85,
) -> Tuple[bytes, str, str]:
    """返回 (数据, 文件名, MIME 类型)"""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)
            img.thumbnail((max_dimension, max_dimension), Image.LANCZOS)
            if img.mode != "RGB":
                img = img.convert("RGB")
            buf = io.BytesIO()
            img.save(buf, format="JPEG", quality=quality, optimize=True)
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Image compression skipped for {filename}: {e}")
        return data, filename, content_type

    stem = os.path.splitext(os.path.basename(filename or "image"))[0] or "image"
    return buf.getvalue(), f"{stem}.jpg", "image/jpeg"
