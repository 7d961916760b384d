"""命令行生成工具

用法：
    wallcraft-generate photo.jpg --template rotation --token $WALLCRAFT_TOKEN
"""

import argparse
import asyncio
import functools
import logging
import mimetypes
import os
import sys
from pathlib import Path
from typing import List, Optional

from wallcraft.client import HttpGenerationBackend
from wallcraft.core.config import get_settings
from wallcraft.services.imaging import compress_image
from wallcraft.services.orchestrator import GenerationOrchestrator, SessionState, SessionStatus
from wallcraft.services.templates import RESOLUTIONS, TEMPLATES

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    SessionStatus.IDLE: "空闲",
    SessionStatus.UPLOADING: "上传图片中...",
    SessionStatus.GENERATING: "创建任务中...",
    SessionStatus.POLLING: "视频生成中...",
    SessionStatus.DONE: "生成完成",
    SessionStatus.ERROR: "生成失败",
}


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    p = argparse.ArgumentParser(prog="wallcraft-generate", description="用一张图片生成动态壁纸视频")
    p.add_argument("image", type=Path, nargs="?", help="本地图片路径")
    p.add_argument("--template", help="特效模板，例如 rotation")
    p.add_argument("--resolution", default=settings.default_resolution, choices=RESOLUTIONS)
    p.add_argument("--api-url", default=os.getenv("WALLCRAFT_API_URL", "http://localhost:8000"))
    p.add_argument("--token", default=os.getenv("WALLCRAFT_TOKEN"), help="登录凭证（JWT）")
    p.add_argument("--list-templates", action="store_true", help="只列出模板")
    p.add_argument("-v", "--verbose", action="store_true")
    return p


def _print_state(state: SessionState) -> None:
    line = STATUS_LABELS[state.status]
    if state.job_id and state.status == SessionStatus.POLLING:
        line += f" (任务 {state.job_id})"
    print(line, flush=True)


async def run(args: argparse.Namespace) -> SessionState:
    settings = get_settings()
    data = args.image.read_bytes()
    content_type = mimetypes.guess_type(args.image.name)[0] or "application/octet-stream"

    async with HttpGenerationBackend(args.api_url, args.token) as backend:
        orchestrator = GenerationOrchestrator(
            backend,
            poll_interval=settings.poll_interval_seconds,
            max_poll_time=settings.max_poll_seconds,
            poll_retries=settings.poll_retries,
            preprocess=functools.partial(
                compress_image,
                max_dimension=settings.upload_max_dimension,
                quality=settings.upload_jpeg_quality,
            ),
        )
        orchestrator.subscribe(_print_state)
        return await orchestrator.start_generate(
            data,
            args.image.name,
            content_type,
            args.template,
            args.resolution,
        )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    if args.list_templates:
        for t in TEMPLATES:
            print(f"{t.template:<12} {t.name}  [{t.category.value}]")
        return 0
    if not args.template:
        print("缺少 --template 参数", file=sys.stderr)
        return 2
    if not args.token:
        print("缺少登录凭证：请使用 --token 或设置 WALLCRAFT_TOKEN", file=sys.stderr)
        return 2
    if args.image is None or not args.image.is_file():
        print(f"找不到图片：{args.image}", file=sys.stderr)
        return 2

    state = asyncio.run(run(args))
    if state.status == SessionStatus.DONE:
        print(state.result_url)
        return 0
    print(state.error_message or "生成失败", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
