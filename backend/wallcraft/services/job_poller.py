"""任务轮询器

按固定间隔查询任务状态，直到终态或超过全局等待时间。

状态：PENDING → RUNNING → {SUCCEEDED | FAILED | CANCELED}
- SUCCEEDED 且有 video_url：成功
- SUCCEEDED 但没有 video_url：按 RUNNING 处理，继续轮询
- FAILED / CANCELED / UNKNOWN：失败
- 等待时间从提交时刻开始计算（墙钟截止时间，不是每次轮询的超时）
- 查询出错：默认立即失败，不做重试

取消是协作式的：CancelToken 记录中止标志和当前等待的定时器，
每次查询前、收到响应后、重新调度前都会检查。
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

import httpx

from wallcraft.core.errors import JobTimeoutError, PollError, RemoteJobFailure, WallcraftError
from wallcraft.services.dashscope import TaskStatus
from wallcraft.services.job_submitter import JobStatus

logger = logging.getLogger(__name__)

POLL_INTERVAL = 15.0  # 秒
MAX_POLL_TIME = 5 * 60.0  # 5分钟

MSG_TIMEOUT = JobTimeoutError.default_message
MSG_FAILED = RemoteJobFailure.default_message
MSG_CANCELED = "任务已被取消"
MSG_UNKNOWN = "任务不存在或已过期"
MSG_NETWORK = PollError.default_message

_epochs = itertools.count(1)


class CancelToken:
    """一次生成会话的取消令牌（中止标志 + 定时器）"""

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.epoch = next(_epochs)
        self._sleep = sleep
        self._cancelled = False
        self._timer: Optional[asyncio.Future] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """设置中止标志并清除等待中的定时器"""
        self._cancelled = True
        self.clear_timer()

    def clear_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def wait(self, delay: float) -> bool:
        """等待 delay 秒，返回 False 表示期间被取消"""
        if self._cancelled:
            return False
        timer = asyncio.ensure_future(self._sleep(delay))
        self._timer = timer
        try:
            await asyncio.wait({timer})
        finally:
            if not timer.done():
                timer.cancel()
            if self._timer is timer:
                self._timer = None
        return not self._cancelled


class OutcomeKind(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    TIMEOUT = "timeout"
    NETWORK = "network"


@dataclass(frozen=True)
class PollOutcome:
    kind: OutcomeKind
    result_url: Optional[str] = None
    message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.kind == OutcomeKind.SUCCEEDED


class JobPoller:
    """任务状态轮询器"""

    def __init__(
        self,
        fetch_status: Callable[[str], Awaitable[JobStatus]],
        *,
        interval: float = POLL_INTERVAL,
        max_wait: float = MAX_POLL_TIME,
        retries: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetch_status = fetch_status
        self.interval = interval
        self.max_wait = max_wait
        self.retries = retries
        self.clock = clock

    def _expired(self, started_at: float) -> bool:
        return self.clock() - started_at > self.max_wait

    async def _fetch(self, job_id: str, token: CancelToken) -> JobStatus:
        attempt = 0
        while True:
            try:
                return await self.fetch_status(job_id)
            except (WallcraftError, httpx.HTTPError, ValueError) as e:
                if attempt >= self.retries or token.cancelled:
                    raise
                attempt += 1
                logger.warning(f"Polling {job_id} failed (attempt {attempt}/{self.retries}): {e}")
                if not await token.wait(self.interval):
                    raise

    async def poll(
        self,
        job_id: str,
        *,
        started_at: float,
        token: CancelToken,
    ) -> Optional[PollOutcome]:
        """
        轮询直到终态

        Args:
            job_id: 远程任务 ID
            started_at: 提交时刻（clock() 的读数）
            token: 会话取消令牌

        Returns:
            PollOutcome；会话被取消时返回 None
        """
        while True:
            if token.cancelled:
                return None

            if self._expired(started_at):
                logger.warning(f"Task {job_id} timed out after {self.max_wait}s")
                return PollOutcome(OutcomeKind.TIMEOUT, message=MSG_TIMEOUT)

            try:
                status = await self._fetch(job_id, token)
            except (WallcraftError, httpx.HTTPError, ValueError) as e:
                if token.cancelled:
                    return None
                message = getattr(e, "message", None) or MSG_NETWORK
                logger.error(f"Polling task {job_id} failed: {e}")
                return PollOutcome(OutcomeKind.NETWORK, message=message)

            # 过期会话的响应直接丢弃
            if token.cancelled:
                return None

            outcome = self._evaluate(status)
            if outcome is not None:
                logger.info(f"Task {job_id} finished: {outcome.kind.value}")
                return outcome

            # PENDING / RUNNING / SUCCEEDED 但还没有 video_url
            if self._expired(started_at):
                logger.warning(f"Task {job_id} timed out after {self.max_wait}s")
                return PollOutcome(OutcomeKind.TIMEOUT, message=MSG_TIMEOUT)

            if not await token.wait(self.interval):
                return None

    @staticmethod
    def _evaluate(status: JobStatus) -> Optional[PollOutcome]:
        """终态返回结果，非终态返回 None"""
        if status.task_status == TaskStatus.SUCCEEDED:
            if status.video_url:
                return PollOutcome(OutcomeKind.SUCCEEDED, result_url=status.video_url)
            logger.warning(f"Task {status.task_id} SUCCEEDED without video_url, keep polling")
            return None
        if status.task_status == TaskStatus.FAILED:
            return PollOutcome(OutcomeKind.FAILED, message=status.error_message or MSG_FAILED)
        if status.task_status == TaskStatus.CANCELED:
            return PollOutcome(OutcomeKind.CANCELED, message=MSG_CANCELED)
        if status.task_status == TaskStatus.UNKNOWN:
            return PollOutcome(OutcomeKind.FAILED, message=MSG_UNKNOWN)
        return None
