"""生成流程编排器

状态机：idle → uploading → generating → polling → {done | error}
done / error 只能通过 reset 回到 idle。

transition() 是纯函数：(状态, 事件) → (新状态, 副作用列表)，可以脱离 UI 单独测试。
GenerationOrchestrator 负责执行副作用，并用 CancelToken 隔离不同会话：
新会话开始或 reset 时旧令牌被取消，旧会话晚到的事件一律丢弃。
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Awaitable, Callable, Deque, List, Optional, Protocol, Tuple, Union

from wallcraft.core.errors import InvalidStateTransitionError, QuotaExceededError
from wallcraft.services.imaging import compress_image
from wallcraft.services.job_poller import (
    MAX_POLL_TIME,
    MSG_NETWORK,
    POLL_INTERVAL,
    CancelToken,
    JobPoller,
)
from wallcraft.services.job_submitter import JobStatus, SubmitResult
from wallcraft.services.quota import QuotaStatus
from wallcraft.services.templates import DEFAULT_RESOLUTION, Template, resolve_model

logger = logging.getLogger(__name__)

MSG_UPLOAD_FAILED = "图片上传失败"
MSG_SUBMIT_FAILED = "创建任务失败"
MSG_QUOTA_EXCEEDED = QuotaExceededError.default_message


class SessionStatus(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    GENERATING = "generating"
    POLLING = "polling"
    DONE = "done"
    ERROR = "error"


ACTIVE_STATUSES = (SessionStatus.UPLOADING, SessionStatus.GENERATING, SessionStatus.POLLING)


@dataclass(frozen=True)
class SessionState:
    """对外可见的会话状态，每次转换整体替换"""
    status: SessionStatus = SessionStatus.IDLE
    job_id: Optional[str] = None
    result_url: Optional[str] = None
    error_message: Optional[str] = None


# ===== 事件 =====

@dataclass(frozen=True)
class StartRequested:
    pass


@dataclass(frozen=True)
class QuotaDenied:
    message: str


@dataclass(frozen=True)
class Uploaded:
    image_url: str


@dataclass(frozen=True)
class UploadFailed:
    message: str


@dataclass(frozen=True)
class Submitted:
    job_id: str


@dataclass(frozen=True)
class SubmitFailed:
    message: str


@dataclass(frozen=True)
class JobSucceeded:
    result_url: str


@dataclass(frozen=True)
class QuotaCommitted:
    result_url: str


@dataclass(frozen=True)
class JobFailed:
    message: str


@dataclass(frozen=True)
class CancelRequested:
    pass


@dataclass(frozen=True)
class ResetRequested:
    pass


Event = Union[
    StartRequested, QuotaDenied, Uploaded, UploadFailed, Submitted, SubmitFailed,
    JobSucceeded, QuotaCommitted, JobFailed, CancelRequested, ResetRequested,
]


# ===== 副作用 =====

@dataclass(frozen=True)
class ClearTimer:
    pass


@dataclass(frozen=True)
class CheckQuota:
    pass


@dataclass(frozen=True)
class UploadImage:
    pass


@dataclass(frozen=True)
class SubmitJob:
    image_url: str


@dataclass(frozen=True)
class PollJob:
    job_id: str


@dataclass(frozen=True)
class ConsumeQuota:
    job_id: Optional[str]
    result_url: str


Effect = Union[ClearTimer, CheckQuota, UploadImage, SubmitJob, PollJob, ConsumeQuota]


def _fail(message: str, job_id: Optional[str] = None) -> Tuple[SessionState, List[Effect]]:
    return SessionState(status=SessionStatus.ERROR, job_id=job_id, error_message=message), []


def transition(state: SessionState, event: Event) -> Tuple[SessionState, List[Effect]]:
    """状态转换函数

    Raises:
        InvalidStateTransitionError: 当前状态不接受该事件
    """
    status = state.status

    if isinstance(event, ResetRequested):
        return SessionState(), [ClearTimer()]
    if isinstance(event, CancelRequested):
        return replace(state, status=SessionStatus.IDLE, error_message=None), [ClearTimer()]

    if status == SessionStatus.IDLE and isinstance(event, StartRequested):
        return (
            SessionState(status=SessionStatus.UPLOADING),
            [ClearTimer(), CheckQuota(), UploadImage()],
        )

    if status == SessionStatus.UPLOADING:
        if isinstance(event, (QuotaDenied, UploadFailed)):
            return _fail(event.message)
        if isinstance(event, Uploaded):
            return replace(state, status=SessionStatus.GENERATING), [SubmitJob(event.image_url)]

    if status == SessionStatus.GENERATING:
        if isinstance(event, Submitted):
            return (
                replace(state, status=SessionStatus.POLLING, job_id=event.job_id),
                [PollJob(event.job_id)],
            )
        if isinstance(event, SubmitFailed):
            return _fail(event.message)

    if status == SessionStatus.POLLING:
        # 先尝试扣减配额，再进入 done
        if isinstance(event, JobSucceeded):
            return state, [ConsumeQuota(state.job_id, event.result_url)]
        if isinstance(event, QuotaCommitted):
            return (
                SessionState(
                    status=SessionStatus.DONE,
                    job_id=state.job_id,
                    result_url=event.result_url,
                ),
                [],
            )
        if isinstance(event, JobFailed):
            return _fail(event.message, job_id=state.job_id)

    raise InvalidStateTransitionError(status.value, type(event).__name__)


class GenerationBackend(Protocol):
    """编排器依赖的后端能力（HTTP 客户端或测试替身）"""

    async def check_quota(self) -> QuotaStatus: ...

    async def upload(self, data: bytes, filename: str, content_type: str, model: str) -> str: ...

    async def submit(self, image_url: str, template: str, model: str, resolution: str) -> SubmitResult: ...

    async def fetch_status(self, task_id: str) -> JobStatus: ...

    async def consume_quota(self) -> QuotaStatus: ...


@dataclass
class GenerationRequest:
    image: bytes
    filename: str
    content_type: str
    template: str
    model: str
    resolution: str = DEFAULT_RESOLUTION


@dataclass
class _Session:
    request: GenerationRequest
    token: CancelToken
    submitted_at: float = field(default=0.0)


def _message_of(exc: Exception, default: str) -> str:
    return getattr(exc, "message", None) or str(exc) or default


Preprocess = Callable[[bytes, str, str], Tuple[bytes, str, str]]
Listener = Callable[[SessionState], None]


class GenerationOrchestrator:
    """单会话生成编排器"""

    def __init__(
        self,
        backend: GenerationBackend,
        *,
        poll_interval: float = POLL_INTERVAL,
        max_poll_time: float = MAX_POLL_TIME,
        poll_retries: int = 0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        preprocess: Optional[Preprocess] = compress_image,
    ):
        self.backend = backend
        self._clock = clock
        self._sleep = sleep
        self._preprocess = preprocess
        self._poller = JobPoller(
            backend.fetch_status,
            interval=poll_interval,
            max_wait=max_poll_time,
            retries=poll_retries,
            clock=clock,
        )
        self._state = SessionState()
        self._session: Optional[_Session] = None
        self._last_request: Optional[GenerationRequest] = None
        self._listeners: List[Listener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """订阅状态变化，返回取消订阅函数"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _apply(self, event: Event) -> List[Effect]:
        new_state, effects = transition(self._state, event)
        if new_state != self._state:
            logger.debug(f"Generation {self._state.status.value} -> {new_state.status.value}")
            self._state = new_state
            for listener in list(self._listeners):
                try:
                    listener(new_state)
                except Exception:
                    # 订阅者的异常不能打断状态流转
                    logger.exception("State listener raised")
        return effects

    def _invalidate(self) -> None:
        """取消当前会话：设置中止标志并清除定时器"""
        if self._session is not None:
            self._session.token.cancel()
            self._session = None

    def _run_immediate(self, effects: List[Effect]) -> Deque[Effect]:
        queue: Deque[Effect] = deque(effects)
        while queue and isinstance(queue[0], ClearTimer):
            queue.popleft()
            self._invalidate()
        return queue

    def _is_current(self, session: _Session) -> bool:
        return self._session is session and not session.token.cancelled

    async def start_generate(
        self,
        image: bytes,
        filename: str,
        content_type: str,
        template: Union[Template, str],
        resolution: str = DEFAULT_RESOLUTION,
    ) -> SessionState:
        """
        开始一次生成并等待其结束

        进行中的旧会话会先被作废；done / error 状态需先 reset()。

        Returns:
            结束时的会话状态（done / error，或被 reset 后的 idle）
        """
        if self._state.status in ACTIVE_STATUSES:
            logger.info("Superseding active generation session")
            self.reset()

        template_name = template.template if isinstance(template, Template) else template
        request = GenerationRequest(
            image=image,
            filename=filename,
            content_type=content_type,
            template=template_name,
            model=resolve_model(template_name),
            resolution=resolution,
        )

        queue = self._run_immediate(self._apply(StartRequested()))
        session = _Session(request=request, token=CancelToken(self._sleep))
        self._session = session
        self._last_request = request
        await self._run(queue, session)
        return self._state

    async def retry(self) -> SessionState:
        """用上一次的输入重新生成"""
        if self._last_request is None:
            raise InvalidStateTransitionError(self._state.status.value, "Retry")
        request = self._last_request
        self.reset()
        return await self.start_generate(
            request.image,
            request.filename,
            request.content_type,
            request.template,
            request.resolution,
        )

    def reset(self) -> SessionState:
        """任意状态回到 idle，清空结果和错误"""
        self._run_immediate(self._apply(ResetRequested()))
        return self._state

    def cancel(self) -> SessionState:
        """中止当前会话，回到 idle（保留最后的任务 ID 和结果地址）"""
        self._run_immediate(self._apply(CancelRequested()))
        return self._state

    async def _run(self, queue: Deque[Effect], session: _Session) -> None:
        while queue:
            if not self._is_current(session):
                return
            effect = queue.popleft()
            event = await self._perform(effect, session)
            if event is None:
                continue
            if not self._is_current(session):
                logger.info(f"Dropping stale event {type(event).__name__} (session {session.token.epoch})")
                return
            queue = deque(self._apply(event))

    async def _perform(self, effect: Effect, session: _Session) -> Optional[Event]:
        request = session.request

        if isinstance(effect, ClearTimer):
            session.token.clear_timer()
            return None

        if isinstance(effect, CheckQuota):
            # 预检查只是提示性的，失败不阻塞流程
            try:
                quota = await self.backend.check_quota()
            except Exception as e:
                logger.warning(f"Quota pre-check failed, continuing: {e}")
                return None
            if not quota.allowed:
                return QuotaDenied(MSG_QUOTA_EXCEEDED)
            return None

        if isinstance(effect, UploadImage):
            try:
                data, filename, content_type = request.image, request.filename, request.content_type
                if self._preprocess is not None:
                    data, filename, content_type = await asyncio.to_thread(
                        self._preprocess, data, filename, content_type
                    )
                image_url = await self.backend.upload(data, filename, content_type, request.model)
            except Exception as e:
                logger.error(f"Upload failed: {e}")
                return UploadFailed(_message_of(e, MSG_UPLOAD_FAILED))
            return Uploaded(image_url)

        if isinstance(effect, SubmitJob):
            try:
                result = await self.backend.submit(
                    effect.image_url, request.template, request.model, request.resolution
                )
            except Exception as e:
                logger.error(f"Submit failed: {e}")
                return SubmitFailed(_message_of(e, MSG_SUBMIT_FAILED))
            session.submitted_at = self._clock()
            return Submitted(result.task_id)

        if isinstance(effect, PollJob):
            try:
                outcome = await self._poller.poll(
                    effect.job_id,
                    started_at=session.submitted_at,
                    token=session.token,
                )
            except Exception as e:
                logger.error(f"Polling task {effect.job_id} failed: {e!r}")
                return JobFailed(_message_of(e, MSG_NETWORK))
            if outcome is None:
                return None
            if outcome.succeeded:
                return JobSucceeded(outcome.result_url)
            return JobFailed(outcome.message)

        if isinstance(effect, ConsumeQuota):
            try:
                await self.backend.consume_quota()
            except Exception as e:
                # 结果已生成，配额记录失败不影响交付
                logger.warning(f"Quota consumption failed for task {effect.job_id}: {e}")
            return QuotaCommitted(effect.result_url)

        raise TypeError(f"Unknown effect: {effect!r}")
