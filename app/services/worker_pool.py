"""
Bounded asyncio worker pool for background processing.

Each task type carries its own retry policy. Resume processing runs once
(reprocessing is an explicit request); posting analysis and matching are
retried with exponential backoff on transient errors. A task that still
fails is logged and dropped; its own code is responsible for recording the
failure (progress record, document status).
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

from pymongo.errors import PyMongoError

from app.utils.exceptions import (
    AnalysisError,
    DatabaseError,
    EmbeddingUnavailableError,
    retry_async,
)
from app.utils.logging_config import get_logger

logger = get_logger(__name__)

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    AnalysisError,
    EmbeddingUnavailableError,
    DatabaseError,
    PyMongoError,
    asyncio.TimeoutError,
)


class TaskType(str, Enum):
    RESUME_PROCESSING = "resume_processing"
    JOB_ANALYSIS = "job_analysis"
    MATCHING = "matching"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 1
    backoff_seconds: float = 1.0
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS


DEFAULT_POLICIES: Dict[TaskType, RetryPolicy] = {
    TaskType.RESUME_PROCESSING: RetryPolicy(max_attempts=1),
    TaskType.JOB_ANALYSIS: RetryPolicy(max_attempts=3),
    TaskType.MATCHING: RetryPolicy(max_attempts=2),
}


@dataclass
class QueuedTask:
    task_id: str
    task_type: TaskType
    func: Callable[..., Awaitable[Any]]
    args: tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)


class WorkerPool:
    def __init__(
        self,
        concurrency: int = 5,
        policies: Optional[Dict[TaskType, RetryPolicy]] = None,
        jitter: float = 0.0,
    ):
        self.concurrency = concurrency
        self.policies = {**DEFAULT_POLICIES, **(policies or {})}
        self.jitter = jitter
        self._queue: "asyncio.Queue[Optional[QueuedTask]]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self.stats = {"completed": 0, "failed": 0}

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"worker-{n}") for n in range(self.concurrency)
        ]
        logger.info(f"Worker pool started with {self.concurrency} workers")

    async def submit(
        self,
        task_type: TaskType,
        func: Callable[..., Awaitable[Any]],
        *args,
        task_id: Optional[str] = None,
        **kwargs,
    ) -> str:
        task = QueuedTask(task_id or uuid.uuid4().hex, task_type, func, args, kwargs)
        await self._queue.put(task)
        logger.debug(f"Queued {task_type.value} task {task.task_id} (pending: {self.pending})")
        return task.task_id

    async def join(self) -> None:
        """Wait until every queued task has been processed"""
        await self._queue.join()

    async def stop(self) -> None:
        """Drain the queue, then stop the workers"""
        if not self._workers:
            return
        await self._queue.join()
        for _ in self._workers:
            await self._queue.put(None)
        await asyncio.gather(*self._workers)
        self._workers = []
        logger.info(f"Worker pool stopped (completed={self.stats['completed']}, failed={self.stats['failed']})")

    async def _run(self, task: QueuedTask) -> Any:
        policy = self.policies[task.task_type]
        return await retry_async(
            task.func,
            *task.args,
            max_attempts=policy.max_attempts,
            backoff_factor=policy.backoff_seconds,
            jitter=self.jitter,
            exceptions=policy.retry_on,
            logger=logger,
            **task.kwargs,
        )

    async def _worker(self, n: int) -> None:
        while True:
            task = await self._queue.get()
            try:
                if task is None:
                    return
                logger.info(f"worker-{n} processing {task.task_type.value} task {task.task_id}")
                await self._run(task)
                self.stats["completed"] += 1
                logger.info(f"{task.task_type.value} task {task.task_id} completed")
            except Exception as e:
                self.stats["failed"] += 1
                logger.error(f"{task.task_type.value} task {task.task_id} failed: {e}", exc_info=True)
            finally:
                self._queue.task_done()
