"""
Staged progress tracking for long-running processing jobs.

Records live in a TTLStore under ``job:progress:{job_id}`` with a reverse
``subject:job:{subject_id}`` key. Writes are last-write-wins; there is no
history.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.models.progress import (
    STAGE_MESSAGES,
    STAGE_WEIGHTS,
    JobProgress,
    JobStage,
    StageInfo,
    stage_list,
)
from app.services.ttl_store import TTLStore
from app.utils.logging_config import get_logger
from app.utils.utils import round_half_up

logger = get_logger(__name__)

PROGRESS_KEY_PREFIX = "job:progress:"
SUBJECT_KEY_PREFIX = "subject:job:"
DEFAULT_TTL_SECONDS = 86400


def progress_key(job_id: str) -> str:
    return f"{PROGRESS_KEY_PREFIX}{job_id}"


def subject_key(subject_id: str) -> str:
    return f"{SUBJECT_KEY_PREFIX}{subject_id}"


def calculate_overall_percent(stage: JobStage, stage_percent: float) -> int:
    """Weights of all earlier stages plus the finished share of the current one, capped at 99"""
    if stage is JobStage.COMPLETED:
        return 100
    if stage is JobStage.FAILED:
        return 0
    base = sum(w for s, w in STAGE_WEIGHTS.items() if s.order < stage.order)
    contribution = (max(0.0, min(100.0, stage_percent)) / 100) * STAGE_WEIGHTS[stage]
    return min(99, round_half_up(base + contribution))


class JobProgressTracker:
    def __init__(self, store: TTLStore, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def _save(self, progress: JobProgress) -> bool:
        """Write the record and the subject -> job key; a store failure is logged, never raised"""
        try:
            await self.store.put(progress_key(progress.job_id), progress.model_dump(mode="json"), self.ttl_seconds)
            await self.store.put(subject_key(progress.subject_id), progress.job_id, self.ttl_seconds)
        except Exception as e:
            logger.error(f"Failed to save job progress for {progress.job_id}: {e}")
            return False
        return True

    async def init(self, job_id: str, subject_id: str, metadata: Optional[Dict[str, Any]] = None) -> JobProgress:
        progress = JobProgress(job_id=job_id, subject_id=subject_id, metadata=metadata or {})
        await self._save(progress)
        logger.info(f"Job progress initialized: job={job_id} subject={subject_id}")
        return progress

    async def advance(
        self,
        job_id: str,
        stage: JobStage,
        stage_percent: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[JobProgress]:
        existing = await self.get(job_id)
        if existing is None:
            logger.warning(f"Job progress not found for update: {job_id}")
            return None

        stage_percent = int(max(0, min(100, stage_percent)))
        overall = calculate_overall_percent(stage, stage_percent)
        # forward movement never lowers the overall percent
        if not stage.is_terminal and not existing.stage.is_terminal and stage.order >= existing.stage.order:
            overall = max(existing.overall_percent, overall)

        now = datetime.utcnow()
        updated = existing.model_copy(update={
            "stage": stage,
            "overall_percent": overall,
            "stage_percent": stage_percent,
            "message": STAGE_MESSAGES[stage],
            "updated_at": now,
            "completed_at": now if stage is JobStage.COMPLETED else None,
            "metadata": {**existing.metadata, **(metadata or {})},
        })
        await self._save(updated)
        logger.debug(f"Job progress updated: job={job_id} stage={stage.value} overall={overall} stage_pct={stage_percent}")
        return updated

    async def update_stage_percent(
        self, job_id: str, stage_percent: int, message: Optional[str] = None
    ) -> Optional[JobProgress]:
        existing = await self.get(job_id)
        if existing is None:
            logger.warning(f"Job progress not found for update: {job_id}")
            return None

        stage_percent = int(max(0, min(100, stage_percent)))
        overall = calculate_overall_percent(existing.stage, stage_percent)
        if not existing.stage.is_terminal:
            overall = max(existing.overall_percent, overall)

        updated = existing.model_copy(update={
            "overall_percent": overall,
            "stage_percent": stage_percent,
            "message": message or existing.message,
            "updated_at": datetime.utcnow(),
        })
        await self._save(updated)
        return updated

    async def fail(self, job_id: str, error: str) -> Optional[JobProgress]:
        existing = await self.get(job_id)
        if existing is None:
            logger.warning(f"Job progress not found for failure: {job_id}")
            return None

        updated = existing.model_copy(update={
            "stage": JobStage.FAILED,
            "overall_percent": 0,
            "message": STAGE_MESSAGES[JobStage.FAILED],
            "error": error,
            "updated_at": datetime.utcnow(),
        })
        await self._save(updated)
        logger.error(f"Job marked as failed: job={job_id} error={error}")
        return updated

    async def complete(self, job_id: str, metadata: Optional[Dict[str, Any]] = None) -> Optional[JobProgress]:
        return await self.advance(job_id, JobStage.COMPLETED, 100, metadata)

    async def get(self, job_id: str) -> Optional[JobProgress]:
        try:
            data = await self.store.get(progress_key(job_id))
            if not data:
                return None
            return JobProgress.model_validate(data)
        except Exception as e:
            logger.error(f"Failed to get job progress for {job_id}: {e}")
            return None

    async def get_by_subject(self, subject_id: str) -> Optional[JobProgress]:
        try:
            job_id = await self.store.get(subject_key(subject_id))
        except Exception as e:
            logger.error(f"Failed to look up job for subject {subject_id}: {e}")
            return None
        if not job_id:
            return None
        return await self.get(job_id)

    async def delete(self, job_id: str) -> None:
        progress = await self.get(job_id)
        if progress:
            # only drop the reverse key if it still points at this job
            current = await self.store.get(subject_key(progress.subject_id))
            if current == job_id:
                await self.store.delete(subject_key(progress.subject_id))
        await self.store.delete(progress_key(job_id))

    async def get_active(self, subject_ids: List[str]) -> List[JobProgress]:
        active = []
        for subject_id in subject_ids:
            progress = await self.get_by_subject(subject_id)
            if progress and not progress.is_complete:
                active.append(progress)
        return active

    def stages(self) -> List[StageInfo]:
        return stage_list()
