from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from app.models.models import MatchScore
from app.models.progress import JobProgress, JobStage


class EnqueuedResponse(BaseModel):
    job_id: str
    status: str = "queued"
    subject_id: Optional[str] = None
    target_id: Optional[str] = None


class ProgressResponse(BaseModel):
    job_id: Optional[str] = None
    subject_id: Optional[str] = None
    stage: str
    overall_percent: int
    stage_percent: int = 0
    message: str
    is_complete: bool
    error: Optional[str] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_progress(cls, progress: JobProgress) -> "ProgressResponse":
        return cls(
            job_id=progress.job_id,
            subject_id=progress.subject_id,
            stage=progress.stage.value,
            overall_percent=progress.overall_percent,
            stage_percent=progress.stage_percent,
            message=progress.message,
            is_complete=progress.is_complete,
            error=progress.error,
            updated_at=progress.updated_at,
        )


# coarse document status -> (stage, percent) when no live tracker record exists
STATUS_FALLBACK = {
    "PENDING": (JobStage.QUEUED, 0),
    "PROCESSING": (JobStage.ANALYZING, 50),
    "ANALYZED": (JobStage.COMPLETED, 100),
    "FAILED": (JobStage.FAILED, 0),
}


class MatchListResponse(BaseModel):
    subject_id: str
    matches: List[MatchScore]
    page: int
    limit: int
    total: int
    created_at: datetime = Field(default_factory=datetime.utcnow)
