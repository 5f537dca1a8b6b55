from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class JobStage(str, Enum):
    QUEUED = "QUEUED"
    UPLOADING = "UPLOADING"
    EXTRACTING = "EXTRACTING"
    ANALYZING = "ANALYZING"
    GENERATING_EMBEDDINGS = "GENERATING_EMBEDDINGS"
    MATCHING = "MATCHING"
    FINALIZING = "FINALIZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def weight(self) -> int:
        return STAGE_WEIGHTS.get(self, 0)

    @property
    def order(self) -> int:
        return list(JobStage).index(self)

    @property
    def is_terminal(self) -> bool:
        return self in (JobStage.COMPLETED, JobStage.FAILED)


# Share of the overall run each stage accounts for; sums to 100.
STAGE_WEIGHTS: Dict[JobStage, int] = {
    JobStage.QUEUED: 0,
    JobStage.UPLOADING: 5,
    JobStage.EXTRACTING: 20,
    JobStage.ANALYZING: 50,
    JobStage.GENERATING_EMBEDDINGS: 15,
    JobStage.MATCHING: 8,
    JobStage.FINALIZING: 2,
}

STAGE_MESSAGES: Dict[JobStage, str] = {
    JobStage.QUEUED: "Waiting in queue...",
    JobStage.UPLOADING: "Uploading document...",
    JobStage.EXTRACTING: "Extracting text from PDF...",
    JobStage.ANALYZING: "Analyzing resume content...",
    JobStage.GENERATING_EMBEDDINGS: "Generating semantic embeddings...",
    JobStage.MATCHING: "Matching with job postings...",
    JobStage.FINALIZING: "Finalizing analysis...",
    JobStage.COMPLETED: "Analysis complete!",
    JobStage.FAILED: "Processing failed",
}


class JobProgress(BaseModel):
    job_id: str
    subject_id: str
    stage: JobStage = JobStage.QUEUED
    overall_percent: int = Field(default=0, ge=0, le=100)
    stage_percent: int = Field(default=0, ge=0, le=100)
    message: str = STAGE_MESSAGES[JobStage.QUEUED]
    started_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return self.stage.is_terminal


class StageInfo(BaseModel):
    stage: JobStage
    weight: int
    message: str


def stage_list() -> List[StageInfo]:
    """Ordered stages for display; FAILED is not part of the sequence"""
    return [
        StageInfo(stage=s, weight=s.weight, message=STAGE_MESSAGES[s])
        for s in JobStage
        if s is not JobStage.FAILED
    ]
