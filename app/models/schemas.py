from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum


# -------- Documents --------
class DocumentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    ANALYZED = "ANALYZED"
    FAILED = "FAILED"


class ExtractionSummary(BaseModel):
    method: str
    confidence: float
    page_count: int
    warnings: List[str] = []


class DocumentModel(BaseModel):
    subject_id: str
    filename: Optional[str] = None
    source_location: str
    media_type: str = "application/pdf"
    status: DocumentStatus = DocumentStatus.PENDING
    processing_error: Optional[str] = None
    raw_text: Optional[str] = None
    extraction: Optional[ExtractionSummary] = None
    last_job_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    analyzed_at: Optional[datetime] = None


# -------- Job postings --------
class RequirementModel(BaseModel):
    """Raw posting text kept next to its analysis so it can be re-analyzed"""
    target_id: str
    title: str
    description: str
    status: str = "PENDING"  # PENDING, ANALYZED, FAILED
    processing_error: Optional[str] = None
    analysis: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


# -------- Requests --------
class ProcessResumeRequest(BaseModel):
    subject_id: str = Field(..., min_length=1)
    source_location: str = Field(..., min_length=1, description="Path or URL of the PDF")
    filename: Optional[str] = None


class AnalyzeJobRequest(BaseModel):
    target_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)


class MatchStatusUpdate(BaseModel):
    status: str = Field(..., pattern="^(SHORTLISTED|REJECTED)$")
