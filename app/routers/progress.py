from typing import List

from fastapi import APIRouter, Depends

from app.models.progress import STAGE_MESSAGES, StageInfo
from app.models.response import STATUS_FALLBACK, ProgressResponse
from app.services.runtime import Services, get_services
from app.utils.exceptions import NotFoundError

router = APIRouter()


@router.get("/stages", response_model=List[StageInfo])
async def list_stages(services: Services = Depends(get_services)):
    return services.tracker.stages()


@router.get("/jobs/{job_id}", response_model=ProgressResponse)
async def get_job_progress(job_id: str, services: Services = Depends(get_services)):
    progress = await services.tracker.get(job_id)
    if progress is None:
        raise NotFoundError("Job progress not found", resource="job", resource_id=job_id)
    return ProgressResponse.from_progress(progress)


@router.get("/subjects/{subject_id}", response_model=ProgressResponse)
async def get_subject_progress(subject_id: str, services: Services = Depends(get_services)):
    """Live progress of the subject's latest job, or its coarse document status once the record has expired"""
    progress = await services.tracker.get_by_subject(subject_id)
    if progress is not None:
        return ProgressResponse.from_progress(progress)

    doc = await services.documents.find_one({"subject_id": subject_id})
    if not doc:
        raise NotFoundError("Resume not found", resource="document", resource_id=subject_id)

    stage, percent = STATUS_FALLBACK.get(doc.get("status"), STATUS_FALLBACK["PENDING"])
    return ProgressResponse(
        job_id=doc.get("last_job_id"),
        subject_id=subject_id,
        stage=stage.value,
        overall_percent=percent,
        message=STAGE_MESSAGES[stage],
        is_complete=stage.is_terminal,
        error=doc.get("processing_error"),
        updated_at=doc.get("updated_at"),
    )
