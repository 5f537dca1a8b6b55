from fastapi import APIRouter, Depends, Query

from app.models.models import MatchScore
from app.models.response import EnqueuedResponse, MatchListResponse
from app.models.schemas import MatchStatusUpdate
from app.services.runtime import Services, get_services
from app.services.worker_pool import TaskType

router = APIRouter()


@router.get("/{subject_id}", response_model=MatchListResponse)
async def list_matches(
    subject_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    services: Services = Depends(get_services),
):
    """Stored matches for a resume, best first"""
    matches, total = await services.matching.list_for_subject(subject_id, page, limit)
    return MatchListResponse(subject_id=subject_id, matches=matches, page=page, limit=limit, total=total)


@router.post("/{subject_id}/refresh", response_model=EnqueuedResponse, status_code=202)
async def refresh_matches(subject_id: str, services: Services = Depends(get_services)):
    """Queue a re-score of the resume against every analyzed posting"""
    task_id = await services.pool.submit(
        TaskType.MATCHING,
        services.matching.refresh_subject,
        subject_id,
        services.settings.worker.max_match_targets,
    )
    return EnqueuedResponse(job_id=task_id, subject_id=subject_id)


@router.get("/{subject_id}/{target_id}", response_model=MatchScore)
async def get_match(subject_id: str, target_id: str, services: Services = Depends(get_services)):
    return await services.matching.get_or_calculate(subject_id, target_id)


@router.patch("/{subject_id}/{target_id}/status", response_model=MatchScore)
async def update_match_status(
    subject_id: str,
    target_id: str,
    payload: MatchStatusUpdate,
    services: Services = Depends(get_services),
):
    return await services.matching.update_status(subject_id, target_id, payload.status)
