from fastapi import APIRouter, Depends

from app.models.response import EnqueuedResponse
from app.models.schemas import AnalyzeJobRequest, RequirementModel
from app.services.db import strip_id
from app.services.runtime import Services, get_services
from app.services.worker_pool import TaskType
from app.utils.exceptions import NotFoundError

router = APIRouter()


@router.post("/analyze", response_model=EnqueuedResponse, status_code=202)
async def analyze_job(payload: AnalyzeJobRequest, services: Services = Depends(get_services)):
    """Queue a job posting for structured analysis and embedding"""
    job_id = await services.postings.prepare(payload.target_id, payload.title, payload.description)
    await services.pool.submit(TaskType.JOB_ANALYSIS, services.postings.run, payload.target_id, task_id=job_id)
    return EnqueuedResponse(job_id=job_id, target_id=payload.target_id)


@router.get("/{target_id}", response_model=RequirementModel)
async def get_job(target_id: str, services: Services = Depends(get_services)):
    row = await services.postings.requirements.find_one({"target_id": target_id})
    if not row:
        raise NotFoundError("Job posting not found", resource="requirement", resource_id=target_id)
    row = strip_id(row)
    if row.get("analysis"):
        row["analysis"] = {k: v for k, v in row["analysis"].items() if k != "embedding"}
    return RequirementModel(**row)
