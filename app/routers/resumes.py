from fastapi import APIRouter, Depends

from app.models.response import EnqueuedResponse
from app.models.schemas import DocumentModel, ProcessResumeRequest
from app.services.db import strip_id
from app.services.runtime import Services, get_services
from app.services.worker_pool import TaskType
from app.utils.exceptions import NotFoundError
from app.utils.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def _enqueue(services: Services, job_id: str, subject_id: str, source_location: str, filename=None):
    await services.pool.submit(
        TaskType.RESUME_PROCESSING,
        services.resumes.run,
        job_id, subject_id, source_location, filename,
        task_id=job_id,
    )
    return EnqueuedResponse(job_id=job_id, subject_id=subject_id)


@router.post("/process", response_model=EnqueuedResponse, status_code=202)
async def process_resume(payload: ProcessResumeRequest, services: Services = Depends(get_services)):
    """Queue a resume for extraction, analysis and matching"""
    job_id = await services.resumes.prepare(payload.subject_id, payload.source_location, payload.filename)
    return await _enqueue(services, job_id, payload.subject_id, payload.source_location, payload.filename)


@router.post("/{subject_id}/reprocess", response_model=EnqueuedResponse, status_code=202)
async def reprocess_resume(subject_id: str, services: Services = Depends(get_services)):
    """Retry a resume whose last run failed"""
    job_id, doc = await services.resumes.prepare_reprocess(subject_id)
    logger.info(f"Reprocessing resume {subject_id} (previous error: {doc.get('processing_error')})")
    return await _enqueue(services, job_id, subject_id, doc["source_location"], doc.get("filename"))


@router.get("/{subject_id}", response_model=DocumentModel, response_model_exclude={"raw_text"})
async def get_resume(subject_id: str, services: Services = Depends(get_services)):
    doc = await services.documents.find_one({"subject_id": subject_id})
    if not doc:
        raise NotFoundError("Resume not found", resource="document", resource_id=subject_id)
    return DocumentModel(**strip_id(doc))
