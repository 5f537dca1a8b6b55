from typing import List

from fastapi import APIRouter, Depends

from app.models.models import Recommendations, SkillGapRecord
from app.services.runtime import Services, get_services

router = APIRouter()


@router.get("/skill-gaps/{subject_id}", response_model=List[SkillGapRecord])
async def list_skill_gaps(subject_id: str, services: Services = Depends(get_services)):
    return await services.skill_gaps.list_for_subject(subject_id)


@router.get("/skill-gaps/{subject_id}/{target_id}", response_model=SkillGapRecord)
async def get_skill_gap(subject_id: str, target_id: str, services: Services = Depends(get_services)):
    return await services.skill_gaps.get_or_analyze(subject_id, target_id)


@router.get("/recommendations/{subject_id}", response_model=Recommendations)
async def get_recommendations(subject_id: str, services: Services = Depends(get_services)):
    """Aggregated learning recommendations across all of the resume's skill gaps"""
    return await services.skill_gaps.recommendations(subject_id)
