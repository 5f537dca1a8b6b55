import asyncio
from typing import Dict, List

from app.models.models import (
    IMPORTANCE_WEIGHTS,
    CourseRecommendation,
    Recommendations,
    SkillGapRecord,
)
from app.services.analyzer import StructuredAnalyzer
from app.services.db import strip_id
from app.services.matching import MatchingService
from app.utils.exceptions import AnalysisError, retry_async
from app.utils.logging_config import get_logger

logger = get_logger(__name__)

TOP_N = 10


def aggregate_recommendations(records: List[SkillGapRecord], top_n: int = TOP_N) -> Recommendations:
    """Fold many skill-gap records into one set of recommendations.

    Missing skills are ranked by importance-weighted frequency (high=3,
    medium=2, low=1); ties keep first-seen order. Courses are de-duplicated
    by course name and improvements by text, both in first-seen order.
    """
    if not records:
        return Recommendations()

    weights: Dict[str, int] = {}
    for record in records:
        for missing in record.missing_skills:
            weights[missing.skill] = weights.get(missing.skill, 0) + IMPORTANCE_WEIGHTS.get(missing.importance, 1)
    # sorted() is stable, so equal weights stay in insertion order
    top_skills = [skill for skill, _ in sorted(weights.items(), key=lambda kv: kv[1], reverse=True)][:top_n]

    courses: List[CourseRecommendation] = []
    seen_courses = set()
    for record in records:
        for course in record.course_recommendations:
            if course.course_name not in seen_courses:
                seen_courses.add(course.course_name)
                courses.append(course)

    improvements: List[str] = []
    seen_improvements = set()
    for record in records:
        for tip in record.resume_improvements:
            if tip not in seen_improvements:
                seen_improvements.add(tip)
                improvements.append(tip)

    return Recommendations(
        top_missing_skills=top_skills,
        recommended_courses=courses[:top_n],
        resume_improvements=improvements[:top_n],
    )


class SkillGapService:
    def __init__(
        self,
        analyzer: StructuredAnalyzer,
        matching: MatchingService,
        skill_gaps,
        max_attempts: int = 3,
        backoff_factor: float = 1.0,
    ):
        self.analyzer = analyzer
        self.matching = matching
        self.skill_gaps = skill_gaps
        self.max_attempts = max_attempts
        self.backoff_factor = backoff_factor

    async def analyze(self, subject_id: str, target_id: str) -> SkillGapRecord:
        profile = await self.matching.load_profile(subject_id)
        requirement = await self.matching.load_requirement(target_id)
        loop = asyncio.get_running_loop()

        async def call():
            return await loop.run_in_executor(
                None, self.analyzer.analyze_skill_gap, profile, requirement, requirement.title
            )

        analysis = await retry_async(
            call,
            max_attempts=self.max_attempts,
            backoff_factor=self.backoff_factor,
            exceptions=(AnalysisError,),
            logger=logger,
        )
        record = SkillGapRecord.from_analysis(subject_id, target_id, analysis)
        await self.skill_gaps.update_one(
            {"subject_id": subject_id, "target_id": target_id},
            {"$set": record.model_dump()},
            upsert=True,
        )
        logger.info(f"Skill gap analyzed: subject={subject_id} target={target_id} priority={record.priority}")
        return record

    async def get_or_analyze(self, subject_id: str, target_id: str) -> SkillGapRecord:
        row = await self.skill_gaps.find_one({"subject_id": subject_id, "target_id": target_id})
        if row:
            return SkillGapRecord.model_validate(strip_id(row))
        return await self.analyze(subject_id, target_id)

    async def _load(self, subject_id: str) -> List[SkillGapRecord]:
        rows = await self.skill_gaps.find({"subject_id": subject_id}).to_list(length=None)
        return [SkillGapRecord.model_validate(strip_id(r)) for r in rows]

    async def list_for_subject(self, subject_id: str) -> List[SkillGapRecord]:
        return sorted(await self._load(subject_id), key=lambda r: r.priority, reverse=True)

    async def recommendations(self, subject_id: str, top_n: int = TOP_N) -> Recommendations:
        # storage order, so ties resolve to the record analyzed first
        return aggregate_recommendations(await self._load(subject_id), top_n)
