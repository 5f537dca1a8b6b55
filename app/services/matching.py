"""
Deterministic weighted scoring of a structured profile against a posting.

overall = 0.40 skill + 0.25 experience + 0.15 education + 0.20 keyword,
rounded half-up and clamped to [0, 100].
"""
import asyncio
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from app.models.models import (
    ComponentScores,
    MatchScore,
    StructuredProfile,
    StructuredRequirement,
)
from app.services.analyzer import MatchExplainer
from app.services.db import strip_id
from app.utils.exceptions import ExceptionContext, NotFoundError, ScoringDegraded, ValidationError
from app.utils.logging_config import get_logger
from app.utils.utils import clamp, cosine_similarity, round_half_up, similarity_to_percentage

logger = get_logger(__name__)

WEIGHTS = {
    "skill": Decimal("0.40"),
    "experience": Decimal("0.25"),
    "education": Decimal("0.15"),
    "keyword": Decimal("0.20"),
}
NO_REQUIRED_SKILLS_SCORE = 50.0
DEFAULT_MAX_EXPERIENCE = 20.0
UNDER_EXPERIENCE_PENALTY = 15
OVER_EXPERIENCE_PENALTY = 5
OVER_EXPERIENCE_FLOOR = 50.0
EDUCATION_WITH_DEGREE = 80.0
EDUCATION_WITHOUT_DEGREE = 60.0
MATCH_STATUSES = ("SHORTLISTED", "REJECTED")


def template_explanation(score: int) -> str:
    return f"Match score: {score}%. Analysis based on skill and experience alignment."


def calculate_match_score(skill: float, experience: float, education: float, keyword: float) -> int:
    total = (
        Decimal(str(skill)) * WEIGHTS["skill"]
        + Decimal(str(experience)) * WEIGHTS["experience"]
        + Decimal(str(education)) * WEIGHTS["education"]
        + Decimal(str(keyword)) * WEIGHTS["keyword"]
    )
    return int(clamp(round_half_up(total), 0, 100))


def _skill_matches(skill: str, candidate_skills: List[str]) -> bool:
    s = skill.lower()
    return any(c in s or s in c for c in candidate_skills)


def match_skills(candidate: List[str], required: List[str], preferred: List[str]) -> Tuple[List[str], List[str], List[str]]:
    """(matched required, matched preferred, missing required); substring match either way, case-insensitive"""
    lowered = [c.lower() for c in candidate if c]
    matched_required = [s for s in required if _skill_matches(s, lowered)]
    matched_preferred = [s for s in preferred if _skill_matches(s, lowered)]
    missing = [s for s in required if not _skill_matches(s, lowered)]
    return matched_required, matched_preferred, missing


def skill_score(matched_required: int, total_required: int) -> float:
    if total_required == 0:
        return NO_REQUIRED_SKILLS_SCORE
    return matched_required / total_required * 100


def experience_score(candidate_years: Optional[float], min_years: Optional[float], max_years: Optional[float]) -> float:
    years = candidate_years or 0
    low = min_years or 0
    high = max_years or DEFAULT_MAX_EXPERIENCE
    if years < low:
        return max(0.0, 100 - (low - years) * UNDER_EXPERIENCE_PENALTY)
    if years > high:
        return max(OVER_EXPERIENCE_FLOOR, 100 - (years - high) * OVER_EXPERIENCE_PENALTY)
    return 100.0


def education_score(highest_degree: Optional[str]) -> float:
    return EDUCATION_WITH_DEGREE if highest_degree and highest_degree.strip() else EDUCATION_WITHOUT_DEGREE


def keyword_score(profile_embedding: List[float], requirement_embedding: List[float]) -> int:
    if not profile_embedding or not requirement_embedding or len(profile_embedding) != len(requirement_embedding):
        logger.warning(
            f"Embeddings missing or mismatched ({len(profile_embedding or [])} vs "
            f"{len(requirement_embedding or [])} dims); treating similarity as 0"
        )
        return similarity_to_percentage(0.0)
    return similarity_to_percentage(cosine_similarity(profile_embedding, requirement_embedding))


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item.lower() not in seen:
            seen.add(item.lower())
            out.append(item)
    return out


class MatchingEngine:
    def __init__(self, explainer: Optional[MatchExplainer] = None):
        self.explainer = explainer

    def _explain(self, subject_id, target_id, profile, requirement, score) -> Tuple[str, str]:
        if self.explainer is None:
            return template_explanation(score), "template"
        try:
            return self.explainer.explain(profile, requirement, requirement.title, score), "generated"
        except Exception as e:
            degraded = ScoringDegraded(
                f"Match explanation unavailable: {e}",
                subject_id=subject_id,
                target_id=target_id,
                cause=e,
            )
            logger.warning(f"{degraded.message}", extra={"context": degraded.to_dict()})
            return template_explanation(score), "template"

    def score(
        self,
        subject_id: str,
        target_id: str,
        profile: StructuredProfile,
        requirement: StructuredRequirement,
    ) -> MatchScore:
        matched_req, matched_pref, missing = match_skills(
            profile.skills, requirement.required_skills, requirement.preferred_skills
        )
        components = ComponentScores(
            skill=skill_score(len(matched_req), len(requirement.required_skills)),
            experience=experience_score(
                profile.total_years_experience, requirement.min_experience, requirement.max_experience
            ),
            education=education_score(profile.highest_degree),
            keyword=keyword_score(profile.embedding, requirement.embedding),
        )
        overall = calculate_match_score(
            components.skill, components.experience, components.education, components.keyword
        )
        explanation, source = self._explain(subject_id, target_id, profile, requirement, overall)

        logger.info(f"Match calculated: subject={subject_id} target={target_id} score={overall}")
        return MatchScore(
            subject_id=subject_id,
            target_id=target_id,
            overall_score=overall,
            component_scores=components,
            matched_skills=_dedupe(matched_req + matched_pref),
            missing_skills=missing,
            explanation=explanation,
            explanation_source=source,
        )


class MatchingService:
    """Loads stored analyses, scores pairs and keeps one row per (subject, target)"""

    def __init__(self, engine: MatchingEngine, profiles, requirements, matches, concurrency: int = 5):
        self.engine = engine
        self.profiles = profiles
        self.requirements = requirements
        self.matches = matches
        self.concurrency = concurrency

    async def load_profile(self, subject_id: str) -> StructuredProfile:
        row = await self.profiles.find_one({"subject_id": subject_id})
        if not row:
            raise NotFoundError("Resume not analyzed yet", resource="profile", resource_id=subject_id)
        return StructuredProfile.model_validate(strip_id(row))

    async def load_requirement(self, target_id: str) -> StructuredRequirement:
        row = await self.requirements.find_one({"target_id": target_id})
        if not row or not row.get("analysis"):
            raise NotFoundError("Job posting not analyzed yet", resource="requirement", resource_id=target_id)
        return StructuredRequirement.model_validate(row["analysis"])

    async def list_requirements(self, limit: int) -> List[StructuredRequirement]:
        rows = await self.requirements.find({"status": "ANALYZED"}).to_list(length=limit or None)
        return [StructuredRequirement.model_validate(r["analysis"]) for r in rows if r.get("analysis")]

    async def save(self, match: MatchScore) -> MatchScore:
        with ExceptionContext("save_match", logger, subject_id=match.subject_id, target_id=match.target_id):
            await self.matches.update_one(
                {"subject_id": match.subject_id, "target_id": match.target_id},
                {"$set": match.model_dump()},
                upsert=True,
            )
        return match

    async def save_many(self, matches: List[MatchScore]) -> None:
        for m in matches:
            await self.save(m)

    async def _score(self, subject_id, target_id, profile, requirement) -> MatchScore:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, self.engine.score, subject_id, target_id, profile, requirement
        )

    async def calculate(self, subject_id: str, target_id: str) -> MatchScore:
        profile = await self.load_profile(subject_id)
        requirement = await self.load_requirement(target_id)
        match = await self._score(subject_id, target_id, profile, requirement)
        return await self.save(match)

    async def get(self, subject_id: str, target_id: str) -> Optional[MatchScore]:
        row = await self.matches.find_one({"subject_id": subject_id, "target_id": target_id})
        return MatchScore.model_validate(strip_id(row)) if row else None

    async def get_or_calculate(self, subject_id: str, target_id: str) -> MatchScore:
        cached = await self.get(subject_id, target_id)
        if cached:
            return cached
        return await self.calculate(subject_id, target_id)

    async def score_against_targets(
        self,
        subject_id: str,
        profile: StructuredProfile,
        requirements: List[StructuredRequirement],
        concurrency: Optional[int] = None,
    ) -> List[MatchScore]:
        """Score one profile against many postings in memory, best first.

        A failing pair is logged and left out; it never fails the batch.
        """
        sem = asyncio.Semaphore(concurrency or self.concurrency)

        async def one(requirement: StructuredRequirement) -> Optional[MatchScore]:
            async with sem:
                try:
                    return await self._score(subject_id, requirement.target_id, profile, requirement)
                except Exception as e:
                    logger.warning(f"Failed to calculate match: subject={subject_id} target={requirement.target_id}: {e}")
                    return None

        results = await asyncio.gather(*(one(r) for r in requirements))
        scored = [r for r in results if r is not None]
        scored.sort(key=lambda m: m.overall_score, reverse=True)
        return scored

    async def refresh_subject(self, subject_id: str, max_targets: int = 50) -> List[MatchScore]:
        """Re-score a stored profile against the analyzed postings and store the results"""
        profile = await self.load_profile(subject_id)
        requirements = await self.list_requirements(max_targets)
        scores = await self.score_against_targets(subject_id, profile, requirements)
        await self.save_many(scores)
        logger.info(f"Matches refreshed: subject={subject_id} count={len(scores)}")
        return scores

    async def list_for_subject(self, subject_id: str, page: int = 1, limit: int = 10) -> Tuple[List[MatchScore], int]:
        rows = await self.matches.find({"subject_id": subject_id}).to_list(length=None)
        scores = sorted(
            (MatchScore.model_validate(strip_id(r)) for r in rows),
            key=lambda m: m.overall_score,
            reverse=True,
        )
        start = (max(page, 1) - 1) * limit
        return scores[start:start + limit], len(scores)

    async def update_status(self, subject_id: str, target_id: str, status: str) -> MatchScore:
        if status not in MATCH_STATUSES:
            raise ValidationError(f"Invalid match status: {status}", field="status", value=status)
        existing = await self.get(subject_id, target_id)
        if existing is None:
            raise NotFoundError("Match not found", resource="match", resource_id=f"{subject_id}/{target_id}")

        shortlisted_at = datetime.utcnow() if status == "SHORTLISTED" else None
        await self.matches.update_one(
            {"subject_id": subject_id, "target_id": target_id},
            {"$set": {"status": status, "shortlisted_at": shortlisted_at}},
        )
        logger.info(f"Match status updated: subject={subject_id} target={target_id} status={status}")
        return existing.model_copy(update={"status": status, "shortlisted_at": shortlisted_at})
