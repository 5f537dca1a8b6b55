import pytest

from app.services.matching import (
    MatchingEngine,
    MatchingService,
    calculate_match_score,
    education_score,
    experience_score,
    keyword_score,
    match_skills,
    skill_score,
)
from app.utils.exceptions import NotFoundError, ValidationError
from conftest import FakeCollection, make_profile, make_requirement


class RecordingExplainer:
    def __init__(self, reply="Good fit.", error=None):
        self.reply = reply
        self.error = error

    def explain(self, profile, requirement, title, score):
        if self.error:
            raise self.error
        return self.reply


class TestScoringFunctions:
    """Deterministic component and overall scores"""

    def test_weighted_overall_rounds_half_up(self):
        # 32 + 17.5 + 9 + 18 = 76.5
        assert calculate_match_score(80, 70, 60, 90) == 77

    def test_overall_bounds(self):
        assert calculate_match_score(0, 0, 0, 0) == 0
        assert calculate_match_score(100, 100, 100, 100) == 100

    def test_skill_matching_is_case_insensitive_substring(self):
        matched_req, matched_pref, missing = match_skills(
            ["python 3", "React.js", "docker"], ["Python", "React", "Go"], ["Docker", "Rust"]
        )
        assert matched_req == ["Python", "React"]
        assert matched_pref == ["Docker"]
        assert missing == ["Go"]

    def test_skill_score(self):
        assert skill_score(1, 2) == 50
        assert skill_score(0, 0) == 50
        assert skill_score(3, 3) == 100

    def test_experience_score(self):
        assert experience_score(5, 3, 8) == 100
        assert experience_score(1, 3, 8) == 70
        assert experience_score(0, 10, None) == 0
        assert experience_score(12, 3, 8) == 80
        assert experience_score(40, 3, 8) == 50
        # a zero maximum falls back to 20 years
        assert experience_score(15, 0, 0) == 100

    def test_education_score(self):
        assert education_score("Master's") == 80
        assert education_score(None) == 60
        assert education_score("  ") == 60

    def test_keyword_score(self):
        assert keyword_score([1.0, 0.0], [1.0, 0.0]) == 100
        assert keyword_score([1.0, 0.0], [-1.0, 0.0]) == 0
        assert keyword_score([1.0, 0.0], [0.0, 1.0]) == 50

    def test_missing_or_mismatched_embeddings_are_neutral(self):
        assert keyword_score([], [1.0, 0.0]) == 50
        assert keyword_score([1.0, 0.0, 0.0], [1.0, 0.0]) == 50


class TestMatchingEngine:
    """Scoring a profile against one posting"""

    def test_score_components(self):
        match = MatchingEngine().score("cand-1", "job-1", make_profile(), make_requirement())
        assert match.component_scores.skill == 50
        assert match.component_scores.experience == 100
        assert match.component_scores.education == 80
        assert match.component_scores.keyword == 100
        assert match.overall_score == 77
        assert match.matched_skills == ["Python", "Docker"]
        assert match.missing_skills == ["Kubernetes"]
        assert match.explanation_source == "template"
        assert match.explanation == "Match score: 77%. Analysis based on skill and experience alignment."

    def test_no_required_skills(self):
        match = MatchingEngine().score(
            "cand-1", "job-1", make_profile(), make_requirement(required_skills=[], preferred_skills=[])
        )
        assert match.component_scores.skill == 50
        assert match.missing_skills == []

    def test_generated_explanation(self):
        match = MatchingEngine(RecordingExplainer("Strong backend profile.")).score(
            "cand-1", "job-1", make_profile(), make_requirement()
        )
        assert match.explanation == "Strong backend profile."
        assert match.explanation_source == "generated"

    def test_explainer_failure_degrades_to_template(self):
        match = MatchingEngine(RecordingExplainer(error=RuntimeError("LLM down"))).score(
            "cand-1", "job-1", make_profile(), make_requirement()
        )
        assert match.overall_score == 77
        assert match.explanation_source == "template"


class TestMatchingService:
    """Persistence and fan-out of match scores"""

    @pytest.fixture
    def service(self):
        return MatchingService(MatchingEngine(), FakeCollection(), FakeCollection(), FakeCollection(), concurrency=2)

    async def _store(self, service, profile=None, requirements=()):
        profile = profile or make_profile()
        await service.profiles.insert_one(profile.model_dump())
        for requirement in requirements:
            await service.requirements.insert_one({
                "target_id": requirement.target_id,
                "title": requirement.title,
                "description": "...",
                "status": "ANALYZED",
                "analysis": requirement.model_dump(),
            })

    @pytest.mark.asyncio
    async def test_calculate_stores_one_row_per_pair(self, service):
        await self._store(service, requirements=[make_requirement()])
        first = await service.calculate("cand-1", "job-1")
        await service.calculate("cand-1", "job-1")
        assert first.overall_score == 77
        assert len(service.matches.rows) == 1

    @pytest.mark.asyncio
    async def test_get_or_calculate_uses_stored_row(self, service):
        await self._store(service, requirements=[make_requirement()])
        stored = await service.calculate("cand-1", "job-1")
        await service.matches.update_one(
            {"subject_id": "cand-1", "target_id": "job-1"}, {"$set": {"overall_score": 12}}
        )
        cached = await service.get_or_calculate("cand-1", "job-1")
        assert stored.overall_score == 77
        assert cached.overall_score == 12

    @pytest.mark.asyncio
    async def test_missing_profile_or_requirement(self, service):
        with pytest.raises(NotFoundError):
            await service.calculate("nobody", "job-1")
        await self._store(service)
        with pytest.raises(NotFoundError):
            await service.calculate("cand-1", "job-404")

    @pytest.mark.asyncio
    async def test_unanalyzed_requirement_is_not_found(self, service):
        await self._store(service)
        await service.requirements.insert_one({"target_id": "job-2", "title": "x", "status": "PENDING"})
        with pytest.raises(NotFoundError):
            await service.load_requirement("job-2")

    @pytest.mark.asyncio
    async def test_score_against_targets_sorted_best_first(self, service):
        requirements = [
            make_requirement("job-low", embedding=[-1.0, 0.0, 0.0, 0.0], required_skills=["Rust"]),
            make_requirement("job-high", required_skills=["Python"]),
            make_requirement("job-mid"),
        ]
        scores = await service.score_against_targets("cand-1", make_profile(), requirements)
        assert [s.target_id for s in scores] == ["job-high", "job-mid", "job-low"]
        assert service.matches.rows == []

    @pytest.mark.asyncio
    async def test_failing_pair_is_skipped(self, service):
        class FlakyEngine(MatchingEngine):
            def score(self, subject_id, target_id, profile, requirement):
                if target_id == "job-bad":
                    raise RuntimeError("boom")
                return super().score(subject_id, target_id, profile, requirement)

        service.engine = FlakyEngine()
        scores = await service.score_against_targets(
            "cand-1", make_profile(), [make_requirement("job-bad"), make_requirement("job-ok")]
        )
        assert [s.target_id for s in scores] == ["job-ok"]

    @pytest.mark.asyncio
    async def test_refresh_subject(self, service):
        await self._store(service, requirements=[make_requirement("job-1"), make_requirement("job-2")])
        scores = await service.refresh_subject("cand-1")
        assert len(scores) == 2
        assert len(service.matches.rows) == 2

    @pytest.mark.asyncio
    async def test_list_for_subject_paginates(self, service):
        await self._store(service, requirements=[
            make_requirement("job-1", required_skills=["Rust"]),
            make_requirement("job-2"),
            make_requirement("job-3", required_skills=["Python"]),
        ])
        await service.refresh_subject("cand-1")
        page, total = await service.list_for_subject("cand-1", page=1, limit=2)
        assert total == 3
        assert [m.target_id for m in page] == ["job-3", "job-2"]
        page, _ = await service.list_for_subject("cand-1", page=2, limit=2)
        assert [m.target_id for m in page] == ["job-1"]

    @pytest.mark.asyncio
    async def test_update_status(self, service):
        await self._store(service, requirements=[make_requirement()])
        await service.calculate("cand-1", "job-1")
        updated = await service.update_status("cand-1", "job-1", "SHORTLISTED")
        assert updated.status == "SHORTLISTED"
        assert updated.shortlisted_at is not None
        assert service.matches.rows[0]["status"] == "SHORTLISTED"

        rejected = await service.update_status("cand-1", "job-1", "REJECTED")
        assert rejected.shortlisted_at is None

    @pytest.mark.asyncio
    async def test_update_status_errors(self, service):
        with pytest.raises(ValidationError):
            await service.update_status("cand-1", "job-1", "HIRED")
        with pytest.raises(NotFoundError):
            await service.update_status("cand-1", "job-1", "SHORTLISTED")
