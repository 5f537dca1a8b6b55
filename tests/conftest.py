import copy
import os
from types import SimpleNamespace
from typing import List

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("PROGRESS_BACKEND", "memory")
os.environ.setdefault("ENABLE_OCR", "false")

import pytest

from app.models.models import (
    ProfileAnalysis,
    RequirementAnalysis,
    SkillGapAnalysis,
    StructuredProfile,
    StructuredRequirement,
)
from app.services.analyzer import StructuredAnalyzer
from app.services.embeddings import EmbeddingProvider, EmbeddingService
from app.utils.config import EmbeddingSettings, ExtractionSettings, ProgressSettings, Settings, WorkerSettings, AnalyzerSettings

RESUME_TEXT = (
    "Jane Doe - Senior Backend Engineer. Email jane@example.com. "
    "Experience: six years building Python services with FastAPI, Django and PostgreSQL on AWS. "
    "Education: BSc Computer Science. Skills: Python, FastAPI, Docker, PostgreSQL, AWS, Git."
)


class FakeCursor:
    def __init__(self, rows):
        self._rows = rows

    async def to_list(self, length=None):
        return list(self._rows if length is None else self._rows[:length])


class FakeCollection:
    """Just enough of a motor collection for the services: top-level equality queries only"""

    def __init__(self, name="fake"):
        self.name = name
        self.rows: List[dict] = []
        self.indexes = []

    @staticmethod
    def _matches(row, query):
        return all(row.get(k) == v for k, v in (query or {}).items())

    async def find_one(self, query):
        for row in self.rows:
            if self._matches(row, query):
                return copy.deepcopy(row)
        return None

    def find(self, query=None):
        return FakeCursor([copy.deepcopy(r) for r in self.rows if self._matches(r, query)])

    async def insert_one(self, doc):
        self.rows.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=len(self.rows))

    async def update_one(self, query, update, upsert=False):
        for row in self.rows:
            if self._matches(row, query):
                row.update(copy.deepcopy(update.get("$set", {})))
                return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if not upsert:
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)
        row = dict(query)
        row.update(copy.deepcopy(update.get("$setOnInsert", {})))
        row.update(copy.deepcopy(update.get("$set", {})))
        self.rows.append(row)
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=len(self.rows))

    async def delete_one(self, query):
        for i, row in enumerate(self.rows):
            if self._matches(row, query):
                del self.rows[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def count_documents(self, query):
        return sum(1 for r in self.rows if self._matches(r, query))

    async def create_index(self, keys, **kwargs):
        self.indexes.append((keys, kwargs))
        return str(keys)


def profile_payload(**overrides):
    data = {
        "skills": ["Python", "FastAPI", "Docker", "PostgreSQL"],
        "experience_summary": "Six years of backend development",
        "total_years_experience": 6,
        "experience_level": "Senior",
        "education_summary": "BSc Computer Science",
        "highest_degree": "Bachelor's",
        "ats_score": 82,
        "ats_issues": [],
        "ats_suggestions": ["Quantify achievements"],
        "contact_info": {"name": "Jane Doe", "email": "jane@example.com", "phone": None, "location": None},
        "certifications": [],
        "languages": ["English"],
        "summary": "Backend engineer focused on Python APIs",
    }
    data.update(overrides)
    return data


def requirement_payload(**overrides):
    data = {
        "required_skills": ["Python", "Kubernetes"],
        "preferred_skills": ["Docker"],
        "min_experience": 3,
        "max_experience": 8,
        "experience_level": "Senior",
        "required_education": "Bachelor's degree",
        "keywords": ["backend", "api"],
        "responsibilities": ["Build services"],
        "benefits": ["Remote"],
    }
    data.update(overrides)
    return data


def skill_gap_payload(**overrides):
    data = {
        "missing_skills": [
            {"skill": "Kubernetes", "importance": "High", "description": "Runs the platform"},
            {"skill": "Terraform", "importance": "low", "description": ""},
        ],
        "weak_skills": [{"skill": "Docker", "current_level": "basic", "required_level": "advanced"}],
        "learning_path": [
            {"skill": "Terraform", "resources": ["docs"], "estimated_time": "2 weeks", "priority": 3},
            {"skill": "Kubernetes", "resources": ["CKAD course"], "estimated_time": "6 weeks", "priority": 1},
        ],
        "course_recommendations": [
            {"skill": "Kubernetes", "course_name": "Kubernetes for Developers", "provider": "Coursera", "url": None},
        ],
        "resume_improvements": ["Mention container experience"],
        "estimated_time_to_ready": "2-3 months",
    }
    data.update(overrides)
    return data


def make_profile(subject_id="cand-1", embedding=None, **overrides) -> StructuredProfile:
    embedding = embedding if embedding is not None else [1.0, 0.0, 0.0, 0.0]
    return StructuredProfile(
        **profile_payload(**overrides),
        subject_id=subject_id,
        embedding=embedding,
        embedding_provider="fake",
        embedding_dimension=len(embedding),
    )


def make_requirement(target_id="job-1", title="Backend Engineer", embedding=None, **overrides) -> StructuredRequirement:
    embedding = embedding if embedding is not None else [1.0, 0.0, 0.0, 0.0]
    return StructuredRequirement(
        **requirement_payload(**overrides),
        target_id=target_id,
        title=title,
        embedding=embedding,
        embedding_provider="fake",
        embedding_dimension=len(embedding),
    )


class FakeAnalyzer(StructuredAnalyzer):
    """Canned structured analysis; ``fail_times`` makes the first calls raise"""

    def __init__(self, profile=None, requirement=None, skill_gap=None, error=None, fail_times=0):
        self.profile = profile or profile_payload()
        self.requirement = requirement or requirement_payload()
        self.skill_gap = skill_gap or skill_gap_payload()
        self.error = error
        self.fail_times = fail_times
        self.calls = []

    def _maybe_fail(self):
        if self.error is not None and (self.fail_times == 0 or len(self.calls) <= self.fail_times):
            raise self.error

    def analyze_profile(self, text):
        self.calls.append(("profile", text))
        self._maybe_fail()
        return ProfileAnalysis.model_validate(self.profile)

    def analyze_requirement(self, text, title):
        self.calls.append(("requirement", title))
        self._maybe_fail()
        return RequirementAnalysis.model_validate(self.requirement)

    def analyze_skill_gap(self, profile, requirement, title):
        self.calls.append(("skill_gap", title))
        self._maybe_fail()
        return SkillGapAnalysis.model_validate(self.skill_gap)


class FakeEmbeddingProvider(EmbeddingProvider):
    name = "fake"
    dimension = 4

    def __init__(self, vector=None):
        self.vector = vector or [1.0, 0.0, 0.0, 0.0]
        self.inputs = []

    def embed(self, text):
        self.inputs.append(text)
        return list(self.vector)


@pytest.fixture
def settings():
    return Settings(
        environment="testing",
        extraction=ExtractionSettings(enable_ocr=False),
        embedding=EmbeddingSettings(),
        analyzer=AnalyzerSettings(enable_explanations=False),
        progress=ProgressSettings(backend="memory"),
        worker=WorkerSettings(concurrency=2, max_retries=1, retry_backoff_seconds=0.0),
    )


@pytest.fixture
def collections():
    names = ["documents", "profiles", "requirements", "match_scores", "skill_gaps", "job_progress"]
    return {name: FakeCollection(name) for name in names}


@pytest.fixture
def embeddings(settings):
    return EmbeddingService(settings.embedding, provider=FakeEmbeddingProvider(), max_attempts=1, sleep=lambda s: None)
