from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PDF_MEDIA_TYPE = "application/pdf"


def dedupe_skills(skills: List[str]) -> List[str]:
    """Strip, drop empties and remove case-insensitive duplicates (first spelling wins)."""
    seen = set()
    out = []
    for s in skills:
        s = str(s).strip()
        if not s or s.lower() in seen:
            continue
        seen.add(s.lower())
        out.append(s)
    return out


# -------- Documents & extraction --------

class Document(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: bytes
    media_type: str = PDF_MEDIA_TYPE
    filename: Optional[str] = None


class ExtractionMethod(str, Enum):
    DIRECT = "direct"
    OCR = "ocr"
    HYBRID = "hybrid"


class ExtractionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    method: ExtractionMethod
    confidence: float = Field(ge=0.0, le=1.0)
    page_count: int = Field(ge=0)
    warnings: List[str] = Field(default_factory=list)

    @property
    def is_low_confidence(self) -> bool:
        return self.confidence < 0.5


class ExtractionOptions(BaseModel):
    """Per-call overrides of ExtractionSettings"""
    enable_ocr: Optional[bool] = None
    ocr_language: Optional[str] = None
    max_pages: Optional[int] = Field(default=None, ge=1)
    clean_text: Optional[bool] = None


# -------- Structured analysis --------

class ExperienceLevel(str, Enum):
    ENTRY = "Entry Level"
    JUNIOR = "Junior"
    MID = "Mid-Level"
    SENIOR = "Senior"
    STAFF = "Staff"
    PRINCIPAL = "Principal"


def _match_experience_level(v):
    if v is None or isinstance(v, ExperienceLevel):
        return v
    key = str(v).strip().lower().replace("-", " ").replace("_", " ")
    for level in ExperienceLevel:
        if level.value.lower().replace("-", " ") == key:
            return level
    # "entry" / "mid" shorthand used by several models
    aliases = {
        "entry": ExperienceLevel.ENTRY,
        "mid": ExperienceLevel.MID,
        "mid level": ExperienceLevel.MID,
        "lead": ExperienceLevel.STAFF,
    }
    if key in aliases:
        return aliases[key]
    raise ValueError(f"unknown experience level: {v!r}")


class ContactInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None


class ProfileAnalysis(BaseModel):
    """Fields the analyzer must return for a resume. No defaults: missing keys are errors."""
    model_config = ConfigDict(use_enum_values=True)

    skills: List[str]
    experience_summary: str
    total_years_experience: float = Field(ge=0, le=80)
    experience_level: ExperienceLevel
    education_summary: str
    highest_degree: Optional[str]
    ats_score: float = Field(ge=0, le=100)
    ats_issues: List[str]
    ats_suggestions: List[str]
    contact_info: ContactInfo
    certifications: List[str]
    languages: List[str]
    summary: str

    @field_validator("experience_level", mode="before")
    @classmethod
    def normalize_level(cls, v):
        return _match_experience_level(v)

    @field_validator("skills")
    @classmethod
    def normalize_skills(cls, v):
        return dedupe_skills(v)


class RequirementAnalysis(BaseModel):
    """Fields the analyzer must return for a job posting."""
    model_config = ConfigDict(use_enum_values=True)

    required_skills: List[str]
    preferred_skills: List[str]
    min_experience: float = Field(ge=0, le=80)
    max_experience: Optional[float] = Field(ge=0, le=80)
    experience_level: Optional[ExperienceLevel]
    required_education: Optional[str]
    keywords: List[str]
    responsibilities: List[str]
    benefits: List[str]

    @field_validator("experience_level", mode="before")
    @classmethod
    def normalize_level(cls, v):
        return _match_experience_level(v)

    @field_validator("required_skills", "preferred_skills")
    @classmethod
    def normalize_skills(cls, v):
        return dedupe_skills(v)

    @model_validator(mode="after")
    def check_experience_range(self):
        if self.max_experience and self.max_experience < self.min_experience:
            raise ValueError("max_experience is lower than min_experience")
        return self


class EmbeddedMixin(BaseModel):
    embedding: List[float] = Field(default_factory=list)
    embedding_provider: Optional[str] = None
    embedding_dimension: int = 0


class StructuredProfile(ProfileAnalysis, EmbeddedMixin):
    subject_id: str
    analyzed_at: datetime = Field(default_factory=datetime.utcnow)


class StructuredRequirement(RequirementAnalysis, EmbeddedMixin):
    target_id: str
    title: str
    analyzed_at: datetime = Field(default_factory=datetime.utcnow)


# -------- Matching --------

class ComponentScores(BaseModel):
    skill: float = Field(ge=0, le=100)
    experience: float = Field(ge=0, le=100)
    education: float = Field(ge=0, le=100)
    keyword: float = Field(ge=0, le=100)


class MatchScore(BaseModel):
    subject_id: str
    target_id: str
    overall_score: int = Field(ge=0, le=100)
    component_scores: ComponentScores
    matched_skills: List[str] = Field(default_factory=list)
    missing_skills: List[str] = Field(default_factory=list)
    explanation: str = ""
    explanation_source: Literal["generated", "template"] = "template"
    status: Literal["CALCULATED", "SHORTLISTED", "REJECTED"] = "CALCULATED"
    calculated_at: datetime = Field(default_factory=datetime.utcnow)
    shortlisted_at: Optional[datetime] = None


# -------- Skill gaps --------

class MissingSkill(BaseModel):
    skill: str
    importance: Literal["high", "medium", "low"]
    description: str = ""

    @field_validator("importance", mode="before")
    @classmethod
    def lower_importance(cls, v):
        return v.lower().strip() if isinstance(v, str) else v


class WeakSkill(BaseModel):
    skill: str
    current_level: str
    required_level: str


class LearningStep(BaseModel):
    skill: str
    resources: List[str]
    estimated_time: str
    priority: int = Field(ge=1, le=5)


class CourseRecommendation(BaseModel):
    skill: str
    course_name: str
    provider: str
    url: Optional[str] = None


class SkillGapAnalysis(BaseModel):
    missing_skills: List[MissingSkill]
    weak_skills: List[WeakSkill]
    learning_path: List[LearningStep]
    course_recommendations: List[CourseRecommendation]
    resume_improvements: List[str]
    estimated_time_to_ready: str


class SkillGapRecord(BaseModel):
    subject_id: str
    target_id: str
    missing_skills: List[MissingSkill] = Field(default_factory=list)
    weak_skills: List[WeakSkill] = Field(default_factory=list)
    learning_path: List[LearningStep] = Field(default_factory=list)
    course_recommendations: List[CourseRecommendation] = Field(default_factory=list)
    resume_improvements: List[str] = Field(default_factory=list)
    priority: int = 0
    estimated_time: str = ""
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def from_analysis(cls, subject_id: str, target_id: str, analysis: SkillGapAnalysis) -> "SkillGapRecord":
        return cls(
            subject_id=subject_id,
            target_id=target_id,
            missing_skills=analysis.missing_skills,
            weak_skills=analysis.weak_skills,
            learning_path=sorted(analysis.learning_path, key=lambda step: step.priority),
            course_recommendations=analysis.course_recommendations,
            resume_improvements=analysis.resume_improvements,
            priority=sum(1 for s in analysis.missing_skills if s.importance == "high"),
            estimated_time=analysis.estimated_time_to_ready,
        )


class Recommendations(BaseModel):
    top_missing_skills: List[str] = Field(default_factory=list)
    recommended_courses: List[CourseRecommendation] = Field(default_factory=list)
    resume_improvements: List[str] = Field(default_factory=list)


IMPORTANCE_WEIGHTS: Dict[str, int] = {"high": 3, "medium": 2, "low": 1}
