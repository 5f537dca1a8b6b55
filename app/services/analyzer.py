"""
Structured analysis of resumes and job postings through a local LLM.

Every reply is parsed as JSON and validated against a pydantic schema.
Malformed JSON, missing keys or wrong types raise ``AnalysisError``; nothing
is silently defaulted.
"""
from abc import ABC, abstractmethod
from typing import Callable, Type, TypeVar

import requests
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from app.helpers.prompts import (
    EXPLANATION_PROMPT,
    EXPLANATION_SYSTEM_PROMPT,
    JOB_PROMPT,
    JOB_SYSTEM_PROMPT,
    RESUME_PROMPT,
    RESUME_SYSTEM_PROMPT,
    SKILL_GAP_PROMPT,
    SKILL_GAP_SYSTEM_PROMPT,
)
from app.models.models import (
    ProfileAnalysis,
    RequirementAnalysis,
    SkillGapAnalysis,
)
from app.utils.config import AnalyzerSettings
from app.utils.exceptions import AnalysisError
from app.utils.logging_config import get_logger, log_function_call
from app.utils.utils import extract_json, ollama_generate, truncate_text

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

# keeps prompts inside the context window of small local models
MAX_PROMPT_TEXT = 12000


class StructuredAnalyzer(ABC):
    """Turns free text into validated structured fields"""

    @abstractmethod
    def analyze_profile(self, text: str) -> ProfileAnalysis:
        ...

    @abstractmethod
    def analyze_requirement(self, text: str, title: str) -> RequirementAnalysis:
        ...

    @abstractmethod
    def analyze_skill_gap(
        self, profile: ProfileAnalysis, requirement: RequirementAnalysis, title: str
    ) -> SkillGapAnalysis:
        ...


class MatchExplainer(ABC):
    """Optional natural-language explanation of a match score"""

    @abstractmethod
    def explain(
        self, profile: ProfileAnalysis, requirement: RequirementAnalysis, title: str, score: int
    ) -> str:
        ...


def parse_structured(raw: str, schema: Type[M], operation: str) -> M:
    """Validate an LLM reply against ``schema`` or raise AnalysisError"""
    try:
        data = extract_json(raw)
    except ValueError as e:
        logger.error(f"{operation}: unparseable reply: {raw[:500]!r}")
        raise AnalysisError(f"Analyzer returned malformed JSON for {operation}", operation=operation, cause=e) from e

    if not isinstance(data, dict):
        raise AnalysisError(
            f"Analyzer returned {type(data).__name__} instead of an object for {operation}",
            operation=operation,
        )
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        logger.error(f"{operation}: schema validation failed: {errors}")
        raise AnalysisError(
            f"Analyzer output failed validation for {operation}",
            operation=operation,
            errors=errors,
            cause=e,
        ) from e


class OllamaAnalyzer(StructuredAnalyzer):
    def __init__(self, settings: AnalyzerSettings, generate: Callable[..., str] = ollama_generate):
        self.settings = settings
        self._generate = generate

    def _ask(self, system: str, prompt: str, operation: str) -> str:
        try:
            return self._generate(
                prompt,
                model=self.settings.model_name,
                base_url=self.settings.base_url,
                temperature=self.settings.temperature,
                system=system,
                json_mode=True,
                timeout=self.settings.timeout,
            )
        except requests.RequestException as e:
            raise AnalysisError(f"LLM request failed for {operation}: {e}", operation=operation, cause=e) from e

    @log_function_call
    def analyze_profile(self, text: str) -> ProfileAnalysis:
        prompt = RESUME_PROMPT.format(resume_text=truncate_text(text, MAX_PROMPT_TEXT))
        raw = self._ask(RESUME_SYSTEM_PROMPT, prompt, "analyze_profile")
        return parse_structured(raw, ProfileAnalysis, "analyze_profile")

    @log_function_call
    def analyze_requirement(self, text: str, title: str) -> RequirementAnalysis:
        prompt = JOB_PROMPT.format(title=title, description=truncate_text(text, MAX_PROMPT_TEXT))
        raw = self._ask(JOB_SYSTEM_PROMPT, prompt, "analyze_requirement")
        return parse_structured(raw, RequirementAnalysis, "analyze_requirement")

    @log_function_call
    def analyze_skill_gap(
        self, profile: ProfileAnalysis, requirement: RequirementAnalysis, title: str
    ) -> SkillGapAnalysis:
        prompt = SKILL_GAP_PROMPT.format(
            title=title,
            candidate_skills=", ".join(profile.skills) or "(none listed)",
            required_skills=", ".join(requirement.required_skills) or "(none listed)",
            preferred_skills=", ".join(requirement.preferred_skills) or "(none listed)",
        )
        raw = self._ask(SKILL_GAP_SYSTEM_PROMPT, prompt, "analyze_skill_gap")
        return parse_structured(raw, SkillGapAnalysis, "analyze_skill_gap")


class OllamaExplainer(MatchExplainer):
    def __init__(self, settings: AnalyzerSettings, generate: Callable[..., str] = ollama_generate):
        self.settings = settings
        self._generate = generate

    def explain(
        self, profile: ProfileAnalysis, requirement: RequirementAnalysis, title: str, score: int
    ) -> str:
        prompt = EXPLANATION_PROMPT.format(
            title=title,
            requirements=", ".join(requirement.required_skills),
            summary=profile.summary,
            skills=", ".join(profile.skills),
            score=score,
        )
        text = self._generate(
            prompt,
            model=self.settings.model_name,
            base_url=self.settings.base_url,
            temperature=self.settings.explanation_temperature,
            system=EXPLANATION_SYSTEM_PROMPT,
            timeout=self.settings.timeout,
        ).strip()
        if not text:
            raise AnalysisError("Explainer returned an empty reply", operation="explain")
        return text
