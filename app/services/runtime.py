"""
Wiring of the long-lived service objects.

Routers receive the container through ``Depends(get_services)``, so tests can
swap it with ``app.dependency_overrides``.
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional

from app.services.analyzer import OllamaAnalyzer, OllamaExplainer, StructuredAnalyzer
from app.services.embeddings import EmbeddingService
from app.services.extraction import TextExtractionEngine, resolve_ocr_available
from app.services.matching import MatchingEngine, MatchingService
from app.services.pipeline import RequirementProcessor, ResumeProcessor
from app.services.progress import JobProgressTracker
from app.services.skill_gap import SkillGapService
from app.services.ttl_store import InMemoryTTLStore, MongoTTLStore
from app.services.worker_pool import RetryPolicy, TaskType, WorkerPool
from app.utils.config import Settings, get_settings
from app.utils.exceptions import ConfigurationError
from app.utils.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    documents: Any
    tracker: JobProgressTracker
    matching: MatchingService
    skill_gaps: SkillGapService
    resumes: ResumeProcessor
    postings: RequirementProcessor
    pool: WorkerPool


def build_services(
    settings: Settings,
    collections: Dict[str, Any],
    analyzer: Optional[StructuredAnalyzer] = None,
    embeddings: Optional[EmbeddingService] = None,
    engine: Optional[TextExtractionEngine] = None,
    matching_engine: Optional[MatchingEngine] = None,
) -> Services:
    """Assemble every service from settings and a mapping of collection name -> collection"""
    worker = settings.worker

    if engine is None:
        extraction = settings.extraction
        if extraction.enable_ocr:
            extraction = extraction.model_copy(
                update={"ocr_available": resolve_ocr_available(extraction.tesseract_cmd)}
            )
        engine = TextExtractionEngine(extraction)

    analyzer = analyzer or OllamaAnalyzer(settings.analyzer)
    embeddings = embeddings or EmbeddingService(
        settings.embedding,
        max_attempts=worker.max_retries,
        backoff_factor=worker.retry_backoff_seconds,
    )
    if matching_engine is None:
        explainer = OllamaExplainer(settings.analyzer) if settings.analyzer.enable_explanations else None
        matching_engine = MatchingEngine(explainer)

    backend = settings.progress.backend
    if backend == "memory":
        store = InMemoryTTLStore()
    elif backend == "mongo":
        store = MongoTTLStore(collections["job_progress"])
    else:
        raise ConfigurationError("Unknown progress backend", config_key="PROGRESS_BACKEND", config_value=backend)
    tracker = JobProgressTracker(store, settings.progress.ttl_seconds)

    matching = MatchingService(
        matching_engine,
        collections["profiles"],
        collections["requirements"],
        collections["match_scores"],
        concurrency=worker.match_concurrency,
    )
    skill_gaps = SkillGapService(
        analyzer, matching, collections["skill_gaps"],
        max_attempts=worker.max_retries, backoff_factor=worker.retry_backoff_seconds,
    )
    resumes = ResumeProcessor(
        engine, analyzer, embeddings, matching, tracker,
        collections["documents"], collections["profiles"], worker,
    )
    postings = RequirementProcessor(analyzer, embeddings, collections["requirements"])
    pool = WorkerPool(
        worker.concurrency,
        policies={
            TaskType.JOB_ANALYSIS: RetryPolicy(max_attempts=worker.max_retries, backoff_seconds=worker.retry_backoff_seconds),
            TaskType.MATCHING: RetryPolicy(max_attempts=2, backoff_seconds=worker.retry_backoff_seconds),
        },
    )
    return Services(
        settings=settings,
        documents=collections["documents"],
        tracker=tracker,
        matching=matching,
        skill_gaps=skill_gaps,
        resumes=resumes,
        postings=postings,
        pool=pool,
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    from app.services import db

    logger.info("Building service container")
    return build_services(get_settings(), {
        "documents": db.documents_coll,
        "profiles": db.profiles_coll,
        "requirements": db.requirements_coll,
        "match_scores": db.match_scores_coll,
        "skill_gaps": db.skill_gaps_coll,
        "job_progress": db.job_progress_coll,
    })
