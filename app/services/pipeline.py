"""
Processing runs expressed as LangGraph state graphs.

A resume run walks upload -> extract -> analyze -> embed -> match ->
finalize, advancing the progress tracker at every stage boundary. Nothing
is persisted until finalize, so a failed run leaves no profile and no match
rows behind: only the FAILED progress record and document status.
"""
import asyncio
import mimetypes
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple, TypedDict

import requests
from langgraph.graph import END, StateGraph

from app.models.models import (
    PDF_MEDIA_TYPE,
    Document,
    ExtractionResult,
    MatchScore,
    ProfileAnalysis,
    RequirementAnalysis,
    StructuredProfile,
    StructuredRequirement,
)
from app.models.progress import JobStage
from app.models.schemas import DocumentStatus
from app.services.analyzer import StructuredAnalyzer
from app.services.embeddings import EmbeddingService
from app.services.extraction import TextExtractionEngine
from app.services.matching import MatchingService
from app.services.progress import JobProgressTracker
from app.utils.config import WorkerSettings
from app.utils.exceptions import (
    AnalysisError,
    ExceptionContext,
    ExtractionError,
    NotFoundError,
    ValidationError,
    retry_async,
)
from app.utils.logging_config import get_logger, job_logger

logger = get_logger(__name__)


def new_job_id() -> str:
    return uuid.uuid4().hex


def guess_media_type(name: str) -> str:
    if name.lower().endswith(".pdf"):
        return PDF_MEDIA_TYPE
    return mimetypes.guess_type(name)[0] or "application/octet-stream"


def read_source(location: str, timeout: int = 30) -> bytes:
    """Bytes of a local path or an http(s) URL"""
    if location.startswith(("http://", "https://")):
        try:
            resp = requests.get(location, timeout=timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise ExtractionError(f"Could not download document: {e}", filename=location, cause=e) from e
        return resp.content
    path = Path(location)
    if not path.is_file():
        raise ExtractionError(f"File not found: {location}", filename=location)
    return path.read_bytes()


class ResumeState(TypedDict, total=False):
    job_id: str
    subject_id: str
    source_location: str
    filename: Optional[str]
    document: Document
    extraction: ExtractionResult
    analysis: ProfileAnalysis
    profile: StructuredProfile
    matches: List[MatchScore]


class ResumeProcessor:
    def __init__(
        self,
        engine: TextExtractionEngine,
        analyzer: StructuredAnalyzer,
        embeddings: EmbeddingService,
        matching: MatchingService,
        tracker: JobProgressTracker,
        documents,
        profiles,
        settings: WorkerSettings,
        loader: Callable[[str], bytes] = read_source,
    ):
        self.engine = engine
        self.analyzer = analyzer
        self.embeddings = embeddings
        self.matching = matching
        self.tracker = tracker
        self.documents = documents
        self.profiles = profiles
        self.settings = settings
        self._loader = loader
        self.graph = self._build_graph()

    def _build_graph(self):
        g = StateGraph(ResumeState)
        g.add_node("upload", self.node_upload)
        g.add_node("extract", self.node_extract)
        g.add_node("analyze", self.node_analyze)
        g.add_node("embed", self.node_embed)
        g.add_node("match", self.node_match)
        g.add_node("finalize", self.node_finalize)
        g.set_entry_point("upload")
        g.add_edge("upload", "extract")
        g.add_edge("extract", "analyze")
        g.add_edge("analyze", "embed")
        g.add_edge("embed", "match")
        g.add_edge("match", "finalize")
        g.add_edge("finalize", END)
        return g.compile()

    async def _set_document(self, subject_id: str, **fields):
        fields["updated_at"] = datetime.utcnow()
        await self.documents.update_one({"subject_id": subject_id}, {"$set": fields})

    # -------- queueing --------

    async def prepare(self, subject_id: str, source_location: str, filename: Optional[str] = None) -> str:
        """Register the document, open a progress record and return the job id"""
        job_id = new_job_id()
        name = filename or Path(source_location).name
        now = datetime.utcnow()
        await self.documents.update_one(
            {"subject_id": subject_id},
            {
                "$set": {
                    "filename": name,
                    "source_location": source_location,
                    "media_type": guess_media_type(name),
                    "status": DocumentStatus.PENDING.value,
                    "processing_error": None,
                    "last_job_id": job_id,
                    "updated_at": now,
                },
                "$setOnInsert": {"subject_id": subject_id, "created_at": now},
            },
            upsert=True,
        )
        await self.tracker.init(job_id, subject_id)
        logger.info(f"Resume queued for processing: subject={subject_id} job={job_id}")
        return job_id

    async def prepare_reprocess(self, subject_id: str) -> Tuple[str, dict]:
        doc = await self.documents.find_one({"subject_id": subject_id})
        if not doc:
            raise NotFoundError("Resume not found", resource="document", resource_id=subject_id)
        if doc.get("status") != DocumentStatus.FAILED.value:
            raise ValidationError(
                "Only failed resumes can be reprocessed", field="status", value=doc.get("status")
            )
        job_id = await self.prepare(subject_id, doc["source_location"], doc.get("filename"))
        return job_id, doc

    # -------- graph nodes --------

    async def node_upload(self, state: ResumeState):
        job_id, subject_id = state["job_id"], state["subject_id"]
        await self.tracker.advance(job_id, JobStage.UPLOADING)
        await self._set_document(subject_id, status=DocumentStatus.PROCESSING.value)

        loop = asyncio.get_running_loop()
        content = await loop.run_in_executor(None, self._loader, state["source_location"])
        name = state.get("filename") or Path(state["source_location"]).name
        return {"document": Document(content=content, media_type=guess_media_type(name), filename=name)}

    async def node_extract(self, state: ResumeState):
        job_id = state["job_id"]
        await self.tracker.advance(job_id, JobStage.EXTRACTING)
        loop = asyncio.get_running_loop()
        extraction = await loop.run_in_executor(None, self.engine.extract, state["document"])
        if not extraction.text.strip():
            raise ExtractionError(
                "No text could be extracted from the document",
                filename=state["document"].filename,
                details={"warnings": extraction.warnings},
            )
        if extraction.is_low_confidence:
            logger.warning(
                f"Low confidence extraction for {state['subject_id']}: {extraction.confidence:.2f} {extraction.warnings}"
            )
        await self.tracker.update_stage_percent(
            job_id, 100,
            f"Extracted {extraction.page_count} page(s) via {extraction.method.value} "
            f"(confidence {extraction.confidence:.2f})",
        )
        return {"extraction": extraction}

    async def node_analyze(self, state: ResumeState):
        await self.tracker.advance(state["job_id"], JobStage.ANALYZING)
        loop = asyncio.get_running_loop()

        async def call():
            return await loop.run_in_executor(None, self.analyzer.analyze_profile, state["extraction"].text)

        analysis = await retry_async(
            call,
            max_attempts=self.settings.max_retries,
            backoff_factor=self.settings.retry_backoff_seconds,
            exceptions=(AnalysisError,),
            logger=logger,
        )
        return {"analysis": analysis}

    async def node_embed(self, state: ResumeState):
        await self.tracker.advance(state["job_id"], JobStage.GENERATING_EMBEDDINGS)
        analysis = state["analysis"]
        text = " ".join(analysis.skills) or analysis.summary
        loop = asyncio.get_running_loop()
        vector = await loop.run_in_executor(None, self.embeddings.embed, text)
        profile = StructuredProfile(
            **analysis.model_dump(),
            subject_id=state["subject_id"],
            embedding=vector,
            embedding_provider=self.embeddings.provider_name,
            embedding_dimension=len(vector),
        )
        return {"profile": profile}

    async def node_match(self, state: ResumeState):
        await self.tracker.advance(state["job_id"], JobStage.MATCHING)
        if not self.settings.match_on_process:
            return {"matches": []}
        requirements = await self.matching.list_requirements(self.settings.max_match_targets)
        matches = await self.matching.score_against_targets(
            state["subject_id"], state["profile"], requirements, self.settings.match_concurrency
        )
        return {"matches": matches}

    async def _restore(self, collection, query, previous) -> None:
        await collection.delete_one(query)
        if previous is not None:
            await collection.insert_one(previous)

    async def _rollback(self, subject_id: str, previous_profile, previous_matches, written: List[str]) -> None:
        """Put profile and match rows back the way they were before finalize started"""
        try:
            await self._restore(self.profiles, {"subject_id": subject_id}, previous_profile)
            for target_id in written:
                await self._restore(
                    self.matching.matches,
                    {"subject_id": subject_id, "target_id": target_id},
                    previous_matches.get(target_id),
                )
        except Exception as e:
            logger.error(f"Rollback incomplete for subject {subject_id}: {e}")

    async def node_finalize(self, state: ResumeState):
        job_id, subject_id = state["job_id"], state["subject_id"]
        await self.tracker.advance(job_id, JobStage.FINALIZING)
        profile, extraction = state["profile"], state["extraction"]
        matches = state.get("matches", [])

        previous_profile = await self.profiles.find_one({"subject_id": subject_id})
        previous_matches = {}
        for match in matches:
            previous_matches[match.target_id] = await self.matching.matches.find_one(
                {"subject_id": subject_id, "target_id": match.target_id}
            )

        # match rows first; the profile only lands once all of them are stored
        written: List[str] = []
        try:
            for match in matches:
                written.append(match.target_id)
                await self.matching.save(match)
            with ExceptionContext("save_profile", logger, subject_id=subject_id, job_id=job_id):
                await self.profiles.update_one(
                    {"subject_id": subject_id}, {"$set": profile.model_dump()}, upsert=True
                )
            await self._set_document(
                subject_id,
                status=DocumentStatus.ANALYZED.value,
                processing_error=None,
                raw_text=extraction.text,
                extraction={
                    "method": extraction.method.value,
                    "confidence": extraction.confidence,
                    "page_count": extraction.page_count,
                    "warnings": extraction.warnings,
                },
                analyzed_at=datetime.utcnow(),
            )
        except Exception:
            await self._rollback(subject_id, previous_profile, previous_matches, written)
            raise

        await self.tracker.complete(job_id, {
            "match_count": len(matches),
            "extraction_method": extraction.method.value,
            "confidence": extraction.confidence,
        })
        return {"profile": profile}

    # -------- entry point --------

    async def run(self, job_id: str, subject_id: str, source_location: str, filename: Optional[str] = None) -> ResumeState:
        log = job_logger(logger, job_id, subject_id)
        log.info("Processing resume")
        try:
            state = await self.graph.ainvoke({
                "job_id": job_id,
                "subject_id": subject_id,
                "source_location": source_location,
                "filename": filename,
            })
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or e.__class__.__name__
            log.error(f"Resume processing failed: {message}")
            await self.tracker.fail(job_id, message)
            await self._set_document(subject_id, status=DocumentStatus.FAILED.value, processing_error=message)
            raise
        log.info(f"Resume processed: matches={len(state.get('matches', []))}")
        return state


class RequirementProcessor:
    """Analyze and embed a job posting"""

    def __init__(self, analyzer: StructuredAnalyzer, embeddings: EmbeddingService, requirements):
        self.analyzer = analyzer
        self.embeddings = embeddings
        self.requirements = requirements

    async def prepare(self, target_id: str, title: str, description: str) -> str:
        now = datetime.utcnow()
        await self.requirements.update_one(
            {"target_id": target_id},
            {
                "$set": {
                    "title": title,
                    "description": description,
                    "status": "PENDING",
                    "processing_error": None,
                    "updated_at": now,
                },
                "$setOnInsert": {"target_id": target_id, "created_at": now},
            },
            upsert=True,
        )
        job_id = new_job_id()
        logger.info(f"Job posting queued for analysis: target={target_id} job={job_id}")
        return job_id

    async def run(self, target_id: str) -> StructuredRequirement:
        row = await self.requirements.find_one({"target_id": target_id})
        if not row:
            raise NotFoundError("Job posting not found", resource="requirement", resource_id=target_id)

        loop = asyncio.get_running_loop()
        try:
            analysis: RequirementAnalysis = await loop.run_in_executor(
                None, self.analyzer.analyze_requirement, row["description"], row["title"]
            )
            text = " ".join(analysis.required_skills + analysis.preferred_skills) or row["title"]
            vector = await loop.run_in_executor(None, self.embeddings.embed, text)
        except Exception as e:
            message = getattr(e, "message", None) or str(e)
            await self.requirements.update_one(
                {"target_id": target_id},
                {"$set": {"status": "FAILED", "processing_error": message, "updated_at": datetime.utcnow()}},
            )
            raise

        requirement = StructuredRequirement(
            **analysis.model_dump(),
            target_id=target_id,
            title=row["title"],
            embedding=vector,
            embedding_provider=self.embeddings.provider_name,
            embedding_dimension=len(vector),
        )
        await self.requirements.update_one(
            {"target_id": target_id},
            {"$set": {
                "status": "ANALYZED",
                "processing_error": None,
                "analysis": requirement.model_dump(),
                "updated_at": datetime.utcnow(),
            }},
        )
        logger.info(f"Job posting analyzed: target={target_id} required_skills={len(requirement.required_skills)}")
        return requirement
