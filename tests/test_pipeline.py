import pytest
from pymongo.errors import AutoReconnect

from app.models.progress import JobStage
from app.services.extraction import TextExtractionEngine
from app.services.matching import MatchingEngine, MatchingService
from app.services.pipeline import RequirementProcessor, ResumeProcessor, guess_media_type, read_source
from app.services.progress import JobProgressTracker
from app.services.ttl_store import InMemoryTTLStore
from app.utils.config import ExtractionSettings, WorkerSettings
from app.utils.exceptions import AnalysisError, DatabaseError, ExtractionError, NotFoundError, ValidationError
from conftest import RESUME_TEXT, FakeAnalyzer, FakeCollection, make_requirement

PDF_BYTES = b"%PDF-1.4\n% fake resume\n"


def build_processor(analyzer=None, embeddings=None, direct_text=RESUME_TEXT, match_on_process=True):
    engine = TextExtractionEngine(
        ExtractionSettings(enable_ocr=False), extract_direct=lambda data: (direct_text, 1)
    )
    matching = MatchingService(MatchingEngine(), FakeCollection(), FakeCollection(), FakeCollection())
    tracker = JobProgressTracker(InMemoryTTLStore())
    return ResumeProcessor(
        engine,
        analyzer or FakeAnalyzer(),
        embeddings,
        matching,
        tracker,
        FakeCollection("documents"),
        matching.profiles,
        WorkerSettings(max_retries=2, retry_backoff_seconds=0.0, match_on_process=match_on_process),
        loader=lambda location: PDF_BYTES,
    )


async def store_requirement(processor, target_id="job-1", **overrides):
    await processor.matching.requirements.insert_one({
        "target_id": target_id,
        "title": "Backend Engineer",
        "status": "ANALYZED",
        "analysis": make_requirement(target_id, **overrides).model_dump(),
    })


class TestHelpers:
    def test_guess_media_type(self):
        assert guess_media_type("cv.PDF") == "application/pdf"
        assert guess_media_type("notes.txt") == "text/plain"

    def test_read_source_missing_file(self, tmp_path):
        with pytest.raises(ExtractionError):
            read_source(str(tmp_path / "missing.pdf"))

    def test_read_source_local_file(self, tmp_path):
        path = tmp_path / "cv.pdf"
        path.write_bytes(PDF_BYTES)
        assert read_source(str(path)) == PDF_BYTES


class TestResumeProcessor:
    """End-to-end resume runs over in-memory collections"""

    @pytest.mark.asyncio
    async def test_successful_run(self, embeddings):
        processor = build_processor(embeddings=embeddings)
        await store_requirement(processor, "job-1")
        await store_requirement(processor, "job-2", required_skills=["Python"])

        job_id = await processor.prepare("cand-1", "/uploads/cv.pdf")
        state = await processor.run(job_id, "cand-1", "/uploads/cv.pdf")

        assert [m.target_id for m in state["matches"]] == ["job-2", "job-1"]
        progress = await processor.tracker.get(job_id)
        assert progress.stage == JobStage.COMPLETED
        assert progress.overall_percent == 100
        assert progress.metadata["match_count"] == 2

        doc = await processor.documents.find_one({"subject_id": "cand-1"})
        assert doc["status"] == "ANALYZED"
        assert doc["extraction"]["method"] == "direct"
        assert doc["last_job_id"] == job_id
        profile = await processor.profiles.find_one({"subject_id": "cand-1"})
        assert profile["embedding_provider"] == "fake"
        assert len(processor.matching.matches.rows) == 2

    @pytest.mark.asyncio
    async def test_embeds_skills_text(self, embeddings):
        processor = build_processor(embeddings=embeddings, match_on_process=False)
        job_id = await processor.prepare("cand-1", "/uploads/cv.pdf")
        state = await processor.run(job_id, "cand-1", "/uploads/cv.pdf")
        assert embeddings.provider.inputs == ["Python FastAPI Docker PostgreSQL"]
        assert state["matches"] == []

    @pytest.mark.asyncio
    async def test_analysis_failure_marks_failed_and_stores_nothing(self, embeddings):
        processor = build_processor(analyzer=FakeAnalyzer(error=AnalysisError("Analyzer output failed validation")), embeddings=embeddings)
        await store_requirement(processor)
        job_id = await processor.prepare("cand-1", "/uploads/cv.pdf")

        with pytest.raises(AnalysisError):
            await processor.run(job_id, "cand-1", "/uploads/cv.pdf")

        progress = await processor.tracker.get(job_id)
        assert progress.stage == JobStage.FAILED
        assert progress.overall_percent == 0
        assert progress.error == "Analyzer output failed validation"
        doc = await processor.documents.find_one({"subject_id": "cand-1"})
        assert doc["status"] == "FAILED"
        assert doc["processing_error"] == "Analyzer output failed validation"
        assert processor.profiles.rows == []
        assert processor.matching.matches.rows == []
        # retried once inside the run
        assert len(processor.analyzer.calls) == 2

    @pytest.mark.asyncio
    async def test_transient_analysis_error_recovers(self, embeddings):
        analyzer = FakeAnalyzer(error=AnalysisError("bad json"), fail_times=1)
        processor = build_processor(analyzer=analyzer, embeddings=embeddings, match_on_process=False)
        job_id = await processor.prepare("cand-1", "/uploads/cv.pdf")
        await processor.run(job_id, "cand-1", "/uploads/cv.pdf")
        assert (await processor.tracker.get(job_id)).stage == JobStage.COMPLETED

    @pytest.mark.asyncio
    async def test_empty_extraction_fails_run(self, embeddings):
        processor = build_processor(embeddings=embeddings, direct_text="")
        job_id = await processor.prepare("cand-1", "/uploads/cv.pdf")
        with pytest.raises(ExtractionError):
            await processor.run(job_id, "cand-1", "/uploads/cv.pdf")
        assert (await processor.tracker.get(job_id)).stage == JobStage.FAILED
        assert processor.analyzer.calls == []

    @staticmethod
    def fail_match_write(processor, monkeypatch, on_call=1):
        matches = processor.matching.matches
        original = matches.update_one
        calls = []

        async def update_one(query, update, upsert=False):
            calls.append(query)
            if len(calls) == on_call:
                raise DatabaseError("match write failed", operation="save_match")
            return await original(query, update, upsert=upsert)

        monkeypatch.setattr(matches, "update_one", update_one)

    @pytest.mark.asyncio
    async def test_match_write_failure_stores_no_profile(self, embeddings, monkeypatch):
        processor = build_processor(embeddings=embeddings)
        await store_requirement(processor, "job-1")
        await store_requirement(processor, "job-2", required_skills=["Python"])
        self.fail_match_write(processor, monkeypatch, on_call=2)
        job_id = await processor.prepare("cand-1", "/uploads/cv.pdf")

        with pytest.raises(DatabaseError):
            await processor.run(job_id, "cand-1", "/uploads/cv.pdf")

        assert (await processor.documents.find_one({"subject_id": "cand-1"}))["status"] == "FAILED"
        assert (await processor.tracker.get(job_id)).stage == JobStage.FAILED
        assert processor.profiles.rows == []
        assert processor.matching.matches.rows == []

    @pytest.mark.asyncio
    async def test_match_write_failure_restores_previous_rows(self, embeddings, monkeypatch):
        processor = build_processor(embeddings=embeddings)
        await store_requirement(processor, "job-1")
        await store_requirement(processor, "job-2", required_skills=["Python"])
        await processor.profiles.insert_one({"subject_id": "cand-1", "skills": ["COBOL"]})
        await processor.matching.matches.insert_one({"subject_id": "cand-1", "target_id": "job-2", "overall_score": 12})
        self.fail_match_write(processor, monkeypatch, on_call=2)
        job_id = await processor.prepare("cand-1", "/uploads/cv.pdf")

        with pytest.raises(DatabaseError):
            await processor.run(job_id, "cand-1", "/uploads/cv.pdf")

        assert processor.profiles.rows == [{"subject_id": "cand-1", "skills": ["COBOL"]}]
        assert processor.matching.matches.rows == [{"subject_id": "cand-1", "target_id": "job-2", "overall_score": 12}]

    @pytest.mark.asyncio
    async def test_progress_store_outage_does_not_fail_run(self, embeddings, monkeypatch):
        processor = build_processor(embeddings=embeddings, match_on_process=False)
        job_id = await processor.prepare("cand-1", "/uploads/cv.pdf")

        async def broken_put(key, value, ttl_seconds):
            raise AutoReconnect("progress store down")

        monkeypatch.setattr(processor.tracker.store, "put", broken_put)
        await processor.run(job_id, "cand-1", "/uploads/cv.pdf")

        assert (await processor.documents.find_one({"subject_id": "cand-1"}))["status"] == "ANALYZED"
        assert len(processor.profiles.rows) == 1

    @pytest.mark.asyncio
    async def test_reprocess_only_failed_documents(self, embeddings):
        processor = build_processor(analyzer=FakeAnalyzer(error=AnalysisError("bad")), embeddings=embeddings)
        with pytest.raises(NotFoundError):
            await processor.prepare_reprocess("cand-1")

        job_id = await processor.prepare("cand-1", "/uploads/cv.pdf")
        with pytest.raises(ValidationError):
            await processor.prepare_reprocess("cand-1")

        with pytest.raises(AnalysisError):
            await processor.run(job_id, "cand-1", "/uploads/cv.pdf")
        new_job_id, doc = await processor.prepare_reprocess("cand-1")
        assert new_job_id != job_id
        assert doc["source_location"] == "/uploads/cv.pdf"
        assert (await processor.documents.find_one({"subject_id": "cand-1"}))["status"] == "PENDING"


class TestRequirementProcessor:
    """Posting analysis and embedding"""

    @pytest.mark.asyncio
    async def test_analyze_posting(self, embeddings):
        processor = RequirementProcessor(FakeAnalyzer(), embeddings, FakeCollection())
        await processor.prepare("job-1", "Backend Engineer", "We need Python and Kubernetes")
        requirement = await processor.run("job-1")

        assert requirement.required_skills == ["Python", "Kubernetes"]
        assert embeddings.provider.inputs == ["Python Kubernetes Docker"]
        row = await processor.requirements.find_one({"target_id": "job-1"})
        assert row["status"] == "ANALYZED"
        assert row["analysis"]["title"] == "Backend Engineer"

    @pytest.mark.asyncio
    async def test_failure_recorded(self, embeddings):
        processor = RequirementProcessor(FakeAnalyzer(error=AnalysisError("bad json")), embeddings, FakeCollection())
        await processor.prepare("job-1", "Backend Engineer", "We need Python")
        with pytest.raises(AnalysisError):
            await processor.run("job-1")
        row = await processor.requirements.find_one({"target_id": "job-1"})
        assert row["status"] == "FAILED"
        assert row["processing_error"] == "bad json"

    @pytest.mark.asyncio
    async def test_unknown_posting(self, embeddings):
        processor = RequirementProcessor(FakeAnalyzer(), embeddings, FakeCollection())
        with pytest.raises(NotFoundError):
            await processor.run("job-404")
