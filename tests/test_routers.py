import pytest
from fastapi.testclient import TestClient

from app.services.extraction import TextExtractionEngine
from app.services.runtime import build_services, get_services
from app.utils.exceptions import AnalysisError, ConfigurationError
from conftest import RESUME_TEXT, FakeAnalyzer

PDF_BYTES = b"%PDF-1.4\n% fake resume\n"


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def services(settings, collections, embeddings, analyzer):
    engine = TextExtractionEngine(settings.extraction, extract_direct=lambda data: (RESUME_TEXT, 1))
    return build_services(settings, collections, analyzer=analyzer, embeddings=embeddings, engine=engine)


@pytest.fixture
def client(services):
    from app.main import app

    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def resume_file(tmp_path):
    path = tmp_path / "jane_doe.pdf"
    path.write_bytes(PDF_BYTES)
    return str(path)


def drain(client, services):
    client.portal.call(services.pool.join)


def analyze_job(client, services, target_id="job-1"):
    response = client.post("/api/jobs/analyze", json={
        "target_id": target_id,
        "title": "Backend Engineer",
        "description": "We need Python and Kubernetes",
    })
    assert response.status_code == 202
    drain(client, services)
    return response.json()


def process_resume(client, services, source, subject_id="cand-1"):
    response = client.post("/api/resumes/process", json={"subject_id": subject_id, "source_location": source})
    assert response.status_code == 202
    drain(client, services)
    return response.json()


class TestRoot:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_request_id_header(self, client):
        assert "X-Request-ID" in client.get("/").headers


class TestJobsRouter:
    """Posting analysis endpoints"""

    def test_analyze_job(self, client, services):
        body = analyze_job(client, services)
        assert body["status"] == "queued"
        assert body["target_id"] == "job-1"

        response = client.get("/api/jobs/job-1")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ANALYZED"
        assert data["analysis"]["required_skills"] == ["Python", "Kubernetes"]
        assert "embedding" not in data["analysis"]

    def test_unknown_job(self, client):
        response = client.get("/api/jobs/nope")
        assert response.status_code == 404
        assert response.json()["error"]["error_code"] == "NOT_FOUND"

    def test_invalid_payload(self, client):
        assert client.post("/api/jobs/analyze", json={"target_id": "job-1"}).status_code == 422


class TestResumeFlow:
    """Process a resume, then read progress, matches and skill gaps"""

    def test_full_flow(self, client, services, resume_file):
        analyze_job(client, services)
        body = process_resume(client, services, resume_file)
        assert body["subject_id"] == "cand-1"

        progress = client.get(f"/api/progress/jobs/{body['job_id']}").json()
        assert progress["stage"] == "COMPLETED"
        assert progress["overall_percent"] == 100
        assert progress["is_complete"] is True
        assert client.get("/api/progress/subjects/cand-1").json()["job_id"] == body["job_id"]

        doc = client.get("/api/resumes/cand-1").json()
        assert doc["status"] == "ANALYZED"
        assert doc["filename"] == "jane_doe.pdf"
        assert "raw_text" not in doc

        matches = client.get("/api/match/cand-1").json()
        assert matches["total"] == 1
        assert matches["matches"][0]["overall_score"] == 77

        match = client.get("/api/match/cand-1/job-1").json()
        assert match["missing_skills"] == ["Kubernetes"]

        shortlisted = client.patch("/api/match/cand-1/job-1/status", json={"status": "SHORTLISTED"})
        assert shortlisted.status_code == 200
        assert shortlisted.json()["shortlisted_at"] is not None

        gap = client.get("/api/skill-gaps/cand-1/job-1").json()
        assert gap["priority"] == 1
        assert [g["target_id"] for g in client.get("/api/skill-gaps/cand-1").json()] == ["job-1"]

        recs = client.get("/api/recommendations/cand-1").json()
        assert recs["top_missing_skills"] == ["Kubernetes", "Terraform"]

    def test_failed_run_then_reprocess(self, client, services, analyzer, resume_file):
        analyzer.error = AnalysisError("Analyzer output failed validation")
        body = process_resume(client, services, resume_file)

        progress = client.get(f"/api/progress/jobs/{body['job_id']}").json()
        assert progress["stage"] == "FAILED"
        assert progress["error"] == "Analyzer output failed validation"
        assert client.get("/api/resumes/cand-1").json()["status"] == "FAILED"

        analyzer.error = None
        response = client.post("/api/resumes/cand-1/reprocess")
        assert response.status_code == 202
        drain(client, services)
        assert client.get("/api/resumes/cand-1").json()["status"] == "ANALYZED"

    def test_reprocess_requires_failed_document(self, client, services, resume_file):
        assert client.post("/api/resumes/cand-1/reprocess").status_code == 404
        process_resume(client, services, resume_file)
        assert client.post("/api/resumes/cand-1/reprocess").status_code == 400

    def test_missing_source_fails_run(self, client, services, tmp_path):
        body = process_resume(client, services, str(tmp_path / "missing.pdf"))
        assert client.get(f"/api/progress/jobs/{body['job_id']}").json()["stage"] == "FAILED"

    def test_refresh_matches(self, client, services, resume_file):
        process_resume(client, services, resume_file)
        assert client.get("/api/match/cand-1").json()["total"] == 0

        analyze_job(client, services, "job-1")
        analyze_job(client, services, "job-2")
        response = client.post("/api/match/cand-1/refresh")
        assert response.status_code == 202
        drain(client, services)
        assert client.get("/api/match/cand-1").json()["total"] == 2


class TestProgressRouter:
    """Progress lookups and fallbacks"""

    def test_unknown_job(self, client):
        response = client.get("/api/progress/jobs/nope")
        assert response.status_code == 404

    def test_unknown_subject(self, client):
        assert client.get("/api/progress/subjects/nobody").status_code == 404

    def test_falls_back_to_document_status(self, client, collections):
        collections["documents"].rows.append({
            "subject_id": "cand-9",
            "source_location": "/old.pdf",
            "status": "ANALYZED",
            "last_job_id": "expired-job",
        })
        data = client.get("/api/progress/subjects/cand-9").json()
        assert data["stage"] == "COMPLETED"
        assert data["overall_percent"] == 100
        assert data["job_id"] == "expired-job"

    def test_stages(self, client):
        stages = client.get("/api/progress/stages").json()
        assert stages[0]["stage"] == "QUEUED"
        assert stages[-1]["stage"] == "COMPLETED"
        assert sum(s["weight"] for s in stages) == 100


class TestMatchingRouter:
    def test_match_without_profile(self, client, services):
        analyze_job(client, services)
        response = client.get("/api/match/cand-1/job-1")
        assert response.status_code == 404
        assert response.json()["error"]["details"]["resource"] == "profile"

    def test_invalid_status(self, client):
        response = client.patch("/api/match/cand-1/job-1/status", json={"status": "HIRED"})
        assert response.status_code == 422

    def test_status_of_missing_match(self, client):
        response = client.patch("/api/match/cand-1/job-1/status", json={"status": "REJECTED"})
        assert response.status_code == 404


class TestServiceWiring:
    def test_unknown_progress_backend(self, settings, collections):
        settings.progress.backend = "redis"
        with pytest.raises(ConfigurationError):
            build_services(settings, collections, analyzer=FakeAnalyzer())
