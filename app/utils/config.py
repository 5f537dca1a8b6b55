"""
Runtime configuration for the pipeline.

All settings are read from the environment exactly once (``Settings.from_env``)
and handed to the services at construction time.
"""
import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    return int(value) if value else default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    return float(value) if value else default


class ExtractionSettings(BaseModel):
    """PDF text extraction settings"""
    enable_ocr: bool = Field(default=True, description="Allow OCR fallback for low-quality extractions")
    ocr_available: bool = Field(default=False, description="Tesseract detected at startup")
    ocr_language: str = Field(default="eng", description="Tesseract language code")
    max_pages: int = Field(default=20, ge=1, le=200, description="Maximum pages rendered for OCR")
    render_scale: float = Field(default=300 / 72, gt=0, description="Page render scale (300 DPI)")
    clean_text: bool = Field(default=True, description="Normalize extracted text")
    tesseract_cmd: Optional[str] = Field(default=None, description="Explicit path to the tesseract binary")


class EmbeddingSettings(BaseModel):
    """Embedding provider configuration"""
    provider: Optional[str] = Field(default=None, description="Force one of: voyage, openai, local")
    voyage_api_key: Optional[str] = Field(default=None, description="Voyage AI API key")
    voyage_model: str = Field(default="voyage-2", description="Voyage embedding model")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_model: str = Field(default="text-embedding-3-small", description="OpenAI embedding model")
    ollama_base_url: str = Field(default="http://localhost:11434", description="Ollama base URL")
    ollama_model: str = Field(default="nomic-embed-text", description="Local embedding model")
    ollama_dimension: Optional[int] = Field(default=None, ge=1, description="Local embedding size; learned from the first vector when unset")
    timeout: int = Field(default=30, ge=1, le=300, description="Request timeout in seconds")

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v):
        if v is not None and v not in ("voyage", "openai", "local"):
            raise ValueError("provider must be one of: voyage, openai, local")
        return v


class AnalyzerSettings(BaseModel):
    """LLM settings for structured analysis and match explanations"""
    base_url: str = Field(default="http://localhost:11434", description="Ollama base URL")
    model_name: str = Field(default="llama3.1:8b", description="LLM model name")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0, description="Generation temperature")
    explanation_temperature: float = Field(default=0.5, ge=0.0, le=2.0)
    timeout: int = Field(default=120, ge=1, le=600, description="Request timeout in seconds")
    enable_explanations: bool = Field(default=True, description="Generate natural-language match explanations")


class ProgressSettings(BaseModel):
    """Job progress store settings"""
    ttl_seconds: int = Field(default=86400, ge=1, description="Lifetime of a progress record")
    backend: str = Field(default="mongo", description="'mongo' or 'memory'")


class WorkerSettings(BaseModel):
    """Background processing settings"""
    concurrency: int = Field(default=5, ge=1, le=64, description="Concurrent processing runs")
    match_concurrency: int = Field(default=5, ge=1, le=64, description="Concurrent pair scorings per fan-out")
    max_retries: int = Field(default=3, ge=1, le=10, description="Attempts for analysis/embedding calls")
    retry_backoff_seconds: float = Field(default=1.0, ge=0.0, description="Base delay of exponential backoff")
    match_on_process: bool = Field(default=True, description="Score new profiles against stored postings")
    max_match_targets: int = Field(default=50, ge=0, description="Postings scored during processing")


class DatabaseSettings(BaseModel):
    mongo_details: str = Field(default="mongodb://localhost:27017")
    db_name: str = Field(default="resume_matcher_db")


class Settings(BaseModel):
    """Complete service configuration"""
    environment: str = "development"
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    analyzer: AnalyzerSettings = Field(default_factory=AnalyzerSettings)
    progress: ProgressSettings = Field(default_factory=ProgressSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        ollama = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
        return cls(
            environment=os.getenv("ENVIRONMENT", "development").lower(),
            extraction=ExtractionSettings(
                enable_ocr=_env_bool("ENABLE_OCR", True),
                ocr_language=os.getenv("OCR_LANGUAGE", "eng"),
                max_pages=_env_int("OCR_MAX_PAGES", 20),
                tesseract_cmd=os.getenv("TESSERACT_CMD") or None,
            ),
            embedding=EmbeddingSettings(
                provider=os.getenv("EMBEDDING_PROVIDER") or None,
                voyage_api_key=os.getenv("VOYAGE_API_KEY") or None,
                voyage_model=os.getenv("VOYAGE_MODEL", "voyage-2"),
                openai_api_key=os.getenv("OPENAI_API_KEY") or None,
                openai_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
                ollama_base_url=ollama,
                ollama_model=os.getenv("EMBED_MODEL", "nomic-embed-text"),
                ollama_dimension=_env_int("EMBED_DIMENSION", 0) or None,
            ),
            analyzer=AnalyzerSettings(
                base_url=ollama,
                model_name=os.getenv("LLM_MODEL", "llama3.1:8b"),
                enable_explanations=_env_bool("ENABLE_EXPLANATIONS", True),
            ),
            progress=ProgressSettings(
                ttl_seconds=_env_int("PROGRESS_TTL_SECONDS", 86400),
                backend=os.getenv("PROGRESS_BACKEND", "mongo"),
            ),
            worker=WorkerSettings(
                concurrency=_env_int("WORKER_CONCURRENCY", 5),
                match_concurrency=_env_int("MATCH_CONCURRENCY", 5),
                max_retries=_env_int("MAX_RETRIES", 3),
                retry_backoff_seconds=_env_float("RETRY_BACKOFF_SECONDS", 1.0),
                match_on_process=_env_bool("MATCH_ON_PROCESS", True),
            ),
            database=DatabaseSettings(
                mongo_details=os.getenv("MONGO_DETAILS", "mongodb://localhost:27017"),
                db_name=os.getenv("DB_NAME", "resume_matcher_db"),
            ),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
