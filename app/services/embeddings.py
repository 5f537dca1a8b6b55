"""
Embedding providers for semantic similarity.

Three interchangeable variants, ranked: Voyage AI (preferred), OpenAI
(secondary) and a local Ollama model. ``EmbeddingService`` picks exactly one
at construction so every vector produced during a run has the same
dimensionality.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

import requests

from app.utils.config import EmbeddingSettings
from app.utils.exceptions import EmbeddingUnavailableError, retry_sync
from app.utils.logging_config import get_logger
from app.utils.utils import ollama_embed, truncate_text

logger = get_logger(__name__)

VOYAGE_URL = "https://api.voyageai.com/v1/embeddings"
OPENAI_URL = "https://api.openai.com/v1/embeddings"


class EmbeddingProvider(ABC):
    name: str = ""
    dimension: int = 0
    supports_batch: bool = False
    max_input_chars: int = 8000

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        ...

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return [self.embed(t) for t in texts]


class _BearerEmbeddingProvider(EmbeddingProvider):
    """OpenAI-compatible ``/v1/embeddings`` endpoint: ``{"input", "model"}`` -> ``data[].embedding``"""
    url: str = ""
    supports_batch = True

    def __init__(self, api_key: str, model: str, timeout: int = 30):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def _post(self, payload_input) -> List[List[float]]:
        resp = requests.post(
            self.url,
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            json={"input": payload_input, "model": self.model},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        data = resp.json().get("data") or []
        # both APIs echo an index; keep input order regardless of response order
        data = sorted(data, key=lambda d: d.get("index", 0))
        return [[float(x) for x in d.get("embedding", [])] for d in data]

    def embed(self, text: str) -> List[float]:
        vectors = self._post(text)
        return vectors[0] if vectors else []

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return self._post(list(texts))


class VoyageEmbeddingProvider(_BearerEmbeddingProvider):
    name = "voyage"
    url = VOYAGE_URL
    dimension = 1024


class OpenAIEmbeddingProvider(_BearerEmbeddingProvider):
    name = "openai"
    url = OPENAI_URL
    dimension = 1536


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Local model; its size depends on EMBED_MODEL, so 0 means learn it from the first vector"""
    name = "local"
    supports_batch = False
    max_input_chars = 2048

    def __init__(self, base_url: str, model: str, timeout: int = 30, dimension: Optional[int] = None):
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self.dimension = dimension or 0

    def embed(self, text: str) -> List[float]:
        return ollama_embed(text, model=self.model, base_url=self.base_url, timeout=self.timeout)


def select_provider(settings: EmbeddingSettings) -> EmbeddingProvider:
    """Explicit ``provider`` wins; otherwise the highest-ranked variant with credentials."""
    choice = settings.provider
    if choice is None:
        if settings.voyage_api_key:
            choice = "voyage"
        elif settings.openai_api_key:
            choice = "openai"
        else:
            choice = "local"

    if choice == "voyage":
        if not settings.voyage_api_key:
            raise EmbeddingUnavailableError("Voyage provider selected but VOYAGE_API_KEY is not set", provider="voyage")
        return VoyageEmbeddingProvider(settings.voyage_api_key, settings.voyage_model, settings.timeout)
    if choice == "openai":
        if not settings.openai_api_key:
            raise EmbeddingUnavailableError("OpenAI provider selected but OPENAI_API_KEY is not set", provider="openai")
        return OpenAIEmbeddingProvider(settings.openai_api_key, settings.openai_model, settings.timeout)
    return OllamaEmbeddingProvider(
        settings.ollama_base_url, settings.ollama_model, settings.timeout, settings.ollama_dimension
    )


class EmbeddingService:
    """Truncation, retry and shape checks around the active provider"""

    def __init__(
        self,
        settings: EmbeddingSettings,
        provider: Optional[EmbeddingProvider] = None,
        max_attempts: int = 3,
        backoff_factor: float = 1.0,
        sleep=None,
    ):
        self.settings = settings
        self.provider = provider or select_provider(settings)
        self.max_attempts = max_attempts
        self.backoff_factor = backoff_factor
        self._sleep = sleep
        logger.info(f"Embedding provider: {self.provider.name} ({self.provider.dimension} dims)")

    @property
    def provider_name(self) -> str:
        return self.provider.name

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    def _call(self, func, *args):
        try:
            return retry_sync(
                func, *args,
                max_attempts=self.max_attempts,
                backoff_factor=self.backoff_factor,
                exceptions=(requests.RequestException, ValueError, KeyError),
                logger=logger,
                sleep=self._sleep,
            )
        except (requests.RequestException, ValueError, KeyError) as e:
            raise EmbeddingUnavailableError(
                f"Embedding provider '{self.provider.name}' failed: {e}",
                provider=self.provider.name,
                cause=e,
            ) from e

    def _check(self, vector: List[float]) -> List[float]:
        if not vector:
            raise EmbeddingUnavailableError(
                f"Embedding provider '{self.provider.name}' returned an empty vector",
                provider=self.provider.name,
            )
        if not self.provider.dimension:
            self.provider.dimension = len(vector)
            logger.info(f"Embedding dimension for {self.provider.name} set to {len(vector)} from first vector")
        if len(vector) != self.provider.dimension:
            raise EmbeddingUnavailableError(
                f"Embedding provider '{self.provider.name}' returned {len(vector)} dims, "
                f"expected {self.provider.dimension}",
                provider=self.provider.name,
            )
        return vector

    def embed(self, text: str) -> List[float]:
        text = truncate_text(text or "", self.provider.max_input_chars)
        logger.debug(f"Generating embedding with {self.provider.name}, {len(text)} chars")
        return self._check(self._call(self.provider.embed, text))

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        if not self.provider.supports_batch:
            return [self.embed(t) for t in texts]

        batch = [truncate_text(t or "", self.provider.max_input_chars) for t in texts]
        vectors = self._call(self.provider.embed_batch, batch)
        if len(vectors) != len(batch):
            raise EmbeddingUnavailableError(
                f"Batch embedding returned {len(vectors)} vectors for {len(batch)} inputs",
                provider=self.provider.name,
            )
        return [self._check(v) for v in vectors]

    def health_check(self) -> bool:
        try:
            return len(self.embed("test")) > 0
        except EmbeddingUnavailableError as e:
            logger.error(f"Embedding health check failed: {e}")
            return False
