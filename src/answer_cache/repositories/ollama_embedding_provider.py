"""Embedding provider backed by a local Ollama server.

Talks to `POST /api/embed` and maps failures onto the error taxonomy:
an unreachable server is transient (the breaker may count it), a bad
response is a provider error. Pull the model first, e.g.
`ollama pull embeddinggemma`.
"""

import httpx

from answer_cache.config import get_settings
from answer_cache.exceptions import ProviderError, TransientConnectionError
from answer_cache.observability import get_logger

logger = get_logger(__name__)


class OllamaEmbeddingProvider:
    """EmbeddingProvider over the Ollama HTTP API.

    Unknown models are assumed to produce 768-dimensional vectors.
    """

    MODEL_DIMENSIONS = {
        "embeddinggemma": 768,
        "nomic-embed-text": 768,
        "mxbai-embed-large": 1024,
        "all-minilm": 384,
    }

    def __init__(
        self,
        model_name: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the Ollama embedding provider.

        Args:
            model_name: Name of the Ollama model. Defaults to settings.embedding_model.
            base_url: Ollama API base URL. Defaults to settings.ollama_base_url.
            timeout: Request timeout in seconds.
            client: Preconfigured HTTP client (tests inject a MockTransport here).
        """
        settings = get_settings()
        self._model_name = model_name or settings.embedding_model
        self._base_url = (base_url or settings.ollama_base_url).rstrip("/")
        self._timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy-load the async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            )
        return self._client

    @classmethod
    def create(
        cls,
        model_name: str | None = None,
        base_url: str | None = None,
    ) -> "OllamaEmbeddingProvider":
        """Factory method to create OllamaEmbeddingProvider with defaults."""
        return cls(model_name=model_name, base_url=base_url)

    @property
    def dimension(self) -> int:
        """Vector dimension for known models, 768 otherwise."""
        return self.MODEL_DIMENSIONS.get(self._model_name, 768)

    @property
    def model_name(self) -> str:
        return self._model_name

    async def embed(self, text: str) -> list[float]:
        """Generate embedding vector for a single text.

        Args:
            text: The text to encode

        Returns:
            The embedding vector as a list of floats

        Raises:
            TransientConnectionError: If Ollama cannot be reached
            ProviderError: If Ollama answers with an error or an unexpected body
        """
        url = f"{self._base_url}/api/embed"
        payload = {"model": self._model_name, "input": text}

        try:
            response = await self.client.post(url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TransportError as e:
            raise TransientConnectionError(
                f"Ollama unreachable at {self._base_url}: {e}",
                {"model": self._model_name},
            ) from e
        except httpx.HTTPStatusError as e:
            hint = None
            if e.response.status_code == 404:
                hint = f"ollama pull {self._model_name}"
            raise ProviderError(
                f"Ollama API error: {e.response.status_code}",
                {"model": self._model_name, "hint": hint},
            ) from e
        except ValueError as e:
            raise ProviderError(f"Ollama returned invalid JSON: {e}", {"model": self._model_name}) from e

        # Ollama returns {"embeddings": [[...]]} for a single input
        embeddings = data.get("embeddings")
        if embeddings:
            return list(embeddings[0])
        # older servers answer /api/embeddings style
        if "embedding" in data:
            return list(data["embedding"])

        raise ProviderError("Unexpected Ollama response format", {"keys": sorted(data)})

    async def is_available(self) -> bool:
        """Check if Ollama is running and the model answers."""
        try:
            await self.embed("test")
            return True
        except (ProviderError, TransientConnectionError) as e:
            logger.warning("embedding_provider_unavailable", model=self._model_name, error=str(e))
            return False

    async def close(self) -> None:
        """Close the async HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
