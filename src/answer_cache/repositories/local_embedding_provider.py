"""Local sentence-transformers embedding provider.

Runs a sentence-transformers model in-process. Encoding is CPU bound, so it
happens in a worker thread to keep the event loop responsive.
"""

import asyncio
import threading
import time

import numpy as np
from sentence_transformers import SentenceTransformer

from answer_cache.config import get_settings
from answer_cache.exceptions import ProviderError
from answer_cache.observability import get_logger

logger = get_logger(__name__)


class LocalEmbeddingProvider:
    """Local sentence-transformers implementation of EmbeddingProvider.

    Default model: paraphrase-multilingual-MiniLM-L12-v2 (384 dimensions)
    """

    def __init__(self, model_name: str | None = None) -> None:
        self._model_name = model_name or get_settings().embedding_model
        self._model: SentenceTransformer | None = None
        self._load_lock = threading.Lock()

    @classmethod
    def create(cls, model_name: str | None = None) -> "LocalEmbeddingProvider":
        """Factory method to create LocalEmbeddingProvider with defaults."""
        return cls(model_name=model_name)

    @property
    def model(self) -> SentenceTransformer:
        """Lazy-load the embedding model."""
        with self._load_lock:
            if self._model is None:
                logger.info("embedding_model_loading", model=self._model_name)
                start_time = time.time()
                self._model = SentenceTransformer(self._model_name)
                logger.info(
                    "embedding_model_loaded",
                    model=self._model_name,
                    seconds=round(time.time() - start_time, 2),
                )
        return self._model

    @property
    def dimension(self) -> int:
        """Get the embedding vector dimension."""
        size = self.model.get_sentence_embedding_dimension()
        if size is None:
            size = len(self._encode("test"))
        return int(size)

    @property
    def model_name(self) -> str:
        return self._model_name

    async def embed(self, text: str) -> list[float]:
        """Generate the (normalized) embedding vector for a single text.

        Raises:
            ProviderError: If the model cannot be loaded or fails to encode
        """
        try:
            return await asyncio.to_thread(self._encode, text)
        except Exception as e:
            raise ProviderError(f"Local embedding failed: {e}", {"model": self._model_name}) from e

    def _encode(self, text: str) -> list[float]:
        embedding = self.model.encode(
            text,
            show_progress_bar=False,
            normalize_embeddings=True,
        )
        if isinstance(embedding, np.ndarray):
            if embedding.ndim == 1:
                return embedding.tolist()
            return embedding[0].tolist()
        return list(embedding)
