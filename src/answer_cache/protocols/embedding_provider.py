"""Embedding provider protocol.

Defines the interface for any embedding generation service that can
convert text to vector embeddings.

Implementations can include:
- Ollama (local HTTP API)
- sentence-transformers (in-process)
- Any hosted embedding API
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Protocol for embedding generation services.

    Implementations raise ``ProviderError`` when the embedding cannot be
    produced; callers in this package treat that as non-fatal.
    """

    @property
    def model_name(self) -> str:
        """Return the name/identifier of the model."""
        ...

    async def embed(self, text: str) -> list[float]:
        """Generate the embedding vector for a single text.

        Args:
            text: The text to encode

        Returns:
            The embedding vector as a list of floats
        """
        ...
