"""Capability interfaces for text generation and embeddings.

The orchestration code depends only on these narrow contracts so it can run
against deterministic fakes in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class TextGenerator(ABC):
    """Opaque, fallible text-generation capability: ``generate(prompt) -> text``.

    Output is untrusted and must be re-validated by callers.
    """

    provider: str = "unknown"

    @abstractmethod
    async def generate(self, prompt: str, max_tokens: int = 4096) -> str:
        """Return the completion text for ``prompt``.

        Raises:
            TransientError: on timeouts, connection failures, 429 and 5xx.
        """
        ...

    async def aclose(self) -> None:
        """Release network resources. Override when holding a client."""
        return None


class EmbeddingProvider(ABC):
    """Retrieval/embedding capability: ``embed(text) -> vector``."""

    provider: str = "unknown"

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for ``text``.

        Raises:
            TransientError: on timeouts, connection failures, 429 and 5xx.
        """
        ...

    async def aclose(self) -> None:
        return None
