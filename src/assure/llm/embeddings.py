"""Embeddings via an OpenAI-compatible ``/v1/embeddings`` endpoint."""

from __future__ import annotations

import re

import httpx

from assure.config import settings
from assure.errors.exceptions import TransientError
from assure.llm.base import EmbeddingProvider
from assure.llm.http import post_json

_NEWLINES_RE = re.compile(r"\n+")


class OpenAIEmbeddingProvider(EmbeddingProvider):
    provider = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.embedding_api_key
        self.model = model or settings.embedding_model
        self.base_url = (base_url or settings.embedding_base_url).rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.embedding_timeout_seconds
        )

    async def embed(self, text: str) -> list[float]:
        # Newlines degrade embedding quality
        sanitized = _NEWLINES_RE.sub(" ", text).strip()
        headers = {"Authorization": f"Bearer {self.api_key}"}
        body = await post_json(
            self._client,
            f"{self.base_url}/v1/embeddings",
            {"model": self.model, "input": sanitized},
            headers,
            capability="embedding",
        )
        data = body.get("data")
        if not isinstance(data, list) or not data or not isinstance(data[0], dict) or "embedding" not in data[0]:
            raise TransientError("embedding response contained no vector")
        try:
            return [float(x) for x in data[0]["embedding"]]
        except (TypeError, ValueError) as exc:
            raise TransientError("embedding response vector is not numeric") from exc

    async def aclose(self) -> None:
        await self._client.aclose()
