"""Text generation via the Anthropic Messages API."""

from __future__ import annotations

import httpx

from assure.config import settings
from assure.llm.base import TextGenerator
from assure.llm.http import post_json


class AnthropicTextGenerator(TextGenerator):
    """Calls ``POST /v1/messages`` and returns the concatenated text blocks."""

    provider = "anthropic"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.anthropic_api_key
        self.model = model or settings.anthropic_model
        self.base_url = (base_url or settings.anthropic_base_url).rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.llm_timeout_seconds
        )

    async def generate(self, prompt: str, max_tokens: int = 4096) -> str:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": settings.anthropic_version,
            "content-type": "application/json",
        }
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        body = await post_json(
            self._client, f"{self.base_url}/v1/messages", payload, headers, capability="text-generation"
        )
        blocks = body.get("content") or []
        return "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text")

    async def aclose(self) -> None:
        await self._client.aclose()
