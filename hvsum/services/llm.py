from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from hvsum.schemas import ChatMessage

logger = logging.getLogger(__name__)


class LLMError(RuntimeError):
    """Raised when a model call fails or returns nothing usable."""


class LLMClient(ABC):
    name: str

    @abstractmethod
    async def generate(self, system: str, prompt: str) -> str:
        raise NotImplementedError

    @abstractmethod
    async def chat(self, messages: list[ChatMessage]) -> str:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class OllamaClient(LLMClient):
    name = "ollama"

    def __init__(
        self,
        model: str,
        base_url: str = "http://localhost:11434",
        timeout_seconds: int = 300,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)

    async def generate(self, system: str, prompt: str) -> str:
        payload = {
            "model": self.model,
            "system": system,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": 0.1, "top_p": 0.9},
        }
        data = await self._post("/api/generate", payload)
        return _require_text(data.get("response"))

    async def chat(self, messages: list[ChatMessage]) -> str:
        payload = {
            "model": self.model,
            "messages": [message.model_dump() for message in messages],
            "stream": False,
        }
        data = await self._post("/api/chat", payload)
        return _require_text((data.get("message") or {}).get("content"))

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as exc:
            raise LLMError(f"failed to generate response with {self.model}: {exc}") from exc
        except ValueError as exc:
            raise LLMError("ollama returned invalid JSON") from exc

    async def close(self) -> None:
        await self._client.aclose()


class DeepSeekClient(LLMClient):
    name = "deepseek"

    def __init__(
        self,
        api_key: str,
        model: str = "deepseek-reasoner",
        base_url: str = "https://api.deepseek.com",
        max_tokens: int = 32000,
        timeout_seconds: int = 300,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    async def generate(self, system: str, prompt: str) -> str:
        return await self.chat(
            [ChatMessage(role="system", content=system), ChatMessage(role="user", content=prompt)]
        )

    async def chat(self, messages: list[ChatMessage]) -> str:
        payload = {
            "model": self.model,
            "messages": [message.model_dump() for message in messages],
            "stream": False,
            "max_tokens": self.max_tokens,
        }
        try:
            response = await self._client.post("/chat/completions", json=payload)
        except httpx.HTTPError as exc:
            raise LLMError(f"DeepSeek request failed: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise LLMError(
                f"API request failed with status {response.status_code}: {response.text}"
            )

        try:
            choices = response.json().get("choices") or []
        except ValueError as exc:
            raise LLMError("DeepSeek returned invalid JSON") from exc
        if not choices:
            raise LLMError("DeepSeek returned no choices")

        message = choices[0].get("message") or {}
        reasoning = message.get("reasoning_content")
        if reasoning:
            logger.debug("DeepSeek reasoning:\n%s", reasoning)
        return _require_text(message.get("content"))

    async def close(self) -> None:
        await self._client.aclose()


class FallbackLLMClient(LLMClient):
    def __init__(self, primary: LLMClient, fallback: LLMClient) -> None:
        self.primary = primary
        self.fallback = fallback
        self.name = f"{primary.name}+{fallback.name}"

    async def generate(self, system: str, prompt: str) -> str:
        try:
            return await self.primary.generate(system, prompt)
        except LLMError as exc:
            logger.warning(
                "%s failed, falling back to %s: %s", self.primary.name, self.fallback.name, exc
            )
        return await self.fallback.generate(system, prompt)

    async def chat(self, messages: list[ChatMessage]) -> str:
        try:
            return await self.primary.chat(messages)
        except LLMError as exc:
            logger.warning(
                "%s failed, falling back to %s: %s", self.primary.name, self.fallback.name, exc
            )
        return await self.fallback.chat(messages)

    async def close(self) -> None:
        await self.primary.close()
        await self.fallback.close()


def build_llm_client(settings: Any) -> LLMClient:
    ollama = OllamaClient(
        model=settings.default_model,
        base_url=settings.ollama_url,
        timeout_seconds=settings.llm_timeout_seconds,
    )
    if settings.deepseek_enabled and settings.deepseek_api_key:
        deepseek = DeepSeekClient(
            api_key=settings.deepseek_api_key,
            model=settings.deepseek_model,
            base_url=settings.deepseek_base_url,
            max_tokens=settings.deepseek_max_tokens,
            timeout_seconds=settings.llm_timeout_seconds,
        )
        return FallbackLLMClient(deepseek, ollama)
    return ollama


def _require_text(value: Any) -> str:
    text = str(value or "").strip()
    if not text:
        raise LLMError("received empty response from model")
    return text
