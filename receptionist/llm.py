"""Generative-text clients used by the assisted reply strategy.

Two providers, selected by ``Settings.llm_provider``:

  claude: Anthropic Messages API through the ``anthropic`` SDK
  ollama: local Ollama ``/api/chat`` over aiohttp

Both take a system instruction plus a chat history of
``{"role": ..., "content": ...}`` dicts and return plain text.  They raise
on transport or API errors; callers wrap them in ``fallback.bounded``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp
from anthropic import AsyncAnthropic

from receptionist.config import Settings

log = logging.getLogger("receptionist.llm")


class LLMClient(ABC):
    """Narrow interface to a text-generation collaborator."""

    name: str = "llm"

    @abstractmethod
    async def generate(self, system: str, messages: list[dict[str, str]]) -> str:
        """Return the assistant's reply to ``messages`` under ``system``."""


def _merge_roles(messages: list[dict[str, str]]) -> list[dict[str, str]]:
    """Collapse consecutive same-role messages and drop a leading assistant turn.

    The Messages API requires strictly alternating roles starting with user.
    """
    merged: list[dict[str, str]] = []
    for msg in messages:
        content = (msg.get("content") or "").strip()
        if not content:
            continue
        if merged and merged[-1]["role"] == msg["role"]:
            merged[-1]["content"] += "\n" + content
        else:
            merged.append({"role": msg["role"], "content": content})
    while merged and merged[0]["role"] != "user":
        merged.pop(0)
    return merged


class AnthropicClient(LLMClient):
    name = "claude"

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 200,
        temperature: float = 0.4,
        client: Optional[AsyncAnthropic] = None,
    ) -> None:
        if not api_key and client is None:
            raise ValueError("Anthropic API key is required")
        self._client = client or AsyncAnthropic(api_key=api_key)
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    async def generate(self, system: str, messages: list[dict[str, str]]) -> str:
        response = await self._client.messages.create(
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            system=system,
            messages=_merge_roles(messages),
        )
        text = ""
        for block in response.content:
            if block.type == "text":
                text += block.text
        return text.strip()


class OllamaClient(LLMClient):
    name = "ollama"

    def __init__(self, base_url: str, model: str, temperature: float = 0.4) -> None:
        self._url = base_url.rstrip("/") + "/api/chat"
        self._model = model
        self._temperature = temperature

    async def generate(self, system: str, messages: list[dict[str, str]]) -> str:
        payload = {
            "model": self._model,
            "stream": False,
            "options": {"temperature": self._temperature},
            "messages": [{"role": "system", "content": system}, *messages],
        }
        async with aiohttp.ClientSession() as session:
            async with session.post(self._url, json=payload) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise RuntimeError(f"Ollama request failed ({resp.status}): {body[:200]}")
                data = await resp.json()
        return (data.get("message", {}).get("content") or "").strip()


def create_llm_client(settings: Settings) -> Optional[LLMClient]:
    """Build the configured client, or None when replies should stay scripted."""
    if settings.reply_strategy != "assisted":
        return None

    if settings.llm_provider == "ollama":
        log.info("LLM provider: ollama (%s @ %s)", settings.ollama_model, settings.ollama_url)
        return OllamaClient(settings.ollama_url, settings.ollama_model, settings.llm_temperature)

    if not settings.anthropic_api_key:
        log.warning("ANTHROPIC_API_KEY not set, using scripted replies")
        return None
    log.info("LLM provider: claude (%s)", settings.anthropic_model)
    return AnthropicClient(
        api_key=settings.anthropic_api_key,
        model=settings.anthropic_model,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
    )
