# =============================================================================
# Multi-Provider LLM Abstraction
# =============================================================================
#
# Thin async wrappers over the Anthropic and OpenAI SDKs with one shared
# `complete()` signature. LLM-backed answer providers (see
# services/answer_clients.py) are built on top of these.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — Claude via native Anthropic SDK
#   ├── OpenAICompatibleProvider — any OpenAI-compatible API (OpenAI,
#   │                               DeepSeek, Qwen, ...)
#   ├── parse_client_spec()      — "type/model@base_url" → parts
#   └── create_llm_from_spec()   — fresh, non-shared client per provider
#
# There is no process-wide provider singleton: each registered answer
# provider owns its own client, built from its registry client spec.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from finchat.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """Normalised completion result from any LLM SDK."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """Anything with an async `complete()` returning an LLMResponse."""

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion.

        Args:
            messages: Conversation messages as {"role", "content"} dicts.
                Roles: "user", "assistant" (use `system` for the system prompt).
            system: System prompt. Anthropic takes it as a top-level kwarg,
                OpenAI as a leading {"role": "system"} message.
            temperature: Override sampling temperature.
            max_tokens: Override max output tokens.
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """Claude via AsyncAnthropic (non-blocking inside FastAPI handlers)."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(api_key=resolved_key)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
        }
        if system:
            kwargs["system"] = system

        response = await self._client.messages.create(**kwargs)

        content = ""
        for block in response.content:
            if block.type == "text":
                content = block.text
                break

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Any API following the OpenAI chat-completions contract, selected by
    base_url (OpenAI itself when base_url is None).
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        resolved_key = api_key or settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        resolved_base_url = base_url or settings.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        response = await self._client.chat.completions.create(
            model=self._model,
            messages=all_messages,
            max_tokens=max_tokens or self._max_tokens,
            temperature=self._temperature if temperature is None else temperature,
        )

        content = response.choices[0].message.content or ""

        usage = response.usage
        return LLMResponse(
            content=content,
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Client Spec Parsing & Factory
# ---------------------------------------------------------------------------

LLM_CLIENT_TYPES = {"anthropic", "openai_compatible"}
CLIENT_TYPES = LLM_CLIENT_TYPES | {"canned"}


def parse_client_spec(client_spec: str) -> tuple[str, str, str | None]:
    """
    Split a registry client spec into (client_type, model, base_url).

        "anthropic/claude-sonnet-4-6"
            → ("anthropic", "claude-sonnet-4-6", None)
        "openai_compatible/deepseek-chat@https://api.deepseek.com/v1"
            → ("openai_compatible", "deepseek-chat", "https://api.deepseek.com/v1")
        "canned/yahoo"
            → ("canned", "yahoo", None)

    Raises:
        ValueError: If the format is unrecognisable or the type unknown.
    """
    if "/" not in client_spec:
        raise ValueError(
            f"Invalid client spec '{client_spec}'. "
            "Expected format: 'type/model' or 'type/model@base_url'"
        )

    client_type, rest = client_spec.split("/", 1)

    base_url: str | None = None
    if "@" in rest:
        model, base_url = rest.split("@", 1)
    else:
        model = rest

    if client_type not in CLIENT_TYPES:
        raise ValueError(
            f"Unknown client type '{client_type}'. "
            f"Supported types: {sorted(CLIENT_TYPES)}"
        )
    if not model:
        raise ValueError(f"Client spec '{client_spec}' names no model")

    return client_type, model, base_url


def create_llm_from_spec(
    client_spec: str,
    api_key: str | None = None,
) -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Build a fresh LLM client for an LLM-backed client spec.

    Raises:
        ValueError: Invalid spec, non-LLM client type, or missing API key.
    """
    client_type, model, base_url = parse_client_spec(client_spec)

    if client_type == "anthropic":
        return AnthropicProvider(api_key=api_key, model=model)
    if client_type == "openai_compatible":
        return OpenAICompatibleProvider(
            api_key=api_key, model=model, base_url=base_url,
        )
    raise ValueError(f"Client type '{client_type}' is not LLM-backed")
