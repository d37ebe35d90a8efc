# =============================================================================
# Multi-Provider LLM Abstraction — Pluggable AI Backend
# =============================================================================
#
# The research team needs exactly two things from a model backend:
#
#   generate(prompt, schema, ...)   — one-shot structured generation
#   create_session(system)          — a conversational session whose
#                                     history persists across send() calls
#
# Concrete implementations exist for Anthropic (Claude) and any
# OpenAI-compatible API (DeepSeek, Qwen, GLM-5, OpenAI itself). Both build
# on a single `complete(messages, system, ...)` primitive; `generate` and
# sessions are layered on top of it in ProviderBase.
#
# DESIGN DECISION: Protocol (structural typing) over ABC for the public
# interface. Tests pass any object with the right methods.
#
# DESIGN DECISION: The JSON schema travels inside the system prompt.
# Both providers then behave the same, and the tolerant parser in
# json_repair.py recovers whatever decoration the model adds.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── ProviderBase               — generate() + create_session()
#   │   ├── AnthropicProvider      — Claude via native Anthropic SDK
#   │   └── OpenAICompatibleProvider — any OpenAI-compatible API
#   ├── ChatSession                — history-preserving conversation handle
#   ├── get_llm_provider()         — singleton factory, reads from config
#   └── create_provider_from_id()  — non-singleton factory
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol

from research_team.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """
    Standardised response from any LLM provider.

    Normalises the different response formats (Anthropic vs OpenAI)
    into a single structure that downstream code can consume.
    """

    content: str           # The generated text
    model: str             # Model identifier (e.g., "claude-sonnet-4-6")
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response


# ---------------------------------------------------------------------------
# Protocol Definitions
# ---------------------------------------------------------------------------


class Session(Protocol):
    """A conversation bound to one system directive."""

    async def send(self, message: str) -> LLMResponse:
        ...

    def dispose(self) -> None:
        ...


class LLMProvider(Protocol):
    """
    Protocol defining the LLM provider interface used by the research team.
    """

    async def generate(
        self,
        prompt: str,
        schema: dict[str, Any] | None = None,
        *,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        thinking_budget: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """
        One-shot generation.

        Args:
            prompt: The user prompt.
            schema: Optional JSON schema the output must follow.
            system: Optional system prompt.
            temperature: Override sampling temperature.
            max_tokens: Override max output tokens.
            thinking_budget: Tokens of extended reasoning, where supported.
            model: Override the provider's default model.
        """
        ...

    def create_session(
        self,
        system: str,
        *,
        temperature: float | None = None,
        thinking_budget: int | None = None,
    ) -> Session:
        ...


# ---------------------------------------------------------------------------
# Shared behaviour
# ---------------------------------------------------------------------------


def schema_instruction(schema: dict[str, Any]) -> str:
    """System-prompt suffix that pins the output to a JSON schema."""
    return (
        "Respond with ONLY valid JSON (no markdown, no explanation) that "
        "conforms to this JSON schema:\n"
        f"{json.dumps(schema, indent=2)}"
    )


class ChatSession:
    """
    A conversation whose history persists across `send()` calls.

    Sends are serialised with a lock: concurrent questions to the same
    document agent are answered one after the other, so each exchange
    sees a coherent history. A failed send leaves the history untouched.
    """

    def __init__(
        self,
        provider: ProviderBase,
        system: str,
        temperature: float | None = None,
        thinking_budget: int | None = None,
    ) -> None:
        self._provider = provider
        self._system = system
        self._temperature = temperature
        self._thinking_budget = thinking_budget
        self._history: list[dict[str, str]] = []
        self._lock = asyncio.Lock()
        self._disposed = False

    @property
    def turns(self) -> int:
        """Number of completed question/answer exchanges."""
        return len(self._history) // 2

    async def send(self, message: str) -> LLMResponse:
        if self._disposed:
            raise RuntimeError("Session has been disposed")
        async with self._lock:
            messages = [*self._history, {"role": "user", "content": message}]
            response = await self._provider.complete(
                messages=messages,
                system=self._system,
                temperature=self._temperature,
                thinking_budget=self._thinking_budget,
            )
            self._history = [
                *messages,
                {"role": "assistant", "content": response.content},
            ]
            return response

    def dispose(self) -> None:
        self._history = []
        self._disposed = True


class ProviderBase(ABC):
    """`generate` and `create_session` on top of a provider's `complete`."""

    _model: str

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        thinking_budget: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """Send `messages` to the backend and return the reply."""

    async def generate(
        self,
        prompt: str,
        schema: dict[str, Any] | None = None,
        *,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        thinking_budget: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """Generate a completion for a single prompt."""
        if schema is not None:
            suffix = schema_instruction(schema)
            system = f"{system}\n\n{suffix}" if system else suffix

        return await self.complete(
            messages=[{"role": "user", "content": prompt}],
            system=system,
            temperature=temperature,
            max_tokens=max_tokens,
            thinking_budget=thinking_budget,
            model=model,
        )

    def create_session(
        self,
        system: str,
        *,
        temperature: float | None = None,
        thinking_budget: int | None = None,
    ) -> ChatSession:
        """Open a new conversation bound to `system`."""
        return ChatSession(
            self, system,
            temperature=temperature,
            thinking_budget=thinking_budget,
        )


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider(ProviderBase):
    """
    Anthropic Claude provider using the native SDK.

    KEY API DIFFERENCE: Anthropic takes system prompts as a top-level
    `system=` kwarg, NOT as a message with role "system".

    Thinking budgets map to extended thinking. With thinking enabled the
    API rejects custom temperatures and requires max_tokens to exceed the
    budget, so both are adjusted here.
    """

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

        logger.info(
            "Initialized AnthropicProvider (model=%s)", self._model
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        thinking_budget: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """Generate a completion using Claude."""
        kwargs: dict = {
            "model": model or self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
        }

        if thinking_budget:
            kwargs["thinking"] = {
                "type": "enabled",
                "budget_tokens": thinking_budget,
            }
            kwargs["max_tokens"] = max(
                kwargs["max_tokens"], thinking_budget + self._max_tokens,
            )
        else:
            kwargs["temperature"] = (
                temperature if temperature is not None else self._temperature
            )

        if system:
            kwargs["system"] = system

        response = await self._client.messages.create(**kwargs)

        # Skip thinking blocks; the answer is the first text block
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
# Implementation 2: OpenAI-Compatible (DeepSeek, Qwen, GLM-5, etc.)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider(ProviderBase):
    """
    OpenAI-compatible provider for any API that follows the OpenAI spec.

    Switching providers is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_API_KEY=your-key
        LLM_MODEL=deepseek-chat

    Thinking budgets are not portable across OpenAI-compatible backends and
    are ignored.
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
        thinking_budget: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """Generate a completion using an OpenAI-compatible API."""
        # OpenAI: system prompt goes as the first message
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        response = await self._client.chat.completions.create(
            model=model or self._model,
            messages=all_messages,
            max_tokens=max_tokens or self._max_tokens,
            temperature=(
                temperature if temperature is not None else self._temperature
            ),
        )

        content = response.choices[0].message.content or ""

        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0

        return LLMResponse(
            content=content,
            model=response.model or self._model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

# Lazy singleton — avoid re-creating client on every request
_provider: AnthropicProvider | OpenAICompatibleProvider | None = None


def get_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Factory that returns the configured LLM provider.

    Reads `llm_provider_id`, falling back to `llm_provider`, from settings:
    - "anthropic" → AnthropicProvider (Claude)
    - "openai_compatible" → OpenAICompatibleProvider (DeepSeek, Qwen, etc.)
    """
    global _provider
    if _provider is None:
        if settings.llm_provider_id:
            _provider = create_provider_from_id(settings.llm_provider_id)
        elif settings.llm_provider == "openai_compatible":
            _provider = OpenAICompatibleProvider()
        else:
            _provider = AnthropicProvider()
    return _provider


# ---------------------------------------------------------------------------
# Non-Singleton Factory
# ---------------------------------------------------------------------------
# Builds an independent provider from a self-describing id string, e.g. to
# run a ResearchTeam against a different backend than the global one.
# ---------------------------------------------------------------------------


_KNOWN_PROVIDER_TYPES = {"anthropic", "openai_compatible"}


def _parse_provider_id(
    provider_id: str,
) -> tuple[str, str, str | None]:
    """
    Parse a provider_id string into (provider_type, model, base_url).

    Formats supported:
        "anthropic/claude-sonnet-4-6"
            → ("anthropic", "claude-sonnet-4-6", None)
        "openai_compatible/deepseek-chat@https://api.deepseek.com/v1"
            → ("openai_compatible", "deepseek-chat", "https://api.deepseek.com/v1")

    Raises:
        ValueError: If the format is unrecognisable or provider type unknown.
    """
    if "/" not in provider_id:
        raise ValueError(
            f"Invalid provider_id '{provider_id}'. "
            "Expected format: 'provider_type/model' or "
            "'provider_type/model@base_url'"
        )

    provider_type, rest = provider_id.split("/", 1)

    base_url: str | None = None
    if "@" in rest:
        model, base_url = rest.split("@", 1)
    else:
        model = rest

    if provider_type not in _KNOWN_PROVIDER_TYPES:
        raise ValueError(
            f"Unknown provider type '{provider_type}'. "
            f"Supported types: {sorted(_KNOWN_PROVIDER_TYPES)}"
        )

    return provider_type, model, base_url


def create_provider_from_id(
    provider_id: str,
    api_key: str | None = None,
) -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Create a fresh, non-singleton LLM provider from a provider ID string.

    Raises:
        ValueError: If provider_id is invalid or API key is missing.
    """
    provider_type, model, base_url = _parse_provider_id(provider_id)

    if provider_type == "anthropic":
        return AnthropicProvider(api_key=api_key, model=model)

    return OpenAICompatibleProvider(
        api_key=api_key, model=model, base_url=base_url,
    )
