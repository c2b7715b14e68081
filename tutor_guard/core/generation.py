"""Generation adapter: interchangeable LLM backends behind one ordered fallback chain.

Each backend renders the same GenerationContext into a system prompt plus a
user message. FallbackChain enforces the per-call timeout and moves on to the
next backend on any failure.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from typing import Protocol

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from tutor_guard.core.config import Settings
from tutor_guard.core.errors import (
    GenerationError,
    GenerationExhausted,
    GenerationProviderError,
    GenerationTimeout,
)
from tutor_guard.core.logging import get_logger
from tutor_guard.core.schemas_pipeline import (
    FragmentSource,
    GenerationContext,
    GenerationResult,
)

logger = get_logger(__name__)


SYSTEM_PROMPT = """You are a patient, accurate tutor.

Answer the student's question directly and concisely. Use the context below
when it is relevant, and never invent facts about the student that the
context does not contain. If you are not sure about something, say so
plainly instead of guessing."""


def render_prompt(context: GenerationContext) -> tuple[str, str]:
    """Render a context into (system prompt, user message)."""
    sections = [SYSTEM_PROMPT]

    memories = [f.content for f in context.fragments if f.source == FragmentSource.MEMORY]
    if memories:
        sections.append(
            "## What you remember about this student\n" + "\n".join(f"- {m}" for m in memories)
        )

    for fragment in context.fragments:
        if fragment.source == FragmentSource.CLASSIFICATION:
            sections.append(f"## About this question\n{fragment.content}")
        elif fragment.source == FragmentSource.PERSONALIZATION:
            sections.append(f"## How this student learns\n{fragment.content}")
        elif fragment.source == FragmentSource.INSTRUCTION:
            sections.append(f"## Instructions\n{fragment.content}")

    user_message = next(
        (f.content for f in context.fragments if f.source == FragmentSource.REQUEST),
        context.user_message,
    )
    return "\n\n".join(sections), user_message


class GenerationBackend(Protocol):
    """One LLM provider."""

    name: str

    async def generate(self, context: GenerationContext) -> GenerationResult:
        ...


# =============================================================================
# Backends
# =============================================================================


class AnthropicBackend:
    name = "anthropic"

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.3,
        client: AsyncAnthropic | None = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client or AsyncAnthropic(api_key=api_key)

    async def generate(self, context: GenerationContext) -> GenerationResult:
        system, user_message = render_prompt(context)
        start = time.perf_counter()

        response = await self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=system,
            messages=[{"role": "user", "content": user_message}],
        )

        text = response.content[0].text if response.content else ""
        if not text.strip():
            raise GenerationProviderError(self.name, "empty response")

        return GenerationResult(
            text=text.strip(),
            model_id=response.model,
            provider=self.name,
            token_counts={
                "input": response.usage.input_tokens,
                "output": response.usage.output_tokens,
            },
            latency_ms=(time.perf_counter() - start) * 1000,
        )


class OpenAIBackend:
    name = "openai"

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.3,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client or AsyncOpenAI(api_key=api_key)

    async def generate(self, context: GenerationContext) -> GenerationResult:
        system, user_message = render_prompt(context)
        start = time.perf_counter()

        response = await self._client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user_message},
            ],
        )

        text = response.choices[0].message.content if response.choices else None
        if not text or not text.strip():
            raise GenerationProviderError(self.name, "empty response")

        usage = response.usage
        token_counts = (
            {"input": usage.prompt_tokens, "output": usage.completion_tokens} if usage else {}
        )
        return GenerationResult(
            text=text.strip(),
            model_id=response.model,
            provider=self.name,
            token_counts=token_counts,
            latency_ms=(time.perf_counter() - start) * 1000,
        )


# =============================================================================
# Fallback chain
# =============================================================================


class FallbackChain:
    """Ordered list of backends tried in sequence until one succeeds.

    Args:
        backends: Backends in preference order
        timeout_s: Hard per-call timeout applied to every backend
    """

    def __init__(self, backends: Sequence[GenerationBackend], timeout_s: float):
        self.backends = list(backends)
        self.timeout_s = timeout_s

    @property
    def names(self) -> list[str]:
        return [b.name for b in self.backends]

    async def generate(self, context: GenerationContext) -> GenerationResult:
        """
        Generate a candidate with the first backend that succeeds.

        Raises:
            GenerationExhausted: If every backend timed out or failed
        """
        errors: list[GenerationError] = []

        for backend in self.backends:
            try:
                result = await asyncio.wait_for(
                    backend.generate(context), timeout=self.timeout_s
                )
            except TimeoutError:
                error: GenerationError = GenerationTimeout(
                    backend.name, f"timed out after {self.timeout_s}s"
                )
            except GenerationError as e:
                error = e
            except Exception as e:
                error = GenerationProviderError(backend.name, str(e) or type(e).__name__)
            else:
                if errors:
                    logger.info(
                        f"Backend {backend.name} succeeded after {len(errors)} failed backend(s)",
                        extra={"request_id": context.request_id},
                    )
                return result

            logger.warning(
                f"{type(error).__name__}: {error}",
                extra={"request_id": context.request_id, "backend": backend.name},
            )
            errors.append(error)

        exhausted = GenerationExhausted(errors)
        logger.error(str(exhausted), extra={"request_id": context.request_id})
        raise exhausted


def _anthropic_from_settings(settings: Settings) -> AnthropicBackend | None:
    if not settings.ANTHROPIC_API_KEY:
        return None
    return AnthropicBackend(
        model=settings.ANTHROPIC_MODEL,
        api_key=settings.ANTHROPIC_API_KEY,
        max_tokens=settings.GENERATION_MAX_TOKENS,
        temperature=settings.GENERATION_TEMPERATURE,
    )


def _openai_from_settings(settings: Settings) -> OpenAIBackend | None:
    if not settings.OPENAI_API_KEY:
        return None
    return OpenAIBackend(
        model=settings.OPENAI_MODEL,
        api_key=settings.OPENAI_API_KEY,
        max_tokens=settings.GENERATION_MAX_TOKENS,
        temperature=settings.GENERATION_TEMPERATURE,
    )


BACKEND_FACTORIES: dict[str, Callable[[Settings], GenerationBackend | None]] = {
    "anthropic": _anthropic_from_settings,
    "openai": _openai_from_settings,
}


def build_default_chain(settings: Settings) -> FallbackChain:
    """Assemble the chain from GENERATION_PROVIDERS, skipping providers without credentials."""
    backends: list[GenerationBackend] = []
    for provider in settings.GENERATION_PROVIDERS:
        factory = BACKEND_FACTORIES.get(provider)
        if factory is None:
            logger.warning(f"Unknown generation provider '{provider}', skipping")
            continue
        backend = factory(settings)
        if backend is None:
            logger.warning(f"No credentials for generation provider '{provider}', skipping")
            continue
        backends.append(backend)

    logger.info(f"Generation chain: {[b.name for b in backends] or 'empty'}")
    return FallbackChain(backends, timeout_s=settings.GENERATION_TIMEOUT_S)
