"""Generation backends for the answer engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, Protocol, Sequence

import openai
from openai import AsyncOpenAI

from answerengine.errors import ConfigurationError, GenerationError
from answerengine.metrics.observability import get_logger
from answerengine.models import ContextBlock, Generation

TokenSink = Callable[[str], Awaitable[None]]
ChatMessage = Mapping[str, str]

APOLOGY_MESSAGE = "I apologize, but I encountered an error processing your request. Please try again."
EMPTY_RESPONSE_MESSAGE = "No response generated."


@dataclass(frozen=True)
class GenerationConfig:
    """Configuration for answer generation."""

    model: str = "llama-3.1-70b-versatile"
    base_url: str | None = "https://api.groq.com/openai/v1"
    api_key: str | None = None
    temperature: float = 0.7
    max_tokens: int = 2000
    timeout_seconds: float = 60.0


class PromptBuilder:
    """Builds the chat messages sent to the completion endpoint."""

    SYSTEM_INSTRUCTIONS = (
        "You are an AI assistant that provides helpful, accurate answers based on the provided context "
        "and your knowledge.\n\n"
        "Key instructions:\n"
        "1. Answer the user's question directly and concisely\n"
        "2. Use the provided search results and documents when relevant\n"
        "3. Always cite sources when using information from the provided context\n"
        "4. If the context doesn't contain enough information, say so and use your general knowledge\n"
        "5. If you reference documents or files, explain their relevance clearly"
    )
    EMPTY_CONTEXT_NOTE = (
        "No search results or documents were found for this question. "
        "Answer from general knowledge and tell the user that no sources were available."
    )

    def build_messages(self, *, question: str, context: ContextBlock) -> list[dict[str, str]]:
        if context.is_empty:
            system = f"{self.SYSTEM_INSTRUCTIONS}\n\n{self.EMPTY_CONTEXT_NOTE}"
        else:
            system = f"{self.SYSTEM_INSTRUCTIONS}\n\nContext from search results and documents:\n{context.serialized}"
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": question},
        ]


class GenerationBackend(Protocol):
    """Protocol describing generation behaviour."""

    def check_ready(self) -> None:
        """Raise ``ConfigurationError`` when the backend cannot serve requests."""

    async def generate(
        self,
        *,
        question: str,
        context: ContextBlock,
        sink: TokenSink | None = None,
    ) -> Generation:
        """Return an answer; stream chunks into ``sink`` in arrival order when given."""

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        """Run a raw single-shot completion; raises ``GenerationError`` on failure."""


class TemplateGenerator:
    """Deterministic generator used for tests and offline environments."""

    model = "template"

    def check_ready(self) -> None:
        return None

    async def generate(
        self,
        *,
        question: str,
        context: ContextBlock,
        sink: TokenSink | None = None,
    ) -> Generation:
        if context.is_empty:
            text = (
                f"I could not find any search results or documents for '{question}', "
                "so this answer relies on general knowledge only."
            )
        else:
            lead = context.entries[0].content
            sources = "\n".join(
                f"[{index}] {entry.title} ({entry.source_url})"
                for index, entry in enumerate(context.entries, start=1)
            )
            text = f"{lead}\n\nSources:\n{sources}"
        if sink is not None:
            for piece in _split_keep_spaces(text):
                await sink(piece)
        return Generation(text=text, model=self.model)

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        raise GenerationError("Template backend has no model to complete with")


class OpenAIGenerator:
    """Generator backed by any OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        config: GenerationConfig | None = None,
        *,
        client: AsyncOpenAI | None = None,
        prompt_builder: PromptBuilder | None = None,
    ) -> None:
        self._config = config or GenerationConfig()
        self._client = client
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._logger = get_logger("generation")

    @property
    def model(self) -> str:
        return self._config.model

    def check_ready(self) -> None:
        self._get_client()

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._config.api_key:
                raise ConfigurationError("Generation API key is not configured")
            self._client = AsyncOpenAI(
                api_key=self._config.api_key,
                base_url=self._config.base_url,
                timeout=self._config.timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def generate(
        self,
        *,
        question: str,
        context: ContextBlock,
        sink: TokenSink | None = None,
    ) -> Generation:
        client = self._get_client()
        messages = self._prompt_builder.build_messages(question=question, context=context)
        # Chunks already handed to the sink; an apology must not be appended after them.
        delivered: list[str] = []
        try:
            if sink is None:
                return await self._single_shot(client, messages)
            return await self._streaming(client, messages, sink, delivered)
        except openai.APITimeoutError as exc:
            self._logger.warning(
                "generation.timeout",
                model=self._config.model,
                detail=str(exc),
                streamed_chars=sum(map(len, delivered)),
            )
            return await self._apology(sink, streamed=bool(delivered), timed_out=True)
        except Exception as exc:
            self._logger.error(
                "generation.failed",
                model=self._config.model,
                detail=str(exc),
                streamed_chars=sum(map(len, delivered)),
            )
            return await self._apology(sink, streamed=bool(delivered))

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        client = self._get_client()
        extra: dict[str, object] = {}
        if json_mode:
            extra["response_format"] = {"type": "json_object"}
        try:
            completion = await client.chat.completions.create(
                model=self._config.model,
                messages=list(messages),
                max_tokens=max_tokens or self._config.max_tokens,
                **extra,
            )
        except openai.OpenAIError as exc:
            raise GenerationError(str(exc)) from exc
        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise GenerationError("Completion returned no content")
        return content

    async def _single_shot(self, client: AsyncOpenAI, messages: list[dict[str, str]]) -> Generation:
        completion = await client.chat.completions.create(
            model=self._config.model,
            messages=messages,
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
            stream=False,
        )
        content = completion.choices[0].message.content if completion.choices else None
        tokens = completion.usage.total_tokens if completion.usage else None
        return Generation(text=content or EMPTY_RESPONSE_MESSAGE, tokens_used=tokens, model=self._config.model)

    async def _streaming(
        self,
        client: AsyncOpenAI,
        messages: list[dict[str, str]],
        sink: TokenSink,
        delivered: list[str],
    ) -> Generation:
        stream = await client.chat.completions.create(
            model=self._config.model,
            messages=messages,
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
            stream=True,
        )
        async for chunk in stream:
            delta = chunk.choices[0].delta.content if chunk.choices else None
            if delta:
                delivered.append(delta)
                await sink(delta)
        return Generation(text="".join(delivered) or EMPTY_RESPONSE_MESSAGE, model=self._config.model)

    async def _apology(self, sink: TokenSink | None, *, streamed: bool = False, timed_out: bool = False) -> Generation:
        """Failed generation; the apology is streamed only when no partial answer went out first."""

        if sink is not None and not streamed:
            await sink(APOLOGY_MESSAGE)
        return Generation(text=APOLOGY_MESSAGE, failed=True, timed_out=timed_out, model=self._config.model)


def _split_keep_spaces(text: str) -> list[str]:
    pieces: list[str] = []
    current = ""
    for char in text:
        current += char
        if char == " ":
            pieces.append(current)
            current = ""
    if current:
        pieces.append(current)
    return pieces
