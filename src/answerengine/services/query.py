"""Query orchestration combining search, documents and generation."""

from __future__ import annotations

import asyncio
import hashlib
import time
from dataclasses import dataclass
from typing import Awaitable, Sequence, TypeVar
from uuid import uuid4

from answerengine.documents.store import DocumentStore
from answerengine.errors import ConfigurationError, QueryValidationError
from answerengine.metrics.observability import PipelineMetrics, TimedSection, get_logger
from answerengine.models import (
    AnswerResult,
    ChatQuery,
    ContextBlock,
    DocumentReference,
    Generation,
    QueryLogEntry,
    QueryStatus,
)
from answerengine.search.service import SearchService
from answerengine.services.context import ContextAssembler
from answerengine.services.generation import GenerationBackend, TemplateGenerator, TokenSink
from answerengine.usage.recorder import UsageRecorder

T = TypeVar("T")

PROCESSING_FAILED_MESSAGE = "Sorry, I could not process your request. Please try again."


@dataclass(frozen=True)
class OrchestratorConfig:
    """Per-call bounds used while orchestrating a query."""

    source_timeout_seconds: float = 15.0
    max_items: int = 4
    max_chars: int = 8000


class QueryOrchestrator:
    """Orchestrates search fan-out, context assembly and generation for one question."""

    def __init__(
        self,
        search: SearchService,
        documents: DocumentStore | None = None,
        generator: GenerationBackend | None = None,
        assembler: ContextAssembler | None = None,
        usage: UsageRecorder | None = None,
        config: OrchestratorConfig | None = None,
    ) -> None:
        self._search = search
        self._documents = documents
        self._generator = generator or TemplateGenerator()
        self._assembler = assembler or ContextAssembler()
        self._usage = usage
        self._config = config or OrchestratorConfig()
        self._logger = get_logger("query")

    async def answer(self, query: ChatQuery, *, sink: TokenSink | None = None) -> AnswerResult:
        question = self.validate(query)
        start = time.perf_counter()
        query_id = uuid4().hex

        search_results, images, videos, documents = await asyncio.gather(
            self._settle("web", self._search.search(question)),
            self._settle("images", self._search.images(question)),
            self._settle("videos", self._search.videos(question)),
            self._fetch_documents(query),
        )
        self._logger.info(
            "fanout.complete",
            query_id=query_id,
            search_count=len(search_results),
            image_count=len(images),
            video_count=len(videos),
            document_count=len(documents),
        )

        generation: Generation | None = None
        status: QueryStatus = "completed"
        try:
            context = self._assembler.assemble(
                search_results,
                documents,
                document_context=query.document_context,
                max_items=self._config.max_items,
                max_chars=self._config.max_chars,
            )
            PipelineMetrics.observe_context(len(context.serialized))
            generation = await self._generate(question, context, sink)
            text = generation.text
            error = generation.failed
            if generation.timed_out:
                status = "timeout"
            elif generation.failed:
                status = "failed"
        except ConfigurationError:
            PipelineMetrics.observe_query("failed")
            raise
        except Exception as exc:
            self._logger.error("orchestrator.failed", query_id=query_id, detail=str(exc))
            text = PROCESSING_FAILED_MESSAGE
            error = True
            status = "failed"

        latency_ms = (time.perf_counter() - start) * 1000
        result = AnswerResult(
            llm_response=text,
            sources=documents,
            search_results=search_results,
            images=images,
            videos=videos,
            error=error,
            query_id=query_id,
            latency_ms=latency_ms,
        )
        PipelineMetrics.observe_query(status)
        self._logger.info(
            "orchestrator.complete",
            query_id=query_id,
            status=status,
            latency_ms=latency_ms,
            error=error,
        )
        self._record_usage(query, result, generation, status)
        return result

    def check_ready(self) -> None:
        """Raise ``ConfigurationError`` up front when generation cannot run."""

        self._generator.check_ready()

    @staticmethod
    def validate(query: ChatQuery) -> str:
        """Return the stripped question or raise before any collaborator runs."""

        if not isinstance(query.query, str) or not query.query.strip():
            raise QueryValidationError("Query is required")
        return query.query.strip()

    async def _generate(self, question: str, context: ContextBlock, sink: TokenSink | None) -> Generation:
        generation_start = time.perf_counter()
        generation = await self._generator.generate(question=question, context=context, sink=sink)
        duration = time.perf_counter() - generation_start
        PipelineMetrics.observe_generation(duration, failed=generation.failed)
        self._logger.info(
            "generation.complete",
            duration_seconds=duration,
            failed=generation.failed,
            context_entries=len(context.entries),
        )
        return generation

    async def _settle(self, label: str, call: Awaitable[Sequence[T]]) -> list[T]:
        try:
            return list(await asyncio.wait_for(call, timeout=self._config.source_timeout_seconds))
        except asyncio.TimeoutError:
            self._logger.warning("source.timeout", source=label, timeout_seconds=self._config.source_timeout_seconds)
        except Exception as exc:
            self._logger.warning("source.failed", source=label, detail=str(exc))
        return []

    async def _fetch_documents(self, query: ChatQuery) -> list[DocumentReference]:
        if self._documents is None or not query.document_ids or not query.organization_id:
            return []
        with TimedSection(PipelineMetrics.observe_document_lookup):
            documents = await self._settle(
                "documents",
                self._documents.get_documents(list(query.document_ids), query.organization_id),
            )
        return documents

    def _record_usage(
        self,
        query: ChatQuery,
        result: AnswerResult,
        generation: Generation | None,
        status: QueryStatus,
    ) -> None:
        if self._usage is None:
            return
        question = query.query.strip()
        entry = QueryLogEntry(
            id=result.query_id or uuid4().hex,
            organization_id=query.organization_id,
            user_id=query.user_id,
            query_text=question,
            query_hash=hashlib.sha256(question.encode("utf-8")).hexdigest(),
            model_used=generation.model if generation else None,
            response_time_ms=int(result.latency_ms or 0),
            tokens_used=generation.tokens_used if generation else None,
            status=status,
            metadata={
                "documents_requested": len(query.document_ids),
                "documents_used": len(result.sources),
                "search_results": len(result.search_results),
                "response_length": len(result.llm_response),
            },
        )
        try:
            self._usage.record(entry)
        except Exception as exc:
            self._logger.warning("usage.record_failed", query_id=entry.id, detail=str(exc))
