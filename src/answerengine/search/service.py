"""Search orchestration over an ordered chain of providers."""

from __future__ import annotations

import time
from typing import Awaitable, Callable, Sequence, TypeVar

from answerengine.metrics.observability import PipelineMetrics, get_logger
from answerengine.models import ImageResult, SearchResult, VideoResult
from answerengine.search.providers import SearchKind, SearchProvider

T = TypeVar("T")


class SearchService:
    """Fans a query through providers in order until one returns results.

    Failures never propagate: a provider error or an empty answer falls
    through to the next provider, and an exhausted chain yields ``[]``.
    """

    def __init__(self, providers: Sequence[SearchProvider]) -> None:
        self._providers = tuple(providers)
        self._logger = get_logger("search")

    @property
    def providers(self) -> tuple[SearchProvider, ...]:
        return self._providers

    async def search(self, query: str) -> list[SearchResult]:
        return await self._first_non_empty("web", query, lambda provider: provider.search)

    async def images(self, query: str) -> list[ImageResult]:
        return await self._first_non_empty("images", query, lambda provider: provider.images)

    async def videos(self, query: str) -> list[VideoResult]:
        return await self._first_non_empty("videos", query, lambda provider: provider.videos)

    async def _first_non_empty(
        self,
        kind: SearchKind,
        query: str,
        method: Callable[[SearchProvider], Callable[[str], Awaitable[Sequence[T]]]],
    ) -> list[T]:
        for provider in self._providers:
            if kind not in provider.capabilities:
                continue
            start = time.perf_counter()
            try:
                items = list(await method(provider)(query))
            except Exception as exc:
                duration = time.perf_counter() - start
                PipelineMetrics.observe_search(provider.name, kind, duration, failed=True)
                self._logger.warning(
                    "search.failed",
                    provider=provider.name,
                    kind=kind,
                    detail=str(exc),
                    duration_seconds=duration,
                )
                continue
            duration = time.perf_counter() - start
            PipelineMetrics.observe_search(provider.name, kind, duration)
            self._logger.info(
                "search.complete",
                provider=provider.name,
                kind=kind,
                result_count=len(items),
                duration_seconds=duration,
            )
            if items:
                return items
        return []
