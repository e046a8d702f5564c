"""Fire-and-forget usage recording."""

from __future__ import annotations

import asyncio
from dataclasses import asdict
from typing import Protocol

from answerengine.metrics.observability import PipelineMetrics, get_logger
from answerengine.models import QueryLogEntry


class UsageRecorder(Protocol):
    """Accepts one record per query without blocking the caller."""

    def record(self, entry: QueryLogEntry) -> None:
        """Hand the entry off for persistence."""


class UsageSink(Protocol):
    """Append-only destination for usage records."""

    async def write(self, entry: QueryLogEntry) -> None:
        """Persist one record."""


class LoggingUsageSink:
    """Writes usage records to the structured log."""

    def __init__(self) -> None:
        self._logger = get_logger("usage")

    async def write(self, entry: QueryLogEntry) -> None:
        payload = asdict(entry)
        payload["created_at"] = entry.created_at.isoformat()
        self._logger.info("usage.recorded", **payload)


class InMemoryUsageSink:
    """Keeps records in a list; handy for tests and local runs."""

    def __init__(self) -> None:
        self.entries: list[QueryLogEntry] = []

    async def write(self, entry: QueryLogEntry) -> None:
        self.entries.append(entry)


class QueuedUsageRecorder:
    """Bounded queue drained by a background worker into a sink.

    ``record`` never blocks and never raises: a full queue drops the entry,
    and sink failures are logged by the worker.
    """

    def __init__(self, sink: UsageSink | None = None, *, maxsize: int = 1000) -> None:
        self._sink = sink or LoggingUsageSink()
        self._queue: asyncio.Queue[QueryLogEntry] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task[None] | None = None
        self._logger = get_logger("usage")

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def record(self, entry: QueryLogEntry) -> None:
        try:
            self._queue.put_nowait(entry)
        except asyncio.QueueFull:
            PipelineMetrics.usage_dropped.labels(reason="queue_full").inc()
            self._logger.warning("usage.dropped", reason="queue_full", query_id=entry.id)

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    async def drain(self) -> None:
        """Write every queued entry now; used at shutdown and in tests."""

        while not self._queue.empty():
            await self._write(self._queue.get_nowait())
            self._queue.task_done()

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        await self.drain()

    async def _run(self) -> None:
        while True:
            entry = await self._queue.get()
            try:
                await self._write(entry)
            finally:
                self._queue.task_done()

    async def _write(self, entry: QueryLogEntry) -> None:
        try:
            await self._sink.write(entry)
        except Exception as exc:
            PipelineMetrics.usage_dropped.labels(reason="sink_error").inc()
            self._logger.error("usage.write_failed", query_id=entry.id, detail=str(exc))
