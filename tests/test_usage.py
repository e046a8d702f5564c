"""Tests for the queued usage recorder."""

from __future__ import annotations

import asyncio

from answerengine.models import QueryLogEntry
from answerengine.usage import InMemoryUsageSink, QueuedUsageRecorder


def _entry(query_id: str) -> QueryLogEntry:
    return QueryLogEntry(
        id=query_id,
        organization_id="org",
        query_text="What?",
        query_hash="0" * 64,
        model_used="stub",
        response_time_ms=12,
        status="completed",
    )


class FailingSink:
    def __init__(self) -> None:
        self.attempts = 0

    async def write(self, entry: QueryLogEntry) -> None:
        self.attempts += 1
        raise RuntimeError("disk full")


def test_worker_drains_records_into_sink() -> None:
    async def scenario() -> list[str]:
        sink = InMemoryUsageSink()
        recorder = QueuedUsageRecorder(sink, maxsize=10)
        recorder.start()
        recorder.record(_entry("a"))
        recorder.record(_entry("b"))
        await asyncio.sleep(0.01)
        await recorder.stop()
        return [entry.id for entry in sink.entries]

    assert asyncio.run(scenario()) == ["a", "b"]


def test_full_queue_drops_without_raising() -> None:
    async def scenario() -> tuple[int, list[str]]:
        sink = InMemoryUsageSink()
        recorder = QueuedUsageRecorder(sink, maxsize=1)
        recorder.record(_entry("kept"))
        recorder.record(_entry("dropped"))
        pending = recorder.pending
        await recorder.drain()
        return pending, [entry.id for entry in sink.entries]

    pending, written = asyncio.run(scenario())
    assert pending == 1
    assert written == ["kept"]


def test_sink_failure_is_isolated() -> None:
    async def scenario() -> int:
        sink = FailingSink()
        recorder = QueuedUsageRecorder(sink)
        recorder.start()
        recorder.record(_entry("a"))
        recorder.record(_entry("b"))
        await asyncio.sleep(0.01)
        await recorder.stop()
        return sink.attempts

    assert asyncio.run(scenario()) == 2
