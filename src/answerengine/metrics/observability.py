"""Observability helpers for the answer engine."""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar

import structlog
from prometheus_client import Counter, Histogram

_logger_configured = False
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()
    _correlation_id_var.set("-")


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_logger(name: str = "answerengine") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    search_latency = Histogram(
        "answerengine_search_duration_seconds",
        "Time spent in a single search provider call.",
        ["provider", "kind"],
        buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    )
    search_failures = Counter(
        "answerengine_search_failures_total",
        "Search provider calls that failed and were degraded to no results.",
        ["provider", "kind"],
    )
    document_lookup_latency = Histogram(
        "answerengine_document_lookup_duration_seconds",
        "Time spent fetching documents from the content store.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0),
    )
    context_chars = Histogram(
        "answerengine_context_chars",
        "Serialized context size handed to the generator.",
        buckets=(0, 500, 1000, 2000, 4000, 8000, 16000),
    )
    generation_latency = Histogram(
        "answerengine_generation_duration_seconds",
        "Time spent generating answers.",
        buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
    )
    generation_failures = Counter(
        "answerengine_generation_failures_total",
        "Generation calls replaced by the apology text.",
    )
    query_outcomes = Counter(
        "answerengine_queries_total",
        "Orchestrated queries by final status.",
        ["status"],
    )
    usage_dropped = Counter(
        "answerengine_usage_records_dropped_total",
        "Usage records dropped because the queue was full or the sink failed.",
        ["reason"],
    )

    @classmethod
    def observe_search(cls, provider: str, kind: str, duration_seconds: float, *, failed: bool = False) -> None:
        cls.search_latency.labels(provider=provider, kind=kind).observe(duration_seconds)
        if failed:
            cls.search_failures.labels(provider=provider, kind=kind).inc()

    @classmethod
    def observe_document_lookup(cls, duration_seconds: float) -> None:
        cls.document_lookup_latency.observe(duration_seconds)

    @classmethod
    def observe_context(cls, chars: int) -> None:
        cls.context_chars.observe(chars)

    @classmethod
    def observe_generation(cls, duration_seconds: float, *, failed: bool = False) -> None:
        cls.generation_latency.observe(duration_seconds)
        if failed:
            cls.generation_failures.inc()

    @classmethod
    def observe_query(cls, status: str) -> None:
        cls.query_outcomes.labels(status=status).inc()


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback) -> None:
        self._callback = callback
        self._start = 0.0
        self.duration = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.duration = time.perf_counter() - self._start
        self._callback(self.duration)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
]
