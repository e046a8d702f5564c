"""Usage and audit recording."""

from .recorder import InMemoryUsageSink, LoggingUsageSink, QueuedUsageRecorder, UsageRecorder, UsageSink

__all__ = ["InMemoryUsageSink", "LoggingUsageSink", "QueuedUsageRecorder", "UsageRecorder", "UsageSink"]
