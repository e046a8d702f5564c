"""Error taxonomy for the answer pipeline."""

from __future__ import annotations


class AnswerEngineError(RuntimeError):
    """Base class for pipeline errors."""


class QueryValidationError(AnswerEngineError, ValueError):
    """Raised when the incoming query is missing or malformed."""


class ConfigurationError(AnswerEngineError):
    """Raised when a call needs configuration (usually a credential) that is absent."""


class SourceUnavailableError(AnswerEngineError):
    """Raised when a search provider or the document store cannot be reached."""


class GenerationError(AnswerEngineError):
    """Raised when the completion backend fails or returns unusable output."""
