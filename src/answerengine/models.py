"""Shared domain models used across the answer pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Sequence

QueryType = Literal["search", "function_call", "image_generation"]
QueryStatus = Literal["completed", "failed", "timeout", "rate_limited"]
DocumentStatus = Literal["processing", "completed", "failed"]

UPLOADED_DOCUMENT_TITLE = "Uploaded Document"
UPLOADED_DOCUMENT_SOURCE = "uploaded-document"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SearchResult:
    """Normalized web search hit."""

    title: str
    link: str
    snippet: str
    favicon: str | None = None


@dataclass(frozen=True)
class ImageResult:
    title: str
    image_url: str
    source_url: str


@dataclass(frozen=True)
class VideoResult:
    title: str
    link: str
    thumbnail: str
    duration: str | None = None


@dataclass(frozen=True)
class DocumentReference:
    """Read-only projection of a stored, already processed document."""

    id: str
    name: str
    category: str | None = None
    summary: str | None = None
    text_content: str = ""


@dataclass(frozen=True)
class ContextEntry:
    """One source handed to the generation step."""

    content: str
    source_url: str
    title: str

    def render(self) -> str:
        return f"Source: {self.title} ({self.source_url})\n{self.content}"


@dataclass(frozen=True)
class ContextBlock:
    """Ordered, size-bounded context assembled for one question."""

    entries: Sequence[ContextEntry] = ()

    @property
    def serialized(self) -> str:
        return "\n\n".join(entry.render() for entry in self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries


@dataclass(frozen=True)
class Generation:
    """Outcome of one call to the generation backend."""

    text: str
    failed: bool = False
    timed_out: bool = False
    tokens_used: int | None = None
    model: str | None = None


@dataclass(frozen=True)
class ChatQuery:
    """Incoming question plus the optional document selection."""

    query: str
    document_ids: Sequence[str] = ()
    document_context: str | None = None
    organization_id: str | None = None
    user_id: str | None = None


@dataclass(frozen=True)
class AnswerResult:
    """Answer returned to the caller for one query."""

    llm_response: str
    sources: Sequence[DocumentReference] = ()
    search_results: Sequence[SearchResult] = ()
    images: Sequence[ImageResult] = ()
    videos: Sequence[VideoResult] = ()
    error: bool = False
    query_id: str | None = None
    latency_ms: float | None = None


@dataclass(frozen=True)
class QueryLogEntry:
    """Usage/audit record written once per orchestrated query."""

    id: str
    organization_id: str | None
    query_text: str
    query_hash: str
    model_used: str | None
    response_time_ms: int
    status: QueryStatus
    user_id: str | None = None
    query_type: QueryType = "search"
    tokens_used: int | None = None
    cost_cents: int | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class DocumentEntity:
    """Named entity tagged in an uploaded document."""

    text: str
    type: str
    confidence: float = 0.5


@dataclass(frozen=True)
class StoredDocument:
    """Processed upload as persisted in the document content store."""

    id: str
    organization_id: str
    original_name: str
    text_content: str
    summary: str
    category: str
    word_count: int
    media_type: str = ""
    confidence: float = 0.5
    entities: Sequence[DocumentEntity] = ()
    status: DocumentStatus = "completed"
    created_at: datetime = field(default_factory=_utcnow)

    def to_reference(self) -> DocumentReference:
        return DocumentReference(
            id=self.id,
            name=self.original_name,
            category=self.category,
            summary=self.summary,
            text_content=self.text_content,
        )
