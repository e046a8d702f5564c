"""Pydantic models for the answer engine API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from answerengine.models import AnswerResult, StoredDocument


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(CamelModel):
    query: str = Field(..., min_length=1, description="End-user question to answer")
    document_ids: List[str] = Field(default_factory=list, description="Stored documents to use as context")
    document_context: Optional[str] = Field(default=None, description="Free-form document text to use as context")


class DocumentSourceModel(CamelModel):
    id: str
    name: str
    category: Optional[str] = None
    summary: Optional[str] = None


class SearchResultModel(CamelModel):
    title: str
    link: str
    snippet: str
    favicon: Optional[str] = None


class ImageResultModel(CamelModel):
    title: str
    image_url: str
    source_url: str


class VideoResultModel(CamelModel):
    title: str
    link: str
    thumbnail: str
    duration: Optional[str] = None


class ChatResponse(CamelModel):
    llm_response: str
    sources: List[DocumentSourceModel]
    search_results: List[SearchResultModel]
    images: List[ImageResultModel]
    videos: List[VideoResultModel]
    error: bool = False
    query_id: Optional[str] = None

    @classmethod
    def from_result(cls, result: AnswerResult) -> "ChatResponse":
        return cls(
            llm_response=result.llm_response,
            sources=[
                DocumentSourceModel(id=doc.id, name=doc.name, category=doc.category, summary=doc.summary)
                for doc in result.sources
            ],
            search_results=[
                SearchResultModel(title=r.title, link=r.link, snippet=r.snippet, favicon=r.favicon)
                for r in result.search_results
            ],
            images=[
                ImageResultModel(title=i.title, image_url=i.image_url, source_url=i.source_url)
                for i in result.images
            ],
            videos=[
                VideoResultModel(title=v.title, link=v.link, thumbnail=v.thumbnail, duration=v.duration)
                for v in result.videos
            ],
            error=result.error,
            query_id=result.query_id,
        )


class DocumentEntityModel(CamelModel):
    text: str
    type: str
    confidence: float = Field(..., ge=0.0, le=1.0)


class DocumentSummaryModel(CamelModel):
    id: str = Field(..., description="Stable identifier for the stored document")
    original_name: str = Field(..., description="Filename as uploaded")
    category: str
    confidence: float = Field(..., ge=0.0, le=1.0, description="Classifier confidence for the category")
    summary: str
    entities: List[DocumentEntityModel] = Field(default_factory=list)
    word_count: int = Field(..., ge=0)
    media_type: str
    status: str
    created_at: datetime

    @classmethod
    def from_document(cls, document: StoredDocument) -> "DocumentSummaryModel":
        return cls(
            id=document.id,
            original_name=document.original_name,
            category=document.category,
            confidence=document.confidence,
            summary=document.summary,
            entities=[
                DocumentEntityModel(text=entity.text, type=entity.type, confidence=entity.confidence)
                for entity in document.entities
            ],
            word_count=document.word_count,
            media_type=document.media_type,
            status=document.status,
            created_at=document.created_at,
        )


class DocumentListResponse(CamelModel):
    documents: List[DocumentSummaryModel]


class ErrorResponse(BaseModel):
    error: str
    correlation_id: Optional[str] = None
