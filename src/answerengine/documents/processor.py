"""Upload processing: text extraction, summary, classification and entity tagging."""

from __future__ import annotations

import asyncio
import json
import math
import re
import time
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence
from uuid import uuid4

from langchain_community.document_loaders import Docx2txtLoader, PyPDFLoader, TextLoader
from langchain_core.document_loaders import BaseLoader

from answerengine.errors import AnswerEngineError
from answerengine.metrics.observability import get_logger
from answerengine.models import DocumentEntity, StoredDocument
from answerengine.services.generation import GenerationBackend

DOCUMENT_CATEGORIES = (
    "contract",
    "report",
    "proposal",
    "invoice",
    "correspondence",
    "presentation",
    "manual",
    "other",
)
MIN_TEXT_LENGTH = 10
MAX_ENTITIES = 10
DEFAULT_CONFIDENCE = 0.5


class IngestionError(AnswerEngineError):
    """Raised when an uploaded document cannot be processed."""


class UnsupportedFileTypeError(IngestionError):
    """Raised when a document extension is not supported."""


@dataclass(frozen=True)
class DocumentAnalysis:
    summary: str
    category: str
    confidence: float = DEFAULT_CONFIDENCE
    entities: tuple[DocumentEntity, ...] = ()


def _normalize_text(raw: str) -> str:
    normalized = unicodedata.normalize("NFKC", raw)
    normalized = normalized.replace("\u00a0", " ")
    normalized = re.sub(r"[ \t]+", " ", normalized)
    normalized = re.sub(r"\n{3,}", "\n\n", normalized)
    return normalized.strip()


class DocumentAnalyzer:
    """Summarizes, classifies and entity-tags document text through the generation backend.

    The three requests run concurrently. Each one degrades on its own: a
    failed summary falls back to the leading words, a failed classification
    to ``other`` with default confidence, and failed extraction to no entities.
    """

    SUMMARY_PROMPT = (
        "You are a document analyst. Create a concise, professional summary of the document content. "
        "Focus on key points, main topics, and important details. Keep it under 200 words."
    )
    CLASSIFY_PROMPT = (
        "Classify this document into one of these categories: "
        + ", ".join(DOCUMENT_CATEGORIES)
        + '. Respond with JSON: {"category": "category_name", "confidence": 0.95}'
    )
    ENTITY_PROMPT = (
        "Extract important entities from the text. Focus on:\n"
        "- PERSON: Names of people\n"
        "- ORGANIZATION: Company names, institutions\n"
        "- DATE: Dates, deadlines, time periods\n"
        "- MONEY: Amounts, prices, financial figures\n"
        "- LOCATION: Places, addresses, locations\n"
        "- PRODUCT: Products, services mentioned\n\n"
        'Return JSON: {"entities": [{"text": "entity text", "type": "PERSON", "confidence": 0.95}]}\n'
        f"Limit to the {MAX_ENTITIES} most important entities."
    )

    def __init__(self, backend: GenerationBackend) -> None:
        self._backend = backend
        self._logger = get_logger("documents")

    async def analyze(self, text: str) -> DocumentAnalysis:
        summary, (category, confidence), entities = await asyncio.gather(
            self._summarize(text),
            self._classify(text),
            self._extract_entities(text),
        )
        return DocumentAnalysis(summary=summary, category=category, confidence=confidence, entities=entities)

    async def _summarize(self, text: str) -> str:
        messages = [
            {"role": "system", "content": self.SUMMARY_PROMPT},
            {"role": "user", "content": f"Please summarize this document:\n\n{text[:4000]}"},
        ]
        try:
            return (await self._backend.complete(messages, max_tokens=300)).strip()
        except Exception as exc:
            self._logger.warning("documents.summary_fallback", detail=str(exc))
            return _leading_words(text, 60)

    async def _classify(self, text: str) -> tuple[str, float]:
        messages = [
            {"role": "system", "content": self.CLASSIFY_PROMPT},
            {"role": "user", "content": f"Classify this document:\n\n{text[:2000]}"},
        ]
        try:
            raw = await self._backend.complete(messages, max_tokens=50, json_mode=True)
            parsed = json.loads(raw)
            category = str(parsed.get("category", "other")).lower()
            confidence = _confidence(parsed.get("confidence"))
        except Exception as exc:
            self._logger.warning("documents.classify_fallback", detail=str(exc))
            return "other", DEFAULT_CONFIDENCE
        if category not in DOCUMENT_CATEGORIES:
            return "other", DEFAULT_CONFIDENCE
        return category, confidence

    async def _extract_entities(self, text: str) -> tuple[DocumentEntity, ...]:
        messages = [
            {"role": "system", "content": self.ENTITY_PROMPT},
            {"role": "user", "content": f"Extract entities from:\n\n{text[:3000]}"},
        ]
        try:
            raw = await self._backend.complete(messages, max_tokens=500, json_mode=True)
            items = json.loads(raw).get("entities") or []
        except Exception as exc:
            self._logger.warning("documents.entities_fallback", detail=str(exc))
            return ()
        if not isinstance(items, list):
            return ()
        entities = [
            DocumentEntity(
                text=str(item["text"]).strip(),
                type=str(item.get("type", "OTHER")).upper(),
                confidence=_confidence(item.get("confidence")),
            )
            for item in items
            if isinstance(item, dict) and str(item.get("text", "")).strip()
        ]
        return tuple(entities[:MAX_ENTITIES])


def _confidence(value: object) -> float:
    try:
        score = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if math.isnan(score):
        return DEFAULT_CONFIDENCE
    return min(max(score, 0.0), 1.0)


def _leading_words(text: str, count: int) -> str:
    words = text.split()
    lead = " ".join(words[:count])
    return f"{lead}..." if len(words) > count else lead


class DocumentProcessor:
    """Turns an uploaded file into a ``StoredDocument`` ready for the store."""

    _LOADERS: Mapping[str, type[BaseLoader]] = {
        ".pdf": PyPDFLoader,
        ".docx": Docx2txtLoader,
        ".txt": TextLoader,
        ".md": TextLoader,
    }

    def __init__(self, analyzer: DocumentAnalyzer, *, encoding: str = "utf-8") -> None:
        self._analyzer = analyzer
        self._encoding = encoding
        self._logger = get_logger("documents")

    @property
    def supported_extensions(self) -> Sequence[str]:
        return tuple(self._LOADERS)

    async def process(self, path: Path, *, original_name: str, organization_id: str) -> StoredDocument:
        start = time.perf_counter()
        text = await asyncio.to_thread(self.extract_text, path)
        if len(text.strip()) < MIN_TEXT_LENGTH:
            raise IngestionError("No readable text found in document")
        analysis = await self._analyzer.analyze(text)
        document = StoredDocument(
            id=uuid4().hex,
            organization_id=organization_id,
            original_name=original_name,
            text_content=text,
            summary=analysis.summary,
            category=analysis.category,
            word_count=len(text.split()),
            media_type=path.suffix.lower().lstrip("."),
            confidence=analysis.confidence,
            entities=analysis.entities,
        )
        self._logger.info(
            "documents.processed",
            document_id=document.id,
            name=original_name,
            category=document.category,
            entity_count=len(document.entities),
            word_count=document.word_count,
            duration_seconds=time.perf_counter() - start,
        )
        return document

    def extract_text(self, path: Path) -> str:
        suffix = path.suffix.lower()
        loader_cls = self._LOADERS.get(suffix)
        if loader_cls is None:
            raise UnsupportedFileTypeError(f"Unsupported document type: {suffix or '<none>'}")
        try:
            loader = self._build_loader(loader_cls, path)
            pages = loader.load()
        except Exception as exc:  # pragma: no cover - loader specific errors
            raise IngestionError(f"Failed to load {path.name}: {exc}") from exc
        return _normalize_text("\n\n".join(page.page_content for page in pages))

    def _build_loader(self, loader_cls: type[BaseLoader], path: Path) -> BaseLoader:
        if loader_cls is TextLoader:
            return loader_cls(str(path), encoding=self._encoding)
        return loader_cls(str(path))
