"""Tests for upload processing helpers."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from answerengine.documents.processor import (
    DocumentAnalyzer,
    DocumentProcessor,
    IngestionError,
    UnsupportedFileTypeError,
)
from answerengine.errors import GenerationError
from answerengine.models import DocumentEntity
from answerengine.services.generation import TemplateGenerator


class ScriptedBackend:
    """Answers each analysis prompt with a canned reply chosen by its system prompt."""

    def __init__(
        self,
        summary: str = "A short summary.",
        classification: str = '{"category": "contract", "confidence": 0.92}',
        entities: str = '{"entities": []}',
    ) -> None:
        self.summary = summary
        self.classification = classification
        self.entities = entities
        self.calls: list[dict] = []

    async def generate(self, *, question, context, sink=None):
        raise AssertionError("not used")

    async def complete(self, messages, *, max_tokens=None, json_mode=False) -> str:
        self.calls.append({"messages": messages, "max_tokens": max_tokens, "json_mode": json_mode})
        system = messages[0]["content"]
        if system == DocumentAnalyzer.ENTITY_PROMPT:
            return self.entities
        if system == DocumentAnalyzer.CLASSIFY_PROMPT:
            return self.classification
        return self.summary


def test_processor_extracts_text_and_analyzes(tmp_path: Path) -> None:
    document = tmp_path / "agreement.txt"
    document.write_text("Service agreement between Company A and Company B for $50,000.\n\nPayment due in 30 days.")
    backend = ScriptedBackend()
    processor = DocumentProcessor(DocumentAnalyzer(backend))

    stored = asyncio.run(processor.process(document, original_name="agreement.txt", organization_id="org-1"))

    assert stored.original_name == "agreement.txt"
    assert stored.organization_id == "org-1"
    assert stored.summary == "A short summary."
    assert stored.category == "contract"
    assert stored.media_type == "txt"
    assert "$50,000" in stored.text_content
    assert stored.word_count == len(stored.text_content.split())
    assert stored.confidence == 0.92
    assert stored.entities == ()
    assert {call["max_tokens"] for call in backend.calls} == {300, 50, 500}


def test_analyzer_falls_back_when_backend_cannot_complete(tmp_path: Path) -> None:
    document = tmp_path / "notes.md"
    document.write_text("Quarterly numbers look healthy across all regions this year.")
    processor = DocumentProcessor(DocumentAnalyzer(TemplateGenerator()))

    stored = asyncio.run(processor.process(document, original_name="notes.md", organization_id="org-1"))

    assert stored.category == "other"
    assert stored.summary.startswith("Quarterly numbers")


def test_unknown_category_maps_to_other() -> None:
    analyzer = DocumentAnalyzer(ScriptedBackend(classification='{"category": "poem"}'))
    analysis = asyncio.run(analyzer.analyze("Roses are red, violets are blue."))
    assert analysis.category == "other"


def test_malformed_classification_maps_to_other() -> None:
    analyzer = DocumentAnalyzer(ScriptedBackend(classification="not json"))
    analysis = asyncio.run(analyzer.analyze("Invoice #42 total due $100."))
    assert analysis.category == "other"


def test_short_text_is_rejected(tmp_path: Path) -> None:
    document = tmp_path / "tiny.txt"
    document.write_text("hi")
    processor = DocumentProcessor(DocumentAnalyzer(ScriptedBackend()))
    with pytest.raises(IngestionError, match="No readable text"):
        asyncio.run(processor.process(document, original_name="tiny.txt", organization_id="org-1"))


def test_unsupported_extension(tmp_path: Path) -> None:
    document = tmp_path / "image.png"
    document.write_bytes(b"\x89PNG")
    processor = DocumentProcessor(DocumentAnalyzer(ScriptedBackend()))
    with pytest.raises(UnsupportedFileTypeError):
        processor.extract_text(document)


def test_generation_error_is_not_leaked_by_analyzer() -> None:
    class Broken(ScriptedBackend):
        async def complete(self, messages, *, max_tokens=None, json_mode=False) -> str:
            raise GenerationError("rate limited")

    analysis = asyncio.run(DocumentAnalyzer(Broken()).analyze("Some long enough text to summarize here."))
    assert analysis.category == "other"
    assert analysis.summary == "Some long enough text to summarize here."


def test_entities_are_parsed_and_capped() -> None:
    items = [{"text": f"Company {index}", "type": "organization", "confidence": 0.9} for index in range(12)]
    items.insert(0, {"text": "$50,000", "type": "MONEY", "confidence": 1.7})
    items.insert(1, {"text": "   ", "type": "PERSON"})
    backend = ScriptedBackend(entities=json.dumps({"entities": items}))

    analysis = asyncio.run(DocumentAnalyzer(backend).analyze("Company A pays Company B $50,000 by March."))

    assert len(analysis.entities) == 10
    assert analysis.entities[0] == DocumentEntity(text="$50,000", type="MONEY", confidence=1.0)
    assert analysis.entities[1] == DocumentEntity(text="Company 0", type="ORGANIZATION", confidence=0.9)
    entity_call = next(call for call in backend.calls if call["max_tokens"] == 500)
    assert entity_call["json_mode"] is True
    assert entity_call["messages"][1]["content"].endswith("Company A pays Company B $50,000 by March.")


def test_entity_extraction_falls_back_to_empty() -> None:
    for reply in ("not json", '{"entities": "none"}', "[]"):
        analysis = asyncio.run(DocumentAnalyzer(ScriptedBackend(entities=reply)).analyze("Invoice #42 total due $100."))
        assert analysis.entities == ()
        assert analysis.category == "contract"


def test_extraction_input_is_limited() -> None:
    backend = ScriptedBackend()
    asyncio.run(DocumentAnalyzer(backend).analyze("x" * 5000))
    entity_call = next(call for call in backend.calls if call["max_tokens"] == 500)
    assert entity_call["messages"][1]["content"] == "Extract entities from:\n\n" + "x" * 3000


def test_missing_confidence_defaults() -> None:
    backend = ScriptedBackend(classification='{"category": "invoice"}')
    analysis = asyncio.run(DocumentAnalyzer(backend).analyze("Invoice #42 total due $100."))
    assert analysis.category == "invoice"
    assert analysis.confidence == 0.5
