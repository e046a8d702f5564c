"""Tests for the FastAPI application."""

from __future__ import annotations

import json
from io import BytesIO
from typing import Sequence
from uuid import uuid4

import chromadb
import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from answerengine.api.app import AppDependencies, RateLimiter, create_app
from answerengine.config import Settings
from answerengine.documents import ChromaDocumentStore, DocumentAnalyzer, DocumentProcessor
from answerengine.errors import ConfigurationError
from answerengine.models import ContextBlock, Generation, QueryLogEntry, SearchResult
from answerengine.search import SearchService, StaticSearchProvider
from answerengine.services.generation import APOLOGY_MESSAGE, TemplateGenerator
from answerengine.services.query import QueryOrchestrator
from answerengine.usage import InMemoryUsageSink, QueuedUsageRecorder

FRANCE = SearchResult(title="France", link="https://example.org/france", snippet="Paris is the capital of France.")


class ContractBackend(TemplateGenerator):
    """Template answers, plus canned document analysis."""

    async def complete(self, messages, *, max_tokens=None, json_mode=False) -> str:
        if messages[0]["content"] == DocumentAnalyzer.ENTITY_PROMPT:
            return '{"entities": [{"text": "Company A", "type": "ORGANIZATION", "confidence": 0.95}]}'
        if json_mode:
            return '{"category": "contract", "confidence": 0.9}'
        return "Service agreement between Company A and Company B for $50,000"


class UnconfiguredGenerator:
    def check_ready(self) -> None:
        raise ConfigurationError("Generation API key is not configured")

    async def generate(self, *, question: str, context: ContextBlock, sink=None) -> Generation:
        raise ConfigurationError("Generation API key is not configured")

    async def complete(self, messages, *, max_tokens=None, json_mode=False) -> str:
        raise ConfigurationError("Generation API key is not configured")


class PartialFailureGenerator(TemplateGenerator):
    """Streams part of an answer, then gives up."""

    async def generate(self, *, question: str, context: ContextBlock, sink=None) -> Generation:
        if sink is not None:
            await sink("Paris is the ca")
        return Generation(text=APOLOGY_MESSAGE, failed=True, model=self.model)


def make_client(
    *,
    results: Sequence[SearchResult] = (FRANCE,),
    generator=None,
    usage: QueuedUsageRecorder | None = None,
    **overrides: object,
) -> TestClient:
    generator = generator or ContractBackend()
    store = ChromaDocumentStore(collection_name=f"api-{uuid4().hex[:8]}", client=chromadb.EphemeralClient())
    orchestrator = QueryOrchestrator(
        search=SearchService([StaticSearchProvider(results=results)]),
        documents=store,
        generator=generator,
        usage=usage,
    )
    deps = AppDependencies(
        orchestrator=orchestrator,
        store=store,
        processor=DocumentProcessor(DocumentAnalyzer(generator)),
        usage=usage,
    )
    settings = Settings(environment="test", **overrides)
    return TestClient(create_app(settings=settings, dependencies=deps))


def test_chat_returns_answer_with_search_results() -> None:
    client = make_client()
    response = client.post("/chat", json={"query": "What is the capital of France?"})

    assert response.status_code == 200, response.text
    payload = response.json()
    assert "Paris" in payload["llmResponse"]
    assert payload["error"] is False
    assert payload["searchResults"][0]["link"] == "https://example.org/france"
    assert payload["sources"] == []
    assert payload["images"] == []
    assert "X-Correlation-ID" in response.headers


def test_empty_query_is_400() -> None:
    client = make_client()
    for body in ({"query": ""}, {"query": "   "}, {}, {"query": 42}):
        response = client.post("/chat", json=body)
        assert response.status_code == 400, body
        assert response.json()["error"]


def test_missing_generation_credential_is_503() -> None:
    client = make_client(generator=UnconfiguredGenerator())
    response = client.post("/chat", json={"query": "Hello?"})

    assert response.status_code == 503
    assert "unavailable" in response.json()["error"]


def test_stream_with_missing_generation_credential_is_503() -> None:
    client = make_client(generator=UnconfiguredGenerator())
    response = client.post("/chat/stream", json={"query": "Hello?"})

    assert response.status_code == 503
    assert response.headers["content-type"].startswith("application/json")
    assert "unavailable" in response.json()["error"]


def test_api_key_required_when_configured() -> None:
    client = make_client(api_key="s3cret")
    denied = client.post("/chat", json={"query": "Hi"})
    assert denied.status_code == 401
    assert denied.json()["error"] == "Invalid API key"
    assert "detail" not in denied.json()
    ok = client.post("/chat", json={"query": "Hi"}, headers={"X-API-Key": "s3cret"})
    assert ok.status_code == 200


def test_rate_limit_applies_per_client() -> None:
    client = make_client(rate_limit_requests=1, use_rate_limiting=True)
    assert client.post("/chat", json={"query": "one"}).status_code == 200
    limited = client.post("/chat", json={"query": "two"})
    assert limited.status_code == 429
    assert limited.json()["error"] == "Rate limit exceeded"
    assert limited.json()["correlation_id"] == limited.headers["X-Correlation-ID"]


def test_rate_limiter_forgets_expired_clients() -> None:
    limiter = RateLimiter(requests=2, window_seconds=10)
    for index in range(50):
        limiter.hit(f"10.0.0.{index}:/chat", now=1000.0)
    assert limiter.tracked_keys == 50

    limiter.hit("10.0.0.200:/chat", now=1011.0)
    assert limiter.tracked_keys == 1


def test_rate_limiter_window_slides() -> None:
    limiter = RateLimiter(requests=1, window_seconds=10)
    limiter.hit("client:/chat", now=1000.0)
    with pytest.raises(HTTPException):
        limiter.hit("client:/chat", now=1005.0)
    limiter.hit("client:/chat", now=1010.5)


def test_upload_then_chat_with_document_ids() -> None:
    client = make_client(results=())
    headers = {"X-Organization-ID": "org-1"}
    content = b"This Service Agreement is made between Company A and Company B. The total fee is $50,000."
    upload = client.post(
        "/documents",
        files=[("files", ("contract.txt", BytesIO(content), "text/plain"))],
        headers=headers,
    )
    assert upload.status_code == 201, upload.text
    document = upload.json()["documents"][0]
    assert document["originalName"] == "contract.txt"
    assert document["category"] == "contract"
    assert document["confidence"] == 0.9
    assert document["status"] == "completed"
    assert document["entities"] == [{"text": "Company A", "type": "ORGANIZATION", "confidence": 0.95}]

    listed = client.get("/documents", headers=headers).json()["documents"]
    assert [doc["id"] for doc in listed] == [document["id"]]
    assert client.get("/documents", headers={"X-Organization-ID": "org-2"}).json()["documents"] == []

    response = client.post(
        "/chat",
        json={"query": "Summarize this contract", "documentIds": [document["id"]]},
        headers=headers,
    )
    payload = response.json()
    assert response.status_code == 200, response.text
    assert [source["name"] for source in payload["sources"]] == ["contract.txt"]
    assert "$50,000" in payload["llmResponse"]
    assert payload["searchResults"] == []


def test_upload_rejects_unsupported_and_empty_files() -> None:
    client = make_client()
    bad_type = client.post("/documents", files=[("files", ("photo.png", BytesIO(b"data"), "image/png"))])
    assert bad_type.status_code == 415
    assert bad_type.json()["error"] == "Unsupported file type: .png"
    empty = client.post("/documents", files=[("files", ("empty.txt", BytesIO(b""), "text/plain"))])
    assert empty.status_code == 400
    unreadable = client.post("/documents", files=[("files", ("short.txt", BytesIO(b"hi"), "text/plain"))])
    assert unreadable.status_code == 422


def test_chat_stream_emits_chunks_then_result() -> None:
    client = make_client()
    with client.stream("POST", "/chat/stream", json={"query": "What is the capital of France?"}) as response:
        assert response.status_code == 200
        body = "".join(response.iter_text())

    events = [block for block in body.split("\n\n") if block]
    assert events[0] == ": heartbeat"
    chunks = [json.loads(block[len("data: "):]) for block in events if block.startswith("data: ")]
    result_block = next(block for block in events if block.startswith("event: result"))
    result = json.loads(result_block.split("data: ", 1)[1])
    assert "".join(chunks) == result["llmResponse"]
    assert "Paris" in result["llmResponse"]


def test_chat_stream_flags_failure_after_partial_answer() -> None:
    client = make_client(generator=PartialFailureGenerator())
    with client.stream("POST", "/chat/stream", json={"query": "What is the capital of France?"}) as response:
        assert response.status_code == 200
        body = "".join(response.iter_text())

    events = [block for block in body.split("\n\n") if block]
    assert events[1] == 'data: "Paris is the ca"'
    assert APOLOGY_MESSAGE not in "".join(block for block in events if block.startswith("data: "))
    error_index = next(i for i, block in enumerate(events) if block.startswith("event: error"))
    result_index = next(i for i, block in enumerate(events) if block.startswith("event: result"))
    assert error_index < result_index
    result = json.loads(events[result_index].split("data: ", 1)[1])
    assert result["error"] is True
    assert result["llmResponse"] == APOLOGY_MESSAGE


def test_chat_stream_validates_before_streaming() -> None:
    client = make_client()
    response = client.post("/chat/stream", json={"query": "  "})
    assert response.status_code == 400


def test_usage_is_recorded_off_the_request_path() -> None:
    sink = InMemoryUsageSink()
    usage = QueuedUsageRecorder(sink)
    client = make_client(usage=usage)
    with client:
        response = client.post("/chat", json={"query": "Capital?"}, headers={"X-User-ID": "user-7"})
        assert response.status_code == 200
    entries: list[QueryLogEntry] = sink.entries
    assert len(entries) == 1
    assert entries[0].user_id == "user-7"
    assert entries[0].organization_id == "default"
    assert entries[0].id == response.json()["queryId"]


def test_health_endpoints() -> None:
    client = make_client()
    client.post("/chat", json={"query": "Warm up"})
    assert client.get("/healthz").json()["status"] == "ok"
    assert client.head("/healthz").status_code == 200
    assert client.get("/livez").json() == {"status": "alive"}
    assert client.get("/healthz/ready").json() == {"status": "ready"}
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "answerengine_queries_total" in metrics.text
