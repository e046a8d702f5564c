"""FastAPI application exposing the answer engine."""

from __future__ import annotations

import asyncio
import json
import tempfile
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Sequence
from uuid import uuid4

import chromadb
from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from answerengine.api.schemas import ChatRequest, ChatResponse, DocumentListResponse, DocumentSummaryModel
from answerengine.config import KNOWN_SEARCH_PROVIDERS, Settings, get_settings
from answerengine.documents import (
    ChromaDocumentStore,
    DocumentAnalyzer,
    DocumentProcessor,
    DocumentStore,
    IngestionError,
    UnsupportedFileTypeError,
)
from answerengine.errors import ConfigurationError, QueryValidationError
from answerengine.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from answerengine.models import ChatQuery, StoredDocument
from answerengine.search import SearchConfig, SearchService, build_provider
from answerengine.services.context import ContextAssembler, ContextConfig
from answerengine.services.generation import GenerationBackend, GenerationConfig, OpenAIGenerator, TemplateGenerator
from answerengine.services.query import OrchestratorConfig, QueryOrchestrator
from answerengine.usage import LoggingUsageSink, QueuedUsageRecorder

SERVICE_UNAVAILABLE_MESSAGE = (
    "I apologize, but the AI service is currently unavailable. Please check the API configuration and try again."
)


@dataclass(frozen=True)
class AppDependencies:
    orchestrator: QueryOrchestrator
    store: DocumentStore
    processor: DocumentProcessor
    usage: QueuedUsageRecorder | None = None


def _build_generator(settings: Settings) -> GenerationBackend:
    if settings.generator_backend == "template":
        return TemplateGenerator()
    return OpenAIGenerator(
        GenerationConfig(
            model=settings.generator_model,
            base_url=settings.generator_base_url,
            api_key=settings.generator_api_key,
            temperature=settings.generator_temperature,
            max_tokens=settings.generator_max_tokens,
            timeout_seconds=settings.generator_timeout_seconds,
        ),
    )


def _build_search(settings: Settings) -> SearchService:
    logger = get_logger("api")
    search_config = SearchConfig(
        result_count=settings.search_result_count,
        media_count=settings.media_result_count,
        timeout_seconds=settings.search_timeout_seconds,
    )
    providers = []
    for name in settings.search_providers_tuple:
        if name not in KNOWN_SEARCH_PROVIDERS:
            logger.warning("search.unknown_provider", provider=name)
            continue
        providers.append(
            build_provider(
                name,
                config=search_config,
                serper_api_key=settings.serper_api_key,
                brave_api_key=settings.brave_api_key,
            ),
        )
    return SearchService(providers)


def _build_dependencies(settings: Settings) -> AppDependencies:
    chroma_client = None
    if settings.chroma_host:
        chroma_client = chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port or 8000,
            ssl=settings.chroma_ssl,
        )
    store = ChromaDocumentStore(
        collection_name=settings.chroma_collection,
        client=chroma_client,
        persist_directory=None if chroma_client else settings.chroma_persist_dir,
    )
    generator = _build_generator(settings)
    usage = QueuedUsageRecorder(LoggingUsageSink(), maxsize=settings.usage_queue_size)
    orchestrator = QueryOrchestrator(
        search=_build_search(settings),
        documents=store,
        generator=generator,
        assembler=ContextAssembler(
            ContextConfig(
                max_items=settings.context_max_items,
                max_chars=settings.context_max_chars,
                document_excerpt_chars=settings.document_excerpt_chars,
            ),
        ),
        usage=usage,
        config=OrchestratorConfig(
            source_timeout_seconds=settings.source_timeout_seconds,
            max_items=settings.context_max_items,
            max_chars=settings.context_max_chars,
        ),
    )
    processor = DocumentProcessor(DocumentAnalyzer(generator))
    return AppDependencies(orchestrator=orchestrator, store=store, processor=processor, usage=usage)


class RateLimiter:
    """Sliding-window request limiter keyed by client address and path.

    Timestamps older than the window are pruned on every call, and keys
    whose window has fully expired are swept once per window.
    """

    def __init__(self, requests: int, window_seconds: int, enabled: bool = True) -> None:
        self.requests = requests
        self.window = window_seconds
        self.enabled = enabled
        self._buckets: dict[str, list[float]] = {}
        self._last_sweep = 0.0

    @property
    def tracked_keys(self) -> int:
        return len(self._buckets)

    def __call__(self, request: Request) -> None:
        if not self.enabled:
            return
        client_ip = request.headers.get("x-forwarded-for") or (request.client.host if request.client else "-")
        self.hit(f"{client_ip}:{request.url.path}")

    def hit(self, key: str, now: float | None = None) -> None:
        now = time.time() if now is None else now
        cutoff = now - self.window
        if now - self._last_sweep >= self.window:
            self._sweep(cutoff)
            self._last_sweep = now
        bucket = [stamp for stamp in self._buckets.pop(key, []) if stamp >= cutoff]
        if len(bucket) >= self.requests:
            self._buckets[key] = bucket
            raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded")
        bucket.append(now)
        self._buckets[key] = bucket

    def _sweep(self, cutoff: float) -> None:
        expired = [key for key, bucket in self._buckets.items() if not bucket or bucket[-1] < cutoff]
        for key in expired:
            del self._buckets[key]


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or _build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if deps.usage is not None:
            deps.usage.start()
        yield
        if deps.usage is not None:
            await deps.usage.stop()

    app = FastAPI(title="Answer Engine API", version="0.1.0", lifespan=lifespan)
    app.state.dependencies = deps

    # Optional CORS
    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allow_origins),
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=list(settings.cors_allow_methods),
            allow_headers=list(settings.cors_allow_headers),
        )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    # Security dependencies
    def require_api_key(request: Request) -> None:
        expected = settings.api_key
        if not expected:
            return
        provided = request.headers.get("X-API-Key")
        if provided != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    rate_limiter = RateLimiter(
        settings.rate_limit_requests,
        settings.rate_limit_window_seconds,
        enabled=settings.use_rate_limiting,
    )

    def _error(request: Request, status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        return JSONResponse(
            status_code=status_code,
            content={"error": message, "correlation_id": correlation_id},
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(request, exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = {str(err.get("loc", ("",))[-1]) for err in exc.errors()}
        message = "Query is required" if "query" in fields else "Invalid request"
        logger.info("request.invalid", fields=sorted(fields))
        return _error(request, status.HTTP_400_BAD_REQUEST, message)

    @app.exception_handler(QueryValidationError)
    async def handle_query_validation(request: Request, exc: QueryValidationError) -> JSONResponse:
        return _error(request, status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(ConfigurationError)
    async def handle_configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error("configuration.error", detail=str(exc))
        return _error(request, status.HTTP_503_SERVICE_UNAVAILABLE, SERVICE_UNAVAILABLE_MESSAGE)

    @app.exception_handler(UnsupportedFileTypeError)
    async def handle_unsupported_type(request: Request, exc: UnsupportedFileTypeError) -> JSONResponse:
        return _error(request, status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, str(exc))

    @app.exception_handler(IngestionError)
    async def handle_ingestion_error(request: Request, exc: IngestionError) -> JSONResponse:
        logger.error("ingestion.error", detail=str(exc))
        return _error(request, status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled.error", detail=str(exc))
        return _error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to process chat request")

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    def get_orchestrator(dep: AppDependencies = Depends(get_dependencies)) -> QueryOrchestrator:
        return dep.orchestrator

    def get_store(dep: AppDependencies = Depends(get_dependencies)) -> DocumentStore:
        return dep.store

    def get_processor(dep: AppDependencies = Depends(get_dependencies)) -> DocumentProcessor:
        return dep.processor

    def get_organization(request: Request) -> str:
        return request.headers.get("X-Organization-ID") or settings.default_organization

    def to_chat_query(payload: ChatRequest, request: Request, organization_id: str) -> ChatQuery:
        return ChatQuery(
            query=payload.query,
            document_ids=tuple(payload.document_ids),
            document_context=payload.document_context,
            organization_id=organization_id,
            user_id=request.headers.get("X-User-ID"),
        )

    @app.post("/chat", response_model=ChatResponse)
    async def chat(
        payload: ChatRequest,
        request: Request,
        orchestrator: QueryOrchestrator = Depends(get_orchestrator),
        organization_id: str = Depends(get_organization),
        _auth: None = Depends(require_api_key),
        _rl: None = Depends(rate_limiter),
    ) -> ChatResponse:
        result = await orchestrator.answer(to_chat_query(payload, request, organization_id))
        return ChatResponse.from_result(result)

    @app.post("/chat/stream")
    async def chat_stream(
        payload: ChatRequest,
        request: Request,
        orchestrator: QueryOrchestrator = Depends(get_orchestrator),
        organization_id: str = Depends(get_organization),
        _auth: None = Depends(require_api_key),
        _rl: None = Depends(rate_limiter),
    ) -> StreamingResponse:
        query = to_chat_query(payload, request, organization_id)
        QueryOrchestrator.validate(query)
        # Missing credentials must surface as a status code, not inside an already-open stream.
        orchestrator.check_ready()
        chunks: asyncio.Queue[str | None] = asyncio.Queue()

        async def sink(chunk: str) -> None:
            await chunks.put(chunk)

        async def run():
            try:
                return await orchestrator.answer(query, sink=sink)
            finally:
                await chunks.put(None)

        task = asyncio.create_task(run())

        async def iter_sse():
            # Initial heartbeat to keep idle proxies open
            yield ": heartbeat\n\n"
            while True:
                chunk = await chunks.get()
                if chunk is None:
                    break
                yield f"data: {json.dumps(chunk)}\n\n"
            try:
                result = await task
            except ConfigurationError as exc:
                logger.error("configuration.error", detail=str(exc))
                yield f"event: error\ndata: {json.dumps({'error': SERVICE_UNAVAILABLE_MESSAGE})}\n\n"
                return
            except Exception as exc:
                logger.error("stream.error", detail=str(exc))
                yield f"event: error\ndata: {json.dumps({'error': 'Failed to process chat request'})}\n\n"
                return
            if result.error:
                # Streamed chunks may hold a partial answer; llmResponse in the result is authoritative.
                yield f"event: error\ndata: {json.dumps({'error': result.llm_response})}\n\n"
            body = ChatResponse.from_result(result).model_dump(by_alias=True, mode="json")
            yield f"event: result\ndata: {json.dumps(body)}\n\n"

        return StreamingResponse(iter_sse(), media_type="text/event-stream")

    @app.post("/documents", response_model=DocumentListResponse, status_code=status.HTTP_201_CREATED)
    async def upload_documents(
        files: Sequence[UploadFile] = File(...),
        processor: DocumentProcessor = Depends(get_processor),
        store: DocumentStore = Depends(get_store),
        organization_id: str = Depends(get_organization),
        _auth: None = Depends(require_api_key),
        _rl: None = Depends(rate_limiter),
    ) -> DocumentListResponse:
        if not files:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files provided")
        if len(files) > settings.max_files:
            raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Too many files")
        allowed = set(settings.allowed_extensions_tuple)
        limit_bytes = settings.max_upload_size_mb * 1024 * 1024
        stored: list[StoredDocument] = []
        with tempfile.TemporaryDirectory() as tmpdir:
            for upload in files:
                filename = Path(upload.filename or f"upload-{uuid4().hex}").name
                suffix = Path(filename).suffix.lower()
                if suffix not in allowed:
                    await upload.close()
                    raise HTTPException(
                        status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                        detail=f"Unsupported file type: {suffix or 'unknown'}",
                    )
                destination = Path(tmpdir) / filename
                # Stream copy to avoid loading entire file into memory
                bytes_written = 0
                with destination.open("wb") as out_f:
                    while True:
                        chunk = await upload.read(1024 * 1024)
                        if not chunk:
                            break
                        out_f.write(chunk)
                        bytes_written += len(chunk)
                        if bytes_written > limit_bytes:
                            await upload.close()
                            raise HTTPException(
                                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                                detail=f"File too large (>{settings.max_upload_size_mb}MB): {filename}",
                            )
                await upload.close()
                if bytes_written == 0:
                    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"File is empty: {filename}")
                document = await processor.process(
                    destination,
                    original_name=filename,
                    organization_id=organization_id,
                )
                await store.add(document)
                stored.append(document)
        return DocumentListResponse(documents=[DocumentSummaryModel.from_document(doc) for doc in stored])

    @app.get("/documents", response_model=DocumentListResponse)
    async def list_documents(
        store: DocumentStore = Depends(get_store),
        organization_id: str = Depends(get_organization),
        _auth: None = Depends(require_api_key),
    ) -> DocumentListResponse:
        documents = await store.list_documents(organization_id)
        return DocumentListResponse(documents=[DocumentSummaryModel.from_document(doc) for doc in documents])

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        from answerengine import __version__

        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.head("/healthz")
    async def healthcheck_head() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    @app.get("/healthz/ready")
    async def readiness(store: DocumentStore = Depends(get_store)) -> dict[str, str]:
        try:
            await store.list_documents(settings.default_organization)
            return {"status": "ready"}
        except Exception as exc:  # pragma: no cover
            return {"status": "error", "detail": str(exc)}

    return app


app = create_app()
