"""Document content store backed by a Chroma collection."""

from __future__ import annotations

import asyncio
import hashlib
import json
import math
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Protocol, Sequence

import chromadb
from chromadb.api import ClientAPI

from answerengine.models import DocumentEntity, DocumentReference, StoredDocument

# Vectors are only needed because Chroma requires one per record; lookups go by id.
_VECTOR_DIM = 32


class DocumentStore(Protocol):
    """Protocol for the document content store collaborator."""

    async def get_documents(self, ids: Sequence[str], organization_id: str) -> Sequence[DocumentReference]:
        """Return the organization's documents matching ``ids``, in request order."""

    async def list_documents(self, organization_id: str) -> Sequence[StoredDocument]:
        """Return every stored document for an organization, newest first."""

    async def add(self, document: StoredDocument) -> str:
        """Persist a processed document and return its id."""


def _hash_vector(text: str, dim: int = _VECTOR_DIM) -> list[float]:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    repeat = (dim + len(digest) - 1) // len(digest)
    raw = (digest * repeat)[:dim]
    vector = [byte / 255.0 for byte in raw]
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return [value / norm for value in vector]


class ChromaDocumentStore:
    """Chroma-backed store keyed by document id and filtered by organization."""

    def __init__(
        self,
        collection_name: str = "answerengine-documents",
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._collection = self._client.get_or_create_collection(name=collection_name)

    async def get_documents(self, ids: Sequence[str], organization_id: str) -> Sequence[DocumentReference]:
        if not ids:
            return []
        return await asyncio.to_thread(self._get_documents, list(ids), organization_id)

    async def list_documents(self, organization_id: str) -> Sequence[StoredDocument]:
        return await asyncio.to_thread(self._list_documents, organization_id)

    async def add(self, document: StoredDocument) -> str:
        return await asyncio.to_thread(self._add, document)

    def count(self) -> int:
        return int(self._collection.count())

    def reset(self) -> None:
        ids = self._collection.get(include=["metadatas"]).get("ids") or []
        if ids:
            self._collection.delete(ids=ids)

    def _add(self, document: StoredDocument) -> str:
        self._collection.upsert(
            ids=[document.id],
            documents=[document.text_content],
            embeddings=[_hash_vector(document.text_content)],
            metadatas=[self._serialize(document)],
        )
        return document.id

    def _get_documents(self, ids: list[str], organization_id: str) -> list[DocumentReference]:
        batch = self._collection.get(
            ids=ids,
            where={"organization_id": organization_id},
            include=["documents", "metadatas"],
        )
        found = {
            stored.id: stored.to_reference()
            for stored in self._deserialize_batch(batch)
        }
        return [found[doc_id] for doc_id in ids if doc_id in found]

    def _list_documents(self, organization_id: str) -> list[StoredDocument]:
        batch = self._collection.get(
            where={"organization_id": organization_id},
            include=["documents", "metadatas"],
        )
        documents = self._deserialize_batch(batch)
        documents.sort(key=lambda doc: doc.created_at, reverse=True)
        return documents

    @staticmethod
    def _serialize(document: StoredDocument) -> dict[str, object]:
        return {
            "organization_id": document.organization_id,
            "original_name": document.original_name,
            "summary": document.summary,
            "category": document.category,
            "confidence": float(document.confidence),
            "entities": json.dumps([asdict(entity) for entity in document.entities]),
            "word_count": document.word_count,
            "media_type": document.media_type,
            "status": document.status,
            "created_at": document.created_at.isoformat(),
        }

    def _deserialize_batch(self, batch: Mapping[str, object]) -> list[StoredDocument]:
        ids = batch.get("ids") or []
        texts = batch.get("documents") or [""] * len(ids)
        metadatas = batch.get("metadatas") or [{}] * len(ids)
        return [
            self._deserialize(doc_id, text or "", metadata or {})
            for doc_id, text, metadata in zip(ids, texts, metadatas, strict=False)
        ]

    @staticmethod
    def _deserialize(doc_id: str, text: str, metadata: Mapping[str, object]) -> StoredDocument:
        created_raw = metadata.get("created_at")
        try:
            created_at = datetime.fromisoformat(str(created_raw))
        except ValueError:
            created_at = datetime.fromtimestamp(0, tz=timezone.utc)
        return StoredDocument(
            id=doc_id,
            organization_id=str(metadata.get("organization_id", "")),
            original_name=str(metadata.get("original_name", "")),
            text_content=text,
            summary=str(metadata.get("summary", "")),
            category=str(metadata.get("category", "other")),
            word_count=int(metadata.get("word_count", 0) or 0),
            media_type=str(metadata.get("media_type", "")),
            confidence=float(metadata.get("confidence", 0.5)),
            entities=_load_entities(metadata.get("entities")),
            status=str(metadata.get("status", "completed")),
            created_at=created_at,
        )


def _load_entities(raw: object) -> tuple[DocumentEntity, ...]:
    if not raw:
        return ()
    try:
        items = json.loads(str(raw))
    except json.JSONDecodeError:
        return ()
    return tuple(
        DocumentEntity(
            text=str(item.get("text", "")),
            type=str(item.get("type", "")),
            confidence=float(item.get("confidence", 0.5)),
        )
        for item in items
        if isinstance(item, dict)
    )
