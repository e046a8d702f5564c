"""Context assembly from search results and uploaded documents."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from answerengine.models import (
    UPLOADED_DOCUMENT_SOURCE,
    UPLOADED_DOCUMENT_TITLE,
    ContextBlock,
    ContextEntry,
    DocumentReference,
    SearchResult,
)

_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class ContextConfig:
    """Size limits applied while assembling context."""

    max_items: int = 4
    max_chars: int = 8000
    document_excerpt_chars: int = 2000


class ContextAssembler:
    """Merges search snippets and document excerpts into one bounded block.

    Search results keep provider order and are capped at ``max_items``.
    Documents (and any free-form document text from the caller) follow as
    a single "Uploaded Document" entry. The serialized block never exceeds
    ``max_chars``: the entry that crosses the budget is cut and later
    entries are dropped. No re-ranking or deduplication happens here.
    """

    def __init__(self, config: ContextConfig | None = None) -> None:
        self._config = config or ContextConfig()

    def assemble(
        self,
        search_results: Sequence[SearchResult],
        documents: Sequence[DocumentReference] = (),
        *,
        document_context: str | None = None,
        max_items: int | None = None,
        max_chars: int | None = None,
    ) -> ContextBlock:
        item_limit = self._config.max_items if max_items is None else max_items
        char_limit = self._config.max_chars if max_chars is None else max_chars

        candidates = [
            ContextEntry(content=result.snippet, source_url=result.link, title=result.title)
            for result in search_results[: max(item_limit, 0)]
        ]
        document_text = self.document_text(documents, document_context)
        if document_text:
            candidates.append(
                ContextEntry(
                    content=document_text,
                    source_url=UPLOADED_DOCUMENT_SOURCE,
                    title=UPLOADED_DOCUMENT_TITLE,
                ),
            )
        return ContextBlock(entries=tuple(self._fit(candidates, char_limit)))

    def document_text(self, documents: Sequence[DocumentReference], document_context: str | None = None) -> str:
        limit = self._config.document_excerpt_chars
        sections = []
        for document in documents:
            excerpt = document.text_content[:limit]
            if len(document.text_content) > limit:
                excerpt += "..."
            sections.append(
                f"Document: {document.name}\n"
                f"Category: {document.category or 'other'}\n"
                f"Summary: {document.summary or ''}\n"
                f"Content: {excerpt}"
            )
        if document_context and document_context.strip():
            sections.append(document_context.strip())
        return _SEPARATOR.join(sections)

    @staticmethod
    def _fit(candidates: Sequence[ContextEntry], char_limit: int) -> list[ContextEntry]:
        fitted: list[ContextEntry] = []
        used = 0
        for entry in candidates:
            separator = len(_SEPARATOR) if fitted else 0
            remaining = char_limit - used - separator
            rendered = len(entry.render())
            if rendered <= remaining:
                fitted.append(entry)
                used += separator + rendered
                continue
            header = len(ContextEntry(content="", source_url=entry.source_url, title=entry.title).render())
            room = remaining - header
            if room > 0:
                fitted.append(ContextEntry(content=entry.content[:room], source_url=entry.source_url, title=entry.title))
            break
        return fitted
