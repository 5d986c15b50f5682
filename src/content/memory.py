"""In-memory content store for development and tests."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field

from src.content.base import (
    TAXONOMY_CATEGORY,
    TAXONOMY_TAG,
    ContentStoreError,
    DocumentFields,
    DocumentUrls,
    PostType,
)

logger = logging.getLogger(__name__)

DEFAULT_POST_TYPES = (
    PostType("post", public=True),
    PostType("page", public=True),
    PostType("revision", public=False),
)


@dataclass
class StoredDocument:
    id: str
    fields: DocumentFields
    tags: set[str] = field(default_factory=set)
    category_ids: set[str] = field(default_factory=set)
    primary_image: str | None = None


@dataclass
class StoredMedia:
    id: str
    filename: str
    content_type: str | None
    size_bytes: int


class InMemoryContentStore:
    """Dict-backed ``ContentStore``.

    Args:
        site_url: Base URL used for generated public and edit links.
        post_types: Registered content types.
    """

    def __init__(self, site_url: str = "http://localhost:8000", post_types: tuple[PostType, ...] = DEFAULT_POST_TYPES) -> None:
        self.site_url = site_url.rstrip("/")
        self.post_types = {pt.name: pt for pt in post_types}
        self.documents: dict[str, StoredDocument] = {}
        self.media: dict[str, StoredMedia] = {}
        self.terms: dict[tuple[str, str], str] = {}
        self._ids = itertools.count(1)

    def _next_id(self) -> str:
        return str(next(self._ids))

    def _document(self, doc_id: str) -> StoredDocument:
        doc = self.documents.get(doc_id)
        if doc is None:
            raise ContentStoreError(f"Document {doc_id} does not exist")
        return doc

    async def insert_document(self, fields: DocumentFields) -> str:
        if not fields.title:
            raise ContentStoreError("Document title is required")
        if fields.post_type not in self.post_types:
            raise ContentStoreError(f"Unknown post type: {fields.post_type}")
        doc_id = self._next_id()
        self.documents[doc_id] = StoredDocument(id=doc_id, fields=fields)
        logger.info("Inserted document %s (%s)", doc_id, fields.title)
        return doc_id

    async def attach_media(self, data: bytes, filename_hint: str, content_type: str | None = None) -> str:
        if not data:
            raise ContentStoreError("Media payload is empty")
        media_id = self._next_id()
        self.media[media_id] = StoredMedia(media_id, filename_hint, content_type, len(data))
        return media_id

    async def set_primary_image(self, doc_id: str, media_id: str) -> None:
        if media_id not in self.media:
            raise ContentStoreError(f"Media {media_id} does not exist")
        self._document(doc_id).primary_image = media_id

    async def ensure_taxonomy_terms(self, names: list[str], taxonomy: str = TAXONOMY_CATEGORY) -> list[str]:
        ids: list[str] = []
        for name in names:
            key = (taxonomy, name)
            if key not in self.terms:
                self.terms[key] = self._next_id()
            ids.append(self.terms[key])
        return ids

    async def set_tags(self, doc_id: str, names: list[str]) -> None:
        doc = self._document(doc_id)
        await self.ensure_taxonomy_terms(names, TAXONOMY_TAG)
        doc.tags = set(names)

    async def set_categories(self, doc_id: str, term_ids: list[str]) -> None:
        self._document(doc_id).category_ids = set(term_ids)

    async def get_document_urls(self, doc_id: str) -> DocumentUrls:
        self._document(doc_id)
        return DocumentUrls(
            post_url=f"{self.site_url}/?p={doc_id}",
            edit_url=f"{self.site_url}/admin/posts/{doc_id}/edit",
        )

    async def get_post_type(self, name: str) -> PostType | None:
        return self.post_types.get(name)

    def category_names(self, doc_id: str) -> set[str]:
        """Names of the categories assigned to a document."""
        by_id = {term_id: name for (taxonomy, name), term_id in self.terms.items() if taxonomy == TAXONOMY_CATEGORY}
        return {by_id[term_id] for term_id in self._document(doc_id).category_ids}
