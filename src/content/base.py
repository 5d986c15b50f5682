"""Content store collaborator interface.

The content store owns published documents, media and taxonomy terms.
PostRelay never implements it for production; it talks to it only
through the ``ContentStore`` protocol below. Implementations signal
failure by raising ``ContentStoreError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

TAXONOMY_CATEGORY = "category"
TAXONOMY_TAG = "post_tag"


class ContentStoreError(Exception):
    """A content store operation failed."""


@dataclass
class DocumentFields:
    """Fields of a document to insert.

    Attributes:
        title: Plain-text title.
        content: Sanitized markup body.
        excerpt: Optional plain-text summary.
        status: Target publication status (draft, pending, publish).
        post_type: Content type name.
        author_id: Identity id of the author.
        meta: Tracking metadata stored alongside the document.
    """

    title: str
    content: str
    excerpt: str = ""
    status: str = "draft"
    post_type: str = "post"
    author_id: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DocumentUrls:
    post_url: str
    edit_url: str


@dataclass(frozen=True)
class PostType:
    name: str
    public: bool = True


@runtime_checkable
class ContentStore(Protocol):
    """Documents, media and taxonomy as consumed by the publish worker."""

    async def insert_document(self, fields: DocumentFields) -> str:
        """Persist a document and return its id."""
        ...

    async def attach_media(self, data: bytes, filename_hint: str, content_type: str | None = None) -> str:
        """Store downloaded media and return the media id."""
        ...

    async def set_primary_image(self, doc_id: str, media_id: str) -> None:
        ...

    async def ensure_taxonomy_terms(self, names: list[str], taxonomy: str = TAXONOMY_CATEGORY) -> list[str]:
        """Return term ids for ``names``, creating missing terms by exact name."""
        ...

    async def set_tags(self, doc_id: str, names: list[str]) -> None:
        ...

    async def set_categories(self, doc_id: str, term_ids: list[str]) -> None:
        ...

    async def get_document_urls(self, doc_id: str) -> DocumentUrls:
        ...

    async def get_post_type(self, name: str) -> PostType | None:
        """Return the content type, or None when it does not exist."""
        ...
