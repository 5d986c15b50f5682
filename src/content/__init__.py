"""Content store collaborator.

Submodules:
- ``base``: ContentStore protocol and the document/media value types
- ``memory``: dict-backed implementation for development and tests
"""

from src.content.base import (
    ContentStore,
    ContentStoreError,
    DocumentFields,
    DocumentUrls,
    PostType,
)
from src.content.memory import InMemoryContentStore

__all__ = [
    "ContentStore",
    "ContentStoreError",
    "DocumentFields",
    "DocumentUrls",
    "InMemoryContentStore",
    "PostType",
]
