"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from fastapi import Depends

from conduit.config import get_settings
from conduit.store import DocumentStore, InMemoryDocumentStore, SqlDocumentStore
from conduit.tags import TagRepository
from conduit.users import UserRepository

_store: DocumentStore | None = None


def get_store() -> DocumentStore:
    """
    Return a singleton document store so data persists across requests.
    """
    global _store
    if _store is not None:
        return _store

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _store = InMemoryDocumentStore()
    else:
        _store = SqlDocumentStore(
            settings.database_url,
            timeout_seconds=settings.query_timeout_seconds,
        )
    return _store


def get_user_repository(
    store: DocumentStore = Depends(get_store),
) -> UserRepository:
    return UserRepository(store, collection=get_settings().users_collection)


def get_tag_repository(store: DocumentStore = Depends(get_store)) -> TagRepository:
    return TagRepository(store, collection=get_settings().tags_collection)
