"""
Errors raised by document store backends.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for document store failures."""


class StoreTimeoutError(StoreError):
    """The backend did not answer in time."""


class DocumentNotFoundError(StoreError):
    def __init__(self, collection: str, key: str):
        super().__init__(f"Document {key!r} not found in {collection!r}")
        self.collection = collection
        self.key = key


class PathMismatchError(StoreError):
    """A sub-document path exists but holds the wrong kind of value."""

    def __init__(self, key: str, path: str, detail: str):
        super().__init__(f"{key}:{path}: {detail}")
        self.key = key
        self.path = path


class PathNotFoundError(StoreError):
    def __init__(self, key: str, path: str):
        super().__init__(f"{key}:{path}: path not found")
        self.key = key
        self.path = path


class DocumentExistsError(StoreError):
    def __init__(self, collection: str, key: str):
        super().__init__(f"Document {key!r} already exists in {collection!r}")
        self.collection = collection
        self.key = key
