"""
Document store abstraction for Postgres and an in-memory test implementation.

Documents are JSON objects addressed by ``(collection, key)``. Besides whole
document upserts the store understands sub-document lookups and mutations,
so callers can append to an array without rewriting the whole document.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence

from sqlalchemy import JSON, Column, Float, String, create_engine, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from conduit.exceptions import (
    DocumentExistsError,
    DocumentNotFoundError,
    PathMismatchError,
    PathNotFoundError,
    StoreError,
    StoreTimeoutError,
)

logger = logging.getLogger(__name__)

# Query rows nest the document under this name, next to its key.
DEFAULT_SCOPE = "_default"

_MISSING = object()


@dataclass(frozen=True)
class MutateInSpec:
    """A single sub-document mutation. ``param`` is the JSON-encoded value."""

    op: str
    path: str
    param: Optional[str] = None

    @classmethod
    def array_append(cls, path: str, value: Any) -> "MutateInSpec":
        return cls("array_append", path, json.dumps(value))

    @classmethod
    def array_remove(cls, path: str, value: Any) -> "MutateInSpec":
        """Drop every occurrence of ``value``; an absent array is left alone."""
        return cls("array_remove", path, json.dumps(value))

    @classmethod
    def upsert(cls, path: str, value: Any) -> "MutateInSpec":
        return cls("upsert", path, json.dumps(value))

    @classmethod
    def remove(cls, path: str) -> "MutateInSpec":
        return cls("remove", path)

    @property
    def value(self) -> Any:
        if self.param is None:
            return None
        return json.loads(self.param)


@dataclass(frozen=True)
class LookupInSpec:
    op: str
    path: str

    @classmethod
    def get(cls, path: str) -> "LookupInSpec":
        return cls("get", path)

    @classmethod
    def exists(cls, path: str) -> "LookupInSpec":
        return cls("exists", path)


@dataclass
class LookupInResult:
    """
    ``content[i]`` answers the i-th spec: the value for ``get`` (``None`` if
    the path is absent) or a bool for ``exists``. ``exists`` tells whether
    the document itself was found.
    """

    content: List[Any] = field(default_factory=list)
    exists: bool = False


@dataclass(frozen=True)
class Query:
    """Equality filter over one collection."""

    collection: str
    where: Dict[str, Any] = field(default_factory=dict)
    limit: Optional[int] = None

    def matches(self, document: dict) -> bool:
        return all(
            _read_path(document, path) == expected
            for path, expected in self.where.items()
        )


@dataclass
class QueryResult:
    rows: List[dict] = field(default_factory=list)


class DocumentStore(Protocol):
    """Interface for document database access."""

    def upsert(self, collection: str, key: str, document: dict) -> None:
        ...

    def insert(self, collection: str, key: str, document: dict) -> None:
        ...

    def get(self, collection: str, key: str) -> Optional[dict]:
        ...

    def lookup_in(
        self, collection: str, key: str, specs: Sequence[LookupInSpec]
    ) -> LookupInResult:
        ...

    def mutate_in(
        self, collection: str, key: str, specs: Sequence[MutateInSpec]
    ) -> None:
        ...

    def query(self, query: Query) -> QueryResult:
        ...

    def remove(self, collection: str, key: str) -> None:
        ...


def _read_path(document: Any, path: str) -> Any:
    node = document
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


def _parent_of(document: dict, key: str, path: str, *, create: bool):
    parts = path.split(".")
    node = document
    for part in parts[:-1]:
        child = node.get(part)
        if child is None:
            if not create:
                raise PathNotFoundError(key, path)
            child = node[part] = {}
        elif not isinstance(child, dict):
            raise PathMismatchError(key, path, f"{part!r} is not an object")
        node = child
    return node, parts[-1]


def apply_mutations(
    key: str, document: dict, specs: Sequence[MutateInSpec]
) -> dict:
    """Return a copy of ``document`` with every spec applied, or raise."""
    updated = copy.deepcopy(document)
    for spec in specs:
        if spec.op == "array_remove" and _read_path(updated, spec.path) is _MISSING:
            continue
        parent, leaf = _parent_of(
            updated, key, spec.path, create=spec.op in ("array_append", "upsert")
        )
        if spec.op == "array_append":
            current = parent.get(leaf)
            if current is None:
                parent[leaf] = [spec.value]
            elif isinstance(current, list):
                current.append(spec.value)
            else:
                raise PathMismatchError(key, spec.path, "not an array")
        elif spec.op == "array_remove":
            current = parent[leaf]
            if not isinstance(current, list):
                raise PathMismatchError(key, spec.path, "not an array")
            parent[leaf] = [item for item in current if item != spec.value]
        elif spec.op == "upsert":
            parent[leaf] = spec.value
        elif spec.op == "remove":
            if leaf not in parent:
                raise PathNotFoundError(key, spec.path)
            del parent[leaf]
        else:
            raise ValueError(f"Unknown mutation {spec.op!r}")
    return updated


def evaluate_lookups(
    document: Optional[dict], specs: Sequence[LookupInSpec]
) -> LookupInResult:
    if document is None:
        return LookupInResult(content=[None] * len(specs), exists=False)
    content: List[Any] = []
    for spec in specs:
        value = _read_path(document, spec.path)
        if spec.op == "exists":
            content.append(value is not _MISSING)
        elif spec.op == "get":
            content.append(None if value is _MISSING else copy.deepcopy(value))
        else:
            raise ValueError(f"Unknown lookup {spec.op!r}")
    return LookupInResult(content=content, exists=True)


def _make_row(key: str, document: dict) -> dict:
    return {DEFAULT_SCOPE: document, "id": key}


class InMemoryDocumentStore:
    """Simple in-memory document store for development and tests."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, dict]] = {}
        self._lock = threading.Lock()

    def upsert(self, collection: str, key: str, document: dict) -> None:
        with self._lock:
            self.collections.setdefault(collection, {})[key] = copy.deepcopy(
                document
            )

    def insert(self, collection: str, key: str, document: dict) -> None:
        with self._lock:
            documents = self.collections.setdefault(collection, {})
            if key in documents:
                raise DocumentExistsError(collection, key)
            documents[key] = copy.deepcopy(document)

    def get(self, collection: str, key: str) -> Optional[dict]:
        with self._lock:
            document = self.collections.get(collection, {}).get(key)
            return copy.deepcopy(document) if document is not None else None

    def lookup_in(
        self, collection: str, key: str, specs: Sequence[LookupInSpec]
    ) -> LookupInResult:
        with self._lock:
            document = self.collections.get(collection, {}).get(key)
            return evaluate_lookups(document, specs)

    def mutate_in(
        self, collection: str, key: str, specs: Sequence[MutateInSpec]
    ) -> None:
        with self._lock:
            documents = self.collections.get(collection, {})
            if key not in documents:
                raise DocumentNotFoundError(collection, key)
            documents[key] = apply_mutations(key, documents[key], specs)

    def query(self, query: Query) -> QueryResult:
        with self._lock:
            items = sorted(self.collections.get(query.collection, {}).items())
            rows = [
                _make_row(key, copy.deepcopy(document))
                for key, document in items
                if query.matches(document)
            ]
        if query.limit is not None:
            rows = rows[: query.limit]
        return QueryResult(rows=rows)

    def remove(self, collection: str, key: str) -> None:
        with self._lock:
            documents = self.collections.get(collection, {})
            if key not in documents:
                raise DocumentNotFoundError(collection, key)
            del documents[key]

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.collections.clear()


def _is_timeout(exc: OperationalError) -> bool:
    message = str(exc.orig).lower()
    return "timeout" in message or "canceling statement" in message


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except PoolTimeoutError as exc:
        raise StoreTimeoutError(f"{operation} timed out waiting for a connection") from exc
    except OperationalError as exc:
        if _is_timeout(exc):
            raise StoreTimeoutError(f"{operation} timed out") from exc
        raise StoreError(f"{operation} failed: {exc.orig}") from exc
    except SQLAlchemyError as exc:
        raise StoreError(f"{operation} failed: {exc}") from exc


def _json_equals(path: str, expected: Any):
    """SQL clause comparing a JSON path with a scalar, or None for other values."""
    parts = path.split(".")
    element = DocumentRow.body[parts[0] if len(parts) == 1 else tuple(parts)]
    if isinstance(expected, bool):
        return element.as_boolean() == expected
    if isinstance(expected, str):
        return element.as_string() == expected
    if isinstance(expected, int):
        return element.as_integer() == expected
    if isinstance(expected, float):
        return element.as_float() == expected
    return None


class SqlDocumentStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g.,
    Postgres or SQLite for tests). Each document is one JSON column.
    """

    def __init__(self, database_url: str, *, timeout_seconds: float | None = None):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDocumentStore")
        url = make_url(database_url)
        engine_kwargs: Dict[str, Any] = {
            "future": True,
            "pool_pre_ping": True,
        }
        backend = url.get_backend_name()
        if backend == "sqlite" and url.database in (None, "", ":memory:"):
            # One shared connection, otherwise every thread sees its own empty database.
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs["pool_recycle"] = 1800
        if backend == "postgresql" and timeout_seconds:
            engine_kwargs["connect_args"] = {
                "options": f"-c statement_timeout={int(timeout_seconds * 1000)}"
            }
        self.engine = create_engine(url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def upsert(self, collection: str, key: str, document: dict) -> None:
        logger.debug("upsert %s/%s", collection, key)
        with _translate_errors("upsert"), self.Session() as session:
            row = session.get(DocumentRow, (collection, key))
            if row:
                row.body = copy.deepcopy(document)
                row.updated_at = time.time()
            else:
                session.add(
                    DocumentRow(
                        collection=collection,
                        key=key,
                        body=copy.deepcopy(document),
                        updated_at=time.time(),
                    )
                )
            session.commit()

    def insert(self, collection: str, key: str, document: dict) -> None:
        logger.debug("insert %s/%s", collection, key)
        with _translate_errors("insert"), self.Session() as session:
            session.add(
                DocumentRow(
                    collection=collection,
                    key=key,
                    body=copy.deepcopy(document),
                    updated_at=time.time(),
                )
            )
            try:
                session.commit()
            except IntegrityError as exc:
                raise DocumentExistsError(collection, key) from exc

    def get(self, collection: str, key: str) -> Optional[dict]:
        with _translate_errors("get"), self.Session() as session:
            row = session.get(DocumentRow, (collection, key))
            return copy.deepcopy(row.body) if row else None

    def lookup_in(
        self, collection: str, key: str, specs: Sequence[LookupInSpec]
    ) -> LookupInResult:
        return evaluate_lookups(self.get(collection, key), specs)

    def mutate_in(
        self, collection: str, key: str, specs: Sequence[MutateInSpec]
    ) -> None:
        logger.debug("mutate_in %s/%s (%d specs)", collection, key, len(specs))
        with _translate_errors("mutate_in"), self.Session() as session:
            row = session.get(
                DocumentRow, (collection, key), with_for_update=True
            )
            if not row:
                raise DocumentNotFoundError(collection, key)
            row.body = apply_mutations(key, row.body, specs)
            row.updated_at = time.time()
            session.commit()

    def query(self, query: Query) -> QueryResult:
        logger.debug("query %s where %s", query.collection, query.where)
        with _translate_errors("query"), self.Session() as session:
            stmt = select(DocumentRow).where(
                DocumentRow.collection == query.collection
            )
            # Objects and arrays have no portable SQL comparison; they are checked per row.
            residual: Dict[str, Any] = {}
            for path, expected in query.where.items():
                clause = _json_equals(path, expected)
                if clause is None:
                    residual[path] = expected
                else:
                    stmt = stmt.where(clause)
            stmt = stmt.order_by(DocumentRow.key.asc())
            if query.limit is not None and not residual:
                stmt = stmt.limit(query.limit)
            rows: List[dict] = []
            for row in session.execute(stmt).scalars():
                if query.limit is not None and len(rows) >= query.limit:
                    break
                if all(
                    _read_path(row.body, path) == expected
                    for path, expected in residual.items()
                ):
                    rows.append(_make_row(row.key, copy.deepcopy(row.body)))
            return QueryResult(rows=rows)

    def remove(self, collection: str, key: str) -> None:
        with _translate_errors("remove"), self.Session() as session:
            row = session.get(DocumentRow, (collection, key))
            if not row:
                raise DocumentNotFoundError(collection, key)
            session.delete(row)
            session.commit()


Base = declarative_base()


class DocumentRow(Base):
    __tablename__ = "documents"

    collection = Column(String, primary_key=True)
    key = Column(String, primary_key=True)
    body = Column(JSON, nullable=False)
    updated_at = Column(Float, nullable=False)
