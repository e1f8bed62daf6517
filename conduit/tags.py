"""
Tag records. Tags are keyed by their name, so a name is stored at most once.
"""

from __future__ import annotations

from dataclasses import dataclass

from conduit.store import DEFAULT_SCOPE, DocumentStore, Query


@dataclass
class Tag:
    name: str


class TagRepository:
    def __init__(self, store: DocumentStore, collection: str = "tags"):
        self.store = store
        self.collection = collection

    def all(self) -> list[Tag]:
        result = self.store.query(Query(collection=self.collection))
        return [
            Tag(name=row[DEFAULT_SCOPE].get("name", row["id"]))
            for row in result.rows
        ]

    def save(self, tag: Tag) -> Tag:
        self.store.upsert(self.collection, tag.name, {"name": tag.name})
        return tag
