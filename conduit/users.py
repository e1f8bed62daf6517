"""
User records and their persistence on top of the document store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional
from uuid import uuid4

from conduit.exceptions import StoreError
from conduit.security import hash_password, verify_password
from conduit.store import (
    DEFAULT_SCOPE,
    DocumentStore,
    LookupInSpec,
    MutateInSpec,
    Query,
)

logger = logging.getLogger(__name__)

FOLLOWING_PATH = "following"


@dataclass
class User:
    username: str
    email: str
    password_digest: Optional[str] = None
    bio: Optional[str] = None
    image: Optional[str] = None
    following: List[str] = field(default_factory=list)
    id: Optional[str] = None

    def to_document(self) -> dict:
        return {
            "username": self.username,
            "email": self.email,
            "password_digest": self.password_digest,
            "bio": self.bio,
            "image": self.image,
            "following": list(self.following),
        }

    @classmethod
    def from_document(cls, user_id: str, document: dict) -> "User":
        return cls(
            id=user_id,
            username=document.get("username"),
            email=document.get("email"),
            password_digest=document.get("password_digest"),
            bio=document.get("bio"),
            image=document.get("image"),
            following=list(document.get("following") or []),
        )

    def set_password(self, password: str) -> None:
        self.password_digest = hash_password(password)

    def check_password(self, password: str) -> bool:
        return verify_password(password, self.password_digest)


class UserRepository:
    """
    Reads and writes users in one collection. Store errors reach the caller
    as raised by the backend.

    Emails are reserved in a side collection keyed by the address, so
    ``create`` can refuse a taken email atomically.
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: str = "users",
        emails_collection: str | None = None,
    ):
        self.store = store
        self.collection = collection
        self.emails_collection = emails_collection or f"{collection}_by_email"

    def save(self, user: User) -> User:
        """
        Upsert the whole user document, generating an id on first save.
        The id is only assigned once the write went through.
        """
        user_id = user.id if user.id is not None else str(uuid4())
        self.store.upsert(self.collection, user_id, user.to_document())
        if user.id is None:
            logger.info("Created user %s (%s)", user_id, user.email)
        user.id = user_id
        return user

    def create(self, user: User) -> User:
        """
        Save a new user after reserving its email. Raises
        ``DocumentExistsError`` when another user already holds the address.
        """
        user_id = user.id if user.id is not None else str(uuid4())
        self.store.insert(self.emails_collection, user.email, {"user_id": user_id})
        try:
            self.store.upsert(self.collection, user_id, user.to_document())
        except StoreError:
            self.store.remove(self.emails_collection, user.email)
            raise
        logger.info("Created user %s (%s)", user_id, user.email)
        user.id = user_id
        return user

    def find(self, user_id: str) -> Optional[User]:
        document = self.store.get(self.collection, user_id)
        if document is None:
            return None
        return User.from_document(user_id, document)

    def find_by_email(self, email: str) -> Optional[User]:
        result = self.store.query(
            Query(collection=self.collection, where={"email": email}, limit=1)
        )
        if not result.rows:
            return None
        row = result.rows[0]
        return User.from_document(row["id"], row[DEFAULT_SCOPE])

    def authenticate(self, email: str, password: str) -> Optional[User]:
        user = self.find_by_email(email)
        if user is None or not user.check_password(password):
            return None
        return user

    def follow(self, user: User, other: User) -> None:
        """Append ``other`` to the stored following list of ``user``."""
        _require_saved(user, other)
        self.store.mutate_in(
            self.collection,
            user.id,
            [MutateInSpec.array_append(FOLLOWING_PATH, other.id)],
        )
        user.following.append(other.id)
        logger.info("User %s now follows %s", user.id, other.id)

    def is_following(self, user: User, other: User) -> bool:
        _require_saved(user, other)
        result = self.store.lookup_in(
            self.collection, user.id, [LookupInSpec.get(FOLLOWING_PATH)]
        )
        if not result.exists:
            return False
        return other.id in (result.content[0] or [])

    def unfollow(self, user: User, other: User) -> None:
        """Drop every occurrence of ``other`` in one mutation, like ``follow``."""
        _require_saved(user, other)
        self.store.mutate_in(
            self.collection,
            user.id,
            [MutateInSpec.array_remove(FOLLOWING_PATH, other.id)],
        )
        user.following = [
            user_id for user_id in user.following if user_id != other.id
        ]
        logger.info("User %s unfollowed %s", user.id, other.id)


def _require_saved(*users: User) -> None:
    for user in users:
        if user.id is None:
            raise ValueError(f"User {user.email!r} has not been saved yet")
