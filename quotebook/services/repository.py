from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from typing import Awaitable, Callable

from quotebook.core.config import get_settings
from quotebook.schemas.entities import Content, ContentId, User, UserId
from quotebook.schemas.queries import ContentMutation, ContentQuery, UserMutation, UserQuery


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""

    def __init__(self, message: str = "cannot find object.") -> None:
        super().__init__(message)


class RepositoryNoUniqueError(RepositoryError):
    """Raised when more than one record matched a key expected to be unique."""

    def __init__(self, matched: int) -> None:
        self.matched = matched
        super().__init__(f"expected unique object, found non-unique objects (matched: {matched})")


class RepositoryInternalError(RepositoryError):
    """Raised when the storage backend fails."""


class RepositoryUnavailableError(RepositoryInternalError):
    """Raised when the database is unavailable or not configured."""


class PartitionDivergenceError(RuntimeError):
    """Raised when the records making up one entity disagree with each other.

    Not a RepositoryError: the entity is in a state the contract does not allow
    and nothing at the call site can repair it.
    """

    def __init__(self, key: str, detail: str) -> None:
        self.key = key
        self.detail = detail
        super().__init__(f"partitions diverged for {key}: {detail}")


class UserRepository(ABC):
    """Persistence contract for :class:`User` entities."""

    @abstractmethod
    async def insert(self, item: User) -> bool:
        """Store a new user. Returns False, not an error, when the id is taken."""

    @abstractmethod
    async def is_exists(self, id: UserId) -> bool: ...

    @abstractmethod
    async def find(self, id: UserId) -> User:
        """Return the user or raise :class:`RepositoryNotFoundError`."""

    @abstractmethod
    async def finds(self, query: UserQuery) -> list[User]:
        """Return every user matching all present predicates, in insertion order."""

    @abstractmethod
    async def update(self, id: UserId, mutation: UserMutation) -> User:
        """Apply the mutation and return the updated user."""

    @abstractmethod
    async def delete(self, id: UserId) -> User:
        """Remove the user and return it as it was immediately before removal."""

    @abstractmethod
    async def get_posted(self, id: UserId) -> set[ContentId]: ...

    @abstractmethod
    async def is_posted(self, id: UserId, content_id: ContentId) -> bool: ...

    @abstractmethod
    async def insert_posted(self, id: UserId, content_id: ContentId) -> bool:
        """Add to the posted set. True only when the set changed."""

    @abstractmethod
    async def delete_posted(self, id: UserId, content_id: ContentId) -> bool:
        """Remove from the posted set. True only when the set changed."""

    @abstractmethod
    async def get_bookmark(self, id: UserId) -> set[ContentId]: ...

    @abstractmethod
    async def is_bookmark(self, id: UserId, content_id: ContentId) -> bool: ...

    @abstractmethod
    async def insert_bookmark(self, id: UserId, content_id: ContentId) -> bool:
        """Add to the bookmark set. True only when the set changed."""

    @abstractmethod
    async def delete_bookmark(self, id: UserId, content_id: ContentId) -> bool:
        """Remove from the bookmark set. True only when the set changed."""


class ContentRepository(ABC):
    """Persistence contract for :class:`Content` entities."""

    @abstractmethod
    async def insert(self, item: Content) -> bool:
        """Store new content. Returns False, not an error, when the id is taken."""

    @abstractmethod
    async def is_exists(self, id: ContentId) -> bool: ...

    @abstractmethod
    async def find(self, id: ContentId) -> Content:
        """Return the content or raise :class:`RepositoryNotFoundError`."""

    @abstractmethod
    async def finds(self, query: ContentQuery) -> list[Content]:
        """Return all content matching every present predicate, in insertion order."""

    @abstractmethod
    async def update(self, id: ContentId, mutation: ContentMutation) -> Content:
        """Apply the mutation, record the edit time and return the updated content."""

    @abstractmethod
    async def delete(self, id: ContentId) -> Content:
        """Remove the content and return it as it was immediately before removal."""

    @abstractmethod
    async def get_liked(self, id: ContentId) -> set[UserId]: ...

    @abstractmethod
    async def is_liked(self, id: ContentId, user_id: UserId) -> bool: ...

    @abstractmethod
    async def insert_liked(self, id: ContentId, user_id: UserId) -> bool: ...

    @abstractmethod
    async def delete_liked(self, id: ContentId, user_id: UserId) -> bool: ...

    @abstractmethod
    async def get_pinned(self, id: ContentId) -> set[UserId]: ...

    @abstractmethod
    async def is_pinned(self, id: ContentId, user_id: UserId) -> bool: ...

    @abstractmethod
    async def insert_pinned(self, id: ContentId, user_id: UserId) -> bool: ...

    @abstractmethod
    async def delete_pinned(self, id: ContentId, user_id: UserId) -> bool: ...


async def _nothing_to_close() -> None:
    return None


@dataclass(slots=True)
class Repositories:
    users: UserRepository
    contents: ContentRepository
    closer: Callable[[], Awaitable[None]] = _nothing_to_close

    async def close(self) -> None:
        await self.closer()


@lru_cache
def get_repositories() -> Repositories:
    settings = get_settings()
    if settings.backend == "memory":
        from quotebook.services.store import InMemoryContentRepository, InMemoryUserRepository

        return Repositories(users=InMemoryUserRepository(), contents=InMemoryContentRepository())

    if settings.backend == "document":
        from quotebook.services.document_store import (
            DocumentContentRepository,
            DocumentUserRepository,
            PostgresDocumentStore,
        )

        store = PostgresDocumentStore(
            database_url=settings.database_url,
            min_pool_size=settings.database_pool_min_size,
            max_pool_size=settings.database_pool_max_size,
            command_timeout=settings.database_command_timeout_seconds,
        )
        return Repositories(
            users=DocumentUserRepository(store),
            contents=DocumentContentRepository(store),
            closer=store.close,
        )

    raise ValueError(f"Unknown backend: {settings.backend!r}")
