from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable
from typing import Generic, TypeVar

from opentelemetry import trace

from quotebook.schemas.entities import Content, ContentId, User, UserId
from quotebook.schemas.queries import ContentMutation, ContentQuery, UserMutation, UserQuery
from quotebook.services.matching import (
    apply_content_mutation,
    apply_user_mutation,
    matches_content,
    matches_user,
)
from quotebook.services.repository import (
    ContentRepository,
    RepositoryNoUniqueError,
    RepositoryNotFoundError,
    UserRepository,
)

T = TypeVar("T", User, Content)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _index_of(items: list[T], predicate: Callable[[T], bool]) -> int:
    matched = [index for index, item in enumerate(items) if predicate(item)]
    if not matched:
        raise RepositoryNotFoundError()
    if len(matched) > 1:
        raise RepositoryNoUniqueError(matched=len(matched))
    return matched[0]


class InMemoryTable(Generic[T]):
    """One ordered list of entities behind one lock held for the whole operation."""

    def __init__(self) -> None:
        self.items: list[T] = []
        self.lock = asyncio.Lock()

    def index(self, id: object) -> int:
        return _index_of(self.items, lambda item: item.id == id)

    def get(self, id: object) -> T:
        return self.items[self.index(id)]

    def contains(self, id: object) -> bool:
        try:
            self.index(id)
        except RepositoryNotFoundError:
            return False
        return True

    async def insert(self, item: T) -> bool:
        async with self.lock:
            if self.contains(item.id):
                return False
            logger.debug("insert - %r", item)
            self.items.append(copy.deepcopy(item))
            return True

    async def is_exists(self, id: object) -> bool:
        async with self.lock:
            return self.contains(id)

    async def find(self, id: object) -> T:
        async with self.lock:
            return copy.deepcopy(self.get(id))

    async def filter(self, predicate: Callable[[T], bool]) -> list[T]:
        async with self.lock:
            found = [copy.deepcopy(item) for item in self.items if predicate(item)]
        logger.debug("found - %d item(s)", len(found))
        return found

    async def replace(self, id: object, mutate: Callable[[T], T]) -> T:
        async with self.lock:
            index = self.index(id)
            logger.debug("found - %r", self.items[index])
            mutated = mutate(self.items[index])
            self.items[index] = mutated
            logger.debug("mutated - %r", mutated)
            return copy.deepcopy(mutated)

    async def delete(self, id: object) -> T:
        async with self.lock:
            return self.items.pop(self.index(id))

    async def members(self, id: object, relation: Callable[[T], set]) -> set:
        async with self.lock:
            return set(relation(self.get(id)))

    async def has_member(self, id: object, relation: Callable[[T], set], member: object) -> bool:
        async with self.lock:
            return member in relation(self.get(id))

    async def add_member(self, id: object, relation: Callable[[T], set], member: object) -> bool:
        async with self.lock:
            members = relation(self.get(id))
            if member in members:
                return False
            members.add(member)
            return True

    async def remove_member(self, id: object, relation: Callable[[T], set], member: object) -> bool:
        async with self.lock:
            members = relation(self.get(id))
            if member not in members:
                return False
            members.remove(member)
            return True


def _posted(user: User) -> set[ContentId]:
    return user.posted


def _bookmark(user: User) -> set[ContentId]:
    return user.bookmark


def _liked(content: Content) -> set[UserId]:
    return content.liked


def _pinned(content: Content) -> set[UserId]:
    return content.pinned


class InMemoryUserRepository(UserRepository):
    def __init__(self) -> None:
        self._table: InMemoryTable[User] = InMemoryTable()

    async def insert(self, item: User) -> bool:
        return await self._table.insert(item)

    async def is_exists(self, id: UserId) -> bool:
        return await self._table.is_exists(id)

    async def find(self, id: UserId) -> User:
        return await self._table.find(id)

    async def finds(self, query: UserQuery) -> list[User]:
        with tracer.start_as_current_span("users.finds"):
            return await self._table.filter(lambda user: matches_user(query, user))

    async def update(self, id: UserId, mutation: UserMutation) -> User:
        with tracer.start_as_current_span("users.update"):
            return await self._table.replace(id, lambda user: apply_user_mutation(mutation, user))

    async def delete(self, id: UserId) -> User:
        with tracer.start_as_current_span("users.delete"):
            return await self._table.delete(id)

    async def get_posted(self, id: UserId) -> set[ContentId]:
        return await self._table.members(id, _posted)

    async def is_posted(self, id: UserId, content_id: ContentId) -> bool:
        return await self._table.has_member(id, _posted, content_id)

    async def insert_posted(self, id: UserId, content_id: ContentId) -> bool:
        return await self._table.add_member(id, _posted, content_id)

    async def delete_posted(self, id: UserId, content_id: ContentId) -> bool:
        return await self._table.remove_member(id, _posted, content_id)

    async def get_bookmark(self, id: UserId) -> set[ContentId]:
        return await self._table.members(id, _bookmark)

    async def is_bookmark(self, id: UserId, content_id: ContentId) -> bool:
        return await self._table.has_member(id, _bookmark, content_id)

    async def insert_bookmark(self, id: UserId, content_id: ContentId) -> bool:
        return await self._table.add_member(id, _bookmark, content_id)

    async def delete_bookmark(self, id: UserId, content_id: ContentId) -> bool:
        return await self._table.remove_member(id, _bookmark, content_id)


class InMemoryContentRepository(ContentRepository):
    def __init__(self) -> None:
        self._table: InMemoryTable[Content] = InMemoryTable()

    async def insert(self, item: Content) -> bool:
        return await self._table.insert(item)

    async def is_exists(self, id: ContentId) -> bool:
        return await self._table.is_exists(id)

    async def find(self, id: ContentId) -> Content:
        return await self._table.find(id)

    async def finds(self, query: ContentQuery) -> list[Content]:
        with tracer.start_as_current_span("contents.finds"):
            return await self._table.filter(lambda content: matches_content(query, content))

    async def update(self, id: ContentId, mutation: ContentMutation) -> Content:
        with tracer.start_as_current_span("contents.update"):
            return await self._table.replace(id, lambda content: apply_content_mutation(mutation, content))

    async def delete(self, id: ContentId) -> Content:
        with tracer.start_as_current_span("contents.delete"):
            return await self._table.delete(id)

    async def get_liked(self, id: ContentId) -> set[UserId]:
        return await self._table.members(id, _liked)

    async def is_liked(self, id: ContentId, user_id: UserId) -> bool:
        return await self._table.has_member(id, _liked, user_id)

    async def insert_liked(self, id: ContentId, user_id: UserId) -> bool:
        return await self._table.add_member(id, _liked, user_id)

    async def delete_liked(self, id: ContentId, user_id: UserId) -> bool:
        return await self._table.remove_member(id, _liked, user_id)

    async def get_pinned(self, id: ContentId) -> set[UserId]:
        return await self._table.members(id, _pinned)

    async def is_pinned(self, id: ContentId, user_id: UserId) -> bool:
        return await self._table.has_member(id, _pinned, user_id)

    async def insert_pinned(self, id: ContentId, user_id: UserId) -> bool:
        return await self._table.add_member(id, _pinned, user_id)

    async def delete_pinned(self, id: ContentId, user_id: UserId) -> bool:
        return await self._table.remove_member(id, _pinned, user_id)
