"""
Shared pytest fixtures for quotebook tests.

Provides an in-process document store so the partitioned repositories can be
exercised without a PostgreSQL server.
"""

from __future__ import annotations

import copy
from typing import Any

import pytest

from quotebook.core.config import get_settings
from quotebook.core.ranges import BoundPair, range_contains
from quotebook.services.document_store import DocumentContentRepository, DocumentUserRepository
from quotebook.services.repository import ContentRepository, RepositoryInternalError, UserRepository, get_repositories
from quotebook.services.store import InMemoryContentRepository, InMemoryUserRepository


class FakeDocumentStore:
    """Dict-backed stand-in for PostgresDocumentStore with per-operation failure injection."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []
        self.failures: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, str]] = []

    def _check(self, operation: str, partition: str) -> None:
        self.calls.append((operation, partition))
        if (operation, partition) in self.failures:
            raise RepositoryInternalError(f"{operation} failed for {partition}")

    def _matching(self, partition: str, key: str) -> list[dict[str, Any]]:
        return [body for p, k, body in self.records if p == partition and k == key]

    async def insert_one(self, partition: str, key: str, body: dict[str, Any]) -> None:
        self._check("insert_one", partition)
        self.records.append((partition, key, copy.deepcopy(body)))

    async def count(self, partition: str, key: str) -> int:
        self._check("count", partition)
        return len(self._matching(partition, key))

    async def fetch(self, partition: str, key: str) -> list[dict[str, Any]]:
        self._check("fetch", partition)
        return copy.deepcopy(self._matching(partition, key))

    async def patch(
        self,
        partition: str,
        key: str,
        fields: dict[str, Any],
        *,
        append: tuple[str, list[Any]] | None = None,
    ) -> int:
        self._check("patch", partition)
        bodies = self._matching(partition, key)
        for body in bodies:
            body.update(copy.deepcopy(fields))
            if append is not None:
                name, values = append
                body[name] = [*body.get(name, []), *values]
        return len(bodies)

    async def add_to_set(self, partition: str, key: str, member: Any) -> bool:
        self._check("add_to_set", partition)
        changed = False
        for body in self._matching(partition, key):
            members = body.setdefault("members", [])
            if member not in members:
                members.append(member)
                changed = True
        return changed

    async def pull(self, partition: str, key: str, member: Any) -> bool:
        self._check("pull", partition)
        changed = False
        for body in self._matching(partition, key):
            members = body.setdefault("members", [])
            if member in members:
                body["members"] = [value for value in members if value != member]
                changed = True
        return changed

    async def delete_all(self, partition: str, key: str) -> int:
        self._check("delete_all", partition)
        kept = [record for record in self.records if not (record[0] == partition and record[1] == key)]
        removed = len(self.records) - len(kept)
        self.records = kept
        return removed

    async def keys(self, partition: str) -> list[str]:
        self._check("keys", partition)
        return [key for p, key, _ in self.records if p == partition]

    async def keys_containing(self, partition: str, members: list[Any]) -> list[str]:
        self._check("keys_containing", partition)
        return [
            key
            for p, key, body in self.records
            if p == partition and all(member in body.get("members", []) for member in members)
        ]

    async def keys_sized(self, partition: str, bounds: BoundPair) -> list[str]:
        self._check("keys_sized", partition)
        return [
            key
            for p, key, body in self.records
            if p == partition and range_contains(bounds, len(body.get("members", [])))
        ]


@pytest.fixture
def document_store() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture(params=["memory", "document"])
def backend(request: pytest.FixtureRequest) -> tuple[UserRepository, ContentRepository]:
    if request.param == "memory":
        return InMemoryUserRepository(), InMemoryContentRepository()
    store = FakeDocumentStore()
    return DocumentUserRepository(store), DocumentContentRepository(store)


@pytest.fixture
def clean_settings(monkeypatch: pytest.MonkeyPatch):
    for name in ("QB_BACKEND", "QB_DATABASE_URL", "QB_LOG_LEVEL", "QB_OTEL_ENABLED"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    get_repositories.cache_clear()
    yield
    get_repositories.cache_clear()
    get_settings.cache_clear()
