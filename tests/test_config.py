from __future__ import annotations

import asyncio

import pytest

from quotebook.core.config import get_settings
from quotebook.services.document_store import DocumentUserRepository
from quotebook.services.repository import RepositoryUnavailableError, get_repositories
from quotebook.services.store import InMemoryContentRepository, InMemoryUserRepository


def test_settings_read_prefixed_environment(clean_settings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QB_BACKEND", "document")
    monkeypatch.setenv("QB_DATABASE_POOL_MAX_SIZE", "3")

    settings = get_settings()

    assert settings.backend == "document"
    assert settings.database_pool_max_size == 3
    assert settings.database_url is None


def test_memory_backend_is_the_default(clean_settings) -> None:
    repositories = get_repositories()

    assert isinstance(repositories.users, InMemoryUserRepository)
    assert isinstance(repositories.contents, InMemoryContentRepository)
    assert get_repositories() is repositories
    asyncio.run(repositories.close())


def test_document_backend_without_url_is_unavailable(clean_settings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QB_BACKEND", "document")

    repositories = get_repositories()

    assert isinstance(repositories.users, DocumentUserRepository)
    with pytest.raises(RepositoryUnavailableError):
        asyncio.run(repositories.users.find(1))
    asyncio.run(repositories.close())
