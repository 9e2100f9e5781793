from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Protocol
from uuid import UUID

import asyncpg  # type: ignore[import-untyped]
from opentelemetry import trace

from quotebook.core.ranges import BoundPair, Excluded, Included
from quotebook.schemas.documents import ContentDocument, RelationDocument, UserDocument, author_to_document, dump
from quotebook.schemas.entities import Content, ContentId, User, UserId
from quotebook.schemas.queries import ContentMutation, ContentQuery, UserMutation, UserQuery
from quotebook.services.matching import matches_content, rewrite_content
from quotebook.services.repository import (
    ContentRepository,
    PartitionDivergenceError,
    RepositoryError,
    RepositoryInternalError,
    RepositoryNoUniqueError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    UserRepository,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

USERS = "users"
USERS_POSTED = "users.posted"
USERS_BOOKMARK = "users.bookmark"
CONTENTS = "contents"
CONTENTS_LIKED = "contents.liked"
CONTENTS_PINNED = "contents.pinned"

SCHEMA_STATEMENTS = (
    """
    create table if not exists documents (
      seq bigserial primary key,
      partition text not null,
      key text not null,
      body jsonb not null
    )
    """,
    """
    create index if not exists documents_partition_key_idx
    on documents (partition, key)
    """,
)

_MEMBERS = "coalesce(body -> 'members', '[]'::jsonb)"


class DocumentStore(Protocol):
    """Records addressed by (partition, key). Every call is atomic for a single record only."""

    async def insert_one(self, partition: str, key: str, body: dict[str, Any]) -> None: ...

    async def count(self, partition: str, key: str) -> int: ...

    async def fetch(self, partition: str, key: str) -> list[dict[str, Any]]: ...

    async def patch(
        self,
        partition: str,
        key: str,
        fields: dict[str, Any],
        *,
        append: tuple[str, list[Any]] | None = None,
    ) -> int: ...

    async def add_to_set(self, partition: str, key: str, member: Any) -> bool: ...

    async def pull(self, partition: str, key: str, member: Any) -> bool: ...

    async def delete_all(self, partition: str, key: str) -> int: ...

    async def keys(self, partition: str) -> list[str]: ...

    async def keys_containing(self, partition: str, members: list[Any]) -> list[str]: ...

    async def keys_sized(self, partition: str, bounds: BoundPair) -> list[str]: ...


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
        raise RepositoryInternalError(f"{operation} failed: {exc}") from exc


def _affected(status: str) -> int:
    try:
        return int(status.rsplit(" ", maxsplit=1)[-1])
    except ValueError:
        return 0


def _size_conditions(bounds: BoundPair, first_param: int) -> tuple[list[str], list[int]]:
    size = f"jsonb_array_length({_MEMBERS})"
    conditions: list[str] = []
    params: list[int] = []
    lower, upper = bounds
    for bound, inclusive_op, exclusive_op in ((lower, ">=", ">"), (upper, "<=", "<")):
        if isinstance(bound, Included):
            op = inclusive_op
        elif isinstance(bound, Excluded):
            op = exclusive_op
        else:
            continue
        conditions.append(f"{size} {op} ${first_param + len(params)}")
        params.append(int(bound.value))
    return conditions, params


class PostgresDocumentStore:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int = 1,
        max_pool_size: int = 10,
        command_timeout: float = 15.0,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None
        self._pool_lock = asyncio.Lock()

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ensure_schema(self) -> None:
        pool = await self._get_pool()
        with _translate_errors("ensure_schema"):
            for statement in SCHEMA_STATEMENTS:
                await pool.execute(statement)

    async def insert_one(self, partition: str, key: str, body: dict[str, Any]) -> None:
        pool = await self._get_pool()
        with _translate_errors("insert_one"):
            await pool.execute(
                """
                insert into documents (partition, key, body)
                values ($1, $2, $3::jsonb)
                """,
                partition,
                key,
                json.dumps(body),
            )

    async def count(self, partition: str, key: str) -> int:
        pool = await self._get_pool()
        with _translate_errors("count"):
            value = await pool.fetchval(
                "select count(*) from documents where partition = $1 and key = $2",
                partition,
                key,
            )
        return int(value or 0)

    async def fetch(self, partition: str, key: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        with _translate_errors("fetch"):
            rows = await pool.fetch(
                "select body from documents where partition = $1 and key = $2 order by seq",
                partition,
                key,
            )
        return [self._body(row) for row in rows]

    async def patch(
        self,
        partition: str,
        key: str,
        fields: dict[str, Any],
        *,
        append: tuple[str, list[Any]] | None = None,
    ) -> int:
        pool = await self._get_pool()
        with _translate_errors("patch"):
            if append is None:
                status = await pool.execute(
                    """
                    update documents
                    set body = body || $3::jsonb
                    where partition = $1 and key = $2
                    """,
                    partition,
                    key,
                    json.dumps(fields),
                )
            else:
                field_name, values = append
                status = await pool.execute(
                    """
                    update documents
                    set body = jsonb_set(
                      body || $3::jsonb,
                      array[$4::text],
                      coalesce(body -> $4::text, '[]'::jsonb) || $5::jsonb
                    )
                    where partition = $1 and key = $2
                    """,
                    partition,
                    key,
                    json.dumps(fields),
                    field_name,
                    json.dumps(values),
                )
        return _affected(status)

    async def add_to_set(self, partition: str, key: str, member: Any) -> bool:
        pool = await self._get_pool()
        with _translate_errors("add_to_set"):
            status = await pool.execute(
                f"""
                update documents
                set body = jsonb_set(body, '{{members}}', {_MEMBERS} || $3::jsonb)
                where partition = $1 and key = $2 and not {_MEMBERS} @> $3::jsonb
                """,
                partition,
                key,
                json.dumps([member]),
            )
        return _affected(status) > 0

    async def pull(self, partition: str, key: str, member: Any) -> bool:
        pool = await self._get_pool()
        with _translate_errors("pull"):
            status = await pool.execute(
                f"""
                update documents
                set body = jsonb_set(
                  body,
                  '{{members}}',
                  coalesce(
                    (
                      select jsonb_agg(element)
                      from jsonb_array_elements({_MEMBERS}) as elements(element)
                      where element <> $3::jsonb
                    ),
                    '[]'::jsonb
                  )
                )
                where partition = $1 and key = $2 and {_MEMBERS} @> $4::jsonb
                """,
                partition,
                key,
                json.dumps(member),
                json.dumps([member]),
            )
        return _affected(status) > 0

    async def delete_all(self, partition: str, key: str) -> int:
        pool = await self._get_pool()
        with _translate_errors("delete_all"):
            status = await pool.execute(
                "delete from documents where partition = $1 and key = $2",
                partition,
                key,
            )
        return _affected(status)

    async def keys(self, partition: str) -> list[str]:
        pool = await self._get_pool()
        with _translate_errors("keys"):
            rows = await pool.fetch(
                "select key from documents where partition = $1 order by seq",
                partition,
            )
        return [row["key"] for row in rows]

    async def keys_containing(self, partition: str, members: list[Any]) -> list[str]:
        pool = await self._get_pool()
        with _translate_errors("keys_containing"):
            rows = await pool.fetch(
                f"""
                select key from documents
                where partition = $1 and {_MEMBERS} @> $2::jsonb
                order by seq
                """,
                partition,
                json.dumps(members),
            )
        return [row["key"] for row in rows]

    async def keys_sized(self, partition: str, bounds: BoundPair) -> list[str]:
        conditions, params = _size_conditions(bounds, first_param=2)
        where = " and ".join(["partition = $1", *conditions])
        pool = await self._get_pool()
        with _translate_errors("keys_sized"):
            rows = await pool.fetch(
                f"select key from documents where {where} order by seq",
                partition,
                *params,
            )
        return [row["key"] for row in rows]

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("QB_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        async with self._pool_lock:
            if self._pool is not None:
                return self._pool
            try:
                pool = await asyncpg.create_pool(
                    dsn=self.database_url,
                    min_size=self.min_pool_size,
                    max_size=self.max_pool_size,
                    command_timeout=self.command_timeout,
                )
                for statement in SCHEMA_STATEMENTS:
                    await pool.execute(statement)
            except Exception as exc:
                raise RepositoryUnavailableError("database unavailable") from exc
            self._pool = pool
            return pool

    @staticmethod
    def _body(row: asyncpg.Record) -> dict[str, Any]:
        body = row["body"]
        if isinstance(body, str):
            body = json.loads(body)
        return body if isinstance(body, dict) else {}


class _PartitionedRepository:
    """Composes one main record with one record per relation kind, without a transaction.

    Concurrent callers may interleave their writes across partitions. Any
    disagreement observed between partitions is raised as PartitionDivergenceError.
    """

    main_partition: str
    relation_partitions: tuple[str, ...]

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    @property
    def partitions(self) -> tuple[str, ...]:
        return (self.main_partition, *self.relation_partitions)

    def _diverged(self, key: str, detail: str) -> PartitionDivergenceError:
        logger.critical("partition divergence main=%s key=%s detail=%s", self.main_partition, key, detail)
        return PartitionDivergenceError(f"{self.main_partition}:{key}", detail)

    def _agree(self, key: str, counts: dict[str, int]) -> int:
        if len(set(counts.values())) > 1:
            detail = ", ".join(f"{partition}={count}" for partition, count in counts.items())
            raise self._diverged(key, f"record counts disagree ({detail})")
        matched = counts[self.main_partition]
        if matched > 1:
            raise RepositoryNoUniqueError(matched=matched)
        return matched

    async def _exists(self, key: str) -> bool:
        counts = {partition: await self._store.count(partition, key) for partition in self.partitions}
        return self._agree(key, counts) == 1

    async def _require(self, key: str) -> None:
        matched = await self._store.count(self.main_partition, key)
        if matched == 0:
            raise RepositoryNotFoundError()
        if matched > 1:
            raise RepositoryNoUniqueError(matched=matched)

    async def _load(self, key: str) -> tuple[dict[str, Any], dict[str, list[Any]]]:
        bodies = {partition: await self._store.fetch(partition, key) for partition in self.partitions}
        if self._agree(key, {partition: len(found) for partition, found in bodies.items()}) == 0:
            raise RepositoryNotFoundError()
        relations = {
            partition: RelationDocument.model_validate(bodies[partition][0]).members
            for partition in self.relation_partitions
        }
        return bodies[self.main_partition][0], relations

    async def _insert(self, key: str, main: dict[str, Any], relations: dict[str, list[Any]]) -> bool:
        if await self._store.count(self.main_partition, key) > 0:
            return False

        logger.debug("insert - %s:%s", self.main_partition, key)
        await self._store.insert_one(self.main_partition, key, main)
        for partition in self.relation_partitions:
            try:
                await self._store.insert_one(partition, key, dump(RelationDocument(members=relations[partition])))
            except RepositoryError as exc:
                raise self._diverged(key, f"main record written but {partition} failed") from exc
        return True

    async def _delete(self, key: str) -> None:
        removed = await self._store.delete_all(self.main_partition, key)
        if removed == 0:
            raise RepositoryNotFoundError()
        for partition in self.relation_partitions:
            try:
                await self._store.delete_all(partition, key)
            except RepositoryError as exc:
                raise self._diverged(key, f"main record removed but {partition} failed") from exc

    async def _members(self, key: str, partition: str) -> list[Any]:
        await self._require(key)
        found = await self._store.fetch(partition, key)
        if not found:
            raise self._diverged(key, f"{partition} record missing")
        if len(found) > 1:
            raise RepositoryNoUniqueError(matched=len(found))
        return RelationDocument.model_validate(found[0]).members

    async def _toggle(self, key: str, partition: str, member: Any, *, add: bool) -> bool:
        await self._require(key)
        if add:
            changed = await self._store.add_to_set(partition, key, member)
        else:
            changed = await self._store.pull(partition, key, member)
        if not changed and await self._store.count(partition, key) == 0:
            raise self._diverged(key, f"{partition} record missing")
        return changed

    async def _select(self, candidates: list[set[str]]) -> list[str]:
        keys = await self._store.keys(self.main_partition)
        if not candidates:
            return keys
        selected = set.intersection(*candidates)
        return [key for key in keys if key in selected]


class DocumentUserRepository(_PartitionedRepository, UserRepository):
    main_partition = USERS
    relation_partitions = (USERS_POSTED, USERS_BOOKMARK)

    async def insert(self, item: User) -> bool:
        return await self._insert(
            str(item.id),
            dump(UserDocument.from_entity(item)),
            {
                USERS_POSTED: sorted(str(content_id) for content_id in item.posted),
                USERS_BOOKMARK: sorted(str(content_id) for content_id in item.bookmark),
            },
        )

    async def is_exists(self, id: UserId) -> bool:
        return await self._exists(str(id))

    async def find(self, id: UserId) -> User:
        main, relations = await self._load(str(id))
        document = UserDocument.model_validate(main)
        return User(
            id=document.id,
            admin=document.admin,
            sub_admin=document.sub_admin,
            posted={UUID(str(member)) for member in relations[USERS_POSTED]},
            bookmark={UUID(str(member)) for member in relations[USERS_BOOKMARK]},
        )

    async def finds(self, query: UserQuery) -> list[User]:
        with tracer.start_as_current_span("users.finds"):
            candidates: list[set[str]] = []
            if query.bookmark is not None:
                members = sorted(str(content_id) for content_id in query.bookmark)
                candidates.append(set(await self._store.keys_containing(USERS_BOOKMARK, members)))
            if query.bookmark_num is not None:
                candidates.append(set(await self._store.keys_sized(USERS_BOOKMARK, query.bookmark_num)))

            found: list[User] = []
            for key in await self._select(candidates):
                try:
                    found.append(await self.find(int(key)))
                except RepositoryNotFoundError:
                    logger.debug("skip - users:%s removed while listing", key)
            logger.debug("found - %d user(s)", len(found))
            return found

    async def update(self, id: UserId, mutation: UserMutation) -> User:
        with tracer.start_as_current_span("users.update"):
            key = str(id)
            await self._require(key)
            fields: dict[str, Any] = {}
            if mutation.admin is not None:
                fields["admin"] = mutation.admin
            if mutation.sub_admin is not None:
                fields["sub_admin"] = mutation.sub_admin
            if fields:
                await self._store.patch(USERS, key, fields)
            return await self.find(id)

    async def delete(self, id: UserId) -> User:
        with tracer.start_as_current_span("users.delete"):
            snapshot = await self.find(id)
            await self._delete(str(id))
            return snapshot

    async def get_posted(self, id: UserId) -> set[ContentId]:
        return {UUID(str(member)) for member in await self._members(str(id), USERS_POSTED)}

    async def is_posted(self, id: UserId, content_id: ContentId) -> bool:
        return str(content_id) in await self._members(str(id), USERS_POSTED)

    async def insert_posted(self, id: UserId, content_id: ContentId) -> bool:
        return await self._toggle(str(id), USERS_POSTED, str(content_id), add=True)

    async def delete_posted(self, id: UserId, content_id: ContentId) -> bool:
        return await self._toggle(str(id), USERS_POSTED, str(content_id), add=False)

    async def get_bookmark(self, id: UserId) -> set[ContentId]:
        return {UUID(str(member)) for member in await self._members(str(id), USERS_BOOKMARK)}

    async def is_bookmark(self, id: UserId, content_id: ContentId) -> bool:
        return str(content_id) in await self._members(str(id), USERS_BOOKMARK)

    async def insert_bookmark(self, id: UserId, content_id: ContentId) -> bool:
        return await self._toggle(str(id), USERS_BOOKMARK, str(content_id), add=True)

    async def delete_bookmark(self, id: UserId, content_id: ContentId) -> bool:
        return await self._toggle(str(id), USERS_BOOKMARK, str(content_id), add=False)


class DocumentContentRepository(_PartitionedRepository, ContentRepository):
    main_partition = CONTENTS
    relation_partitions = (CONTENTS_LIKED, CONTENTS_PINNED)

    async def insert(self, item: Content) -> bool:
        return await self._insert(
            str(item.id),
            dump(ContentDocument.from_entity(item)),
            {
                CONTENTS_LIKED: sorted(item.liked),
                CONTENTS_PINNED: sorted(item.pinned),
            },
        )

    async def is_exists(self, id: ContentId) -> bool:
        return await self._exists(str(id))

    async def find(self, id: ContentId) -> Content:
        main, relations = await self._load(str(id))
        return ContentDocument.model_validate(main).to_entity(
            liked={int(member) for member in relations[CONTENTS_LIKED]},
            pinned={int(member) for member in relations[CONTENTS_PINNED]},
        )

    async def finds(self, query: ContentQuery) -> list[Content]:
        with tracer.start_as_current_span("contents.finds"):
            candidates: list[set[str]] = []
            if query.liked is not None:
                candidates.append(set(await self._store.keys_containing(CONTENTS_LIKED, sorted(query.liked))))
            if query.liked_num is not None:
                candidates.append(set(await self._store.keys_sized(CONTENTS_LIKED, query.liked_num)))
            if query.pinned is not None:
                candidates.append(set(await self._store.keys_containing(CONTENTS_PINNED, sorted(query.pinned))))
            if query.pinned_num is not None:
                candidates.append(set(await self._store.keys_sized(CONTENTS_PINNED, query.pinned_num)))

            found: list[Content] = []
            for key in await self._select(candidates):
                try:
                    content = await self.find(UUID(key))
                except RepositoryNotFoundError:
                    logger.debug("skip - contents:%s removed while listing", key)
                    continue
                if matches_content(query, content):
                    found.append(content)
            logger.debug("found - %d content(s)", len(found))
            return found

    async def update(self, id: ContentId, mutation: ContentMutation) -> Content:
        with tracer.start_as_current_span("contents.update"):
            key = str(id)
            await self._require(key)
            fields: dict[str, Any] = {}
            if mutation.author is not None:
                fields["author"] = author_to_document(mutation.author).model_dump(mode="json")
            if mutation.content is not None:
                current = await self._store.fetch(CONTENTS, key)
                if not current:
                    raise RepositoryNotFoundError()
                fields["content"] = rewrite_content(mutation.content, str(current[0].get("content", "")))
            updated = await self._store.patch(CONTENTS, key, fields, append=("edited", [mutation.edited.isoformat()]))
            if updated == 0:
                raise RepositoryNotFoundError()
            logger.debug("mutated - contents:%s fields=%s", key, sorted(fields))
            return await self.find(id)

    async def delete(self, id: ContentId) -> Content:
        with tracer.start_as_current_span("contents.delete"):
            snapshot = await self.find(id)
            await self._delete(str(id))
            return snapshot

    async def get_liked(self, id: ContentId) -> set[UserId]:
        return {int(member) for member in await self._members(str(id), CONTENTS_LIKED)}

    async def is_liked(self, id: ContentId, user_id: UserId) -> bool:
        return user_id in {int(member) for member in await self._members(str(id), CONTENTS_LIKED)}

    async def insert_liked(self, id: ContentId, user_id: UserId) -> bool:
        return await self._toggle(str(id), CONTENTS_LIKED, user_id, add=True)

    async def delete_liked(self, id: ContentId, user_id: UserId) -> bool:
        return await self._toggle(str(id), CONTENTS_LIKED, user_id, add=False)

    async def get_pinned(self, id: ContentId) -> set[UserId]:
        return {int(member) for member in await self._members(str(id), CONTENTS_PINNED)}

    async def is_pinned(self, id: ContentId, user_id: UserId) -> bool:
        return user_id in {int(member) for member in await self._members(str(id), CONTENTS_PINNED)}

    async def insert_pinned(self, id: ContentId, user_id: UserId) -> bool:
        return await self._toggle(str(id), CONTENTS_PINNED, user_id, add=True)

    async def delete_pinned(self, id: ContentId, user_id: UserId) -> bool:
        return await self._toggle(str(id), CONTENTS_PINNED, user_id, add=False)
