from __future__ import annotations

import dataclasses
import re

from quotebook.core.ranges import range_contains
from quotebook.schemas.entities import Author, Content, RegisteredAuthor, User, UserRef, VirtualAuthor
from quotebook.schemas.queries import (
    AuthorQuery,
    CompleteContent,
    ContentMutation,
    ContentQuery,
    MatchAny,
    MatchUserId,
    MatchUserName,
    MatchUserNick,
    MatchVirtual,
    PostedQuery,
    SedContent,
    UserMutation,
    UserQuery,
)


def _search(pattern: re.Pattern[str], value: str | None) -> bool:
    if value is None:
        return False
    return pattern.search(value) is not None


def matches_registered(query: AuthorQuery | PostedQuery, id: int, name: str, nick: str | None) -> bool:
    if isinstance(query, MatchUserId):
        return query.id == id
    if isinstance(query, MatchUserName):
        return _search(query.pattern, name)
    if isinstance(query, MatchUserNick):
        return _search(query.pattern, nick)
    if isinstance(query, MatchAny):
        return _search(query.pattern, name) or _search(query.pattern, nick)
    if isinstance(query, MatchVirtual):
        return False
    raise TypeError(f"unsupported user query: {query!r}")


def matches_author(query: AuthorQuery, author: Author) -> bool:
    if isinstance(author, RegisteredAuthor):
        return matches_registered(query, author.id, author.name, author.nick)
    if isinstance(author, VirtualAuthor):
        if isinstance(query, (MatchVirtual, MatchAny)):
            return _search(query.pattern, author.name)
        if isinstance(query, (MatchUserId, MatchUserName, MatchUserNick)):
            return False
        raise TypeError(f"unsupported author query: {query!r}")
    raise TypeError(f"unsupported author: {author!r}")


def matches_posted(query: PostedQuery, posted: UserRef) -> bool:
    return matches_registered(query, posted.id, posted.name, posted.nick)


def matches_user(query: UserQuery, user: User) -> bool:
    if query.bookmark is not None and not query.bookmark <= user.bookmark:
        return False
    if query.bookmark_num is not None and not range_contains(query.bookmark_num, len(user.bookmark)):
        return False
    return True


def matches_content(query: ContentQuery, content: Content) -> bool:
    if query.author is not None and not matches_author(query.author, content.author):
        return False
    if query.posted is not None and not matches_posted(query.posted, content.posted):
        return False
    if query.content is not None and not _search(query.content, content.content):
        return False
    if query.liked is not None and not query.liked <= content.liked:
        return False
    if query.liked_num is not None and not range_contains(query.liked_num, len(content.liked)):
        return False
    if query.pinned is not None and not query.pinned <= content.pinned:
        return False
    if query.pinned_num is not None and not range_contains(query.pinned_num, len(content.pinned)):
        return False
    return True


def apply_user_mutation(mutation: UserMutation, user: User) -> User:
    changes: dict[str, bool] = {}
    if mutation.admin is not None:
        changes["admin"] = mutation.admin
    if mutation.sub_admin is not None:
        changes["sub_admin"] = mutation.sub_admin
    return dataclasses.replace(user, **changes)


def rewrite_content(change: CompleteContent | SedContent | None, current: str) -> str:
    if change is None:
        return current
    if isinstance(change, CompleteContent):
        return change.text
    if isinstance(change, SedContent):
        return change.capture.sub(change.replace, current)
    raise TypeError(f"unsupported content change: {change!r}")


def apply_content_mutation(mutation: ContentMutation, content: Content) -> Content:
    return dataclasses.replace(
        content,
        author=content.author if mutation.author is None else mutation.author,
        content=rewrite_content(mutation.content, content.content),
        edited=[*content.edited, mutation.edited],
    )
