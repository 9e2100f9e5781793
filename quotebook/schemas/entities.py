from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

UserId = int
ContentId = UUID


@dataclass(slots=True)
class UserRef:
    """A registered chat user as seen when the content was posted."""

    id: UserId
    name: str
    nick: str | None = None


@dataclass(slots=True)
class RegisteredAuthor:
    id: UserId
    name: str
    nick: str | None = None


@dataclass(slots=True)
class VirtualAuthor:
    """Someone quoted who has no account; only a display name is known."""

    name: str


Author = RegisteredAuthor | VirtualAuthor


@dataclass(slots=True)
class User:
    id: UserId
    admin: bool = False
    sub_admin: bool = False
    posted: set[ContentId] = field(default_factory=set)
    bookmark: set[ContentId] = field(default_factory=set)


@dataclass(slots=True)
class Content:
    id: ContentId
    author: Author
    posted: UserRef
    content: str
    liked: set[UserId] = field(default_factory=set)
    pinned: set[UserId] = field(default_factory=set)
    created: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    edited: list[datetime] = field(default_factory=list)
