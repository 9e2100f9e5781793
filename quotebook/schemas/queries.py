from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

from quotebook.core.ranges import BoundPair
from quotebook.schemas.entities import Author, ContentId, UserId


def _compile(pattern: str | re.Pattern[str]) -> re.Pattern[str]:
    if isinstance(pattern, re.Pattern):
        return pattern
    return re.compile(pattern)


@dataclass(frozen=True, slots=True)
class MatchUserId:
    id: UserId


@dataclass(frozen=True, slots=True)
class MatchUserName:
    pattern: re.Pattern[str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "pattern", _compile(self.pattern))


@dataclass(frozen=True, slots=True)
class MatchUserNick:
    pattern: re.Pattern[str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "pattern", _compile(self.pattern))


@dataclass(frozen=True, slots=True)
class MatchVirtual:
    """Matches only authors without an account."""

    pattern: re.Pattern[str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "pattern", _compile(self.pattern))


@dataclass(frozen=True, slots=True)
class MatchAny:
    """Matches the display name or the nickname, whichever kind of author it is."""

    pattern: re.Pattern[str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "pattern", _compile(self.pattern))


AuthorQuery = MatchUserId | MatchUserName | MatchUserNick | MatchVirtual | MatchAny
PostedQuery = MatchUserId | MatchUserName | MatchUserNick | MatchAny


@dataclass(frozen=True, slots=True)
class UserQuery:
    bookmark: frozenset[ContentId] | None = None
    bookmark_num: BoundPair | None = None

    def __post_init__(self) -> None:
        if self.bookmark is not None:
            object.__setattr__(self, "bookmark", frozenset(self.bookmark))


@dataclass(frozen=True, slots=True)
class ContentQuery:
    author: AuthorQuery | None = None
    posted: PostedQuery | None = None
    content: re.Pattern[str] | None = None
    liked: frozenset[UserId] | None = None
    liked_num: BoundPair | None = None
    pinned: frozenset[UserId] | None = None
    pinned_num: BoundPair | None = None

    def __post_init__(self) -> None:
        if isinstance(self.posted, MatchVirtual):
            raise TypeError("posted query cannot match virtual authors")
        if self.content is not None:
            object.__setattr__(self, "content", _compile(self.content))
        if self.liked is not None:
            object.__setattr__(self, "liked", frozenset(self.liked))
        if self.pinned is not None:
            object.__setattr__(self, "pinned", frozenset(self.pinned))


@dataclass(frozen=True, slots=True)
class UserMutation:
    admin: bool | None = None
    sub_admin: bool | None = None


@dataclass(frozen=True, slots=True)
class CompleteContent:
    text: str


@dataclass(frozen=True, slots=True)
class SedContent:
    """Replace every match of ``capture`` with ``replace`` (``re.sub`` template syntax)."""

    capture: re.Pattern[str]
    replace: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "capture", _compile(self.capture))


ContentChange = CompleteContent | SedContent


@dataclass(frozen=True, slots=True)
class ContentMutation:
    author: Author | None = None
    content: ContentChange | None = None
    edited: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
