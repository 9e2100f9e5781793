from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from quotebook.schemas.entities import Author, Content, RegisteredAuthor, User, UserRef, VirtualAuthor


class UserDocument(BaseModel):
    id: int
    admin: bool = False
    sub_admin: bool = False

    @classmethod
    def from_entity(cls, user: User) -> "UserDocument":
        return cls(id=user.id, admin=user.admin, sub_admin=user.sub_admin)


class UserRefDocument(BaseModel):
    id: int
    name: str
    nick: str | None = None


class RegisteredAuthorDocument(BaseModel):
    kind: Literal["user"] = "user"
    id: int
    name: str
    nick: str | None = None


class VirtualAuthorDocument(BaseModel):
    kind: Literal["virtual"] = "virtual"
    name: str


AuthorDocument = Annotated[RegisteredAuthorDocument | VirtualAuthorDocument, Field(discriminator="kind")]


def author_to_document(author: Author) -> RegisteredAuthorDocument | VirtualAuthorDocument:
    if isinstance(author, RegisteredAuthor):
        return RegisteredAuthorDocument(id=author.id, name=author.name, nick=author.nick)
    if isinstance(author, VirtualAuthor):
        return VirtualAuthorDocument(name=author.name)
    raise TypeError(f"unsupported author: {author!r}")


def author_from_document(document: RegisteredAuthorDocument | VirtualAuthorDocument) -> Author:
    if isinstance(document, RegisteredAuthorDocument):
        return RegisteredAuthor(id=document.id, name=document.name, nick=document.nick)
    return VirtualAuthor(name=document.name)


class ContentDocument(BaseModel):
    id: UUID
    author: AuthorDocument
    posted: UserRefDocument
    content: str
    created: datetime
    edited: list[datetime] = Field(default_factory=list)

    @classmethod
    def from_entity(cls, content: Content) -> "ContentDocument":
        return cls(
            id=content.id,
            author=author_to_document(content.author),
            posted=UserRefDocument(id=content.posted.id, name=content.posted.name, nick=content.posted.nick),
            content=content.content,
            created=content.created,
            edited=list(content.edited),
        )

    def to_entity(self, liked: set[int], pinned: set[int]) -> Content:
        return Content(
            id=self.id,
            author=author_from_document(self.author),
            posted=UserRef(id=self.posted.id, name=self.posted.name, nick=self.posted.nick),
            content=self.content,
            liked=liked,
            pinned=pinned,
            created=self.created,
            edited=list(self.edited),
        )


class RelationDocument(BaseModel):
    """One entity's members for one relation kind (posted, bookmark, liked, pinned)."""

    members: list[Any] = Field(default_factory=list)


def dump(document: BaseModel) -> dict[str, Any]:
    return document.model_dump(mode="json")
