"""
Entity snapshots denormalized into timeline events.

A snapshot is the display-relevant slice of one entity at one moment. The
union is discriminated by ``entity_type`` so the recorder and the rebuilder
dispatch on the tag rather than on the shape of a dict.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from readlog.models.enums import ReadingFormat, ReadingStatus


class _Snapshot(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)


class BookSnapshot(_Snapshot):
    entity_type: Literal["book"] = "book"
    title: str = Field(min_length=1)
    authors: list[str] = Field(default_factory=list)
    genres: list[str] = Field(default_factory=list)
    page_count: Optional[int] = None


class AuthorSnapshot(_Snapshot):
    entity_type: Literal["author"] = "author"
    name: str = Field(min_length=1)


class GenreSnapshot(_Snapshot):
    entity_type: Literal["genre"] = "genre"
    name: str = Field(min_length=1)


class ReadingSnapshot(_Snapshot):
    entity_type: Literal["reading"] = "reading"
    book_id: int
    book_title: str = Field(min_length=1)
    authors: list[str] = Field(default_factory=list)
    status: ReadingStatus
    rating: Optional[float] = None
    format: Optional[ReadingFormat] = None


EntitySnapshot = Annotated[
    Union[BookSnapshot, AuthorSnapshot, GenreSnapshot, ReadingSnapshot],
    Field(discriminator="entity_type"),
]
