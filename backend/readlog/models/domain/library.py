"""Entity models for the library that feeds the timeline."""

from datetime import date, datetime, timezone
from typing import Annotated, Optional

from pydantic import BaseModel, Field

from readlog.models.enums import ReadingFormat, ReadingStatus, Shelf

Rating = Optional[Annotated[float, Field(ge=0.5, le=5.0, multiple_of=0.5)]]
PageCount = Optional[Annotated[int, Field(gt=0)]]


class AuthorCreate(BaseModel):
    name: str = Field(min_length=1)


class AuthorUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)


class Author(BaseModel):
    id: int
    name: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class GenreCreate(BaseModel):
    name: str = Field(min_length=1)


class GenreUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)


class Genre(BaseModel):
    id: int
    name: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class BookCreate(BaseModel):
    """Payload for adding a book to the catalogue."""
    title: str = Field(min_length=1)
    author_ids: list[int] = Field(default_factory=list)
    primary_genre_id: Optional[int] = None
    secondary_genre_id: Optional[int] = None
    page_count: PageCount = None
    year_published: Optional[int] = None


class BookUpdate(BaseModel):
    """Payload for updating a book. Only provided fields are patched."""
    title: Optional[str] = Field(default=None, min_length=1)
    author_ids: Optional[list[int]] = None
    primary_genre_id: Optional[int] = None
    secondary_genre_id: Optional[int] = None
    page_count: PageCount = None
    year_published: Optional[int] = None


class Book(BaseModel):
    id: int
    title: str
    author_ids: list[int] = Field(default_factory=list)
    primary_genre_id: Optional[int] = None
    secondary_genre_id: Optional[int] = None
    page_count: Optional[int] = None
    year_published: Optional[int] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ReadingCreate(BaseModel):
    """Payload for starting (or logging) a reading session."""
    book_id: int
    status: ReadingStatus = ReadingStatus.READING
    started_at: Optional[date] = None
    finished_at: Optional[date] = None
    rating: Rating = None
    format: Optional[ReadingFormat] = None


class ReadingUpdate(BaseModel):
    status: Optional[ReadingStatus] = None
    started_at: Optional[date] = None
    finished_at: Optional[date] = None
    rating: Rating = None
    format: Optional[ReadingFormat] = None


class Reading(BaseModel):
    id: int
    user_id: int
    book_id: int
    status: ReadingStatus = ReadingStatus.READING
    started_at: Optional[date] = None
    finished_at: Optional[date] = None
    rating: Rating = None
    format: Optional[ReadingFormat] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ShelveRequest(BaseModel):
    book_id: int
    shelf: Shelf = Shelf.LIBRARY


class UserCreate(BaseModel):
    name: str = Field(min_length=1)


class User(BaseModel):
    id: int
    name: str
