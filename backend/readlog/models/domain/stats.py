"""Statistics domain models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class BookSummaryStats(BaseModel):
    """Library-shelf summary: genres, authors, page counts, publication years."""

    total_books: int = 0
    total_authors: int = 0
    unique_genres: int = 0
    top_genre: Optional[str] = None
    top_author: Optional[str] = None
    genre_counts: list[tuple[str, int]] = Field(default_factory=list)
    page_count_distribution: list[tuple[str, int]] = Field(default_factory=list)
    year_published_distribution: list[tuple[str, int]] = Field(default_factory=list)
    longest_book: Optional[tuple[str, int]] = None
    shortest_book: Optional[tuple[str, int]] = None


class ReadingStats(BaseModel):
    """Reading activity totals and distributions."""

    books_all_time: int = 0
    books_last_30_days: int = 0
    pages_all_time: int = 0
    pages_last_30_days: int = 0
    books_in_progress: int = 0
    books_abandoned: int = 0
    books_on_shelf: int = 0
    books_on_wishlist: int = 0
    average_rating: Optional[float] = None
    average_days_to_finish: Optional[float] = None
    rating_distribution: list[tuple[float, int]] = Field(default_factory=list)
    yearly_books: list[tuple[str, int]] = Field(default_factory=list)
    pace_distribution: list[tuple[str, int]] = Field(default_factory=list)
    format_counts: list[tuple[str, int]] = Field(default_factory=list)


class CachedStats(BaseModel):
    """Pre-computed snapshot of all statistics, stored as JSON in the cache table."""

    book_summary: BookSummaryStats = Field(default_factory=BookSummaryStats)
    reading: ReadingStats = Field(default_factory=ReadingStats)
    year: Optional[int] = None


class StatsEntry(BaseModel):
    """A stats cache row as served to callers."""

    user_id: int
    data: CachedStats
    computed_at: datetime
    cached: bool = True
