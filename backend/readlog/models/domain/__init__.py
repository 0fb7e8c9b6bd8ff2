"""Domain models: library entities, snapshots, timeline events and stats."""

from readlog.models.domain.library import (
    Author, AuthorCreate, AuthorUpdate,
    Genre, GenreCreate, GenreUpdate,
    Book, BookCreate, BookUpdate,
    Reading, ReadingCreate, ReadingUpdate,
    ShelveRequest, User, UserCreate,
)
from readlog.models.domain.snapshots import (
    AuthorSnapshot,
    BookSnapshot,
    EntitySnapshot,
    GenreSnapshot,
    ReadingSnapshot,
)
from readlog.models.domain.timeline import (
    NewTimelineEvent,
    RebuildResult,
    TimelineCursor,
    TimelineEvent,
    TimelineEventDetail,
    TimelinePage,
    TimelinePayload,
    TimelineReadingData,
)
from readlog.models.domain.stats import (
    BookSummaryStats,
    CachedStats,
    ReadingStats,
    StatsEntry,
)

__all__ = [
    "Author", "AuthorCreate", "AuthorUpdate",
    "Genre", "GenreCreate", "GenreUpdate",
    "Book", "BookCreate", "BookUpdate",
    "Reading", "ReadingCreate", "ReadingUpdate",
    "ShelveRequest", "User", "UserCreate",
    "AuthorSnapshot", "BookSnapshot", "EntitySnapshot", "GenreSnapshot", "ReadingSnapshot",
    "NewTimelineEvent", "RebuildResult", "TimelineCursor", "TimelineEvent",
    "TimelineEventDetail", "TimelinePage", "TimelinePayload", "TimelineReadingData",
    "BookSummaryStats", "CachedStats", "ReadingStats", "StatsEntry",
]
