"""
readlog models.

Usage:
    from readlog.models import TimelineEvent, TimelinePage, RebuildResult
    from readlog.models import BookSnapshot, ReadingSnapshot, EntitySnapshot
    from readlog.models import EntityType, ReadingStatus, normalize_name
"""

# --- Enums & utilities ---
from readlog.models.enums import (
    EntityType,
    OrphanPolicy,
    ReadingFormat,
    ReadingStatus,
    Shelf,
    TimelineScope,
    FORMAT_LABELS,
    READING_STATUS_ACTIONS,
    normalize_name,
)

# --- Domain models ---
from readlog.models.domain import (
    Author, AuthorCreate, AuthorUpdate,
    Genre, GenreCreate, GenreUpdate,
    Book, BookCreate, BookUpdate,
    Reading, ReadingCreate, ReadingUpdate,
    ShelveRequest, User, UserCreate,
    AuthorSnapshot, BookSnapshot, EntitySnapshot, GenreSnapshot, ReadingSnapshot,
    NewTimelineEvent, RebuildResult, TimelineCursor, TimelineEvent,
    TimelineEventDetail, TimelinePage, TimelinePayload, TimelineReadingData,
    BookSummaryStats, CachedStats, ReadingStats, StatsEntry,
)

__all__ = [
    # Enums
    "EntityType", "OrphanPolicy", "ReadingFormat", "ReadingStatus", "Shelf", "TimelineScope",
    "FORMAT_LABELS", "READING_STATUS_ACTIONS", "normalize_name",
    # Library
    "Author", "AuthorCreate", "AuthorUpdate",
    "Genre", "GenreCreate", "GenreUpdate",
    "Book", "BookCreate", "BookUpdate",
    "Reading", "ReadingCreate", "ReadingUpdate",
    "ShelveRequest", "User", "UserCreate",
    # Snapshots
    "AuthorSnapshot", "BookSnapshot", "EntitySnapshot", "GenreSnapshot", "ReadingSnapshot",
    # Timeline
    "NewTimelineEvent", "RebuildResult", "TimelineCursor", "TimelineEvent",
    "TimelineEventDetail", "TimelinePage", "TimelinePayload", "TimelineReadingData",
    # Stats
    "BookSummaryStats", "CachedStats", "ReadingStats", "StatsEntry",
]
