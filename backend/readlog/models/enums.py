"""
Enum definitions for the readlog API.

Action labels on timeline events stay free-form strings; the values below are
the closed sets the schema constrains.
"""
from enum import Enum


class EntityType(str, Enum):
    """Tracked entity kinds that produce timeline events."""
    AUTHOR = "author"
    BOOK = "book"
    READING = "reading"
    GENRE = "genre"


class ReadingStatus(str, Enum):
    """Lifecycle status of a reading session."""
    READING = "reading"
    READ = "read"
    ABANDONED = "abandoned"


class ReadingFormat(str, Enum):
    PHYSICAL = "physical"
    EREADER = "ereader"
    AUDIOBOOK = "audiobook"


class Shelf(str, Enum):
    """Per-user classification of a book."""
    LIBRARY = "library"
    WISHLIST = "wishlist"


class TimelineScope(str, Enum):
    MINE = "mine"
    GLOBAL = "global"


class OrphanPolicy(str, Enum):
    """What a rebuild does with events whose source entity is gone."""
    FREEZE = "freeze"
    PRUNE = "prune"


FORMAT_LABELS = {
    ReadingFormat.PHYSICAL: "Physical",
    ReadingFormat.EREADER: "eReader",
    ReadingFormat.AUDIOBOOK: "Audiobook",
}

READING_STATUS_ACTIONS = {
    ReadingStatus.READING: "started",
    ReadingStatus.READ: "finished",
    ReadingStatus.ABANDONED: "abandoned",
}


def normalize_name(value: str) -> str:
    """
    Normalize a display name before it is stored.

    - Strip surrounding whitespace
    - Collapse inner runs of whitespace

    Examples:
        "  Frank  Herbert " -> "Frank Herbert"
        "Science\tFiction" -> "Science Fiction"
    """
    return " ".join(value.split())
