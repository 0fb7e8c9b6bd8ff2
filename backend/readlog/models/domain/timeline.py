"""Timeline domain models."""

import base64
import binascii
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from readlog.errors import ValidationError
from readlog.models.enums import EntityType, OrphanPolicy, ReadingStatus

# Text form of ``occurred_at`` as stored in ``timeline_events``.
EVENT_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class TimelineEventDetail(BaseModel):
    """One labelled display row, e.g. ``Author: Frank Herbert``."""

    label: str
    value: str


class TimelineReadingData(BaseModel):
    """Reading data attached to reading events for quick reference."""

    book_id: int
    rating: Optional[float] = None
    status: ReadingStatus


class TimelinePayload(BaseModel):
    """The denormalized, rewritable part of an event."""

    title: str
    details: list[TimelineEventDetail] = Field(default_factory=list)
    genres: list[str] = Field(default_factory=list)
    reading_data: Optional[TimelineReadingData] = None


class NewTimelineEvent(TimelinePayload):
    """An event ready to be appended. ``occurred_at`` is assigned on append."""

    entity_type: EntityType
    entity_id: int
    action: str
    user_id: Optional[int] = None


class TimelineEvent(TimelinePayload):
    """A stored timeline event, shaped for display."""

    id: int
    entity_type: EntityType
    entity_id: int
    action: str
    occurred_at: datetime
    user_id: Optional[int] = None


class TimelineCursor(BaseModel):
    """
    Keyset position in the ``(occurred_at desc, id desc)`` ordering.

    ``occurred_at`` is kept as the stored text so comparisons in SQL are exact.
    """

    occurred_at: str
    id: int

    def encode(self) -> str:
        raw = f"{self.occurred_at}|{self.id}".encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    @classmethod
    def decode(cls, token: str) -> "TimelineCursor":
        padded = token + "=" * (-len(token) % 4)
        try:
            raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
            occurred_at, _, event_id = raw.rpartition("|")
            datetime.strptime(occurred_at, EVENT_TIMESTAMP_FORMAT)
            return cls(occurred_at=occurred_at, id=int(event_id))
        except (binascii.Error, UnicodeError, ValueError) as exc:
            raise ValidationError(f"Invalid timeline cursor: {token!r}") from exc


class TimelinePage(BaseModel):
    """One page of the activity feed."""

    events: list[TimelineEvent] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    limit: int


class RebuildResult(BaseModel):
    """Summary of a snapshot rebuild run."""

    status: str = "completed"
    run_id: Optional[int] = None
    orphan_policy: OrphanPolicy = OrphanPolicy.FREEZE
    resumed: bool = False
    entities: int = 0
    scanned: int = 0
    updated: int = 0
    orphaned: int = 0
    pruned: int = 0
    errors: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
