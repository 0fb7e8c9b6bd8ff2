"""Mutation recorder: one timeline event per accepted entity mutation."""

from typing import Any

import aiosqlite

from readlog.errors import ValidationError
from readlog.logging import get_logger
from readlog.models import EntitySnapshot, EntityType, NewTimelineEvent
from readlog.services.snapshots import build_payload, parse_snapshot
from readlog.services.timeline_store import TimelineStore

logger = get_logger("services.recorder")


class MutationRecorder:
    """
    Appends events inside the caller's transaction.

    The caller owns the connection and commits or rolls back the entity write
    and the event together; a raised error here must abort both.
    """

    def __init__(self, store: TimelineStore):
        self.store = store

    def build_event(
        self,
        entity_type: EntityType | str,
        entity_id: int,
        action: str,
        snapshot: EntitySnapshot | dict[str, Any] | None,
        user_id: int | None = None,
    ) -> NewTimelineEvent:
        snapshot = parse_snapshot(entity_type, snapshot)
        if not isinstance(entity_id, int) or entity_id <= 0:
            raise ValidationError(f"entity_id must be a positive integer, got {entity_id!r}")
        action = (action or "").strip()
        if not action:
            raise ValidationError("action must not be empty")

        payload = build_payload(snapshot)
        return NewTimelineEvent(
            entity_type=EntityType(entity_type),
            entity_id=entity_id,
            action=action,
            user_id=user_id,
            **payload.model_dump(),
        )

    async def record(
        self,
        db: aiosqlite.Connection,
        entity_type: EntityType | str,
        entity_id: int,
        action: str,
        snapshot: EntitySnapshot | dict[str, Any] | None,
        user_id: int | None = None,
    ) -> int:
        event = self.build_event(entity_type, entity_id, action, snapshot, user_id=user_id)
        event_id = await self.store.append(db, event)
        logger.debug(
            f"Recorded {event.entity_type.value} {event.entity_id} {event.action} as event {event_id}"
        )
        return event_id
