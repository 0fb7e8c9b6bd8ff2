"""Timeline store: append-only event log with keyset-paginated reads."""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import aiosqlite

from readlog.database.db import connect
from readlog.logging import get_logger
from readlog.models import (
    EntityType,
    NewTimelineEvent,
    TimelineCursor,
    TimelineEvent,
    TimelineEventDetail,
    TimelinePayload,
    TimelineReadingData,
)
from readlog.models.domain.timeline import EVENT_TIMESTAMP_FORMAT

EntityKey = tuple[str, int]
EncodedPayload = tuple[str, str, Optional[str], Optional[str]]

logger = get_logger("services.timeline_store")


def _now() -> str:
    # Fixed-width text so lexical order in SQL matches chronological order.
    return datetime.now(timezone.utc).strftime(EVENT_TIMESTAMP_FORMAT)


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _load_json(row: dict, column: str, fallback: Any) -> Any:
    raw = row.get(column)
    if not raw:
        return fallback
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning(f"Unreadable {column} on timeline event {row.get('id')}: {exc}")
        return fallback


def encode_payload(entity_type: EntityType | str, payload: TimelinePayload) -> EncodedPayload:
    """
    Serialize a payload into its four stored columns.

    Output is canonical: the same payload always yields byte-identical text.
    ``genres_json`` is only kept for books and ``reading_data_json`` only for readings.
    """
    entity_type = EntityType(entity_type)
    details_json = _dumps([detail.model_dump(mode="json") for detail in payload.details])
    genres_json = _dumps(payload.genres) if entity_type == EntityType.BOOK else None
    reading_data_json = None
    if entity_type == EntityType.READING and payload.reading_data is not None:
        reading_data_json = _dumps(payload.reading_data.model_dump(mode="json"))
    return payload.title, details_json, genres_json, reading_data_json


def _row_to_event(row: dict) -> TimelineEvent:
    reading_data = _load_json(row, "reading_data_json", None)
    return TimelineEvent(
        id=row["id"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        action=row["action"],
        occurred_at=row["occurred_at"],
        title=row["title"],
        details=[TimelineEventDetail(**d) for d in _load_json(row, "details_json", [])],
        genres=_load_json(row, "genres_json", []),
        reading_data=TimelineReadingData(**reading_data) if reading_data else None,
        user_id=row.get("user_id"),
    )


def cursor_for(row: dict) -> TimelineCursor:
    return TimelineCursor(occurred_at=row["occurred_at"], id=row["id"])


class TimelineStore:
    """Data access for ``timeline_events``.

    Write methods take the caller's connection so they join its transaction.
    Read methods open their own connection unless one is passed in.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    @asynccontextmanager
    async def _using(self, db: aiosqlite.Connection | None) -> AsyncIterator[aiosqlite.Connection]:
        if db is not None:
            yield db
            return
        own = await connect(self.db_path)
        try:
            yield own
        finally:
            await own.close()

    async def append(self, db: aiosqlite.Connection, event: NewTimelineEvent) -> int:
        title, details_json, genres_json, reading_data_json = encode_payload(event.entity_type, event)
        cursor = await db.execute(
            """INSERT INTO timeline_events
               (entity_type, entity_id, action, occurred_at, title, details_json, genres_json, reading_data_json, user_id)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                event.entity_type.value,
                event.entity_id,
                event.action,
                _now(),
                title,
                details_json,
                genres_json,
                reading_data_json,
                event.user_id,
            ),
        )
        return int(cursor.lastrowid)

    async def get(self, event_id: int) -> TimelineEvent | None:
        async with self._using(None) as db:
            cursor = await db.execute("SELECT * FROM timeline_events WHERE id = ?", (event_id,))
            row = await cursor.fetchone()
            return _row_to_event(dict(row)) if row else None

    async def _list_page(
        self,
        user_id: int | None,
        cursor: TimelineCursor | None,
        limit: int,
    ) -> tuple[list[TimelineEvent], TimelineCursor | None]:
        clauses: list[str] = []
        params: list[Any] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if cursor is not None:
            clauses.append("(occurred_at < ? OR (occurred_at = ? AND id < ?))")
            params.extend([cursor.occurred_at, cursor.occurred_at, cursor.id])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        async with self._using(None) as db:
            result = await db.execute(
                f"""SELECT * FROM timeline_events
                    {where}
                    ORDER BY occurred_at DESC, id DESC
                    LIMIT ?""",
                [*params, limit + 1],
            )
            rows = [dict(row) for row in await result.fetchall()]

        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = cursor_for(rows[-1]) if has_more and rows else None
        return [_row_to_event(row) for row in rows], next_cursor

    async def list_by_user(
        self,
        user_id: int,
        cursor: TimelineCursor | None,
        limit: int,
    ) -> tuple[list[TimelineEvent], TimelineCursor | None]:
        return await self._list_page(user_id, cursor, limit)

    async def list_global(
        self,
        cursor: TimelineCursor | None,
        limit: int,
    ) -> tuple[list[TimelineEvent], TimelineCursor | None]:
        return await self._list_page(None, cursor, limit)

    async def list_by_entity(
        self,
        entity_type: EntityType | str,
        entity_id: int,
        db: aiosqlite.Connection | None = None,
    ) -> list[TimelineEvent]:
        async with self._using(db) as conn:
            cursor = await conn.execute(
                """SELECT * FROM timeline_events
                   WHERE entity_type = ? AND entity_id = ?
                   ORDER BY occurred_at ASC, id ASC""",
                (EntityType(entity_type).value, entity_id),
            )
            rows = await cursor.fetchall()
            return [_row_to_event(dict(row)) for row in rows]

    async def entity_keys_after(
        self,
        db: aiosqlite.Connection,
        after: EntityKey | None,
        limit: int,
    ) -> list[EntityKey]:
        """Distinct ``(entity_type, entity_id)`` pairs strictly after ``after``, in key order."""
        if after is None:
            cursor = await db.execute(
                """SELECT DISTINCT entity_type, entity_id FROM timeline_events
                   ORDER BY entity_type ASC, entity_id ASC
                   LIMIT ?""",
                (limit,),
            )
        else:
            cursor = await db.execute(
                """SELECT DISTINCT entity_type, entity_id FROM timeline_events
                   WHERE entity_type > ? OR (entity_type = ? AND entity_id > ?)
                   ORDER BY entity_type ASC, entity_id ASC
                   LIMIT ?""",
                (after[0], after[0], after[1], limit),
            )
        rows = await cursor.fetchall()
        return [(row["entity_type"], row["entity_id"]) for row in rows]

    async def rewrite_payload(
        self,
        db: aiosqlite.Connection,
        entity_type: EntityType | str,
        entity_id: int,
        payload: TimelinePayload,
    ) -> int:
        """Rewrite payload columns on every event of one entity; returns rows that changed."""
        title, details_json, genres_json, reading_data_json = encode_payload(entity_type, payload)
        cursor = await db.execute(
            """UPDATE timeline_events
               SET title = ?, details_json = ?, genres_json = ?, reading_data_json = ?
               WHERE entity_type = ? AND entity_id = ?
                 AND NOT (title IS ? AND details_json IS ? AND genres_json IS ? AND reading_data_json IS ?)""",
            (
                title,
                details_json,
                genres_json,
                reading_data_json,
                EntityType(entity_type).value,
                entity_id,
                title,
                details_json,
                genres_json,
                reading_data_json,
            ),
        )
        return cursor.rowcount

    async def delete_for_entity(
        self,
        db: aiosqlite.Connection,
        entity_type: EntityType | str,
        entity_id: int,
    ) -> int:
        cursor = await db.execute(
            "DELETE FROM timeline_events WHERE entity_type = ? AND entity_id = ?",
            (EntityType(entity_type).value, entity_id),
        )
        return cursor.rowcount

    async def count(self, db: aiosqlite.Connection | None = None) -> int:
        async with self._using(db) as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM timeline_events")
            row = await cursor.fetchone()
            return int(row[0])

    async def count_for_entity(
        self,
        db: aiosqlite.Connection,
        entity_type: EntityType | str,
        entity_id: int,
    ) -> int:
        cursor = await db.execute(
            "SELECT COUNT(*) FROM timeline_events WHERE entity_type = ? AND entity_id = ?",
            (EntityType(entity_type).value, entity_id),
        )
        row = await cursor.fetchone()
        return int(row[0])
