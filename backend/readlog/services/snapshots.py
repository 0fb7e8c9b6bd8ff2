"""Entity snapshots: read-by-key loading and payload derivation."""

from typing import Any, Awaitable, Callable

import aiosqlite
from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from readlog.errors import OrphanedReference, ValidationError
from readlog.models import (
    FORMAT_LABELS,
    AuthorSnapshot,
    BookSnapshot,
    EntitySnapshot,
    EntityType,
    GenreSnapshot,
    ReadingSnapshot,
    TimelineEventDetail,
    TimelinePayload,
    TimelineReadingData,
)

_snapshot_adapter: TypeAdapter[EntitySnapshot] = TypeAdapter(EntitySnapshot)


def parse_snapshot(entity_type: EntityType | str, raw: Any) -> EntitySnapshot:
    """
    Validate a snapshot for ``entity_type``.

    Accepts a snapshot model or a plain mapping; the tag is filled in from
    ``entity_type`` when the mapping omits it.
    """
    try:
        entity_type = EntityType(entity_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown entity type: {entity_type!r}") from exc

    if raw is None:
        raise ValidationError(f"A {entity_type.value} snapshot is required")
    if isinstance(raw, dict):
        raw = {"entity_type": entity_type.value, **raw}
    try:
        snapshot = _snapshot_adapter.validate_python(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {entity_type.value} snapshot: {exc}") from exc

    if snapshot.entity_type != entity_type.value:
        raise ValidationError(
            f"Snapshot is tagged {snapshot.entity_type!r} but the event is for {entity_type.value!r}"
        )
    return snapshot


def format_rating(rating: float) -> str:
    """Render a half-star rating, e.g. ``4/5`` or ``3.5/5``."""
    if float(rating).is_integer():
        return f"{int(rating)}/5"
    return f"{rating}/5"


def _author_detail(names: list[str]) -> TimelineEventDetail:
    return TimelineEventDetail(label="Author", value=", ".join(names) if names else "Unknown")


def _book_payload(snapshot: BookSnapshot) -> TimelinePayload:
    details = [_author_detail(snapshot.authors)]
    if snapshot.genres:
        details.append(TimelineEventDetail(label="Genres", value=", ".join(snapshot.genres)))
    if snapshot.page_count is not None:
        details.append(TimelineEventDetail(label="Pages", value=str(snapshot.page_count)))
    return TimelinePayload(title=snapshot.title, details=details, genres=list(snapshot.genres))


def _author_payload(snapshot: AuthorSnapshot) -> TimelinePayload:
    return TimelinePayload(title=snapshot.name)


def _genre_payload(snapshot: GenreSnapshot) -> TimelinePayload:
    return TimelinePayload(title=snapshot.name)


def _reading_payload(snapshot: ReadingSnapshot) -> TimelinePayload:
    details = [_author_detail(snapshot.authors)]
    if snapshot.format is not None:
        details.append(TimelineEventDetail(label="Format", value=FORMAT_LABELS[snapshot.format]))
    if snapshot.rating is not None:
        details.append(TimelineEventDetail(label="Rating", value=format_rating(snapshot.rating)))
    return TimelinePayload(
        title=snapshot.book_title,
        details=details,
        reading_data=TimelineReadingData(
            book_id=snapshot.book_id,
            rating=snapshot.rating,
            status=snapshot.status,
        ),
    )


_PAYLOAD_BUILDERS: dict[str, Callable[[Any], TimelinePayload]] = {
    "book": _book_payload,
    "author": _author_payload,
    "genre": _genre_payload,
    "reading": _reading_payload,
}


def build_payload(snapshot: EntitySnapshot) -> TimelinePayload:
    """Derive the denormalized event payload from a snapshot."""
    return _PAYLOAD_BUILDERS[snapshot.entity_type](snapshot)


async def _book_authors(db: aiosqlite.Connection, book_id: int) -> list[str]:
    cursor = await db.execute(
        """SELECT a.name FROM book_authors ba
           JOIN authors a ON a.id = ba.author_id
           WHERE ba.book_id = ?
           ORDER BY ba.position ASC, a.name ASC""",
        (book_id,),
    )
    return [row["name"] for row in await cursor.fetchall()]


class SnapshotLoader:
    """Fetches current entity state as snapshots, on the caller's connection."""

    def __init__(self):
        self._loaders: dict[str, Callable[[aiosqlite.Connection, int], Awaitable[EntitySnapshot | None]]] = {
            "book": self._load_book,
            "author": self._load_author,
            "genre": self._load_genre,
            "reading": self._load_reading,
        }

    async def load(
        self,
        db: aiosqlite.Connection,
        entity_type: EntityType | str,
        entity_id: int,
    ) -> EntitySnapshot:
        entity_type = EntityType(entity_type)
        snapshot = await self._loaders[entity_type.value](db, entity_id)
        if snapshot is None:
            raise OrphanedReference(entity_type.value, entity_id)
        return snapshot

    async def _load_book(self, db: aiosqlite.Connection, book_id: int) -> BookSnapshot | None:
        cursor = await db.execute(
            """SELECT b.title, b.page_count, pg.name AS primary_genre, sg.name AS secondary_genre
               FROM books b
               LEFT JOIN genres pg ON pg.id = b.primary_genre_id
               LEFT JOIN genres sg ON sg.id = b.secondary_genre_id
               WHERE b.id = ?""",
            (book_id,),
        )
        row = await cursor.fetchone()
        if not row:
            return None
        genres = [name for name in (row["primary_genre"], row["secondary_genre"]) if name]
        return BookSnapshot(
            title=row["title"],
            authors=await _book_authors(db, book_id),
            genres=genres,
            page_count=row["page_count"],
        )

    async def _load_author(self, db: aiosqlite.Connection, author_id: int) -> AuthorSnapshot | None:
        cursor = await db.execute("SELECT name FROM authors WHERE id = ?", (author_id,))
        row = await cursor.fetchone()
        return AuthorSnapshot(name=row["name"]) if row else None

    async def _load_genre(self, db: aiosqlite.Connection, genre_id: int) -> GenreSnapshot | None:
        cursor = await db.execute("SELECT name FROM genres WHERE id = ?", (genre_id,))
        row = await cursor.fetchone()
        return GenreSnapshot(name=row["name"]) if row else None

    async def _load_reading(self, db: aiosqlite.Connection, reading_id: int) -> ReadingSnapshot | None:
        cursor = await db.execute(
            """SELECT r.book_id, r.status, r.rating, r.format, b.title AS book_title
               FROM readings r
               JOIN books b ON b.id = r.book_id
               WHERE r.id = ?""",
            (reading_id,),
        )
        row = await cursor.fetchone()
        if not row:
            return None
        return ReadingSnapshot(
            book_id=row["book_id"],
            book_title=row["book_title"],
            authors=await _book_authors(db, row["book_id"]),
            status=row["status"],
            rating=row["rating"],
            format=row["format"],
        )

    async def dependent_keys(
        self,
        db: aiosqlite.Connection,
        entity_type: EntityType | str,
        entity_id: int,
    ) -> list[tuple[str, int]]:
        """
        Keys whose payloads embed data from this entity, the entity itself first.

        author -> books by the author -> readings of those books;
        genre -> books using the genre; book -> readings of the book.
        """
        entity_type = EntityType(entity_type)
        keys: list[tuple[str, int]] = [(entity_type.value, entity_id)]

        book_ids: list[int] = []
        if entity_type == EntityType.AUTHOR:
            cursor = await db.execute(
                "SELECT book_id FROM book_authors WHERE author_id = ? ORDER BY book_id",
                (entity_id,),
            )
            book_ids = [row["book_id"] for row in await cursor.fetchall()]
        elif entity_type == EntityType.GENRE:
            cursor = await db.execute(
                """SELECT id FROM books
                   WHERE primary_genre_id = ? OR secondary_genre_id = ?
                   ORDER BY id""",
                (entity_id, entity_id),
            )
            book_ids = [row["id"] for row in await cursor.fetchall()]
        keys.extend(("book", book_id) for book_id in book_ids)

        # Genre names are not part of reading payloads, so genres stop at books.
        if entity_type == EntityType.BOOK:
            book_ids = [entity_id]
        if entity_type in (EntityType.AUTHOR, EntityType.BOOK) and book_ids:
            placeholders = ", ".join("?" for _ in book_ids)
            cursor = await db.execute(
                f"SELECT id FROM readings WHERE book_id IN ({placeholders}) ORDER BY id",
                book_ids,
            )
            keys.extend(("reading", row["id"]) for row in await cursor.fetchall())
        return keys
