"""Library entity mutations, each recorded on the timeline in the same transaction."""

from datetime import date, datetime, timezone
from typing import Any

import aiosqlite

from readlog.database.db import connect, transaction
from readlog.errors import EntityNotFound
from readlog.logging import get_logger
from readlog.models import (
    READING_STATUS_ACTIONS,
    Author, AuthorCreate, AuthorUpdate,
    Book, BookCreate, BookUpdate,
    EntitySnapshot,
    EntityType,
    Genre, GenreCreate, GenreUpdate,
    Reading, ReadingCreate, ReadingStatus, ReadingUpdate,
    Shelf,
    User, UserCreate,
    normalize_name,
)
from readlog.services.recorder import MutationRecorder
from readlog.services.snapshots import SnapshotLoader
from readlog.services.stats import StatsAggregator

logger = get_logger("services.library")

SHELF_ACTIONS = {Shelf.LIBRARY: "shelved", Shelf.WISHLIST: "wishlisted"}


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


def _row_to_reading(row: dict) -> Reading:
    return Reading(
        id=row["id"],
        user_id=row["user_id"],
        book_id=row["book_id"],
        status=row["status"],
        started_at=row.get("started_at"),
        finished_at=row.get("finished_at"),
        rating=row.get("rating"),
        format=row.get("format"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class LibraryService:
    """
    Entity writes for authors, genres, books, readings and shelves.

    Each mutation commits together with exactly one timeline event and the
    invalidation of the stats rows it affects, or not at all.
    """

    def __init__(
        self,
        db_path: str,
        recorder: MutationRecorder,
        loader: SnapshotLoader,
        stats: StatsAggregator,
    ):
        self.db_path = db_path
        self.recorder = recorder
        self.loader = loader
        self.stats = stats

    async def _require(self, db: aiosqlite.Connection, table: str, entity_type: str, entity_id: int) -> None:
        cursor = await db.execute(f"SELECT 1 FROM {table} WHERE id = ?", (entity_id,))
        if not await cursor.fetchone():
            raise EntityNotFound(entity_type, entity_id)

    async def _record(
        self,
        db: aiosqlite.Connection,
        entity_type: EntityType,
        entity_id: int,
        action: str,
        user_id: int | None,
        snapshot: EntitySnapshot | None = None,
    ) -> int:
        if user_id is not None:
            await self._require(db, "users", "user", user_id)
        if snapshot is None:
            snapshot = await self.loader.load(db, entity_type, entity_id)
        return await self.recorder.record(db, entity_type, entity_id, action, snapshot, user_id=user_id)

    # Users

    async def create_user(self, data: UserCreate) -> User:
        name = normalize_name(data.name)
        async with transaction(self.db_path) as db:
            cursor = await db.execute("INSERT INTO users (name) VALUES (?)", (name,))
            user_id = cursor.lastrowid
        return User(id=user_id, name=name)

    async def delete_user(self, user_id: int) -> bool:
        """Remove a user; their events survive with attribution cleared."""
        async with transaction(self.db_path) as db:
            cursor = await db.execute("DELETE FROM users WHERE id = ?", (user_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Removed user {user_id}; timeline attribution cleared")
        return deleted

    # Authors and genres share a shape: a name and nothing else.

    async def _get_named(self, table: str, entity_id: int) -> dict | None:
        db = await connect(self.db_path)
        try:
            cursor = await db.execute(f"SELECT * FROM {table} WHERE id = ?", (entity_id,))
            row = await cursor.fetchone()
            return dict(row) if row else None
        finally:
            await db.close()

    async def _create_named(self, table: str, entity_type: EntityType, name: str, user_id: int | None) -> dict:
        async with transaction(self.db_path) as db:
            cursor = await db.execute(
                f"INSERT INTO {table} (name, created_at) VALUES (?, ?)",
                (normalize_name(name), _now()),
            )
            entity_id = cursor.lastrowid
            await self._record(db, entity_type, entity_id, "created", user_id)
            cursor = await db.execute(f"SELECT * FROM {table} WHERE id = ?", (entity_id,))
            return dict(await cursor.fetchone())

    async def _rename_named(
        self,
        table: str,
        entity_type: EntityType,
        entity_id: int,
        name: str | None,
        user_id: int | None,
    ) -> dict:
        async with transaction(self.db_path) as db:
            await self._require(db, table, entity_type.value, entity_id)
            if name is not None:
                await db.execute(f"UPDATE {table} SET name = ? WHERE id = ?", (normalize_name(name), entity_id))
            await self._record(db, entity_type, entity_id, "updated", user_id)
            # Names appear in book and reading stats.
            await self.stats.invalidate_all(db)
            cursor = await db.execute(f"SELECT * FROM {table} WHERE id = ?", (entity_id,))
            return dict(await cursor.fetchone())

    async def _delete_named(
        self, table: str, entity_type: EntityType, entity_id: int, user_id: int | None
    ) -> list[tuple[str, int]]:
        """Delete an author or genre; returns the surviving entities whose payloads embedded it."""
        async with transaction(self.db_path) as db:
            await self._require(db, table, entity_type.value, entity_id)
            snapshot = await self.loader.load(db, entity_type, entity_id)
            dependents = (await self.loader.dependent_keys(db, entity_type, entity_id))[1:]
            await db.execute(f"DELETE FROM {table} WHERE id = ?", (entity_id,))
            await self._record(db, entity_type, entity_id, "deleted", user_id, snapshot=snapshot)
            await self.stats.invalidate_all(db)
        return dependents

    async def get_author(self, author_id: int) -> Author | None:
        row = await self._get_named("authors", author_id)
        return Author(**row) if row else None

    async def create_author(self, data: AuthorCreate, acting_user_id: int | None = None) -> Author:
        return Author(**await self._create_named("authors", EntityType.AUTHOR, data.name, acting_user_id))

    async def update_author(self, author_id: int, data: AuthorUpdate, acting_user_id: int | None = None) -> Author:
        return Author(**await self._rename_named("authors", EntityType.AUTHOR, author_id, data.name, acting_user_id))

    async def delete_author(self, author_id: int, acting_user_id: int | None = None) -> list[tuple[str, int]]:
        return await self._delete_named("authors", EntityType.AUTHOR, author_id, acting_user_id)

    async def get_genre(self, genre_id: int) -> Genre | None:
        row = await self._get_named("genres", genre_id)
        return Genre(**row) if row else None

    async def create_genre(self, data: GenreCreate, acting_user_id: int | None = None) -> Genre:
        return Genre(**await self._create_named("genres", EntityType.GENRE, data.name, acting_user_id))

    async def update_genre(self, genre_id: int, data: GenreUpdate, acting_user_id: int | None = None) -> Genre:
        return Genre(**await self._rename_named("genres", EntityType.GENRE, genre_id, data.name, acting_user_id))

    async def delete_genre(self, genre_id: int, acting_user_id: int | None = None) -> list[tuple[str, int]]:
        return await self._delete_named("genres", EntityType.GENRE, genre_id, acting_user_id)

    # Books

    async def _fetch_book(self, db: aiosqlite.Connection, book_id: int) -> Book | None:
        cursor = await db.execute("SELECT * FROM books WHERE id = ?", (book_id,))
        row = await cursor.fetchone()
        if not row:
            return None
        cursor = await db.execute(
            "SELECT author_id FROM book_authors WHERE book_id = ? ORDER BY position ASC",
            (book_id,),
        )
        author_ids = [r["author_id"] for r in await cursor.fetchall()]
        return Book(author_ids=author_ids, **dict(row))

    async def _check_book_refs(self, db: aiosqlite.Connection, fields: dict[str, Any]) -> None:
        for author_id in fields.get("author_ids") or []:
            await self._require(db, "authors", "author", author_id)
        for key in ("primary_genre_id", "secondary_genre_id"):
            if fields.get(key) is not None:
                await self._require(db, "genres", "genre", fields[key])

    async def _set_book_authors(self, db: aiosqlite.Connection, book_id: int, author_ids: list[int]) -> None:
        await db.execute("DELETE FROM book_authors WHERE book_id = ?", (book_id,))
        # dict.fromkeys keeps first-seen order while dropping duplicates.
        for position, author_id in enumerate(dict.fromkeys(author_ids)):
            await db.execute(
                "INSERT INTO book_authors (book_id, author_id, position) VALUES (?, ?, ?)",
                (book_id, author_id, position),
            )

    async def get_book(self, book_id: int) -> Book | None:
        db = await connect(self.db_path)
        try:
            return await self._fetch_book(db, book_id)
        finally:
            await db.close()

    async def create_book(self, data: BookCreate, acting_user_id: int | None = None) -> Book:
        async with transaction(self.db_path) as db:
            await self._check_book_refs(db, data.model_dump())
            cursor = await db.execute(
                """INSERT INTO books
                   (title, page_count, year_published, primary_genre_id, secondary_genre_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    normalize_name(data.title),
                    data.page_count,
                    data.year_published,
                    data.primary_genre_id,
                    data.secondary_genre_id,
                    _now(),
                ),
            )
            book_id = cursor.lastrowid
            await self._set_book_authors(db, book_id, data.author_ids)
            await self._record(db, EntityType.BOOK, book_id, "created", acting_user_id)
            return await self._fetch_book(db, book_id)

    async def update_book(self, book_id: int, data: BookUpdate, acting_user_id: int | None = None) -> Book:
        # Explicitly sent nulls clear nullable columns; title and authors ignore them.
        fields = {key: getattr(data, key) for key in data.model_fields_set}
        async with transaction(self.db_path) as db:
            await self._require(db, "books", "book", book_id)
            await self._check_book_refs(db, fields)

            author_ids = fields.pop("author_ids", None)
            if fields.get("title") is None:
                fields.pop("title", None)
            else:
                fields["title"] = normalize_name(fields["title"])
            if fields:
                set_clause = ", ".join(f"{key} = ?" for key in fields)
                await db.execute(
                    f"UPDATE books SET {set_clause} WHERE id = ?",
                    [*fields.values(), book_id],
                )
            if author_ids is not None:
                await self._set_book_authors(db, book_id, author_ids)

            await self._record(db, EntityType.BOOK, book_id, "updated", acting_user_id)
            await self.stats.invalidate_book(db, book_id)
            return await self._fetch_book(db, book_id)

    async def delete_book(self, book_id: int, acting_user_id: int | None = None) -> None:
        """Delete a book. Its readings and shelf rows go with it by cascade."""
        async with transaction(self.db_path) as db:
            await self._require(db, "books", "book", book_id)
            snapshot = await self.loader.load(db, EntityType.BOOK, book_id)
            await self.stats.invalidate_book(db, book_id)
            await db.execute("DELETE FROM books WHERE id = ?", (book_id,))
            await self._record(db, EntityType.BOOK, book_id, "deleted", acting_user_id, snapshot=snapshot)

    # Shelves

    async def shelve_book(self, user_id: int, book_id: int, shelf: Shelf = Shelf.LIBRARY) -> None:
        async with transaction(self.db_path) as db:
            await self._require(db, "users", "user", user_id)
            await self._require(db, "books", "book", book_id)
            await db.execute(
                """INSERT INTO user_books (user_id, book_id, shelf, created_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(user_id, book_id) DO UPDATE SET shelf = excluded.shelf""",
                (user_id, book_id, Shelf(shelf).value, _now()),
            )
            await self._record(db, EntityType.BOOK, book_id, SHELF_ACTIONS[Shelf(shelf)], user_id)
            await self.stats.invalidate_users(db, [user_id])

    async def unshelve_book(self, user_id: int, book_id: int) -> bool:
        async with transaction(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM user_books WHERE user_id = ? AND book_id = ?",
                (user_id, book_id),
            )
            if cursor.rowcount <= 0:
                return False
            await self._record(db, EntityType.BOOK, book_id, "unshelved", user_id)
            await self.stats.invalidate_users(db, [user_id])
            return True

    # Readings

    async def _fetch_reading(self, db: aiosqlite.Connection, reading_id: int) -> Reading | None:
        cursor = await db.execute("SELECT * FROM readings WHERE id = ?", (reading_id,))
        row = await cursor.fetchone()
        return _row_to_reading(dict(row)) if row else None

    async def get_reading(self, reading_id: int) -> Reading | None:
        db = await connect(self.db_path)
        try:
            return await self._fetch_reading(db, reading_id)
        finally:
            await db.close()

    async def create_reading(self, user_id: int, data: ReadingCreate) -> Reading:
        finished_at = data.finished_at
        if finished_at is None and data.status != ReadingStatus.READING:
            finished_at = datetime.now(timezone.utc).date()
        now = _now()
        async with transaction(self.db_path) as db:
            await self._require(db, "users", "user", user_id)
            await self._require(db, "books", "book", data.book_id)
            cursor = await db.execute(
                """INSERT INTO readings
                   (user_id, book_id, status, started_at, finished_at, rating, format, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    user_id,
                    data.book_id,
                    data.status.value,
                    _iso(data.started_at),
                    _iso(finished_at),
                    data.rating,
                    data.format.value if data.format else None,
                    now,
                    now,
                ),
            )
            reading_id = cursor.lastrowid
            await self._record(db, EntityType.READING, reading_id, READING_STATUS_ACTIONS[data.status], user_id)
            await self.stats.invalidate_users(db, [user_id])
            return await self._fetch_reading(db, reading_id)

    async def update_reading(self, reading_id: int, data: ReadingUpdate) -> Reading:
        fields = {key: getattr(data, key) for key in data.model_fields_set}
        async with transaction(self.db_path) as db:
            existing = await self._fetch_reading(db, reading_id)
            if existing is None:
                raise EntityNotFound("reading", reading_id)

            status = fields.pop("status", None) or existing.status
            status_changed = status != existing.status
            if status_changed:
                fields["status"] = status
                if status != ReadingStatus.READING and existing.finished_at is None and not fields.get("finished_at"):
                    fields["finished_at"] = datetime.now(timezone.utc).date()

            values: dict[str, Any] = {}
            for key, value in fields.items():
                if isinstance(value, date):
                    value = value.isoformat()
                elif hasattr(value, "value"):
                    value = value.value
                values[key] = value
            values["updated_at"] = _now()
            set_clause = ", ".join(f"{key} = ?" for key in values)
            await db.execute(
                f"UPDATE readings SET {set_clause} WHERE id = ?",
                [*values.values(), reading_id],
            )

            action = READING_STATUS_ACTIONS[ReadingStatus(status)] if status_changed else "updated"
            await self._record(db, EntityType.READING, reading_id, action, existing.user_id)
            await self.stats.invalidate_users(db, [existing.user_id])
            return await self._fetch_reading(db, reading_id)

    async def delete_reading(self, reading_id: int) -> None:
        async with transaction(self.db_path) as db:
            existing = await self._fetch_reading(db, reading_id)
            if existing is None:
                raise EntityNotFound("reading", reading_id)
            snapshot = await self.loader.load(db, EntityType.READING, reading_id)
            await db.execute("DELETE FROM readings WHERE id = ?", (reading_id,))
            await self._record(
                db, EntityType.READING, reading_id, "deleted", existing.user_id, snapshot=snapshot
            )
            await self.stats.invalidate_users(db, [existing.user_id])
