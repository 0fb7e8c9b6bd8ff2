"""Stats aggregator: per-user statistics recomputed from scratch into a one-row cache."""

import json
import time
from datetime import datetime, timezone
from typing import Any, Iterable

import aiosqlite

from readlog.database.db import connect
from readlog.errors import EntityNotFound, StorageError
from readlog.logging import get_logger
from readlog.models import BookSummaryStats, CachedStats, ReadingStats, StatsEntry

logger = get_logger("services.stats")

# Books in scope for the summary: the library shelf, or books finished in a given year.
_LIBRARY_SCOPE = """WITH scope(book_id) AS (
    SELECT book_id FROM user_books WHERE user_id = :uid AND shelf = 'library'
)"""
_YEAR_SCOPE = """WITH scope(book_id) AS (
    SELECT DISTINCT book_id FROM readings
    WHERE user_id = :uid AND status = 'read' AND strftime('%Y', finished_at) = :year
)"""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _pairs(rows: Iterable[aiosqlite.Row]) -> list[tuple[Any, int]]:
    return [(row["name"], int(row["count"])) for row in rows]


async def _scalar(db: aiosqlite.Connection, query: str, params: dict[str, Any]) -> Any:
    cursor = await db.execute(query, params)
    row = await cursor.fetchone()
    return row[0] if row else None


async def _all(db: aiosqlite.Connection, query: str, params: dict[str, Any]) -> list[aiosqlite.Row]:
    cursor = await db.execute(query, params)
    return list(await cursor.fetchall())


def _year_filter(year: int | None, column: str = "finished_at") -> str:
    return f" AND strftime('%Y', {column}) = :year" if year is not None else ""


class StatsAggregator:
    """
    Computes statistics purely from current entity state and upserts them.

    Refreshes for the same user are not serialized: each computation reads one
    consistent state and the upsert is last-write-wins.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    async def compute(self, user_id: int, year: int | None = None) -> CachedStats:
        started = time.perf_counter()
        params = {"uid": user_id, "year": str(year) if year is not None else None}
        db = await connect(self.db_path)
        try:
            # One read transaction so every figure comes from the same state.
            await db.execute("BEGIN")
            try:
                book_summary = await self._book_summary(db, params, year)
                reading = await self._reading_stats(db, params, year)
            finally:
                await db.rollback()
        except aiosqlite.Error as exc:
            raise StorageError.wrap(exc, "stats computation failed") from exc
        finally:
            await db.close()

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"Stats computed for user {user_id} in {elapsed_ms:.1f}ms" + (f" (year {year})" if year else ""))
        return CachedStats(book_summary=book_summary, reading=reading, year=year)

    async def _book_summary(
        self,
        db: aiosqlite.Connection,
        params: dict[str, Any],
        year: int | None,
    ) -> BookSummaryStats:
        scope = _YEAR_SCOPE if year is not None else _LIBRARY_SCOPE
        stats = BookSummaryStats()

        stats.total_books = await _scalar(db, f"{scope} SELECT COUNT(*) FROM scope", params)
        stats.total_authors = await _scalar(
            db,
            f"""{scope} SELECT COUNT(DISTINCT ba.author_id)
                FROM scope s JOIN book_authors ba ON ba.book_id = s.book_id""",
            params,
        )
        stats.genre_counts = _pairs(await _all(
            db,
            f"""{scope} SELECT g.name AS name, COUNT(*) AS count
                FROM scope s
                JOIN books b ON b.id = s.book_id
                JOIN genres g ON g.id IN (b.primary_genre_id, b.secondary_genre_id)
                GROUP BY g.id ORDER BY count DESC, g.name ASC""",
            params,
        ))
        stats.unique_genres = len(stats.genre_counts)
        stats.top_genre = stats.genre_counts[0][0] if stats.genre_counts else None
        stats.top_author = await _scalar(
            db,
            f"""{scope} SELECT a.name
                FROM scope s
                JOIN book_authors ba ON ba.book_id = s.book_id
                JOIN authors a ON a.id = ba.author_id
                GROUP BY a.id ORDER BY COUNT(*) DESC, a.name ASC LIMIT 1""",
            params,
        )
        stats.page_count_distribution = _pairs(await _all(
            db,
            f"""{scope} SELECT
                  CASE
                    WHEN b.page_count < 200 THEN '< 200'
                    WHEN b.page_count < 350 THEN '200 – 350'
                    WHEN b.page_count < 500 THEN '350 – 500'
                    ELSE '500+'
                  END AS name,
                  COUNT(*) AS count
                FROM scope s JOIN books b ON b.id = s.book_id
                WHERE b.page_count IS NOT NULL
                GROUP BY name ORDER BY MIN(b.page_count)""",
            params,
        ))
        stats.year_published_distribution = _pairs(await _all(
            db,
            f"""{scope} SELECT (b.year_published / 10 * 10) || 's' AS name, COUNT(*) AS count
                FROM scope s JOIN books b ON b.id = s.book_id
                WHERE b.year_published IS NOT NULL
                GROUP BY b.year_published / 10 ORDER BY b.year_published / 10""",
            params,
        ))
        for attr, direction in (("longest_book", "DESC"), ("shortest_book", "ASC")):
            rows = await _all(
                db,
                f"""{scope} SELECT b.title, b.page_count
                    FROM scope s JOIN books b ON b.id = s.book_id
                    WHERE b.page_count IS NOT NULL
                    ORDER BY b.page_count {direction}, b.title ASC LIMIT 1""",
                params,
            )
            if rows:
                setattr(stats, attr, (rows[0]["title"], rows[0]["page_count"]))
        return stats

    async def _reading_stats(
        self,
        db: aiosqlite.Connection,
        params: dict[str, Any],
        year: int | None,
    ) -> ReadingStats:
        stats = ReadingStats()
        finished = "r.user_id = :uid AND r.status = 'read' AND r.finished_at IS NOT NULL"
        recent = " AND r.finished_at >= date('now', '-30 days')"
        in_year = _year_filter(year, "r.finished_at")

        stats.books_all_time = await _scalar(
            db, f"SELECT COUNT(*) FROM readings r WHERE {finished}{in_year}", params
        )
        stats.books_last_30_days = await _scalar(
            db, f"SELECT COUNT(*) FROM readings r WHERE {finished}{recent}", params
        )
        stats.pages_all_time = await _scalar(
            db,
            f"""SELECT COALESCE(SUM(b.page_count), 0) FROM readings r
                JOIN books b ON b.id = r.book_id WHERE {finished}{in_year}""",
            params,
        )
        stats.pages_last_30_days = await _scalar(
            db,
            f"""SELECT COALESCE(SUM(b.page_count), 0) FROM readings r
                JOIN books b ON b.id = r.book_id WHERE {finished}{recent}""",
            params,
        )
        stats.books_in_progress = await _scalar(
            db, "SELECT COUNT(*) FROM readings WHERE user_id = :uid AND status = 'reading'", params
        )
        stats.books_abandoned = await _scalar(
            db,
            "SELECT COUNT(*) FROM readings WHERE user_id = :uid AND status = 'abandoned'"
            + _year_filter(year, "COALESCE(finished_at, updated_at)"),
            params,
        )
        stats.books_on_shelf = await _scalar(
            db,
            """SELECT COUNT(*) FROM user_books ub
               WHERE ub.user_id = :uid AND ub.shelf = 'library'
               AND NOT EXISTS (
                   SELECT 1 FROM readings r WHERE r.book_id = ub.book_id AND r.user_id = ub.user_id
               )""",
            params,
        )
        stats.books_on_wishlist = await _scalar(
            db, "SELECT COUNT(*) FROM user_books WHERE user_id = :uid AND shelf = 'wishlist'", params
        )

        average_rating = await _scalar(
            db, f"SELECT AVG(r.rating) FROM readings r WHERE {finished} AND r.rating IS NOT NULL{in_year}", params
        )
        stats.average_rating = round(average_rating, 2) if average_rating is not None else None
        average_days = await _scalar(
            db,
            f"""SELECT AVG(julianday(r.finished_at) - julianday(r.started_at)) FROM readings r
                WHERE {finished} AND r.started_at IS NOT NULL
                AND julianday(r.finished_at) >= julianday(r.started_at){in_year}""",
            params,
        )
        stats.average_days_to_finish = round(average_days, 1) if average_days is not None else None

        stats.rating_distribution = [
            (float(name), count)
            for name, count in _pairs(await _all(
                db,
                f"""SELECT r.rating AS name, COUNT(*) AS count FROM readings r
                    WHERE {finished} AND r.rating IS NOT NULL{in_year}
                    GROUP BY r.rating ORDER BY r.rating""",
                params,
            ))
        ]
        stats.yearly_books = _pairs(await _all(
            db,
            f"""SELECT strftime('%Y', r.finished_at) AS name, COUNT(*) AS count FROM readings r
                WHERE {finished}{in_year}
                GROUP BY name ORDER BY name""",
            params,
        ))
        stats.pace_distribution = _pairs(await _all(
            db,
            f"""SELECT pace AS name, COUNT(*) AS count FROM (
                  SELECT
                    CASE
                      WHEN b.page_count * 1.0 / MAX(1, julianday(r.finished_at) - julianday(r.started_at)) < 15 THEN 'Slow'
                      WHEN b.page_count * 1.0 / MAX(1, julianday(r.finished_at) - julianday(r.started_at)) <= 40 THEN 'Medium'
                      ELSE 'Fast'
                    END AS pace
                  FROM readings r JOIN books b ON b.id = r.book_id
                  WHERE {finished} AND r.started_at IS NOT NULL AND b.page_count IS NOT NULL
                  AND julianday(r.finished_at) >= julianday(r.started_at){in_year}
                )
                GROUP BY pace
                ORDER BY CASE pace WHEN 'Slow' THEN 1 WHEN 'Medium' THEN 2 ELSE 3 END""",
            params,
        ))
        stats.format_counts = _pairs(await _all(
            db,
            f"""SELECT
                  CASE r.format
                    WHEN 'physical' THEN 'Physical'
                    WHEN 'ereader' THEN 'eReader'
                    ELSE 'Audiobook'
                  END AS name,
                  COUNT(*) AS count
                FROM readings r
                WHERE {finished} AND r.format IS NOT NULL{in_year}
                GROUP BY r.format ORDER BY count DESC, name ASC""",
            params,
        ))
        return stats

    async def _require_user(self, db: aiosqlite.Connection, user_id: int) -> None:
        cursor = await db.execute("SELECT 1 FROM users WHERE id = ?", (user_id,))
        if not await cursor.fetchone():
            raise EntityNotFound("user", user_id)

    async def refresh(self, user_id: int) -> StatsEntry:
        """Recompute from scratch and insert-or-replace the user's cache row."""
        db = await connect(self.db_path)
        try:
            await self._require_user(db, user_id)
        finally:
            await db.close()

        computed_at = _now()
        data = await self.compute(user_id)

        db = await connect(self.db_path)
        try:
            await db.execute(
                """INSERT INTO stats_cache (user_id, data, computed_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                       data = excluded.data,
                       computed_at = excluded.computed_at""",
                (user_id, data.model_dump_json(), computed_at.isoformat()),
            )
            await db.commit()
        except aiosqlite.IntegrityError as exc:
            # The user was removed between the check and the write.
            raise EntityNotFound("user", user_id) from exc
        except aiosqlite.Error as exc:
            raise StorageError.wrap(exc, "stats cache write failed") from exc
        finally:
            await db.close()
        return StatsEntry(user_id=user_id, data=data, computed_at=computed_at, cached=False)

    async def get_cached(self, user_id: int) -> StatsEntry | None:
        db = await connect(self.db_path)
        try:
            cursor = await db.execute(
                "SELECT user_id, data, computed_at FROM stats_cache WHERE user_id = ?",
                (user_id,),
            )
            row = await cursor.fetchone()
        finally:
            await db.close()
        if not row:
            return None
        try:
            data = CachedStats.model_validate(json.loads(row["data"]))
        except (json.JSONDecodeError, ValueError):
            # An unreadable row is treated as missing and recomputed.
            logger.warning(f"Discarding unreadable stats cache row for user {user_id}")
            return None
        return StatsEntry(user_id=row["user_id"], data=data, computed_at=row["computed_at"])

    async def delete(self, user_id: int) -> bool:
        db = await connect(self.db_path)
        try:
            cursor = await db.execute("DELETE FROM stats_cache WHERE user_id = ?", (user_id,))
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    async def available_years(self, user_id: int) -> list[int]:
        db = await connect(self.db_path)
        try:
            cursor = await db.execute(
                """SELECT DISTINCT CAST(strftime('%Y', finished_at) AS INTEGER) AS year
                   FROM readings
                   WHERE user_id = ? AND status = 'read' AND finished_at IS NOT NULL
                   ORDER BY year DESC""",
                (user_id,),
            )
            return [row["year"] for row in await cursor.fetchall()]
        finally:
            await db.close()

    # Invalidation runs on the mutation's own connection, inside its transaction.

    async def invalidate_users(self, db: aiosqlite.Connection, user_ids: Iterable[int]) -> None:
        ids = sorted({uid for uid in user_ids if uid is not None})
        if not ids:
            return
        placeholders = ", ".join("?" for _ in ids)
        await db.execute(f"DELETE FROM stats_cache WHERE user_id IN ({placeholders})", ids)

    async def invalidate_book(self, db: aiosqlite.Connection, book_id: int) -> None:
        await db.execute(
            """DELETE FROM stats_cache WHERE user_id IN (
                   SELECT user_id FROM user_books WHERE book_id = ?
                   UNION SELECT user_id FROM readings WHERE book_id = ?
               )""",
            (book_id, book_id),
        )

    async def invalidate_all(self, db: aiosqlite.Connection) -> None:
        await db.execute("DELETE FROM stats_cache")
