"""Stats cache: content, lazy invalidation, staleness and concurrent refreshes."""

import asyncio
from datetime import timedelta

import pytest

from readlog.errors import EntityNotFound
from readlog.models import BookCreate, BookUpdate, ReadingCreate, ReadingStatus, Shelf
from readlog.services.query import TimelineQueryService

from helpers import execute, fetch_all, finish_reading


@pytest.fixture
async def finished(seeded, library, today):
    """The seeded book, read over ten days and rated 4/5 on an e-reader."""
    await finish_reading(library, seeded["user"].id, seeded["book"].id, today - timedelta(days=10), today)
    return seeded


class TestStatsContent:

    async def test_book_summary(self, finished, stats):
        data = await stats.compute(finished["user"].id)
        summary = data.book_summary

        assert summary.total_books == 1
        assert summary.total_authors == 1
        assert summary.unique_genres == 1
        assert summary.top_genre == "Science Fiction"
        assert summary.top_author == "Ann Leckie"
        assert summary.genre_counts == [("Science Fiction", 1)]
        assert summary.page_count_distribution == [("350 – 500", 1)]
        assert summary.year_published_distribution == [("2010s", 1)]
        assert summary.longest_book == ("Ancillary Justice", 386)
        assert summary.shortest_book == ("Ancillary Justice", 386)

    async def test_reading_figures(self, finished, stats, today):
        reading = (await stats.compute(finished["user"].id)).reading

        assert reading.books_all_time == 1
        assert reading.books_last_30_days == 1
        assert reading.pages_all_time == 386
        assert reading.pages_last_30_days == 386
        assert reading.books_in_progress == 0
        assert reading.books_on_shelf == 0
        assert reading.average_rating == 4.0
        assert reading.average_days_to_finish == 10.0
        assert reading.rating_distribution == [(4.0, 1)]
        assert reading.yearly_books == [(str(today.year), 1)]
        assert reading.pace_distribution == [("Medium", 1)]
        assert reading.format_counts == [("eReader", 1)]

    async def test_shelves_without_readings(self, seeded, library, stats):
        user = seeded["user"]
        wish = await library.create_book(BookCreate(title="The Left Hand of Darkness", page_count=304))
        await library.shelve_book(user.id, wish.id, Shelf.WISHLIST)

        reading = (await stats.compute(user.id)).reading

        assert reading.books_on_shelf == 1
        assert reading.books_on_wishlist == 1
        assert reading.books_all_time == 0
        assert reading.average_rating is None

    async def test_year_view_and_available_years(self, finished, stats, today):
        user_id = finished["user"].id

        this_year = await stats.compute(user_id, year=today.year)
        long_ago = await stats.compute(user_id, year=1999)

        assert this_year.year == today.year
        assert this_year.book_summary.total_books == 1
        assert long_ago.book_summary.total_books == 0
        assert long_ago.reading.books_all_time == 0
        assert await stats.available_years(user_id) == [today.year]


class TestStatsCache:

    async def test_first_read_computes_then_serves_the_cache(self, finished, query):
        user_id = finished["user"].id

        first = await query.get_stats(user_id)
        second = await query.get_stats(user_id)

        assert first.cached is False
        assert second.cached is True
        assert second.data == first.data

    async def test_reading_mutation_invalidates_the_users_row(self, finished, library, query, stats):
        user_id = finished["user"].id
        await query.get_stats(user_id)
        other = await library.create_book(BookCreate(title="Provenance", page_count=448))

        await library.create_reading(user_id, ReadingCreate(book_id=other.id, status=ReadingStatus.ABANDONED))

        assert await stats.get_cached(user_id) is None
        fresh = await query.get_stats(user_id)
        assert fresh.cached is False
        assert fresh.data.reading.books_abandoned == 1

    async def test_book_edit_invalidates_readers_of_that_book(self, finished, library, query, stats):
        user_id = finished["user"].id
        await query.get_stats(user_id)

        await library.update_book(finished["book"].id, BookUpdate(page_count=400))

        assert await stats.get_cached(user_id) is None
        assert (await query.get_stats(user_id)).data.reading.pages_all_time == 400

    async def test_year_view_is_never_cached(self, finished, query, stats, today):
        user_id = finished["user"].id

        entry = await query.get_stats(user_id, year=today.year)

        assert entry.cached is False
        assert await stats.get_cached(user_id) is None

    async def test_old_rows_are_recomputed_when_a_max_age_is_set(self, finished, store, stats, db_path):
        user_id = finished["user"].id
        await stats.refresh(user_id)
        await execute(db_path, "UPDATE stats_cache SET computed_at = '2000-01-01T00:00:00+00:00'")
        aging = TimelineQueryService(store=store, stats=stats, stats_max_age_seconds=60)

        entry = await aging.get_stats(user_id)

        assert entry.cached is False
        assert entry.computed_at.year > 2000

    async def test_unreadable_row_is_treated_as_missing(self, finished, stats, query, db_path):
        user_id = finished["user"].id
        await stats.refresh(user_id)
        await execute(db_path, "UPDATE stats_cache SET data = 'not json'")

        assert await stats.get_cached(user_id) is None
        assert (await query.get_stats(user_id)).cached is False

    async def test_concurrent_refreshes_leave_one_row(self, finished, stats, db_path):
        user_id = finished["user"].id

        entries = await asyncio.gather(*(stats.refresh(user_id) for _ in range(5)))

        rows = await fetch_all(db_path, "SELECT user_id FROM stats_cache")
        assert rows == [{"user_id": user_id}]
        assert all(e.data == entries[0].data for e in entries)

    async def test_refresh_for_unknown_user(self, stats):
        with pytest.raises(EntityNotFound):
            await stats.refresh(404)

    async def test_delete_forces_recompute(self, finished, stats, query):
        user_id = finished["user"].id
        await query.get_stats(user_id)

        assert await stats.delete(user_id) is True
        assert await stats.delete(user_id) is False
        assert (await query.get_stats(user_id)).cached is False

