"""Snapshot rebuilds: repair stale payloads, preserve identity, report orphans."""

import aiosqlite
import pytest

from readlog.database.db import connect
from readlog.errors import ValidationError
from readlog.models import AuthorCreate, AuthorUpdate, EntityType, OrphanPolicy
from readlog.services.rebuilder import SnapshotRebuilder
from readlog.services.timeline_store import TimelineStore

from helpers import fetch_all, finish_reading

IDENTITY = "SELECT id, entity_type, entity_id, action, occurred_at, user_id FROM timeline_events ORDER BY id"
PAYLOAD = "SELECT id, title, details_json, genres_json, reading_data_json FROM timeline_events ORDER BY id"


class TestRebuild:

    async def test_rename_is_propagated_to_embedding_events(self, seeded, library, store, rebuilder):
        author, book = seeded["author"], seeded["book"]
        await library.update_author(author.id, AuthorUpdate(name="A. Leckie"))

        stale = await store.list_by_entity(EntityType.BOOK, book.id)
        assert stale[0].details[0].value == "Ann Leckie"

        result = await rebuilder.rebuild()

        assert result.status == "completed"
        assert result.errors == 0
        assert result.orphaned == 0
        # The author's "created" event and both book events change.
        assert result.updated == 3
        refreshed = await store.list_by_entity(EntityType.BOOK, book.id)
        assert [e.details[0].value for e in refreshed] == ["A. Leckie", "A. Leckie"]
        history = await store.list_by_entity(EntityType.AUTHOR, author.id)
        assert [e.title for e in history] == ["A. Leckie", "A. Leckie"]

    async def test_rebuild_never_touches_event_identity(self, seeded, library, rebuilder, db_path):
        await library.update_author(seeded["author"].id, AuthorUpdate(name="A. Leckie"))
        before = await fetch_all(db_path, IDENTITY)

        await rebuilder.rebuild()

        assert await fetch_all(db_path, IDENTITY) == before

    async def test_rebuild_is_idempotent(self, seeded, library, rebuilder, db_path):
        await library.update_author(seeded["author"].id, AuthorUpdate(name="A. Leckie"))
        await rebuilder.rebuild()
        first = await fetch_all(db_path, PAYLOAD)

        second_run = await rebuilder.rebuild()

        assert second_run.updated == 0
        assert await fetch_all(db_path, PAYLOAD) == first

    async def test_identity_columns_are_immutable_in_storage(self, seeded, db_path):
        db = await connect(db_path)
        try:
            with pytest.raises(aiosqlite.Error):
                await db.execute("UPDATE timeline_events SET action = 'renamed' WHERE id = 1")
        finally:
            await db.close()


class TestOrphans:

    async def test_freeze_keeps_events_of_deleted_entities(self, seeded, library, store, rebuilder):
        book = seeded["book"]
        await library.delete_book(book.id)

        result = await rebuilder.rebuild()

        assert result.orphaned == 1
        assert result.pruned == 0
        assert result.errors == 0
        events = await store.list_by_entity(EntityType.BOOK, book.id)
        assert [e.action for e in events] == ["created", "shelved", "deleted"]
        assert all(e.title == "Ancillary Justice" for e in events)

    async def test_prune_removes_events_of_deleted_entities(self, seeded, library, store, rebuilder):
        book = seeded["book"]
        await library.delete_book(book.id)

        result = await rebuilder.rebuild(orphan_policy=OrphanPolicy.PRUNE)

        assert result.orphan_policy == OrphanPolicy.PRUNE
        assert result.orphaned == 1
        assert result.pruned == 3
        assert await store.list_by_entity(EntityType.BOOK, book.id) == []
        assert await store.list_by_entity(EntityType.AUTHOR, seeded["author"].id) != []

    async def test_cascaded_children_show_up_as_orphans(self, seeded, library, rebuilder, today):
        user, book = seeded["user"], seeded["book"]
        await finish_reading(library, user.id, book.id, today, today)
        await library.delete_book(book.id)

        result = await rebuilder.rebuild()

        # The book and its cascaded reading.
        assert result.orphaned == 2


class TestBatching:

    async def test_every_entity_is_visited_across_batches(self, seeded, rebuilder):
        result = await rebuilder.rebuild()

        # author, genre and book, with a batch size of two.
        assert result.entities == 3
        assert result.scanned == 4

    async def test_failing_entity_is_counted_and_the_run_continues(self, seeded, library, loader, rebuilder):
        await library.update_author(seeded["author"].id, AuthorUpdate(name="A. Leckie"))
        real_load = loader.load

        async def flaky_load(db, entity_type, entity_id):
            if entity_type == "genre":
                raise ValidationError("unreadable genre")
            return await real_load(db, entity_type, entity_id)

        loader.load = flaky_load

        result = await rebuilder.rebuild()

        assert result.errors == 1
        assert result.entities == 3
        assert result.updated == 3

    async def test_interrupted_run_resumes_from_its_checkpoint(self, library, db_path, loader):
        for name in ("First", "Second", "Third"):
            await library.create_author(AuthorCreate(name=name))

        failing_store = TimelineStore(db_path=db_path)
        real_keys = failing_store.entity_keys_after
        calls = []

        async def interrupted_keys(db, after, limit):
            calls.append(after)
            if len(calls) > 1:
                raise RuntimeError("worker stopped")
            return await real_keys(db, after, limit)

        failing_store.entity_keys_after = interrupted_keys
        interrupted = SnapshotRebuilder(db_path=db_path, store=failing_store, loader=loader, batch_size=1)
        with pytest.raises(RuntimeError):
            await interrupted.rebuild()

        runs = await fetch_all(db_path, "SELECT * FROM rebuild_runs")
        assert len(runs) == 1
        assert runs[0]["status"] == "running"
        assert runs[0]["entities"] == 1

        resumer = SnapshotRebuilder(
            db_path=db_path, store=TimelineStore(db_path=db_path), loader=loader, batch_size=1
        )
        result = await resumer.rebuild(resume=True)

        assert result.resumed is True
        assert result.run_id == runs[0]["id"]
        assert result.entities == 3
        assert result.status == "completed"

    async def test_resume_without_unfinished_run_starts_fresh(self, seeded, rebuilder):
        first = await rebuilder.rebuild()
        second = await rebuilder.rebuild(resume=True)

        assert second.resumed is False
        assert second.run_id != first.run_id


class TestTargetedRefresh:

    async def test_author_refresh_reaches_books_and_readings(self, seeded, library, store, rebuilder, today):
        user, author, book = seeded["user"], seeded["author"], seeded["book"]
        reading = await finish_reading(library, user.id, book.id, today, today)
        await library.update_author(author.id, AuthorUpdate(name="A. Leckie"))

        result = await rebuilder.refresh_entity(EntityType.AUTHOR, author.id)

        assert result.entities == 3
        events = await store.list_by_entity(EntityType.READING, reading.id)
        assert events[0].details[0].value == "A. Leckie"

    async def test_refresh_of_deleted_entity_reports_an_orphan(self, seeded, library, rebuilder):
        await library.delete_genre(seeded["genre"].id)

        result = await rebuilder.refresh_entity(EntityType.GENRE, seeded["genre"].id)

        assert result.orphaned == 1
        assert result.entities == 1

    async def test_author_delete_hands_back_surviving_dependents(self, seeded, library, store, rebuilder, today):
        user, author, book = seeded["user"], seeded["author"], seeded["book"]
        reading = await finish_reading(library, user.id, book.id, today, today)

        dependents = await library.delete_author(author.id)

        assert dependents == [("book", book.id), ("reading", reading.id)]
        result = await rebuilder.refresh_keys(dependents)
        assert result.entities == 2
        assert result.orphaned == 0
        events = await store.list_by_entity(EntityType.BOOK, book.id)
        assert {e.details[0].value for e in events} == {"Unknown"}

    async def test_refresh_keys_with_nothing_to_do(self, rebuilder):
        result = await rebuilder.refresh_keys([])

        assert result.entities == 0
        assert result.updated == 0


class TestEntityCounts:

    async def test_count_for_entity_matches_its_history(self, seeded, library, store, db_path):
        await library.update_author(seeded["author"].id, AuthorUpdate(name="A. Leckie"))

        db = await connect(db_path)
        try:
            assert await store.count_for_entity(db, EntityType.AUTHOR, seeded["author"].id) == 2
            assert await store.count_for_entity(db, EntityType.BOOK, seeded["book"].id) == 2
            assert await store.count_for_entity(db, EntityType.READING, 999) == 0
        finally:
            await db.close()

    async def test_scanned_counts_every_event_of_a_refreshed_entity(self, seeded, rebuilder):
        result = await rebuilder.refresh_entity(EntityType.BOOK, seeded["book"].id)

        assert result.entities == 1
        assert result.scanned == 2
