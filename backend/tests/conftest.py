"""Shared fixtures: a fresh SQLite database per test and the services wired on it."""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from readlog.app import create_app
from readlog.config import Settings
from readlog.database.db import init_db
from readlog.models import (
    AuthorCreate,
    BookCreate,
    GenreCreate,
    UserCreate,
)
from readlog.services.library import LibraryService
from readlog.services.query import TimelineQueryService
from readlog.services.rebuilder import SnapshotRebuilder
from readlog.services.recorder import MutationRecorder
from readlog.services.snapshots import SnapshotLoader
from readlog.services.stats import StatsAggregator
from readlog.services.timeline_store import TimelineStore


@pytest.fixture
async def db_path(tmp_path):
    """Path of an initialized, empty database."""
    path = str(tmp_path / "readlog.db")
    await init_db(path)
    return path


@pytest.fixture
def store(db_path):
    return TimelineStore(db_path=db_path)


@pytest.fixture
def loader():
    return SnapshotLoader()


@pytest.fixture
def recorder(store):
    return MutationRecorder(store)


@pytest.fixture
def stats(db_path):
    return StatsAggregator(db_path=db_path)


@pytest.fixture
def library(db_path, recorder, loader, stats):
    return LibraryService(db_path=db_path, recorder=recorder, loader=loader, stats=stats)


@pytest.fixture
def rebuilder(db_path, store, loader):
    return SnapshotRebuilder(db_path=db_path, store=store, loader=loader, batch_size=2)


@pytest.fixture
def query(store, stats):
    return TimelineQueryService(store=store, stats=stats, default_limit=20, max_limit=100)


@pytest.fixture
async def seeded(library):
    """
    One user, one author, one genre and one shelved book.

    Returns a dict of the created records keyed by kind.
    """
    user = await library.create_user(UserCreate(name="Reader"))
    author = await library.create_author(AuthorCreate(name="Ann Leckie"), acting_user_id=user.id)
    genre = await library.create_genre(GenreCreate(name="Science Fiction"), acting_user_id=user.id)
    book = await library.create_book(
        BookCreate(
            title="Ancillary Justice",
            author_ids=[author.id],
            primary_genre_id=genre.id,
            page_count=386,
            year_published=2013,
        ),
        acting_user_id=user.id,
    )
    await library.shelve_book(user.id, book.id)
    return {"user": user, "author": author, "genre": genre, "book": book}


@pytest.fixture
def client(tmp_path):
    """TestClient on an app whose lifespan creates its own database."""
    config = Settings(DATABASE_PATH=str(tmp_path / "api.db"))
    with TestClient(create_app(config)) as test_client:
        yield test_client


@pytest.fixture
def today():
    return datetime.now(timezone.utc).date()
