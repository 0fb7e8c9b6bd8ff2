"""
Database connection and initialization.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from readlog.config import settings
from readlog.errors import ConflictError, StorageError
from readlog.logging import get_logger

logger = get_logger('database')

SCHEMA_PATH = Path(__file__).parent / "init_db.sql"


async def connect(db_path: str | Path | None = None) -> aiosqlite.Connection:
    """
    Open a connection with row access by name and foreign keys enforced.

    :param db_path: Database file; defaults to the configured path
    :type db_path: str | Path | None
    :return: Open database connection, to be closed by the caller
    :rtype: aiosqlite.Connection
    """
    db = await aiosqlite.connect(db_path or settings.DATABASE_PATH)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON")
    return db


async def init_db(db_path: str | Path | None = None):
    """
    Initialize database with schema.

    :param db_path: Database file; defaults to the configured path
    :type db_path: str | Path | None
    :return: None
    :rtype: None
    """
    path = Path(db_path or settings.DATABASE_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)

    async with aiosqlite.connect(path) as db:
        with open(SCHEMA_PATH) as f:
            await db.executescript(f.read())
        await db.commit()
        logger.info(f"Database initialized at {path}")


@asynccontextmanager
async def transaction(db_path: str | Path | None = None) -> AsyncIterator[aiosqlite.Connection]:
    """
    Run a unit of work on one connection; commit on success, roll back on any error.

    :param db_path: Database file; defaults to the configured path
    :type db_path: str | Path | None
    :return: Connection with an open transaction
    :rtype: AsyncIterator[aiosqlite.Connection]
    """
    db = await connect(db_path)
    try:
        # Take the write lock first so reads made before the write see the same state.
        await db.execute("BEGIN IMMEDIATE")
        yield db
        await db.commit()
    except aiosqlite.IntegrityError as exc:
        await db.rollback()
        raise ConflictError.wrap(exc, "constraint failed") from exc
    except aiosqlite.Error as exc:
        await db.rollback()
        raise StorageError.wrap(exc, "storage failure") from exc
    except BaseException:
        await db.rollback()
        raise
    finally:
        await db.close()
