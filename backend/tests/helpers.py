"""Small helpers shared by the test modules."""

from readlog.database.db import connect
from readlog.models import ReadingCreate, ReadingFormat, ReadingStatus


async def finish_reading(library, user_id, book_id, started, finished, rating=4.0):
    return await library.create_reading(
        user_id,
        ReadingCreate(
            book_id=book_id,
            status=ReadingStatus.READ,
            started_at=started,
            finished_at=finished,
            rating=rating,
            format=ReadingFormat.EREADER,
        ),
    )


async def fetch_all(db_path, query, params=()):
    db = await connect(db_path)
    try:
        cursor = await db.execute(query, params)
        return [dict(row) for row in await cursor.fetchall()]
    finally:
        await db.close()


async def execute(db_path, statement, params=()):
    db = await connect(db_path)
    try:
        await db.execute(statement, params)
        await db.commit()
    finally:
        await db.close()
