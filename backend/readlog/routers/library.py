"""Library mutation routes. Every accepted mutation lands on the timeline.

Edits of authors, genres and books, and deletes of authors and genres, also
schedule a refresh of the earlier events that embed their data. The refresh
runs once the response is sent.
"""

from fastapi import APIRouter, BackgroundTasks, HTTPException

from readlog.dependencies import ActingUserDep, LibraryServiceDep, RebuilderDep, RequiredUserDep
from readlog.models import (
    Author, AuthorCreate, AuthorUpdate,
    Book, BookCreate, BookUpdate,
    EntityType,
    Genre, GenreCreate, GenreUpdate,
    Reading, ReadingCreate, ReadingUpdate,
    ShelveRequest,
    User, UserCreate,
)
from readlog.realtime import publish_timeline_change

router = APIRouter()


# Users

@router.post("/users", response_model=User, status_code=201)
async def create_user(body: UserCreate, service: LibraryServiceDep):
    return await service.create_user(body)


@router.delete("/users/{user_id}")
async def delete_user(user_id: int, service: LibraryServiceDep):
    deleted = await service.delete_user(user_id)
    if not deleted:
        raise HTTPException(404, "User not found")
    return {"status": "deleted", "id": user_id}


# Authors

@router.post("/authors", response_model=Author, status_code=201)
async def create_author(body: AuthorCreate, service: LibraryServiceDep, user_id: ActingUserDep):
    author = await service.create_author(body, acting_user_id=user_id)
    await publish_timeline_change(EntityType.AUTHOR, author.id, user_id)
    return author


@router.get("/authors/{author_id}", response_model=Author)
async def get_author(author_id: int, service: LibraryServiceDep):
    author = await service.get_author(author_id)
    if not author:
        raise HTTPException(404, "Author not found")
    return author


@router.put("/authors/{author_id}", response_model=Author)
async def update_author(
    author_id: int,
    body: AuthorUpdate,
    service: LibraryServiceDep,
    user_id: ActingUserDep,
    rebuilder: RebuilderDep,
    background_tasks: BackgroundTasks,
):
    author = await service.update_author(author_id, body, acting_user_id=user_id)
    await publish_timeline_change(EntityType.AUTHOR, author_id, user_id)
    background_tasks.add_task(rebuilder.refresh_entity, EntityType.AUTHOR, author_id)
    return author


@router.delete("/authors/{author_id}")
async def delete_author(
    author_id: int,
    service: LibraryServiceDep,
    user_id: ActingUserDep,
    rebuilder: RebuilderDep,
    background_tasks: BackgroundTasks,
):
    dependents = await service.delete_author(author_id, acting_user_id=user_id)
    await publish_timeline_change(EntityType.AUTHOR, author_id, user_id)
    if dependents:
        background_tasks.add_task(rebuilder.refresh_keys, dependents)
    return {"status": "deleted", "id": author_id}


# Genres

@router.post("/genres", response_model=Genre, status_code=201)
async def create_genre(body: GenreCreate, service: LibraryServiceDep, user_id: ActingUserDep):
    genre = await service.create_genre(body, acting_user_id=user_id)
    await publish_timeline_change(EntityType.GENRE, genre.id, user_id)
    return genre


@router.get("/genres/{genre_id}", response_model=Genre)
async def get_genre(genre_id: int, service: LibraryServiceDep):
    genre = await service.get_genre(genre_id)
    if not genre:
        raise HTTPException(404, "Genre not found")
    return genre


@router.put("/genres/{genre_id}", response_model=Genre)
async def update_genre(
    genre_id: int,
    body: GenreUpdate,
    service: LibraryServiceDep,
    user_id: ActingUserDep,
    rebuilder: RebuilderDep,
    background_tasks: BackgroundTasks,
):
    genre = await service.update_genre(genre_id, body, acting_user_id=user_id)
    await publish_timeline_change(EntityType.GENRE, genre_id, user_id)
    background_tasks.add_task(rebuilder.refresh_entity, EntityType.GENRE, genre_id)
    return genre


@router.delete("/genres/{genre_id}")
async def delete_genre(
    genre_id: int,
    service: LibraryServiceDep,
    user_id: ActingUserDep,
    rebuilder: RebuilderDep,
    background_tasks: BackgroundTasks,
):
    dependents = await service.delete_genre(genre_id, acting_user_id=user_id)
    await publish_timeline_change(EntityType.GENRE, genre_id, user_id)
    if dependents:
        background_tasks.add_task(rebuilder.refresh_keys, dependents)
    return {"status": "deleted", "id": genre_id}


# Books

@router.post("/books", response_model=Book, status_code=201)
async def create_book(body: BookCreate, service: LibraryServiceDep, user_id: ActingUserDep):
    book = await service.create_book(body, acting_user_id=user_id)
    await publish_timeline_change(EntityType.BOOK, book.id, user_id)
    return book


@router.get("/books/{book_id}", response_model=Book)
async def get_book(book_id: int, service: LibraryServiceDep):
    book = await service.get_book(book_id)
    if not book:
        raise HTTPException(404, "Book not found")
    return book


@router.put("/books/{book_id}", response_model=Book)
async def update_book(
    book_id: int,
    body: BookUpdate,
    service: LibraryServiceDep,
    user_id: ActingUserDep,
    rebuilder: RebuilderDep,
    background_tasks: BackgroundTasks,
):
    book = await service.update_book(book_id, body, acting_user_id=user_id)
    await publish_timeline_change(EntityType.BOOK, book_id, user_id)
    background_tasks.add_task(rebuilder.refresh_entity, EntityType.BOOK, book_id)
    return book


@router.delete("/books/{book_id}")
async def delete_book(book_id: int, service: LibraryServiceDep, user_id: ActingUserDep):
    await service.delete_book(book_id, acting_user_id=user_id)
    await publish_timeline_change(EntityType.BOOK, book_id, user_id)
    return {"status": "deleted", "id": book_id}


# Shelves

@router.post("/shelves", status_code=201)
async def shelve_book(body: ShelveRequest, service: LibraryServiceDep, user_id: RequiredUserDep):
    await service.shelve_book(user_id, body.book_id, body.shelf)
    await publish_timeline_change(EntityType.BOOK, body.book_id, user_id)
    return {"status": "shelved", "book_id": body.book_id, "shelf": body.shelf}


@router.delete("/shelves/{book_id}")
async def unshelve_book(book_id: int, service: LibraryServiceDep, user_id: RequiredUserDep):
    removed = await service.unshelve_book(user_id, book_id)
    if not removed:
        raise HTTPException(404, "Book is not on a shelf")
    await publish_timeline_change(EntityType.BOOK, book_id, user_id)
    return {"status": "unshelved", "book_id": book_id}


# Readings

@router.post("/readings", response_model=Reading, status_code=201)
async def create_reading(body: ReadingCreate, service: LibraryServiceDep, user_id: RequiredUserDep):
    reading = await service.create_reading(user_id, body)
    await publish_timeline_change(EntityType.READING, reading.id, user_id)
    return reading


@router.get("/readings/{reading_id}", response_model=Reading)
async def get_reading(reading_id: int, service: LibraryServiceDep):
    reading = await service.get_reading(reading_id)
    if not reading:
        raise HTTPException(404, "Reading not found")
    return reading


@router.put("/readings/{reading_id}", response_model=Reading)
async def update_reading(reading_id: int, body: ReadingUpdate, service: LibraryServiceDep):
    reading = await service.update_reading(reading_id, body)
    await publish_timeline_change(EntityType.READING, reading_id, reading.user_id)
    return reading


@router.delete("/readings/{reading_id}")
async def delete_reading(reading_id: int, service: LibraryServiceDep):
    await service.delete_reading(reading_id)
    await publish_timeline_change(EntityType.READING, reading_id)
    return {"status": "deleted", "id": reading_id}
