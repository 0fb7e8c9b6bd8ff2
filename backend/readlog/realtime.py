"""
Socket.IO server for live timeline updates.

Clients join the ``global`` room on connect, plus ``user:<id>`` when they pass
``userId`` in the query string. They refetch the feed when notified.
"""

from typing import Optional
from urllib.parse import parse_qs

import socketio

from readlog.logging import get_logger
from readlog.models import EntityType

logger = get_logger('realtime')

sio = socketio.AsyncServer(
    async_mode='asgi',
    cors_allowed_origins='*'
)

GLOBAL_ROOM = 'global'


def user_room(user_id: int) -> str:
    return f'user:{user_id}'


@sio.event
async def connect(sid, environ):
    await sio.enter_room(sid, GLOBAL_ROOM)
    params = parse_qs(environ.get('QUERY_STRING', ''))
    user_ids = params.get('userId')
    if user_ids and user_ids[0].isdigit():
        await sio.enter_room(sid, user_room(int(user_ids[0])))
        logger.debug(f"Client {sid[:8]}... joined room for user {user_ids[0]}")


@sio.event
async def disconnect(sid):
    logger.debug(f"Client {sid[:8]}... disconnected")


async def publish_timeline_change(
    entity_type: EntityType | str,
    entity_id: int,
    user_id: Optional[int] = None,
) -> None:
    """Tell connected feeds that a committed mutation added an event."""
    message = {
        'entity_type': EntityType(entity_type).value,
        'entity_id': entity_id,
        'user_id': user_id,
    }
    await sio.emit('timeline:changed', message, room=GLOBAL_ROOM)
    if user_id is not None:
        await sio.emit('timeline:changed', message, room=user_room(user_id))
