"""Timeline feed routes."""

from typing import Optional

from fastapi import APIRouter, Query

from readlog.dependencies import ActingUserDep, QueryServiceDep
from readlog.models import EntityType, TimelineEvent, TimelinePage, TimelineScope

router = APIRouter()


@router.get("", response_model=TimelinePage)
async def get_timeline(
    service: QueryServiceDep,
    user_id: ActingUserDep,
    scope: TimelineScope = Query(default=TimelineScope.GLOBAL),
    cursor: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None),
):
    return await service.get_timeline(scope=scope, user_id=user_id, cursor=cursor, limit=limit)


@router.get("/entities/{entity_type}/{entity_id}", response_model=list[TimelineEvent])
async def get_entity_history(entity_type: EntityType, entity_id: int, service: QueryServiceDep):
    return await service.get_entity_history(entity_type, entity_id)
