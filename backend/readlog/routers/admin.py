"""Administrative timeline maintenance routes."""

from typing import Optional

from fastapi import APIRouter, Query

from readlog.dependencies import RebuilderDep
from readlog.models import EntityType, OrphanPolicy, RebuildResult

router = APIRouter()


@router.post("/timeline/rebuild", response_model=RebuildResult)
async def rebuild_timeline(
    rebuilder: RebuilderDep,
    resume: bool = Query(default=False),
    orphan_policy: Optional[OrphanPolicy] = Query(default=None),
):
    return await rebuilder.rebuild(resume=resume, orphan_policy=orphan_policy)


@router.post("/timeline/refresh/{entity_type}/{entity_id}", response_model=RebuildResult)
async def refresh_entity_timeline(
    entity_type: EntityType,
    entity_id: int,
    rebuilder: RebuilderDep,
    orphan_policy: Optional[OrphanPolicy] = Query(default=None),
):
    return await rebuilder.refresh_entity(entity_type, entity_id, orphan_policy=orphan_policy)
