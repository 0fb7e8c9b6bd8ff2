"""Reading statistics routes."""

from typing import Optional

from fastapi import APIRouter, Query

from readlog.dependencies import QueryServiceDep, RequiredUserDep, StatsAggregatorDep
from readlog.models import StatsEntry

router = APIRouter()


@router.get("", response_model=StatsEntry)
async def get_stats(
    user_id: RequiredUserDep,
    service: QueryServiceDep,
    year: Optional[int] = Query(default=None),
):
    return await service.get_stats(user_id, year=year)


@router.get("/years", response_model=list[int])
async def get_available_years(user_id: RequiredUserDep, stats: StatsAggregatorDep):
    return await stats.available_years(user_id)


@router.delete("")
async def clear_stats(user_id: RequiredUserDep, stats: StatsAggregatorDep):
    deleted = await stats.delete(user_id)
    return {"status": "deleted" if deleted else "not_cached", "user_id": user_id}
