"""
Dependency injection for FastAPI routes.

Provides typed service dependencies that enable IDE navigation (Ctrl+Click).
"""

from typing import Annotated, Optional
from fastapi import Depends, Header, HTTPException, Request

from readlog.services.library import LibraryService
from readlog.services.query import TimelineQueryService
from readlog.services.rebuilder import SnapshotRebuilder
from readlog.services.stats import StatsAggregator


def get_library_service(request: Request) -> LibraryService:
    return request.app.state.library_service


def get_query_service(request: Request) -> TimelineQueryService:
    return request.app.state.query_service


def get_rebuilder(request: Request) -> SnapshotRebuilder:
    return request.app.state.rebuilder


def get_stats_aggregator(request: Request) -> StatsAggregator:
    return request.app.state.stats_aggregator


def get_acting_user_id(x_user_id: Annotated[Optional[int], Header()] = None) -> Optional[int]:
    """Acting user from the ``X-User-Id`` header; sessions are handled upstream."""
    return x_user_id


def require_acting_user_id(user_id: Annotated[Optional[int], Depends(get_acting_user_id)]) -> int:
    if user_id is None:
        raise HTTPException(401, "X-User-Id header is required")
    return user_id


LibraryServiceDep = Annotated[LibraryService, Depends(get_library_service)]
QueryServiceDep = Annotated[TimelineQueryService, Depends(get_query_service)]
RebuilderDep = Annotated[SnapshotRebuilder, Depends(get_rebuilder)]
StatsAggregatorDep = Annotated[StatsAggregator, Depends(get_stats_aggregator)]
ActingUserDep = Annotated[Optional[int], Depends(get_acting_user_id)]
RequiredUserDep = Annotated[int, Depends(require_acting_user_id)]
