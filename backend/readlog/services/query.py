"""Read-only facade composing the timeline store and the stats cache."""

from datetime import datetime, timedelta, timezone

from readlog.errors import ValidationError
from readlog.models import (
    EntityType,
    StatsEntry,
    TimelineCursor,
    TimelineEvent,
    TimelinePage,
    TimelineScope,
)
from readlog.services.stats import StatsAggregator
from readlog.services.timeline_store import TimelineStore


class TimelineQueryService:
    """Serves display-ready timeline pages and stats for the API layer."""

    def __init__(
        self,
        store: TimelineStore,
        stats: StatsAggregator,
        default_limit: int = 20,
        max_limit: int = 100,
        stats_max_age_seconds: int = 0,
    ):
        self.store = store
        self.stats = stats
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.stats_max_age_seconds = stats_max_age_seconds

    def _clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.default_limit
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        return min(limit, self.max_limit)

    async def get_timeline(
        self,
        scope: TimelineScope = TimelineScope.GLOBAL,
        user_id: int | None = None,
        cursor: str | None = None,
        limit: int | None = None,
    ) -> TimelinePage:
        limit = self._clamp_limit(limit)
        position = TimelineCursor.decode(cursor) if cursor else None

        if TimelineScope(scope) == TimelineScope.MINE:
            if user_id is None:
                raise ValidationError("scope=mine requires an acting user")
            events, next_position = await self.store.list_by_user(user_id, position, limit)
        else:
            events, next_position = await self.store.list_global(position, limit)

        return TimelinePage(
            events=events,
            next_cursor=next_position.encode() if next_position else None,
            limit=limit,
        )

    async def get_entity_history(self, entity_type: EntityType | str, entity_id: int) -> list[TimelineEvent]:
        return await self.store.list_by_entity(entity_type, entity_id)

    def _is_stale(self, entry: StatsEntry) -> bool:
        if self.stats_max_age_seconds <= 0:
            return False
        age = datetime.now(timezone.utc) - entry.computed_at
        return age > timedelta(seconds=self.stats_max_age_seconds)

    async def get_stats(self, user_id: int, year: int | None = None) -> StatsEntry:
        """
        Return the user's stats, recomputing when the cache row is missing or stale.

        A per-year view is computed on demand and never cached.
        """
        if year is not None:
            data = await self.stats.compute(user_id, year=year)
            return StatsEntry(user_id=user_id, data=data, computed_at=datetime.now(timezone.utc), cached=False)

        entry = await self.stats.get_cached(user_id)
        if entry is not None and not self._is_stale(entry):
            return entry
        return await self.stats.refresh(user_id)
