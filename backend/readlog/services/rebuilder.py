"""Snapshot rebuilder: repairs denormalized event payloads from current entity state."""

from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import aiosqlite
from pydantic import ValidationError as PydanticValidationError

from readlog.database.db import connect
from readlog.errors import OrphanedReference, ReadlogError, StorageError
from readlog.logging import get_logger
from readlog.models import EntityType, OrphanPolicy, RebuildResult
from readlog.services.snapshots import SnapshotLoader, build_payload
from readlog.services.timeline_store import EntityKey, TimelineStore

logger = get_logger("services.rebuilder")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_result(row: dict, resumed: bool = False) -> RebuildResult:
    return RebuildResult(
        status=row["status"],
        run_id=row["id"],
        orphan_policy=row["orphan_policy"],
        resumed=resumed,
        entities=row["entities"],
        scanned=row["scanned"],
        updated=row["updated"],
        orphaned=row["orphaned"],
        pruned=row["pruned"],
        errors=row["errors"],
        started_at=row["started_at"],
        finished_at=row.get("finished_at"),
    )


class SnapshotRebuilder:
    """
    Rewrites event payloads in bounded batches, each committed on its own.

    Progress is checkpointed in ``rebuild_runs`` inside the batch transaction,
    so an interrupted run can resume from the last committed key.
    """

    def __init__(
        self,
        db_path: str,
        store: TimelineStore,
        loader: SnapshotLoader,
        batch_size: int = 200,
        orphan_policy: OrphanPolicy = OrphanPolicy.FREEZE,
    ):
        self.db_path = db_path
        self.store = store
        self.loader = loader
        self.batch_size = batch_size
        self.orphan_policy = OrphanPolicy(orphan_policy)

    async def rebuild(
        self,
        resume: bool = False,
        orphan_policy: Optional[OrphanPolicy] = None,
    ) -> RebuildResult:
        db = await connect(self.db_path)
        try:
            run, resumed = await self._open_run(db, resume, orphan_policy)
            policy = OrphanPolicy(run["orphan_policy"])
            last_key: EntityKey | None = None
            if run["last_entity_type"] is not None:
                last_key = (run["last_entity_type"], run["last_entity_id"])
            logger.info(
                f"{'Resuming' if resumed else 'Starting'} timeline rebuild run {run['id']} "
                f"(orphan policy: {policy.value})"
            )

            while True:
                last_key, done = await self._run_batch(db, run, last_key, policy)
                if done:
                    break

            cursor = await db.execute("SELECT * FROM rebuild_runs WHERE id = ?", (run["id"],))
            result = _row_to_result(dict(await cursor.fetchone()), resumed=resumed)
            logger.info(
                f"Timeline rebuild run {result.run_id} completed: scanned={result.scanned} "
                f"updated={result.updated} orphaned={result.orphaned} pruned={result.pruned} "
                f"errors={result.errors}"
            )
            return result
        except aiosqlite.Error as exc:
            raise StorageError.wrap(exc, "timeline rebuild aborted") from exc
        finally:
            await db.close()

    async def _open_run(
        self,
        db: aiosqlite.Connection,
        resume: bool,
        orphan_policy: Optional[OrphanPolicy],
    ) -> tuple[dict, bool]:
        if resume:
            cursor = await db.execute(
                "SELECT * FROM rebuild_runs WHERE status = 'running' ORDER BY id DESC LIMIT 1"
            )
            row = await cursor.fetchone()
            if row:
                return dict(row), True

        policy = OrphanPolicy(orphan_policy or self.orphan_policy)
        now = _now()
        cursor = await db.execute(
            """INSERT INTO rebuild_runs (orphan_policy, status, started_at, updated_at)
               VALUES (?, 'running', ?, ?)""",
            (policy.value, now, now),
        )
        run_id = cursor.lastrowid
        await db.commit()
        cursor = await db.execute("SELECT * FROM rebuild_runs WHERE id = ?", (run_id,))
        return dict(await cursor.fetchone()), False

    async def _run_batch(
        self,
        db: aiosqlite.Connection,
        run: dict,
        last_key: EntityKey | None,
        policy: OrphanPolicy,
    ) -> tuple[EntityKey | None, bool]:
        # IMMEDIATE takes the write lock up front so entity reads below are current.
        await db.execute("BEGIN IMMEDIATE")
        try:
            keys = await self.store.entity_keys_after(db, last_key, self.batch_size)
            totals = {"entities": 0, "scanned": 0, "updated": 0, "orphaned": 0, "pruned": 0, "errors": 0}
            for entity_type, entity_id in keys:
                counts = await self._refresh_isolated(db, entity_type, entity_id, policy)
                for name, value in counts.items():
                    totals[name] += value

            done = len(keys) < self.batch_size
            if keys:
                last_key = keys[-1]
            now = _now()
            await db.execute(
                """UPDATE rebuild_runs SET
                       last_entity_type = ?, last_entity_id = ?,
                       entities = entities + ?, scanned = scanned + ?, updated = updated + ?,
                       orphaned = orphaned + ?, pruned = pruned + ?, errors = errors + ?,
                       status = ?, updated_at = ?, finished_at = ?
                   WHERE id = ?""",
                (
                    last_key[0] if last_key else None,
                    last_key[1] if last_key else None,
                    totals["entities"],
                    totals["scanned"],
                    totals["updated"],
                    totals["orphaned"],
                    totals["pruned"],
                    totals["errors"],
                    "completed" if done else "running",
                    now,
                    now if done else None,
                    run["id"],
                ),
            )
            await db.commit()
        except BaseException:
            await db.rollback()
            raise

        if keys:
            logger.info(
                f"Rebuild run {run['id']}: batch of {len(keys)} entities committed through "
                f"{last_key[0]} {last_key[1]}"
            )
        return last_key, done

    async def _refresh_isolated(
        self,
        db: aiosqlite.Connection,
        entity_type: str,
        entity_id: int,
        policy: OrphanPolicy,
    ) -> dict[str, int]:
        """Refresh one entity under a savepoint; a failure only discards that entity's writes."""
        await db.execute("SAVEPOINT rebuild_entity")
        try:
            counts = await self._refresh_entity_events(db, entity_type, entity_id, policy)
            await db.execute("RELEASE SAVEPOINT rebuild_entity")
            return counts
        except (aiosqlite.Error, ReadlogError, PydanticValidationError) as exc:
            await db.execute("ROLLBACK TO SAVEPOINT rebuild_entity")
            await db.execute("RELEASE SAVEPOINT rebuild_entity")
            logger.warning(f"Failed to rebuild timeline events for {entity_type} {entity_id}: {exc}")
            return {"entities": 1, "errors": 1}

    async def _refresh_entity_events(
        self,
        db: aiosqlite.Connection,
        entity_type: str,
        entity_id: int,
        policy: OrphanPolicy,
    ) -> dict[str, int]:
        scanned = await self.store.count_for_entity(db, entity_type, entity_id)
        counts = {"entities": 1, "scanned": scanned}
        try:
            snapshot = await self.loader.load(db, entity_type, entity_id)
        except OrphanedReference:
            counts["orphaned"] = 1
            if policy == OrphanPolicy.PRUNE:
                counts["pruned"] = await self.store.delete_for_entity(db, entity_type, entity_id)
            return counts

        counts["updated"] = await self.store.rewrite_payload(
            db, entity_type, entity_id, build_payload(snapshot)
        )
        return counts

    async def refresh_entity(
        self,
        entity_type: EntityType | str,
        entity_id: int,
        orphan_policy: Optional[OrphanPolicy] = None,
    ) -> RebuildResult:
        """Refresh one entity's events and those of every entity that embeds its data."""

        async def keys(db: aiosqlite.Connection) -> list[EntityKey]:
            return await self.loader.dependent_keys(db, entity_type, entity_id)

        result = await self._refresh(keys, orphan_policy)
        logger.info(
            f"Refreshed timeline for {EntityType(entity_type).value} {entity_id}: "
            f"{result.entities} entities, {result.updated} events updated"
        )
        return result

    async def refresh_keys(
        self,
        keys: list[EntityKey],
        orphan_policy: Optional[OrphanPolicy] = None,
    ) -> RebuildResult:
        """
        Refresh the events of the given entities only.

        Used after a delete, when the dependents were collected before the
        deleted row went away and can no longer be derived from it.
        """

        async def fixed(db: aiosqlite.Connection) -> list[EntityKey]:
            return [(EntityType(key_type).value, key_id) for key_type, key_id in keys]

        result = await self._refresh(fixed, orphan_policy)
        logger.info(f"Refreshed timeline for {result.entities} entities, {result.updated} events updated")
        return result

    async def _refresh(
        self,
        collect_keys: Callable[[aiosqlite.Connection], Awaitable[list[EntityKey]]],
        orphan_policy: Optional[OrphanPolicy],
    ) -> RebuildResult:
        policy = OrphanPolicy(orphan_policy or self.orphan_policy)
        result = RebuildResult(orphan_policy=policy)
        db = await connect(self.db_path)
        try:
            await db.execute("BEGIN IMMEDIATE")
            try:
                for key_type, key_id in await collect_keys(db):
                    counts = await self._refresh_isolated(db, key_type, key_id, policy)
                    for name, value in counts.items():
                        setattr(result, name, getattr(result, name) + value)
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
        except aiosqlite.Error as exc:
            raise StorageError.wrap(exc, "timeline refresh failed") from exc
        finally:
            await db.close()

        result.finished_at = datetime.now(timezone.utc)
        return result
