"""
``readlog-admin``: maintenance jobs run outside the HTTP server.

    readlog-admin init-db
    readlog-admin rebuild [--resume] [--orphan-policy freeze|prune]
    readlog-admin refresh book 42
    readlog-admin serve --port 8000
"""

import argparse
import asyncio
import sys
from typing import Optional, Sequence

import uvicorn

from readlog.config import get_settings
from readlog.database.db import init_db
from readlog.errors import ReadlogError
from readlog.logging import setup_logging, get_logger
from readlog.models import EntityType, OrphanPolicy, RebuildResult
from readlog.services.rebuilder import SnapshotRebuilder
from readlog.services.snapshots import SnapshotLoader
from readlog.services.timeline_store import TimelineStore

logger = get_logger('cli')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="readlog-admin", description=__doc__.splitlines()[1])
    parser.add_argument("--database", help="SQLite file; defaults to DATABASE_PATH")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create or migrate the database schema")

    rebuild = commands.add_parser("rebuild", help="Rewrite every event payload from current entity state")
    rebuild.add_argument("--resume", action="store_true", help="Continue the last unfinished run")
    rebuild.add_argument("--orphan-policy", choices=[p.value for p in OrphanPolicy])

    refresh = commands.add_parser("refresh", help="Refresh one entity and the entities that embed it")
    refresh.add_argument("entity_type", choices=[t.value for t in EntityType])
    refresh.add_argument("entity_id", type=int)
    refresh.add_argument("--orphan-policy", choices=[p.value for p in OrphanPolicy])

    serve = commands.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")

    return parser


def _print_result(result: RebuildResult) -> None:
    print(
        f"run={result.run_id} status={result.status} policy={result.orphan_policy.value} "
        f"entities={result.entities} scanned={result.scanned} updated={result.updated} "
        f"orphaned={result.orphaned} pruned={result.pruned} errors={result.errors}"
    )


async def _run(args: argparse.Namespace, db_path: str) -> int:
    await init_db(db_path)
    if args.command == "init-db":
        return 0

    settings = get_settings()
    rebuilder = SnapshotRebuilder(
        db_path=db_path,
        store=TimelineStore(db_path=db_path),
        loader=SnapshotLoader(),
        batch_size=settings.REBUILD_BATCH_SIZE,
        orphan_policy=settings.ORPHAN_POLICY,
    )
    policy = OrphanPolicy(args.orphan_policy) if args.orphan_policy else None
    if args.command == "rebuild":
        result = await rebuilder.rebuild(resume=args.resume, orphan_policy=policy)
    else:
        result = await rebuilder.refresh_entity(args.entity_type, args.entity_id, orphan_policy=policy)
    _print_result(result)
    return 1 if result.errors else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(debug=settings.DEBUG)

    if args.command == "serve":
        uvicorn.run("readlog.app:create_asgi_app", factory=True, host=args.host, port=args.port, reload=args.reload)
        return 0

    try:
        return asyncio.run(_run(args, args.database or settings.DATABASE_PATH))
    except ReadlogError as exc:
        logger.error(str(exc))
        return 2


if __name__ == "__main__":
    sys.exit(main())
