"""Command-line entry point for bookmark sync.

Usage:
    bookmark-sync login --token TOKEN
    bookmark-sync --bookmarks-file tree.json map 12 4567 --sync-children
    bookmark-sync --bookmarks-file tree.json sync
    bookmark-sync --bookmarks-file tree.json run

Every command prints a JSON document on stdout; logs go to stderr. The
bookmark tree is read from ``--bookmarks-file`` (when it exists) and written
back on exit.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from bookmark_sync.adapters.local.memory_store import InMemoryBookmarkStore
from bookmark_sync.adapters.raindrop.client import RaindropClientError
from bookmark_sync.config import load_config
from bookmark_sync.core.logging_utils import setup_json_logging
from bookmark_sync.db.session import DatabaseSessionManager
from bookmark_sync.di.container import SyncContainer
from bookmark_sync.domain.exceptions import SyncDomainError
from bookmark_sync.infrastructure.persistence.sqlite.key_value_store import SqliteKeyValueStore

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from bookmark_sync.sync.service import BookmarkSyncService

logger = logging.getLogger("bookmark_sync.cli")


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list | tuple):
        return [_to_jsonable(item) for item in value]
    if isinstance(value, set):
        return sorted(_to_jsonable(item) for item in value)
    if isinstance(value, dict):
        return {key: _to_jsonable(item) for key, item in value.items()}
    return value


def _load_store(path: Path | None) -> InMemoryBookmarkStore:
    if path is None or not path.exists():
        return InMemoryBookmarkStore()
    return InMemoryBookmarkStore.from_dict(json.loads(path.read_text(encoding="utf-8")))


def _save_store(store: InMemoryBookmarkStore, path: Path | None) -> None:
    if path is None:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(store.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------


async def _cmd_login(service: BookmarkSyncService, args: argparse.Namespace) -> Any:
    user = await service.authenticate(args.token)
    return {"authenticated": True, "user": user}


async def _cmd_logout(service: BookmarkSyncService, args: argparse.Namespace) -> Any:
    await service.logout()
    return {"authenticated": False}


async def _cmd_status(service: BookmarkSyncService, args: argparse.Namespace) -> Any:
    return {
        "status": await service.get_status(),
        "stats": await service.get_stats(),
        "mappings": await service.get_mappings(),
    }


async def _cmd_enable(service: BookmarkSyncService, args: argparse.Namespace) -> Any:
    return await service.enable()


async def _cmd_disable(service: BookmarkSyncService, args: argparse.Namespace) -> Any:
    return await service.disable()


async def _cmd_collections(service: BookmarkSyncService, args: argparse.Namespace) -> Any:
    return await service.list_collections()


async def _cmd_map(service: BookmarkSyncService, args: argparse.Namespace) -> Any:
    return await service.add_mapping(
        args.local_folder_id,
        args.collection_id,
        sync_children=args.sync_children,
        run_initial_sync=not args.no_initial_sync,
    )


async def _cmd_unmap(service: BookmarkSyncService, args: argparse.Namespace) -> Any:
    return {"removed": await service.remove_mapping(args.mapping_id)}


async def _cmd_sync(service: BookmarkSyncService, args: argparse.Namespace) -> Any:
    return await service.trigger_sync()


async def _cmd_resync(service: BookmarkSyncService, args: argparse.Namespace) -> Any:
    return await service.full_resync()


async def _cmd_retry_failed(service: BookmarkSyncService, args: argparse.Namespace) -> Any:
    return await service.retry_failed()


async def _cmd_clear_queue(service: BookmarkSyncService, args: argparse.Namespace) -> Any:
    await service.clear_queue()
    return {"cleared": "queue"}


async def _cmd_clear_errors(service: BookmarkSyncService, args: argparse.Namespace) -> Any:
    await service.clear_errors()
    return {"cleared": "errors"}


async def _cmd_export(service: BookmarkSyncService, args: argparse.Namespace) -> Any:
    data = await service.export_data()
    if args.output:
        Path(args.output).write_text(json.dumps(data, indent=2), encoding="utf-8")
        return {"exported": args.output}
    return data


async def _cmd_run(service: BookmarkSyncService, args: argparse.Namespace) -> Any:
    await service.enable()
    logger.info("sync_daemon_running")
    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        logger.info("sync_daemon_interrupted")
    return await service.get_status()


COMMANDS: dict[str, Callable[[BookmarkSyncService, argparse.Namespace], Awaitable[Any]]] = {
    "login": _cmd_login,
    "logout": _cmd_logout,
    "status": _cmd_status,
    "enable": _cmd_enable,
    "disable": _cmd_disable,
    "collections": _cmd_collections,
    "map": _cmd_map,
    "unmap": _cmd_unmap,
    "sync": _cmd_sync,
    "resync": _cmd_resync,
    "retry-failed": _cmd_retry_failed,
    "clear-queue": _cmd_clear_queue,
    "clear-errors": _cmd_clear_errors,
    "export": _cmd_export,
    "run": _cmd_run,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bookmark-sync",
        description="Synchronize a local bookmark tree with Raindrop.io collections",
    )
    parser.add_argument(
        "--bookmarks-file",
        type=Path,
        default=None,
        help="JSON bookmark tree to load and write back on exit",
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="SQLite state database (defaults to DB_PATH)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Store and verify a Raindrop.io API token")
    login.add_argument("--token", required=True)

    sub.add_parser("logout", help="Forget the stored token")
    sub.add_parser("status", help="Show sync status, counters and mappings")
    sub.add_parser("enable", help="Turn synchronization on")
    sub.add_parser("disable", help="Turn synchronization off")
    sub.add_parser("collections", help="List Raindrop.io collections")

    map_cmd = sub.add_parser("map", help="Map a local folder to a collection")
    map_cmd.add_argument("local_folder_id")
    map_cmd.add_argument("collection_id", type=int)
    map_cmd.add_argument(
        "--sync-children",
        action="store_true",
        help="Mirror sub-folders onto nested collections",
    )
    map_cmd.add_argument(
        "--no-initial-sync",
        action="store_true",
        help="Create the mapping without reconciling it",
    )

    unmap = sub.add_parser("unmap", help="Remove a mapping and its descendants")
    unmap.add_argument("mapping_id")

    sub.add_parser("sync", help="Drain the queue, then push and pull every mapping")
    sub.add_parser("resync", help="Drop all links and rebuild them from both sides")
    sub.add_parser("retry-failed", help="Requeue failed operations and process them")
    sub.add_parser("clear-queue", help="Drop pending and failed operations")
    sub.add_parser("clear-errors", help="Clear the recent-errors list")

    export = sub.add_parser("export", help="Dump persisted sync state (without the token)")
    export.add_argument("--output", default=None, help="Write to a file instead of stdout")

    sub.add_parser("run", help="Listen and sync on a schedule until interrupted")
    return parser


async def run_command(args: argparse.Namespace) -> int:
    """Run one CLI command.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    cfg = load_config()
    setup_json_logging(
        level=cfg.runtime.log_level,
        log_file=cfg.runtime.log_file,
        debug_mode=cfg.runtime.debug_mode,
        stream=sys.stderr,
    )

    db = DatabaseSessionManager(args.db_path or cfg.runtime.db_path)
    db.migrate()
    store = _load_store(args.bookmarks_file)
    container = SyncContainer(
        cfg, SqliteKeyValueStore(db), store, with_scheduler=args.command == "run"
    )

    exit_code = 0
    try:
        await container.open()
        if cfg.raindrop.token and not await container.credentials.is_authenticated():
            await container.credentials.save_token(cfg.raindrop.token)

        service = container.sync_service()
        await service.start()
        result = await COMMANDS[args.command](service, args)
        print(json.dumps(_to_jsonable(result), indent=2, ensure_ascii=False))
    except (SyncDomainError, RaindropClientError, ValueError) as exc:
        logger.error("cli_command_failed", extra={"command": args.command, "error": str(exc)})
        print(json.dumps({"error": str(exc), "command": args.command}, indent=2))
        exit_code = 1
    except Exception as exc:
        logger.exception("cli_command_crashed", extra={"command": args.command})
        print(json.dumps({"error": str(exc), "command": args.command}, indent=2))
        exit_code = 1
    finally:
        await container.aclose()
        _save_store(store, args.bookmarks_file)
        db.close()

    return exit_code


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    try:
        exit_code = asyncio.run(run_command(args))
    except KeyboardInterrupt:
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
