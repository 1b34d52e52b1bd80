from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from typing import Optional

from rich.console import Console
from rich.table import Table
from sqlalchemy import text

from .core.config import Settings, get_settings
from .core.db import create_schema
from .core.errors import IngestionError, PublishFailed, SourceNotFound
from .core.logging import configure_logging, level_from_name
from .core.runtime import build_runtime
from .domain import Photo, SearchTask

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    settings = get_settings()
    configure_logging(level=level_from_name(settings.log_level))
    args.func(args, settings)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MediaApp ingestion service")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API under uvicorn")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(func=_cmd_serve)

    worker_parser = subparsers.add_parser("worker", help="Consume queued search tasks until interrupted")
    worker_parser.set_defaults(func=_cmd_worker)

    resolve_parser = subparsers.add_parser("resolve", help="Resolve one catalog photo, ingesting it if needed")
    resolve_parser.add_argument("external_id", help="Identifier assigned by the photo catalog")
    resolve_parser.set_defaults(func=_cmd_resolve)

    new_parser = subparsers.add_parser("new", help="List the catalog's newest photos without ingesting them")
    new_parser.add_argument("--page", type=int, default=1)
    new_parser.add_argument("--per-page", type=int, default=10)
    new_parser.set_defaults(func=_cmd_new)

    enqueue_parser = subparsers.add_parser("enqueue", help="Publish a search task to the work queue")
    enqueue_parser.add_argument("query")
    enqueue_parser.add_argument("--page", type=int, default=None)
    enqueue_parser.add_argument("--per-page", type=int, default=None)
    enqueue_parser.set_defaults(func=_cmd_enqueue)

    check_parser = subparsers.add_parser("check", help="Print effective configuration and probe backends")
    check_parser.set_defaults(func=_cmd_check)
    return parser


def _cmd_serve(args: argparse.Namespace, settings: Settings) -> None:
    import uvicorn

    uvicorn.run(
        "mediaapp.main:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level=settings.log_level.lower(),
    )


def _cmd_worker(args: argparse.Namespace, settings: Settings) -> None:
    from .workers.tasks import run_worker

    if settings.work_queue_backend == "memory":
        console.print("[yellow]The memory queue is process-local; this worker only sees its own tasks.[/]")
    sys.exit(asyncio.run(run_worker(settings)))


def _cmd_resolve(args: argparse.Namespace, settings: Settings) -> None:
    async def _runner() -> dict:
        runtime = build_runtime(settings)
        try:
            if settings.database_auto_create:
                await create_schema(runtime.db_engine)
            photo = await runtime.engine.resolve_by_external_id(args.external_id)
            return asdict(photo)
        finally:
            await runtime.aclose()

    try:
        payload = asyncio.run(_runner())
    except SourceNotFound:
        console.print(f"[red]Photo {args.external_id} is unknown to the catalog.[/]")
        sys.exit(2)
    except IngestionError as exc:
        console.print(f"[red]Resolve failed ({exc.reason}):[/] {exc}")
        sys.exit(3)
    console.print_json(json.dumps(payload, default=str))


def _cmd_new(args: argparse.Namespace, settings: Settings) -> None:
    async def _runner() -> list[Photo]:
        runtime = build_runtime(settings)
        try:
            return await runtime.engine.list_new(max(args.page, 1), max(args.per_page, 1))
        finally:
            await runtime.aclose()

    try:
        photos = asyncio.run(_runner())
    except IngestionError as exc:
        console.print(f"[red]Listing failed ({exc.reason}):[/] {exc}")
        sys.exit(3)

    table = Table(title=f"Newest catalog photos (page {max(args.page, 1)})")
    table.add_column("external id")
    table.add_column("title")
    table.add_column("author")
    table.add_column("likes", justify="right")
    for photo in photos:
        table.add_row(photo.external_id, photo.title, photo.author_name, str(photo.likes_count))
    console.print(table)


def _cmd_enqueue(args: argparse.Namespace, settings: Settings) -> None:
    task = SearchTask.normalized(args.query, args.page, args.per_page)

    async def _runner() -> None:
        runtime = build_runtime(settings)
        try:
            await runtime.queue.publish(task)
        finally:
            await runtime.aclose()

    if settings.work_queue_backend == "memory":
        console.print("[yellow]The memory queue is process-local; the task is dropped when this command exits.[/]")
    try:
        asyncio.run(_runner())
    except PublishFailed as exc:
        console.print(f"[red]Could not enqueue:[/] {exc}")
        sys.exit(1)
    console.print_json(task.to_wire())


def _cmd_check(args: argparse.Namespace, settings: Settings) -> None:
    table = Table(title="Effective configuration")
    table.add_column("setting")
    table.add_column("value")
    for name, value in settings.model_dump(exclude={"secrets"}).items():
        table.add_row(name, str(value))
    for name, value in settings.secrets.model_dump().items():
        table.add_row(f"secrets.{name}", "set" if value else "[dim]unset[/]")
    console.print(table)

    results = asyncio.run(_probe_backends(settings))
    console.rule("[bold]Backend Check")
    for label, ok in results.items():
        console.print(f"[bold]{label}[/]: {'✅' if ok else '❌'}")
    if not all(results.values()):
        console.print("[red]Some backends are unreachable.[/]")
        sys.exit(1)
    console.print("[green]Backends look good![/]")


async def _probe_backends(settings: Settings) -> dict[str, bool]:
    runtime = build_runtime(settings)
    results: dict[str, bool] = {}
    try:
        try:
            async with runtime.db_engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            results["database"] = True
        except Exception:
            results["database"] = False
        if settings.work_queue_backend == "redis":
            try:
                await runtime.queue.client.ping()
                results["redis"] = True
            except Exception:
                results["redis"] = False
    finally:
        await runtime.aclose()
    return results


if __name__ == "__main__":
    main()
