"""Command-line interface for the tasksync MCP server."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any

from tasksync.allowlist import resolve_allowed_directories
from tasksync.errors import TaskSyncError
from tasksync.logging import get_logger, setup_logging
from tasksync.server import build_server
from tasksync.service import FeedbackService
from tasksync.settings import ServerSettings, WaitSettings

log = get_logger("cli")


def _overrides(**values: Any) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


async def _run_serve(args: argparse.Namespace) -> int:
    settings = ServerSettings(
        **_overrides(
            host=args.host,
            port=args.port,
            feedback_filename=args.feedback_file,
            log_level=args.log_level,
            log_file=args.log_file,
        )
    )
    setup_logging(settings.log_level, settings.log_file)

    try:
        allowed = resolve_allowed_directories(args.directories)
    except TaskSyncError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    if not args.directories:
        log.info("Auto-detected allowed directory: %s", allowed[0])

    service = FeedbackService(allowed, wait_settings=WaitSettings(**_overrides(timeout=args.timeout)))
    server = build_server(service, settings)

    async with service:
        if args.sse:
            try:
                await service.watch_default(settings.feedback_filename)
            except (TaskSyncError, OSError) as exc:
                log.warning("Default feedback file not watched: %s", exc)
            log.info("TaskSync MCP Server running on SSE at http://%s:%d/sse", settings.host, settings.port)
            log.info("Allowed directories: %s", ", ".join(service.allowed_directories))
            await server.run_sse_async()
        else:
            log.info("TaskSync MCP Server running on stdio")
            log.info("Allowed directories: %s", ", ".join(service.allowed_directories))
            await server.run_stdio_async()
    return 0


def _run_check(args: argparse.Namespace) -> int:
    try:
        allowed = resolve_allowed_directories(args.allow)
        service = FeedbackService(allowed)
        valid_path = service.validate_path(args.path)
    except TaskSyncError as exc:
        print(f"Error: {exc}")
        return 1

    print(valid_path)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tasksync")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Start the MCP server")
    serve_parser.add_argument("directories", nargs="*", help="Allowed directories (default: current directory)")
    serve_parser.add_argument("--sse", action="store_true", help="Serve over SSE instead of stdio")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--timeout", type=float, default=None, help="Seconds get_feedback waits for a change")
    serve_parser.add_argument("--feedback-file", default=None, help="Default feedback file name")
    serve_parser.add_argument("--log-level", default=None)
    serve_parser.add_argument("--log-file", default=None)
    serve_parser.set_defaults(handler=_run_serve, is_async=True)

    check_parser = subparsers.add_parser("check", help="Validate a path against allowed directories")
    check_parser.add_argument("path")
    check_parser.add_argument("--allow", action="append", default=[], help="Allowed directory (repeatable)")
    check_parser.set_defaults(handler=_run_check, is_async=False)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.is_async:
        return asyncio.run(args.handler(args))
    return args.handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
