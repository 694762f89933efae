# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""scrollcast CLI: serve, record commands.

Usage:
    scrollcast serve [--host HOST] [--port PORT] [--env ENV] [--storage {s3,local}]
    scrollcast record URL [--speed SPEED] [--resolution WxH] [--direction DIR]
                          [--hide SELECTOR ...] [--duration SECONDS] [--output-dir DIR]
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import sys
from pathlib import Path

from . import CaptureRequest, ScrollDirection, ScrollSpeed, Viewport, __version__
from .config import ServiceConfig
from .errors import ValidationError

EXIT_CAPTURE_FAILED = 1
EXIT_INVALID_INPUT = 2


def _positive_float(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {raw!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError("duration must be a positive number of seconds")
    return value


def _configure_logging(config: ServiceConfig) -> None:
    from .logging_config import configure

    configure(json_output=config.log_json, level=config.log_level, log_file=config.log_file)


def cmd_serve(args: argparse.Namespace) -> None:
    """Run the HTTP API."""
    from .server import run

    config = ServiceConfig.from_env()
    overrides: dict = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.env:
        overrides["environment"] = args.env
    if args.storage:
        overrides["storage_backend"] = args.storage
    if overrides:
        config = dataclasses.replace(config, **overrides)

    _configure_logging(config)
    run(config)


def build_capture_request(args: argparse.Namespace) -> CaptureRequest:
    """Turn ``record`` arguments into a request; raises ValidationError."""
    return CaptureRequest(
        page_url=args.url,
        scroll_speed=ScrollSpeed(args.speed),
        viewport=Viewport.parse(args.resolution),
        scroll_direction=ScrollDirection(args.direction),
        elements_to_hide=tuple(args.hide or ()),
        explicit_duration=args.duration,
    )


def cmd_record(args: argparse.Namespace) -> int:
    """Record one URL into a local directory and print where it went."""
    from ._progress import status_spinner
    from .browser_session import BrowserConfig
    from .orchestrator import SessionOrchestrator
    from .problem_details import from_exception, from_validation
    from .storage import LocalArtifactStore

    try:
        request = build_capture_request(args)
    except ValidationError as exc:
        print(from_validation(str(exc), field_name=exc.field_name).to_cli_text(), file=sys.stderr)
        return EXIT_INVALID_INPUT

    config = ServiceConfig.from_env()
    _configure_logging(config)
    config.ensure_dirs()

    output_dir = Path(args.output_dir)
    store = LocalArtifactStore(output_dir, base_url=output_dir.resolve().as_uri())
    orchestrator = SessionOrchestrator(
        store,
        BrowserConfig(headless=not args.headed, video_dir=config.video_dir),
    )

    try:
        with status_spinner(f"Recording {request.page_url} ..."):
            artifact = asyncio.run(orchestrator.generate(request))
    except Exception as exc:
        print(from_exception(exc).to_cli_text(), file=sys.stderr)
        return EXIT_CAPTURE_FAILED

    print(output_dir / artifact.key)
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="scrollcast", description="Record web pages auto-scrolling")
    parser.add_argument("--version", action="version", version=f"scrollcast {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default="", help="Bind host (default: SCROLLCAST_HOST or 127.0.0.1)")
    p_serve.add_argument("--port", type=int, default=0, help="Bind port (default: SCROLLCAST_PORT or 3000)")
    p_serve.add_argument("--env", choices=["production", "development"], default="", help="Error detail level")
    p_serve.add_argument("--storage", choices=["s3", "local"], default="", help="Storage backend")
    p_serve.set_defaults(func=cmd_serve)

    p_record = sub.add_parser("record", help="Record one page into a local directory")
    p_record.add_argument("url", help="Page to record")
    p_record.add_argument("--speed", choices=[s.value for s in ScrollSpeed], default="medium")
    p_record.add_argument("--resolution", default="1920x1080", help="Viewport and video size, WxH")
    p_record.add_argument("--direction", choices=[d.value for d in ScrollDirection], default="down")
    p_record.add_argument("--hide", action="append", metavar="SELECTOR", help="CSS selector to hide (repeatable)")
    p_record.add_argument("--duration", type=_positive_float, default=None, help="Override duration in seconds")
    p_record.add_argument("--output-dir", default="videos", help="Where the finished video is moved")
    p_record.add_argument("--headed", action="store_true", help="Show the browser window")
    p_record.set_defaults(func=cmd_record)
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    code = args.func(args)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
