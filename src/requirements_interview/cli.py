"""Command line entry-point for the requirements interview engine."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional

from .bridge import run_bridge_server
from .config import AppSettings, Intensity, InterviewScope
from .console import run_console_interview
from .sessions_cli import run_sessions_cli


def _parse_interview_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="requirements-interview",
        description=(
            "Interview the user about a project, feature or task and "
            "draft structured requirements"
        ),
    )
    parser.add_argument(
        "request",
        nargs="*",
        help="Initial description of what you want to build",
    )
    parser.add_argument(
        "--scope",
        choices=[scope.value for scope in InterviewScope],
        help="Interview scope (project, new-feature, task)",
    )
    parser.add_argument(
        "--intensity",
        choices=[level.value for level in Intensity],
        help="How many clarifying questions to ask before proposing",
    )
    parser.add_argument(
        "--resume",
        metavar="SESSION_ID",
        help="Resume a stored session instead of starting a new one.",
    )
    return parser.parse_args(argv)


def _parse_serve_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="requirements-interview serve",
        description="Expose the interview engine as a loopback HTTP service.",
    )
    parser.add_argument(
        "--host",
        help="Host interface (default: INTERVIEW_BRIDGE_HOST or 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="TCP port (default: INTERVIEW_BRIDGE_PORT or 8765)",
    )
    parser.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origin",
        help="Optional CORS origin(s) to allow. Defaults to '*'.",
    )
    return parser.parse_args(argv)


def _load_settings() -> AppSettings:
    try:
        settings = AppSettings.load()
    except RuntimeError as exc:
        logging.error("Failed to load AppSettings: %s", exc)
        raise SystemExit(1) from exc
    logging.basicConfig(level=settings.log_level)
    return settings


def run_cli(argv: Optional[list[str]] = None) -> None:
    """Entry-point invoked from ``python -m requirements_interview``."""

    arg_list = list(argv) if argv is not None else sys.argv[1:]
    if arg_list:
        command = arg_list[0]
        if command == "sessions":
            settings = _load_settings()
            run_sessions_cli(settings, arg_list[1:])
            return
        if command == "serve":
            args = _parse_serve_args(arg_list[1:])
            settings = _load_settings()
            run_bridge_server(
                settings,
                host=args.host,
                port=args.port,
                allow_origins=args.allow_origin,
                log_level=settings.log_level.lower(),
            )
            return
        if command == "interview":
            arg_list = arg_list[1:]

    args = _parse_interview_args(arg_list)
    settings = _load_settings()
    scope = InterviewScope.from_string(args.scope, default=settings.default_scope)
    intensity = Intensity.from_string(args.intensity, default=settings.intensity)
    initial_input = " ".join(args.request).strip() or None
    if initial_input is None and not args.resume:
        initial_input = input("What would you like to build? ").strip() or None
    asyncio.run(
        run_console_interview(
            settings,
            scope,
            initial_input,
            session_id=args.resume,
            intensity=intensity,
        )
    )


if __name__ == "__main__":  # pragma: no cover - manual execution hook
    run_cli()
