"""Command-line utilities for inspecting stored interview sessions."""

from __future__ import annotations

import argparse
from typing import Callable, List, Optional

from .config import AppSettings, InterviewScope
from .models import MessageRole
from .session_store import SessionRepository

CommandHandler = Callable[[SessionRepository, argparse.Namespace], None]


def run_sessions_cli(
    settings: AppSettings,
    argv: Optional[List[str]] = None,
    *,
    repository: SessionRepository | None = None,
) -> None:
    """Entry point for session-related CLI commands."""

    repo = repository or SessionRepository(settings.data_dir, settings.redis_url)
    parser = argparse.ArgumentParser(
        prog="requirements-interview sessions",
        description="List, inspect and delete stored interview sessions.",
    )
    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    list_parser = subparsers.add_parser(
        "list",
        help="Show recent sessions",
    )
    list_parser.add_argument(
        "-n",
        "--limit",
        type=int,
        default=10,
        help="Maximum number of sessions to display (default: 10)",
    )
    list_parser.add_argument(
        "--scope",
        choices=[scope.value for scope in InterviewScope],
        help="Filter sessions by interview scope",
    )
    list_parser.add_argument(
        "--active",
        action="store_true",
        help="Only show sessions that can still be resumed",
    )
    list_parser.set_defaults(func=_handle_list)

    show_parser = subparsers.add_parser(
        "show",
        help="Display the transcript and proposal for a session",
    )
    show_parser.add_argument("id", help="Session identifier")
    show_parser.set_defaults(func=_handle_show)

    delete_parser = subparsers.add_parser(
        "delete",
        help="Remove a stored session",
    )
    delete_parser.add_argument("id", help="Session identifier")
    delete_parser.set_defaults(func=_handle_delete)

    args = parser.parse_args(argv)
    handler: CommandHandler = args.func
    handler(repo, args)


def _handle_list(repo: SessionRepository, args: argparse.Namespace) -> None:
    records = repo.list_active() if args.active else repo.list_all()
    if args.scope:
        scope = InterviewScope.from_string(args.scope, default=None)
        records = [record for record in records if record.scope is scope]
    records = records[: args.limit]
    if not records:
        print("No sessions found.")
        return
    print(f"Showing {len(records)} sessions:")
    for record in records:
        print(
            f" - {record.id} | {record.scope.value} | {record.status.value} | "
            f"{record.updated_at} | {len(record.conversation)} messages"
        )


def _handle_show(repo: SessionRepository, args: argparse.Namespace) -> None:
    record = repo.get(args.id)
    if not record:
        print(f"Session '{args.id}' not found.")
        return
    print(f"Session ID: {record.id}")
    print(f"Scope: {record.scope.value}")
    print(f"Status: {record.status.value}")
    print(f"Created: {record.created_at}")
    print(f"Updated: {record.updated_at}")
    if record.raw_input:
        print(f"Request: {record.raw_input}")
    for message in record.conversation:
        speaker = "User" if message.role is MessageRole.USER else "Assistant"
        print("\n" + "-" * 40)
        print(f"{speaker}:\n{message.content}")
    proposal = record.proposed_output
    if proposal is not None:
        print("\n" + "=" * 40)
        print("Proposal:")
        if proposal.requirement_path:
            print(f"Requirement path: {proposal.requirement_path}")
        if proposal.requirement_doc:
            print(proposal.requirement_doc)
        for feature in proposal.features:
            print(f" * {feature.title}: {feature.description}")
        for task in proposal.tasks:
            print(f" - {task.title}: {task.description}")


def _handle_delete(repo: SessionRepository, args: argparse.Namespace) -> None:
    if repo.get(args.id) is None:
        print(f"Session '{args.id}' not found.")
        return
    repo.delete(args.id)
    print(f"Deleted session {args.id}.")
