"""CLI entry point for propmirror."""

import argparse
import asyncio
import getpass
import json
import logging
import os
import signal
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable

from .config import load_config
from .errors import NotFound, PropMirrorError, ProposalNotFound
from .mirror import ProposalMirror
from .models import Category


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2))


def _print_error(code: str, message: str) -> None:
    _print_json({"error": {"code": code, "message": message}})


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run the sync loop, or a single cycle with --once."""
    config = load_config(args.config)

    async with ProposalMirror(config) as mirror:
        if args.once:
            try:
                report = await mirror.sync_now(notify=False, check_votes=args.check_votes)
            except PropMirrorError as e:
                print(f"Sync failed: {e}", file=sys.stderr)
                return 1
            _print_json({
                "status": report.status.value,
                "new_proposals": report.new_proposals,
                "failed_batches": report.failed_batches,
                "status_changes": report.status_changes,
                "fetched": report.fetched,
            })
            return 0

        if not config.sync.enabled:
            print("Sync is disabled in configuration", file=sys.stderr)
            return 1

        print(f"Syncing proposals from {config.politeia.base_url}")
        print(f"Interval: {config.sync.interval_minutes} minutes (Ctrl+C to stop)")

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass  # Windows event loops

        await mirror.start_sync()
        await stop.wait()
        print("\nShutting down...")

    return 0


async def cmd_proposals(args: argparse.Namespace) -> int:
    """List mirrored proposals."""
    config = load_config(args.config)

    async with ProposalMirror(config) as mirror:
        proposals = mirror.get_proposals(
            category=args.category,
            offset=args.offset,
            limit=args.limit,
            newest_first=not args.oldest_first,
        )
        _print_json([p.to_dict() for p in proposals])
    return 0


async def _lookup(args: argparse.Namespace, fetch: Callable[[ProposalMirror], Any]) -> int:
    config = load_config(args.config)

    async with ProposalMirror(config) as mirror:
        try:
            _print_json(fetch(mirror).to_dict())
        except ProposalNotFound as e:
            _print_error("not_found", str(e))
            return 1
    return 0


async def _remote(args: argparse.Namespace, fetch: Callable[[ProposalMirror], Awaitable[Any]]) -> int:
    config = load_config(args.config)

    async with ProposalMirror(config) as mirror:
        try:
            result = await fetch(mirror)
        except NotFound as e:
            _print_error("not_found", str(e))
            return 1
        except PropMirrorError as e:
            _print_error("remote_error", str(e))
            return 1
    _print_json(result.to_dict())
    return 0


async def cmd_proposal(args: argparse.Namespace) -> int:
    """Show a proposal by censorship token."""
    if args.remote:
        return await _remote(args, lambda m: m.fetch_remote_proposal(args.token, args.version))
    return await _lookup(args, lambda m: m.get_proposal(args.token))


async def cmd_proposal_id(args: argparse.Namespace) -> int:
    """Show a proposal by local id."""
    return await _lookup(args, lambda m: m.get_proposal_by_id(args.id))


async def cmd_vote_status(args: argparse.Namespace) -> int:
    """Show the vote status of a proposal, from the mirror or live with --remote."""
    if args.remote:
        return await _remote(args, lambda m: m.fetch_remote_vote_status(args.token))
    return await _lookup(args, lambda m: m.get_vote_status(args.token))


async def cmd_count(args: argparse.Namespace) -> int:
    """Count mirrored proposals."""
    config = load_config(args.config)

    async with ProposalMirror(config) as mirror:
        if args.category:
            _print_json({args.category: mirror.count(args.category)})
        else:
            _print_json(mirror.counts())
    return 0


async def cmd_login(args: argparse.Namespace) -> int:
    """Log in and store the session."""
    config = load_config(args.config)
    password = os.environ.get("PROPMIRROR_PASSWORD") or getpass.getpass("Password: ")

    async with ProposalMirror(config) as mirror:
        try:
            user = await mirror.login(args.email, password)
        except PropMirrorError as e:
            print(f"Login failed: {e}", file=sys.stderr)
            return 1

    _print_json(user.to_dict())
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Show session and mirror status."""
    config = load_config(args.config)

    async with ProposalMirror(config) as mirror:
        session = mirror.session
        expires = session.csrf_token_expires_at
        _print_json({
            "remote": config.politeia.base_url,
            "session": {
                "csrf_token_valid": session.has_valid_csrf_token(),
                "csrf_token_expires_at": expires.isoformat() if expires else None,
                "logged_in": session.is_logged_in(),
                "user": session.user.username if session.user else None,
                "page_size": session.policy.proposallistpagesize if session.policy else None,
            },
            "proposals": mirror.store.get_stats(),
        })
    return 0


def main() -> int:
    """Main entry point."""
    categories = [c.name.lower() for c in Category]

    parser = argparse.ArgumentParser(
        prog="propmirror",
        description="Local mirror of a remote proposal and voting catalog",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Sync the mirror with the remote service")
    sync_parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit",
    )
    sync_parser.add_argument(
        "--check-votes",
        action="store_true",
        help="With --once, also check vote status changes",
    )
    sync_parser.set_defaults(func=cmd_sync)

    # Proposals command
    proposals_parser = subparsers.add_parser("proposals", help="List mirrored proposals")
    proposals_parser.add_argument("--category", choices=categories, default="all")
    proposals_parser.add_argument("--offset", type=int, default=0)
    proposals_parser.add_argument("--limit", type=int, default=0)
    proposals_parser.add_argument(
        "--oldest-first",
        action="store_true",
        help="Order by timestamp ascending",
    )
    proposals_parser.set_defaults(func=cmd_proposals)

    # Single proposal commands
    proposal_parser = subparsers.add_parser("proposal", help="Show a proposal by token")
    proposal_parser.add_argument("token")
    proposal_parser.add_argument(
        "--remote",
        action="store_true",
        help="Fetch from the remote service instead of the mirror",
    )
    proposal_parser.add_argument("--version", default=None, help="Proposal version (with --remote)")
    proposal_parser.set_defaults(func=cmd_proposal)

    proposal_id_parser = subparsers.add_parser("proposal-id", help="Show a proposal by local id")
    proposal_id_parser.add_argument("id", type=int)
    proposal_id_parser.set_defaults(func=cmd_proposal_id)

    vote_status_parser = subparsers.add_parser("vote-status", help="Show a proposal's vote status")
    vote_status_parser.add_argument("token")
    vote_status_parser.add_argument(
        "--remote",
        action="store_true",
        help="Fetch the live status from the remote service",
    )
    vote_status_parser.set_defaults(func=cmd_vote_status)

    # Count command
    count_parser = subparsers.add_parser("count", help="Count mirrored proposals")
    count_parser.add_argument("--category", choices=categories, default=None)
    count_parser.set_defaults(func=cmd_count)

    # Login command
    login_parser = subparsers.add_parser("login", help="Log in to the remote service")
    login_parser.add_argument("email")
    login_parser.set_defaults(func=cmd_login)

    # Status command
    status_parser = subparsers.add_parser("status", help="Show session and mirror status")
    status_parser.set_defaults(func=cmd_status)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    return asyncio.run(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
