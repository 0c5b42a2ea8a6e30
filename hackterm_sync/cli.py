"""
Command-line entry point.

    python -m hackterm_sync status
    python -m hackterm_sync register NEO --email neo@example.com
    python -m hackterm_sync recover ABCD-EFGH-IJKL
    python -m hackterm_sync logout
    python -m hackterm_sync watch
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .client import SyncClient
from .config import SyncConfig
from .events import CallbackEventSink, SyncEvent, SyncEventType
from .exceptions import ConfigurationError
from .identity import FileCredentialStore
from .logging_utils import LOGGER_NAMESPACE, configure_structured_logging
from .results import OperationResult


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hackterm-sync",
        description="HackTerm sync client",
        epilog="Settings come from HACKTERM_* environment variables unless --config is given.",
    )
    parser.add_argument("--config", type=Path, help="YAML config file with a 'sync:' section")
    parser.add_argument(
        "--json-logs", action="store_true", help="Emit structured JSON logs"
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("status", help="Show connectivity and the cached identity")

    register = commands.add_parser("register", help="Register a new handle")
    register.add_argument("handle")
    register.add_argument("--email", help="Contact email, where the backend asks for one")

    recover = commands.add_parser("recover", help="Restore an identity from its recovery code")
    recover.add_argument("code")

    commands.add_parser("logout", help="Forget the cached identity")
    commands.add_parser("watch", help="Connect and print realtime events until interrupted")
    return parser


def load_config(config_path: Path | None) -> SyncConfig:
    if config_path is not None:
        return SyncConfig.from_file(config_path)
    return SyncConfig.from_environment()


def print_event(event: SyncEvent) -> None:
    suffix = f" ({event.reason})" if event.reason else ""
    print(f"[{event.timestamp}] {event.event_type.value}{suffix}: {json.dumps(event.data, default=str)}")


def report(result: OperationResult) -> int:
    if result.ok:
        return 0
    print(f"Failed: {result.status.value} ({result.reason})", file=sys.stderr)
    return 1


async def run_command(args: argparse.Namespace, config: SyncConfig) -> int:
    sink = CallbackEventSink()
    client = SyncClient(config, FileCredentialStore(config.credentials_dir), sink)

    if args.command == "watch":
        sink.subscribe(None, print_event)
        async with client:
            print(f"Watching {config.realtime_url} (Ctrl+C to stop)")
            await asyncio.Event().wait()
        return 0

    await client.start(supervise=False)
    try:
        online = await client.check_connectivity()

        if args.command == "status":
            session = client.session
            print(f"Backend:   {config.api_url} ({'online' if online else 'offline'})")
            print(f"Client id: {client.client_id}")
            if session.has_token:
                print(f"Handle:    {session.handle}")
                print(f"Contact:   {session.contact_id or '-'}")
            else:
                print("Not registered.")
            return 0

        if args.command == "logout":
            result = await client.logout()
            print(f"Signed out {result.data.get('handle') or ''}".rstrip())
            return 0

        sink.subscribe(SyncEventType.REGISTRATION_FAILED, print_event)
        sink.subscribe(SyncEventType.RECOVERY_FAILED, print_event)
        if args.command == "register":
            result = await client.register(args.handle, email=args.email)
        else:
            result = await client.recover(args.code)

        if result.ok:
            session = client.session
            print(f"Signed in as {session.handle}")
            if session.recovery_code:
                print(f"Recovery code: {session.recovery_code} (keep it somewhere safe)")
        return report(result)
    finally:
        await client.stop()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    level = getattr(logging, config.log_level.upper(), logging.INFO)
    if args.json_logs:
        configure_structured_logging(level=level, logger_name=LOGGER_NAMESPACE)
    else:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        exit_code = asyncio.run(run_command(args, config))
    except KeyboardInterrupt:
        print("\nStopped.")
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
