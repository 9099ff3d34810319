"""
Commit Source CLI.

Commands:
    run                  Poll a repository and stream its commits until interrupted
    checkpoint show      Print the stored checkpoint for a repository
    checkpoint clear     Delete the stored checkpoint for a repository
"""

import argparse
import json
import sys
from typing import Any, Dict, List, Optional

import redis
from dotenv import load_dotenv
from pydantic import ValidationError

from core.config import Settings
from core.logging import cli_logger as logger
from core.logging import bind_context, clear_context, configure_logging
from core.redis_client import connect_redis

from .checkpoint import RedisCheckpointStore
from .errors import CommitSourceError
from .service import CommitSourceService

# argparse dest -> Settings field
_RUN_OVERRIDES = {
    "repo": "github_repo",
    "start_time": "start_time",
    "poll_interval": "poll_interval_seconds",
    "max_window": "max_window_seconds",
    "sink": "sink_backend",
    "checkpoint": "checkpoint_backend",
    "log_level": "log_level",
}


def _load_settings(args: argparse.Namespace) -> Settings:
    """Environment settings with command-line flags layered on top."""
    overrides: Dict[str, Any] = {}
    for dest, field in _RUN_OVERRIDES.items():
        value = getattr(args, dest, None)
        if value is not None:
            overrides[field] = value
    return Settings(**overrides)


def cmd_run(args: argparse.Namespace) -> int:
    """Run the commit source until SIGINT/SIGTERM."""
    settings = _load_settings(args)
    configure_logging(settings.log_level)
    bind_context(source=settings.github_repo)

    service = CommitSourceService.from_settings(settings)
    print(f"\n{'=' * 60}\nStreaming commits from {settings.github_repo}\n{'=' * 60}\n")
    service.run()

    stats = service.engine.get_stats()
    print(f"\n{'=' * 60}")
    print(f"Stopped: {stats['records_emitted']} commits emitted over {stats['iterations']} polls")
    print(f"Cursor: {stats['cursor']}")
    print(f"{'=' * 60}\n")
    return 0


def _checkpoint_store(settings: Settings) -> Optional[RedisCheckpointStore]:
    if settings.checkpoint_backend != "redis":
        print("CHECKPOINT_BACKEND is 'memory'; checkpoints are not persisted between runs.")
        return None
    return RedisCheckpointStore(connect_redis(settings), key_prefix=settings.checkpoint_key_prefix)


def cmd_checkpoint(args: argparse.Namespace) -> int:
    """Inspect or delete a stored checkpoint."""
    settings = _load_settings(args)
    configure_logging(settings.log_level)

    if not settings.github_repo:
        print("Error: --repo or GITHUB_REPO is required")
        return 2
    bind_context(source=settings.github_repo)

    store = _checkpoint_store(settings)
    if store is None:
        return 0

    if args.action == "clear":
        removed = store.clear(settings.github_repo)
        print(f"Checkpoint for {settings.github_repo} {'cleared' if removed else 'not found'}")
        return 0

    snapshot = store.load(settings.github_repo)
    if snapshot is None:
        print(f"No checkpoint stored for {settings.github_repo}")
        return 0
    print(json.dumps(snapshot.model_dump(mode="json"), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="commit-source",
        description="Stream a GitHub repository's commit history with checkpointed progress",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Poll a repository until interrupted")
    run_parser.add_argument("--repo", help="Repository as owner/name (GITHUB_REPO)")
    run_parser.add_argument("--start-time", help="ISO-8601 start time when no checkpoint exists")
    run_parser.add_argument("--poll-interval", type=float, help="Seconds between polls")
    run_parser.add_argument("--max-window", type=int, help="Maximum window width in seconds")
    run_parser.add_argument("--sink", choices=["log", "redis"], help="Emission sink backend")
    run_parser.add_argument(
        "--checkpoint", choices=["memory", "redis"], help="Checkpoint store backend"
    )
    run_parser.add_argument("--log-level", help="Log level (DEBUG, INFO, ...)")

    # Checkpoint commands
    checkpoint_parser = subparsers.add_parser("checkpoint", help="Inspect stored checkpoints")
    checkpoint_parser.add_argument("action", choices=["show", "clear"])
    checkpoint_parser.add_argument("--repo", help="Repository as owner/name (GITHUB_REPO)")
    checkpoint_parser.add_argument("--log-level", help="Log level (DEBUG, INFO, ...)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    commands = {
        "run": cmd_run,
        "checkpoint": cmd_checkpoint,
    }

    if args.command not in commands:
        parser.print_help()
        return 2

    bind_context(command=args.command)
    try:
        return commands[args.command](args)
    except ValidationError as e:
        print(f"Error: invalid configuration\n{e}")
        return 2
    except (CommitSourceError, redis.RedisError) as e:
        logger.error("command_failed", error=str(e))
        print(f"Error: {e}")
        return 1
    finally:
        clear_context()


if __name__ == "__main__":
    sys.exit(main())
