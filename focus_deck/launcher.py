from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Optional

from version import describe_build

from .config_loader import ConfigError, DeckConfig, load_config, resolve_config_path
from .logging_utils import configure_logging, get_logger
from .messages import load_message_catalog
from .orchestrator import SessionOrchestrator

LOGGER = get_logger()

EXIT_OK = 0
EXIT_SESSION_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def resolve_messages_path(args_messages: Optional[str], config_path: Path) -> Optional[Path]:
    if args_messages:
        return Path(args_messages).expanduser().resolve()
    env_override = os.getenv("FOCUS_DECK_MESSAGES")
    if env_override:
        return Path(env_override).expanduser().resolve()
    candidate = config_path.parent / "messages.json"
    return candidate if candidate.exists() else None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="focus-game-deck",
        description="Reconfigure companion apps while a game runs, then restore them.",
    )
    parser.add_argument("game_id", nargs="?", help="Game identifier from config.json")
    parser.add_argument("--config", help="Path to config.json (default: $FOCUS_DECK_CONFIG or ./config/config.json)")
    parser.add_argument("--messages", help="Path to messages.json with localized log text")
    parser.add_argument("--no-launch", action="store_true", help="Do not start the game; only wait for it")
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--log-file", help="Also write logs to this file (rotated)")
    parser.add_argument("--list-games", action="store_true", help="List configured games and exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {describe_build()}")
    return parser


def _print_games(config: DeckConfig) -> None:
    for game_id, game in sorted(config.games.items()):
        apps = ", ".join(game.integration_ids) or "-"
        print(f"{game_id}\t{game.name}\t{game.process_pattern}\t[{apps}]")


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, Path(args.log_file) if args.log_file else None)

    config_path = resolve_config_path(args.config)
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        LOGGER.error("%s", exc)
        return EXIT_CONFIG_ERROR

    if args.list_games:
        _print_games(config)
        return EXIT_OK
    if not args.game_id:
        parser.print_usage(sys.stderr)
        LOGGER.error("A game identifier is required (use --list-games to see them)")
        return EXIT_SESSION_FAILED

    catalog = load_message_catalog(resolve_messages_path(args.messages, config_path), config.language or None)
    LOGGER.info("Focus Game Deck %s (pid=%s)", describe_build(), os.getpid())
    LOGGER.debug("Configuration: %s; messages language: %s", config_path, catalog.language)

    orchestrator = SessionOrchestrator(config, translate=catalog.lookup, launch_game=not args.no_launch)
    try:
        completed = orchestrator.run(args.game_id)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    return EXIT_OK if completed else EXIT_SESSION_FAILED


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
