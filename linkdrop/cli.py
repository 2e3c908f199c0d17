"""Command-line interface for the linkdrop application."""

from __future__ import annotations

import argparse
import logging
import os
import pprint
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__, pages, tokens
from .config import load_config, parse_env_config, read_logging_config
from .feeds import FeedError
from .server import serve
from .store import FeedStore

logger = logging.getLogger(__name__)

COMMANDS = ("serve", "gen-token", "fetch")


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. DEBUG, INFO, WARNING). Overrides LINKDROP_LOG.",
    )
    common.add_argument(
        "--log-file",
        default=None,
        help="Optional path to a log file. Overrides LINKDROP_LOG_FILE.",
    )
    common.add_argument(
        "--env-file",
        metavar="PATH",
        default=None,
        help="XML file of <variable> elements merged into the environment.",
    )

    parser = argparse.ArgumentParser(
        prog="linkdrop",
        description="Collect links to read or watch later in an Atom feed.",
    )
    parser.add_argument(
        "-V", "--version", action="version", version=f"linkdrop version {__version__}"
    )
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser(
        "serve",
        parents=[common],
        help="Serve the feed (the default when given a path).",
        description=(
            "Serve the feed stored at FEED_PATH. LINKDROP_PRIVATE_TOKEN and "
            "LINKDROP_FEED_TOKEN must be set; LINKDROP_ADDRESS and LINKDROP_PORT "
            "are optional."
        ),
    )
    serve_parser.add_argument("feed_path", metavar="FEED_PATH", help="Path to the Atom feed file.")
    serve_parser.set_defaults(handler=run_serve)

    token_parser = subparsers.add_parser(
        "gen-token", parents=[common], help="Print a new random token."
    )
    token_parser.add_argument(
        "--length",
        type=int,
        default=tokens.MIN_TOKEN_LENGTH,
        help="Number of characters in the token.",
    )
    token_parser.set_defaults(handler=run_gen_token)

    fetch_parser = subparsers.add_parser(
        "fetch", parents=[common], help="Fetch a page and print its metadata."
    )
    fetch_parser.add_argument("url", help="URL of the page to fetch.")
    fetch_parser.set_defaults(handler=run_fetch)

    return parser


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Per-connection chatter from requests' transport; only shown at INFO and up.
QUIET_LOGGERS = ("urllib3",)


def configure_logging(level_name: str, log_file: Optional[str] = None) -> None:
    """Route linkdrop and uvicorn records to stderr and optionally a file."""
    log_level = logging.getLevelName(level_name.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"Unsupported log level: {level_name}")

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.INFO))

    logger.debug(
        "Logging at %s to %s",
        logging.getLevelName(log_level),
        log_file or "stderr",
    )


def run_serve(args: argparse.Namespace) -> int:
    config = load_config(args.feed_path)
    logger.info("Active Configuration:\n%s", pprint.pformat(config.masked()))

    store = FeedStore.load(config.feed_path)
    serve(config, store)
    return 0


def run_gen_token(args: argparse.Namespace) -> int:
    if args.length < tokens.MIN_TOKEN_LENGTH:
        raise ValueError(
            f"--length must be at least {tokens.MIN_TOKEN_LENGTH} for the server to accept it"
        )
    print(tokens.generate(args.length))
    return 0


def run_fetch(args: argparse.Namespace) -> int:
    result = pages.fetch(args.url)
    if isinstance(result, pages.FetchFailure):
        print(f"unable to fetch page: {result.reason}")
        return 1

    print(f"title: {result.title!r}")
    print(f"description: {result.description!r}")
    if result.embed:
        print(f"embed: {result.embed.player_url}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    argv = list(sys.argv[1:] if argv is None else argv)
    if argv and argv[0] not in COMMANDS and argv[0] not in ("-h", "--help", "-V", "--version"):
        argv.insert(0, "serve")

    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_usage(sys.stderr)
        return 2

    try:
        if args.env_file:
            os.environ.update(parse_env_config(args.env_file))

        log_config = read_logging_config(os.environ)
        configure_logging(
            args.log_level or log_config.level, args.log_file or log_config.file
        )

        return args.handler(args)
    except ValueError as exc:
        parser.error(str(exc))
    except (FeedError, OSError) as exc:
        logger.error("%s", exc)
        return 1
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected error during execution.")
        return 1
