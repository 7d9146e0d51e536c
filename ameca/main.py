"""Command-line entry point: configuration, logging, storage and the bot."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import sys
from dataclasses import dataclass
from logging.handlers import TimedRotatingFileHandler
from typing import Iterator, Sequence

from dotenv import find_dotenv, load_dotenv

from ameca.bot import Ameca
from ameca.database import Database

log = logging.getLogger(__name__)

_INTEGER = re.compile(r"[+-]?[0-9]+")
_LOG_DIR = "logs"
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(filename)s:%(lineno)d %(message)s"


@dataclass(frozen=True)
class Args:
    """Command-line options."""

    cache: bool = False
    shards: int = 1


def _parse_int(text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise ValueError(f"invalid number: {text!r}")
    return int(text)


def _next_value(args: Iterator[str], option: str) -> str:
    try:
        return next(args)
    except StopIteration:
        raise ValueError(f"missing argument for option '{option}'") from None


def parse_args(argv: Sequence[str] | None = None) -> Args:
    """Read ``-c/--cache`` and ``-s/--shards N``; other arguments are ignored."""
    cache = False
    shards = 1
    args = iter(sys.argv[1:] if argv is None else argv)
    for arg in args:
        if arg == "--":
            break
        if arg.startswith("--"):
            name, has_value, value = arg[2:].partition("=")
            if name == "shards":
                shards = _parse_int(value if has_value else _next_value(args, "--shards"))
            elif has_value:
                raise ValueError(f"unexpected argument for option '--{name}'")
            elif name == "cache":
                cache = True
        elif arg.startswith("-") and len(arg) > 1:
            flags = arg[1:]
            while flags:
                flag, flags = flags[0], flags[1:]
                if flag == "c":
                    cache = True
                elif flag == "s":
                    value = flags.removeprefix("=") if flags else _next_value(args, "-s")
                    shards = _parse_int(value)
                    flags = ""
    return Args(cache=cache, shards=shards)


async def database_init() -> Database:
    """Open the database named by DATABASE_URL and create its tables."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL must be set")
    log.info("Connecting to database at %s", url)
    path = url.removeprefix("sqlite://") if url.startswith("sqlite://") else url
    if url.startswith("sqlite:///"):
        path = url[len("sqlite://"):]
    db = await Database.connect(path)
    log.info("Running migrations")
    await db.create_schema()
    return db


def _configure_logging() -> None:
    os.makedirs(_LOG_DIR, exist_ok=True)
    formatter = logging.Formatter(_LOG_FORMAT)

    debug_file = TimedRotatingFileHandler(os.path.join(_LOG_DIR, "debug"), when="H")
    debug_file.setLevel(logging.DEBUG)
    warn_file = TimedRotatingFileHandler(os.path.join(_LOG_DIR, "warnings"), when="H")
    warn_file.setLevel(logging.WARNING)
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.DEBUG)

    root = logging.getLogger()
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "DEBUG").upper())
    root.setLevel(level if isinstance(level, int) else logging.DEBUG)
    for handler in (debug_file, warn_file, console):
        handler.setFormatter(formatter)
        root.addHandler(handler)


async def _serve(argv: Sequence[str] | None) -> None:
    db = await database_init()
    try:
        token = os.environ.get("DISCORD_TOKEN")
        if not token:
            raise RuntimeError("missing DISCORD_TOKEN")
        try:
            args = parse_args(argv)
        except ValueError as exc:
            log.debug("%r", exc)
            return
        log.debug("%r", args)
        bot = Ameca(token, db, cache=args.cache, shards=args.shards)
        await bot.run()
    finally:
        await db.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Load the environment, set up logging and run the bot until it stops."""
    if not load_dotenv(find_dotenv(usecwd=True)):
        raise SystemExit("Failed to read .env file")
    _configure_logging()
    asyncio.run(_serve(argv))
    return 0


if __name__ == "__main__":
    sys.exit(main())