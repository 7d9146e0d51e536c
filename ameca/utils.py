"""Small helpers shared by the bot's handlers."""

from __future__ import annotations

import os

from ameca.discord import Message


def bot_user_id() -> int:
    """The bot's own user id, read from the BOT_USER environment variable."""
    raw = os.environ.get("BOT_USER")
    if raw is None:
        raise RuntimeError("BOT_USER is not set")
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"invalid BOT_USER value: {raw!r}") from None


def check_if_author_is_bot(msg: Message) -> bool:
    """Whether the message was written by this bot."""
    return msg.author.id == bot_user_id()


def _trunc_div(a: int, b: int) -> int:
    quotient = abs(a) // b
    return quotient if a >= 0 else -quotient


def _trunc_mod(a: int, b: int) -> int:
    return a - b * _trunc_div(a, b)


def format_duration(total_seconds: int) -> str:
    """Render a number of seconds as days, hours, minutes and seconds."""
    days = _trunc_div(total_seconds, 86400)
    hours = _trunc_div(_trunc_mod(total_seconds, 86400), 3600)
    minutes = _trunc_div(_trunc_mod(total_seconds, 3600), 60)
    seconds = _trunc_mod(total_seconds, 60)
    return f"{days} Days {hours} Hours {minutes} Minutes {seconds} Seconds"