"""Automatic moderation: message logging, banned-pattern enforcement and deletion logs."""

from __future__ import annotations

import logging
import re
import sqlite3
from datetime import timezone

from ameca.database import DbMessage
from ameca.discord import Embed, Message
from ameca.framework import BotState
from ameca.utils import bot_user_id, check_if_author_is_bot

log = logging.getLogger(__name__)

# Guild id used for lookups when a message carries none.
_FALLBACK_GUILD_ID = 1231232131231
_RED = 0xFF0000
VIOLATION_NOTICE = "Message removed because of violation!"


async def cache_roles(state: BotState) -> None:
    """Reload the watched reaction roles, grouped by guild."""
    state.watch_msgs.clear()
    for role in await state.db.reaction_roles():
        log.debug("Caching role to map %r", role)
        state.watch_msgs.setdefault(role.guild_id, []).append(role)


async def cache_regex(state: BotState) -> None:
    """Reload and compile every guild's banned patterns."""
    state.cached_regex.clear()
    for banned in await state.db.banned_patterns():
        compiled = re.compile(banned.pattern)
        log.debug("Caching regex to map %r", compiled)
        state.cached_regex.setdefault(banned.guild_id, []).append(compiled)


async def analyse_word(state: BotState, msg: Message) -> bool:
    """Whether the message matches one of its guild's banned patterns."""
    if not state.cached_regex:
        await cache_regex(state)
    guild_id = msg.guild_id if msg.guild_id is not None else _FALLBACK_GUILD_ID
    patterns = state.cached_regex.get(guild_id)
    if patterns is None:
        log.debug("No regex rule for guild %s", guild_id)
        return False
    return any(pattern.search(msg.content) for pattern in patterns)


async def _analyse_msg(state: BotState, msg: Message) -> None:
    if msg.author.id == bot_user_id():
        return
    if await analyse_word(state, msg):
        log.info(
            "Removing banned word in sentence %s by %s: %s",
            msg.content,
            msg.author.name,
            msg.guild_id,
        )
        await state.http.delete_message(msg.channel_id, msg.id)
        await state.http.send_message(msg.channel_id, content=VIOLATION_NOTICE)


async def on_new_msg(state: BotState, message: Message) -> None:
    """Store a guild message and run the automod rules over it."""
    if message.guild_id is None:
        log.debug("BOT DM: %s (Message is not sent in a guild!)", message.content)
        return
    if check_if_author_is_bot(message):
        return

    if message.embeds:
        to_print = "\n".join(f"EMBED({embed!r})" for embed in message.embeds)
    else:
        to_print = message.content
    log.info(
        "New message: %s %s in %s:%s",
        to_print,
        message.author.name,
        message.guild_id,
        message.channel_id,
    )

    channel = await state.http.get_channel(message.channel_id)
    if channel.guild_id is None:
        raise ValueError(f"channel {channel.id} is not a guild channel")
    try:
        await state.db.new_message(message, channel)
    except sqlite3.Error as exc:
        log.error(
            "Unable to store message in db (author %s, guild %s, channel %s): %s",
            message.author.name,
            message.guild_id,
            message.channel_id,
            exc,
        )

    await _analyse_msg(state, message)


async def log_msg_delete(state: BotState, msg: DbMessage, guild_id: int) -> Message | None:
    """Post a deleted message to the guild's logging channel."""
    moment = msg.time.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    embed = Embed(
        title="Deleted Message",
        description=(
            f"Content: {msg.content}\nTime:{moment}\n"
            f"Channel:<#{msg.channel_id}>\nAuthor:<@{msg.author_id}>"
        ),
        color=_RED,
    )
    return await state.send_to_logging_channel(embed, guild_id)


async def on_msg_delete(
    state: BotState, channel_id: int, message_id: int, guild_id: int | None
) -> DbMessage | None:
    """Mark a deleted message in storage and log it; return it if it was stored."""
    log.debug("Message deleted in channel %s: %s", channel_id, message_id)
    if guild_id is None:
        raise ValueError("deleted message has no guild")
    try:
        stored = await state.db.fetch_message(message_id)
    except sqlite3.Error as exc:
        log.error(
            "Unable to fetch message in db (channel %s, guild %s): %s", channel_id, guild_id, exc
        )
        return None
    if stored is None:
        log.warning(
            "Deleted message %s unavailable in the database (channel %s, guild %s)",
            message_id,
            channel_id,
            guild_id,
        )
        return None
    await state.db.mark_deleted(stored)
    await log_msg_delete(state, stored, guild_id)
    return stored