"""Commands that register and deregister a guild's logging channel."""

from __future__ import annotations

import logging
import sqlite3

from ameca.database import Channel, Database
from ameca.framework import CommandContext, CommandError

log = logging.getLogger(__name__)


def _require_guild(ctx: CommandContext) -> int:
    if ctx.guild_id is None:
        raise CommandError("This command can only be used in a guild")
    return ctx.guild_id


async def autocomplete_channel(ctx: CommandContext, partial: str) -> list[str]:
    """Names of the guild's stored channels that start with ``partial``."""
    guild_id = _require_guild(ctx)
    channels = await ctx.state.db.channels_for_guild(guild_id)
    return [channel.channel_name for channel in channels if channel.channel_name.startswith(partial)]


async def check_existing_log_channel(db: Database, guild_id: int) -> Channel | None:
    """The guild's registered logging channel, if any."""
    return await db.get_logging_channel(guild_id)


async def add(ctx: CommandContext, channel_id: int) -> None:
    """Register a channel as the guild's logging channel."""
    guild_id = _require_guild(ctx)
    await ctx.defer()
    try:
        existing = await check_existing_log_channel(ctx.state.db, guild_id)
    except sqlite3.Error as exc:
        log.error("Error checking existing logging channel for guild %s: %s", guild_id, exc)
        await ctx.say("Error checking existing logging channel")
        raise
    if existing is not None:
        await ctx.say("Logging channel already registered")
        await ctx.say(
            f"Deregister existing channel {existing.channel_id} <{existing.channel_name}>"
        )
        return

    log.info("Setting up logging channel: %s for guild %s", channel_id, guild_id)
    try:
        affected = await ctx.state.db.set_logging_channel(guild_id, channel_id)
    except sqlite3.Error as exc:
        await ctx.say("Unable to set logging channel!")
        log.error("%r", exc)
        return
    log.debug("Insertion affected %s rows", affected)
    await ctx.say("Set logging channel successfully")


async def remove(ctx: CommandContext) -> None:
    """Deregister the guild's logging channel."""
    guild_id = _require_guild(ctx)
    try:
        affected = await ctx.state.db.clear_logging_channel(guild_id)
    except sqlite3.Error as exc:
        await ctx.say(f"Failed to delete logging channel: {exc}")
        log.error("Failed to delete logging channel for guild %s: %s", guild_id, exc)
        return
    if affected == 0:
        await ctx.say("No logging channel to deregister for this guild!")
    else:
        await ctx.say("Logging channel was successfully removed.")