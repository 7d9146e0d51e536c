"""Commands that tie a reaction on a message to a guild role."""

from __future__ import annotations

import logging
import sqlite3

from ameca.automod import cache_roles
from ameca.discord import DiscordHttpError, Embed
from ameca.framework import CommandContext, CommandError

log = logging.getLogger(__name__)

_GREEN = 0x00F400
_PURPLE = 0xDC00DC
_AUTHOR = "AMECA_NEXT"
_MESSAGE_LINK = "https://discord.com/channels/{guild}/{channel}/{message}"


def _require_guild(ctx: CommandContext) -> int:
    if ctx.guild_id is None:
        raise CommandError("This command can only be used in a guild")
    return ctx.guild_id


async def autocomplete_roles(ctx: CommandContext, partial: str) -> list[str]:
    """Names of the guild's reaction-role entries that start with ``partial``."""
    guild_id = _require_guild(ctx)
    roles = await ctx.state.db.reaction_roles(guild_id)
    return [role.name for role in roles if role.name.startswith(partial)]


async def stopbyid(ctx: CommandContext, msg_id: int) -> None:
    """Stop watching every reaction on one message."""
    guild_id = _require_guild(ctx)
    await ctx.defer()
    log.info("Removing role entries for message %s in guild %s", msg_id, guild_id)
    await ctx.state.db.delete_reaction_roles_for_message(guild_id, msg_id)
    await cache_roles(ctx.state)
    await ctx.say("Stopped watching reactions!")


async def stop(ctx: CommandContext, name: str) -> None:
    """Stop watching the reaction-role entry with the given name."""
    guild_id = _require_guild(ctx)
    log.info("Removing role entry `%s` from database", name)
    await ctx.state.db.delete_reaction_role_by_name(guild_id, name)
    await cache_roles(ctx.state)
    embed = Embed(title=f"Deleting watch entry `{name}`", color=_GREEN, author_name=_AUTHOR)
    await ctx.state.send_to_logging_channel(embed, guild_id)
    await ctx.say("Removed rule from database")


async def add(ctx: CommandContext, msg_id: int, emoji: str, role_id: int, name: str) -> None:
    """React to a stored message and grant ``role_id`` to whoever adds that reaction."""
    guild_id = _require_guild(ctx)
    await ctx.defer()
    log.debug("Setting up reaction role %s %s for role %s", msg_id, emoji, role_id)

    db = ctx.state.db
    http = ctx.state.http
    channel_id = await db.channel_of_message(msg_id)
    if channel_id is None:
        raise LookupError(f"message {msg_id} is not stored")

    try:
        message = await http.get_message(channel_id, msg_id)
    except DiscordHttpError as exc:
        log.error("Error getting message: %s", exc)
        raise

    try:
        await http.add_reaction(channel_id, message.id, emoji)
    except DiscordHttpError as exc:
        await ctx.say(
            "Something went wrong reacting to the message! Check the emoji / bot perms"
        )
        log.error(
            "Error in reacting to watched message %s in channel %s: %s",
            message.id,
            channel_id,
            exc,
        )
        await ctx.say(str(exc))
        return

    await ctx.say("Set reaction  to msg!")
    try:
        await db.new_reaction_role(msg_id, role_id, guild_id, name, emoji)
    except sqlite3.Error as exc:
        log.error("Error in setting role-msg relation %r", exc)
        await ctx.say("Error in setting role-msg relation. Check logs for more detail")
        embed = Embed(title="Failed to save to database", color=_PURPLE, author_name=_AUTHOR)
        embed.add_field("Error", f"```\n{exc!r}```", False)
        await ctx.state.send_to_logging_channel(embed, guild_id)
        return

    await cache_roles(ctx.state)
    link = _MESSAGE_LINK.format(guild=guild_id, channel=channel_id, message=msg_id)
    await ctx.say(f"Watching {link} for reactions!")