"""Commands that ban and unban regular-expression patterns per guild."""

from __future__ import annotations

import logging
import re

from ameca.automod import cache_regex
from ameca.discord import Embed
from ameca.framework import CommandContext, CommandError

log = logging.getLogger(__name__)

_GREEN = 0x00F400
_PURPLE = 0xDC00DC
_AUTHOR = "AMECA_NEXT"


def _require_guild(ctx: CommandContext) -> int:
    if ctx.guild_id is None:
        raise CommandError("This command can only be used in a guild")
    return ctx.guild_id


async def autocomplete_pattern(ctx: CommandContext, partial: str) -> list[str]:
    """Names of the guild's banned patterns that start with ``partial``."""
    guild_id = _require_guild(ctx)
    patterns = await ctx.state.db.banned_patterns(guild_id)
    return [item.name for item in patterns if item.name.startswith(partial)]


async def ban_pattern(ctx: CommandContext, name: str, pattern: str) -> None:
    """Store a new banned pattern and start enforcing it."""
    guild_id = _require_guild(ctx)
    author = ctx.author.id
    try:
        compiled = re.compile(pattern)
    except re.error as exc:
        compiled = None
        error = exc

    await ctx.defer()
    if compiled is None:
        log.debug("Error compiling regex pattern %s for guild %s", pattern, guild_id)
        await ctx.say("Error in compiling regular expression pattern")
        embed = Embed(title="Failed to parse regex", color=_PURPLE, author_name=_AUTHOR)
        embed.add_field("Error", f"Pattern: {pattern} ```\n{error}```", True)
        await ctx.send_embed(embed)
        return

    await ctx.say("Regex compiled! Enforcing pattern starting from now!")
    await ctx.state.db.add_banned_pattern(name, pattern, author, guild_id)
    ctx.state.cached_regex.setdefault(guild_id, []).append(compiled)
    log.info("Stored new regex entry `%s` for `%s`", name, guild_id)

    embed = Embed(title=f"Storing regex entry `{name}`", color=_GREEN, author_name=_AUTHOR)
    embed.add_field("Pattern", f"```\n{pattern}```", False)
    await ctx.state.send_to_logging_channel(embed, guild_id)


async def remove_banned_pattern(ctx: CommandContext, name: str) -> None:
    """Delete a banned pattern by name and reload the pattern cache."""
    guild_id = _require_guild(ctx)
    log.info("Removing regex entry `%s` from database", name)
    await ctx.state.db.remove_banned_pattern(guild_id, name)
    await cache_regex(ctx.state)
    embed = Embed(title=f"Deleting regex entry `{name}`", color=_GREEN, author_name=_AUTHOR)
    await ctx.say("Removed rule from database")
    await ctx.state.send_to_logging_channel(embed, guild_id)