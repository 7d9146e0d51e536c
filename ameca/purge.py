"""The purge command: bulk-delete recent messages in a channel."""

from __future__ import annotations

from ameca.framework import CommandContext, CommandError

MIN_PURGE = 2
MAX_PURGE = 300


async def purge(ctx: CommandContext, number_to_purge: int) -> None:
    """Delete the given number of messages before the bot's announcement."""
    if not MIN_PURGE <= number_to_purge <= MAX_PURGE:
        raise CommandError(f"number_to_purge must be between {MIN_PURGE} and {MAX_PURGE}")

    announcement = await ctx.say("Purging channel!!")
    channel = await ctx.state.http.get_channel(ctx.channel_id)
    if channel.guild_id is None:
        raise CommandError("This channel is not in a guild")

    # The fetch limit is a single byte, so larger counts wrap around.
    limit = number_to_purge & 0xFF
    messages = await ctx.state.http.get_messages(channel.id, before=announcement.id, limit=limit)
    await ctx.state.http.delete_messages(channel.id, [msg.id for msg in messages])
    await ctx.say(f"Deleted {number_to_purge} messages!! UwU")