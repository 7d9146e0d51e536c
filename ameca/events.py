"""Gateway event handlers for members joining and leaving and for reactions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from ameca.automod import cache_roles
from ameca.discord import DiscordHttpError, Embed, Member, Reaction, User
from ameca.framework import BotState
from ameca.utils import bot_user_id, format_duration

log = logging.getLogger(__name__)

_GREEN = 0x00FF00
_RED = 0xFF0000
_AUTHOR = "AMECA"


async def on_user_join(state: BotState, member: Member) -> None:
    """Log a member joining and record when they joined."""
    guild_id = member.guild_id
    now = datetime.now(timezone.utc)
    embed = Embed(title=f"{member.user.name} joined!", color=_GREEN, author_name=_AUTHOR)
    embed.add_field("Join Time", f"`{now}`", False)
    embed.add_field("User Details", f"id: {member.user.id}", False)
    log.info("User %s has joined the guild %s", member.user.name, guild_id)
    await state.send_to_logging_channel(embed, guild_id)
    await state.db.mark_user_in_guild(member.user, guild_id, now)


async def user_leave(state: BotState, guild_id: int, user: User) -> None:
    """Log a member leaving, with how long they stayed."""
    time_of_join = await state.db.get_user_join_time(user, guild_id)
    now = datetime.now(timezone.utc)
    total_seconds = int((now - time_of_join).total_seconds())

    embed = Embed(title=f"{user.name} left", color=_RED, author_name=_AUTHOR)
    embed.add_field("Join Time", f"`{time_of_join}`", False)
    embed.add_field("Leave Time", f"`{now}`", False)
    embed.add_field("Time of stay ", f"`{format_duration(total_seconds)}`", False)
    embed.add_field("User Details", f"id: {user.id}", False)
    log.info("User %s has left the guild %s", user.name, guild_id)
    await state.send_to_logging_channel(embed, guild_id)


async def is_reaction_watched(state: BotState, reaction: Reaction) -> Any | None:
    """The reaction-role entry the reaction's emoji matches in its guild, if any."""
    if not state.watch_msgs:
        log.info("Caching role reactions I have to react to!")
        await cache_roles(state)
    if reaction.guild_id is None:
        log.debug("Reaction in channel %s is not in a guild", reaction.channel_id)
        return None
    if reaction.message_author_id == bot_user_id():
        return None
    for role in state.watch_msgs.get(reaction.guild_id, []):
        if reaction.emoji == role.emoji:
            return role
    return None


def _reacting_user(reaction: Reaction) -> int:
    if reaction.user_id is None:
        raise ValueError("reaction has no user")
    return reaction.user_id


async def reaction_add(state: BotState, reaction: Reaction) -> Any | None:
    """Grant the watched role for a new reaction; return the matched entry."""
    role = await is_reaction_watched(state, reaction)
    if role is None:
        return None
    user_id = _reacting_user(reaction)
    log.info("Updating roles for %s for reacting to watched msg!", user_id)
    try:
        await state.http.add_member_role(
            reaction.guild_id,
            user_id,
            role.roles_id,
            reason=f"Assigning role for reaction to message. (WatchID: {role.roles_id})",
        )
    except DiscordHttpError as exc:
        log.info("Error assigning roles %r", exc)
    return role


async def reaction_delete(state: BotState, reaction: Reaction) -> Any | None:
    """Take the watched role away when its reaction is removed; return the matched entry."""
    role = await is_reaction_watched(state, reaction)
    if role is None:
        return None
    user_id = _reacting_user(reaction)
    log.info("Updating roles for %s for removing reaction to watched msg!", user_id)
    try:
        await state.http.remove_member_role(
            reaction.guild_id,
            user_id,
            role.roles_id,
            reason=(
                "Removing role from user due to removing reaction. "
                f"(WatchID: {role.roles_id})"
            ),
        )
    except DiscordHttpError as exc:
        log.info("Error removing roles %r", exc)
    return role