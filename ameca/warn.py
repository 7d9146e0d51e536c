"""Warnings: issuing, listing and clearing them, and actions at warning limits."""

from __future__ import annotations

import enum
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from ameca.discord import Embed, Member, Permissions
from ameca.framework import CommandContext, CommandError

log = logging.getLogger(__name__)

_YELLOW = 0xFFFF00
_NO_REASON = "None provided"
_MIN_LIMIT = 2
_MAX_LIMIT = 100
_TIMEOUT = timedelta(hours=1)


class WarnTrigger(enum.Enum):
    """What happens to a member who reaches a warning limit."""

    BAN = "ban"
    MUTE = "mute"
    KICK = "kick"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def parse(cls, value: str) -> WarnTrigger:
        """The trigger named by ``value``, case-insensitively; anything unknown mutes."""
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.MUTE

    def __str__(self) -> str:
        return self.value


_LABELS = {
    WarnTrigger.BAN: "Ban the user",
    WarnTrigger.MUTE: "Timeout the user",
    WarnTrigger.KICK: "Kick the user",
}


def _require_guild(ctx: CommandContext) -> int:
    if ctx.guild_id is None:
        raise CommandError("This command can only be used in a guild")
    return ctx.guild_id


async def process_triggers(
    ctx: CommandContext, triggers: Iterable[Any], member_id: int, guild_id: int
) -> None:
    """Carry out every trigger whose limit the member's warnings have reached."""
    http = ctx.state.http
    for trigger in triggers:
        current = await ctx.state.db.warning_count(guild_id, member_id)
        log.debug(
            "Current warning: %s Limit: %s Action: %s", current, trigger.limit, trigger.action
        )
        if trigger.limit > current:
            continue
        action = WarnTrigger.parse(trigger.action)
        if action is WarnTrigger.BAN:
            await http.ban_user(guild_id, member_id, "Warning for bans trigger limit reached")
        elif action is WarnTrigger.MUTE:
            await http.timeout_member(guild_id, member_id, datetime.now(timezone.utc) + _TIMEOUT)
        else:
            await http.kick_member(guild_id, member_id, "Warning for kick trigger limit reached")


async def warn(ctx: CommandContext, member: Member, reason: str | None = None) -> None:
    """Issue a warning to a member, apply triggers and log it."""
    guild_id = _require_guild(ctx)
    user = member.user
    await ctx.defer()

    protected = Permissions.ADMINISTRATOR | Permissions.MANAGE_GUILD | Permissions.MANAGE_MESSAGES
    if member.permissions & protected:
        await ctx.say("You are not allowed to warn this user")
        return

    db = ctx.state.db
    await db.add_warning(guild_id, user.id)
    log.info("Set warning relationship for user %s in guild %s", user.id, guild_id)
    count = await db.warning_count(guild_id, user.id)

    triggers = await db.warn_triggers(guild_id)
    if triggers:
        await process_triggers(ctx, triggers, user.id, guild_id)

    reason_text = reason if reason is not None else _NO_REASON
    await ctx.say(
        f"<@{user.id}> you have been warned. You have been warned {count} times.\n"
        f"Reason: {reason_text}"
    )

    embed = Embed(title="Warning issued", color=_YELLOW)
    embed.add_field("User", user.name, False)
    embed.add_field("Total Warnings", str(count), False)
    embed.add_field("Reason", reason_text, False)
    await ctx.state.send_to_logging_channel(embed, guild_id)


async def show_warnings(ctx: CommandContext, member: Member) -> None:
    """Post how many warnings a member has."""
    guild_id = _require_guild(ctx)
    await ctx.say("Fetching data...")
    count = await ctx.state.db.warning_count(guild_id, member.user.id)
    username = member.nick if member.nick is not None else member.user.name
    embed = Embed(title="Warning issued", color=_YELLOW)
    embed.add_field("User", username, False)
    embed.add_field("Total Warnings", str(count), False)
    await ctx.send_embed(embed)


async def clear_warnings(ctx: CommandContext, member: Member) -> None:
    """Remove every warning issued to a member."""
    guild_id = _require_guild(ctx)
    await ctx.defer()
    await ctx.state.db.clear_warnings(guild_id, member.user.id)
    await ctx.say("Removed any warnings issued to the user")


async def warn_trigger(ctx: CommandContext, choice: WarnTrigger | str, limit: int) -> None:
    """Register an action to take once a member reaches ``limit`` warnings."""
    if not _MIN_LIMIT <= limit <= _MAX_LIMIT:
        raise CommandError(f"limit must be between {_MIN_LIMIT} and {_MAX_LIMIT}")
    guild_id = _require_guild(ctx)
    await ctx.defer()
    if not isinstance(choice, WarnTrigger):
        choice = WarnTrigger.parse(choice)
    log.info(
        "Setting new warnings trigger for guild: %s at limit: %s; do: %s", guild_id, limit, choice
    )
    await ctx.state.db.add_warn_trigger(guild_id, choice.value, limit)
    await ctx.say("Set triggers")