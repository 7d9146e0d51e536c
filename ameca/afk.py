"""AFK status: the afk command, welcome-back handling and mention notices."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from ameca.database import Database
from ameca.discord import DiscordHttpError, Member, Message
from ameca.framework import BotState, CommandContext, CommandError
from ameca.utils import check_if_author_is_bot, format_duration

log = logging.getLogger(__name__)

_USER_MENTION = re.compile(r"<@.{18}>")
_INTEGER = re.compile(r"[+-]?[0-9]+")

DEFAULT_REASON = "No reason provided"


def _mention_id(mention: str) -> int:
    raw = mention[2:-1]
    log.debug("UserID slice matched by regex: %s from %s", raw, mention)
    if not _INTEGER.fullmatch(raw):
        raise ValueError(f"invalid user id in mention {mention!r}")
    return int(raw)


def extract_mentions(content: str) -> list[int]:
    """The user ids of the mentions in a message, in order of appearance."""
    return [_mention_id(match.group()) for match in _USER_MENTION.finditer(content)]


def _require_guild(ctx: CommandContext) -> int:
    if ctx.guild_id is None:
        raise CommandError("This command can only be used in a guild")
    return ctx.guild_id


async def check_if_author_is_afk(db: Database, author: int, guild: int) -> bool:
    """Whether the member is marked AFK in the guild."""
    log.debug("Checking AFK status for user ID: %s in guild ID: %s", author, guild)
    is_afk = await db.get_afk(author, guild) is not None
    log.debug("AFK status for user ID %s in guild ID %s: %s", author, guild, is_afk)
    return is_afk


async def afk(ctx: CommandContext, reason: str | None = None) -> None:
    """Mark the author AFK, prefix their nickname and announce it."""
    guild_id = _require_guild(ctx)
    author = ctx.author.id
    db = ctx.state.db
    if await check_if_author_is_afk(db, author, guild_id):
        log.debug("Ignore AFK command since user is already afk")
    log.info("Received AFK command from user ID: %s, in guild ID: %s", author, guild_id)

    await ctx.defer()

    member = ctx.member or await ctx.state.http.get_member(guild_id, author)
    username = member.nick if member.nick is not None else member.user.name
    reason = reason if reason is not None else DEFAULT_REASON

    try:
        await ctx.state.http.edit_nickname(member.guild_id, member.user.id, f"[AFK] {username}")
    except DiscordHttpError as exc:
        log.error("Failed to set nickname for user ID: %s. Error: %r", author, exc)
        await ctx.say(f"Couldn't set nickname for user: {exc}")
    else:
        log.debug("Nickname successfully updated to [AFK] for user ID: %s", author)

    await db.set_afk(author, guild_id, datetime.now(timezone.utc), username, reason)
    await ctx.say(f"{username} is AFK: {reason}")
    log.info("Announced AFK status for user: %s", username)


async def unafk(state: BotState, member: Member) -> None:
    """Restore the member's previous nickname and clear their AFK entry."""
    member_id = member.user.id
    guild_id = member.guild_id
    entry = await state.db.get_afk(member_id, guild_id)
    if entry is None:
        raise LookupError(f"user {member_id} is not AFK in guild {guild_id}")
    previous_name = entry.previous_name
    log.debug("Previous username for user %s was %r", member_id, previous_name)

    try:
        await state.http.edit_nickname(guild_id, member_id, previous_name)
    except DiscordHttpError as exc:
        log.error("Error in setting nickname for user ID: %s. Error: %r", member_id, exc)
    else:
        log.debug("Nickname updated to %r for user ID: %s", previous_name, member_id)

    log.info("Removing AFK status for user ID: %s in guild ID: %s", member_id, guild_id)
    await state.db.remove_afk(member_id, guild_id)


async def check_afk(state: BotState, message: Message) -> None:
    """Welcome back an AFK author and report AFK members the message mentions."""
    if check_if_author_is_bot(message):
        return
    if message.guild_id is None:
        raise ValueError("message is not from a guild")

    guild_id = message.guild_id
    author_id = message.author.id

    is_afk = await check_if_author_is_afk(state.db, author_id, guild_id)
    if is_afk and not message.content.startswith("!afk"):
        member = await state.http.get_member(guild_id, author_id)
        await unafk(state, member)
        await state.http.send_message(message.channel_id, content=f"Welcome back <@{author_id}>")

    for user_id in extract_mentions(message.content):
        entry = await state.db.get_afk(user_id, guild_id)
        log.debug("Time of afk = %r", entry)
        if entry is None:
            continue
        name = (await state.http.get_user(user_id)).name
        total_seconds = int((datetime.now(timezone.utc) - entry.time_afk).total_seconds())
        content = (
            f"{name} is afk for `{format_duration(total_seconds)}`\nReason: {entry.reason}"
        )
        await state.http.send_message(message.channel_id, content=content)