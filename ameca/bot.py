"""The bot: its command table, gateway event handling, data caching and shard connections."""

from __future__ import annotations

import asyncio
import json
import logging
import random
import re
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable

import aiohttp

from ameca import afk as afk_commands
from ameca import banned_patterns as pattern_commands
from ameca import log_channel as log_channel_commands
from ameca import reaction_roles as reaction_role_commands
from ameca import warn as warn_commands
from ameca.automod import on_msg_delete, on_new_msg
from ameca.database import Database
from ameca.discord import (
    DiscordHttp,
    DiscordHttpError,
    GuildChannel,
    Member,
    Message,
    Permissions,
    Reaction,
    User,
)
from ameca.events import on_user_join, reaction_add, reaction_delete, user_leave
from ameca.framework import (
    BotState,
    Command,
    CommandContext,
    CommandError,
    Framework,
    help_command,
    servers,
)
from ameca.purge import purge
from ameca.ship import ship
from ameca.utils import bot_user_id

log = logging.getLogger(__name__)

TEXT_CHANNEL = 0
CACHE_INTERVAL = 3600.0
LATENCY_REPORT_INTERVAL = 3600.0
_HISTORY_LIMIT = 100
_IDENTIFY_SPACING = 5.0

_GUILDS = 1 << 0
_GUILD_MEMBERS = 1 << 1
_GUILD_PRESENCES = 1 << 8
_GUILD_MESSAGES = 1 << 9
_GUILD_MESSAGE_REACTIONS = 1 << 10
_MESSAGE_CONTENT = 1 << 15
_AUTO_MODERATION_CONFIGURATION = 1 << 20
_AUTO_MODERATION_EXECUTION = 1 << 21
_PRIVILEGED = _GUILD_MEMBERS | _GUILD_PRESENCES | _MESSAGE_CONTENT

INTENTS = (
    _AUTO_MODERATION_CONFIGURATION
    | _GUILD_MESSAGES
    | _GUILD_MESSAGE_REACTIONS
    | _AUTO_MODERATION_EXECUTION
    | _GUILDS
    | _GUILD_MEMBERS
    | _PRIVILEGED
)

_FATAL_CLOSE_CODES = frozenset({4004, 4010, 4011, 4012, 4013, 4014})
_SNOWFLAKE = re.compile(r"<(?:@!?|@&|#)(\d+)>|(\d+)")


def _snowflake(text: str) -> int:
    """An id given plainly or as a user, role or channel mention."""
    match = _SNOWFLAKE.fullmatch(text.strip())
    if match is None:
        raise ValueError(f"not an id or mention: {text!r}")
    return int(match.group(1) or match.group(2))


def _timestamp(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _guild_of(ctx: CommandContext) -> int:
    if ctx.guild_id is None:
        raise CommandError("This command can only be used in a guild")
    return ctx.guild_id


async def _fetch_member(ctx: CommandContext, user_id: int) -> Member:
    return await ctx.state.http.get_member(_guild_of(ctx), user_id)


async def _ship(ctx: CommandContext, first_id: int | None, second_id: int | None) -> None:
    http = ctx.state.http
    user1 = await http.get_user(first_id) if first_id is not None else None
    user2 = await http.get_user(second_id) if second_id is not None else None
    await ship(ctx, user1, user2)


async def _warn(ctx: CommandContext, user_id: int, reason: str | None) -> None:
    await warn_commands.warn(ctx, await _fetch_member(ctx, user_id), reason)


async def _show_warnings(ctx: CommandContext, user_id: int) -> None:
    await warn_commands.show_warnings(ctx, await _fetch_member(ctx, user_id))


async def _clear_warnings(ctx: CommandContext, user_id: int) -> None:
    await warn_commands.clear_warnings(ctx, await _fetch_member(ctx, user_id))


async def _group(ctx: CommandContext) -> None:
    """Parent of subcommands; never run because a subcommand is required."""


def build_framework() -> Framework:
    """The prefix framework with every bot command registered."""
    framework = Framework(prefix="!")
    manage_messages = Permissions.MANAGE_MESSAGES
    manage_channels = Permissions.MANAGE_CHANNELS
    manage_roles = Permissions.MANAGE_ROLES
    kick = Permissions.KICK_MEMBERS

    framework.register(
        Command(
            "afk",
            afk_commands.afk,
            description="Mark yourself as away",
            category="utility",
            guild_only=True,
            converters=(str,),
            rest=True,
        )
    )
    framework.register(
        Command(
            "log_channel",
            _group,
            description="Manage the logging channel",
            category="administration",
            guild_only=True,
            subcommand_required=True,
            subcommands=(
                Command(
                    "add",
                    log_channel_commands.add,
                    description="Select logging channel",
                    category="administration",
                    guild_only=True,
                    required_permissions=manage_channels,
                    converters=(_snowflake,),
                    min_args=1,
                ),
                Command(
                    "remove",
                    log_channel_commands.remove,
                    description="Deregister the logging channel",
                    category="administration",
                    guild_only=True,
                    required_permissions=manage_channels,
                ),
            ),
        )
    )
    framework.register(
        Command(
            "purge",
            purge,
            description="Delete recent messages",
            category="moderation",
            guild_only=True,
            required_permissions=manage_messages,
            converters=(int,),
            min_args=1,
        )
    )
    framework.register(
        Command(
            "ban_pattern",
            pattern_commands.ban_pattern,
            description="Ban a pattern with regex",
            category="moderation",
            guild_only=True,
            required_permissions=manage_messages,
            converters=(str, str),
            min_args=2,
            rest=True,
        )
    )
    framework.register(
        Command(
            "remove_banned_pattern",
            pattern_commands.remove_banned_pattern,
            description="Unban regex pattern",
            category="moderation",
            guild_only=True,
            required_permissions=manage_messages,
            converters=(str,),
            min_args=1,
            rest=True,
        )
    )
    framework.register(
        Command(
            "reactionrole",
            _group,
            description="Grant roles for reactions to a message",
            category="administration",
            guild_only=True,
            subcommand_required=True,
            subcommands=(
                Command(
                    "stop",
                    reaction_role_commands.stop,
                    description="Stop a watch entry by name",
                    category="administration",
                    guild_only=True,
                    required_permissions=manage_roles,
                    converters=(str,),
                    min_args=1,
                    rest=True,
                ),
                Command(
                    "add",
                    reaction_role_commands.add,
                    description="Watch a message for a reaction",
                    category="administration",
                    guild_only=True,
                    required_permissions=manage_roles,
                    converters=(_snowflake, str, _snowflake, str),
                    min_args=4,
                    rest=True,
                ),
                Command(
                    "stopbyid",
                    reaction_role_commands.stopbyid,
                    description="Stop watching all reactions for a particular message",
                    category="administration",
                    guild_only=True,
                    required_permissions=manage_roles,
                    converters=(_snowflake,),
                    min_args=1,
                ),
            ),
        )
    )
    framework.register(
        Command(
            "ship",
            _ship,
            description="How compatible are two users?",
            category="entertainment",
            guild_only=True,
            converters=(_snowflake, _snowflake),
        )
    )
    framework.register(
        Command(
            "warnings",
            _warn,
            description="Warn a member",
            category="moderation",
            guild_only=True,
            required_permissions=kick,
            aliases=("warn",),
            converters=(_snowflake, str),
            min_args=1,
            rest=True,
            subcommands=(
                Command(
                    "show_warnings",
                    _show_warnings,
                    category="moderation",
                    guild_only=True,
                    required_permissions=kick,
                    converters=(_snowflake,),
                    min_args=1,
                ),
                Command(
                    "clear_warnings",
                    _clear_warnings,
                    category="moderation",
                    guild_only=True,
                    required_permissions=kick,
                    converters=(_snowflake,),
                    min_args=1,
                ),
                Command(
                    "warn",
                    _warn,
                    category="moderation",
                    guild_only=True,
                    required_permissions=kick,
                    converters=(_snowflake, str),
                    min_args=1,
                    rest=True,
                ),
                Command(
                    "warn_trigger",
                    warn_commands.warn_trigger,
                    category="moderation",
                    guild_only=True,
                    required_permissions=Permissions.BAN_MEMBERS,
                    converters=(warn_commands.WarnTrigger.parse, int),
                    min_args=2,
                ),
            ),
        )
    )
    framework.register(
        Command(
            "help",
            help_command,
            description="Show help for commands",
            converters=(str,),
            rest=True,
        )
    )
    framework.register(Command("servers", servers, description="List the bot's servers"))
    return framework


@dataclass
class _ShardStatus:
    id: int
    stage: str = "connecting"
    latency: float | None = None
    sequence: int | None = None
    session_id: str | None = None
    resume_url: str | None = None
    last_heartbeat: float | None = None


class Ameca:
    """The moderation bot: routes gateway events to handlers and runs its shards."""

    def __init__(
        self,
        token: str,
        db: Database,
        *,
        cache: bool = False,
        shards: int = 1,
        http: DiscordHttp | None = None,
        framework: Framework | None = None,
        cache_interval: float = CACHE_INTERVAL,
    ) -> None:
        if shards < 1:
            raise ValueError("at least one shard is needed")
        self.token = token
        self.shards = shards
        self.cache_interval = cache_interval
        self.state = BotState(http=http or DiscordHttp(token), db=db, cache=cache)
        self.framework = framework or build_framework()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._shards: dict[int, _ShardStatus] = {}

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("Event handler failed", exc_info=task.exception())

    async def handle_event(self, name: str, payload: dict[str, Any]) -> bool:
        """Handle one gateway dispatch; return whether the event is one the bot handles."""
        state = self.state
        match name:
            case "GUILD_MEMBER_ADD":
                member = Member.from_json(payload, int(payload["guild_id"]))
                await on_user_join(state, member)
                await state.db.new_user(member.user)
            case "MESSAGE_CREATE":
                await self._on_message(payload)
            case "READY":
                log.info("Bot is ready to start!")
                if state.cache:
                    self._spawn(self.cache_data())
                log.info("Bot is ready!")
            case "GUILD_DELETE":
                log.info("Bot has left the guild %s", payload.get("id"))
            case "GUILD_CREATE":
                log.debug("Bot received guild data for: %s", payload.get("name"))
                await state.db.joined_guild(
                    int(payload.get("member_count", 0)),
                    int(payload["id"]),
                    payload.get("name", ""),
                    _timestamp(payload.get("joined_at")),
                )
            case "CHANNEL_CREATE":
                channel = GuildChannel.from_json(payload)
                log.info("New channel %s created in guild %s", channel.name, channel.guild_id)
                await state.db.new_channel(channel)
            case "CHANNEL_DELETE":
                log.info("Channel %s deleted: %s...", payload.get("name"), payload.get("guild_id"))
                log.warning(
                    "No messages received for deleted channel %s in guild %s",
                    payload.get("id"),
                    payload.get("guild_id"),
                )
            case "MESSAGE_DELETE":
                guild_id = payload.get("guild_id")
                await on_msg_delete(
                    state,
                    int(payload["channel_id"]),
                    int(payload["id"]),
                    None if guild_id is None else int(guild_id),
                )
            case "MESSAGE_REACTION_ADD":
                await reaction_add(state, Reaction.from_json(payload))
            case "MESSAGE_REACTION_REMOVE":
                await reaction_delete(state, Reaction.from_json(payload))
            case "GUILD_MEMBER_REMOVE":
                await user_leave(state, int(payload["guild_id"]), User.from_json(payload["user"]))
            case _:
                return False
        return True

    async def _on_message(self, payload: dict[str, Any]) -> None:
        message = Message.from_json(payload)
        await on_new_msg(self.state, message)
        if message.guild_id is not None:
            await afk_commands.check_afk(self.state, message)
        if not message.author.bot:
            await self._run_command(message, payload)

    async def _run_command(self, message: Message, payload: dict[str, Any]) -> Command | None:
        parsed = self.framework.split_invocation(message.content)
        if parsed is None or self.framework.find(parsed[0]) is None:
            return None
        member = None
        if message.guild_id is not None and "member" in payload:
            member = Member.from_json(
                {**payload["member"], "user": payload["author"]}, message.guild_id
            )
            member.permissions = await self._member_permissions(member)
        ctx = CommandContext(
            state=self.state,
            author=message.author,
            channel_id=message.channel_id,
            guild_id=message.guild_id,
            member=member,
            framework=self.framework,
        )
        try:
            return await self.framework.dispatch(ctx, message.content)
        except CommandError as exc:
            await ctx.say(str(exc))
            return None

    async def _member_permissions(self, member: Member) -> Permissions:
        http = self.state.http
        guild = await http.request("GET", f"/guilds/{member.guild_id}")
        if guild and int(guild.get("owner_id", 0)) == member.user.id:
            return Permissions.ADMINISTRATOR
        roles = await http.request("GET", f"/guilds/{member.guild_id}/roles") or []
        held = set(member.roles) | {member.guild_id}
        bits = 0
        for role in roles:
            if int(role["id"]) in held:
                bits |= int(role.get("permissions", 0))
        return Permissions(bits)

    async def cache_guild(self, guild: dict[str, Any]) -> None:
        """Store a guild's members, text channels and their recent messages."""
        http = self.state.http
        db = self.state.db
        guild_id = int(guild["id"])
        guild_name = guild.get("name", "")

        members = await http.get_guild_members(guild_id)
        await db.joined_guild(len(members), guild_id, guild_name, datetime.now(timezone.utc))
        for member in members:
            try:
                await db.new_user(member.user)
            except sqlite3.Error as exc:
                log.error("Unable to mark user in guild %s: %s", guild_id, exc)
                continue
            if member.joined_at is None:
                raise ValueError(f"member {member.user.id} has no join time")
            await db.mark_user_in_guild(member.user, guild_id, member.joined_at)

        channels = [c for c in await http.get_channels(guild_id) if c.kind == TEXT_CHANNEL]
        for channel in channels:
            log.info("Storing %s", channel.name)
            await db.new_channel(channel)
            last = channel.last_message_id
            if last is not None:
                try:
                    history = await http.get_messages(
                        channel.id, before=last, limit=_HISTORY_LIMIT
                    )
                except DiscordHttpError:
                    history = []
                try:
                    history.append(await http.get_message(channel.id, last))
                except DiscordHttpError as exc:
                    log.error(
                        "Error in getting msg (channel %s, guild %s %s): %s",
                        channel.id,
                        guild_id,
                        guild_name,
                        exc,
                    )
            else:
                log.error(
                    "Error in receiving last msg for channel %s (guild %s %s)",
                    channel.id,
                    guild_id,
                    guild_name,
                )
                history = await http.get_messages(channel.id, limit=_HISTORY_LIMIT)
            for msg in history:
                await db.new_message(msg, channel)

    async def cache_data(self) -> None:
        """Cache every guild, then repeat after ``cache_interval`` seconds, forever."""
        log.info("Starting caching of data")
        while True:
            for guild in await self.state.http.get_guilds():
                await self.cache_guild(guild)
            log.info("Finished data caching")
            await asyncio.sleep(self.cache_interval)

    async def run(self) -> None:
        """Connect every shard to the gateway and serve events until stopped."""
        http = self.state.http
        self.state.bot = await http.get_user(bot_user_id())
        gateway = await http.request("GET", "/gateway/bot")
        url = gateway["url"]
        async with aiohttp.ClientSession() as session:
            monitor = asyncio.ensure_future(self._report_latency())
            try:
                await asyncio.gather(
                    *(self._run_shard(session, url, shard_id) for shard_id in range(self.shards))
                )
            finally:
                monitor.cancel()
                for task in list(self._tasks):
                    task.cancel()
                await http.close()

    async def _report_latency(self) -> None:
        while True:
            await asyncio.sleep(LATENCY_REPORT_INTERVAL)
            for status in self._shards.values():
                log.info(
                    "Shard ID %s is %s with a latency of %s",
                    status.id,
                    status.stage,
                    status.latency,
                )

    async def _heartbeat(
        self, ws: aiohttp.ClientWebSocketResponse, interval: float, status: _ShardStatus
    ) -> None:
        await asyncio.sleep(interval * random.random())
        while True:
            status.last_heartbeat = time.monotonic()
            await ws.send_json({"op": 1, "d": status.sequence})
            await asyncio.sleep(interval)

    async def _run_shard(self, session: aiohttp.ClientSession, url: str, shard_id: int) -> None:
        status = _ShardStatus(id=shard_id)
        self._shards[shard_id] = status
        await asyncio.sleep(_IDENTIFY_SPACING * shard_id)
        while True:
            base = status.resume_url if status.session_id else url
            async with session.ws_connect(f"{base}/?v=10&encoding=json") as ws:
                hello = await ws.receive_json()
                interval = hello["d"]["heartbeat_interval"] / 1000
                beat = asyncio.ensure_future(self._heartbeat(ws, interval, status))
                try:
                    await self._greet(ws, status)
                    await self._read_packets(ws, status)
                finally:
                    beat.cancel()
                code = ws.close_code
            if code in _FATAL_CLOSE_CODES:
                raise RuntimeError(f"gateway closed shard {shard_id} with code {code}")
            status.stage = "reconnecting"
            await asyncio.sleep(1)

    async def _greet(self, ws: aiohttp.ClientWebSocketResponse, status: _ShardStatus) -> None:
        if status.session_id and status.sequence is not None:
            status.stage = "resuming"
            await ws.send_json(
                {
                    "op": 6,
                    "d": {
                        "token": self.token,
                        "session_id": status.session_id,
                        "seq": status.sequence,
                    },
                }
            )
            return
        status.stage = "identifying"
        await ws.send_json(
            {
                "op": 2,
                "d": {
                    "token": self.token,
                    "intents": INTENTS,
                    "shard": [status.id, self.shards],
                    "properties": {"os": "linux", "browser": "ameca", "device": "ameca"},
                },
            }
        )

    async def _read_packets(
        self, ws: aiohttp.ClientWebSocketResponse, status: _ShardStatus
    ) -> None:
        async for frame in ws:
            if frame.type is not aiohttp.WSMsgType.TEXT:
                break
            packet = json.loads(frame.data)
            if packet.get("s") is not None:
                status.sequence = packet["s"]
            op = packet.get("op")
            if op == 0:
                event, data = packet.get("t"), packet.get("d") or {}
                if event == "READY":
                    status.session_id = data.get("session_id")
                    status.resume_url = data.get("resume_gateway_url")
                    status.stage = "connected"
                elif event == "RESUMED":
                    status.stage = "connected"
                self._spawn(self.handle_event(event, data))
            elif op == 1:
                await ws.send_json({"op": 1, "d": status.sequence})
            elif op == 7:
                break
            elif op == 9:
                if not packet.get("d"):
                    status.session_id = None
                    status.sequence = None
                await asyncio.sleep(1 + 4 * random.random())
                break
            elif op == 11 and status.last_heartbeat is not None:
                status.latency = time.monotonic() - status.last_heartbeat