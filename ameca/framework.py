"""Command registration, dispatch and shared bot state."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from ameca.database import Database, Role
from ameca.discord import DiscordHttp, Embed, Member, Message, Permissions, User

log = logging.getLogger(__name__)

Callback = Callable[..., Awaitable[Any]]
Converter = Callable[[str], Any]


class CommandError(Exception):
    """A command could not be run as invoked."""


@dataclass
class BotState:
    """Everything the handlers share: API access, storage and in-memory caches."""

    http: DiscordHttp
    db: Database
    bot: User | None = None
    cache: bool = False
    cached_regex: dict[int, list[re.Pattern[str]]] = field(default_factory=dict)
    watch_msgs: dict[int, list[Role]] = field(default_factory=dict)

    async def send_to_logging_channel(self, embed: Embed, guild_id: int) -> Message | None:
        """Post an embed to the guild's logging channel, if one is registered."""
        channel = await self.db.get_logging_channel(guild_id)
        if channel is None:
            log.warning("No logging channel found for guild %s", guild_id)
            return None
        return await self.http.send_message(channel.channel_id, embed=embed)


@dataclass
class Command:
    """A named command and how its arguments are read."""

    name: str
    callback: Callback
    description: str = ""
    category: str | None = None
    guild_only: bool = False
    required_permissions: Permissions = Permissions(0)
    aliases: tuple[str, ...] = ()
    subcommands: tuple[Command, ...] = ()
    subcommand_required: bool = False
    converters: tuple[Converter, ...] = ()
    min_args: int = 0
    rest: bool = False

    def _subcommand(self, name: str) -> Command | None:
        return next(
            (sub for sub in self.subcommands if name == sub.name or name in sub.aliases),
            None,
        )


@dataclass
class CommandContext:
    """The invocation a command callback runs in."""

    state: BotState
    author: User
    channel_id: int
    guild_id: int | None = None
    member: Member | None = None
    framework: Framework | None = None
    command: Command | None = None
    deferred: bool = False

    async def say(self, content: str) -> Message:
        return await self.state.http.send_message(self.channel_id, content=content)

    async def send_embed(self, embed: Embed) -> Message:
        return await self.state.http.send_message(self.channel_id, embed=embed)

    async def defer(self) -> None:
        """Show the bot as working on the reply."""
        if self.deferred:
            return
        await self.state.http.request("POST", f"/channels/{self.channel_id}/typing")
        self.deferred = True


def _check(command: Command, ctx: CommandContext) -> None:
    if command.guild_only and ctx.guild_id is None:
        raise CommandError(f"`{command.name}` can only be used in a guild")
    required = command.required_permissions
    if not required:
        return
    if ctx.member is None:
        raise CommandError(f"`{command.name}` needs guild permissions")
    granted = ctx.member.permissions
    if Permissions.ADMINISTRATOR in granted:
        return
    if granted & required != required:
        raise CommandError(f"You lack the permissions to use `{command.name}`")


def _parse_args(command: Command, text: str) -> list[Any]:
    count = len(command.converters)
    if count == 0:
        if text.strip():
            raise CommandError(f"`{command.name}` takes no arguments")
        return []
    parts = text.split(maxsplit=count - 1) if command.rest else text.split()
    if len(parts) > count:
        raise CommandError(f"Too many arguments for `{command.name}`")
    if len(parts) < command.min_args:
        raise CommandError(f"Missing argument for `{command.name}`")
    args: list[Any] = []
    for converter, part in zip(command.converters, parts):
        try:
            args.append(converter(part))
        except (ValueError, TypeError) as exc:
            raise CommandError(f"Invalid argument {part!r} for `{command.name}`") from exc
    args.extend([None] * (count - len(parts)))
    return args


class Framework:
    """Prefix commands: registration, lookup and dispatch."""

    def __init__(self, prefix: str = "!") -> None:
        self.prefix = prefix
        self._commands: dict[str, Command] = {}
        self._aliases: dict[str, str] = {}

    @property
    def commands(self) -> list[Command]:
        return list(self._commands.values())

    def register(self, command: Command) -> Command:
        for name in (command.name, *command.aliases):
            if name in self._commands or name in self._aliases:
                raise ValueError(f"command name {name!r} is already registered")
        self._commands[command.name] = command
        for alias in command.aliases:
            self._aliases[alias] = command.name
        return command

    def find(self, name: str) -> Command | None:
        if name in self._commands:
            return self._commands[name]
        target = self._aliases.get(name)
        return None if target is None else self._commands[target]

    def split_invocation(self, content: str) -> tuple[str, str] | None:
        """Split prefixed text into a command name and the rest, or None if not a command."""
        if not content.startswith(self.prefix):
            return None
        body = content[len(self.prefix):].strip()
        if not body:
            return None
        parts = body.split(maxsplit=1)
        return parts[0], parts[1] if len(parts) > 1 else ""

    async def dispatch(self, ctx: CommandContext, content: str) -> Command | None:
        """Run the command the text invokes; return it, or None if no command matched."""
        parsed = self.split_invocation(content)
        if parsed is None:
            return None
        name, rest = parsed
        command = self.find(name)
        if command is None:
            return None
        if ctx.framework is None:
            ctx.framework = self
        _check(command, ctx)
        while command.subcommands:
            words = rest.split(maxsplit=1)
            sub = command._subcommand(words[0]) if words else None
            if sub is None:
                if command.subcommand_required:
                    names = ", ".join(s.name for s in command.subcommands)
                    raise CommandError(f"`{command.name}` needs a subcommand: {names}")
                break
            command = sub
            rest = words[1] if len(words) > 1 else ""
            _check(command, ctx)
        args = _parse_args(command, rest)
        ctx.command = command
        await command.callback(ctx, *args)
        return command

    def help_text(self, name: str | None = None) -> str:
        """Help for every command, or for one command path such as ``"warnings warn"``."""
        if name is None:
            by_category: dict[str, list[Command]] = {}
            for command in self._commands.values():
                by_category.setdefault(command.category or "Commands", []).append(command)
            lines: list[str] = []
            for category, commands in by_category.items():
                lines.append(f"{category}:")
                for command in commands:
                    entry = f"  {self.prefix}{command.name}"
                    if command.description:
                        entry += f"  {command.description}"
                    lines.append(entry)
            lines.append("")
            lines.append(f"Type {self.prefix}help <command> for more info on a command.")
            return "\n".join(lines)

        words = name.split()
        command = self.find(words[0]) if words else None
        for word in words[1:]:
            if command is None:
                break
            command = command._subcommand(word)
        if command is None:
            raise CommandError(f"No such command `{name}`")
        lines = [f"{self.prefix}{' '.join(words)}", command.description or "No help available"]
        if command.subcommands:
            lines.append("Subcommands:")
            lines.extend(
                f"  {sub.name}" + (f"  {sub.description}" if sub.description else "")
                for sub in command.subcommands
            )
        return "\n".join(lines)


async def help_command(ctx: CommandContext, command: str | None = None) -> None:
    """Reply with help for all commands or for one."""
    if ctx.framework is None:
        raise CommandError("help is not available here")
    await ctx.say(ctx.framework.help_text(command))


async def servers(ctx: CommandContext) -> None:
    """Reply with the guilds the bot is in."""
    guilds = await ctx.state.http.get_guilds()
    lines = [f"I am in {len(guilds)} servers:"]
    lines.extend(f"- {guild['name']}" for guild in guilds)
    await ctx.say("\n".join(lines))