"""Persistent storage for guilds, channels, members, messages and moderation state."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from os import PathLike
from typing import Any, NamedTuple

import aiosqlite

from ameca.discord import GuildChannel, Message, User

log = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS guild (
    guild_id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    members INTEGER NOT NULL,
    join_time TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS channel (
    channel_id INTEGER PRIMARY KEY,
    guild_id INTEGER,
    channel_name TEXT NOT NULL,
    logging_channel INTEGER NOT NULL DEFAULT 0,
    muted INTEGER NOT NULL DEFAULT 0,
    automod_exempt INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS member (
    member_id INTEGER PRIMARY KEY,
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS guild_join_member (
    guild_id INTEGER NOT NULL,
    member_id INTEGER NOT NULL,
    time TEXT NOT NULL,
    PRIMARY KEY (guild_id, member_id)
);
CREATE TABLE IF NOT EXISTS message (
    msg_id INTEGER PRIMARY KEY,
    content TEXT NOT NULL,
    time TEXT NOT NULL,
    author_id INTEGER NOT NULL,
    channel_id INTEGER NOT NULL,
    deleted INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS reaction_role (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    roles_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    msg_id INTEGER NOT NULL,
    emoji TEXT NOT NULL,
    guild_id INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS prohibited_words_for_guild (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    pattern TEXT NOT NULL,
    author INTEGER NOT NULL,
    guild_id INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS afk_member_guild (
    member_id INTEGER NOT NULL,
    guild_id INTEGER NOT NULL,
    time_afk TEXT NOT NULL,
    previous_name TEXT NOT NULL,
    reason TEXT NOT NULL,
    PRIMARY KEY (member_id, guild_id)
);
CREATE TABLE IF NOT EXISTS warnings_guild_member (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    guild_id INTEGER NOT NULL,
    member_id INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS warn_triggers_guild (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    guild_id INTEGER NOT NULL,
    action TEXT NOT NULL,
    number_of_warns INTEGER NOT NULL
);
"""


def _to_text(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def _from_text(value: str) -> datetime:
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


@dataclass
class Channel:
    """A stored guild channel."""

    channel_id: int
    muted: bool
    logging_channel: bool
    channel_name: str
    automod_exempt: bool
    guild_id: int | None


@dataclass
class DbMessage:
    """A stored message."""

    msg_id: int
    content: str
    time: datetime
    author_id: int
    channel_id: int
    deleted: bool = False


@dataclass
class Role:
    """A role handed out for reacting to a watched message."""

    id: int
    emoji: str
    roles_id: int
    msg_id: int
    guild_id: int
    name: str


class _BannedPattern(NamedTuple):
    id: int
    name: str
    pattern: str
    author: int
    guild_id: int


class _AfkEntry(NamedTuple):
    time_afk: datetime
    reason: str
    previous_name: str


class _WarnTriggerRow(NamedTuple):
    limit: int
    action: str


def _channel(row: Any) -> Channel:
    return Channel(
        channel_id=row["channel_id"],
        muted=bool(row["muted"]),
        logging_channel=bool(row["logging_channel"]),
        channel_name=row["channel_name"],
        automod_exempt=bool(row["automod_exempt"]),
        guild_id=row["guild_id"],
    )


def _role(row: Any) -> Role:
    return Role(
        id=row["id"],
        emoji=row["emoji"],
        roles_id=row["roles_id"],
        msg_id=row["msg_id"],
        guild_id=row["guild_id"],
        name=row["name"],
    )


class Database:
    """An open connection to the bot's SQLite database."""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    @classmethod
    async def connect(cls, path: str | PathLike[str]) -> Database:
        conn = await aiosqlite.connect(path)
        conn.row_factory = aiosqlite.Row
        db = cls(conn)
        await db.create_schema()
        return db

    async def __aenter__(self) -> Database:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._conn.close()

    async def create_schema(self) -> None:
        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()

    async def _execute(self, sql: str, params: tuple = ()) -> int:
        async with self._conn.execute(sql, params) as cursor:
            rowcount = cursor.rowcount
        await self._conn.commit()
        return rowcount

    async def _insert(self, sql: str, params: tuple) -> int:
        async with self._conn.execute(sql, params) as cursor:
            row_id = cursor.lastrowid
        await self._conn.commit()
        return row_id

    async def _one(self, sql: str, params: tuple = ()) -> Any:
        async with self._conn.execute(sql, params) as cursor:
            return await cursor.fetchone()

    async def _all(self, sql: str, params: tuple = ()) -> list[Any]:
        async with self._conn.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    # guilds

    async def joined_guild(
        self, members: int, guild_id: int, guild_name: str, join_time: datetime
    ) -> None:
        await self._execute(
            "INSERT INTO guild(guild_id, members, join_time, name) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(guild_id) DO UPDATE SET members = excluded.members, name = excluded.name",
            (guild_id, members, _to_text(join_time), guild_name),
        )

    # channels

    async def new_channel(self, channel: GuildChannel) -> None:
        log.debug("Inserting new channel into database")
        await self._execute(
            "INSERT OR IGNORE INTO channel(channel_id, guild_id, logging_channel, muted, channel_name) "
            "VALUES (?, ?, 0, 0, ?)",
            (channel.id, channel.guild_id, channel.name),
        )

    async def get_logging_channel(self, guild_id: int) -> Channel | None:
        try:
            row = await self._one(
                "SELECT * FROM channel WHERE guild_id = ? AND logging_channel = 1", (guild_id,)
            )
        except sqlite3.Error as exc:
            log.error("Error getting logging channel for guild %s: %r", guild_id, exc)
            return None
        return None if row is None else _channel(row)

    async def set_logging_channel(self, guild_id: int, channel_id: int) -> int:
        return await self._execute(
            "UPDATE channel SET logging_channel = 1 WHERE guild_id = ? AND channel_id = ?",
            (guild_id, channel_id),
        )

    async def clear_logging_channel(self, guild_id: int) -> int:
        return await self._execute(
            "UPDATE channel SET logging_channel = 0 WHERE logging_channel = 1 AND guild_id = ?",
            (guild_id,),
        )

    async def channels_for_guild(self, guild_id: int) -> list[Channel]:
        rows = await self._all("SELECT * FROM channel WHERE guild_id = ?", (guild_id,))
        return [_channel(row) for row in rows]

    # members

    async def new_user(self, user: User) -> None:
        log.debug("Inserting new user %r into database", user)
        await self._execute(
            "INSERT OR IGNORE INTO member(member_id, name) VALUES (?, ?)", (user.id, user.name)
        )

    async def mark_user_in_guild(self, user: User, guild_id: int, time: datetime) -> None:
        log.debug("Setting guild member relation for %s->%s", user.id, guild_id)
        await self._execute(
            "INSERT OR IGNORE INTO guild_join_member(guild_id, member_id, time) VALUES (?, ?, ?)",
            (guild_id, user.id, _to_text(time)),
        )

    async def get_user_join_time(self, user: User, guild_id: int) -> datetime:
        row = await self._one(
            "SELECT time FROM guild_join_member WHERE guild_id = ? AND member_id = ?",
            (guild_id, user.id),
        )
        if row is None:
            raise LookupError(f"no join time for user {user.id} in guild {guild_id}")
        return _from_text(row["time"])

    # messages

    async def _ensure_author_and_channel(self, author: User, channel: GuildChannel) -> None:
        if await self._one("SELECT 1 FROM member WHERE member_id = ?", (author.id,)) is None:
            log.warning("Message author is not cached!")
            await self.new_user(author)
        if await self._one("SELECT 1 FROM channel WHERE channel_id = ?", (channel.id,)) is None:
            log.warning("Message channel is not cached!")
            await self.new_channel(channel)

    async def new_message(self, msg: Message, channel: GuildChannel) -> None:
        await self._ensure_author_and_channel(msg.author, channel)
        await self._execute(
            "INSERT OR IGNORE INTO message(msg_id, content, time, author_id, channel_id) "
            "VALUES (?, ?, ?, ?, ?)",
            (msg.id, msg.content, _to_text(msg.timestamp), msg.author.id, msg.channel_id),
        )

    async def fetch_message(self, msg_id: int) -> DbMessage | None:
        row = await self._one("SELECT * FROM message WHERE msg_id = ?", (msg_id,))
        if row is None:
            return None
        return DbMessage(
            msg_id=row["msg_id"],
            content=row["content"],
            time=_from_text(row["time"]),
            author_id=row["author_id"],
            channel_id=row["channel_id"],
            deleted=bool(row["deleted"]),
        )

    async def mark_deleted(self, message: DbMessage) -> None:
        message.deleted = True
        await self._execute("UPDATE message SET deleted = 1 WHERE msg_id = ?", (message.msg_id,))

    async def channel_of_message(self, msg_id: int) -> int:
        row = await self._one("SELECT channel_id FROM message WHERE msg_id = ?", (msg_id,))
        if row is None:
            raise LookupError(f"message {msg_id} is not stored")
        return row["channel_id"]

    # reaction roles

    async def new_reaction_role(
        self, msg_id: int, role_id: int, guild_id: int, name: str, emoji: str
    ) -> Role:
        log.info("Setting up new role_reaction relationship")
        row_id = await self._insert(
            "INSERT INTO reaction_role(roles_id, name, msg_id, emoji, guild_id) "
            "VALUES (?, ?, ?, ?, ?)",
            (role_id, name, msg_id, emoji, guild_id),
        )
        return Role(
            id=row_id, emoji=emoji, roles_id=role_id, msg_id=msg_id, guild_id=guild_id, name=name
        )

    async def reaction_roles(self, guild_id: int | None = None) -> list[Role]:
        if guild_id is None:
            rows = await self._all("SELECT * FROM reaction_role ORDER BY id")
        else:
            rows = await self._all(
                "SELECT * FROM reaction_role WHERE guild_id = ? ORDER BY id", (guild_id,)
            )
        return [_role(row) for row in rows]

    async def delete_reaction_role_by_name(self, guild_id: int, name: str) -> int:
        return await self._execute(
            "DELETE FROM reaction_role WHERE name = ? AND guild_id = ?", (name, guild_id)
        )

    async def delete_reaction_roles_for_message(self, guild_id: int, msg_id: int) -> int:
        return await self._execute(
            "DELETE FROM reaction_role WHERE guild_id = ? AND msg_id = ?", (guild_id, msg_id)
        )

    # banned patterns

    async def add_banned_pattern(self, name: str, pattern: str, author: int, guild_id: int) -> int:
        return await self._insert(
            "INSERT INTO prohibited_words_for_guild(name, pattern, author, guild_id) "
            "VALUES (?, ?, ?, ?)",
            (name, pattern, author, guild_id),
        )

    async def banned_patterns(self, guild_id: int | None = None) -> list[_BannedPattern]:
        columns = "SELECT id, name, pattern, author, guild_id FROM prohibited_words_for_guild"
        if guild_id is None:
            rows = await self._all(f"{columns} ORDER BY id")
        else:
            rows = await self._all(f"{columns} WHERE guild_id = ? ORDER BY id", (guild_id,))
        return [_BannedPattern(*tuple(row)) for row in rows]

    async def remove_banned_pattern(self, guild_id: int, name: str) -> int:
        return await self._execute(
            "DELETE FROM prohibited_words_for_guild WHERE name = ? AND guild_id = ?",
            (name, guild_id),
        )

    # afk

    async def set_afk(
        self, member_id: int, guild_id: int, time: datetime, previous_name: str, reason: str
    ) -> None:
        await self._execute(
            "INSERT OR REPLACE INTO afk_member_guild(member_id, guild_id, time_afk, previous_name, reason) "
            "VALUES (?, ?, ?, ?, ?)",
            (member_id, guild_id, _to_text(time), previous_name, reason),
        )

    async def get_afk(self, member_id: int, guild_id: int) -> _AfkEntry | None:
        row = await self._one(
            "SELECT time_afk, reason, previous_name FROM afk_member_guild "
            "WHERE member_id = ? AND guild_id = ?",
            (member_id, guild_id),
        )
        if row is None:
            return None
        return _AfkEntry(_from_text(row["time_afk"]), row["reason"], row["previous_name"])

    async def remove_afk(self, member_id: int, guild_id: int) -> int:
        return await self._execute(
            "DELETE FROM afk_member_guild WHERE member_id = ? AND guild_id = ?",
            (member_id, guild_id),
        )

    # warnings

    async def add_warning(self, guild_id: int, member_id: int) -> None:
        await self._execute(
            "INSERT INTO warnings_guild_member(guild_id, member_id) VALUES (?, ?)",
            (guild_id, member_id),
        )

    async def warning_count(self, guild_id: int, member_id: int) -> int:
        row = await self._one(
            "SELECT COUNT(*) AS n FROM warnings_guild_member WHERE guild_id = ? AND member_id = ?",
            (guild_id, member_id),
        )
        return row["n"]

    async def clear_warnings(self, guild_id: int, member_id: int) -> int:
        return await self._execute(
            "DELETE FROM warnings_guild_member WHERE member_id = ? AND guild_id = ?",
            (member_id, guild_id),
        )

    async def add_warn_trigger(self, guild_id: int, action: str, limit: int) -> None:
        await self._execute(
            "INSERT INTO warn_triggers_guild(guild_id, action, number_of_warns) VALUES (?, ?, ?)",
            (guild_id, action, limit),
        )

    async def warn_triggers(self, guild_id: int) -> list[_WarnTriggerRow]:
        rows = await self._all(
            "SELECT number_of_warns, action FROM warn_triggers_guild WHERE guild_id = ? ORDER BY id",
            (guild_id,),
        )
        return [_WarnTriggerRow(row["number_of_warns"], row["action"]) for row in rows]