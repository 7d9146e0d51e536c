"""Data types and a small REST client for the Discord HTTP API."""

from __future__ import annotations

import asyncio
import enum
import json as _json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote, urlencode

import aiohttp

log = logging.getLogger(__name__)

_API_BASE = "https://discord.com/api/v10"
_MAX_RATELIMIT_RETRIES = 5
_BULK_DELETE_LIMIT = 100


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _opt_int(value: Any) -> int | None:
    return None if value is None else int(value)


class Permissions(enum.IntFlag):
    """Guild permission bits."""

    KICK_MEMBERS = 1 << 1
    BAN_MEMBERS = 1 << 2
    ADMINISTRATOR = 1 << 3
    MANAGE_CHANNELS = 1 << 4
    MANAGE_GUILD = 1 << 5
    MANAGE_MESSAGES = 1 << 13
    MANAGE_ROLES = 1 << 28
    MODERATE_MEMBERS = 1 << 40


@dataclass(frozen=True)
class User:
    """A Discord account."""

    id: int
    name: str
    bot: bool = False

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> User:
        return cls(id=int(data["id"]), name=data["username"], bot=bool(data.get("bot", False)))


@dataclass
class Member:
    """A user's membership of one guild."""

    user: User
    guild_id: int
    nick: str | None = None
    joined_at: datetime | None = None
    roles: tuple[int, ...] = ()
    permissions: Permissions = Permissions(0)

    @classmethod
    def from_json(cls, data: dict[str, Any], guild_id: int) -> Member:
        return cls(
            user=User.from_json(data["user"]),
            guild_id=int(guild_id),
            nick=data.get("nick"),
            joined_at=_parse_timestamp(data.get("joined_at")),
            roles=tuple(int(role) for role in data.get("roles", ())),
            permissions=Permissions(int(data.get("permissions", 0))),
        )

    def display_name(self) -> str:
        """The nickname if set, otherwise the account name."""
        return self.nick or self.user.name


@dataclass(frozen=True)
class GuildChannel:
    """A channel inside a guild; ``kind`` 0 is a text channel."""

    id: int
    guild_id: int | None
    name: str
    kind: int = 0
    last_message_id: int | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> GuildChannel:
        return cls(
            id=int(data["id"]),
            guild_id=_opt_int(data.get("guild_id")),
            name=data.get("name") or "",
            kind=int(data.get("type", 0)),
            last_message_id=_opt_int(data.get("last_message_id")),
        )


@dataclass
class Message:
    """A message posted to a channel."""

    id: int
    channel_id: int
    author: User
    content: str
    timestamp: datetime
    guild_id: int | None = None
    embeds: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=int(data["id"]),
            channel_id=int(data["channel_id"]),
            author=User.from_json(data["author"]),
            content=data.get("content", ""),
            timestamp=_parse_timestamp(data.get("timestamp")) or datetime.now(timezone.utc),
            guild_id=_opt_int(data.get("guild_id")),
            embeds=list(data.get("embeds", [])),
        )


def _emoji_to_str(emoji: dict[str, Any]) -> str:
    if emoji.get("id"):
        prefix = "a" if emoji.get("animated") else ""
        return f"<{prefix}:{emoji.get('name', '')}:{emoji['id']}>"
    return emoji.get("name", "")


@dataclass(frozen=True)
class Reaction:
    """A reaction added to or removed from a message."""

    channel_id: int
    message_id: int
    emoji: str
    user_id: int | None = None
    guild_id: int | None = None
    message_author_id: int | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Reaction:
        return cls(
            channel_id=int(data["channel_id"]),
            message_id=int(data["message_id"]),
            emoji=_emoji_to_str(data.get("emoji", {})),
            user_id=_opt_int(data.get("user_id")),
            guild_id=_opt_int(data.get("guild_id")),
            message_author_id=_opt_int(data.get("message_author_id")),
        )


@dataclass
class Embed:
    """A rich embed attached to a message."""

    title: str | None = None
    description: str | None = None
    color: int | None = None
    footer: str | None = None
    author_name: str | None = None
    author_url: str | None = None
    fields: list[tuple[str, str, bool]] = field(default_factory=list)

    def add_field(self, name: str, value: str, inline: bool = False) -> Embed:
        self.fields.append((name, value, inline))
        return self

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.title is not None:
            payload["title"] = self.title
        if self.description is not None:
            payload["description"] = self.description
        if self.color is not None:
            payload["color"] = self.color
        if self.footer is not None:
            payload["footer"] = {"text": self.footer}
        if self.author_name is not None:
            author = {"name": self.author_name}
            if self.author_url is not None:
                author["url"] = self.author_url
            payload["author"] = author
        if self.fields:
            payload["fields"] = [
                {"name": name, "value": value, "inline": inline}
                for name, value, inline in self.fields
            ]
        return payload


class DiscordHttpError(Exception):
    """The API answered with an error status."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.message = message


class DiscordHttp:
    """Authenticated access to the REST endpoints the bot uses."""

    def __init__(
        self,
        token: str,
        *,
        base_url: str = _API_BASE,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> DiscordHttp:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        reason: str | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body, or None if empty."""
        headers = {"Authorization": f"Bot {self._token}"}
        if reason:
            headers["X-Audit-Log-Reason"] = quote(reason)
        session = self._get_session()
        url = self._base_url + path
        for _ in range(_MAX_RATELIMIT_RETRIES + 1):
            async with session.request(method, url, json=json, headers=headers) as resp:
                text = await resp.text()
                if resp.status == 429:
                    retry_after = float(_json.loads(text or "{}").get("retry_after", 1))
                    log.warning("We are being ratelimited for %s seconds", retry_after)
                    await asyncio.sleep(retry_after)
                    continue
                if resp.status >= 400:
                    raise DiscordHttpError(resp.status, text)
                return _json.loads(text) if text else None
        raise DiscordHttpError(429, f"rate limited on {method} {path}")

    async def get_user(self, user_id: int) -> User:
        return User.from_json(await self.request("GET", f"/users/{user_id}"))

    async def get_member(self, guild_id: int, user_id: int) -> Member:
        data = await self.request("GET", f"/guilds/{guild_id}/members/{user_id}")
        return Member.from_json(data, guild_id)

    async def get_guilds(self) -> list[dict[str, Any]]:
        """The guilds the bot is in, as dicts with an integer ``id`` and a ``name``."""
        data = await self.request("GET", "/users/@me/guilds?" + urlencode({"limit": 200}))
        return [{"id": int(guild["id"]), "name": guild.get("name", "")} for guild in data]

    async def get_guild_members(self, guild_id: int) -> list[Member]:
        query = urlencode({"limit": 1000})
        data = await self.request("GET", f"/guilds/{guild_id}/members?{query}")
        return [Member.from_json(item, guild_id) for item in data]

    async def get_channel(self, channel_id: int) -> GuildChannel:
        return GuildChannel.from_json(await self.request("GET", f"/channels/{channel_id}"))

    async def get_channels(self, guild_id: int) -> list[GuildChannel]:
        data = await self.request("GET", f"/guilds/{guild_id}/channels")
        return [GuildChannel.from_json(item) for item in data]

    async def get_message(self, channel_id: int, message_id: int) -> Message:
        data = await self.request("GET", f"/channels/{channel_id}/messages/{message_id}")
        return Message.from_json(data)

    async def get_messages(
        self, channel_id: int, before: int | None = None, limit: int = 100
    ) -> list[Message]:
        query: dict[str, int] = {"limit": limit}
        if before is not None:
            query["before"] = before
        data = await self.request("GET", f"/channels/{channel_id}/messages?{urlencode(query)}")
        return [Message.from_json(item) for item in data]

    async def send_message(
        self, channel_id: int, content: str | None = None, embed: Embed | None = None
    ) -> Message:
        if content is None and embed is None:
            raise ValueError("a message needs content or an embed")
        payload: dict[str, Any] = {}
        if content is not None:
            payload["content"] = content
        if embed is not None:
            payload["embeds"] = [embed.to_dict()]
        data = await self.request("POST", f"/channels/{channel_id}/messages", json=payload)
        return Message.from_json(data)

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        await self.request("DELETE", f"/channels/{channel_id}/messages/{message_id}")

    async def delete_messages(self, channel_id: int, message_ids: list[int]) -> None:
        ids = list(message_ids)
        if not ids:
            return
        if len(ids) == 1:
            await self.delete_message(channel_id, ids[0])
            return
        for start in range(0, len(ids), _BULK_DELETE_LIMIT):
            chunk = ids[start : start + _BULK_DELETE_LIMIT]
            await self.request(
                "POST",
                f"/channels/{channel_id}/messages/bulk-delete",
                json={"messages": [str(msg_id) for msg_id in chunk]},
            )

    async def edit_nickname(self, guild_id: int, user_id: int, nickname: str | None) -> None:
        await self.request(
            "PATCH", f"/guilds/{guild_id}/members/{user_id}", json={"nick": nickname}
        )

    async def add_member_role(
        self, guild_id: int, user_id: int, role_id: int, reason: str | None = None
    ) -> None:
        await self.request(
            "PUT", f"/guilds/{guild_id}/members/{user_id}/roles/{role_id}", reason=reason
        )

    async def remove_member_role(
        self, guild_id: int, user_id: int, role_id: int, reason: str | None = None
    ) -> None:
        await self.request(
            "DELETE", f"/guilds/{guild_id}/members/{user_id}/roles/{role_id}", reason=reason
        )

    async def ban_user(self, guild_id: int, user_id: int, reason: str | None = None) -> None:
        await self.request(
            "PUT",
            f"/guilds/{guild_id}/bans/{user_id}",
            json={"delete_message_seconds": 0},
            reason=reason,
        )

    async def kick_member(self, guild_id: int, user_id: int, reason: str | None = None) -> None:
        await self.request("DELETE", f"/guilds/{guild_id}/members/{user_id}", reason=reason)

    async def timeout_member(self, guild_id: int, user_id: int, until: datetime) -> None:
        if until.tzinfo is None:
            until = until.replace(tzinfo=timezone.utc)
        await self.request(
            "PATCH",
            f"/guilds/{guild_id}/members/{user_id}",
            json={"communication_disabled_until": until.astimezone(timezone.utc).isoformat()},
        )

    async def add_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        encoded = quote(emoji, safe="")
        await self.request(
            "PUT", f"/channels/{channel_id}/messages/{message_id}/reactions/{encoded}/@me"
        )

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()