from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from ameca.bot import Ameca, build_framework
from ameca.discord import DiscordHttpError, GuildChannel, Member, Message, User
from ameca.ship import ship_score

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeHttp:
    def __init__(self):
        self.sent = []
        self.roles_added = []
        self.channels = {10: GuildChannel(10, 5, "general")}
        self.guild_members = {}
        self.guild_channels = {}
        self.history = {}
        self.history_calls = []
        self.messages = {}
        self.guilds = []
        self.guild_calls = 0
        self.roles = []
        self.owner_id = 1

    async def send_message(self, channel_id, content=None, embed=None):
        self.sent.append((channel_id, content, embed))
        return Message(
            id=1000 + len(self.sent),
            channel_id=channel_id,
            author=User(999, "bot", True),
            content=content or "",
            timestamp=NOW,
        )

    async def request(self, method, path, json=None, reason=None):
        if path.endswith("/roles"):
            return self.roles
        if path.startswith("/guilds/"):
            return {"owner_id": str(self.owner_id)}
        return None

    async def get_channel(self, channel_id):
        return self.channels[channel_id]

    async def get_user(self, user_id):
        return User(user_id, f"user{user_id}")

    async def add_member_role(self, guild_id, user_id, role_id, reason=None):
        self.roles_added.append((guild_id, user_id, role_id))

    async def get_guild_members(self, guild_id):
        return self.guild_members[guild_id]

    async def get_channels(self, guild_id):
        return self.guild_channels[guild_id]

    async def get_messages(self, channel_id, before=None, limit=100):
        self.history_calls.append((channel_id, before, limit))
        return list(self.history.get(channel_id, []))

    async def get_message(self, channel_id, message_id):
        try:
            return self.messages[(channel_id, message_id)]
        except KeyError:
            raise DiscordHttpError(404, "Unknown Message") from None

    async def get_guilds(self):
        self.guild_calls += 1
        if self.guild_calls > 1:
            raise DiscordHttpError(500, "boom")
        return self.guilds


class FakeDb:
    def __init__(self):
        self.joined = []
        self.channels = []
        self.users = []
        self.marked = []
        self.stored = []
        self.fetched = []

    async def joined_guild(self, members, guild_id, guild_name, join_time):
        self.joined.append((members, guild_id, guild_name, join_time))

    async def new_channel(self, channel):
        self.channels.append(channel)

    async def new_user(self, user):
        self.users.append(user)

    async def mark_user_in_guild(self, user, guild_id, time):
        self.marked.append((user.id, guild_id))

    async def new_message(self, msg, channel):
        self.stored.append((msg.id, channel.id))

    async def fetch_message(self, msg_id):
        self.fetched.append(msg_id)
        return None

    async def get_logging_channel(self, guild_id):
        return None

    async def banned_patterns(self, guild_id=None):
        return []

    async def reaction_roles(self, guild_id=None):
        return []

    async def get_afk(self, member_id, guild_id):
        return None


def _msg(msg_id, channel_id):
    return Message(id=msg_id, channel_id=channel_id, author=User(2, "b"), content="hi", timestamp=NOW)


def _message_payload(content, guild=True):
    payload = {
        "id": "100",
        "channel_id": "10",
        "author": {"id": "42", "username": "alice"},
        "content": content,
        "timestamp": "2024-01-01T00:00:00+00:00",
    }
    if guild:
        payload["guild_id"] = "5"
        payload["member"] = {"roles": [], "nick": None}
    return payload


@pytest.fixture
def bot(monkeypatch):
    monkeypatch.setenv("BOT_USER", "999")
    return Ameca("token", FakeDb(), http=FakeHttp(), cache_interval=0)


def test_framework_has_every_command():
    framework = build_framework()
    names = {command.name for command in framework.commands}
    assert names == {
        "afk",
        "log_channel",
        "purge",
        "ban_pattern",
        "remove_banned_pattern",
        "reactionrole",
        "ship",
        "warnings",
        "help",
        "servers",
    }


def test_warn_is_an_alias_of_warnings():
    framework = build_framework()
    command = framework.find("warn")
    assert command.name == "warnings"
    assert {sub.name for sub in command.subcommands} == {
        "show_warnings",
        "clear_warnings",
        "warn",
        "warn_trigger",
    }


def test_needs_at_least_one_shard():
    with pytest.raises(ValueError):
        Ameca("token", FakeDb(), http=FakeHttp(), shards=0)


@pytest.mark.asyncio
async def test_unknown_event_is_not_handled(bot):
    assert await bot.handle_event("TYPING_START", {}) is False


@pytest.mark.asyncio
async def test_guild_create_records_guild(bot):
    handled = await bot.handle_event(
        "GUILD_CREATE",
        {"id": "5", "name": "guild", "member_count": 3, "joined_at": "2024-01-01T00:00:00+00:00"},
    )
    assert handled is True
    assert bot.state.db.joined == [(3, 5, "guild", NOW)]


@pytest.mark.asyncio
async def test_channel_create_stores_channel(bot):
    await bot.handle_event("CHANNEL_CREATE", {"id": "11", "guild_id": "5", "name": "news", "type": 0})
    assert [(c.id, c.guild_id, c.name) for c in bot.state.db.channels] == [(11, 5, "news")]


@pytest.mark.asyncio
async def test_member_add_marks_and_stores_user(bot):
    await bot.handle_event(
        "GUILD_MEMBER_ADD",
        {
            "guild_id": "5",
            "user": {"id": "42", "username": "alice"},
            "joined_at": "2024-01-01T00:00:00+00:00",
            "roles": [],
        },
    )
    assert [user.id for user in bot.state.db.users] == [42]
    assert bot.state.db.marked == [(42, 5)]


@pytest.mark.asyncio
async def test_message_delete_looks_up_message(bot):
    handled = await bot.handle_event(
        "MESSAGE_DELETE", {"id": "300", "channel_id": "10", "guild_id": "5"}
    )
    assert handled is True
    assert bot.state.db.fetched == [300]


@pytest.mark.asyncio
async def test_reaction_add_grants_watched_role(bot):
    bot.state.watch_msgs = {5: [SimpleNamespace(emoji="👍", roles_id=77, guild_id=5)]}
    await bot.handle_event(
        "MESSAGE_REACTION_ADD",
        {
            "channel_id": "10",
            "message_id": "300",
            "emoji": {"name": "👍"},
            "user_id": "42",
            "guild_id": "5",
            "message_author_id": "1",
        },
    )
    assert bot.state.http.roles_added == [(5, 42, 77)]


@pytest.mark.asyncio
async def test_dm_message_sends_nothing(bot):
    assert await bot.handle_event("MESSAGE_CREATE", _message_payload("hello", guild=False))
    assert bot.state.http.sent == []
    assert bot.state.db.stored == []


@pytest.mark.asyncio
async def test_guild_message_is_stored(bot):
    await bot.handle_event("MESSAGE_CREATE", _message_payload("hello"))
    assert bot.state.db.stored == [(100, 10)]


@pytest.mark.asyncio
async def test_ship_command_replies_with_score(bot):
    await bot.handle_event("MESSAGE_CREATE", _message_payload("!ship"))
    _, _, embed = bot.state.http.sent[-1]
    assert embed.title == f"user42 is {ship_score(999, 42)}% compatible with user999"


@pytest.mark.asyncio
async def test_command_without_permission_is_refused(bot):
    bot.state.http.roles = [{"id": "5", "permissions": "0"}]
    await bot.handle_event("MESSAGE_CREATE", _message_payload("!purge 5"))
    _, content, _ = bot.state.http.sent[-1]
    assert content == "You lack the permissions to use `purge`"


@pytest.mark.asyncio
async def test_cache_guild_stores_members_channels_and_messages(bot):
    http = bot.state.http
    http.guild_members[5] = [
        Member(User(1, "a"), 5, joined_at=NOW),
        Member(User(2, "b"), 5, joined_at=NOW),
    ]
    http.guild_channels[5] = [
        GuildChannel(10, 5, "general", 0, last_message_id=300),
        GuildChannel(11, 5, "voice", 2),
        GuildChannel(12, 5, "random", 0),
    ]
    http.history = {10: [_msg(200, 10)], 12: [_msg(400, 12), _msg(401, 12)]}
    http.messages[(10, 300)] = _msg(300, 10)

    await bot.cache_guild({"id": 5, "name": "guild"})

    db = bot.state.db
    assert [(m, g, n) for m, g, n, _ in db.joined] == [(2, 5, "guild")]
    assert db.marked == [(1, 5), (2, 5)]
    assert [c.id for c in db.channels] == [10, 12]
    assert db.stored == [(200, 10), (300, 10), (400, 12), (401, 12)]
    assert http.history_calls == [(10, 300, 100), (12, None, 100)]


@pytest.mark.asyncio
async def test_cache_guild_survives_missing_last_message(bot):
    http = bot.state.http
    http.guild_members[5] = []
    http.guild_channels[5] = [GuildChannel(10, 5, "general", 0, last_message_id=300)]
    http.history = {10: [_msg(200, 10)]}

    await bot.cache_guild({"id": 5, "name": "guild"})
    assert bot.state.db.stored == [(200, 10)]


@pytest.mark.asyncio
async def test_cache_data_repeats_until_an_error(bot):
    http = bot.state.http
    http.guilds = [{"id": 5, "name": "guild"}]
    http.guild_members[5] = []
    http.guild_channels[5] = []
    with pytest.raises(DiscordHttpError):
        await bot.cache_data()
    assert http.guild_calls == 2
    assert len(bot.state.db.joined) == 1