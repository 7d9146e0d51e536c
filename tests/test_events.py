from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from ameca import events
from ameca.discord import DiscordHttpError, Member, Reaction, User
from ameca.framework import BotState

GUILD = 20
LOG_CHANNEL = 99
BOT_ID = 4242


class FakeHttp:
    def __init__(self):
        self.sent = []
        self.added = []
        self.removed = []
        self.fail = None

    async def send_message(self, channel_id, content=None, embed=None):
        self.sent.append((channel_id, content, embed))

    async def add_member_role(self, guild_id, user_id, role_id, reason=None):
        if self.fail is not None:
            raise self.fail
        self.added.append((guild_id, user_id, role_id, reason))

    async def remove_member_role(self, guild_id, user_id, role_id, reason=None):
        if self.fail is not None:
            raise self.fail
        self.removed.append((guild_id, user_id, role_id, reason))


class FakeDb:
    def __init__(self):
        self.roles = []
        self.joins = {}
        self.log_channel = True
        self.role_loads = 0

    async def reaction_roles(self, guild_id=None):
        self.role_loads += 1
        return [r for r in self.roles if guild_id is None or r.guild_id == guild_id]

    async def get_logging_channel(self, guild_id):
        return SimpleNamespace(channel_id=LOG_CHANNEL) if self.log_channel else None

    async def mark_user_in_guild(self, user, guild_id, time):
        self.joins.setdefault((user.id, guild_id), time)

    async def get_user_join_time(self, user, guild_id):
        return self.joins[(user.id, guild_id)]


def make_role(emoji, roles_id, guild_id=GUILD):
    return SimpleNamespace(
        id=1, emoji=emoji, roles_id=roles_id, msg_id=300, guild_id=guild_id, name="r"
    )


@pytest.fixture
def state(monkeypatch):
    monkeypatch.setenv("BOT_USER", str(BOT_ID))
    return BotState(http=FakeHttp(), db=FakeDb())


def embeds(state):
    return [(cid, embed) for cid, _, embed in state.http.sent if embed is not None]


@pytest.mark.asyncio
async def test_user_join_logs_and_records(state):
    member = Member(user=User(7, "alice"), guild_id=GUILD)
    await events.on_user_join(state, member)
    (cid, embed), = embeds(state)
    assert cid == LOG_CHANNEL
    assert embed.title == "alice joined!"
    assert embed.fields[1] == ("User Details", "id: 7", False)
    assert (7, GUILD) in state.db.joins


@pytest.mark.asyncio
async def test_user_join_without_log_channel_still_records(state):
    state.db.log_channel = False
    await events.on_user_join(state, Member(user=User(7, "alice"), guild_id=GUILD))
    assert embeds(state) == []
    assert (7, GUILD) in state.db.joins


@pytest.mark.asyncio
async def test_user_leave_reports_stay(state):
    user = User(8, "bob")
    joined = datetime.now(timezone.utc) - timedelta(days=1, hours=2, minutes=3, seconds=4)
    state.db.joins[(8, GUILD)] = joined
    await events.user_leave(state, GUILD, user)
    (cid, embed), = embeds(state)
    assert cid == LOG_CHANNEL
    assert embed.title == "bob left"
    names = [name for name, _, _ in embed.fields]
    assert names == ["Join Time", "Leave Time", "Time of stay ", "User Details"]
    assert embed.fields[0][1] == f"`{joined}`"
    assert embed.fields[2][1].startswith("`1 Days 2 Hours 3 Minutes")


@pytest.mark.asyncio
async def test_user_leave_unknown_member_raises(state):
    with pytest.raises(KeyError):
        await events.user_leave(state, GUILD, User(9, "carol"))


@pytest.mark.asyncio
async def test_watched_reaction_loads_cache_and_matches(state):
    state.db.roles = [make_role("🎮", 800), make_role("🎨", 801)]
    reaction = Reaction(channel_id=1, message_id=300, emoji="🎨", user_id=7, guild_id=GUILD)
    role = await events.is_reaction_watched(state, reaction)
    assert role.roles_id == 801
    assert state.db.role_loads == 1
    assert len(state.watch_msgs[GUILD]) == 2


@pytest.mark.asyncio
async def test_reaction_outside_guild_ignored(state):
    state.db.roles = [make_role("🎮", 800)]
    reaction = Reaction(channel_id=1, message_id=300, emoji="🎮", user_id=7)
    assert await events.is_reaction_watched(state, reaction) is None


@pytest.mark.asyncio
async def test_reaction_on_bot_message_ignored(state):
    state.db.roles = [make_role("🎮", 800)]
    reaction = Reaction(
        channel_id=1,
        message_id=300,
        emoji="🎮",
        user_id=7,
        guild_id=GUILD,
        message_author_id=BOT_ID,
    )
    assert await events.is_reaction_watched(state, reaction) is None


@pytest.mark.asyncio
async def test_reaction_add_grants_role(state):
    state.db.roles = [make_role("🎮", 800)]
    reaction = Reaction(channel_id=1, message_id=300, emoji="🎮", user_id=7, guild_id=GUILD)
    role = await events.reaction_add(state, reaction)
    assert role.roles_id == 800
    assert state.http.added == [
        (GUILD, 7, 800, "Assigning role for reaction to message. (WatchID: 800)")
    ]


@pytest.mark.asyncio
async def test_reaction_add_swallows_api_error(state):
    state.db.roles = [make_role("🎮", 800)]
    state.http.fail = DiscordHttpError(403, "Missing Permissions")
    reaction = Reaction(channel_id=1, message_id=300, emoji="🎮", user_id=7, guild_id=GUILD)
    role = await events.reaction_add(state, reaction)
    assert role.roles_id == 800
    assert state.http.added == []


@pytest.mark.asyncio
async def test_reaction_delete_removes_role(state):
    state.db.roles = [make_role("🎮", 800)]
    reaction = Reaction(channel_id=1, message_id=300, emoji="🎮", user_id=7, guild_id=GUILD)
    await events.reaction_delete(state, reaction)
    assert state.http.removed == [
        (GUILD, 7, 800, "Removing role from user due to removing reaction. (WatchID: 800)")
    ]


@pytest.mark.asyncio
async def test_unwatched_emoji_does_nothing(state):
    state.db.roles = [make_role("🎮", 800)]
    reaction = Reaction(channel_id=1, message_id=300, emoji="🎲", user_id=7, guild_id=GUILD)
    assert await events.reaction_add(state, reaction) is None
    assert await events.reaction_delete(state, reaction) is None
    assert state.http.added == [] and state.http.removed == []