from datetime import datetime, timezone

import pytest

from ameca.database import Database
from ameca.discord import GuildChannel, Member, Message, Permissions, User
from ameca.framework import BotState, CommandContext, CommandError
from ameca.warn import (
    WarnTrigger,
    clear_warnings,
    process_triggers,
    show_warnings,
    warn,
    warn_trigger,
)

GUILD = 7
CHANNEL = 10
LOG_CHANNEL = 99
BOT = User(1, "ameca", bot=True)


class FakeHttp:
    def __init__(self):
        self.sent = []
        self.bans = []
        self.kicks = []
        self.timeouts = []
        self._next_id = 1000

    async def request(self, method, path, json=None, reason=None):
        return None

    async def send_message(self, channel_id, content=None, embed=None):
        self._next_id += 1
        self.sent.append((channel_id, content, embed))
        return Message(
            id=self._next_id,
            channel_id=channel_id,
            author=BOT,
            content=content or "",
            timestamp=datetime.now(timezone.utc),
        )

    async def ban_user(self, guild_id, user_id, reason=None):
        self.bans.append((guild_id, user_id, reason))

    async def kick_member(self, guild_id, user_id, reason=None):
        self.kicks.append((guild_id, user_id, reason))

    async def timeout_member(self, guild_id, user_id, until):
        self.timeouts.append((guild_id, user_id, until))


def make_ctx(db, http):
    return CommandContext(
        state=BotState(http=http, db=db),
        author=User(2, "moderator"),
        channel_id=CHANNEL,
        guild_id=GUILD,
    )


def target(permissions=Permissions(0), nick=None):
    return Member(user=User(55, "mallory"), guild_id=GUILD, nick=nick, permissions=permissions)


def test_parse_is_case_insensitive():
    assert WarnTrigger.parse("BAN") is WarnTrigger.BAN
    assert WarnTrigger.parse("Kick") is WarnTrigger.KICK


def test_parse_unknown_defaults_to_mute():
    assert WarnTrigger.parse("explode") is WarnTrigger.MUTE


@pytest.mark.parametrize("trigger", list(WarnTrigger))
def test_value_round_trip(trigger):
    assert WarnTrigger.parse(str(trigger)) is trigger


def test_labels():
    assert WarnTrigger.parse("ban").label == "Ban the user"
    assert WarnTrigger.parse("mute").label == "Timeout the user"
    assert WarnTrigger.parse("kick").label == "Kick the user"


@pytest.mark.asyncio
async def test_warn_records_and_logs():
    async with await Database.connect(":memory:") as db:
        await db.new_channel(GuildChannel(id=LOG_CHANNEL, guild_id=GUILD, name="logs"))
        await db.set_logging_channel(GUILD, LOG_CHANNEL)
        http = FakeHttp()
        await warn(make_ctx(db, http), target(), "spam")
        assert await db.warning_count(GUILD, 55) == 1
        replies = [content for channel, content, _ in http.sent if channel == CHANNEL]
        assert replies == [
            "<@55> you have been warned. You have been warned 1 times.\nReason: spam"
        ]
        embeds = [embed for channel, _, embed in http.sent if channel == LOG_CHANNEL]
        assert len(embeds) == 1
        assert embeds[0].title == "Warning issued"
        assert ("Reason", "spam", False) in embeds[0].fields
        assert ("User", "mallory", False) in embeds[0].fields


@pytest.mark.asyncio
async def test_warn_default_reason():
    async with await Database.connect(":memory:") as db:
        http = FakeHttp()
        await warn(make_ctx(db, http), target())
        assert http.sent[-1][1].endswith("Reason: None provided")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "permissions",
    [Permissions.ADMINISTRATOR, Permissions.MANAGE_GUILD, Permissions.MANAGE_MESSAGES],
)
async def test_warn_refuses_moderators(permissions):
    async with await Database.connect(":memory:") as db:
        http = FakeHttp()
        await warn(make_ctx(db, http), target(permissions))
        assert http.sent[-1][1] == "You are not allowed to warn this user"
        assert await db.warning_count(GUILD, 55) == 0


@pytest.mark.asyncio
async def test_ban_trigger_fires_at_limit():
    async with await Database.connect(":memory:") as db:
        http = FakeHttp()
        ctx = make_ctx(db, http)
        await warn_trigger(ctx, WarnTrigger.BAN, 2)
        await warn(ctx, target())
        assert http.bans == []
        await warn(ctx, target())
        assert http.bans == [(GUILD, 55, "Warning for bans trigger limit reached")]


@pytest.mark.asyncio
async def test_kick_and_mute_triggers():
    async with await Database.connect(":memory:") as db:
        http = FakeHttp()
        ctx = make_ctx(db, http)
        await db.add_warning(GUILD, 55)
        await db.add_warning(GUILD, 55)
        before = datetime.now(timezone.utc)
        await process_triggers(
            ctx, await db.warn_triggers(GUILD) + [], 55, GUILD
        )
        assert http.kicks == [] and http.timeouts == []
        await db.add_warn_trigger(GUILD, "kick", 2)
        await db.add_warn_trigger(GUILD, "mute", 2)
        await process_triggers(ctx, await db.warn_triggers(GUILD), 55, GUILD)
        assert http.kicks == [(GUILD, 55, "Warning for kick trigger limit reached")]
        assert len(http.timeouts) == 1
        assert http.timeouts[0][:2] == (GUILD, 55)
        assert http.timeouts[0][2] > before


@pytest.mark.asyncio
async def test_warn_trigger_stores_choice():
    async with await Database.connect(":memory:") as db:
        http = FakeHttp()
        await warn_trigger(make_ctx(db, http), "Kick", 5)
        triggers = await db.warn_triggers(GUILD)
        assert [(t.limit, t.action) for t in triggers] == [(5, "kick")]
        assert http.sent[-1][1] == "Set triggers"


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [1, 101])
async def test_warn_trigger_limit_out_of_range(limit):
    async with await Database.connect(":memory:") as db:
        with pytest.raises(CommandError):
            await warn_trigger(make_ctx(db, FakeHttp()), WarnTrigger.BAN, limit)


@pytest.mark.asyncio
async def test_clear_warnings():
    async with await Database.connect(":memory:") as db:
        http = FakeHttp()
        await db.add_warning(GUILD, 55)
        await clear_warnings(make_ctx(db, http), target())
        assert await db.warning_count(GUILD, 55) == 0
        assert http.sent[-1][1] == "Removed any warnings issued to the user"


@pytest.mark.asyncio
async def test_show_warnings_uses_nickname():
    async with await Database.connect(":memory:") as db:
        http = FakeHttp()
        await db.add_warning(GUILD, 55)
        await show_warnings(make_ctx(db, http), target(nick="mal"))
        assert http.sent[0][1] == "Fetching data..."
        embed = http.sent[-1][2]
        assert ("User", "mal", False) in embed.fields
        assert ("Total Warnings", "1", False) in embed.fields


@pytest.mark.asyncio
async def test_warn_outside_guild_raises():
    async with await Database.connect(":memory:") as db:
        ctx = CommandContext(
            state=BotState(http=FakeHttp(), db=db), author=User(2, "moderator"), channel_id=CHANNEL
        )
        with pytest.raises(CommandError):
            await warn(ctx, target())