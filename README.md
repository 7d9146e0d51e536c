# ameca

A Discord moderation bot. It keeps a local SQLite record of guilds, channels,
members and messages, and builds its moderation features on top of that
record:

- **Automod** – per-guild banned regular expressions; a matching message is
  deleted and the channel is told "Message removed because of violation!".
- **Message logging** – deleted messages are looked up in the local record,
  marked as deleted and reported to the guild's logging channel. Member joins
  and leaves (with length of stay), warnings and rule changes are reported
  there too.
- **AFK** – members can mark themselves away; the bot prefixes their nickname
  with `[AFK]`. Mentions of them get a notice with how long they have been
  gone and why, and their next message (other than `!afk`) clears the status,
  restores their nickname and welcomes them back.
- **Warnings** – warn members, show or clear their count, and set triggers
  that ban, time out (for one hour) or kick once a count is reached.
- **Reaction roles** – watch a message for an emoji and grant or remove a role
  as members add or remove that reaction.
- **Purge** and **ship**, plus `help` and `servers`.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Configuration

Settings come from the environment. A `.env` file must exist (it is searched
for from the working directory upwards); the bot stops with
"Failed to read .env file" if none is found.

| Variable        | Meaning                                                        |
|-----------------|----------------------------------------------------------------|
| `DISCORD_TOKEN` | The bot's token                                                |
| `BOT_USER`      | The bot account's user id                                      |
| `DATABASE_URL`  | Path of the SQLite database file, or a `sqlite://` URL to one  |
| `LOG_LEVEL`     | Optional logging level name (default `DEBUG`)                  |

Example `.env`:

```
DISCORD_TOKEN=token
BOT_USER=100000000000000001
DATABASE_URL=ameca.sqlite3
```

The tables are created when the bot starts if they do not exist yet.

## Running

```
ameca
```

Options:

- `-c`, `--cache` – once the gateway reports ready, and every hour after,
  fetch every guild the bot is in and store its members, text channels and
  up to about a hundred recent messages per channel.
- `-s N`, `--shards N` – number of gateway shards to start (default 1).

Unrecognised arguments are ignored. Logs go to standard output and to hourly
rotated files `logs/debug` and `logs/warnings` under the working directory.

## Commands

Commands are typed in a channel with the `!` prefix. Users, roles, messages
and channels are given as ids or as mentions.

| Command | What it does |
|---------|--------------|
| `!afk [reason]` | Mark yourself AFK (reason defaults to "No reason provided") |
| `!log_channel add <channel>` | Make a stored channel the guild's logging channel (needs Manage Channels) |
| `!log_channel remove` | Deregister the logging channel (needs Manage Channels) |
| `!purge <n>` | Delete recent messages; *n* must be 2–300 (needs Manage Messages) |
| `!ban_pattern <name> <pattern>` | Ban a regular expression in this guild (needs Manage Messages) |
| `!remove_banned_pattern <name>` | Remove a banned pattern (needs Manage Messages) |
| `!reactionrole add <msg_id> <emoji> <role> <name>` | React to a stored message and grant the role to those who add that reaction (needs Manage Roles) |
| `!reactionrole stop <name>` | Stop a watch entry by name (needs Manage Roles) |
| `!reactionrole stopbyid <msg_id>` | Stop every watch entry on a message (needs Manage Roles) |
| `!ship [user1] [user2]` | Compatibility score from 0 to 100; missing users default to you and the bot |
| `!warnings <member> [reason]` (alias `!warn`) | Warn a member (needs Kick Members) |
| `!warnings show_warnings <member>` | Show a member's warning count |
| `!warnings clear_warnings <member>` | Remove a member's warnings |
| `!warnings warn_trigger <ban\|mute\|kick> <limit>` | Act once a member reaches *limit* (2–100) warnings; unknown actions mute (needs Ban Members) |
| `!help [command]` | List commands, or describe one (e.g. `!help warnings warn`) |
| `!servers` | List the guilds the bot is in |

A member's permissions are worked out from their guild roles; the guild owner
and administrators may use every command.

## What it does not do

- There are no slash commands and no autocompletion in Discord's interface;
  every command is a `!` prefix command.
- Permission checks use guild roles only; channel permission overwrites are
  not taken into account.
- When a channel is deleted its messages are not saved; only messages already
  in the local record are kept.
- `!purge` fetches at most 255 messages: counts above 255 wrap around, so
  `!purge 260` deletes only the 4 messages before the announcement.
- Storage is a single local SQLite file; no other database is supported.