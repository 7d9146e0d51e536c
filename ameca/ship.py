"""The compatibility ("ship") command."""

from __future__ import annotations

import hashlib

from ameca.discord import Embed, User
from ameca.framework import CommandContext
from ameca.utils import bot_user_id

_SPECIAL_PAIR = 0x2BAE94CD080001D

_VERDICTS: tuple[tuple[int, str, str], ...] = (
    (80, "It's a match made in heaven! 💖", "Get married."),
    (60, "You two would make a great team! 😊", "Y'all have to be bestfriends"),
    (40, "There's some potential here. 🤔", "Eh... maybe?"),
    (20, "It might be a rocky road... 😅", "Even oil and water get along better than you two..."),
    (0, "Not looking too good... 💀", "This is a disaster waiting to happen..."),
)


def ship_score(first_id: int, second_id: int) -> int:
    """A stable score from 0 to 100 for a pair of user ids, independent of order."""
    combined = f"{min(first_id, second_id)}{max(first_id, second_id)}"
    digest = hashlib.sha256(combined.encode()).digest()
    score = int.from_bytes(digest[:8], "big") % 101
    if first_id ^ second_id == _SPECIAL_PAIR:
        score = 100
    return score


def ship_verdict(score: int) -> tuple[str, str]:
    """The headline and the remark for a score."""
    for low, response, sub_response in _VERDICTS:
        if low <= score <= 100:
            return response, sub_response
    return _VERDICTS[-1][1], _VERDICTS[-1][2]


async def ship(ctx: CommandContext, user1: User | None = None, user2: User | None = None) -> None:
    """Rate how compatible two users are; missing users default to the author and the bot."""
    author_id = ctx.author.id
    if user1 is not None and user2 is None:
        target_id, user_id = user1.id, author_id
    elif user2 is not None and user1 is None:
        target_id, user_id = user2.id, author_id
    elif user1 is not None and user2 is not None:
        target_id, user_id = user1.id, user2.id
    else:
        target_id, user_id = bot_user_id(), author_id

    score = ship_score(target_id, user_id)
    response, sub_response = ship_verdict(score)

    name1 = (await ctx.state.http.get_user(user_id)).name
    name2 = (await ctx.state.http.get_user(target_id)).name
    embed = Embed(
        title=f"{name1} is {score}% compatible with {name2}",
        color=0xF4C2C2,
        author_name="AMECA",
    )
    embed.add_field(response, sub_response, False)
    await ctx.send_embed(embed)