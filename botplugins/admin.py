"""Helpers behind the group management commands: mute lengths, CQ text, roll call, join quiz."""

from __future__ import annotations

import random
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

MAX_MUTE_MINUTES = 43199
"""The platform mutes for at most a month; longer requests are cut to this."""

ROLL_CALL_POOL = 10

_MINUTE_UNITS = frozenset({"分钟"})
_HOUR_UNITS = frozenset({"小时"})
_DAY_UNITS = frozenset({"天"})

_SELF_MINUTE_UNITS = frozenset({"分钟", "min", "mins", "m"})
_SELF_HOUR_UNITS = frozenset({"小时", "hour", "hours", "h"})
_SELF_DAY_UNITS = frozenset({"天", "day", "days", "d"})

_ANSWER = re.compile(r"[+-]?[0-9]+")


def _scaled(amount: int, unit: str, hours: frozenset[str], days: frozenset[str]) -> int:
    minutes = int(amount)
    if unit in hours:
        minutes *= 60
    elif unit in days:
        minutes *= 60 * 24
    return MAX_MUTE_MINUTES if minutes >= MAX_MUTE_MINUTES + 1 else minutes


def mute_minutes(amount: int, unit: str) -> int:
    """Length in minutes of a mute given by an admin (分钟, 小时 or 天).

    An unknown unit counts as minutes; the result is capped at a month.
    """
    return _scaled(amount, unit, _HOUR_UNITS, _DAY_UNITS)


def self_mute_minutes(amount: int, unit: str) -> int:
    """Length in minutes of a mute a member asks for themselves.

    Accepts Chinese and English units; an unknown unit counts as minutes.
    """
    return _scaled(amount, unit, _SELF_HOUR_UNITS, _SELF_DAY_UNITS)


def unescape_cq(text: str) -> str:
    """Undo the escaping of square brackets in CQ-coded text."""
    return text.replace("&#91;", "[").replace("&#93;", "]")


def pick_member(
    members: Sequence[Mapping[str, Any]], rng: Optional[random.Random] = None
) -> Mapping[str, Any]:
    """Pick one of the ten members who spoke most recently.

    Members are mappings with a ``last_sent_time`` entry. Raises ValueError
    when there is nobody to pick.
    """
    if not members:
        raise ValueError("no members to pick from")
    ordered = sorted(members, key=lambda m: int(m.get("last_sent_time", 0) or 0))
    pool = ordered[max(0, len(ordered) - ROLL_CALL_POOL):]
    return (rng or random).choice(pool)


@dataclass(frozen=True)
class Challenge:
    """An addition question put to a newcomer."""

    a: int
    b: int

    @property
    def answer(self) -> int:
        return self.a + self.b

    def prompt(self, nickname: str) -> str:
        return (
            f"考你一道题：{self.a}+{self.b}=?\n"
            f"如果60秒之内答不上来，{nickname}就要把你踢出去了哦~"
        )

    def check(self, text: str) -> Optional[bool]:
        """Whether a reply answers correctly; None when it is not a number."""
        stripped = text.replace(" ", "")
        if not _ANSWER.fullmatch(stripped):
            return None
        return int(stripped) == self.answer


def arithmetic_challenge(rng: Optional[random.Random] = None) -> Challenge:
    """A fresh question with two addends below 100."""
    source = rng or random
    return Challenge(source.randrange(100), source.randrange(100))