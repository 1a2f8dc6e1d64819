"""Records kept by group management and gist-based approval of join requests."""

from __future__ import annotations

import hashlib
import re
import time
from dataclasses import dataclass
from typing import Optional

GIST_RAW = "https://gist.githubusercontent.com/{user}/{hash}/raw/{file}"
ANSWER_MARK = "答案："
TIMESTAMP_WINDOW = 600

VERIFY_FLAG = 0x1
GIST_FLAG = 0x10

ON_WORDS = frozenset({"开启", "打开", "启用"})
OFF_WORDS = frozenset({"关闭", "关掉", "禁用"})

_INT63_MASK = 0x7FFFFFFF_FFFFFFFF
_TIMESTAMP = re.compile(r"[+-]?[0-9]+")


class GistCheckError(ValueError):
    """A join request failed gist verification; the message is the reason."""


@dataclass
class Welcome:
    """Welcome message of a group."""

    group_id: int
    msg: str


@dataclass
class Member:
    """A group member admitted through a gist, with their GitHub user name."""

    qq: int
    ghun: str


def parse_gist_answer(comment: str) -> tuple[str, str]:
    """Split the answer of a join request into GitHub user name and gist hash.

    The answer follows 答案： and has the form ``username/gisthash``.
    Raises GistCheckError when it is not in that form.
    """
    start = comment.find(ANSWER_MARK)
    if start < 0:
        raise GistCheckError("格式错误!")
    answer = comment[start + len(ANSWER_MARK):]
    divider = answer.find("/")
    if divider <= 0:
        raise GistCheckError("格式错误!")
    return answer[:divider], answer[divider + 1:]


def gist_url(username: str, gist_hash: str, group_id: int) -> str:
    """Raw URL of the gist file named by the MD5 of the group number."""
    file_name = hashlib.md5(str(group_id).encode()).hexdigest()
    return GIST_RAW.format(user=username, hash=gist_hash, file=file_name)


def check_gist_timestamp(data: str | bytes, now: Optional[float] = None) -> int:
    """Check the gist content: a Unix timestamp within ten minutes of ``now``.

    Returns the timestamp; raises GistCheckError with the reason otherwise.
    """
    text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
    if not _TIMESTAMP.fullmatch(text):
        raise GistCheckError("时间戳格式错误: " + text)
    stamp = int(text)
    current = int(time.time() if now is None else now)
    if abs(current - stamp) >= TIMESTAMP_WINDOW:
        raise GistCheckError("时间戳超时")
    return stamp


def set_flag(data: int, option: str, bit: int) -> int:
    """Turn a setting bit on (开启/打开/启用) or off (关闭/关掉/禁用).

    Raises ValueError for any other option word.
    """
    if option in ON_WORDS:
        return data | bit
    if option in OFF_WORDS:
        return data & _INT63_MASK & ~bit
    raise ValueError(f"unknown option: {option!r}")