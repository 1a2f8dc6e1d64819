"""Reminder timers: a packed schedule, Chinese date phrases and wake-up times."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Optional, Sequence

log = logging.getLogger(__name__)

_CHINESE_DIGITS = "零一二三四五六七八九十"
_EVERY = "每"
_DAY = "日"


def _go_weekday(moment: datetime) -> int:
    """Weekday numbered from Sunday = 0."""
    return (moment.weekday() + 1) % 7


def _make_date(
    year: int,
    month: int,
    day: int,
    hour: int,
    minute: int,
    second: int,
    microsecond: int,
    tz: Optional[tzinfo],
) -> datetime:
    """Build a datetime, letting out-of-range parts roll over into the next unit."""
    carry, month_index = divmod(month - 1, 12)
    base = datetime(year + carry, month_index + 1, 1, tzinfo=tz)
    return base + timedelta(
        days=day - 1,
        hours=hour,
        minutes=minute,
        seconds=second,
        microseconds=microsecond,
    )


def _add_date(moment: datetime, years: int = 0, months: int = 0, days: int = 0) -> datetime:
    return _make_date(
        moment.year + years,
        moment.month + months,
        moment.day + days,
        moment.hour,
        moment.minute,
        moment.second,
        moment.microsecond,
        moment.tzinfo,
    )


def _packed(shift: int, width: int) -> property:
    """A signed field inside ``emdwhm``; the all-ones value reads as -1."""
    full = (1 << width) - 1
    mask = full << shift
    keep = 0xFFFFFF & ~mask

    def getter(self: "Timer") -> int:
        value = (self.emdwhm & mask) >> shift
        return -1 if value == full else value

    def setter(self: "Timer", value: int) -> None:
        self.emdwhm = ((int(value) << shift) & mask) | (self.emdwhm & keep)

    return property(getter, setter)


@dataclass
class Timer:
    """A group reminder, either a packed date pattern or a cron expression.

    ``emdwhm`` packs, from the top: enabled (1 bit), month (4), day (5),
    weekday (3, Sunday = 0), hour (5) and minute (6). A field holding all
    ones means "every".
    """

    id: int = 0
    emdwhm: int = 0
    self_id: int = 0
    group_id: int = 0
    alert: str = ""
    cron: str = ""
    url: str = ""

    month = _packed(19, 4)
    day = _packed(14, 5)
    week = _packed(11, 3)
    hour = _packed(6, 5)
    minute = _packed(0, 6)

    @property
    def en(self) -> bool:
        """Whether the timer is enabled."""
        return self.emdwhm & 0x800000 != 0

    @en.setter
    def en(self, value: bool) -> None:
        if value:
            self.emdwhm |= 0x800000
        else:
            self.emdwhm &= 0x7FFFFF

    def info(self) -> str:
        """The normalised description the timer id is derived from."""
        if self.cron:
            return f"[{self.group_id}]{self.cron}"
        return (
            f"[{self.group_id}]{self.month}月{self.day}日{self.week}周"
            f"{self.hour}:{self.minute}"
        )

    def timer_id(self) -> int:
        """First four bytes of the MD5 of :meth:`info`, little-endian."""
        digest = hashlib.md5(self.info().encode()).digest()
        return int.from_bytes(digest[:4], "little")

    def is_due(self, now: datetime) -> bool:
        """Whether the reminder should go off at ``now``."""
        if not (self.month < 0 or self.month == now.month):
            return False
        if self.day < 0 or self.day == now.day:
            return self._hour_minute_match(now)
        if self.day == 0 and (self.week < 0 or self.week == _go_weekday(now)):
            return self._hour_minute_match(now)
        return False

    def _hour_minute_match(self, now: datetime) -> bool:
        return (self.hour < 0 or self.hour == now.hour) and (
            self.minute < 0 or self.minute == now.minute
        )

    def next_wake_time(self, now: datetime) -> datetime:
        """The moment after ``now`` at which the timer should next wake up."""
        m, d, h, mn, w = self.month, self.day, self.hour, self.minute, self.week
        unit = timedelta(0)
        if mn >= 0:
            if h < 0:
                unit = timedelta(hours=1)
            elif d < 0 or w < 0:
                unit = timedelta(days=1)
            elif d == 0 and w >= 0:
                delta = timedelta(days=w - _go_weekday(now))
                if delta < timedelta(0):
                    delta = timedelta(days=7)
                unit += delta
        else:
            unit = timedelta(minutes=1)

        stable = 0
        if mn < 0:
            mn = now.minute
        if h < 0:
            h = now.hour
        else:
            stable |= 0x8
        if d < 0:
            d = now.day
        elif d > 0:
            stable |= 0x4
        else:
            d = now.day
            if w >= 0:
                stable |= 0x2
        if m < 0:
            m = now.month
        else:
            stable |= 0x1

        if stable == 0b0101:
            if self.day != now.day or self.month != now.month:
                h = 0
        elif stable == 0b1001:
            if self.month != now.month:
                d = 0
        elif stable == 0b0001:
            if self.month != now.month:
                d = 0
                h = 0
        log.debug("timer stable=%d m=%d d=%d h=%d mn=%d w=%d", stable, m, d, h, mn, w)

        date = _make_date(now.year, m, d, h, mn, now.second, now.microsecond, now.tzinfo)
        if unit > timedelta(0):
            date += unit

        if date <= now:
            if self.month < 0:
                if self.day > 0 or (self.day == 0 and self.week >= 0):
                    date = _add_date(date, months=1)
                elif self.day < 0 or self.week < 0:
                    if self.hour > 0:
                        date = _add_date(date, days=1)
                    elif self.minute > 0:
                        date += timedelta(hours=1)
            else:
                date = _add_date(date, years=1)

        if stable & 0x8 and date.hour != h:
            days = 1 if not stable & 0x4 else 7
            date = _add_date(date, days=days) - timedelta(hours=1)
        if stable & 0x4 and date.day != d:
            date = _add_date(date, years=1, days=-1)
        if stable & 0x2 and _go_weekday(date) != w:
            date = first_weekday(_add_date(date, years=1), w)

        if date <= now:
            date = now + timedelta(minutes=1)
        return date


def first_weekday(date: datetime, weekday: int) -> datetime:
    """The first day of ``date``'s month falling on ``weekday`` (Sunday = 0), same time."""
    day = _add_date(date, days=1 - date.day)
    while _go_weekday(day) != weekday:
        day = _add_date(day, days=1)
    return day


def chinese_char_to_int(char: str) -> int:
    """Map one Chinese numeral to 0..10; 日 and 天 (Sunday) are 7, others 0."""
    if char in ("日", "天"):
        return 7
    index = _CHINESE_DIGITS.find(char)
    return index if index >= 0 else 0


def chinese_num_to_int(chars: str) -> int:
    """Convert a number of at most two Chinese numerals, or Arabic digits.

    每 alone means -1 and 每 followed by a numeral its negation.
    """
    if not chars:
        raise ValueError("empty number")
    if chars[0].isdecimal():
        return int(chars) if chars.isascii() and chars.isdigit() else 0
    if chars[0] == _EVERY:
        return -chinese_char_to_int(chars[1]) if len(chars) == 2 else -1
    if len(chars) == 1:
        return chinese_char_to_int(chars[0])
    ten = chinese_char_to_int(chars[0])
    if ten != 10:
        ten *= 10
    ones = chinese_char_to_int(chars[1])
    if ones == 10:
        ones = 0
    return ten + ones


def _drop_middle_ten(chars: str) -> str:
    return chars[0] + chars[2] if len(chars) == 3 else chars


def filled_cron_timer(cron: str, alert: str, url: str, bot_id: int, group_id: int) -> Timer:
    """A timer driven by a cron expression."""
    return Timer(self_id=bot_id, group_id=group_id, alert=alert, cron=cron, url=url)


def filled_timer(
    date_strs: Sequence[Optional[str]],
    bot_id: int,
    group_id: int,
    match_date_only: bool,
) -> Timer:
    """Build a timer from the groups of a "在X月Y日的H点M分时(用url)提醒大家Z" match.

    ``date_strs`` holds the whole match followed by month, day or week, hour,
    minute, url and alert. An invalid part leaves the timer disabled with the
    reason in ``alert``. With ``match_date_only`` only the date is filled in.
    """
    month_str, day_week, hour_str, minute_str = (s or "" for s in date_strs[1:5])
    timer = Timer()

    month = chinese_num_to_int(month_str)
    if (month != -1 and month <= 0) or month > 12:
        timer.alert = "月份非法！"
        return timer
    timer.month = month

    if len(day_week) == 4:
        day = chinese_num_to_int(day_week[0] + day_week[2])
        if (day != -1 and day <= 0) or day > 31:
            timer.alert = "日期非法1！"
            return timer
        timer.day = day
    elif day_week.endswith(_DAY):
        day = chinese_num_to_int(day_week[:-1])
        if (day != -1 and day <= 0) or day > 31:
            timer.alert = "日期非法2！"
            return timer
        timer.day = day
    elif day_week.startswith(_EVERY):
        timer.week = -1
    else:
        week = chinese_num_to_int(day_week[1:])
        if week == 7:
            week = 0
        if week < 0 or week > 6:
            timer.alert = "星期非法！"
            return timer
        timer.week = week

    hour = chinese_num_to_int(_drop_middle_ten(hour_str))
    if hour < -1 or hour > 23:
        timer.alert = "小时非法！"
        return timer
    timer.hour = hour

    minute = chinese_num_to_int(_drop_middle_ten(minute_str))
    if minute < -1 or minute > 59:
        timer.alert = "分钟非法！"
        return timer
    timer.minute = minute

    if not match_date_only:
        url_str = date_strs[5] or ""
        if url_str:
            timer.url = url_str[1:]
            log.info("timer image url %s", timer.url)
            if not timer.url.startswith("http"):
                timer.url = "illegal"
                log.info("timer url is illegal")
                return timer
        timer.alert = date_strs[6] or ""
        timer.en = True
    timer.self_id = bot_id
    timer.group_id = group_id
    return timer