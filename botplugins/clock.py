"""Running reminder timers for groups, persisted in SQLite."""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from .timer import Timer, _go_weekday

log = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/manager/config.db"

Message = list[dict]
Sender = Callable[[int, int, Message], None]

_DESCRIPTORS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}
_MONTH_NAMES = {
    name: i
    for i, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"],
        start=1,
    )
}
_DOW_NAMES = {name: i for i, name in enumerate(["sun", "mon", "tue", "wed", "thu", "fri", "sat"])}
_SEARCH_LIMIT = timedelta(days=5 * 366)


def _parse_value(text: str, names: dict[str, int]) -> int:
    lowered = text.lower()
    if lowered in names:
        return names[lowered]
    try:
        return int(text)
    except ValueError:
        raise ValueError(f"failed to parse int from {text!r}") from None


def _parse_field(
    text: str, low: int, high: int, names: dict[str, int]
) -> tuple[frozenset[int], bool]:
    values: set[int] = set()
    star = False
    for part in text.split(","):
        range_part, has_step, step_text = part.partition("/")
        step = _parse_value(step_text, {}) if has_step else 1
        part_star = False
        if range_part in ("*", "?"):
            start, end = low, high
            part_star = True
        else:
            first, has_end, last = range_part.partition("-")
            start = _parse_value(first, names)
            end = _parse_value(last, names) if has_end else start
            if has_step and not has_end:
                end = high
        if has_step and step > 1:
            part_star = False
        if step <= 0:
            raise ValueError(f"step of range should be a positive number: {part!r}")
        if start < low or end > high or start > end:
            raise ValueError(f"value out of range ({low}-{high}): {part!r}")
        values.update(range(start, end + 1, step))
        star = star or part_star
    return frozenset(values), star


@dataclass(frozen=True)
class CronSchedule:
    """A five-field cron schedule: minute, hour, day of month, month, day of week."""

    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]
    dom_star: bool
    dow_star: bool

    @classmethod
    def parse(cls, expr: str) -> "CronSchedule":
        """Parse a cron expression or one of the @descriptors; raise ValueError if invalid."""
        text = expr.strip()
        if text.startswith("@"):
            if text not in _DESCRIPTORS:
                raise ValueError(f"unrecognized descriptor: {text}")
            text = _DESCRIPTORS[text]
        fields = text.split()
        if len(fields) != 5:
            raise ValueError(f"expected exactly 5 fields, found {len(fields)}: {expr}")
        minutes, _ = _parse_field(fields[0], 0, 59, {})
        hours, _ = _parse_field(fields[1], 0, 23, {})
        days, dom_star = _parse_field(fields[2], 1, 31, {})
        months, _ = _parse_field(fields[3], 1, 12, _MONTH_NAMES)
        weekdays, dow_star = _parse_field(fields[4], 0, 6, _DOW_NAMES)
        return cls(minutes, hours, days, months, weekdays, dom_star, dow_star)

    def _day_matches(self, moment: datetime) -> bool:
        dom = moment.day in self.days
        dow = _go_weekday(moment) in self.weekdays
        if self.dom_star or self.dow_star:
            return dom and dow
        return dom or dow

    def matches(self, moment: datetime) -> bool:
        """Whether the schedule fires in the minute of ``moment``."""
        return (
            moment.minute in self.minutes
            and moment.hour in self.hours
            and moment.month in self.months
            and self._day_matches(moment)
        )

    def next_after(self, moment: datetime) -> datetime:
        """The first matching minute strictly after ``moment``."""
        t = moment.replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = moment + _SEARCH_LIMIT
        while t <= limit:
            if t.month not in self.months:
                if t.month == 12:
                    t = t.replace(year=t.year + 1, month=1, day=1, hour=0, minute=0)
                else:
                    t = t.replace(month=t.month + 1, day=1, hour=0, minute=0)
                continue
            if not self._day_matches(t):
                t = t.replace(hour=0, minute=0) + timedelta(days=1)
                continue
            if t.hour not in self.hours:
                t = t.replace(minute=0) + timedelta(hours=1)
                continue
            if t.minute not in self.minutes:
                t += timedelta(minutes=1)
                continue
            return t
        raise ValueError("schedule never fires")


def format_listing(info: str) -> str:
    """Turn a timer's info string into the line shown when listing timers."""
    start = info.find("]")
    text = info[start + 1:] + "\n"
    text = text.replace("-1", "每")
    text = text.replace("月0日0周", "月周天")
    text = text.replace("月0日", "月")
    return text.replace("日0周", "日")


def _compose(timer: Timer) -> Message:
    message: Message = [
        {"type": "at", "data": {"qq": "all"}},
        {"type": "text", "data": {"text": timer.alert}},
    ]
    if timer.url:
        message.append({"type": "image", "data": {"file": timer.url, "cache": "0"}})
    return message


def _log_message(self_id: int, group_id: int, message: Message) -> None:
    log.info("reminder for group %d via bot %d: %s", group_id, self_id, message)


class Clock:
    """Keeps timers, runs each on its own thread and stores them in SQLite.

    ``send(self_id, group_id, message)`` delivers a reminder; ``now`` supplies
    the current time.
    """

    def __init__(
        self,
        path: str | Path = DEFAULT_DB_PATH,
        send: Optional[Sender] = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        path = str(path)
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._lock = threading.RLock()
        self._send = send or _log_message
        self._now = now
        self._timers: dict[int, Timer] = {}
        self._stops: dict[int, threading.Event] = {}
        with self._lock, self._conn:
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS timer (id INTEGER PRIMARY KEY, "
                "emdwhm INTEGER NOT NULL, sid INTEGER NOT NULL, gid INTEGER NOT NULL, "
                "alert TEXT NOT NULL, cron TEXT NOT NULL, url TEXT NOT NULL)"
            )
            rows = self._conn.execute(
                "SELECT id, emdwhm, sid, gid, alert, cron, url FROM timer"
            ).fetchall()
        for row in rows:
            self.register_timer(Timer(*row), False)

    def __enter__(self) -> "Clock":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- timers --------------------------------------------------------------

    def register_timer(self, timer: Timer, save: bool) -> bool:
        """Start a timer; with ``save`` its id is computed and it is stored.

        Returns whether the timer is now running. An invalid cron expression
        leaves the reason in ``timer.alert``.
        """
        if save:
            key = timer.timer_id()
            timer.id = key
        else:
            key = timer.id
        existing = self.get_timer(key)
        if existing is not None and existing is not timer:
            existing.en = False
        self._stop(key)
        log.info("registering timer %08x", key)

        if timer.cron:
            try:
                schedule = CronSchedule.parse(timer.cron)
            except ValueError as exc:
                timer.alert = str(exc)
                return False
            self._keep(timer, save)
            self._start(key, self._run_cron, timer, schedule)
            return True

        self._keep(timer, save)
        if not timer.en:
            return False
        self._start(key, self._run_dated, timer)
        return True

    def cancel_timer(self, key: int) -> bool:
        """Stop and forget a timer. Returns whether it existed."""
        timer = self.get_timer(key)
        if timer is None:
            return False
        if not timer.cron:
            timer.en = False
        self._stop(key)
        with self._lock, self._conn:
            self._timers.pop(key, None)
            self._conn.execute("DELETE FROM timer WHERE id = ?", (key,))
        return True

    def list_timers(self, group_id: int) -> list[str]:
        """Listing lines of the timers of one group."""
        with self._lock:
            timers = list(self._timers.values())
        return [format_listing(t.info()) for t in timers if t.group_id == group_id]

    def get_timer(self, key: int) -> Optional[Timer]:
        """The timer with this id, or None."""
        with self._lock:
            return self._timers.get(key)

    def add_timer(self, timer: Timer) -> None:
        """Remember a timer and store it."""
        with self._lock, self._conn:
            self._timers[timer.id] = timer
            self._conn.execute(
                "INSERT OR REPLACE INTO timer (id, emdwhm, sid, gid, alert, cron, url) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    timer.id,
                    timer.emdwhm,
                    timer.self_id,
                    timer.group_id,
                    timer.alert,
                    timer.cron,
                    timer.url,
                ),
            )

    def close(self) -> None:
        """Stop every timer thread and close the database."""
        with self._lock:
            for stop in self._stops.values():
                stop.set()
            self._stops.clear()
            self._conn.close()

    # -- internals -------------------------------------------------------------

    def _keep(self, timer: Timer, save: bool) -> None:
        if save:
            self.add_timer(timer)
        else:
            with self._lock:
                self._timers[timer.id] = timer

    def _start(self, key: int, target: Callable, *args) -> None:
        stop = threading.Event()
        with self._lock:
            self._stops[key] = stop
        threading.Thread(target=target, args=(*args, stop), daemon=True).start()

    def _stop(self, key: int) -> None:
        with self._lock:
            stop = self._stops.pop(key, None)
        if stop is not None:
            stop.set()

    def _seconds_until(self, moment: datetime) -> float:
        return max(0.0, (moment - self._now()).total_seconds())

    def _deliver(self, timer: Timer) -> None:
        try:
            self._send(timer.self_id, timer.group_id, _compose(timer))
        except Exception:
            log.exception("failed to send reminder %08x", timer.id)

    def _run_cron(self, timer: Timer, schedule: CronSchedule, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                wake = schedule.next_after(self._now())
            except ValueError:
                log.warning("cron timer %08x never fires", timer.id)
                return
            if stop.wait(self._seconds_until(wake)):
                return
            self._deliver(timer)

    def _run_dated(self, timer: Timer, stop: threading.Event) -> None:
        while timer.en and not stop.is_set():
            wake = timer.next_wake_time(self._now())
            log.info("timer %08x sleeps until %s", timer.id, wake)
            if stop.wait(self._seconds_until(wake)):
                return
            if timer.en and timer.is_due(self._now()):
                self._deliver(timer)