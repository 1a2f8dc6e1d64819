# botplugins

Building blocks for a group chat bot. It provides per-group plugin switches
and bans kept in SQLite, and reminder timers written as Chinese date phrases
or cron expressions. It also holds the logic behind a daily fortune card,
gist-based approval of join requests and a few group administration commands.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Plugin control: `botplugins.control`

`ControlStore(path)` opens a SQLite database. The default path is
`data/control/plugins.db`, and `":memory:"` keeps everything in memory. The
store keeps one `Control` per service. It is also a context manager that
closes the database on exit.

- `register(service, options=None)` creates the service's tables and returns
  its `Control`. `options` is an `Options(disable_on_default=False, help="")`.
- `lookup(service)` returns the `Control` or `None`. `services()` returns a
  snapshot dict of all of them.
- `delete(service)` forgets a service but keeps its stored data. It returns
  whether the service was known.
- `close()` closes the database.

Group `0` means every group. Negative ids stand for private users. A
`Control` offers these methods:

- `enable(group_id)` and `disable(group_id)` switch the service on or off.
  `reset(group_id)` drops a group's own setting; group `0` is left untouched.
- `is_enabled_in(gid)` checks the group's own setting first, then the
  all-groups setting, then the service default.
- `ban(uid, gid)`, `permit(uid, gid)` and `is_banned_in(uid, gid)` manage
  bans in one group, or in every group when `gid` is `0`.
- `get_data(gid)` and `set_data(group_id, data)` read and OR in 63 bits of
  per-group settings, stored above the on/off bit.
- `allows(group_id, user_id)` is the combined check for an incoming event. A
  `group_id` of `0` (a private message) uses the negated user id as the group.

`ban_id(uid, gid)` gives the row id under which a ban is stored.

```python
from botplugins.control import ControlStore, Options

with ControlStore(":memory:") as store:
    fortune = store.register("fortune", Options(help="daily fortune"))
    fortune.disable(123)
    fortune.is_enabled_in(123)   # False
    fortune.is_enabled_in(456)   # True
```

## Reminder timers: `botplugins.timer`

A `Timer` packs five fields into `emdwhm`: an enabled flag, month, day,
weekday (Sunday = 0), hour and minute. A field set to `-1` means "every".
Each field is a read/write property (`en`, `month`, `day`, `week`, `hour`,
`minute`). A timer also carries `alert`, `url`, `cron`, `self_id` and
`group_id`.

- `filled_timer(date_strs, bot_id, group_id, match_date_only)` builds a timer
  from the groups of a phrase such as "在12月周六的16点30分时用http://…提醒大家…".
  `date_strs` holds the whole match, then the month, the day or weekday, the
  hour, the minute, the url part (starting with 用, or `None`) and the alert.
  If a part is invalid, the timer stays disabled and `alert` holds the reason.
- `filled_cron_timer(cron, alert, url, bot_id, group_id)` builds a timer
  driven by a cron expression.
- `Timer.info()` returns the normalised description.
- `Timer.timer_id()` returns the stable id derived from that description.
- `Timer.is_due(now)` tells whether the timer fires at `now`.
- `Timer.next_wake_time(now)` returns when the timer should next wake up.
- `chinese_num_to_int` and `chinese_char_to_int` read numbers of up to two
  Chinese numerals, or Arabic digits. 每 alone reads as `-1`.
- `first_weekday(date, weekday)` returns the first day of the month that
  falls on a given weekday.

```python
from botplugins.timer import chinese_num_to_int, filled_timer

chinese_num_to_int("十二")   # 12
t = filled_timer(["", "12", "周六", "16", "30", None, "开会"], 10001, 20002, False)
t.en, t.month, t.week, t.hour, t.minute   # (True, 12, 6, 16, 30)
```

## Running timers: `botplugins.clock`

`Clock(path, send=None, now=datetime.now)` stores timers in a SQLite table
and reloads them on start. The default path is `data/manager/config.db`. Each
running timer gets its own daemon thread.

When a timer fires, the clock calls `send(self_id, group_id, message)`. The
message is a list of segments: an "@all" segment, the alert text, and the
image url if the timer has one. Without `send`, the message is only logged.

- `register_timer(timer, save)` starts a timer and returns whether it is now
  running. With `save`, the timer's id is computed and the timer is stored.
  If the cron expression is invalid, the reason is left in `timer.alert`.
- `cancel_timer(key)` stops and deletes a timer.
- `get_timer(key)` returns a timer by id, and `add_timer(timer)` stores one.
- `list_timers(group_id)` returns the listing lines for one group. Each line
  comes from `format_listing`.
- `close()` stops all timers and closes the database.

`CronSchedule.parse(expr)` reads five-field cron expressions, including
month and weekday names and the `@daily`-style descriptors. It raises
`ValueError` for an invalid expression. `matches(moment)` and
`next_after(moment)` evaluate the schedule.

## Daily fortune: `botplugins.fortune`

- `daily_seed(user_id, today)` gives a seed that stays the same for a user
  over one day.
- `random_image(path, seed)` picks a file from a directory by seed.
  `random_text(path, seed)` picks a `(title, content)` entry from a JSON list
  by seed.
- `background_kind(data)` maps the low byte of a group's stored data to a
  background set in `TABLE`. `INDEX` maps the other way.
- `unpack(target, dest)` extracts a zip archive. It refuses entries that
  would land outside `dest`.
- `draw(background, title, text, font_path=None)` renders the card with
  Pillow and returns base64-encoded JPEG bytes. The text is written in
  vertical columns. Without `font_path`, Pillow's built-in font is used.
- `offset` and `rows` are the layout helpers that `draw` uses.

## Join requests by gist: `botplugins.gist`

- `parse_gist_answer(comment)` splits the answer after 答案： into a GitHub
  user name and a gist hash.
- `gist_url(username, gist_hash, group_id)` returns the raw URL of the gist
  file, which is named by the MD5 of the group number.
- `check_gist_timestamp(data, now=None)` accepts a Unix timestamp within ten
  minutes of `now`.
- Both checks raise `GistCheckError` (a `ValueError`) with the reason.
- `set_flag(data, option, bit)` turns a setting bit on (开启/打开/启用) or
  off (关闭/关掉/禁用). The bits are `VERIFY_FLAG` and `GIST_FLAG`.
- `Welcome` and `Member` are the records of a group's welcome message and of
  a member admitted through a gist.

## Group administration: `botplugins.admin`

- `mute_minutes(amount, unit)` converts a mute length to minutes. It accepts
  分钟, 小时 and 天, and caps the result at `MAX_MUTE_MINUTES`.
- `self_mute_minutes(amount, unit)` does the same and also accepts English
  units (`m`, `h`, `d`, …).
- `unescape_cq(text)` turns `&#91;` and `&#93;` back into square brackets.
- `pick_member(members, rng=None)` picks one of the ten members with the
  latest `last_sent_time`.
- `arithmetic_challenge(rng=None)` returns a `Challenge`. It has `answer`,
  `prompt(nickname)`, and `check(text)`, which returns `None` for a reply
  that is not a number.

```python
import random

from botplugins.admin import arithmetic_challenge, unescape_cq

unescape_cq("&#91;CQ:face,id=1&#93;")   # "[CQ:face,id=1]"
quiz = arithmetic_challenge(random.Random(1))
quiz.check(str(quiz.answer))             # True
```

Functions that take `rng` accept any `random.Random`, so their results can
be reproduced with a fixed seed.

## What the package does not do

The package does not connect to a chat platform, receive events or match
commands. The caller decides when to call these functions and sends the
replies itself. It makes no network requests either:

- Gist contents must be fetched by the caller before `check_gist_timestamp`
  can check them.
- Fortune texts, fonts and background archives must already be on disk.
- A `Clock` only hands reminder messages to the `send` callable it is given.