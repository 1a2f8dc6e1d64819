from datetime import datetime

import pytest

from botplugins.timer import (
    Timer,
    chinese_char_to_int,
    chinese_num_to_int,
    filled_cron_timer,
    filled_timer,
    first_weekday,
)


def _weekly_saturday() -> Timer:
    ts = Timer()
    ts.month = -1
    ts.week = 6
    ts.hour = 16
    ts.minute = 30
    return ts


@pytest.mark.parametrize(
    "now",
    [
        datetime(2021, 11, 10, 12, 0),
        datetime(2021, 11, 13, 17, 0),
        datetime(2021, 11, 14, 9, 15, 42),
        datetime(2021, 12, 31, 23, 59),
    ],
)
def test_next_wake_time_is_in_the_future(now):
    assert _weekly_saturday().next_wake_time(now) > now


def test_next_wake_time_weekly_lands_on_the_weekday():
    wake = _weekly_saturday().next_wake_time(datetime(2021, 11, 10, 12, 0))
    assert wake == datetime(2021, 11, 13, 16, 30)


def test_next_wake_time_fixed_date():
    ts = Timer()
    ts.month = 12
    ts.day = 25
    ts.hour = 8
    ts.minute = 0
    assert ts.next_wake_time(datetime(2021, 11, 10, 12, 0)) == datetime(2021, 12, 25, 8, 0)
    assert ts.next_wake_time(datetime(2021, 12, 26, 12, 0)) == datetime(2022, 12, 25, 8, 0)


def test_next_wake_time_every_hour():
    ts = Timer()
    ts.month = -1
    ts.day = -1
    ts.week = -1
    ts.hour = -1
    ts.minute = 30
    now = datetime(2021, 11, 10, 12, 10)
    wake = ts.next_wake_time(now)
    assert wake > now
    assert wake.minute == 30


def test_packed_fields_round_trip():
    ts = Timer()
    ts.month = 11
    ts.day = 28
    ts.week = 5
    ts.hour = 23
    ts.minute = 59
    ts.en = True
    assert (ts.month, ts.day, ts.week, ts.hour, ts.minute, ts.en) == (11, 28, 5, 23, 59, True)
    ts.en = False
    assert (ts.month, ts.day, ts.week, ts.hour, ts.minute, ts.en) == (11, 28, 5, 23, 59, False)


def test_minus_one_means_every():
    ts = Timer()
    ts.month = -1
    assert ts.month == -1
    assert ts.emdwhm == 0x780000
    for name in ("day", "week", "hour", "minute"):
        setattr(ts, name, -1)
        assert getattr(ts, name) == -1


def test_info_formats():
    ts = Timer(group_id=5)
    ts.month = 12
    ts.day = 25
    ts.hour = 8
    ts.minute = 30
    assert ts.info() == "[5]12月25日0周8:30"
    assert filled_cron_timer("0 8 * * *", "hi", "", 1, 5).info() == "[5]0 8 * * *"


def test_timer_id_depends_on_info():
    a = filled_cron_timer("0 8 * * *", "a", "", 1, 5)
    b = filled_cron_timer("0 8 * * *", "b", "http://x", 2, 5)
    c = filled_cron_timer("0 8 * * *", "a", "", 1, 6)
    assert a.timer_id() == b.timer_id()
    assert a.timer_id() != c.timer_id()
    assert 0 <= a.timer_id() < 2**32


@pytest.mark.parametrize(
    "text, expected",
    [("每", -1), ("每二", -2), ("十二", 12), ("二十", 20), ("五", 5), ("十", 10), ("12", 12), ("七", 7)],
)
def test_chinese_num_to_int(text, expected):
    assert chinese_num_to_int(text) == expected


def test_chinese_num_to_int_empty():
    with pytest.raises(ValueError):
        chinese_num_to_int("")


@pytest.mark.parametrize("char, expected", [("零", 0), ("九", 9), ("十", 10), ("日", 7), ("天", 7), ("x", 0)])
def test_chinese_char_to_int(char, expected):
    assert chinese_char_to_int(char) == expected


def test_filled_timer_full():
    ts = filled_timer(
        ["", "十二", "二十五日", "八", "三十", "用https://example.com/alarm.png", "起床"], 1, 2, False
    )
    assert (ts.month, ts.day, ts.hour, ts.minute) == (12, 25, 8, 30)
    assert ts.url == "https://example.com/alarm.png"
    assert ts.alert == "起床"
    assert ts.en
    assert (ts.self_id, ts.group_id) == (1, 2)


def test_filled_timer_weeks():
    ts = filled_timer(["", "每", "周三", "8", "0", "", "x"], 1, 2, False)
    assert (ts.month, ts.day, ts.week) == (-1, 0, 3)
    assert filled_timer(["", "每", "周日", "8", "0", "", "x"], 1, 2, False).week == 0
    assert filled_timer(["", "每", "每周", "8", "0", "", "x"], 1, 2, False).week == -1


@pytest.mark.parametrize(
    "parts, alert",
    [
        (["", "十三", "五日", "八", "零", "", "x"], "月份非法！"),
        (["", "一", "三十二日", "八", "零", "", "x"], "日期非法1！"),
        (["", "一", "32日", "八", "零", "", "x"], "日期非法2！"),
        (["", "一", "五日", "二十五", "零", "", "x"], "小时非法！"),
        (["", "一", "五日", "八", "60", "", "x"], "分钟非法！"),
    ],
)
def test_filled_timer_invalid(parts, alert):
    ts = filled_timer(parts, 1, 2, False)
    assert ts.alert == alert
    assert not ts.en


def test_filled_timer_illegal_url():
    ts = filled_timer(["", "一", "五日", "八", "零", "用ftp://x", "hi"], 1, 2, False)
    assert ts.url == "illegal"
    assert not ts.en


def test_filled_timer_date_only():
    ts = filled_timer(["", "一", "五日", "八", "零"], 1, 2, True)
    assert not ts.en
    assert ts.alert == ""
    assert (ts.group_id, ts.day) == (2, 5)


def test_first_weekday():
    assert first_weekday(datetime(2021, 11, 20, 10, 0), 1) == datetime(2021, 11, 1, 10, 0)


def test_is_due():
    daily = Timer()
    daily.month = -1
    daily.week = -1
    daily.hour = 8
    daily.minute = 30
    assert daily.is_due(datetime(2021, 11, 10, 8, 30))
    assert not daily.is_due(datetime(2021, 11, 10, 8, 31))

    weekly = Timer()
    weekly.month = -1
    weekly.week = 3
    weekly.hour = 8
    weekly.minute = 0
    assert weekly.is_due(datetime(2021, 11, 10, 8, 0))
    assert not weekly.is_due(datetime(2021, 11, 11, 8, 0))

    dated = Timer()
    dated.month = 12
    dated.day = 25
    dated.hour = 8
    dated.minute = 0
    assert dated.is_due(datetime(2021, 12, 25, 8, 0))
    assert not dated.is_due(datetime(2021, 12, 24, 8, 0))