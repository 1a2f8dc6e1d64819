import sqlite3

import pytest

from botplugins.control import ControlStore, Options, ban_id


@pytest.fixture
def store():
    with ControlStore(":memory:") as s:
        yield s


def test_default_enabled(store):
    c = store.register("svc")
    assert c.is_enabled_in(123) is True
    assert c.is_enabled_in(0) is True


def test_disable_on_default(store):
    c = store.register("svc", Options(disable_on_default=True))
    assert c.is_enabled_in(5) is False
    c.enable(5)
    assert c.is_enabled_in(5) is True
    assert c.is_enabled_in(6) is False


def test_group_disable_and_enable(store):
    c = store.register("svc")
    c.disable(10)
    assert c.is_enabled_in(10) is False
    assert c.is_enabled_in(11) is True
    c.enable(10)
    assert c.is_enabled_in(10) is True


def test_global_setting_is_fallback(store):
    c = store.register("svc")
    c.enable(10)
    c.disable(0)
    assert c.is_enabled_in(11) is False
    assert c.is_enabled_in(10) is True


def test_reset_restores_fallback(store):
    c = store.register("svc")
    c.disable(10)
    c.reset(10)
    assert c.is_enabled_in(10) is True


def test_reset_zero_is_ignored(store):
    c = store.register("svc")
    c.disable(0)
    c.reset(0)
    assert c.is_enabled_in(0) is False


def test_ban_in_group(store):
    c = store.register("svc")
    c.ban(1, 100)
    assert c.is_banned_in(1, 100) is True
    assert c.is_banned_in(1, 200) is False
    assert c.is_banned_in(2, 100) is False
    c.permit(1, 100)
    assert c.is_banned_in(1, 100) is False


def test_ban_everywhere(store):
    c = store.register("svc")
    c.ban(1, 0)
    assert c.is_banned_in(1, 100) is True
    assert c.is_banned_in(1, 200) is True
    c.permit(1, 100)
    assert c.is_banned_in(1, 100) is True
    c.permit(1, 0)
    assert c.is_banned_in(1, 100) is False


def test_ban_id_properties():
    assert ban_id(1, 2) == ban_id(1, 2)
    assert ban_id(1, 2) != ban_id(1, 0)
    assert ban_id(1, 2) != ban_id(2, 1)
    assert -(1 << 63) <= ban_id(42, 7) < (1 << 63)


def test_data_round_trip(store):
    c = store.register("svc")
    assert c.get_data(7) == 0
    c.set_data(7, 5)
    assert c.get_data(7) == 5
    assert c.is_enabled_in(7) is True


def test_set_data_ors_bits(store):
    c = store.register("svc")
    c.set_data(7, 1)
    c.set_data(7, 4)
    assert c.get_data(7) == 5


def test_set_data_keeps_disabled_default(store):
    c = store.register("svc", Options(disable_on_default=True))
    c.set_data(7, 3)
    assert c.get_data(7) == 3
    assert c.is_enabled_in(7) is False


def test_switch_keeps_data(store):
    c = store.register("svc")
    c.set_data(7, 9)
    c.disable(7)
    assert c.get_data(7) == 9
    c.enable(7)
    assert c.get_data(7) == 9
    assert c.is_enabled_in(7) is True


def test_data_falls_back_to_global(store):
    c = store.register("svc")
    c.set_data(0, 6)
    assert c.get_data(8) == 6


def test_allows_private_uses_negative_user(store):
    c = store.register("svc")
    c.disable(-55)
    assert c.allows(0, 55) is False
    assert c.allows(0, 56) is True


def test_allows_group_checks_ban(store):
    c = store.register("svc")
    c.ban(3, 100)
    assert c.allows(100, 3) is False
    assert c.allows(100, 4) is True
    c.disable(100)
    assert c.allows(100, 4) is False


def test_lookup_and_delete(store):
    c = store.register("svc", Options(help="usage"))
    assert store.lookup("svc") is c
    assert store.lookup("svc").options.help == "usage"
    assert store.delete("svc") is True
    assert store.lookup("svc") is None
    assert store.delete("svc") is False


def test_services_snapshot(store):
    store.register("a")
    store.register("b")
    snap = store.services()
    assert sorted(snap) == ["a", "b"]
    snap.pop("a")
    assert sorted(store.services()) == ["a", "b"]


def test_data_survives_reregister(tmp_path):
    path = tmp_path / "sub" / "plugins.db"
    with ControlStore(path) as s:
        s.register("svc").disable(10)
        s.delete("svc")
        assert s.register("svc").is_enabled_in(10) is False
    with ControlStore(path) as s:
        assert s.register("svc").is_enabled_in(10) is False


def test_closed_store_raises(tmp_path):
    s = ControlStore(tmp_path / "p.db")
    c = s.register("svc")
    s.close()
    with pytest.raises(sqlite3.ProgrammingError):
        c.is_enabled_in(1)