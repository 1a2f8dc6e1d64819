"""Per-service switches, user bans and small per-group settings, kept in SQLite."""

from __future__ import annotations

import hashlib
import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/control/plugins.db"

_INT64_MASK = (1 << 64) - 1


def _to_int64(value: int) -> int:
    """Wrap an integer into the signed 64-bit range."""
    value &= _INT64_MASK
    return value - (1 << 64) if value >= 1 << 63 else value


def ban_id(uid: int, gid: int) -> int:
    """Row id of a ban: the first 8 bytes of an MD5 digest, little-endian, signed.

    A ``gid`` of 0 means the ban applies in every group.
    """
    key = f"{uid}_all" if gid == 0 else f"{uid}_{gid}"
    digest = hashlib.md5(key.encode()).digest()
    return int.from_bytes(digest[:8], "little", signed=True)


@dataclass(frozen=True)
class Options:
    """Optional settings of a service."""

    disable_on_default: bool = False
    help: str = ""


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class Control:
    """Switches for one service, per group (0 means all groups)."""

    def __init__(self, store: "ControlStore", service: str, options: Options) -> None:
        self.service = service
        self.options = options
        self._store = store
        self._cfg_table = _quote(service)
        self._ban_table = _quote(service + "ban")

    def __repr__(self) -> str:
        return f"Control({self.service!r}, {self.options!r})"

    # -- storage helpers -------------------------------------------------

    def _find_cfg(self, gid: int) -> Optional[tuple[int, int]]:
        with self._store._lock:
            return self._store._conn.execute(
                f"SELECT gid, disable FROM {self._cfg_table} WHERE gid = ?", (gid,)
            ).fetchone()

    def _save_cfg(self, gid: int, disable: int) -> None:
        with self._store._lock, self._store._conn:
            self._store._conn.execute(
                f"INSERT OR REPLACE INTO {self._cfg_table} (gid, disable) VALUES (?, ?)",
                (gid, _to_int64(disable)),
            )

    def _find_ban(self, row_id: int) -> Optional[tuple[int, int]]:
        with self._store._lock:
            return self._store._conn.execute(
                f"SELECT uid, gid FROM {self._ban_table} WHERE id = ?", (row_id,)
            ).fetchone()

    # -- switches ----------------------------------------------------------

    def enable(self, group_id: int) -> None:
        """Enable the service in a group; ``group_id`` 0 acts on all groups."""
        row = self._find_cfg(group_id)
        disable = row[1] if row else 0
        self._save_cfg(group_id, disable & ~1)

    def disable(self, group_id: int) -> None:
        """Disable the service in a group; ``group_id`` 0 acts on all groups."""
        row = self._find_cfg(group_id)
        disable = row[1] if row else 0
        self._save_cfg(group_id, disable | 1)

    def reset(self, group_id: int) -> None:
        """Drop the group's own setting. Group 0 is left alone."""
        if group_id == 0:
            return
        with self._store._lock, self._store._conn:
            self._store._conn.execute(
                f"DELETE FROM {self._cfg_table} WHERE gid = ?", (group_id,)
            )

    def is_enabled_in(self, gid: int) -> bool:
        """Whether the service is on in a group, falling back to the global setting."""
        if gid != 0:
            row = self._find_cfg(gid)
            if row is not None and row[0] == gid:
                return row[1] & 1 == 0
        row = self._find_cfg(0)
        if row is not None and row[0] == 0:
            return row[1] & 1 == 0
        return not self.options.disable_on_default

    # -- bans --------------------------------------------------------------

    def ban(self, uid: int, gid: int) -> None:
        """Forbid a user the service in a group, or in every group when ``gid`` is 0."""
        with self._store._lock, self._store._conn:
            self._store._conn.execute(
                f"INSERT OR REPLACE INTO {self._ban_table} (id, uid, gid) VALUES (?, ?, ?)",
                (ban_id(uid, gid), uid, gid),
            )
        log.debug("plugin %s banned in grp %d for usr %d", self.service, gid, uid)

    def permit(self, uid: int, gid: int) -> None:
        """Lift a ban made with the same ``gid``."""
        with self._store._lock, self._store._conn:
            self._store._conn.execute(
                f"DELETE FROM {self._ban_table} WHERE id = ?", (ban_id(uid, gid),)
            )
        log.debug("plugin %s permitted in grp %d for usr %d", self.service, gid, uid)

    def is_banned_in(self, uid: int, gid: int) -> bool:
        """Whether a user is banned in a group, either there or everywhere."""
        if gid != 0:
            row = self._find_ban(ban_id(uid, gid))
            if row is not None and row == (uid, gid):
                return True
        row = self._find_ban(ban_id(uid, 0))
        return row is not None and row == (uid, 0)

    # -- data bits ---------------------------------------------------------

    def get_data(self, gid: int) -> int:
        """The 63 bits of settings above the switch bit, falling back to the global row."""
        if gid != 0:
            row = self._find_cfg(gid)
            if row is not None and row[0] == gid:
                return row[1] >> 1
        row = self._find_cfg(0)
        if row is not None and row[0] == 0:
            return row[1] >> 1
        return 0

    def set_data(self, group_id: int, data: int) -> None:
        """OR ``data`` into the group's setting bits above the switch bit."""
        row = self._find_cfg(group_id)
        if row is not None:
            disable = row[1]
        else:
            disable = 1 if self.options.disable_on_default else 0
        disable |= _to_int64(data << 1)
        self._save_cfg(group_id, disable)

    def allows(self, group_id: int, user_id: int) -> bool:
        """Whether an event from this user in this group may reach the service.

        Private messages (``group_id`` 0) use the negated user id as the group.
        """
        if group_id == 0:
            return self.is_enabled_in(-user_id)
        return self.is_enabled_in(group_id) and not self.is_banned_in(user_id, group_id)


class ControlStore:
    """Registry of services backed by one SQLite database."""

    def __init__(self, path: str | Path = DEFAULT_DB_PATH) -> None:
        path = str(path)
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._lock = threading.RLock()
        self._managers: dict[str, Control] = {}

    def __enter__(self) -> "ControlStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def register(self, service: str, options: Optional[Options] = None) -> Control:
        """Create (or replace) the control of a service and its tables."""
        control = Control(self, service, options or Options())
        with self._lock, self._conn:
            self._conn.execute(
                f"CREATE TABLE IF NOT EXISTS {_quote(service)} "
                "(gid INTEGER PRIMARY KEY, disable INTEGER NOT NULL)"
            )
            self._conn.execute(
                f"CREATE TABLE IF NOT EXISTS {_quote(service + 'ban')} "
                "(id INTEGER PRIMARY KEY, uid INTEGER NOT NULL, gid INTEGER NOT NULL)"
            )
            self._managers[service] = control
        return control

    def delete(self, service: str) -> bool:
        """Forget a service; its stored data is kept. Returns whether it was known."""
        with self._lock:
            return self._managers.pop(service, None) is not None

    def lookup(self, service: str) -> Optional[Control]:
        """The control of a service, or None."""
        with self._lock:
            return self._managers.get(service)

    def services(self) -> dict[str, Control]:
        """A snapshot of all registered services."""
        with self._lock:
            return dict(self._managers)

    def close(self) -> None:
        with self._lock:
            self._conn.close()