"""Plugin switches, reminder timers, fortune cards and group management helpers for chat bots."""

__version__ = "0.1.0"

__all__ = ["admin", "clock", "control", "fortune", "gist", "timer"]