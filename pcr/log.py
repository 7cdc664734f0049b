from __future__ import annotations

import sqlite3
import sys
import traceback
from enum import Enum
from typing import TextIO

from . import db
from .settings import Settings, settings


class Level(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @property
    def rank(self) -> int:
        return _ORDER.index(self)

    @classmethod
    def parse(cls, value: "Level | str") -> "Level":
        if isinstance(value, Level):
            return value
        name = str(value).strip().upper()
        if name == "WARNING":
            name = "WARN"
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown log level: {value!r}") from None


_ORDER = [Level.DEBUG, Level.INFO, Level.WARN, Level.ERROR]


class _Config:
    def __init__(self) -> None:
        self.threshold = Level.INFO
        self.name = "PCR"
        self.db_path: str | None = None
        self.stdout = True
        self.stream: TextIO | None = None
        self._journal_ready = False

    def journal_ready(self) -> bool:
        if not self.db_path:
            return False
        if not self._journal_ready:
            db.init_db(self.db_path)
            self._journal_ready = True
        return True


_config = _Config()


def configure(
    level: Level | str | None = None,
    name: str | None = None,
    db_path: str | None = None,
    stdout: bool | None = None,
    stream: TextIO | None = None,
) -> None:
    """Set the threshold, program name, output stream and journal location.

    Passing ``db_path=""`` turns the journal off.
    """
    if level is not None:
        _config.threshold = Level.parse(level)
    if name is not None:
        _config.name = name
    if db_path is not None:
        _config.db_path = db_path or None
        _config._journal_ready = False
    if stdout is not None:
        _config.stdout = stdout
    if stream is not None:
        _config.stream = stream


def configure_from_settings(s: Settings = settings) -> None:
    try:
        level = Level.parse(s.log_level)
    except ValueError:
        level = Level.INFO
    _config.stream = None
    configure(level=level, name=s.log_name, db_path=s.db_path or "", stdout=s.log_to_stdout)


def should_log(level: Level | str) -> bool:
    return Level.parse(level).rank >= _config.threshold.rank


def log_event(level: Level | str, message: str, service_name: str | None = None) -> None:
    lvl = Level.parse(level)
    if not should_log(lvl):
        return
    ts = db.utc_now()
    if _config.stdout:
        print(f"{ts} [{_config.name.upper()}] [{lvl.value}] {message}", file=_config.stream or sys.stdout, flush=True)
    try:
        if _config.journal_ready():
            db.record_event(_config.db_path, lvl.value, message, service_name=service_name, ts=ts)
    except (sqlite3.Error, OSError) as e:
        print(f"{ts} [{_config.name.upper()}] [ERROR] event journal write failed: {e}", file=sys.stderr, flush=True)


def log_exception(message: str, exc: BaseException) -> None:
    log_event(Level.ERROR, message)
    log_event(Level.ERROR, f"{type(exc).__name__}: {exc}")
    for line in traceback.format_exception(type(exc), exc, exc.__traceback__):
        for part in line.rstrip("\n").splitlines():
            log_event(Level.ERROR, part)


configure_from_settings()
