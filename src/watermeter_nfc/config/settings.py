# src/watermeter_nfc/config/settings.py
from __future__ import annotations
import configparser
from dataclasses import dataclass, field
from importlib import resources
from typing import Optional, Tuple

from ..utils.log import get_logger

logger = get_logger(__name__)

DEFAULT_SETTINGS_FILE = "watermeter.ini"


class ConfigError(Exception):
    """Raised when the settings file is missing, invalid, or malformed."""


@dataclass(frozen=True)
class ReaderSettings:
    reader_index: int = 0
    connect_timeout_s: float = 30.0
    poll_interval_s: float = 0.5
    update_interval_s: float = 30.0


@dataclass(frozen=True)
class TagSettings:
    origin_page: int = 3
    initial_read_bytes: int = 16
    pages_per_exchange: int = 4
    read_floor: int = 128
    gap_margin: int = 16
    chunk_sizes: Tuple[int, ...] = (64, 32, 16)
    retry_delay_ms: int = 5


@dataclass(frozen=True)
class LogSettings:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass(frozen=True)
class Settings:
    reader: ReaderSettings = field(default_factory=ReaderSettings)
    tag: TagSettings = field(default_factory=TagSettings)
    log: LogSettings = field(default_factory=LogSettings)


def _open_settings_file(path: Optional[str]):
    if path:
        return open(path, "r", encoding="utf-8")
    # packaged default
    return (resources.files(__package__).joinpath(DEFAULT_SETTINGS_FILE)
            .open("r", encoding="utf-8"))


def _parse_chunk_sizes(raw: str) -> Tuple[int, ...]:
    try:
        sizes = tuple(int(p) for p in raw.replace(";", ",").split(",") if p.strip())
    except ValueError:
        raise ConfigError(f"chunk_sizes must be a list of integers, got {raw!r}")
    if not sizes or any(s <= 0 for s in sizes):
        raise ConfigError(f"chunk_sizes must contain positive integers, got {raw!r}")
    return sizes


def _get(parser: configparser.ConfigParser, section: str, key: str, conv, default):
    if not parser.has_option(section, key):
        return default
    raw = parser.get(section, key).strip()
    if raw == "":
        return default
    try:
        return conv(raw)
    except ValueError:
        raise ConfigError(f"Invalid value for [{section}] {key}: {raw!r}")


def parse_settings(text: str) -> Settings:
    """Build Settings from INI text. Missing keys keep their defaults."""
    parser = configparser.ConfigParser(inline_comment_prefixes=("#",))
    try:
        parser.read_string(text)
    except configparser.Error as e:
        raise ConfigError(f"Malformed settings file: {e}")

    r, t, lg = ReaderSettings(), TagSettings(), LogSettings()
    reader = ReaderSettings(
        reader_index=_get(parser, "reader", "reader_index", int, r.reader_index),
        connect_timeout_s=_get(parser, "reader", "connect_timeout_s", float, r.connect_timeout_s),
        poll_interval_s=_get(parser, "reader", "poll_interval_s", float, r.poll_interval_s),
        update_interval_s=_get(parser, "reader", "update_interval_s", float, r.update_interval_s),
    )
    tag = TagSettings(
        origin_page=_get(parser, "tag", "origin_page", int, t.origin_page),
        initial_read_bytes=_get(parser, "tag", "initial_read_bytes", int, t.initial_read_bytes),
        pages_per_exchange=_get(parser, "tag", "pages_per_exchange", int, t.pages_per_exchange),
        read_floor=_get(parser, "tag", "read_floor", int, t.read_floor),
        gap_margin=_get(parser, "tag", "gap_margin", int, t.gap_margin),
        chunk_sizes=_get(parser, "tag", "chunk_sizes", _parse_chunk_sizes, t.chunk_sizes),
        retry_delay_ms=_get(parser, "tag", "retry_delay_ms", int, t.retry_delay_ms),
    )
    log = LogSettings(
        level=_get(parser, "log", "level", str, lg.level).upper(),
        file=_get(parser, "log", "file", str, lg.file),
    )
    _validate(reader, tag)
    return Settings(reader=reader, tag=tag, log=log)


def _validate(reader: ReaderSettings, tag: TagSettings) -> None:
    if reader.reader_index < 0:
        raise ConfigError("reader_index must be >= 0")
    if reader.update_interval_s <= 0 or reader.poll_interval_s <= 0:
        raise ConfigError("intervals must be > 0")
    if not (0 <= tag.origin_page < 4):
        # the TLV window is located relative to page 4
        raise ConfigError("origin_page must be between 0 and 3")
    min_initial = (4 - tag.origin_page) * 4 + 6
    if tag.initial_read_bytes < min_initial:
        raise ConfigError(f"initial_read_bytes must cover at least {min_initial} bytes")
    if tag.pages_per_exchange <= 0:
        raise ConfigError("pages_per_exchange must be > 0")
    if tag.read_floor < 0 or tag.gap_margin < 0 or tag.retry_delay_ms < 0:
        raise ConfigError("read_floor, gap_margin and retry_delay_ms must be >= 0")


def load_settings(path: Optional[str] = None) -> Settings:
    """Load settings from `path`, or the packaged watermeter.ini when None."""
    logger.debug("Loading settings from %s", path or f"<package>/{DEFAULT_SETTINGS_FILE}")
    try:
        with _open_settings_file(path) as f:
            text = f.read()
    except OSError as e:
        raise ConfigError(f"Settings file not readable: {path}: {e}")
    return parse_settings(text)
